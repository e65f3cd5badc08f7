# utils.py
"""Utility helpers shared across the classification pipeline."""

from __future__ import annotations

import json
import logging
import re
import time
from collections import OrderedDict
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional, Sequence

from config import LOG_LEVEL


_PERCENT_RE = re.compile(r"(\d{1,3})(?:\.(\d+))?\s*%")
_PERCENTS_RE = re.compile(r"(\d{1,3})(?:\.(\d+))?\s*(?:%|percent)", re.IGNORECASE)
_PROOF_RE = re.compile(r"(\d{2,3})\s*proof", re.IGNORECASE)


def setup_logger(name: str = "hazmat") -> logging.Logger:
    """Return a module-level logger with a friendly formatter."""

    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler()
        fmt = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    logger.setLevel((LOG_LEVEL or "INFO").upper())
    return logger


def read_json(path: Path) -> Any:
    """Parse a UTF-8 JSON document from disk."""

    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def normalize_whitespace(text: str) -> str:
    """Collapse repeated whitespace so names compare cleanly."""

    return " ".join(text.split()) if text else ""


def dedupe_preserve(seq: Sequence[str]) -> list[str]:
    """Remove duplicates while keeping original order."""

    return list(OrderedDict.fromkeys(seq))


def parse_percent(text: str) -> Optional[float]:
    """Return the first ``N[.N]%`` value in ``text``, or ``None``."""

    m = _PERCENT_RE.search(text or "")
    if not m:
        return None
    return float(f"{m.group(1)}.{m.group(2)}" if m.group(2) else m.group(1))


def parse_percents(text: str) -> List[float]:
    """Return every ``N%`` / ``N percent`` value in ``text``."""

    out = []
    for m in _PERCENTS_RE.finditer(text or ""):
        out.append(float(f"{m.group(1)}.{m.group(2)}" if m.group(2) else m.group(1)))
    return out


def parse_proof(text: str) -> Optional[int]:
    """Return the alcohol proof in ``"<N> proof"`` wording, or ``None``."""

    m = _PROOF_RE.search(text or "")
    return int(m.group(1)) if m else None


def format_number(value: float) -> str:
    """Render ``12.0`` as ``12`` and ``12.5`` as ``12.5``."""

    return f"{value:g}"


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


@contextmanager
def timer() -> Iterator[Callable[[], float]]:
    """Context manager yielding a callable that returns elapsed seconds."""

    start = time.perf_counter()
    yield lambda: time.perf_counter() - start


__all__ = [
    "setup_logger",
    "read_json",
    "normalize_whitespace",
    "dedupe_preserve",
    "parse_percent",
    "parse_percents",
    "parse_proof",
    "format_number",
    "clamp",
    "timer",
]
