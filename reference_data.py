# reference_data.py
"""Load and cache the pre-built reference files used by classification.

Four read-only inputs are produced by the upstream CFR/ERG extraction
tooling: the embedded HMT index, the flattened HMT rows, the ERG guide table
and the shipment history. Each is parsed at most once per ``ReferenceData``
instance; tests hand in preloaded values instead of paths.
"""

from __future__ import annotations

import argparse
import json
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from config import DEFAULT_INDEX_DIM, ERG_INDEX_PATH, HISTORY_PATH, HMT_INDEX_PATH, HMT_ROWS_PATH
from models import RegulatoryRow
from retriever import HybridRetriever
from utils import read_json, setup_logger


logger = setup_logger("reference_data")

T = TypeVar("T")

REBUILD_HINT = "Run scripts/extract-hmt-from-cfr.js and scripts/build-hmt-index.js."


class IndexLoadError(Exception):
    """Raised when the embedded HMT index cannot be read."""


class LazyValue(Generic[T]):
    """Single-initialisation cell. Failures are not cached, so a later call retries."""

    def __init__(self, factory: Callable[[], T]) -> None:
        self._factory = factory
        self._lock = threading.Lock()
        self._value: Optional[T] = None
        self._ready = False

    @property
    def ready(self) -> bool:
        return self._ready

    def get(self) -> T:
        if self._ready:
            return self._value  # type: ignore[return-value]
        with self._lock:
            if not self._ready:
                self._value = self._factory()
                self._ready = True
        return self._value  # type: ignore[return-value]


def _codes(value: Any) -> List[str]:
    if isinstance(value, str):
        value = value.split(",")
    if not isinstance(value, (list, tuple)):
        return []
    return [str(c).strip() for c in value if c and str(c).strip()]


def normalize_row(raw: Mapping[str, Any]) -> Optional[RegulatoryRow]:
    """Return a canonical regulatory row or ``None`` if it has no name."""

    base_name = str(raw.get("base_name") or "").strip()
    if not base_name:
        return None

    row = RegulatoryRow(
        id_number=str(raw.get("id_number") or "").strip().upper(),
        base_name=base_name,
        qualifier=str(raw.get("qualifier") or "").strip() or None,
        class_or_division=str(raw.get("class_or_division") or raw.get("class") or "").strip() or None,
        packing_group=str(raw.get("packing_group") or "").strip() or None,
        label_codes=_codes(raw.get("label_codes")),
        special_provisions=_codes(raw.get("special_provisions")),
    )
    for key in ("packaging", "quantity_limitations", "vessel_stowage"):
        if isinstance(raw.get(key), Mapping):
            row[key] = dict(raw[key])
    return row


def load_hmt_rows(path: Path) -> List[RegulatoryRow]:
    """Load the flattened HMT, skipping rows without a base name."""

    raw = read_json(path)
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON array")

    rows: List[RegulatoryRow] = []
    bad = 0
    for item in raw:
        norm = normalize_row(item) if isinstance(item, Mapping) else None
        if norm is None:
            bad += 1
            continue
        rows.append(norm)
    if bad:
        logger.warning("Skipped %s malformed HMT rows", bad)
    logger.info("Loaded %s HMT rows from %s", len(rows), path)
    return rows


def load_index_payload(path: Path) -> Dict[str, Any]:
    try:
        payload = read_json(path)
    except (OSError, json.JSONDecodeError) as exc:
        raise IndexLoadError(f"HMT index missing or unreadable at {path}: {exc}") from exc
    if not isinstance(payload, Mapping) or not isinstance(payload.get("docs"), list):
        raise IndexLoadError(f"HMT index at {path} has no 'docs' array")
    return dict(payload)


def build_retriever(payload: Mapping[str, Any]) -> HybridRetriever:
    try:
        retriever = HybridRetriever.from_payload(payload, default_dim=DEFAULT_INDEX_DIM)
    except (TypeError, ValueError) as exc:
        raise IndexLoadError(str(exc)) from exc
    logger.info("Loaded HMT index | %s documents | dim %s", len(retriever.docs), retriever.dim)
    return retriever


def load_erg(path: Path) -> Dict[str, str]:
    """UN number -> ERG guide. Values may be a bare guide or ``{"guide": ...}``."""

    raw = read_json(path)
    if not isinstance(raw, Mapping):
        raise ValueError(f"{path} must contain a JSON object")
    guides: Dict[str, str] = {}
    for un, value in raw.items():
        if isinstance(value, Mapping):
            value = value.get("guide") or value.get("guideNumber")
        if value:
            guides[str(un).upper()] = str(value)
    logger.info("Loaded %s ERG guide mappings", len(guides))
    return guides


def load_history(path: Path) -> List[Dict[str, Any]]:
    raw = read_json(path)
    if not isinstance(raw, list):
        raise ValueError(f"{path} must contain a JSON array")
    records = [dict(r) for r in raw if isinstance(r, Mapping)]
    logger.info("Loaded %s historical shipments", len(records))
    return records


def _optional(loader: Callable[[Path], T], path: Path, empty: Callable[[], T], label: str) -> Callable[[], T]:
    def load() -> T:
        try:
            return loader(path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("%s unavailable (%s); continuing without it", label, exc)
            return empty()

    return load


class ReferenceData:
    """Lazily loaded reference set shared by the file-backed classifier."""

    def __init__(
        self,
        index_path: Path = HMT_INDEX_PATH,
        rows_path: Path = HMT_ROWS_PATH,
        erg_path: Path = ERG_INDEX_PATH,
        history_path: Path = HISTORY_PATH,
        *,
        index_payload: Optional[Mapping[str, Any]] = None,
        rows: Optional[Iterable[Mapping[str, Any]]] = None,
        erg: Optional[Mapping[str, str]] = None,
        history: Optional[Iterable[Mapping[str, Any]]] = None,
    ) -> None:
        self.index_path = Path(index_path)
        if index_payload is not None:
            self._retriever = LazyValue(lambda: build_retriever(index_payload))
        else:
            self._retriever = LazyValue(lambda: build_retriever(load_index_payload(self.index_path)))

        if rows is not None:
            fixed_rows = [r for r in (normalize_row(x) for x in rows) if r is not None]
            self._rows = LazyValue(lambda: fixed_rows)
        else:
            self._rows = LazyValue(_optional(load_hmt_rows, Path(rows_path), list, "HMT rows"))

        if erg is not None:
            fixed_erg = {str(k).upper(): str(v) for k, v in erg.items()}
            self._erg = LazyValue(lambda: fixed_erg)
        else:
            self._erg = LazyValue(_optional(load_erg, Path(erg_path), dict, "ERG index"))

        if history is not None:
            fixed_history = [dict(h) for h in history]
            self._history = LazyValue(lambda: fixed_history)
        else:
            self._history = LazyValue(_optional(load_history, Path(history_path), list, "Shipment history"))

    def retriever(self) -> HybridRetriever:
        """Return the index retriever, raising ``IndexLoadError`` if it cannot be built."""

        return self._retriever.get()

    def hmt_rows(self) -> List[RegulatoryRow]:
        return self._rows.get()

    def erg_guides(self) -> Dict[str, str]:
        return self._erg.get()

    def erg_guide_for(self, un_number: Optional[str]) -> Optional[str]:
        if not un_number:
            return None
        return self.erg_guides().get(un_number.upper())

    def history(self) -> List[Dict[str, Any]]:
        return self._history.get()


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Load the reference files and print counts")
    parser.add_argument("--index", type=Path, default=HMT_INDEX_PATH, help="Path to the embedded HMT index")
    parser.add_argument("--rows", type=Path, default=HMT_ROWS_PATH, help="Path to the flattened HMT rows")
    args = parser.parse_args(argv)

    data = ReferenceData(index_path=args.index, rows_path=args.rows)
    try:
        retriever = data.retriever()
    except IndexLoadError as exc:
        logger.error("%s %s", exc, REBUILD_HINT)
        return 1
    logger.info(
        "Index docs %s | HMT rows %s | ERG guides %s | history %s",
        len(retriever.docs),
        len(data.hmt_rows()),
        len(data.erg_guides()),
        len(data.history()),
    )
    return 0


__all__ = [
    "IndexLoadError",
    "LazyValue",
    "REBUILD_HINT",
    "normalize_row",
    "load_hmt_rows",
    "load_index_payload",
    "build_retriever",
    "load_erg",
    "load_history",
    "ReferenceData",
]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
