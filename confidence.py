# confidence.py
"""Turn a reranked top candidate into a scored, explained classification."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from models import (
    ERG_REF,
    Citation,
    Classification,
    ConfidenceBreakdown,
    ScoredDocument,
    cfr_citation,
)
from utils import clamp, setup_logger


logger = setup_logger("confidence")

HISTORY_BONUS = 0.1

_ETHYL_ACETATE = re.compile(r"ethyl\s+acetate|ethyl\s+ethanoate|\betoac\b|acetic\s+acid\s+ethyl\s+ester", re.IGNORECASE)
_ALCOHOL = re.compile(r"denatured\s+alcohol|\bethyl\s+alcohol|\bethanol", re.IGNORECASE)
_HEXANE = re.compile(r"\bn-?hexane\b|\bhexanes?\b", re.IGNORECASE)
_LABELS_IN_TEXT = re.compile(r"Labels ([^—]+)")


def history_count(
    history: Sequence[Mapping[str, Any]],
    sku: Optional[str],
    product_name: str,
    un_number: str,
) -> int:
    """Past shipments of this SKU (or a product whose name contains this one) under ``un_number``."""

    if not un_number:
        return 0
    needle = (product_name or "").lower()
    count = 0
    for record in history:
        same_sku = bool(sku) and record.get("sku") == sku
        same_name = bool(record.get("product_name")) and needle in str(record["product_name"]).lower()
        chosen = str(record.get("chosen_un") or "").upper()
        if (same_sku or same_name) and chosen == un_number.upper():
            count += 1
    return count


def base_confidence(score: float, matches_in_history: int) -> float:
    bonus = HISTORY_BONUS if matches_in_history > 0 else 0.0
    return clamp(0.6 + (score - 0.5) * 0.8 + bonus, 0.3, 0.99)


def apply_family_floors(confidence: float, product_name: str, base_name: str, id_number: str) -> float:
    name = product_name or ""
    if _ETHYL_ACETATE.search(name) and base_name.lower() == "ethyl acetate":
        confidence = max(confidence, 0.8)
    if _ALCOHOL.search(name) and re.search(r"proof", name, re.IGNORECASE) and id_number in ("UN1170", "UN1987"):
        confidence = max(confidence, 0.8)
    if re.search(r"sulfuric", name, re.IGNORECASE) and re.search(r"drain", name, re.IGNORECASE) and id_number == "UN1830":
        confidence = max(confidence, 0.75)
    if _HEXANE.search(name) and re.search(r"hexane", base_name, re.IGNORECASE):
        confidence = max(confidence, 0.8)
    return confidence


def build_explanation(
    product_name: str,
    base_name: str,
    qualifier: str,
    id_number: str,
    erg_guide: Optional[str],
    matches_in_history: int,
) -> str:
    matched = f"{base_name}, {qualifier}" if qualifier else base_name
    parts: List[Optional[str]] = [
        f"Matched '{product_name}' to '{matched}' in 49 CFR 172.101 (HMT).",
        "Concentration/qualifier aligned via numeric-aware reranker." if qualifier else None,
        f"ERG Guide {erg_guide} added for emergency reference." if erg_guide else None,
        f"Historical shipments confirm {matches_in_history} prior use of {id_number}." if matches_in_history > 0 else None,
    ]
    return " ".join(p for p in parts if p)


def synthesize(
    top: ScoredDocument,
    product_name: str,
    erg_guide: Optional[str] = None,
    matches_in_history: int = 0,
) -> Classification:
    """Assemble the ``cfr-hmt`` result for the winning index document."""

    doc = top.doc
    id_number = doc.id_number.upper()
    confidence = base_confidence(top.score, matches_in_history)
    confidence = apply_family_floors(confidence, product_name, doc.base_name, id_number)
    logger.debug("Top candidate %s (%s) score %.3f -> confidence %.2f", doc.id, id_number, top.score, confidence)

    citations: List[Citation] = [cfr_citation(id_number or None, doc.base_name, doc.qualifier)]
    if erg_guide:
        citations.append(Citation(type="ERG", ref=ERG_REF, guide=erg_guide))

    result = Classification.from_row(
        doc.metadata,
        confidence=confidence,
        source="cfr-hmt",
        explanation=build_explanation(
            product_name, doc.base_name, doc.qualifier, id_number, erg_guide, matches_in_history
        ),
        erg_guide=erg_guide,
        citations=citations,
    )
    if result.labels is None:
        m = _LABELS_IN_TEXT.search(doc.text or "")
        result.labels = m.group(1).strip() if m else None
    return result


# Secondary scoring view for UI ranking; not used by the classification path.
SCORE_WEIGHTS: Dict[str, float] = {"base": 0.4, "source": 0.3, "completeness": 0.2, "verification": 0.1}


def _source_factor(source: str) -> float:
    s = (source or "").lower()
    if "verified" in s:
        return 1.0
    if "database" in s:
        return 0.8
    if "cfr" in s:
        return 0.7
    if "historical" in s:
        return 0.6
    return 0.4


def get_confidence_score(result: Classification) -> ConfidenceBreakdown:
    required = (result.un_number, result.proper_shipping_name, result.hazard_class, result.packing_group)
    factors = {
        "base": float(result.confidence),
        "source": _source_factor(result.source),
        "completeness": sum(1 for f in required if f) / len(required),
        "verification": 1.0 if result.erg_guide else 0.0,
    }
    score = sum(SCORE_WEIGHTS[k] * v for k, v in factors.items())
    return ConfidenceBreakdown(score=score, factors=factors)


__all__ = [
    "history_count",
    "base_confidence",
    "apply_family_floors",
    "build_explanation",
    "synthesize",
    "SCORE_WEIGHTS",
    "get_confidence_score",
]
