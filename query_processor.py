# query_processor.py
"""Query expansion and chemical-family gating for retrieval."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from models import GatingFilter
from utils import format_number, parse_proof


# Canonical name -> trade names and abbreviations seen on product listings.
SYNONYM_GROUPS: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    ("nitric acid", ("aqua fortis", "rfna", "red fuming nitric acid")),
    ("sulfuric acid", ("oil of vitriol", "oleum", "fuming sulfuric acid")),
    ("hydrochloric acid", ("muriatic acid",)),
    ("sodium hydroxide", ("caustic soda", "lye")),
    ("potassium hydroxide", ("caustic potash",)),
    ("ammonia", ("spirits of ammonia",)),
    ("acetic acid", ("vinegar",)),
    ("ethanol", ("ethyl alcohol", "denatured alcohol")),
    ("isopropyl alcohol", ("isopropanol", "2-propanol", "ipa")),
    ("kerosene", ("k-1", "k1")),
    ("hexane", ("hexanes", "n-hexane")),
    ("sodium hypochlorite", ("bleach", "hypochlorite solution", "liquid bleach")),
)


def _term_pattern(term: str) -> re.Pattern:
    return re.compile(r"(?<![a-z0-9])" + re.escape(term) + r"(?![a-z0-9])")


# Whole-word matches only.
_SYNONYM_PATTERNS: Tuple[Tuple[str, Tuple[re.Pattern, ...]], ...] = tuple(
    (" ".join((canonical,) + alternates), tuple(_term_pattern(t) for t in (canonical,) + alternates))
    for canonical, alternates in SYNONYM_GROUPS
)


# (family detector, base_name regex, optional class regex). First match wins.
GATING_FAMILIES: Tuple[Tuple[re.Pattern, str, Optional[str]], ...] = (
    (re.compile(r"(\bnitric\b|aqua\s+fortis|rfna|red\s+fuming)"), r"nitric acid|nitrating acid", None),
    (re.compile(r"(\bsulfuric\b|oleum|fuming\s+sulfuric|oil\s+of\s+vitriol)"), r"sulfuric acid|oleum", None),
    (re.compile(r"(\bhydrochloric\b|muriatic)"), r"hydrochloric acid", None),
    (re.compile(r"(\bacetic\b|vinegar)"), r"acetic acid", None),
    (re.compile(r"(\bsodium\s+hydroxide\b|\blye\b|caustic\s+soda)"), r"sodium hydroxide", None),
    (re.compile(r"(\bpotassium\s+hydroxide\b|caustic\s+potash)"), r"potassium hydroxide", None),
    (re.compile(r"(\bhydrogen\s+peroxide\b)"), r"hydrogen peroxide", None),
    (re.compile(r"(\bhypochlorite\b|bleach)"), r"hypochlorite solutions", None),
    (re.compile(r"(denatured\s+alcohol|\bethanol\b|\bethyl\s+alcohol)"), r"ethanol|ethyl alcohol|alcohols, n\.o\.s\.", r"^3"),
    (re.compile(r"(isopropyl\s+alcohol|isopropanol|2-propanol|\bipa\b)"), r"isopropyl alcohol|isopropanol", r"^3"),
    (
        re.compile(
            r"(petroleum|mineral\s+spirits|white\s+spirit|naphtha|naptha|vm&p|petroleum\s+ether"
            r"|ligroin|hydrocarbon|paint\s+thinner)"
        ),
        r"petroleum distillates|hydrocarbons, liquid|naphtha|white spirits",
        r"^3",
    ),
    (re.compile(r"(\bn-?hexane\b|\bhexanes?\b|\bheptane\b|\bpentane\b)"), r"hexane|hexanes|n-hexane", r"^3"),
    (re.compile(r"(\bkerosene\b|\bk-?1\b)"), r"kerosene", r"^3"),
)


def expand_query(query: str) -> str:
    """Widen lexical recall with synonym groups and a proof-to-percent hint.

    ``"Everclear 190 proof"`` gains ``" 95%"`` because the regulatory table
    expresses alcohol strength by volume, never in proof.
    """

    lowered = (query or "").lower()
    extra: List[str] = []
    for group, patterns in _SYNONYM_PATTERNS:
        if any(p.search(lowered) for p in patterns):
            extra.append(group)

    proof_pct = ""
    proof = parse_proof(query or "")
    if proof is not None:
        proof_pct = f" {format_number(round(proof / 2, 1))}%"

    expanded = f"{query}{proof_pct}"
    return f"{expanded} {' '.join(extra)}" if extra else expanded


def detect_gating_filters(query: str) -> Optional[GatingFilter]:
    """Return the metadata filter for the first chemical family found in ``query``."""

    lowered = (query or "").lower()
    for detector, base_regex, class_regex in GATING_FAMILIES:
        if detector.search(lowered):
            return GatingFilter(base_name=base_regex, class_regex=class_regex)
    return None


__all__ = ["SYNONYM_GROUPS", "GATING_FAMILIES", "expand_query", "detect_gating_filters"]
