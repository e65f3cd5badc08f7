# reranker.py
"""Numeric-aware reranking and family-specific promotions.

Retrieval alone cannot tell "Sulfuric acid with more than 51% acid" from
"... with not more than 51% acid": the texts differ by one word. The reranker
reads concentration expressions out of each candidate and rewards the ones
whose range contains the percentage in the product name.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence

from config import RERANK_TOP_N
from models import ScoredDocument
from utils import parse_percents


_NUM = r"(\d{1,3}(?:\.\d+)?)\s*(?:%|percent)"

_AT_LEAST_NOT_MORE = re.compile(r"at least\s*" + _NUM + r"[^%]*?not more than\s*" + _NUM)
_NOT_MORE_THAN = re.compile(r"not more than\s*" + _NUM)
_MORE_THAN = re.compile(r"(?<!not )more than\s*" + _NUM)
_EXACTLY = re.compile(r"(?:exactly|with)\s*" + _NUM)

# An exact hit on an open bound ("more than 51%" for a 51% query) is almost a mismatch.
OPEN_BOUND_DISTANCE = 40.0

POINT_WEIGHT = 0.15
INTERVAL_WEIGHT = 0.35
CONFLICT_PENALTY = 0.1


@dataclass(frozen=True)
class Interval:
    low: float
    high: float
    incl_low: bool = True
    incl_high: bool = True

    def contains(self, value: float) -> bool:
        above = value >= self.low if self.incl_low else value > self.low
        below = value <= self.high if self.incl_high else value < self.high
        return above and below

    def distance(self, value: float) -> float:
        if self.contains(value):
            return 0.0
        if (not self.incl_low and value == self.low) or (not self.incl_high and value == self.high):
            return OPEN_BOUND_DISTANCE
        if value < self.low:
            return self.low - value
        return value - self.high


def extract_intervals(text: str) -> List[Interval]:
    """Concentration ranges stated in a regulatory entry's text."""

    s = (text or "").lower()
    out: List[Interval] = []
    m = _AT_LEAST_NOT_MORE.search(s)
    if m:
        out.append(Interval(float(m.group(1)), float(m.group(2))))
    m = _NOT_MORE_THAN.search(s)
    if m:
        out.append(Interval(-math.inf, float(m.group(1)), incl_low=False))
    m = _MORE_THAN.search(s)
    if m:
        out.append(Interval(float(m.group(1)), math.inf, incl_low=False, incl_high=False))
    m = _EXACTLY.search(s)
    if m:
        v = float(m.group(1))
        out.append(Interval(v, v))
    return out


def numeric_affinity(query: str, text: str) -> float:
    """1.0 for an identical percentage, falling linearly to 0 at 50 points apart."""

    qs, ts = parse_percents(query), parse_percents(text)
    best = 0.0
    for q in qs:
        for t in ts:
            best = max(best, max(0.0, 1 - abs(q - t) / 50))
    return best


def interval_affinity(query: str, text: str, intervals: Optional[Sequence[Interval]] = None) -> float:
    qs = parse_percents(query)
    intervals = extract_intervals(text) if intervals is None else intervals
    best = 0.0
    for q in qs:
        for it in intervals:
            if it.contains(q):
                return 1.0
            best = max(best, max(0.0, 1 - it.distance(q) / 50))
    return best


def _family_bonus(query: str, text: str) -> float:
    q, t = query.lower(), text.lower()
    delta = 0.0
    if re.search(r"red\s+fuming|rfna", q):
        if re.search(r"red\s+fuming", t):
            delta += 0.6
        if "other than red fuming" in t:
            delta -= 0.5
    if re.search(r"oleum|fuming\s+sulfuric", q):
        if re.search(r"oleum|fuming", t):
            delta += 0.4
        if re.search(r"not\s+fuming|with not more than 51%", t):
            delta -= 0.2
    return delta


def local_rerank(query: str, candidates: Sequence[ScoredDocument], top_n: int = RERANK_TOP_N) -> List[ScoredDocument]:
    """Re-score ``candidates`` against the raw product name and keep the best ``top_n``."""

    qs = parse_percents(query)
    rescored: List[ScoredDocument] = []
    for cand in candidates:
        text = cand.doc.text or ""
        intervals = extract_intervals(text)
        delta = POINT_WEIGHT * numeric_affinity(query, text) + INTERVAL_WEIGHT * interval_affinity(query, text, intervals)
        if qs and intervals and not any(it.contains(q) for q in qs for it in intervals):
            delta -= CONFLICT_PENALTY
        delta += _family_bonus(query, text)
        rescored.append(replace(cand, score=cand.score + delta, rerank_bonus=delta))
    rescored.sort(key=lambda c: c.score, reverse=True)
    return rescored[:top_n]


def _promote(ranked: List[ScoredDocument], pick) -> List[ScoredDocument]:
    hit = next((c for c in ranked if pick(c)), None)
    if hit is None:
        return ranked
    return [hit] + [c for c in ranked if c is not hit]


_ETHYL_ACETATE = re.compile(r"ethyl\s+acetate|ethyl\s+ethanoate|\betoac\b|acetic\s+acid\s+ethyl\s+ester", re.IGNORECASE)
_HEXANE = re.compile(r"\bn-?hexane\b|\bhexanes?\b", re.IGNORECASE)


def apply_family_overrides(product_name: str, ranked: Sequence[ScoredDocument]) -> List[ScoredDocument]:
    """Move a known canonical entry to rank 0 when it is already among ``ranked``."""

    out = list(ranked)
    name = product_name or ""
    if _ETHYL_ACETATE.search(name):
        out = _promote(out, lambda c: c.doc.base_name.lower() == "ethyl acetate")
    if _HEXANE.search(name):
        out = _promote(out, lambda c: re.search(r"hexane", c.doc.base_name, re.IGNORECASE) is not None)
    if re.search(r"sulfuric", name, re.IGNORECASE) and re.search(r"drain", name, re.IGNORECASE):
        out = _promote(
            out,
            lambda c: c.doc.id_number.upper() == "UN1830"
            or (
                re.search(r"more than 51%", c.doc.text, re.IGNORECASE) is not None
                and re.search(r"not more than 51%", c.doc.text, re.IGNORECASE) is None
            ),
        )
    return out


__all__ = [
    "Interval",
    "extract_intervals",
    "numeric_affinity",
    "interval_affinity",
    "local_rerank",
    "apply_family_overrides",
]
