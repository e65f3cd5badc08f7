# nonhazard_rules.py
"""Short-circuit table for materials that are not regulated for transport.

Rules are evaluated in order against the raw product name. The first rule that
produces a reason wins and the caller stops: no index is touched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from config import THRESHOLDS, Thresholds
from models import Classification
from utils import format_number, parse_percent


Resolver = Callable[[str, Optional[float], Thresholds], Optional[str]]


@dataclass(frozen=True)
class NonHazardRule:
    name: str
    pattern: re.Pattern
    resolve: Resolver

    def evaluate(self, product_name: str, thresholds: Thresholds = THRESHOLDS) -> Optional[str]:
        lowered = (product_name or "").lower()
        if not self.pattern.search(lowered):
            return None
        return self.resolve(lowered, parse_percent(product_name), thresholds)


def _always(reason: str) -> Resolver:
    return lambda _name, _pct, _th: reason


def _acetic(name: str, pct: Optional[float], th: Thresholds) -> Optional[str]:
    if pct is not None and pct <= th.nonhaz_acetic_max_pct:
        return f"Acetic acid {format_number(pct)}% is not regulated for DOT (<= {format_number(th.nonhaz_acetic_max_pct)}%)"
    # Table vinegar is dilute by definition; only an explicit strong % overrides that.
    if "vinegar" in name and (pct is None or pct <= th.nonhaz_acetic_max_pct):
        return "Vinegar is typically not regulated for DOT"
    return None


def _hypochlorite(name: str, pct: Optional[float], th: Thresholds) -> Optional[str]:
    if pct is not None and pct <= th.nonhaz_hypochlorite_max_pct:
        return (
            f"Hypochlorite solution {format_number(pct)}% is not regulated for DOT "
            f"(<= {format_number(th.nonhaz_hypochlorite_max_pct)}% available chlorine)"
        )
    return None


# Glycol ethers (EGEE, EGBE, PGME) are regulated; only the plain glycols are exempt.
_NOT_ETHER = r"\b(?![\w\s-]*\bether)"

NON_HAZARD_RULES: Tuple[NonHazardRule, ...] = (
    NonHazardRule(
        "ethylene-glycol",
        re.compile(r"ethylene\s+glycol" + _NOT_ETHER),
        _always("Ethylene glycol is typically not regulated for DOT"),
    ),
    NonHazardRule(
        "propylene-glycol",
        re.compile(r"propylene\s+glycol" + _NOT_ETHER),
        _always("Propylene glycol is typically not regulated for DOT"),
    ),
    NonHazardRule("castor-oil", re.compile(r"castor\s+oil"), _always("Castor oil is typically not regulated for DOT")),
    NonHazardRule(
        "glycerin",
        re.compile(r"(vegetable\s+glycerin|glycerin|glycerol)"),
        _always("Glycerin is typically not regulated for DOT"),
    ),
    NonHazardRule(
        "magnesium-chloride",
        re.compile(r"magnesium\s+chloride"),
        _always("Magnesium chloride (incl. hexahydrate) is typically not regulated for DOT"),
    ),
    NonHazardRule(
        "magnesium-hydroxide",
        re.compile(r"magnesium\s+hydroxide"),
        _always("Magnesium hydroxide is typically not regulated for DOT"),
    ),
    NonHazardRule("dilute-acetic", re.compile(r"acetic\s+acid|vinegar"), _acetic),
    NonHazardRule("dilute-hypochlorite", re.compile(r"\bhypochlorite\b|bleach"), _hypochlorite),
)


def check_non_hazard(
    product_name: str,
    thresholds: Thresholds = THRESHOLDS,
    rules: Tuple[NonHazardRule, ...] = NON_HAZARD_RULES,
) -> Optional[Classification]:
    """Return a verified non-regulated result, or ``None`` to fall through."""

    for rule in rules:
        reason = rule.evaluate(product_name, thresholds)
        if reason:
            return Classification.non_regulated(reason)
    return None


__all__ = ["NonHazardRule", "NON_HAZARD_RULES", "check_non_hazard"]
