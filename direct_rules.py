# direct_rules.py
"""Deterministic name/concentration lookups into the regulatory table.

A curated set of high-volume products where embedding retrieval has a history
of picking the wrong near-duplicate entry. Each rule only fires when its
pattern matches *and* the target row exists; otherwise the next rule is tried
and, failing all, control falls through to retrieval.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence, Tuple

from config import THRESHOLDS, Thresholds
from models import CFR_REF, Citation, Classification, RegulatoryRow, normalize_packing_group
from utils import format_number, parse_percent


DIRECT_CONFIDENCE = 0.92
HYPOCHLORITE_CONFIDENCE = 0.95


@dataclass(frozen=True)
class RuleContext:
    product_name: str
    rows: Sequence[RegulatoryRow]
    percent: Optional[float]
    thresholds: Thresholds


Resolver = Callable[[RuleContext], Optional[Classification]]


@dataclass(frozen=True)
class DirectRule:
    name: str
    pattern: re.Pattern
    resolve: Resolver

    def evaluate(self, ctx: RuleContext) -> Optional[Classification]:
        if not self.pattern.search(ctx.product_name):
            return None
        return self.resolve(ctx)


def pick_by_base_name(rows: Sequence[Mapping], regex: str, packing_group: Optional[str] = None) -> Optional[Mapping]:
    """First row whose lower-cased base name matches ``regex`` (and PG, when given)."""

    compiled = re.compile(regex)
    for row in rows:
        if not compiled.search(str(row.get("base_name") or "").lower()):
            continue
        if packing_group and str(row.get("packing_group") or "").upper() != packing_group:
            continue
        return row
    return None


def build_direct(row: Mapping, note: str, confidence: float = DIRECT_CONFIDENCE) -> Classification:
    return Classification.from_row(
        row,
        confidence=confidence,
        source="rule-direct",
        explanation=f"Direct CFR match for {note}",
    )


def _by_name(regex: str, note: str) -> Resolver:
    def resolve(ctx: RuleContext) -> Optional[Classification]:
        row = pick_by_base_name(ctx.rows, regex)
        return build_direct(row, note) if row else None

    return resolve


def _hydrochloric_by_pct(ctx: RuleContext) -> Optional[Classification]:
    if ctx.percent is None:
        return None
    pg = "III" if ctx.percent <= ctx.thresholds.hcl_pg3_max_pct else "II"
    row = pick_by_base_name(ctx.rows, r"hydrochloric acid", packing_group=pg)
    if row is None:
        return None
    return build_direct(row, f"Hydrochloric acid {format_number(ctx.percent)}% (PG {pg})")


def _ferric_chloride(ctx: RuleContext) -> Optional[Classification]:
    if re.search(r"anhydrous", ctx.product_name, re.IGNORECASE):
        row = pick_by_base_name(ctx.rows, r"ferric chloride, anhydrous")
        if row:
            return build_direct(row, "Ferric chloride, anhydrous")
    # Without "anhydrous", retail ferric chloride is the solution entry.
    row = pick_by_base_name(ctx.rows, r"ferric chloride, solution")
    if row is None:
        return None
    suffix = f" {format_number(ctx.percent)}%" if ctx.percent is not None else ""
    return build_direct(row, f"Ferric chloride solution{suffix}")


def _sulfuric_drain_cleaner(ctx: RuleContext) -> Optional[Classification]:
    row = next(
        (
            r
            for r in ctx.rows
            if re.search(r"sulfuric acid", str(r.get("base_name") or ""), re.IGNORECASE)
            and re.search(r"more than 51%", str(r.get("qualifier") or ""), re.IGNORECASE)
            and not re.search(r"not more than 51%", str(r.get("qualifier") or ""), re.IGNORECASE)
        ),
        None,
    ) or pick_by_base_name(ctx.rows, r"sulfuric acid")
    return build_direct(row, "Sulfuric acid drain cleaner") if row else None


def _ethanol(ctx: RuleContext) -> Optional[Classification]:
    if re.search(r"denatured", ctx.product_name, re.IGNORECASE):
        row = pick_by_base_name(ctx.rows, r"alcohols, n\.o\.s\.")
        if row:
            return build_direct(row, "Denatured alcohol")
    row = pick_by_base_name(ctx.rows, r"\bethanol\b|ethyl alcohol")
    return build_direct(row, "Ethanol") if row else None


def _hypochlorite(ctx: RuleContext) -> Optional[Classification]:
    row = next(
        (
            r
            for r in ctx.rows
            if re.search(r"hypochlorite solutions", str(r.get("base_name") or ""), re.IGNORECASE)
            and str(r.get("id_number") or "").upper() == "UN1791"
        ),
        None,
    )
    if row is None:
        return None

    pct = ctx.percent
    pg = row.get("packing_group")
    qualifier = ""
    if pct is not None:
        if pct > ctx.thresholds.hypochlorite_pg2_min_pct:
            pg, qualifier = "II", f" (>{format_number(pct)}% available chlorine)"
        elif pct > ctx.thresholds.nonhaz_hypochlorite_max_pct:
            pg, qualifier = "III", f" ({format_number(pct)}% available chlorine)"

    suffix = f" {format_number(pct)}%" if pct is not None else ""
    return Classification(
        un_number="UN1791",
        proper_shipping_name=f"Hypochlorite solutions{qualifier}",
        hazard_class="8",
        packing_group=normalize_packing_group(pg),
        confidence=HYPOCHLORITE_CONFIDENCE,
        source="rule-direct",
        explanation=f"Direct CFR match for Sodium hypochlorite/bleach{suffix}",
        citations=[
            Citation(
                type="CFR",
                ref=CFR_REF,
                entry={"id_number": "UN1791", "base_name": "Hypochlorite solutions", "qualifier": qualifier.strip() or None},
            )
        ],
        labels="8",
    )


_I = re.IGNORECASE

DIRECT_RULES: Tuple[DirectRule, ...] = (
    DirectRule(
        "ethyl-acetate",
        re.compile(r"(\bethyl\s+acetate\b|ethyl\s+ethanoate|\betoac\b|acetic\s+acid\s+ethyl\s+ester)", _I),
        _by_name(r"\bethyl acetate\b", "Ethyl acetate"),
    ),
    DirectRule("hexane", re.compile(r"(\bn-?hexane\b|\bhexanes?\b)", _I), _by_name(r"\bhexane", "Hexane family")),
    DirectRule("heptane", re.compile(r"\bheptane\b", _I), _by_name(r"\bheptane", "Heptane")),
    DirectRule("pentane", re.compile(r"\bpentane\b", _I), _by_name(r"\bpentane", "Pentane")),
    DirectRule("hydrochloric-pct", re.compile(r"(hydrochloric|muriatic)\s+acid", _I), _hydrochloric_by_pct),
    DirectRule(
        "hydrochloric",
        re.compile(r"(hydrochloric|muriatic)\s+acid", _I),
        _by_name(r"hydrochloric acid", "Hydrochloric acid"),
    ),
    DirectRule("ferric-chloride", re.compile(r"ferric\s+chloride", _I), _ferric_chloride),
    DirectRule("sulfuric-drain", re.compile(r"sulfuric(?=.*drain)|drain.*sulfuric", _I), _sulfuric_drain_cleaner),
    DirectRule("ethanol", re.compile(r"(denatured\s+alcohol|\bethanol\b|\bethyl\s+alcohol)", _I), _ethanol),
    DirectRule("methanol", re.compile(r"(\bmethanol\b|methyl\s+alcohol)", _I), _by_name(r"\bmethanol\b", "Methanol")),
    DirectRule(
        "mek",
        re.compile(r"(methyl\s+ethyl\s+ketone|\bmek\b|2-butanone|ethyl\s+methyl\s+ketone)", _I),
        _by_name(r"methyl ethyl ketone|2-butanone", "Methyl ethyl ketone (MEK)"),
    ),
    DirectRule(
        "isopropyl-alcohol",
        re.compile(r"(isopropyl\s+alcohol|isopropanol|2-propanol|\bipa\b)", _I),
        _by_name(r"isopropyl alcohol|isopropanol", "Isopropyl alcohol"),
    ),
    DirectRule("kerosene", re.compile(r"(\bkerosene\b|\bk-?1\b)", _I), _by_name(r"\bkerosene\b", "Kerosene")),
    DirectRule(
        "glycol-ether-ee-acetate",
        re.compile(r"glycol\s+ether\s+ee\s+acetate", _I),
        _by_name(r"ethylene glycol monoethyl ether acetate", "Glycol Ether EE Acetate"),
    ),
    DirectRule(
        "glycol-ether-ee",
        re.compile(r"glycol\s+ether\s+ee\b", _I),
        _by_name(r"ethylene glycol monoethyl ether(?! acetate)", "Glycol Ether EE (EGEE)"),
    ),
    DirectRule("hypochlorite", re.compile(r"(\bsodium\s+hypochlorite\b|\bhypochlorite\b|bleach)", _I), _hypochlorite),
)


def direct_map_to_hmt(
    product_name: str,
    rows: Sequence[RegulatoryRow],
    thresholds: Thresholds = THRESHOLDS,
    rules: Tuple[DirectRule, ...] = DIRECT_RULES,
) -> Optional[Classification]:
    """Return the first rule-backed classification, or ``None`` to fall through."""

    if not rows:
        return None
    ctx = RuleContext(
        product_name=product_name or "",
        rows=rows,
        percent=parse_percent(product_name or ""),
        thresholds=thresholds,
    )
    for rule in rules:
        result = rule.evaluate(ctx)
        if result is not None:
            return result
    return None


__all__ = ["DirectRule", "RuleContext", "DIRECT_RULES", "pick_by_base_name", "direct_map_to_hmt"]
