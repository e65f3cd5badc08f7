# models.py
"""Data model shared by every classification layer."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, TypedDict


HAZARD_CLASSES = ("1", "2", "3", "4.1", "4.2", "4.3", "5.1", "5.2", "6.1", "6.2", "7", "8", "9")
PACKING_GROUPS = ("I", "II", "III", "NONE")

CFR_REF = "49 CFR 172.101"
ERG_REF = "ERG 2024"

_UN_RE = re.compile(r"^\s*(?:UN|NA)?\s*(\d{4})\s*$", re.IGNORECASE)


class RegulatoryRow(TypedDict, total=False):
    id_number: str
    base_name: str
    qualifier: Optional[str]
    class_or_division: Optional[str]
    packing_group: Optional[str]
    label_codes: List[str]
    special_provisions: List[str]
    packaging: Dict[str, Any]
    quantity_limitations: Dict[str, Any]
    vessel_stowage: Dict[str, Any]


def normalize_packing_group(value: Optional[str]) -> Optional[str]:
    """Map raw table text to ``I``/``II``/``III``; any other non-empty value is ``NONE``."""

    pg = str(value or "").strip().upper()
    if pg in ("I", "II", "III"):
        return pg
    return "NONE" if pg else None


def normalize_un_number(value: Optional[str]) -> Optional[str]:
    """Return ``UN`` + four digits, leaving unrecognised identifiers untouched."""

    if not value:
        return None
    text = str(value).strip()
    m = _UN_RE.match(text)
    if m and not text.upper().startswith("NA"):
        return f"UN{m.group(1)}"
    return text


def shipping_name(base_name: str, qualifier: Optional[str] = None) -> str:
    return f"{base_name}, {qualifier}" if qualifier else base_name


# Enrichment fields. Each shape is optional on a Classification; downstream
# consumers only rely on presence, so empty cells collapse to ``None``.


@dataclass(frozen=True)
class Packaging:
    kind: ClassVar[str] = "packaging"
    exceptions: Optional[str] = None
    non_bulk: Optional[str] = None
    bulk: Optional[str] = None

    @classmethod
    def from_mapping(cls, value: Any) -> Optional["Packaging"]:
        if not isinstance(value, Mapping):
            return None
        item = cls(
            exceptions=_cell(value.get("exceptions")),
            non_bulk=_cell(value.get("non_bulk")),
            bulk=_cell(value.get("bulk")),
        )
        return item if any(asdict(item).values()) else None


@dataclass(frozen=True)
class QuantityLimitations:
    kind: ClassVar[str] = "quantity_limitations"
    passenger_aircraft_rail: Optional[str] = None
    cargo_aircraft_only: Optional[str] = None

    @classmethod
    def from_mapping(cls, value: Any) -> Optional["QuantityLimitations"]:
        if not isinstance(value, Mapping):
            return None
        item = cls(
            passenger_aircraft_rail=_cell(value.get("passenger_aircraft_rail")),
            cargo_aircraft_only=_cell(value.get("cargo_aircraft_only")),
        )
        return item if any(asdict(item).values()) else None


@dataclass(frozen=True)
class VesselStowage:
    kind: ClassVar[str] = "vessel_stowage"
    location: Optional[str] = None
    other: Optional[str] = None

    @classmethod
    def from_mapping(cls, value: Any) -> Optional["VesselStowage"]:
        if not isinstance(value, Mapping):
            return None
        item = cls(location=_cell(value.get("location")), other=_cell(value.get("other")))
        return item if any(asdict(item).values()) else None


@dataclass(frozen=True)
class SpecialProvisions:
    kind: ClassVar[str] = "special_provisions"
    codes: tuple = ()

    @classmethod
    def from_value(cls, value: Any) -> Optional["SpecialProvisions"]:
        if isinstance(value, str):
            codes = [c.strip() for c in value.split(",")]
        elif isinstance(value, Mapping):
            codes = [str(v).strip() for v in value.values()]
        elif isinstance(value, Sequence):
            codes = [str(c).strip() for c in value]
        else:
            return None
        codes = [c for c in codes if c]
        return cls(codes=tuple(codes)) if codes else None


def _cell(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass
class Citation:
    type: str
    ref: str
    entry: Optional[Dict[str, Any]] = None
    guide: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"type": self.type, "ref": self.ref}
        if self.entry is not None:
            out["entry"] = {k: v for k, v in self.entry.items() if v}
        if self.guide is not None:
            out["guide"] = self.guide
        return out


def cfr_citation(id_number: Optional[str], base_name: Optional[str], qualifier: Optional[str] = None) -> Citation:
    return Citation(
        type="CFR",
        ref=CFR_REF,
        entry={"id_number": id_number, "base_name": base_name, "qualifier": qualifier or None},
    )


@dataclass
class Classification:
    """Outcome of every classification path.

    A result without ``un_number`` but with ``exemption_reason`` means the item
    was verified as non-regulated; without either it means "unknown".
    ``search_method`` and ``search_time_ms`` are set only by the orchestrator.
    """

    un_number: Optional[str] = None
    proper_shipping_name: Optional[str] = None
    hazard_class: Optional[str] = None
    packing_group: Optional[str] = None
    confidence: float = 0.0
    source: str = "error"
    explanation: Optional[str] = None
    citations: List[Citation] = field(default_factory=list)
    erg_guide: Optional[str] = None
    labels: Optional[str] = None
    packaging: Optional[Packaging] = None
    quantity_limitations: Optional[QuantityLimitations] = None
    vessel_stowage: Optional[VesselStowage] = None
    special_provisions: Optional[SpecialProvisions] = None
    exemption_reason: Optional[str] = None
    search_method: Optional[str] = None
    search_time_ms: Optional[int] = None

    @property
    def is_regulated(self) -> bool:
        return bool(self.un_number) and not self.exemption_reason

    @classmethod
    def non_regulated(cls, reason: str, source: str = "rule-nonhaz", confidence: float = 0.95) -> "Classification":
        return cls(
            confidence=confidence,
            source=source,
            explanation=reason,
            exemption_reason=reason,
        )

    @classmethod
    def unresolved(cls, explanation: str, source: str = "rag", confidence: float = 0.1) -> "Classification":
        return cls(confidence=confidence, source=source, explanation=explanation)

    @classmethod
    def failed(cls, explanation: str = "Classification failed") -> "Classification":
        return cls(confidence=0.0, source="error", explanation=explanation)

    @classmethod
    def from_row(
        cls,
        row: Mapping[str, Any],
        *,
        confidence: float,
        source: str,
        explanation: Optional[str] = None,
        erg_guide: Optional[str] = None,
        citations: Optional[List[Citation]] = None,
    ) -> "Classification":
        """Build a result from a regulatory row or index-document metadata."""

        base_name = str(row.get("base_name") or "")
        qualifier = row.get("qualifier") or None
        id_number = normalize_un_number(row.get("id_number"))
        hazard_class = row.get("class_or_division") or row.get("class") or None
        labels = row.get("label_codes")
        return cls(
            un_number=id_number,
            proper_shipping_name=shipping_name(base_name, qualifier) if base_name else None,
            hazard_class=str(hazard_class) if hazard_class else None,
            packing_group=normalize_packing_group(row.get("packing_group")),
            confidence=confidence,
            source=source,
            explanation=explanation,
            citations=citations if citations is not None else [cfr_citation(id_number, base_name, qualifier)],
            erg_guide=erg_guide,
            labels=", ".join(str(code) for code in labels) if isinstance(labels, list) and labels else None,
            packaging=Packaging.from_mapping(row.get("packaging")),
            quantity_limitations=QuantityLimitations.from_mapping(row.get("quantity_limitations")),
            vessel_stowage=VesselStowage.from_mapping(row.get("vessel_stowage")),
            special_provisions=SpecialProvisions.from_value(row.get("special_provisions")),
        )

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "un_number": self.un_number,
            "proper_shipping_name": self.proper_shipping_name,
            "hazard_class": self.hazard_class,
            "packing_group": self.packing_group,
            "confidence": round(float(self.confidence), 4),
            "source": self.source,
        }
        optional = {
            "explanation": self.explanation,
            "erg_guide": self.erg_guide,
            "labels": self.labels,
            "exemption_reason": self.exemption_reason,
            "searchMethod": self.search_method,
            "searchTimeMs": self.search_time_ms,
        }
        out.update({k: v for k, v in optional.items() if v is not None})
        if self.citations:
            out["citations"] = [c.as_dict() for c in self.citations]
        for enrichment in (self.packaging, self.quantity_limitations, self.vessel_stowage, self.special_provisions):
            if enrichment is not None:
                out[enrichment.kind] = asdict(enrichment)
        return out


@dataclass
class IndexedDocument:
    id: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def base_name(self) -> str:
        return str(self.metadata.get("base_name") or "")

    @property
    def id_number(self) -> str:
        return str(self.metadata.get("id_number") or "")

    @property
    def qualifier(self) -> str:
        return str(self.metadata.get("qualifier") or "")


@dataclass
class ScoredDocument:
    doc: IndexedDocument
    score: float
    rerank_bonus: float = 0.0


@dataclass(frozen=True)
class GatingFilter:
    """Per-query metadata constraint applied before ranking."""

    base_name: str
    class_regex: Optional[str] = None

    def matches(self, metadata: Mapping[str, Any]) -> bool:
        if not re.search(self.base_name, str(metadata.get("base_name") or ""), re.IGNORECASE):
            return False
        if self.class_regex is not None:
            klass = metadata.get("class") or metadata.get("class_or_division") or ""
            return re.search(self.class_regex, str(klass)) is not None
        return True

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        out = {"base_name": {"regex": self.base_name}}
        if self.class_regex is not None:
            out["class"] = {"regex": self.class_regex}
        return out


@dataclass
class ValidationReport:
    is_valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"isValid": self.is_valid, "errors": list(self.errors), "warnings": list(self.warnings)}


@dataclass
class ConfidenceBreakdown:
    score: float
    factors: Dict[str, float]


__all__ = [
    "HAZARD_CLASSES",
    "PACKING_GROUPS",
    "CFR_REF",
    "ERG_REF",
    "RegulatoryRow",
    "normalize_packing_group",
    "normalize_un_number",
    "shipping_name",
    "Packaging",
    "QuantityLimitations",
    "VesselStowage",
    "SpecialProvisions",
    "Citation",
    "cfr_citation",
    "Classification",
    "IndexedDocument",
    "ScoredDocument",
    "GatingFilter",
    "ValidationReport",
    "ConfidenceBreakdown",
]
