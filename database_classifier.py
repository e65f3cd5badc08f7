# database_classifier.py
"""Database-backed classification over PostgreSQL + pgvector.

Documents live in ``rag.documents`` (sources ``hmt``, ``products``, ``erg``,
``historical``) with a pgvector ``embedding`` column and a ``search_vector``
text column for full-text search. Query embeddings are cached by SHA-256 in
``rag.embedding_cache``; every answered query is logged to
``rag.query_history``.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import math
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

import psycopg
from psycopg.rows import dict_row

from classifier import BaseClassifier
from config import (
    DATABASE_URL,
    DB_EMBED_DIM,
    DB_SIMILARITY_THRESHOLD,
    DB_STATEMENT_TIMEOUT_MS,
    THRESHOLDS,
    Thresholds,
)
from embeddings import EmbedderRouter
from models import (
    Classification,
    Packaging,
    QuantityLimitations,
    SpecialProvisions,
    VesselStowage,
    cfr_citation,
    normalize_packing_group,
    normalize_un_number,
)
from nonhazard_rules import check_non_hazard
from utils import clamp, dedupe_preserve, normalize_whitespace, setup_logger


logger = setup_logger("database_classifier")


class DatabaseUnavailableError(Exception):
    """Raised when no database is configured or the connection is refused."""


KNOWN_PATTERN_CONFIDENCE = 0.92


@dataclass(frozen=True)
class KnownPattern:
    pattern: re.Pattern
    un_number: str
    hazard_class: str
    packing_group: str
    name: str


_I = re.IGNORECASE

KNOWN_PATTERNS = (
    KnownPattern(re.compile(r"sulfuric\s+acid\s+(drain|98)", _I), "UN1830", "8", "II", "Sulfuric acid"),
    KnownPattern(re.compile(r"sulfuric\s+acid.*51", _I), "UN2796", "8", "II", "Sulfuric acid"),
    KnownPattern(re.compile(r"hydrochloric\s+acid\s+(32|37)", _I), "UN1789", "8", "II", "Hydrochloric acid"),
    KnownPattern(re.compile(r"nitric\s+acid.*70", _I), "UN2031", "8", "I", "Nitric acid"),
    KnownPattern(re.compile(r"nitric\s+acid.*([56][0-9])", _I), "UN2031", "8", "II", "Nitric acid"),
    KnownPattern(re.compile(r"sodium\s+hydroxide.*50", _I), "UN1824", "8", "II", "Sodium hydroxide solution"),
    KnownPattern(re.compile(r"potassium\s+hydroxide.*45", _I), "UN1814", "8", "II", "Potassium hydroxide solution"),
    KnownPattern(re.compile(r"ethyl\s+acetate", _I), "UN1173", "3", "II", "Ethyl acetate"),
    KnownPattern(re.compile(r"isopropyl\s+alcohol|ipa\s+99", _I), "UN1219", "3", "II", "Isopropanol"),
    KnownPattern(re.compile(r"ethanol.*190\s+proof", _I), "UN1170", "3", "II", "Ethanol"),
    KnownPattern(re.compile(r"n-?hexane", _I), "UN1208", "3", "II", "Hexanes"),
    KnownPattern(re.compile(r"hydrogen\s+peroxide.*35", _I), "UN2014", "5.1", "II", "Hydrogen peroxide"),
    KnownPattern(re.compile(r"sodium\s+hypochlorite.*12", _I), "UN1791", "8", "III", "Hypochlorite solution"),
    KnownPattern(re.compile(r"ferric\s+chloride.*40", _I), "UN2582", "8", "III", "Ferric chloride solution"),
)


def match_known_pattern(product_name: str) -> Optional[Classification]:
    for known in KNOWN_PATTERNS:
        if known.pattern.search(product_name or ""):
            return Classification(
                un_number=known.un_number,
                proper_shipping_name=known.name,
                hazard_class=known.hazard_class,
                packing_group=known.packing_group,
                confidence=KNOWN_PATTERN_CONFIDENCE,
                source="database",
                explanation="Matched known chemical pattern",
                citations=[cfr_citation(known.un_number, known.name)],
            )
    return None


# SQL. Parameters are positional (%s); vectors are passed as pgvector text literals.

CACHE_LOOKUP_SQL = "SELECT embedding FROM rag.embedding_cache WHERE text_hash = %s LIMIT 1"
CACHE_TOUCH_SQL = (
    "UPDATE rag.embedding_cache SET hit_count = hit_count + 1, last_accessed_at = NOW() WHERE text_hash = %s"
)
CACHE_WRITE_SQL = """
INSERT INTO rag.embedding_cache (text, text_hash, embedding, embedding_model, created_at)
VALUES (%s, %s, %s::vector, %s, NOW())
ON CONFLICT (text_hash) DO UPDATE
SET hit_count = embedding_cache.hit_count + 1, last_accessed_at = NOW()
"""
VECTOR_SEARCH_SQL = """
SELECT id, source, text, metadata,
       1 - (embedding <=> %s::vector) AS similarity,
       base_relevance, click_count
FROM rag.documents
WHERE embedding IS NOT NULL
ORDER BY embedding <=> %s::vector
LIMIT %s
"""
KEYWORD_SEARCH_SQL = """
SELECT id, source, text, metadata,
       ts_rank(to_tsvector('english', search_vector), plainto_tsquery('english', %s)) AS rank
FROM rag.documents
WHERE to_tsvector('english', search_vector) @@ plainto_tsquery('english', %s)
ORDER BY rank DESC
LIMIT %s
"""
VERIFIED_PRODUCT_SQL = (
    "SELECT metadata FROM rag.documents WHERE source = 'products' AND source_id = %s AND is_verified = true LIMIT 1"
)
ERG_LOOKUP_SQL = (
    "SELECT metadata->>'guideNumber' AS guide FROM rag.documents "
    "WHERE source = 'erg' AND metadata->>'unNumber' = %s LIMIT 1"
)
TRACK_QUERY_SQL = """
INSERT INTO rag.query_history
    (query, returned_document_ids, clicked_document_ids, total_results, source, created_at)
VALUES (%s, %s::jsonb, %s::jsonb, %s, %s, NOW())
"""
CLICK_SQL = "UPDATE rag.documents SET click_count = click_count + 1 WHERE id = %s"


def vector_literal(vec: Sequence[float], expected_dim: Optional[int] = None) -> str:
    if expected_dim is not None and len(vec) != expected_dim:
        raise ValueError(f"Embedding dim {len(vec)} != expected {expected_dim}")
    # pgvector accepts '[v1,v2,...]'
    return "[" + ",".join(f"{float(x):.8f}" for x in vec) + "]"


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def normalize_db_query(query: str) -> str:
    return normalize_whitespace(re.sub(r"[^\w\s%]", " ", (query or "").lower()))


def query_variations(query: str) -> List[str]:
    """The normalised query plus formula and bare-number spellings."""

    q = normalize_db_query(query)
    out = [q]
    for name, formula in (
        ("sulfuric", "h2so4"),
        ("hydrochloric", "hcl"),
        ("nitric", "hno3"),
        ("sodium hydroxide", "naoh caustic"),
    ):
        if name in q and formula.split()[0] not in q:
            out.append(f"{q} {formula}")
    for pct in ("98", "32", "70", "50"):
        out.append(q.replace(f"{pct}%", pct))
    return dedupe_preserve(out)


@dataclass
class DocumentHit:
    id: str
    source: str
    text: str
    metadata: Dict[str, Any] = field(default_factory=dict)
    similarity: Optional[float] = None
    score: float = 0.0


def _metadata(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return {}
    return dict(value) if isinstance(value, dict) else {}


def rerank_results(query: str, hits: Sequence[DocumentHit]) -> List[DocumentHit]:
    """Exact product-name match +0.5, verified products +0.2, historical +0.1."""

    ql = (query or "").lower()

    def boosted(hit: DocumentHit) -> float:
        score = hit.score or 0.0
        if str(hit.metadata.get("name") or "").lower() == ql:
            score += 0.5
        if hit.source == "products":
            score += 0.2
        if hit.source == "historical":
            score += 0.1
        return score

    return sorted(hits, key=boosted, reverse=True)


def calculate_confidence(top: DocumentHit, hits: Sequence[DocumentHit]) -> float:
    confidence = top.similarity if top.similarity is not None else 0.5
    if top.source == "products":
        confidence = max(confidence, 0.9)
    if len(hits) > 1:
        top_un = top.metadata.get("unNumber")
        agreeing = sum(1 for h in hits if h.metadata.get("unNumber") == top_un)
        if agreeing > 1:
            confidence = min(confidence + 0.1 * (agreeing - 1), 0.99)
    return clamp(confidence, 0.3, 0.99)


class DatabaseClassifier(BaseClassifier):
    name = "database"

    def __init__(
        self,
        dsn: str = DATABASE_URL,
        embedder: Optional[EmbedderRouter] = None,
        connect: Optional[Callable[[], Any]] = None,
        thresholds: Thresholds = THRESHOLDS,
        dim: int = DB_EMBED_DIM,
        similarity_threshold: float = DB_SIMILARITY_THRESHOLD,
        statement_timeout_ms: int = DB_STATEMENT_TIMEOUT_MS,
        k: int = 10,
    ) -> None:
        self.dsn = dsn
        self.embedder = embedder or EmbedderRouter.from_config()
        self._connect = connect or self._default_connect
        self.thresholds = thresholds
        self.dim = dim
        self.similarity_threshold = similarity_threshold
        self.statement_timeout_ms = statement_timeout_ms
        self.k = k

    def _default_connect(self) -> psycopg.Connection:
        if not self.dsn:
            raise DatabaseUnavailableError("DATABASE_URL is not set")
        try:
            return psycopg.connect(self.dsn, row_factory=dict_row, autocommit=True)
        except psycopg.OperationalError as exc:
            raise DatabaseUnavailableError(f"Could not connect to database: {exc}") from exc

    async def classify(self, sku: Optional[str], product_name: str) -> Classification:
        product_name = product_name or ""
        nonhaz = check_non_hazard(product_name, self.thresholds)
        if nonhaz is not None:
            return nonhaz
        known = match_known_pattern(product_name)
        if known is not None:
            return known
        return await asyncio.to_thread(self._classify_sync, sku, product_name)

    def _classify_sync(self, sku: Optional[str], product_name: str) -> Classification:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SET statement_timeout = {int(self.statement_timeout_ms)}")

            if sku:
                verified = self._verified_product(conn, sku)
                if verified is not None:
                    return verified

            hits = self.hybrid_search(conn, product_name)
            if not hits:
                return Classification.unresolved("No matching hazmat classification found", source="database")

            top = rerank_results(product_name, hits)[0]
            meta = top.metadata
            un_number = normalize_un_number(meta.get("unNumber"))
            erg_guide = self._erg_guide(conn, un_number)
            self._track_query(conn, product_name, [h.id for h in hits], top.id)
            confidence = calculate_confidence(top, hits)

        name = meta.get("baseName") or meta.get("name")
        labels = meta.get("labels")
        return Classification(
            un_number=un_number,
            proper_shipping_name=name or None,
            hazard_class=str(meta["hazardClass"]) if meta.get("hazardClass") else None,
            packing_group=normalize_packing_group(meta.get("packingGroup")),
            confidence=confidence,
            source="database",
            explanation=f"Matched to {top.text} ({round(confidence * 100)}% confidence)",
            citations=[cfr_citation(un_number, name)] if un_number else [],
            erg_guide=erg_guide,
            labels=", ".join(str(x) for x in labels) if isinstance(labels, list) and labels else None,
            packaging=Packaging.from_mapping(meta.get("packaging")),
            quantity_limitations=QuantityLimitations.from_mapping(meta.get("quantity_limitations")),
            vessel_stowage=VesselStowage.from_mapping(meta.get("vesselStowage")),
            special_provisions=SpecialProvisions.from_value(meta.get("specialProvisions")),
        )

    def _verified_product(self, conn: psycopg.Connection, sku: str) -> Optional[Classification]:
        try:
            with conn.cursor() as cur:
                cur.execute(VERIFIED_PRODUCT_SQL, (sku,))
                row = cur.fetchone()
        except psycopg.Error as exc:
            logger.warning("Product lookup failed for %s: %s", sku, exc)
            return None
        if not row:
            return None
        meta = _metadata(row["metadata"])
        return Classification(
            un_number=normalize_un_number(meta.get("unNumber")),
            proper_shipping_name=meta.get("properShippingName") or meta.get("name"),
            hazard_class=meta.get("hazardClass"),
            packing_group=normalize_packing_group(meta.get("packingGroup")),
            confidence=1.0,
            source="database",
            explanation=f"Verified classification on file for SKU {sku}",
        )

    def query_embedding(self, conn: psycopg.Connection, text: str) -> List[float]:
        """Cached query embedding; cache failures are logged and bypassed."""

        key = text_hash(text)
        try:
            with conn.cursor() as cur:
                cur.execute(CACHE_LOOKUP_SQL, (key,))
                row = cur.fetchone()
                if row:
                    cur.execute(CACHE_TOUCH_SQL, (key,))
                    cached = row["embedding"]
                    return json.loads(cached) if isinstance(cached, str) else list(cached)
        except (psycopg.Error, ValueError) as exc:
            logger.warning("Embedding cache lookup failed: %s", exc)

        result = self.embedder.embed([text], self.dim)
        vec = [float(x) for x in result.vectors[0]]
        try:
            with conn.cursor() as cur:
                cur.execute(CACHE_WRITE_SQL, (text, key, vector_literal(vec, self.dim), result.backend))
        except psycopg.Error as exc:
            logger.warning("Failed to cache embedding: %s", exc)
        return vec

    def search_similar(self, conn: psycopg.Connection, query: str, k: int) -> List[DocumentHit]:
        literal = vector_literal(self.query_embedding(conn, query))
        with conn.cursor() as cur:
            cur.execute(VECTOR_SEARCH_SQL, (literal, literal, k))
            rows = cur.fetchall()

        hits: List[DocumentHit] = []
        for r in rows:
            similarity = float(r["similarity"])
            if similarity < self.similarity_threshold:
                continue
            score = (
                similarity * 0.7
                + float(r.get("base_relevance") or 0) / 100 * 0.2
                + min(float(r.get("click_count") or 0) / 100, 1.0) * 0.1
            )
            hits.append(
                DocumentHit(
                    id=str(r["id"]),
                    source=str(r["source"]),
                    text=str(r.get("text") or ""),
                    metadata=_metadata(r.get("metadata")),
                    similarity=similarity,
                    score=score,
                )
            )
        return hits

    def hybrid_search(self, conn: psycopg.Connection, query: str) -> List[DocumentHit]:
        """Vector hits over every query spelling, topped up with keyword-only hits."""

        k = self.k
        variations = query_variations(query)
        merged: Dict[str, DocumentHit] = {}
        per_variation = math.ceil(k / len(variations))
        for variation in variations:
            for hit in self.search_similar(conn, variation, per_variation):
                if hit.id not in merged or hit.score > merged[hit.id].score:
                    merged[hit.id] = hit
        for hit in self.search_similar(conn, query, k):
            if hit.id not in merged or hit.score > merged[hit.id].score:
                merged[hit.id] = hit

        try:
            with conn.cursor() as cur:
                cur.execute(KEYWORD_SEARCH_SQL, (query, query, k))
                keyword_rows = cur.fetchall()
        except psycopg.Error as exc:
            logger.warning("Keyword search failed, returning vector results only: %s", exc)
            keyword_rows = []

        for r in keyword_rows:
            rid = str(r["id"])
            if rid in merged:
                continue
            merged[rid] = DocumentHit(
                id=rid,
                source=str(r["source"]),
                text=str(r.get("text") or ""),
                metadata=_metadata(r.get("metadata")),
                score=float(r.get("rank") or 0) * 0.5,
            )

        return sorted(merged.values(), key=lambda h: h.score, reverse=True)[:k]

    def _erg_guide(self, conn: psycopg.Connection, un_number: Optional[str]) -> Optional[str]:
        if not un_number:
            return None
        try:
            with conn.cursor() as cur:
                cur.execute(ERG_LOOKUP_SQL, (un_number,))
                row = cur.fetchone()
        except psycopg.Error as exc:
            logger.warning("ERG lookup failed: %s", exc)
            return None
        return str(row["guide"]) if row and row.get("guide") else None

    def _track_query(self, conn: psycopg.Connection, query: str, returned: List[str], clicked: Optional[str]) -> None:
        try:
            with conn.cursor() as cur:
                cur.execute(
                    TRACK_QUERY_SQL,
                    (query, json.dumps(returned), json.dumps([clicked] if clicked else []), len(returned), "classifier"),
                )
                if clicked:
                    cur.execute(CLICK_SQL, (clicked,))
        except psycopg.Error as exc:
            logger.warning("Failed to track query: %s", exc)


__all__ = [
    "DatabaseUnavailableError",
    "KnownPattern",
    "KNOWN_PATTERNS",
    "match_known_pattern",
    "vector_literal",
    "text_hash",
    "query_variations",
    "DocumentHit",
    "rerank_results",
    "calculate_confidence",
    "DatabaseClassifier",
]
