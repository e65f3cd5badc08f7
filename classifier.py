# classifier.py
"""File-backed classification over the bundled HMT index."""

from __future__ import annotations

import asyncio
from typing import List, Optional

import numpy as np

from config import EMBED_TIMEOUT_SECONDS, RERANK_TOP_N, RETRIEVAL_CANDIDATES, THRESHOLDS, Thresholds
from confidence import history_count, synthesize
from direct_rules import direct_map_to_hmt
from embeddings import EmbedderRouter, EmbeddingError
from models import Classification, ScoredDocument
from nonhazard_rules import check_non_hazard
from query_processor import detect_gating_filters, expand_query
from reference_data import REBUILD_HINT, IndexLoadError, ReferenceData
from reranker import apply_family_overrides, local_rerank
from utils import setup_logger


logger = setup_logger("classifier")

NO_MATCH = "No close match in CFR HMT"


class BaseClassifier:
    """One classification backend. Implementations may raise on I/O failure."""

    name = "base"

    async def classify(self, sku: Optional[str], product_name: str) -> Classification:
        raise NotImplementedError


class FileClassifier(BaseClassifier):
    name = "json"

    def __init__(
        self,
        reference: Optional[ReferenceData] = None,
        embedder: Optional[EmbedderRouter] = None,
        thresholds: Thresholds = THRESHOLDS,
        embed_timeout: float = EMBED_TIMEOUT_SECONDS,
    ) -> None:
        self.reference = reference or ReferenceData()
        self.embedder = embedder or EmbedderRouter.from_config()
        self.thresholds = thresholds
        self.embed_timeout = embed_timeout

    async def classify(self, sku: Optional[str], product_name: str) -> Classification:
        product_name = product_name or ""

        nonhaz = check_non_hazard(product_name, self.thresholds)
        if nonhaz is not None:
            return nonhaz

        rows = await asyncio.to_thread(self.reference.hmt_rows)
        direct = direct_map_to_hmt(product_name, rows, self.thresholds)
        if direct is not None:
            return direct

        try:
            retriever = await asyncio.to_thread(self.reference.retriever)
        except IndexLoadError as exc:
            logger.warning("Index unavailable: %s", exc)
            return Classification.unresolved(f"HMT index missing. {REBUILD_HINT}")

        expanded = expand_query(product_name)
        try:
            qvec = await asyncio.wait_for(
                asyncio.to_thread(self._embed_query, expanded, retriever.dim),
                timeout=self.embed_timeout,
            )
            candidates = await asyncio.to_thread(self._search, retriever, qvec, expanded)
        except (EmbeddingError, asyncio.TimeoutError) as exc:
            logger.warning("Query embedding failed for %r: %s", product_name, str(exc) or "timed out")
            return Classification.unresolved(f"Embedding unavailable for HMT search. {REBUILD_HINT}")

        reranked = apply_family_overrides(product_name, local_rerank(product_name, candidates, RERANK_TOP_N))
        if not reranked:
            return Classification.unresolved(NO_MATCH)

        top = reranked[0]
        erg_guide, history = await asyncio.to_thread(
            lambda: (self.reference.erg_guide_for(top.doc.id_number), self.reference.history())
        )
        matches = history_count(history, sku, product_name, top.doc.id_number)
        return synthesize(top, product_name, erg_guide=erg_guide, matches_in_history=matches)

    def _embed_query(self, text: str, dim: int) -> np.ndarray:
        result = self.embedder.embed([text], dim)
        if result.used_fallback:
            logger.warning("Query embedded with %s fallback", result.backend)
        return result.vectors[0]

    def _search(self, retriever, qvec: np.ndarray, expanded: str) -> List[ScoredDocument]:
        gating = detect_gating_filters(expanded)
        candidates = retriever.search(qvec, expanded, k=RETRIEVAL_CANDIDATES, filters=gating)
        if not candidates and gating is not None:
            logger.warning("Gated search %s returned nothing; retrying ungated", gating.as_dict())
            candidates = retriever.search(qvec, expanded, k=RETRIEVAL_CANDIDATES)
        return candidates


_default: Optional[FileClassifier] = None


def default_classifier() -> FileClassifier:
    global _default
    if _default is None:
        _default = FileClassifier()
    return _default


async def classify(sku: Optional[str], product_name: str) -> Classification:
    """Classify one product with the process-wide file-backed classifier."""

    return await default_classifier().classify(sku, product_name)


__all__ = ["BaseClassifier", "FileClassifier", "NO_MATCH", "default_classifier", "classify"]
