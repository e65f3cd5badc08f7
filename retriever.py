# retriever.py
"""Hybrid retriever combining FAISS vector search with BM25 over the HMT index."""

from __future__ import annotations

import re
from typing import Any, List, Mapping, Optional, Sequence

import faiss
import numpy as np
from rank_bm25 import BM25Okapi

from config import HYBRID_ALPHA, RETRIEVAL_CANDIDATES
from embeddings import EmbeddingError, l2_normalize
from models import GatingFilter, IndexedDocument, ScoredDocument
from utils import setup_logger


logger = setup_logger("retriever")

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:[.\-][a-z0-9]+)*")


def _tokenize(text: str) -> List[str]:
    return _TOKEN_RE.findall((text or "").lower())


class HybridRetriever:
    """Blend cosine similarity and normalised BM25 as ``alpha*cos + (1-alpha)*bm25``."""

    def __init__(
        self,
        docs: Sequence[IndexedDocument],
        embeddings: np.ndarray,
        dim: int,
        alpha: float = HYBRID_ALPHA,
    ) -> None:
        self.docs: List[IndexedDocument] = list(docs)
        self.dim = int(dim)
        self.alpha = alpha
        self.index = faiss.IndexFlatIP(self.dim)
        self.bm25: Optional[BM25Okapi] = None

        if self.docs:
            matrix = np.ascontiguousarray(l2_normalize(np.asarray(embeddings, dtype=np.float32)))
            if matrix.shape != (len(self.docs), self.dim):
                raise ValueError(f"Embedding matrix shape {matrix.shape} does not match {len(self.docs)} docs x {self.dim}")
            self.index.add(matrix)
            self.bm25 = BM25Okapi([_tokenize(d.text) for d in self.docs])

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], default_dim: int = 512, alpha: float = HYBRID_ALPHA) -> "HybridRetriever":
        """Build from the ``{dim, docs: [{id, text, metadata, embedding}]}`` index file."""

        dim = int(payload.get("dim") or default_dim)
        docs: List[IndexedDocument] = []
        vectors: List[List[float]] = []
        skipped = 0
        for i, raw in enumerate(payload.get("docs") or []):
            if not isinstance(raw, Mapping):
                skipped += 1
                continue
            embedding = raw.get("embedding")
            metadata = raw.get("metadata") or {}
            if not isinstance(embedding, list) or len(embedding) != dim or not isinstance(metadata, Mapping):
                skipped += 1
                continue
            docs.append(
                IndexedDocument(
                    id=str(raw.get("id") or i),
                    text=str(raw.get("text") or ""),
                    metadata=dict(metadata),
                )
            )
            vectors.append(embedding)
        if skipped:
            logger.warning("Skipped %s malformed index documents (expected %s-d embeddings)", skipped, dim)

        matrix = np.asarray(vectors, dtype=np.float32).reshape(len(vectors), dim)
        return cls(docs, matrix, dim, alpha=alpha)

    def search(
        self,
        query_vec: np.ndarray,
        query_text: str,
        k: int = RETRIEVAL_CANDIDATES,
        filters: Optional[GatingFilter] = None,
        alpha: Optional[float] = None,
    ) -> List[ScoredDocument]:
        if not self.docs or self.bm25 is None:
            return []

        vec = np.asarray(query_vec, dtype=np.float32).reshape(1, -1)
        if vec.shape[1] != self.dim:
            raise EmbeddingError(f"Query vector has dimension {vec.shape[1]}, index expects {self.dim}")
        vec = np.ascontiguousarray(l2_normalize(vec))

        allowed = [i for i, d in enumerate(self.docs) if filters is None or filters.matches(d.metadata)]
        if not allowed:
            return []

        n = len(self.docs)
        scores, indices = self.index.search(vec, n)
        cosine = np.zeros(n, dtype=np.float32)
        valid = indices[0] >= 0
        cosine[indices[0][valid]] = scores[0][valid]
        cosine = np.clip(cosine, 0.0, 1.0)

        lexical = np.clip(np.asarray(self.bm25.get_scores(_tokenize(query_text)), dtype=np.float32), 0.0, None)
        top_lexical = float(lexical[allowed].max())
        if top_lexical > 0:
            lexical = lexical / top_lexical
        else:
            lexical = np.zeros(n, dtype=np.float32)

        a = self.alpha if alpha is None else alpha
        fused = a * cosine + (1 - a) * lexical

        ranked = sorted(allowed, key=lambda i: float(fused[i]), reverse=True)[: max(1, k)]
        return [ScoredDocument(doc=self.docs[i], score=float(fused[i])) for i in ranked]


__all__ = ["HybridRetriever"]
