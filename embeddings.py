# embeddings.py
"""Query-embedding providers for the regulatory index."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import httpx
import numpy as np
from sentence_transformers import SentenceTransformer

from config import (
    EMBED_API_KEY,
    EMBED_API_KEY_HEADER,
    EMBED_BASE_URL,
    EMBED_MODEL_NAME,
    EMBED_PROVIDER,
    EMBED_REMOTE_MODEL,
    EMBED_TIMEOUT_SECONDS,
)
from utils import setup_logger


logger = setup_logger("embeddings")


class EmbeddingError(Exception):
    """Raised when a provider cannot produce usable vectors."""


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def hashing_vector(text: str, dim: int = 512, ngram: int = 3) -> np.ndarray:
    """Character n-gram hashing with L2 normalisation.

    Matches the ``local-hash`` vectors written by the index build tooling, which
    mixes each trigram with 32-bit FNV-style shifts, so query vectors land in
    the same space as the indexed documents.
    """

    vec = np.zeros(dim, dtype=np.float32)
    s = f" {(text or '').lower()} "
    for i in range(len(s) - ngram + 1):
        h = 2166136261
        for ch in s[i : i + ngram]:
            h = _to_int32(h) ^ ord(ch)
            h += sum(_to_int32(h << shift) for shift in (1, 4, 7, 8, 24))
        vec[abs(h) % dim] += 1.0
    norm = float(np.linalg.norm(vec)) or 1.0
    return vec / norm


def l2_normalize(matrix: np.ndarray) -> np.ndarray:
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    norms[norms == 0] = 1.0
    return matrix / norms


class BaseEmbedder:
    name = "base"

    def embed(self, texts: Sequence[str], dim: int) -> np.ndarray:
        raise NotImplementedError


class HashingEmbedder(BaseEmbedder):
    name = "local-hash"

    def embed(self, texts: Sequence[str], dim: int) -> np.ndarray:
        return np.vstack([hashing_vector(t, dim) for t in texts]).astype(np.float32)


class SentenceTransformerEmbedder(BaseEmbedder):
    name = "sentence-transformers"

    def __init__(self, model_name: str = EMBED_MODEL_NAME) -> None:
        self.model_name = model_name
        self._model: Optional[SentenceTransformer] = None

    def _ensure_loaded(self) -> SentenceTransformer:
        if self._model is None:
            try:
                self._model = SentenceTransformer(self.model_name)
            except (OSError, ValueError, RuntimeError) as exc:
                raise EmbeddingError(f"Could not load {self.model_name}: {exc}") from exc
        return self._model

    def embed(self, texts: Sequence[str], dim: int) -> np.ndarray:
        model = self._ensure_loaded()
        vecs = model.encode(
            list(texts),
            convert_to_numpy=True,
            normalize_embeddings=True,
        )
        return np.asarray(vecs, dtype=np.float32)


class OpenAICompatEmbedder(BaseEmbedder):
    name = "openai-compat"

    def __init__(
        self,
        base_url: str = EMBED_BASE_URL,
        api_key: str = EMBED_API_KEY,
        header: str = EMBED_API_KEY_HEADER,
        model: str = EMBED_REMOTE_MODEL,
        timeout: float = EMBED_TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.header = header
        self.model = model
        self.session = httpx.Client(timeout=timeout)

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def embed(self, texts: Sequence[str], dim: int) -> np.ndarray:
        if not self.is_configured:
            raise EmbeddingError("EMBED_API_KEY is not set")
        headers = {"Content-Type": "application/json"}
        headers[self.header] = f"Bearer {self.api_key}" if self.header == "Authorization" else self.api_key
        payload = {"input": list(texts), "model": self.model, "dimensions": dim}

        try:
            response = self.session.post(f"{self.base_url}/v1/embeddings", json=payload, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        try:
            rows = [item["embedding"] for item in response.json()["data"]]
        except (KeyError, TypeError, ValueError) as exc:
            raise EmbeddingError(f"Malformed embedding response: {exc}") from exc
        return l2_normalize(np.asarray(rows, dtype=np.float32))


@dataclass
class EmbeddingResult:
    vectors: np.ndarray
    backend: str
    used_fallback: bool


class EmbedderRouter:
    """Try the configured providers in order, then fall back to hashing."""

    def __init__(self, providers: Optional[List[BaseEmbedder]] = None, fallback: Optional[BaseEmbedder] = None) -> None:
        self.providers: List[BaseEmbedder] = list(providers or [])
        self.fallback = fallback or HashingEmbedder()

    @classmethod
    def from_config(cls, provider: str = EMBED_PROVIDER) -> "EmbedderRouter":
        provider = (provider or "local-hash").lower()
        if provider in ("sentence-transformers", "sentence_transformers"):
            return cls([SentenceTransformerEmbedder()])
        if provider in ("openai", "openai_compat"):
            return cls([OpenAICompatEmbedder()])
        if provider == "auto":
            remote = OpenAICompatEmbedder()
            return cls([remote] if remote.is_configured else [SentenceTransformerEmbedder()])
        if provider != "local-hash":
            logger.warning("Unknown EMBED_PROVIDER '%s'; using local hashing", provider)
        return cls([])

    def embed(self, texts: Sequence[str], dim: int) -> EmbeddingResult:
        for client in self.providers:
            try:
                vectors = client.embed(texts, dim)
                if vectors.ndim != 2 or vectors.shape[1] != dim:
                    raise EmbeddingError(f"{client.name} returned dimension {vectors.shape[-1]}, index expects {dim}")
                return EmbeddingResult(vectors=vectors, backend=client.name, used_fallback=False)
            except EmbeddingError as exc:
                logger.warning("Embedding failed with %s: %s", client.name, exc)
                continue
        return EmbeddingResult(
            vectors=self.fallback.embed(texts, dim),
            backend=self.fallback.name,
            used_fallback=bool(self.providers),
        )


__all__ = [
    "EmbeddingError",
    "hashing_vector",
    "l2_normalize",
    "BaseEmbedder",
    "HashingEmbedder",
    "SentenceTransformerEmbedder",
    "OpenAICompatEmbedder",
    "EmbeddingResult",
    "EmbedderRouter",
]
