# orchestrator.py
"""Primary/fallback routing between the database and file-backed classifiers."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from classifier import BaseClassifier, FileClassifier
from config import BATCH_CONCURRENCY
from database_classifier import DatabaseClassifier
from models import Classification
from utils import setup_logger, timer


logger = setup_logger("orchestrator")

LOW_CONFIDENCE = 0.5
BOTH_FAILED = "Classification failed - both database and JSON RAG encountered errors"


@dataclass
class BatchItem:
    sku: str
    name: str

    @classmethod
    def coerce(cls, item: Union["BatchItem", Mapping[str, Any]]) -> "BatchItem":
        """Accept a ``BatchItem`` or a ``{sku, name}`` mapping."""

        if isinstance(item, BatchItem):
            return item
        if isinstance(item, Mapping):
            return cls(sku=str(item["sku"]), name=str(item.get("name") or ""))
        raise TypeError(f"Expected a BatchItem or {{sku, name}} mapping, got {type(item).__name__}")


class ClassificationRouter:
    """Try the primary backend, consult the fallback when it fails or is unsure."""

    def __init__(self, primary: Optional[BaseClassifier] = None, fallback: Optional[BaseClassifier] = None) -> None:
        self.primary = primary or DatabaseClassifier()
        self.fallback = fallback or FileClassifier()

    async def classify(
        self,
        sku: Optional[str],
        product_name: str,
        prefer_database: bool = True,
        enable_telemetry: bool = True,
    ) -> Classification:
        with timer() as elapsed:
            if prefer_database:
                try:
                    result, method = await self._primary_then_fallback(sku, product_name)
                except Exception as exc:
                    logger.error("Both classifiers failed for %r: %s", product_name, exc)
                    failed = Classification.failed(BOTH_FAILED)
                    failed.search_method = "database"
                    failed.search_time_ms = int(elapsed() * 1000)
                    return failed
            else:
                result, method = await self.fallback.classify(sku, product_name), "json"

            if enable_telemetry:
                result.search_method = method
                result.search_time_ms = int(elapsed() * 1000)
                logger.info(
                    "Classified %r | method %s | %sms | confidence %d%% | %s",
                    product_name,
                    method,
                    result.search_time_ms,
                    round(result.confidence * 100),
                    result.un_number if result.is_regulated else "Non-regulated",
                )
        return result

    async def _primary_then_fallback(self, sku: Optional[str], product_name: str) -> Tuple[Classification, str]:
        try:
            result = await self.primary.classify(sku, product_name)
        except Exception as exc:
            logger.warning("%s classifier failed, falling back to %s: %s", self.primary.name, self.fallback.name, exc)
            return await self.fallback.classify(sku, product_name), "json"

        if result.confidence >= LOW_CONFIDENCE:
            return result, "database"

        logger.info("Low confidence (%.2f) from %s, consulting %s", result.confidence, self.primary.name, self.fallback.name)
        try:
            other = await self.fallback.classify(sku, product_name)
        except Exception as exc:
            logger.warning("%s classifier failed, keeping %s result: %s", self.fallback.name, self.primary.name, exc)
            return result, "hybrid"
        if other.confidence > result.confidence:
            return other, "json"
        return result, "hybrid"

    async def batch_classify(
        self,
        items: Iterable[Union[BatchItem, Mapping[str, Any]]],
        concurrency: int = BATCH_CONCURRENCY,
        prefer_database: bool = True,
    ) -> Dict[str, Classification]:
        """Classify ``items`` in windows of ``concurrency``; duplicate SKUs keep the last result.

        A malformed item is reported under ``item-<position>`` and never aborts the batch.
        """

        items = list(items)
        size = max(1, concurrency)
        results: Dict[str, Classification] = {}
        for start in range(0, len(items), size):
            window = list(enumerate(items[start : start + size], start))
            outcomes = await asyncio.gather(
                *(self._classify_item(position, item, prefer_database) for position, item in window)
            )
            for sku, outcome in outcomes:
                results[sku] = outcome
            logger.info("Batch classified %s/%s products", min(start + size, len(items)), len(items))
        return results

    async def _classify_item(self, position: int, item: Any, prefer_database: bool) -> Tuple[str, Classification]:
        try:
            batch_item = BatchItem.coerce(item)
        except (KeyError, TypeError) as exc:
            logger.warning("Malformed batch item at %s: %s", position, exc)
            return f"item-{position}", Classification.failed(f"Invalid batch item: {exc}")
        try:
            return batch_item.sku, await self.classify(batch_item.sku, batch_item.name, prefer_database=prefer_database)
        except Exception as exc:
            logger.warning("Failed to classify %s: %s", batch_item.sku, exc)
            return batch_item.sku, Classification.failed("Classification failed")


_default: Optional[ClassificationRouter] = None


def default_router() -> ClassificationRouter:
    global _default
    if _default is None:
        _default = ClassificationRouter()
    return _default


async def classify_with_enhanced_rag(
    sku: Optional[str],
    product_name: str,
    prefer_database: bool = True,
    enable_telemetry: bool = True,
) -> Classification:
    return await default_router().classify(sku, product_name, prefer_database, enable_telemetry)


async def batch_classify(
    items: Iterable[Union[BatchItem, Mapping[str, Any]]],
    concurrency: int = BATCH_CONCURRENCY,
    prefer_database: bool = True,
) -> Dict[str, Classification]:
    return await default_router().batch_classify(items, concurrency, prefer_database)


__all__ = [
    "BatchItem",
    "ClassificationRouter",
    "LOW_CONFIDENCE",
    "default_router",
    "classify_with_enhanced_rag",
    "batch_classify",
]
