from __future__ import annotations

import asyncio
from dataclasses import replace
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from classifier import BaseClassifier
from models import Classification
from orchestrator import BOTH_FAILED, BatchItem, ClassificationRouter


def _result(confidence: float, un: str = "UN1830", source: str = "database") -> Classification:
    return Classification(
        un_number=un,
        proper_shipping_name="Sulfuric acid",
        hazard_class="8",
        packing_group="II",
        confidence=confidence,
        source=source,
    )


class StubClassifier(BaseClassifier):
    def __init__(self, name, result=None, error=None, fail_on=(), delay=0.0):
        self.name = name
        self.result = result
        self.error = error
        self.fail_on = set(fail_on)
        self.delay = delay
        self.calls = []
        self.active = 0
        self.peak = 0

    async def classify(self, sku, product_name):
        self.calls.append((sku, product_name))
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None or product_name in self.fail_on:
                raise self.error or RuntimeError(f"cannot classify {product_name}")
            base = self.result or _result(0.8, source=self.name)
            return replace(base, explanation=product_name)
        finally:
            self.active -= 1


def _run(router, name="Sulfuric acid 93%", **kwargs):
    return asyncio.run(router.classify("SKU-1", name, **kwargs))


def test_confident_primary_wins():
    primary = StubClassifier("database", result=_result(0.9))
    fallback = StubClassifier("json")
    result = _run(ClassificationRouter(primary, fallback))
    assert result.search_method == "database"
    assert result.search_time_ms is not None and result.search_time_ms >= 0
    assert fallback.calls == []


def test_low_confidence_primary_consults_fallback_and_takes_better():
    primary = StubClassifier("database", result=_result(0.2))
    fallback = StubClassifier("json", result=_result(0.8, un="UN2796", source="cfr-hmt"))
    result = _run(ClassificationRouter(primary, fallback))
    assert result.un_number == "UN2796"
    assert result.search_method == "json"
    assert len(fallback.calls) == 1


def test_low_confidence_primary_kept_when_fallback_is_worse():
    primary = StubClassifier("database", result=_result(0.2))
    fallback = StubClassifier("json", result=_result(0.1, un="UN2796", source="rag"))
    result = _run(ClassificationRouter(primary, fallback))
    assert result.un_number == "UN1830"
    assert result.search_method == "hybrid"


def test_low_confidence_primary_kept_when_fallback_raises():
    primary = StubClassifier("database", result=_result(0.2))
    fallback = StubClassifier("json", error=RuntimeError("index broken"))
    result = _run(ClassificationRouter(primary, fallback))
    assert result.un_number == "UN1830"
    assert result.search_method == "hybrid"


def test_primary_failure_uses_fallback():
    primary = StubClassifier("database", error=ConnectionError("refused"))
    fallback = StubClassifier("json", result=_result(0.7, source="cfr-hmt"))
    result = _run(ClassificationRouter(primary, fallback))
    assert result.source == "cfr-hmt"
    assert result.search_method == "json"


def test_both_backends_failing_returns_error_result():
    primary = StubClassifier("database", error=ConnectionError("refused"))
    fallback = StubClassifier("json", error=RuntimeError("index broken"))
    result = _run(ClassificationRouter(primary, fallback))
    assert result.source == "error"
    assert result.confidence == 0
    assert result.explanation == BOTH_FAILED
    assert result.search_method == "database"
    assert result.search_time_ms is not None


def test_prefer_database_false_skips_primary():
    primary = StubClassifier("database", result=_result(0.9))
    fallback = StubClassifier("json", result=_result(0.6, source="cfr-hmt"))
    result = _run(ClassificationRouter(primary, fallback), prefer_database=False)
    assert primary.calls == []
    assert result.search_method == "json"


def test_prefer_database_false_propagates_fallback_errors():
    router = ClassificationRouter(StubClassifier("database"), StubClassifier("json", error=RuntimeError("boom")))
    with pytest.raises(RuntimeError):
        _run(router, prefer_database=False)


def test_telemetry_can_be_disabled():
    router = ClassificationRouter(StubClassifier("database", result=_result(0.9)), StubClassifier("json"))
    result = _run(router, enable_telemetry=False)
    assert result.search_method is None
    assert result.search_time_ms is None


def test_batch_isolates_failing_item():
    items = [BatchItem(sku=f"S{i}", name=f"Product {i}") for i in range(1, 6)]
    fallback = StubClassifier("json", fail_on={"Product 3"})
    router = ClassificationRouter(StubClassifier("database"), fallback)

    results = asyncio.run(router.batch_classify(items, concurrency=2, prefer_database=False))

    assert list(results) == ["S1", "S2", "S3", "S4", "S5"]
    assert results["S3"].source == "error"
    assert results["S3"].confidence == 0
    assert all(results[s].source == "json" for s in ("S1", "S2", "S4", "S5"))


def test_batch_with_both_backends_failing_for_one_item():
    items = [BatchItem(sku=f"S{i}", name=f"Product {i}") for i in range(1, 6)]
    primary = StubClassifier("database", fail_on={"Product 3"})
    fallback = StubClassifier("json", fail_on={"Product 3"})
    results = asyncio.run(ClassificationRouter(primary, fallback).batch_classify(items))
    assert len(results) == 5
    assert results["S3"].source == "error"
    assert results["S3"].explanation == BOTH_FAILED


def test_batch_duplicate_sku_keeps_last_result():
    items = [BatchItem(sku="A", name="Methanol"), BatchItem(sku="A", name="Acetone")]
    router = ClassificationRouter(StubClassifier("database"), StubClassifier("json"))
    results = asyncio.run(router.batch_classify(items, prefer_database=False))
    assert list(results) == ["A"]
    assert results["A"].explanation == "Acetone"


def test_batch_respects_concurrency_window():
    fallback = StubClassifier("json", delay=0.01)
    router = ClassificationRouter(StubClassifier("database"), fallback)
    items = [BatchItem(sku=str(i), name=f"Product {i}") for i in range(5)]
    asyncio.run(router.batch_classify(items, concurrency=2, prefer_database=False))
    assert fallback.peak == 2
    assert len(fallback.calls) == 5


def test_batch_accepts_mappings_and_isolates_malformed_items():
    items = [{"sku": "A", "name": "Acetone"}, {"name": "No sku"}, 42, BatchItem(sku="B", name="Methanol")]
    fallback = StubClassifier("json")
    router = ClassificationRouter(StubClassifier("database"), fallback)

    results = asyncio.run(router.batch_classify(items, concurrency=2, prefer_database=False))

    assert list(results) == ["A", "item-1", "item-2", "B"]
    assert results["A"].explanation == "Acetone"
    assert results["B"].explanation == "Methanol"
    assert results["item-1"].source == "error"
    assert results["item-2"].explanation.startswith("Invalid batch item")
    assert fallback.calls == [("A", "Acetone"), ("B", "Methanol")]


def test_batch_item_coerce():
    assert BatchItem.coerce({"sku": 7, "name": "Kerosene"}) == BatchItem(sku="7", name="Kerosene")
    item = BatchItem(sku="X", name="Y")
    assert BatchItem.coerce(item) is item
    with pytest.raises(TypeError):
        BatchItem.coerce(("X", "Y"))
