# cli.py
"""Command-line entry point: classify one product or a CSV of products."""

from __future__ import annotations

import argparse
import asyncio
import csv
import json
from pathlib import Path
from typing import Iterable, List, Optional

from config import BATCH_CONCURRENCY, database_configured
from confidence import get_confidence_score
from models import Classification
from orchestrator import BatchItem, ClassificationRouter
from utils import setup_logger
from validator import validate_classification


logger = setup_logger("cli")


def render(result: Classification, json_only: bool = False) -> dict:
    if json_only:
        return result.as_dict()
    breakdown = get_confidence_score(result)
    return {
        "classification": result.as_dict(),
        "validation": validate_classification(result).as_dict(),
        "score": {"score": round(breakdown.score, 4), "factors": breakdown.factors},
    }


def read_items(path: Path) -> List[BatchItem]:
    """Read ``sku,name`` rows; a header row with those column names is optional."""

    with path.open("r", encoding="utf-8", newline="") as fh:
        rows = [r for r in csv.reader(fh) if r and any(cell.strip() for cell in r)]
    if rows and [c.strip().lower() for c in rows[0][:2]] == ["sku", "name"]:
        rows = rows[1:]
    items = []
    for row in rows:
        if len(row) < 2:
            logger.warning("Skipping CSV row without a name: %s", row)
            continue
        items.append(BatchItem(sku=row[0].strip(), name=row[1].strip()))
    return items


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Classify products into DOT hazmat shipping entries")
    parser.add_argument("name", nargs="?", help="Product name, e.g. 'Hydrochloric Acid 31%%'")
    parser.add_argument("--sku", default=None)
    parser.add_argument("--csv", type=Path, default=None, help="CSV of sku,name rows to classify in batch")
    parser.add_argument("--concurrency", type=int, default=BATCH_CONCURRENCY)
    parser.add_argument("--no-database", action="store_true", help="Use only the bundled HMT index")
    parser.add_argument("--json-only", action="store_true", help="Print only the classification")
    args = parser.parse_args(argv)

    if not args.name and not args.csv:
        parser.error("a product name or --csv is required")

    prefer_database = database_configured() and not args.no_database
    router = ClassificationRouter()

    if args.csv:
        items = read_items(args.csv)
        results = asyncio.run(router.batch_classify(items, args.concurrency, prefer_database=prefer_database))
        print(json.dumps({sku: render(r, args.json_only) for sku, r in results.items()}, indent=2))
        return 0

    result = asyncio.run(router.classify(args.sku, args.name, prefer_database=prefer_database))
    print(json.dumps(render(result, args.json_only), indent=2))
    return 0 if validate_classification(result).is_valid else 2


__all__ = ["render", "read_items", "main"]


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    raise SystemExit(main())
