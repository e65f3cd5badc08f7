from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

import reference_data
from classifier import FileClassifier
from embeddings import EmbedderRouter
from reference_data import (
    IndexLoadError,
    LazyValue,
    ReferenceData,
    build_retriever,
    load_erg,
    load_hmt_rows,
    load_index_payload,
    normalize_row,
)


def _write(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_normalize_row_cleans_fields():
    row = normalize_row(
        {
            "id_number": " un1830 ",
            "base_name": " Sulfuric acid ",
            "qualifier": "",
            "class": "8",
            "packing_group": "II",
            "label_codes": "8, ",
            "special_provisions": ["A3", "", "A7"],
            "packaging": {"non_bulk": "202"},
        }
    )
    assert row["id_number"] == "UN1830"
    assert row["base_name"] == "Sulfuric acid"
    assert row["qualifier"] is None
    assert row["class_or_division"] == "8"
    assert row["label_codes"] == ["8"]
    assert row["special_provisions"] == ["A3", "A7"]
    assert row["packaging"] == {"non_bulk": "202"}
    assert normalize_row({"id_number": "UN0000", "base_name": "  "}) is None


def test_load_hmt_rows_skips_malformed(tmp_path):
    path = _write(tmp_path / "hmt.json", [{"id_number": "UN1230", "base_name": "Methanol"}, {"id_number": "UN9999"}, "junk"])
    rows = load_hmt_rows(path)
    assert [r["base_name"] for r in rows] == ["Methanol"]


def test_load_hmt_rows_rejects_non_list(tmp_path):
    with pytest.raises(ValueError):
        load_hmt_rows(_write(tmp_path / "hmt.json", {"rows": []}))


def test_load_erg_accepts_both_shapes(tmp_path):
    path = _write(tmp_path / "erg.json", {"un1830": "137", "UN1173": {"guide": "129"}, "UN2032": {"guideNumber": 157}, "UN0001": None})
    assert load_erg(path) == {"UN1830": "137", "UN1173": "129", "UN2032": "157"}


def test_load_index_payload_errors(tmp_path):
    with pytest.raises(IndexLoadError):
        load_index_payload(tmp_path / "absent.json")
    with pytest.raises(IndexLoadError):
        load_index_payload(_write(tmp_path / "index.json", {"dim": 4}))
    bad = tmp_path / "broken.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(IndexLoadError):
        load_index_payload(bad)


def test_missing_optional_files_degrade_to_empty(tmp_path):
    data = ReferenceData(
        index_path=tmp_path / "index.json",
        rows_path=tmp_path / "rows.json",
        erg_path=tmp_path / "erg.json",
        history_path=tmp_path / "history.json",
    )
    assert data.hmt_rows() == []
    assert data.erg_guides() == {}
    assert data.erg_guide_for("UN1830") is None
    assert data.history() == []
    with pytest.raises(IndexLoadError):
        data.retriever()


def test_reference_data_reads_files_once(tmp_path, make_payload, hmt_rows):
    pytest.importorskip("faiss")
    pytest.importorskip("rank_bm25")

    index = _write(tmp_path / "index.json", make_payload(hmt_rows[:4], dim=16))
    erg = _write(tmp_path / "erg.json", {"UN1173": "129"})
    data = ReferenceData(index_path=index, rows_path=tmp_path / "rows.json", erg_path=erg, history_path=tmp_path / "h.json")

    first = data.retriever()
    index.unlink()
    assert data.retriever() is first
    assert len(first.docs) == 4
    assert data.erg_guide_for("un1173") == "129"


def test_lazy_value_caches_success_but_retries_failure():
    calls = []

    def factory():
        calls.append(1)
        if len(calls) == 1:
            raise OSError("not yet")
        return "ready"

    cell = LazyValue(factory)
    with pytest.raises(OSError):
        cell.get()
    assert not cell.ready
    assert cell.get() == "ready"
    assert cell.get() == "ready"
    assert len(calls) == 2


def test_main_reports_missing_index(tmp_path):
    assert reference_data.main(["--index", str(tmp_path / "absent.json"), "--rows", str(tmp_path / "rows.json")]) == 1


def test_main_loads_index(tmp_path, make_payload, hmt_rows):
    pytest.importorskip("faiss")
    pytest.importorskip("rank_bm25")

    index = _write(tmp_path / "index.json", make_payload(hmt_rows[:3], dim=16))
    rows = _write(tmp_path / "rows.json", hmt_rows[:3])
    assert reference_data.main(["--index", str(index), "--rows", str(rows)]) == 0


def test_normalize_row_coerces_non_string_names():
    row = normalize_row({"id_number": "UN1230", "base_name": 1230, "qualifier": 51})
    assert row["base_name"] == "1230"
    assert row["qualifier"] == "51"


def test_odd_rows_file_still_classifies(tmp_path):
    rows = _write(tmp_path / "rows.json", [{"base_name": 1230}, {"base_name": ["Solvent"], "qualifier": {"x": 1}}])
    data = ReferenceData(index_path=tmp_path / "absent.json", rows_path=rows, erg={}, history=[])
    result = asyncio.run(FileClassifier(reference=data, embedder=EmbedderRouter([])).classify(None, "Methanol"))
    assert result.source == "rag"
    assert result.confidence == pytest.approx(0.1)


def test_index_documents_with_non_mapping_metadata_are_skipped(make_payload, hmt_rows):
    pytest.importorskip("faiss")
    pytest.importorskip("rank_bm25")

    payload = make_payload(hmt_rows[:4], dim=16)
    payload["docs"][1]["metadata"] = [1, 2]
    payload["docs"].append("junk")
    retriever = build_retriever(payload)
    assert len(retriever.docs) == 3

    data = ReferenceData(index_payload=payload, rows=[], erg={}, history=[])
    result = asyncio.run(FileClassifier(reference=data, embedder=EmbedderRouter([])).classify(None, "Ethyl acetate"))
    assert result.source == "cfr-hmt"
