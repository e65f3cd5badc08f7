from __future__ import annotations

import json
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import cli
from models import Classification


def test_read_items_with_optional_header(tmp_path):
    path = tmp_path / "items.csv"
    path.write_text("sku,name\nA-1,Methanol\n\nA-2, Kerosene \nlonely\n", encoding="utf-8")
    items = cli.read_items(path)
    assert [(i.sku, i.name) for i in items] == [("A-1", "Methanol"), ("A-2", "Kerosene")]


def test_read_items_without_header(tmp_path):
    path = tmp_path / "items.csv"
    path.write_text("B-1,Acetone\n", encoding="utf-8")
    assert [i.name for i in cli.read_items(path)] == ["Acetone"]


def test_render_includes_validation_and_score():
    result = Classification(un_number="1234", hazard_class="8", proper_shipping_name="X", confidence=0.9, source="cfr-hmt")
    out = cli.render(result)
    assert out["classification"]["un_number"] == "1234"
    assert out["validation"]["isValid"] is False
    assert set(out["score"]["factors"]) == {"base", "source", "completeness", "verification"}
    assert cli.render(result, json_only=True) == result.as_dict()


def test_main_classifies_single_product_without_database(capsys):
    code = cli.main(["Ethylene Glycol 100%", "--sku", "EG-1", "--no-database"])
    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert out["classification"]["source"] == "rule-nonhaz"
    assert out["classification"]["searchMethod"] == "json"
    assert out["validation"]["isValid"] is True


def test_main_batch_from_csv(tmp_path, capsys):
    path = tmp_path / "items.csv"
    path.write_text("sku,name\nG-1,Castor Oil\nG-2,Glycerin\n", encoding="utf-8")
    code = cli.main(["--csv", str(path), "--no-database", "--json-only"])
    out = json.loads(capsys.readouterr().out)
    assert code == 0
    assert set(out) == {"G-1", "G-2"}
    assert out["G-2"]["source"] == "rule-nonhaz"
