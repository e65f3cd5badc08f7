from __future__ import annotations

from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from models import GatingFilter
from query_processor import detect_gating_filters, expand_query


def test_expand_query_adds_proof_as_percent():
    assert expand_query("Everclear 190 proof") == "Everclear 190 proof 95%"


def test_expand_query_adds_synonym_group():
    expanded = expand_query("Muriatic Acid 31%")
    assert expanded.startswith("Muriatic Acid 31%")
    assert "hydrochloric acid muriatic acid" in expanded


def test_expand_query_leaves_unknown_names_alone():
    assert expand_query("Acetone") == "Acetone"


@pytest.mark.parametrize(
    "query,base_regex,class_regex",
    [
        ("RFNA", "nitric acid|nitrating acid", None),
        ("Oleum 20%", "sulfuric acid|oleum", None),
        ("Hydrogen peroxide 35%", "hydrogen peroxide", None),
        ("Denatured alcohol", r"ethanol|ethyl alcohol|alcohols, n\.o\.s\.", "^3"),
        ("VM&P Naphtha", "petroleum distillates|hydrocarbons, liquid|naphtha|white spirits", "^3"),
        ("n-Hexane", "hexane|hexanes|n-hexane", "^3"),
    ],
)
def test_detect_gating_filters(query, base_regex, class_regex):
    gating = detect_gating_filters(query)
    assert gating == GatingFilter(base_name=base_regex, class_regex=class_regex)


def test_methanol_is_not_gated_as_ethanol():
    assert detect_gating_filters("Methanol") is None
    assert detect_gating_filters("Methyl alcohol") is None


def test_gating_filter_matches_metadata():
    gating = GatingFilter(base_name="hexane|hexanes", class_regex="^3")
    assert gating.matches({"base_name": "Hexanes", "class": "3"})
    assert not gating.matches({"base_name": "Hexanes", "class": "8"})
    assert not gating.matches({"base_name": "Heptanes", "class": "3"})
    assert gating.as_dict() == {"base_name": {"regex": "hexane|hexanes"}, "class": {"regex": "^3"}}


@pytest.mark.parametrize("query", ["Municipal Water Treatment", "Principal Degreaser", "SKUK1000 Cleaner"])
def test_abbreviations_only_match_whole_words(query):
    assert expand_query(query) == query
    assert detect_gating_filters(expand_query(query)) is None


def test_abbreviation_as_word_still_expands():
    expanded = expand_query("IPA 99%")
    assert "isopropyl alcohol isopropanol 2-propanol ipa" in expanded
    assert detect_gating_filters(expanded) == GatingFilter(base_name="isopropyl alcohol|isopropanol", class_regex="^3")
