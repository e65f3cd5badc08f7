from __future__ import annotations

import copy
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).resolve().parents[1]))

import pytest

from classifier import FileClassifier
from embeddings import EmbedderRouter, hashing_vector
from reference_data import ReferenceData


INDEX_DIM = 128

HMT_ROWS = [
    {
        "id_number": "UN1173",
        "base_name": "Ethyl acetate",
        "class_or_division": "3",
        "packing_group": "II",
        "label_codes": ["3"],
        "special_provisions": ["IB2", "T4", "TP1"],
        "packaging": {"exceptions": "150", "non_bulk": "202", "bulk": "242"},
        "quantity_limitations": {"passenger_aircraft_rail": "5 L", "cargo_aircraft_only": "60 L"},
        "vessel_stowage": {"location": "B"},
    },
    {"id_number": "UN1208", "base_name": "Hexanes", "class_or_division": "3", "packing_group": "II", "label_codes": ["3"]},
    {"id_number": "UN1206", "base_name": "Heptanes", "class_or_division": "3", "packing_group": "II", "label_codes": ["3"]},
    {"id_number": "UN1789", "base_name": "Hydrochloric acid", "class_or_division": "8", "packing_group": "II", "label_codes": ["8"]},
    {"id_number": "UN1789", "base_name": "Hydrochloric acid", "class_or_division": "8", "packing_group": "III", "label_codes": ["8"]},
    {"id_number": "UN1791", "base_name": "Hypochlorite solutions", "class_or_division": "8", "packing_group": "III", "label_codes": ["8"]},
    {
        "id_number": "UN1830",
        "base_name": "Sulfuric acid",
        "qualifier": "with more than 51% acid",
        "class_or_division": "8",
        "packing_group": "II",
        "label_codes": ["8"],
    },
    {
        "id_number": "UN2796",
        "base_name": "Sulfuric acid",
        "qualifier": "with not more than 51% acid",
        "class_or_division": "8",
        "packing_group": "II",
        "label_codes": ["8"],
    },
    {
        "id_number": "UN1170",
        "base_name": "Ethanol or Ethyl alcohol or Ethanol solutions or Ethyl alcohol solutions",
        "class_or_division": "3",
        "packing_group": "II",
        "label_codes": ["3"],
    },
    {"id_number": "UN1987", "base_name": "Alcohols, n.o.s.", "class_or_division": "3", "packing_group": "II", "label_codes": ["3"]},
    {
        "id_number": "UN2031",
        "base_name": "Nitric acid",
        "qualifier": "other than red fuming, with more than 70% nitric acid",
        "class_or_division": "8",
        "packing_group": "I",
        "label_codes": ["8", "5.1"],
    },
    {
        "id_number": "UN2032",
        "base_name": "Nitric acid, red fuming",
        "class_or_division": "8",
        "packing_group": "I",
        "label_codes": ["8", "5.1", "6.1"],
    },
    {"id_number": "UN2582", "base_name": "Ferric chloride, solution", "class_or_division": "8", "packing_group": "III", "label_codes": ["8"]},
    {"id_number": "UN1230", "base_name": "Methanol", "class_or_division": "3", "packing_group": "II", "label_codes": ["3", "6.1"]},
    {
        "id_number": "UN1193",
        "base_name": "Ethyl methyl ketone or Methyl ethyl ketone",
        "class_or_division": "3",
        "packing_group": "II",
        "label_codes": ["3"],
    },
    {"id_number": "UN1219", "base_name": "Isopropanol or Isopropyl alcohol", "class_or_division": "3", "packing_group": "II", "label_codes": ["3"]},
    {"id_number": "UN1223", "base_name": "Kerosene", "class_or_division": "3", "packing_group": "III", "label_codes": ["3"]},
    {"id_number": "UN1824", "base_name": "Sodium hydroxide solution", "class_or_division": "8", "packing_group": "II", "label_codes": ["8"]},
    {"id_number": "UN1773", "base_name": "Ferric chloride, anhydrous", "class_or_division": "8", "packing_group": "III", "label_codes": ["8"]},
    {"id_number": "UN1265", "base_name": "Pentanes, liquid", "class_or_division": "3", "packing_group": "I", "label_codes": ["3"]},
    {
        "id_number": "UN1172",
        "base_name": "Ethylene glycol monoethyl ether acetate",
        "class_or_division": "3",
        "packing_group": "III",
        "label_codes": ["3"],
    },
    {"id_number": "UN1171", "base_name": "Ethylene glycol monoethyl ether", "class_or_division": "3", "packing_group": "III", "label_codes": ["3"]},
]

ERG_GUIDES = {"UN1830": "137", "UN1173": "129", "UN2032": "157"}

HISTORY = [
    {"sku": "SKU-42", "product_name": "Sulfuric acid 93% technical", "chosen_un": "UN1830"},
    {"sku": "SKU-7", "product_name": "Kerosene 1-K", "chosen_un": "UN1223"},
]


def row_to_text(row) -> str:
    """Document text in the shape the index build tooling writes."""

    parts = [row["base_name"]]
    if row.get("qualifier"):
        parts.append(row["qualifier"])
    parts.append(f"ID {row['id_number']}")
    parts.append(f"Class {row['class_or_division']}")
    parts.append(f"PG {row['packing_group']}")
    if row.get("label_codes"):
        parts.append(f"Labels {', '.join(row['label_codes'])}")
    return " — ".join(parts)


def build_index_payload(rows, dim: int = INDEX_DIM) -> dict:
    docs = []
    for i, row in enumerate(rows):
        text = row_to_text(row)
        docs.append(
            {
                "id": f"hmt-{i}",
                "text": text,
                "metadata": {
                    "id_number": row["id_number"],
                    "base_name": row["base_name"],
                    "qualifier": row.get("qualifier"),
                    "class": row["class_or_division"],
                    "packing_group": row["packing_group"],
                    "label_codes": list(row.get("label_codes") or []),
                },
                "embedding": hashing_vector(text, dim).tolist(),
            }
        )
    return {"dim": dim, "docs": docs}


@pytest.fixture
def hmt_rows():
    return copy.deepcopy(HMT_ROWS)


@pytest.fixture
def index_payload():
    return build_index_payload(HMT_ROWS)


@pytest.fixture
def reference(index_payload):
    return ReferenceData(index_payload=index_payload, rows=HMT_ROWS, erg=ERG_GUIDES, history=HISTORY)


@pytest.fixture
def file_classifier(reference):
    return FileClassifier(reference=reference, embedder=EmbedderRouter([]))


@pytest.fixture
def make_payload():
    return build_index_payload
