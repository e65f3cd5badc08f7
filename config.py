# config.py
"""Global configuration for the hazmat classification core.

This module centralizes environment-driven settings: where the pre-built
reference files live, retrieval and embedding knobs, the optional database
backend, and the regulatory thresholds used by the rule tables.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv


# Load .env if present (silent no-op otherwise).
load_dotenv()


ROOT_DIR = Path(__file__).parent
DATA_DIR = Path(os.getenv("HAZMAT_DATA_DIR", str(ROOT_DIR / "data")))

# Reference files produced by the upstream CFR/ERG extraction tooling.
HMT_INDEX_PATH = Path(os.getenv("HMT_INDEX_PATH", str(DATA_DIR / "index-hmt-local.json")))
HMT_ROWS_PATH = Path(os.getenv("HMT_ROWS_PATH", str(DATA_DIR / "hmt-172101.json")))
ERG_INDEX_PATH = Path(os.getenv("ERG_INDEX_PATH", str(DATA_DIR / "erg-index.json")))
HISTORY_PATH = Path(os.getenv("HISTORY_PATH", str(DATA_DIR / "historical-shipping.json")))

RETRIEVAL_CANDIDATES = int(os.getenv("RETRIEVAL_CANDIDATES", "50"))
RERANK_TOP_N = int(os.getenv("RERANK_TOP_N", "10"))
HYBRID_ALPHA = float(os.getenv("HYBRID_ALPHA", "0.5"))  # weight of the vector score

EMBED_PROVIDER = os.getenv("EMBED_PROVIDER", "local-hash")  # "local-hash" | "sentence-transformers" | "openai_compat" | "auto"
EMBED_MODEL_NAME = os.getenv("EMBED_MODEL_NAME", "sentence-transformers/all-MiniLM-L6-v2")
EMBED_BASE_URL = os.getenv("EMBED_BASE_URL", "https://api.openai.com")
EMBED_API_KEY = os.getenv("EMBED_API_KEY", "")
EMBED_API_KEY_HEADER = os.getenv("EMBED_API_KEY_HEADER", "Authorization")
EMBED_REMOTE_MODEL = os.getenv("EMBED_REMOTE_MODEL", "text-embedding-3-small")
EMBED_TIMEOUT_SECONDS = float(os.getenv("EMBED_TIMEOUT_SECONDS", "15"))
DEFAULT_INDEX_DIM = int(os.getenv("DEFAULT_INDEX_DIM", "512"))

DATABASE_URL = os.getenv("DATABASE_URL", "")
DB_EMBED_DIM = int(os.getenv("DB_EMBED_DIM", "1536"))
DB_SIMILARITY_THRESHOLD = float(os.getenv("DB_SIMILARITY_THRESHOLD", "0.4"))
DB_STATEMENT_TIMEOUT_MS = int(os.getenv("DB_STATEMENT_TIMEOUT_MS", "5000"))

BATCH_CONCURRENCY = int(os.getenv("BATCH_CONCURRENCY", "5"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


@dataclass(frozen=True)
class Thresholds:
    """Concentration cut-offs taken from one reading of 49 CFR 172.101.

    Percentages are inclusive upper bounds unless the name says ``MIN``.
    """

    nonhaz_acetic_max_pct: float = 10.0
    nonhaz_hypochlorite_max_pct: float = 10.0
    hcl_pg3_max_pct: float = 20.0
    hypochlorite_pg2_min_pct: float = 20.0


THRESHOLDS = Thresholds(
    nonhaz_acetic_max_pct=float(os.getenv("NONHAZ_ACETIC_MAX_PCT", "10")),
    nonhaz_hypochlorite_max_pct=float(os.getenv("NONHAZ_HYPOCHLORITE_MAX_PCT", "10")),
    hcl_pg3_max_pct=float(os.getenv("HCL_PG3_MAX_PCT", "20")),
    hypochlorite_pg2_min_pct=float(os.getenv("HYPOCHLORITE_PG2_MIN_PCT", "20")),
)


def database_configured() -> bool:
    """Return True when a database DSN has been provided."""

    return bool(DATABASE_URL)


__all__ = [
    "ROOT_DIR",
    "DATA_DIR",
    "HMT_INDEX_PATH",
    "HMT_ROWS_PATH",
    "ERG_INDEX_PATH",
    "HISTORY_PATH",
    "RETRIEVAL_CANDIDATES",
    "RERANK_TOP_N",
    "HYBRID_ALPHA",
    "EMBED_PROVIDER",
    "EMBED_MODEL_NAME",
    "EMBED_BASE_URL",
    "EMBED_API_KEY",
    "EMBED_API_KEY_HEADER",
    "EMBED_REMOTE_MODEL",
    "EMBED_TIMEOUT_SECONDS",
    "DEFAULT_INDEX_DIM",
    "DATABASE_URL",
    "DB_EMBED_DIM",
    "DB_SIMILARITY_THRESHOLD",
    "DB_STATEMENT_TIMEOUT_MS",
    "BATCH_CONCURRENCY",
    "LOG_LEVEL",
    "Thresholds",
    "THRESHOLDS",
    "database_configured",
]
