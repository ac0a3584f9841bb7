"""Application configuration."""

import os
from pathlib import Path
from dotenv import load_dotenv

# Base paths
BASE_DIR = Path(__file__).resolve().parent.parent

# Load .env from backend root (before any os.getenv calls)
load_dotenv(BASE_DIR / ".env")


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


# Database; a bare postgresql:// URL is run on psycopg 3 (postgresql+psycopg://)
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE_DIR / 'caseflow.db'}")
DB_ECHO = _env_bool("DB_ECHO")
STATEMENT_TIMEOUT_MS = int(os.getenv("STATEMENT_TIMEOUT_MS", "15000"))  # PostgreSQL only

# Candidate search
NAME_SIMILARITY_THRESHOLD = float(os.getenv("NAME_SIMILARITY_THRESHOLD", "0.3"))  # pg_trgm default
NAME_MATCH_WEIGHT = float(os.getenv("NAME_MATCH_WEIGHT", "0.45"))  # must stay below 0.5 (weakest exact pair minus strongest single exact)
SEARCH_RESULT_LIMIT = int(os.getenv("SEARCH_RESULT_LIMIT", "50"))  # rows per search branch

# Exact identifier weights (PAN/Aadhaar strongest, e-mail weakest)
EXACT_MATCH_WEIGHTS = {
    "panNumber": 1.0,
    "aadhaarNumber": 1.0,
    "bankAccountNumber": 0.9,
    "customerPhone": 0.8,
    "customerEmail": 0.7,
}

# Cluster mining
CLUSTER_GROUPING = os.getenv("CLUSTER_GROUPING", "per_field").strip().lower()  # per_field | coalesce
CLUSTER_SCAN_BATCH_SIZE = int(os.getenv("CLUSTER_SCAN_BATCH_SIZE", "1000"))
CLUSTER_SCAN_INTERVAL_SECONDS = int(os.getenv("CLUSTER_SCAN_INTERVAL_SECONDS", "0"))  # 0 = periodic job disabled
CLUSTER_DEFAULT_PAGE_SIZE = 20
CLUSTER_MAX_PAGE_SIZE = 100

# Auth / signed tokens
AUTH_SECRET = os.getenv("AUTH_SECRET", "dev-only-change-me")
SEARCH_TOKEN_TTL_SECONDS = int(os.getenv("SEARCH_TOKEN_TTL_SECONDS", "3600"))
REQUIRE_SEARCH_TOKEN = _env_bool("REQUIRE_SEARCH_TOKEN")

# Request handling
REQUEST_TIMEOUT_SECONDS = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
CORS_ORIGINS = [
    o.strip() for o in os.getenv(
        "CORS_ORIGINS", "http://localhost:5173,http://localhost:3000"
    ).split(",") if o.strip()
]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Debug trace mode: set CASEFLOW_TRACE=1 to get detailed matching logs
TRACE_ENABLED = _env_bool("CASEFLOW_TRACE")

# Roles
SUPER_ADMIN_ROLE = "SUPER_ADMIN"
SCOPED_ROLES = {"BACKEND"}  # roles whose case visibility is limited to assigned clients

# Confidence bands over the capped (0-1) candidate confidence
CONFIDENCE_BANDS = [
    (0.85, "HIGH"),
    (0.70, "MODERATE"),
    (0.50, "LOW"),
    (0.00, "VERY LOW"),
]
