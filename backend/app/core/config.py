"""
Runtime configuration.

Values come from environment variables; the project-root .env file is
loaded first so local development does not need exported variables.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# backend/app/core/config.py -> backend -> project root
env_path = Path(__file__).resolve().parents[3] / ".env"
load_dotenv(env_path)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

# Blob store: "gcs" for Cloud Storage, "local" for a directory on disk
STORAGE_BACKEND = os.environ.get("STORAGE_BACKEND", "gcs").lower()
STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET") or None
LOCAL_STORAGE_DIR = Path(
    os.environ.get("LOCAL_STORAGE_DIR", str(Path(__file__).resolve().parents[2] / "data"))
)

INCOME_PARTITION_PREFIX = os.environ.get("INCOME_PARTITION_PREFIX", "acct_income_json")
INCOME_COLLECTION = os.environ.get("INCOME_COLLECTION", "acct_income")

MIGRATION_PAGE_SIZE = _env_int("MIGRATION_PAGE_SIZE", 5000)
MIGRATION_FLUSH_THRESHOLD = _env_int("MIGRATION_FLUSH_THRESHOLD", 100_000)

SOURCE_FETCH_TIMEOUT = _env_int("SOURCE_FETCH_TIMEOUT", 60)
