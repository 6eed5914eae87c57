"""
Shared configuration for the catalog engine.
"""

from __future__ import annotations

import logging
import os

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("catalog")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _derive_effective_backend(db_backend: str) -> str:
    return db_backend if db_backend in {"postgres", "sqlite"} else "sqlite"


# Database settings
DB_BACKEND = os.environ.get("CATALOG_DB_BACKEND", "sqlite").strip().lower()
SQLITE_PATH = os.environ.get("CATALOG_SQLITE_PATH", "./catalog.db")
DATABASE_URL = os.environ.get("CATALOG_DATABASE_URL")
DB_BACKEND_EFFECTIVE = _derive_effective_backend(DB_BACKEND)

# Database initialization controls
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)

# Scan behavior
MISSING_POLICY_SOFT = "soft"
MISSING_POLICY_HARD = "hard"
MISSING_POLICY = os.environ.get("CATALOG_MISSING_POLICY", MISSING_POLICY_SOFT).strip().lower()
SCAN_BATCH_SIZE = _get_int("CATALOG_SCAN_BATCH_SIZE", 200)
HASH_PREFIX_LENGTH = _get_int("CATALOG_HASH_PREFIX_LENGTH", 10)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("CATALOG_MAX_RESULT_LIMIT", 500)
DEFAULT_PAGE_SIZE = _get_int("CATALOG_DEFAULT_PAGE_SIZE", 50)
MAX_PATH_LENGTH = _get_int("CATALOG_MAX_PATH_LENGTH", 4096)
MAX_LABEL_LENGTH = _get_int("CATALOG_MAX_LABEL_LENGTH", 255)
MAX_TEXT_LENGTH = _get_int("CATALOG_MAX_TEXT_LENGTH", 8000)
MAX_LIST_ITEMS = _get_int("CATALOG_MAX_LIST_ITEMS", 100)

# SQLite caps host parameters per statement; bulk deletes are chunked below it
DELETE_CHUNK_SIZE = 500


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("CATALOG_DB_BACKEND must be 'postgres' or 'sqlite'")

    if MISSING_POLICY not in {MISSING_POLICY_SOFT, MISSING_POLICY_HARD}:
        errors.append("CATALOG_MISSING_POLICY must be 'soft' or 'hard'")

    if SCAN_BATCH_SIZE <= 0:
        errors.append("CATALOG_SCAN_BATCH_SIZE must be positive")

    if not 1 <= HASH_PREFIX_LENGTH <= 64:
        errors.append("CATALOG_HASH_PREFIX_LENGTH must be between 1 and 64")

    if DEFAULT_PAGE_SIZE <= 0 or DEFAULT_PAGE_SIZE > MAX_RESULT_LIMIT:
        errors.append("CATALOG_DEFAULT_PAGE_SIZE must be between 1 and CATALOG_MAX_RESULT_LIMIT")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("CATALOG_SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("CATALOG_DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("CATALOG_DATABASE_URL must be a sqlite URL when CATALOG_DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("CATALOG_DATABASE_URL must be a postgres URL when CATALOG_DB_BACKEND=postgres")

    DB_BACKEND_EFFECTIVE = _derive_effective_backend(DB_BACKEND)

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
