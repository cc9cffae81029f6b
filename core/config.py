"""
Shared configuration for GraphMem core.
"""

from __future__ import annotations

import logging
import os
import tempfile

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("graphmem")


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


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _derive_effective_backends(db_backend: str, vector_backend: str) -> tuple[str, str]:
    db_effective = db_backend if db_backend in {"postgres", "sqlite"} else "postgres"
    vector_effective = vector_backend if vector_backend in {"pgvector", "none"} else "none"
    if db_effective == "sqlite" and vector_effective == "pgvector":
        vector_effective = "none"
    return db_effective, vector_effective


# Database settings
DB_BACKEND = os.environ.get("DB_BACKEND", "postgres").strip().lower()
VECTOR_BACKEND = os.environ.get("VECTOR_BACKEND", "pgvector").strip().lower()
SQLITE_PATH = os.environ.get("SQLITE_PATH", "/data/graphmem.db")
DATABASE_URL = os.environ.get("DATABASE_URL")
DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
    DB_BACKEND,
    VECTOR_BACKEND,
)

# Database initialization controls
AUTO_CREATE_EXTENSIONS = _get_bool("AUTO_CREATE_EXTENSIONS", True)
AUTO_MIGRATE_ON_STARTUP = _get_bool("AUTO_MIGRATE_ON_STARTUP", True)
SEED_TYPE_MAPPINGS_ON_STARTUP = _get_bool("SEED_TYPE_MAPPINGS_ON_STARTUP", True)

# Embedding provider
EMBEDDING_BASE_URL = os.environ.get("OLLAMA_URL", "http://localhost:11434").strip()
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "nomic-embed-text").strip()
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "ollama").strip().lower()
EMBEDDING_DIMS = _get_int("EMBEDDING_DIMS", 768)
EMBEDDING_CONNECT_TIMEOUT_SECONDS = _get_float("EMBEDDING_CONNECT_TIMEOUT_SECONDS", 10.0)
EMBEDDING_READ_TIMEOUT_SECONDS = _get_float("EMBEDDING_READ_TIMEOUT_SECONDS", 30.0)
EMBEDDING_ON_WRITE = _get_bool("EMBEDDING_ON_WRITE", True)
EMBEDDING_HEALTHCHECK_ENABLED = _get_bool("EMBEDDING_HEALTHCHECK_ENABLED", True)
EMBEDDING_BACKFILL_ENABLED = _get_bool("EMBEDDING_BACKFILL_ENABLED", True)
EMBEDDING_BACKFILL_INTERVAL_SECONDS = _get_int("EMBEDDING_BACKFILL_INTERVAL_SECONDS", 3600)
EMBEDDING_BACKFILL_BATCH_SIZE = _get_int("EMBEDDING_BACKFILL_BATCH_SIZE", 100)

# Scheduled maintenance
MAINTENANCE_INTERVAL_SECONDS = _get_int("MAINTENANCE_INTERVAL_SECONDS", 86400)
CLEANUP_INTERVAL_SECONDS = _get_int("CLEANUP_INTERVAL_SECONDS", 900)
EXPORT_MAX_AGE_SECONDS = _get_int("EXPORT_MAX_AGE_SECONDS", 3600)
IMPORT_SESSION_MAX_AGE_SECONDS = _get_int("IMPORT_SESSION_MAX_AGE_SECONDS", 86400)

# File-backed working directories
_TMP_ROOT = os.path.join(tempfile.gettempdir(), "graphmem")
EXPORT_DIR = os.environ.get("GRAPHMEM_EXPORT_DIR", os.path.join(_TMP_ROOT, "exports"))
IMPORT_SESSION_DIR = os.environ.get(
    "GRAPHMEM_IMPORT_SESSION_DIR",
    os.path.join(_TMP_ROOT, "data_exchange"),
)

# Request/input limits
MAX_RESULT_LIMIT = _get_int("GRAPHMEM_MAX_RESULT_LIMIT", 100)
MAX_NAME_LENGTH = _get_int("GRAPHMEM_MAX_NAME_LENGTH", 255)
MAX_TYPE_LENGTH = _get_int("GRAPHMEM_MAX_TYPE_LENGTH", 100)
MAX_TEXT_LENGTH = _get_int("GRAPHMEM_MAX_TEXT_LENGTH", 8000)

SUPPORTED_EMBEDDING_PROVIDERS = {"ollama", "openai_compatible"}


def validate_and_prepare_config() -> None:
    """Validate configuration and apply derived settings at startup."""
    global DATABASE_URL, DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE

    errors = []
    if DB_BACKEND not in {"postgres", "sqlite"}:
        errors.append("DB_BACKEND must be 'postgres' or 'sqlite'")

    if VECTOR_BACKEND not in {"pgvector", "none"}:
        errors.append("VECTOR_BACKEND must be 'pgvector' or 'none'")

    if DB_BACKEND == "sqlite" and VECTOR_BACKEND == "pgvector":
        errors.append("VECTOR_BACKEND=pgvector requires DB_BACKEND=postgres")

    if EMBEDDING_PROVIDER not in SUPPORTED_EMBEDDING_PROVIDERS:
        errors.append("EMBEDDING_PROVIDER must be 'ollama' or 'openai_compatible'")

    if EMBEDDING_DIMS <= 0:
        errors.append("EMBEDDING_DIMS must be a positive integer")

    if not DATABASE_URL:
        if DB_BACKEND == "sqlite":
            if not SQLITE_PATH:
                errors.append("SQLITE_PATH environment variable is required for sqlite")
            else:
                DATABASE_URL = f"sqlite:///{SQLITE_PATH}"
        else:
            errors.append("DATABASE_URL environment variable is required")
    else:
        is_sqlite_url = DATABASE_URL.lower().startswith("sqlite")
        if DB_BACKEND == "sqlite" and not is_sqlite_url:
            errors.append("DATABASE_URL must be a sqlite URL when DB_BACKEND=sqlite")
        if DB_BACKEND == "postgres" and is_sqlite_url:
            errors.append("DATABASE_URL must be a postgres URL when DB_BACKEND=postgres")

    DB_BACKEND_EFFECTIVE, VECTOR_BACKEND_EFFECTIVE = _derive_effective_backends(
        DB_BACKEND,
        VECTOR_BACKEND,
    )

    if VECTOR_BACKEND_EFFECTIVE == "pgvector":
        from core.models import PGVECTOR_AVAILABLE

        if not PGVECTOR_AVAILABLE:
            errors.append("pgvector package is required when VECTOR_BACKEND=pgvector")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
