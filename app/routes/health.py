"""
Health and dependency endpoints.
"""

from __future__ import annotations

import os

from fastapi import APIRouter, HTTPException
from sqlalchemy import text

import core.config as config
from core.db import DB, _get_schema_revisions
from core.services.embedding_service import embedding_service, vector_capability


router = APIRouter()


def _check_db_health() -> dict:
    if DB.engine is None:
        return {"ok": False, "error": "db_not_initialized"}

    try:
        with DB.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            ext_version = None
            pgvector_installed = True
            if config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector":
                ext_version = conn.execute(
                    text("SELECT extversion FROM pg_extension WHERE extname = 'vector'")
                ).scalar()
                pgvector_installed = bool(ext_version)
    except Exception as exc:
        return {"ok": False, "error": str(exc)}

    try:
        current_rev, head_rev = _get_schema_revisions(DB.engine)
    except Exception as exc:
        config.logger.warning(f"Schema revision check failed: {exc}")
        current_rev, head_rev = None, None
    schema_ok = head_rev is None or current_rev == head_rev
    return {
        "ok": schema_ok,
        "pgvector_installed": pgvector_installed,
        "pgvector_version": ext_version,
        "schema_revision": current_rev,
        "schema_expected": head_rev,
        "schema_up_to_date": schema_ok,
    }


def _check_embedding_health(check_external: bool) -> dict:
    embedding_status = {
        "status": "unknown",
        "provider": config.EMBEDDING_PROVIDER,
        "model": config.EMBEDDING_MODEL,
        "vector_columns": vector_capability.enabled() if DB.engine is not None else False,
        "checked": False,
    }

    if check_external and config.EMBEDDING_HEALTHCHECK_ENABLED:
        embedding_status["checked"] = True
        embedding_status.update(embedding_service.healthcheck())
        return embedding_status

    embedding_status["status"] = "skipped" if check_external else "ready"
    return embedding_status


@router.get("/health")
async def health():
    """Health check endpoint."""
    db_health = _check_db_health()
    embedding_status = _check_embedding_health(check_external=False)
    vector_required = config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    if not db_health.get("ok") or (vector_required and not db_health.get("pgvector_installed")):
        raise HTTPException(
            status_code=503,
            detail={"database": db_health, "embedding_provider": embedding_status},
        )

    return {
        "status": "healthy",
        "service": "GraphMem",
        "version": "0.1.0",
        "instance_id": os.environ.get("GRAPHMEM_INSTANCE_ID", "graphmem-1"),
        "database": db_health,
        "embedding_provider": embedding_status,
    }


@router.get("/health/deps")
async def health_deps():
    """Dependency health checks (optional embedding provider check)."""
    db_health = _check_db_health()
    vector_required = config.DB_BACKEND == "postgres" and config.VECTOR_BACKEND_EFFECTIVE == "pgvector"
    if not db_health.get("ok") or (vector_required and not db_health.get("pgvector_installed")):
        raise HTTPException(status_code=503, detail={"database": db_health})

    embedding_status = _check_embedding_health(check_external=True)

    return {
        "status": "healthy",
        "service": "GraphMem",
        "database": db_health,
        "embedding_provider": embedding_status,
    }
