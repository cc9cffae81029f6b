"""
Root endpoint with service metadata.
"""

from __future__ import annotations

from fastapi import APIRouter

import core.config as config


router = APIRouter()


@router.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": "GraphMem",
        "version": "0.1.0",
        "description": "Typed knowledge graph memory for AI agents",
        "embedding_provider": config.EMBEDDING_PROVIDER,
        "embedding_model": config.EMBEDDING_MODEL,
        "endpoints": {
            "health": "/health",
            "health_deps": "/health/deps",
            "exports": "/exports",
            "maintenance_reports": "/maintenance/reports",
            "audit": "/audit",
            "search_entities": "/search/entities",
            "search_observations": "/search/observations",
        },
    }
