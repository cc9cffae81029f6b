"""
Entity and observation search.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.deps import get_db_session
from core.services.search_service import search_entities, search_observations


router = APIRouter()


@router.get("/search/entities")
def entity_search(
    q: str = Query(...),
    limit: int = Query(default=20, ge=1),
    semantic: bool = True,
    db=Depends(get_db_session),
):
    try:
        return search_entities(db, q, limit=limit, semantic=semantic)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.get("/search/observations")
def observation_search(
    q: str = Query(...),
    limit: int = Query(default=20, ge=1),
    semantic: bool = True,
    db=Depends(get_db_session),
):
    try:
        return search_observations(db, q, limit=limit, semantic=semantic)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
