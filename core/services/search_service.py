"""
Search over entities and observations.

Semantic ranking uses the stored embeddings (pgvector cosine distance on
postgres, in-process cosine over JSON vectors elsewhere). When the vector
columns are absent or the query cannot be embedded, search falls back to a
case-insensitive substring match.
"""

from __future__ import annotations

import heapq
import math
from typing import List, Optional, Sequence

from sqlalchemy import desc, or_
from sqlalchemy.exc import SQLAlchemyError

import core.config as config
from core.models import PGVECTOR_AVAILABLE, PgVector, MemoryEntity, MemoryObservation
from core.services.embedding_service import EmbeddingService, embedding_service
from core.validators import validate_limit, validate_required_text

logger = config.logger

DEFAULT_LIMIT = 20


def _uses_pgvector(model) -> bool:
    if not PGVECTOR_AVAILABLE or PgVector is None:
        return False
    return isinstance(model.__table__.c.embedding.type, PgVector)


def cosine_similarity(left: Sequence[float], right: Sequence[float]) -> float:
    if len(left) != len(right):
        return 0.0
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    if norm == 0:
        return 0.0
    return dot / norm


def _vector_ranked(db, model, vector: List[float], limit: int) -> list[tuple[object, float]]:
    """(record, similarity) pairs, most similar first."""
    if _uses_pgvector(model):
        distance = model.embedding.cosine_distance(vector).label("distance")
        rows = (
            db.query(model, distance)
            .filter(model.embedding.isnot(None))
            .order_by(distance.asc())
            .limit(limit)
            .all()
        )
        return [(record, 1.0 - float(dist)) for record, dist in rows]

    scored = []
    for record_id, stored in db.query(model.id, model.embedding).filter(model.embedding.isnot(None)):
        if isinstance(stored, list) and stored:
            scored.append((cosine_similarity(vector, stored), record_id))
    top = heapq.nlargest(limit, scored, key=lambda item: (item[0], -item[1]))
    if not top:
        return []
    records = {record.id: record for record in db.query(model).filter(model.id.in_([rid for _, rid in top]))}
    return [(records[rid], similarity) for similarity, rid in top if rid in records]


def _query_vector(db, query: str, embedder: EmbeddingService, semantic: bool) -> Optional[List[float]]:
    if not semantic or not embedder.vector_enabled(db):
        return None
    return embedder.embed(query)


def _semantic_rows(db, model, vector: Optional[List[float]], limit: int):
    if vector is None:
        return None
    try:
        return _vector_ranked(db, model, vector, limit)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(f"Vector search on {model.__tablename__} failed, using keyword match: {exc}")
        return None


def serialize_entity_hit(entity: MemoryEntity, similarity: Optional[float]) -> dict:
    return {
        "id": entity.id,
        "name": entity.name,
        "entity_type": entity.entity_type,
        "aliases": entity.aliases,
        "description": entity.description,
        "observations_count": entity.observations_count,
        "updated_at": entity.updated_at.isoformat() if entity.updated_at else None,
        "similarity": round(similarity, 4) if similarity is not None else None,
    }


def serialize_observation_hit(observation: MemoryObservation, similarity: Optional[float]) -> dict:
    return {
        "id": observation.id,
        "entity_id": observation.entity_id,
        "content": observation.content,
        "created_at": observation.created_at.isoformat() if observation.created_at else None,
        "similarity": round(similarity, 4) if similarity is not None else None,
    }


def _result(query: str, mode: str, results: list) -> dict:
    return {"status": "ok", "query": query, "mode": mode, "count": len(results), "results": results}


def search_entities(
    db,
    query: str,
    limit: int = DEFAULT_LIMIT,
    embedder: Optional[EmbeddingService] = None,
    semantic: bool = True,
) -> dict:
    """
    Entities matching ``query``.

    ``mode`` is ``"semantic"`` when results were ranked by embedding
    similarity and ``"keyword"`` when the name/aliases/description match
    was used instead, including when no stored vector exists yet.
    """
    query = validate_required_text(query, "query", config.MAX_TEXT_LENGTH)
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    embedder = embedder or embedding_service

    rows = _semantic_rows(db, MemoryEntity, _query_vector(db, query, embedder, semantic), limit)
    if rows:
        return _result(query, "semantic", [serialize_entity_hit(entity, score) for entity, score in rows])

    pattern = f"%{query}%"
    entities = (
        db.query(MemoryEntity)
        .filter(
            or_(
                MemoryEntity.name.ilike(pattern),
                MemoryEntity.aliases.ilike(pattern),
                MemoryEntity.description.ilike(pattern),
            )
        )
        .order_by(desc(MemoryEntity.updated_at), MemoryEntity.id.asc())
        .limit(limit)
        .all()
    )
    return _result(query, "keyword", [serialize_entity_hit(entity, None) for entity in entities])


def search_observations(
    db,
    query: str,
    limit: int = DEFAULT_LIMIT,
    embedder: Optional[EmbeddingService] = None,
    semantic: bool = True,
) -> dict:
    query = validate_required_text(query, "query", config.MAX_TEXT_LENGTH)
    validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
    embedder = embedder or embedding_service

    rows = _semantic_rows(db, MemoryObservation, _query_vector(db, query, embedder, semantic), limit)
    if rows:
        return _result(query, "semantic", [serialize_observation_hit(obs, score) for obs, score in rows])

    observations = (
        db.query(MemoryObservation)
        .filter(MemoryObservation.content.ilike(f"%{query}%"))
        .order_by(desc(MemoryObservation.created_at), MemoryObservation.id.asc())
        .limit(limit)
        .all()
    )
    return _result(query, "keyword", [serialize_observation_hit(obs, None) for obs in observations])
