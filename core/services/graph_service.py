"""
Graph mutations for entities, observations and relations.

Every write here flows through the audit hooks (registered on the models) and,
after commit, through the embedding indexer when EMBEDDING_ON_WRITE is set.
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.exc import IntegrityError

import core.config as config
from core.errors import GraphRecordNotFoundError, ValidationIssue
from core.models import MemoryEntity, MemoryObservation, MemoryRelation
from core.services.embedding_service import EmbeddingService, embedding_service
from core.services.type_mappings import canonicalize
from core.validators import validate_optional_text, validate_required_text

logger = config.logger

ENTITY_EMBEDDING_FIELDS = ("name", "entity_type", "aliases", "description")

_UNSET = object()


def _resolve_embedder(embedder: Optional[EmbeddingService]) -> Optional[EmbeddingService]:
    if embedder is not None:
        return embedder
    return embedding_service if config.EMBEDDING_ON_WRITE else None


def _refresh_embedding(db, record, embedder: Optional[EmbeddingService]) -> None:
    embedder = _resolve_embedder(embedder)
    if embedder is None:
        return
    try:
        if isinstance(record, MemoryEntity):
            result = embedder.embed_entity(db, record)
        else:
            result = embedder.embed_observation(db, record)
        if result["status"] == "stored":
            db.commit()
    except Exception as exc:
        db.rollback()
        logger.warning(f"Embedding refresh failed for {type(record).__name__} id={record.id}: {exc}")


def _canonical_entity_type(db, entity_type: str) -> str:
    value = validate_required_text(entity_type, "entity_type", config.MAX_TYPE_LENGTH)
    return canonicalize(db, value) or value


def _commit_or_reject(db, message: str, field: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationIssue(message, field=field, error_type="duplicate") from exc


def get_entity(db, entity_id: int) -> MemoryEntity:
    entity = db.get(MemoryEntity, entity_id)
    if entity is None:
        raise GraphRecordNotFoundError("MemoryEntity", entity_id)
    return entity


def find_entity_by_name(db, name: str) -> Optional[MemoryEntity]:
    return db.query(MemoryEntity).filter(MemoryEntity.name == name).first()


def create_entity(
    db,
    name: str,
    entity_type: str,
    aliases: Optional[str] = None,
    description: Optional[str] = None,
    *,
    embedder: Optional[EmbeddingService] = None,
) -> MemoryEntity:
    name = validate_required_text(name, "name", config.MAX_NAME_LENGTH)
    aliases = validate_optional_text(aliases, "aliases", config.MAX_TEXT_LENGTH)
    description = validate_optional_text(description, "description", config.MAX_TEXT_LENGTH)
    canonical_type = _canonical_entity_type(db, entity_type)

    if find_entity_by_name(db, name) is not None:
        raise ValidationIssue(f"entity '{name}' already exists", field="name", error_type="duplicate")

    entity = MemoryEntity(
        name=name,
        entity_type=canonical_type,
        aliases=aliases,
        description=description,
    )
    db.add(entity)
    _commit_or_reject(db, f"entity '{name}' already exists", "name")
    _refresh_embedding(db, entity, embedder)
    return entity


def update_entity(
    db,
    entity_id: int,
    *,
    name=_UNSET,
    entity_type=_UNSET,
    aliases=_UNSET,
    description=_UNSET,
    embedder: Optional[EmbeddingService] = None,
) -> MemoryEntity:
    entity = get_entity(db, entity_id)
    if name is not _UNSET:
        name = validate_required_text(name, "name", config.MAX_NAME_LENGTH)
        clash = find_entity_by_name(db, name)
        if clash is not None and clash.id != entity.id:
            raise ValidationIssue(f"entity '{name}' already exists", field="name", error_type="duplicate")
        entity.name = name
    if entity_type is not _UNSET:
        entity.entity_type = _canonical_entity_type(db, entity_type)
    if aliases is not _UNSET:
        entity.aliases = validate_optional_text(aliases, "aliases", config.MAX_TEXT_LENGTH)
    if description is not _UNSET:
        entity.description = validate_optional_text(description, "description", config.MAX_TEXT_LENGTH)

    embedding_changed = any(_attribute_changed(entity, field) for field in ENTITY_EMBEDDING_FIELDS)
    _commit_or_reject(db, f"entity '{entity.name}' already exists", "name")
    if embedding_changed:
        _refresh_embedding(db, entity, embedder)
    return entity


def _attribute_changed(record, field: str) -> bool:
    history = inspect(record).attrs[field].history
    if not history.has_changes():
        return False
    old = history.deleted[0] if history.deleted else None
    new = history.added[0] if history.added else None
    return old != new


def delete_entity(db, entity_id: int) -> dict:
    entity = get_entity(db, entity_id)
    name = entity.name
    db.delete(entity)
    db.commit()
    return {"status": "deleted", "id": entity_id, "name": name}


def add_observation(
    db,
    entity_id: int,
    content: str,
    *,
    embedder: Optional[EmbeddingService] = None,
) -> MemoryObservation:
    content = validate_required_text(content, "content", config.MAX_TEXT_LENGTH)
    get_entity(db, entity_id)
    observation = MemoryObservation(entity_id=entity_id, content=content)
    db.add(observation)
    db.commit()
    _refresh_embedding(db, observation, embedder)
    return observation


def update_observation(
    db,
    observation_id: int,
    content: str,
    *,
    embedder: Optional[EmbeddingService] = None,
) -> MemoryObservation:
    observation = db.get(MemoryObservation, observation_id)
    if observation is None:
        raise GraphRecordNotFoundError("MemoryObservation", observation_id)
    content = validate_required_text(content, "content", config.MAX_TEXT_LENGTH)
    changed = observation.content != content
    observation.content = content
    db.commit()
    if changed:
        _refresh_embedding(db, observation, embedder)
    return observation


def delete_observation(db, observation_id: int) -> dict:
    observation = db.get(MemoryObservation, observation_id)
    if observation is None:
        raise GraphRecordNotFoundError("MemoryObservation", observation_id)
    db.delete(observation)
    db.commit()
    return {"status": "deleted", "id": observation_id}


def create_relation(db, from_entity_id: int, to_entity_id: int, relation_type: str) -> MemoryRelation:
    relation_type = validate_required_text(relation_type, "relation_type", config.MAX_TYPE_LENGTH)
    for field, entity_id in (("from_entity_id", from_entity_id), ("to_entity_id", to_entity_id)):
        if db.get(MemoryEntity, entity_id) is None:
            raise ValidationIssue(
                f"{field} {entity_id} does not exist",
                field=field,
                error_type="not_found",
            )
    existing = (
        db.query(MemoryRelation)
        .filter(
            MemoryRelation.from_entity_id == from_entity_id,
            MemoryRelation.to_entity_id == to_entity_id,
            MemoryRelation.relation_type == relation_type,
        )
        .first()
    )
    message = "relation already exists for this (from, to, relation_type)"
    if existing is not None:
        raise ValidationIssue(message, field="relation_type", error_type="duplicate")

    relation = MemoryRelation(
        from_entity_id=from_entity_id,
        to_entity_id=to_entity_id,
        relation_type=relation_type,
    )
    db.add(relation)
    _commit_or_reject(db, message, "relation_type")
    return relation


def delete_relation(db, relation_id: int) -> dict:
    relation = db.get(MemoryRelation, relation_id)
    if relation is None:
        raise GraphRecordNotFoundError("MemoryRelation", relation_id)
    db.delete(relation)
    db.commit()
    return {"status": "deleted", "id": relation_id}


def project_scope_ids(db, project_id: Optional[int]) -> Optional[list[int]]:
    """Project id plus the ids of entities that are ``part_of`` it."""
    if project_id is None:
        return None
    ids = [project_id]
    rows = (
        db.query(MemoryRelation.from_entity_id)
        .filter(
            MemoryRelation.relation_type == "part_of",
            MemoryRelation.to_entity_id == project_id,
        )
        .all()
    )
    for (entity_id,) in rows:
        if entity_id not in ids:
            ids.append(entity_id)
    return ids
