"""
GraphMem Database Models
Knowledge graph schema (entities, observations, relations) plus audit and
maintenance bookkeeping.
"""

from datetime import datetime

from sqlalchemy import (
    Column, Integer, String, Text, DateTime, ForeignKey, Index, UniqueConstraint,
    JSON, event, select, update, delete,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship, declarative_base, deferred, validates

import core.config as config
from core.errors import ValidationIssue

DB_BACKEND_EFFECTIVE = config.DB_BACKEND_EFFECTIVE
VECTOR_BACKEND_EFFECTIVE = config.VECTOR_BACKEND_EFFECTIVE

try:
    from pgvector.sqlalchemy import Vector as PgVector
    PGVECTOR_AVAILABLE = True
except Exception:
    PgVector = None
    PGVECTOR_AVAILABLE = False

if (
    DB_BACKEND_EFFECTIVE == "postgres"
    and VECTOR_BACKEND_EFFECTIVE == "pgvector"
    and PGVECTOR_AVAILABLE
):
    EMBEDDING_COLUMN_TYPE = PgVector(config.EMBEDDING_DIMS)
else:
    EMBEDDING_COLUMN_TYPE = JSON

JSON_TYPE = JSONB if DB_BACKEND_EFFECTIVE == "postgres" else JSON

Base = declarative_base()

HIERARCHY_RELATION_TYPES = ("part_of", "depends_on")
AUDIT_ACTIONS = ("create", "update", "delete")
REPORT_TYPES = ("orphans", "stale", "duplicates")
MAX_REPORTS_PER_TYPE = 30

# Columns never copied into audit snapshots or diffs.
AUDIT_EXCLUDED_FIELDS = frozenset({"embedding"})


# =============================================================================
# Entities
# =============================================================================

class MemoryEntity(Base):
    __tablename__ = "memory_entities"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    entity_type = Column(String(100), nullable=False)
    aliases = Column(Text)
    description = Column(Text)
    # Deferred so rows load on deployments where the column was never added.
    embedding = deferred(Column(EMBEDDING_COLUMN_TYPE, nullable=True))
    observations_count = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    observations = relationship(
        "MemoryObservation",
        back_populates="entity",
        cascade="all, delete-orphan",
        order_by="MemoryObservation.id",
    )
    outgoing_relations = relationship(
        "MemoryRelation",
        foreign_keys="MemoryRelation.from_entity_id",
        back_populates="from_entity",
        cascade="all, delete-orphan",
    )
    incoming_relations = relationship(
        "MemoryRelation",
        foreign_keys="MemoryRelation.to_entity_id",
        back_populates="to_entity",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        UniqueConstraint("name", name="uq_memory_entities_name"),
        Index("ix_memory_entities_entity_type", "entity_type"),
        Index("ix_memory_entities_updated_at", "updated_at"),
    )


class MemoryObservation(Base):
    __tablename__ = "memory_observations"

    id = Column(Integer, primary_key=True)
    entity_id = Column(Integer, ForeignKey("memory_entities.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    embedding = deferred(Column(EMBEDDING_COLUMN_TYPE, nullable=True))
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    entity = relationship("MemoryEntity", back_populates="observations")

    __table_args__ = (
        Index("ix_memory_observations_entity_id", "entity_id"),
    )


class MemoryRelation(Base):
    __tablename__ = "memory_relations"

    id = Column(Integer, primary_key=True)
    from_entity_id = Column(Integer, ForeignKey("memory_entities.id", ondelete="CASCADE"), nullable=False)
    to_entity_id = Column(Integer, ForeignKey("memory_entities.id", ondelete="CASCADE"), nullable=False)
    relation_type = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    from_entity = relationship(
        "MemoryEntity",
        foreign_keys=[from_entity_id],
        back_populates="outgoing_relations",
    )
    to_entity = relationship(
        "MemoryEntity",
        foreign_keys=[to_entity_id],
        back_populates="incoming_relations",
    )

    __table_args__ = (
        UniqueConstraint(
            "from_entity_id",
            "to_entity_id",
            "relation_type",
            name="uq_memory_relations_triple",
        ),
        Index("ix_memory_relations_from", "from_entity_id"),
        Index("ix_memory_relations_to", "to_entity_id"),
        Index("ix_memory_relations_type", "relation_type"),
    )


# =============================================================================
# Type vocabulary
# =============================================================================

class EntityTypeMapping(Base):
    __tablename__ = "entity_type_mappings"

    id = Column(Integer, primary_key=True)
    variant = Column(String(100), nullable=False)  # stored lower-case
    canonical_type = Column(String(100), nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("variant", name="uq_entity_type_mappings_variant"),
    )

    @validates("variant")
    def _normalize_variant(self, key, value):
        if not isinstance(value, str) or not value.strip():
            raise ValidationIssue("variant is required", field="variant", error_type="required")
        return value.strip().lower()


# =============================================================================
# Audit Logs
# =============================================================================

class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True)
    auditable_type = Column(String(50), nullable=False)  # MemoryEntity/MemoryObservation/MemoryRelation
    auditable_id = Column(Integer)  # no FK: entries outlive their subject
    action = Column(String(20), nullable=False)
    actor = Column(String(255))
    changed_fields = Column(JSON_TYPE)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_logs_subject", "auditable_type", "auditable_id"),
        Index("ix_audit_logs_created_at", "created_at"),
    )

    @validates("action")
    def _validate_action(self, key, value):
        if value not in AUDIT_ACTIONS:
            raise ValidationIssue(
                f"action must be one of: {'|'.join(AUDIT_ACTIONS)}",
                field="action",
                error_type="invalid_value",
            )
        return value


# =============================================================================
# Maintenance Reports
# =============================================================================

class MaintenanceReport(Base):
    __tablename__ = "maintenance_reports"

    id = Column(Integer, primary_key=True)
    report_type = Column(String(20), nullable=False)
    data = Column(JSON_TYPE, nullable=False)
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index("ix_maintenance_reports_report_type", "report_type"),
        Index("ix_maintenance_reports_created_at", "created_at"),
    )

    @validates("report_type")
    def _validate_report_type(self, key, value):
        if value not in REPORT_TYPES:
            raise ValidationIssue(
                f"report_type must be one of: {'|'.join(REPORT_TYPES)}",
                field="report_type",
                error_type="invalid_value",
            )
        return value


# =============================================================================
# Model registries
# =============================================================================

AUDITABLE_MODELS = {
    "MemoryEntity": MemoryEntity,
    "MemoryObservation": MemoryObservation,
    "MemoryRelation": MemoryRelation,
}


# =============================================================================
# Row-level hooks
# =============================================================================

def _shift_observation_count(connection, entity_id: int, delta: int) -> None:
    table = MemoryEntity.__table__
    connection.execute(
        update(table)
        .where(table.c.id == entity_id)
        .values(
            observations_count=table.c.observations_count + delta,
            updated_at=table.c.updated_at,
        )
    )


@event.listens_for(MemoryObservation, "after_insert")
def _increment_observation_count(mapper, connection, target) -> None:
    _shift_observation_count(connection, target.entity_id, 1)


@event.listens_for(MemoryObservation, "after_delete")
def _decrement_observation_count(mapper, connection, target) -> None:
    _shift_observation_count(connection, target.entity_id, -1)


@event.listens_for(MaintenanceReport, "after_insert")
def _rotate_maintenance_reports(mapper, connection, target) -> None:
    table = MaintenanceReport.__table__
    excess_ids = connection.execute(
        select(table.c.id)
        .where(table.c.report_type == target.report_type)
        .order_by(table.c.created_at.desc(), table.c.id.desc())
        .offset(MAX_REPORTS_PER_TYPE)
    ).scalars().all()
    if excess_ids:
        connection.execute(delete(table).where(table.c.id.in_(excess_ids)))


__all__ = [
    "Base",
    "MemoryEntity",
    "MemoryObservation",
    "MemoryRelation",
    "EntityTypeMapping",
    "AuditLog",
    "MaintenanceReport",
    "AUDITABLE_MODELS",
    "AUDIT_ACTIONS",
    "AUDIT_EXCLUDED_FIELDS",
    "HIERARCHY_RELATION_TYPES",
    "MAX_REPORTS_PER_TYPE",
    "REPORT_TYPES",
    "EMBEDDING_COLUMN_TYPE",
    "PGVECTOR_AVAILABLE",
]
