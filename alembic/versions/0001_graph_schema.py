"""Create knowledge graph, type vocabulary, audit and maintenance tables.

Revision ID: 0001_graph_schema
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_graph_schema"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    bind = op.get_bind()
    is_postgres = bind.dialect.name == "postgresql"
    json_type = postgresql.JSONB if is_postgres else sa.JSON

    op.create_table(
        "memory_entities",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=False),
        sa.Column("aliases", sa.Text()),
        sa.Column("description", sa.Text()),
        sa.Column("observations_count", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("name", name="uq_memory_entities_name"),
    )
    op.create_index("ix_memory_entities_entity_type", "memory_entities", ["entity_type"])
    op.create_index("ix_memory_entities_updated_at", "memory_entities", ["updated_at"])

    op.create_table(
        "memory_observations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "entity_id",
            sa.Integer(),
            sa.ForeignKey("memory_entities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_memory_observations_entity_id", "memory_observations", ["entity_id"])

    op.create_table(
        "memory_relations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "from_entity_id",
            sa.Integer(),
            sa.ForeignKey("memory_entities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "to_entity_id",
            sa.Integer(),
            sa.ForeignKey("memory_entities.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("relation_type", sa.String(length=100), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint(
            "from_entity_id",
            "to_entity_id",
            "relation_type",
            name="uq_memory_relations_triple",
        ),
    )
    op.create_index("ix_memory_relations_from", "memory_relations", ["from_entity_id"])
    op.create_index("ix_memory_relations_to", "memory_relations", ["to_entity_id"])
    op.create_index("ix_memory_relations_type", "memory_relations", ["relation_type"])

    op.create_table(
        "entity_type_mappings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("variant", sa.String(length=100), nullable=False),
        sa.Column("canonical_type", sa.String(length=100), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("variant", name="uq_entity_type_mappings_variant"),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("auditable_type", sa.String(length=50), nullable=False),
        sa.Column("auditable_id", sa.Integer()),
        sa.Column("action", sa.String(length=20), nullable=False),
        sa.Column("actor", sa.String(length=255)),
        sa.Column("changed_fields", json_type),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_logs_subject", "audit_logs", ["auditable_type", "auditable_id"])
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"])

    op.create_table(
        "maintenance_reports",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("report_type", sa.String(length=20), nullable=False),
        sa.Column("data", json_type, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_maintenance_reports_report_type", "maintenance_reports", ["report_type"])
    op.create_index("ix_maintenance_reports_created_at", "maintenance_reports", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_maintenance_reports_created_at", table_name="maintenance_reports")
    op.drop_index("ix_maintenance_reports_report_type", table_name="maintenance_reports")
    op.drop_table("maintenance_reports")
    op.drop_index("ix_audit_logs_created_at", table_name="audit_logs")
    op.drop_index("ix_audit_logs_subject", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("entity_type_mappings")
    op.drop_index("ix_memory_relations_type", table_name="memory_relations")
    op.drop_index("ix_memory_relations_to", table_name="memory_relations")
    op.drop_index("ix_memory_relations_from", table_name="memory_relations")
    op.drop_table("memory_relations")
    op.drop_index("ix_memory_observations_entity_id", table_name="memory_observations")
    op.drop_table("memory_observations")
    op.drop_index("ix_memory_entities_updated_at", table_name="memory_entities")
    op.drop_index("ix_memory_entities_entity_type", table_name="memory_entities")
    op.drop_table("memory_entities")
