"""Add embedding columns to entities and observations.

Revision ID: 0002_embedding_columns
Revises: 0001_graph_schema
Create Date: 2026-10-18

Postgres gets pgvector columns only when the vector extension is available;
SQLite stores vectors as JSON. Other deployments keep a vector-less schema,
which the application detects at runtime.
"""

from alembic import op
import sqlalchemy as sa

import core.config as config


revision = "0002_embedding_columns"
down_revision = "0001_graph_schema"
branch_labels = None
depends_on = None

TABLES = ("memory_entities", "memory_observations")


def _embedding_type(bind):
    if bind.dialect.name == "postgresql":
        if config.VECTOR_BACKEND_EFFECTIVE != "pgvector":
            return None
        try:
            from pgvector.sqlalchemy import Vector
        except ImportError:
            return None
        installed = bind.execute(
            sa.text("SELECT 1 FROM pg_extension WHERE extname = 'vector'")
        ).scalar()
        if not installed:
            return None
        return Vector(config.EMBEDDING_DIMS)
    return sa.JSON()


def upgrade() -> None:
    bind = op.get_bind()
    column_type = _embedding_type(bind)
    if column_type is None:
        return
    for table in TABLES:
        with op.batch_alter_table(table) as batch_op:
            batch_op.add_column(sa.Column("embedding", column_type, nullable=True))


def downgrade() -> None:
    bind = op.get_bind()
    for table in TABLES:
        columns = {column["name"] for column in sa.inspect(bind).get_columns(table)}
        if "embedding" not in columns:
            continue
        with op.batch_alter_table(table) as batch_op:
            batch_op.drop_column("embedding")
