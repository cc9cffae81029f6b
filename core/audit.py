"""
Audit trail for graph mutations (entities, observations, relations).

Entries are written from ORM mapper hooks inside the mutation's own flush.
Each write runs in a SAVEPOINT so a failing audit insert is rolled back on its
own and the mutation still commits.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import event, insert, inspect
from sqlalchemy.orm import object_session

import core.config as config
from core.context import actor_for_session
from core.models import (
    AUDIT_ACTIONS,
    AUDIT_EXCLUDED_FIELDS,
    AUDITABLE_MODELS,
    AuditLog,
)

logger = config.logger

AUDIT_RETENTION_DAYS = 90
IGNORED_UPDATE_FIELDS = frozenset({"updated_at"})


def _jsonable(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


def _snapshot(target) -> dict:
    """Loaded column values of ``target``, without bulk vector fields."""
    state = inspect(target)
    snapshot = {}
    for attr in state.mapper.column_attrs:
        if attr.key in AUDIT_EXCLUDED_FIELDS or attr.key not in state.dict:
            continue
        snapshot[attr.key] = _jsonable(state.dict[attr.key])
    return snapshot


def _diff(target) -> dict:
    """Field-level {from, to} changes pending on ``target``."""
    state = inspect(target)
    changes = {}
    for attr in state.mapper.column_attrs:
        key = attr.key
        if key in AUDIT_EXCLUDED_FIELDS or key in IGNORED_UPDATE_FIELDS:
            continue
        history = state.attrs[key].history
        if not history.has_changes():
            continue
        old = history.deleted[0] if history.deleted else None
        new = history.added[0] if history.added else None
        if old == new:
            continue
        changes[key] = {"from": _jsonable(old), "to": _jsonable(new)}
    return changes


def _audit_values(target, action: str, changed_fields: dict) -> dict:
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"action must be one of: {'|'.join(AUDIT_ACTIONS)}")
    return {
        "auditable_type": type(target).__name__,
        "auditable_id": target.id,
        "action": action,
        "actor": actor_for_session(object_session(target)),
        "changed_fields": changed_fields,
        "created_at": datetime.utcnow(),
    }


def write_audit(connection, target, action: str, changed_fields: dict) -> bool:
    """Persist one audit row; failures are logged and swallowed."""
    try:
        with connection.begin_nested():
            connection.execute(
                insert(AuditLog.__table__).values(**_audit_values(target, action, changed_fields))
            )
    except Exception as exc:
        logger.warning(
            f"Audit write failed for {type(target).__name__}#{getattr(target, 'id', None)}: {exc}"
        )
        return False
    return True


def _audit_create(mapper, connection, target) -> None:
    write_audit(connection, target, "create", _snapshot(target))


def _audit_update(mapper, connection, target) -> None:
    changes = _diff(target)
    if not changes:
        return
    write_audit(connection, target, "update", changes)


def _audit_delete(mapper, connection, target) -> None:
    write_audit(connection, target, "delete", _snapshot(target))


for _model in AUDITABLE_MODELS.values():
    event.listen(_model, "after_insert", _audit_create)
    event.listen(_model, "after_update", _audit_update)
    event.listen(_model, "after_delete", _audit_delete)


def prune(db, now: Optional[datetime] = None) -> int:
    """
    Delete audit entries older than the retention window.

    Returns the number of rows removed (0 when nothing qualifies).
    """
    cutoff = (now or datetime.utcnow()) - timedelta(days=AUDIT_RETENTION_DAYS)
    deleted = (
        db.query(AuditLog)
        .filter(AuditLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted or 0


def _serialize_entry(row: AuditLog) -> dict:
    return {
        "id": row.id,
        "auditable_type": row.auditable_type,
        "auditable_id": row.auditable_id,
        "action": row.action,
        "actor": row.actor,
        "changed_fields": row.changed_fields,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


def list_audit_logs(
    db,
    *,
    auditable_type: Optional[str] = None,
    auditable_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100,
) -> dict:
    """
    Query audit entries, newest first, optionally scoped to one subject.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    if auditable_type is not None and auditable_type not in AUDITABLE_MODELS:
        raise ValueError(f"auditable_type must be one of: {'|'.join(AUDITABLE_MODELS)}")

    query = db.query(AuditLog)
    if auditable_type:
        query = query.filter(AuditLog.auditable_type == auditable_type)
    if auditable_id is not None:
        query = query.filter(AuditLog.auditable_id == auditable_id)
    if action:
        query = query.filter(AuditLog.action == action)

    rows = (
        query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return {
        "status": "ok",
        "count": len(rows),
        "entries": [_serialize_entry(row) for row in rows],
    }


def resolve_subject(db, entry: AuditLog):
    """Return the audited record, or None when it no longer exists."""
    model = AUDITABLE_MODELS.get(entry.auditable_type)
    if model is None or entry.auditable_id is None:
        return None
    return db.get(model, entry.auditable_id)


__all__ = [
    "AuditLog",
    "AUDIT_RETENTION_DAYS",
    "write_audit",
    "prune",
    "list_audit_logs",
    "resolve_subject",
]
