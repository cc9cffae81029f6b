"""
Scheduled graph maintenance: orphan, stale and duplicate detection plus audit
pruning. Analyses only read the graph; each one persists a MaintenanceReport.
"""

from __future__ import annotations

import asyncio
import calendar
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select

import core.config as config
from core import audit
from core.db import DB
from core.models import (
    MaintenanceReport,
    MemoryEntity,
    MemoryObservation,
    MemoryRelation,
    REPORT_TYPES,
)

logger = config.logger

STALE_MONTHS = 6
SAMPLE_LIMIT = 100
PREVIEW_LENGTH = 100


def months_ago(now: datetime, months: int) -> datetime:
    month_index = now.month - 1 - months
    year = now.year + month_index // 12
    month = month_index % 12 + 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def truncate_preview(content: str, length: int = PREVIEW_LENGTH) -> str:
    if len(content) <= length:
        return content
    return content[: length - 3] + "..."


def record_report(db, report_type: str, data: dict) -> MaintenanceReport:
    report = MaintenanceReport(report_type=report_type, data=data)
    db.add(report)
    db.commit()
    return report


def report_orphans(db) -> dict:
    has_observation = select(MemoryObservation.id).where(
        MemoryObservation.entity_id == MemoryEntity.id
    ).exists()
    rows = (
        db.query(MemoryEntity.id, MemoryEntity.name, MemoryEntity.entity_type)
        .filter(~has_observation)
        .filter(MemoryEntity.id.notin_(select(MemoryRelation.from_entity_id)))
        .filter(MemoryEntity.id.notin_(select(MemoryRelation.to_entity_id)))
        .order_by(MemoryEntity.id.asc())
        .all()
    )
    entities = [{"id": row[0], "name": row[1], "entity_type": row[2]} for row in rows]
    data = {"count": len(entities), "entities": entities[:SAMPLE_LIMIT]}
    record_report(db, "orphans", data)
    logger.info(f"[maintenance] Found {len(entities)} orphan entities")
    return data


def report_stale(db, now: Optional[datetime] = None) -> dict:
    cutoff = months_ago(now or datetime.utcnow(), STALE_MONTHS)
    rows = (
        db.query(MemoryEntity.id, MemoryEntity.name, MemoryEntity.entity_type, MemoryEntity.updated_at)
        .filter(MemoryEntity.updated_at < cutoff)
        .order_by(MemoryEntity.updated_at.asc(), MemoryEntity.id.asc())
        .all()
    )
    entities = [
        {
            "id": row[0],
            "name": row[1],
            "entity_type": row[2],
            "last_updated": row[3].isoformat() if row[3] else None,
        }
        for row in rows
    ]
    data = {
        "count": len(entities),
        "cutoff_months": STALE_MONTHS,
        "entities": entities[:SAMPLE_LIMIT],
    }
    record_report(db, "stale", data)
    logger.info(f"[maintenance] Found {len(entities)} stale entities (>{STALE_MONTHS} months)")
    return data


def report_duplicates(db) -> dict:
    occurrences = func.count(MemoryObservation.id)
    rows = (
        db.query(MemoryObservation.entity_id, MemoryObservation.content, occurrences)
        .group_by(MemoryObservation.entity_id, MemoryObservation.content)
        .having(occurrences > 1)
        .order_by(MemoryObservation.entity_id.asc())
        .all()
    )
    groups = [
        {
            "entity_id": row[0],
            "content_preview": truncate_preview(row[1]),
            "count": row[2],
        }
        for row in rows
    ]
    data = {"count": len(groups), "observations": groups[:SAMPLE_LIMIT]}
    record_report(db, "duplicates", data)
    logger.info(f"[maintenance] Found {len(groups)} duplicate observation groups")
    return data


def prune_audit_logs(db) -> int:
    deleted = audit.prune(db)
    logger.info(
        f"[maintenance] Pruned {deleted} audit logs older than {audit.AUDIT_RETENTION_DAYS} days"
    )
    return deleted


def run_maintenance(db=None) -> dict:
    """
    Run orphans -> stale -> duplicates -> audit prune, in that order.

    Each step commits on its own, so a later failure leaves earlier reports
    in place.
    """
    owns_session = db is None
    if owns_session:
        if DB.SessionLocal is None:
            return {"status": "skipped", "reason": "db_not_initialized"}
        db = DB.SessionLocal()
    try:
        orphans = report_orphans(db)
        stale = report_stale(db)
        duplicates = report_duplicates(db)
        pruned = prune_audit_logs(db)
        return {
            "status": "ok",
            "orphans": orphans["count"],
            "stale": stale["count"],
            "duplicates": duplicates["count"],
            "audit_pruned": pruned,
        }
    finally:
        if owns_session:
            db.close()


def latest_reports(db, report_type: Optional[str] = None, limit: int = 10) -> list[dict]:
    if report_type is not None and report_type not in REPORT_TYPES:
        raise ValueError(f"report_type must be one of: {'|'.join(REPORT_TYPES)}")
    query = db.query(MaintenanceReport)
    if report_type:
        query = query.filter(MaintenanceReport.report_type == report_type)
    rows = (
        query.order_by(MaintenanceReport.created_at.desc(), MaintenanceReport.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "id": row.id,
            "report_type": row.report_type,
            "data": row.data,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in rows
    ]


async def maintenance_loop() -> None:
    if config.MAINTENANCE_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.MAINTENANCE_INTERVAL_SECONDS)
        try:
            summary = await asyncio.to_thread(run_maintenance)
            logger.info("maintenance_complete", extra=summary)
        except Exception as exc:
            logger.warning(f"Maintenance task error: {exc}")
