"""
Read-only views over maintenance reports and the audit trail.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

import core.config as config
from app.deps import get_db_session
from core import audit
from core.services.maintenance_service import latest_reports
from core.validators import validate_limit


router = APIRouter()


@router.get("/maintenance/reports")
def maintenance_reports(
    report_type: Optional[str] = None,
    limit: int = Query(default=10, ge=1, le=100),
    db=Depends(get_db_session),
):
    try:
        reports = latest_reports(db, report_type=report_type, limit=limit)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"status": "ok", "count": len(reports), "reports": reports}


@router.get("/audit")
def audit_trail(
    auditable_type: Optional[str] = None,
    auditable_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = Query(default=100, ge=1),
    db=Depends(get_db_session),
):
    try:
        validate_limit(limit, "limit", config.MAX_RESULT_LIMIT)
        return audit.list_audit_logs(
            db,
            auditable_type=auditable_type,
            auditable_id=auditable_id,
            action=action,
            limit=limit,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
