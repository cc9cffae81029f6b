"""
Export job endpoints: start a background export, poll it, download the file.
"""

from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel

from app.deps import get_db_session, get_request_context
from core.context import RequestContext
from core.errors import ValidationIssue
from core.services import export_service
from core.services.graph_service import project_scope_ids
from core.services.graph_traversal import list_root_nodes
from core.services.progress import ExportProgressNotifier, broker, export_topic
from core.validators import validate_id_list


router = APIRouter(prefix="/exports")


class ExportRequest(BaseModel):
    entity_ids: Optional[List[int]] = None
    project_id: Optional[int] = None


def _issue_detail(exc: ValidationIssue) -> dict:
    return {"error": str(exc), "field": exc.field, "error_type": exc.error_type}


def _seed_ids(db, request: ExportRequest, context: RequestContext) -> list[int]:
    if request.entity_ids:
        return validate_id_list(request.entity_ids, "entity_ids")
    project_id = request.project_id if request.project_id is not None else context.project_id
    scoped = project_scope_ids(db, project_id)
    if scoped is not None:
        return scoped
    return [entity.id for entity in list_root_nodes(db)]


@router.post("", status_code=202)
def start_export(
    request: ExportRequest,
    background_tasks: BackgroundTasks,
    context: RequestContext = Depends(get_request_context),
    db=Depends(get_db_session),
):
    try:
        entity_ids = _seed_ids(db, request, context)
    except ValidationIssue as exc:
        raise HTTPException(status_code=400, detail=_issue_detail(exc)) from exc

    export_id = uuid.uuid4().hex
    background_tasks.add_task(
        export_service.run_export,
        export_id,
        entity_ids,
        ExportProgressNotifier(broker),
    )
    return {
        "status": "started",
        "export_id": export_id,
        "topic": export_topic(export_id),
        "entity_count": len(entity_ids),
    }


@router.get("/{export_id}")
def export_status(export_id: str):
    try:
        export_service.validate_export_id(export_id)
    except ValidationIssue as exc:
        raise HTTPException(status_code=400, detail=_issue_detail(exc)) from exc
    if not export_service.export_exists(export_id):
        return {"export_id": export_id, "status": "pending"}
    return {
        "export_id": export_id,
        "status": "complete",
        "download_path": export_service.download_url(export_id),
    }


@router.get("/{export_id}/download")
def download_export(export_id: str):
    if not export_service.export_exists(export_id):
        raise HTTPException(status_code=404, detail="Export not found")
    return FileResponse(
        export_service.export_path(export_id),
        media_type="application/json",
        filename=f"graphmem_export_{export_id}.json",
    )
