"""
Dependency helpers for the standalone FastAPI app.
"""

from __future__ import annotations

from typing import Generator, Optional

from fastapi import Depends, Header

from core.context import RequestContext
from core.db import open_session


async def get_request_context(
    x_actor: Optional[str] = Header(default=None),
    x_request_id: Optional[str] = Header(default=None),
    x_project_id: Optional[int] = Header(default=None),
) -> RequestContext:
    return RequestContext(actor=x_actor, request_id=x_request_id, project_id=x_project_id)


def get_db_session(
    context: RequestContext = Depends(get_request_context),
) -> Generator:
    db = open_session(context)
    try:
        yield db
    finally:
        db.close()
