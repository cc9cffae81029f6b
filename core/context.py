"""
Request-scoped context objects for core services.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

SESSION_CONTEXT_KEY = "request_context"


@dataclass(frozen=True)
class RequestContext:
    actor: Optional[str] = None
    request_id: Optional[str] = None
    project_id: Optional[int] = None


def context_from_session(db) -> Optional[RequestContext]:
    """Return the context attached to an ORM session by ``open_session``."""
    if db is None:
        return None
    return db.info.get(SESSION_CONTEXT_KEY)


def actor_for_session(db) -> Optional[str]:
    context = context_from_session(db)
    if context is None:
        return None
    return context.actor


__all__ = [
    "RequestContext",
    "SESSION_CONTEXT_KEY",
    "context_from_session",
    "actor_for_session",
]
