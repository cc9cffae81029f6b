"""
Standalone FastAPI app wiring for GraphMem.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI

import core.config as config
from core.db import DB, init_db
from core.services.embedding_service import embedding_backfill_loop, embedding_service
from core.services.export_service import cleanup_old_exports
from core.services.import_sessions import import_sessions
from core.services.maintenance_service import maintenance_loop
from app.routes.health import router as health_router
from app.routes.root import router as root_router
from app.routes.exports import router as exports_router
from app.routes.reports import router as reports_router
from app.routes.search import router as search_router


cleanup_task = None
maintenance_task = None
embedding_backfill_task = None


def _run_cleanup_once() -> dict:
    exports_removed = cleanup_old_exports()
    sessions_removed = import_sessions.cleanup_old_sessions()
    return {"exports_removed": exports_removed, "session_files_removed": sessions_removed}


async def _cleanup_loop() -> None:
    if config.CLEANUP_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.CLEANUP_INTERVAL_SECONDS)
        try:
            await asyncio.to_thread(_run_cleanup_once)
        except Exception as exc:
            config.logger.warning(f"Cleanup task error: {exc}")


async def _cancel(task) -> None:
    if task:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    global cleanup_task, maintenance_task, embedding_backfill_task
    init_db()
    if config.CLEANUP_INTERVAL_SECONDS > 0:
        await asyncio.to_thread(_run_cleanup_once)
        cleanup_task = asyncio.create_task(_cleanup_loop())
    if config.MAINTENANCE_INTERVAL_SECONDS > 0:
        maintenance_task = asyncio.create_task(maintenance_loop())
    if config.EMBEDDING_BACKFILL_ENABLED and config.EMBEDDING_BACKFILL_INTERVAL_SECONDS > 0:
        embedding_backfill_task = asyncio.create_task(embedding_backfill_loop())
    try:
        yield
    finally:
        await _cancel(maintenance_task)
        await _cancel(cleanup_task)
        await _cancel(embedding_backfill_task)
        embedding_service.close()
        if DB.engine:
            DB.engine.dispose()


def create_app(with_lifespan: bool = True) -> FastAPI:
    application = FastAPI(
        title="GraphMem",
        redirect_slashes=False,
        lifespan=lifespan if with_lifespan else None,
    )
    application.include_router(health_router)
    application.include_router(root_router)
    application.include_router(exports_router)
    application.include_router(reports_router)
    application.include_router(search_router)
    return application


app = create_app()


def run() -> None:
    import os

    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8080")),
    )


if __name__ == "__main__":
    run()
