"""
Export jobs: serialize selected subtrees to a JSON file while publishing
progress for each visited node.
"""

from __future__ import annotations

import glob
import json
import os
import re
import time
from datetime import datetime
from typing import Iterable, Optional

import core.config as config
from core.db import DB
from core.errors import ValidationIssue
from core.services.graph_traversal import build_export_forest, count_subtree_nodes
from core.services.progress import ExportProgressNotifier, broker

logger = config.logger

FORMAT_VERSION = "1.0"
_EXPORT_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


def validate_export_id(export_id: str) -> str:
    if not isinstance(export_id, str) or not _EXPORT_ID_PATTERN.match(export_id):
        raise ValidationIssue(
            "export_id must contain only letters, digits, '-' or '_'",
            field="export_id",
            error_type="invalid_value",
        )
    return export_id


def export_path(export_id: str) -> str:
    validate_export_id(export_id)
    return os.path.join(config.EXPORT_DIR, f"export_{export_id}.json")


def export_exists(export_id: str) -> bool:
    try:
        return os.path.isfile(export_path(export_id))
    except ValidationIssue:
        return False


def download_url(export_id: str) -> str:
    return f"/exports/{export_id}/download"


def cleanup_old_exports(max_age_seconds: Optional[int] = None) -> int:
    if max_age_seconds is None:
        max_age_seconds = config.EXPORT_MAX_AGE_SECONDS
    if not os.path.isdir(config.EXPORT_DIR):
        return 0
    cutoff = time.time() - max_age_seconds
    removed = 0
    for path in glob.glob(os.path.join(config.EXPORT_DIR, "export_*.json")):
        try:
            if os.path.getmtime(path) < cutoff:
                os.remove(path)
                removed += 1
        except FileNotFoundError:
            continue
    return removed


def build_export_document(db, entity_ids: Iterable[int], observer=None) -> dict:
    return {
        "version": FORMAT_VERSION,
        "exported_at": datetime.utcnow().isoformat(),
        "root_nodes": build_export_forest(db, entity_ids, observer),
    }


class _ProgressCounter:
    def __init__(self, notifier: ExportProgressNotifier, export_id: str, total: int):
        self.notifier = notifier
        self.export_id = export_id
        self.total = total
        self.current = 0

    def node_visited(self, display_name: str) -> None:
        self.current += 1
        self.notifier.progress(self.export_id, self.current, self.total, f"Exporting: {display_name}")


def run_export(
    export_id: str,
    entity_ids: list[int],
    notifier: Optional[ExportProgressNotifier] = None,
    db=None,
) -> dict:
    """
    Export the subtrees under ``entity_ids`` into ``export_path(export_id)``.

    Failures are logged and published as an error event; the job itself
    always returns normally.
    """
    validate_export_id(export_id)
    notifier = notifier or ExportProgressNotifier(broker)
    owns_session = db is None
    try:
        if owns_session:
            if DB.SessionLocal is None:
                raise RuntimeError("Database not initialized - SessionLocal is None")
            db = DB.SessionLocal()
        os.makedirs(config.EXPORT_DIR, exist_ok=True)

        total = count_subtree_nodes(db, entity_ids)
        notifier.progress(export_id, 0, total, "Starting export...")

        counter = _ProgressCounter(notifier, export_id, total)
        document = build_export_document(db, entity_ids, counter)

        with open(export_path(export_id), "w", encoding="utf-8") as handle:
            json.dump(document, handle, indent=2)

        notifier.complete(
            export_id,
            success=True,
            download_path=download_url(export_id),
            message=f"Export complete! {counter.current} nodes exported.",
        )
        return {"status": "complete", "export_id": export_id, "nodes": counter.current}
    except Exception as exc:
        logger.exception(f"Export {export_id} failed: {exc}")
        notifier.error(export_id, f"Export failed: {exc}")
        return {"status": "error", "export_id": export_id, "error": str(exc)}
    finally:
        if owns_session and db is not None:
            db.close()
