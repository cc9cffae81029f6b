import json
import os
import time

import pytest

import core.config as config
from core.errors import ValidationIssue
from core.services import export_service, graph_service
from core.services.progress import ExportProgressNotifier, LocalBroker, export_topic


def _notifier(export_id):
    broker = LocalBroker()
    events = []
    broker.subscribe(export_topic(export_id), events.append)
    return ExportProgressNotifier(broker), events


def _small_graph(db):
    project = graph_service.create_entity(db, "GraphMem", "Project")
    task = graph_service.create_entity(db, "Ship exports", "Task")
    graph_service.create_relation(db, task.id, project.id, "part_of")
    graph_service.add_observation(db, task.id, "streams progress")
    return project, task


def test_run_export_writes_document_and_reports_progress(db_session):
    project, _ = _small_graph(db_session)
    notifier, events = _notifier("job-1")

    result = export_service.run_export("job-1", [project.id], notifier, db=db_session)

    assert result == {"status": "complete", "export_id": "job-1", "nodes": 2}
    with open(export_service.export_path("job-1"), encoding="utf-8") as handle:
        document = json.load(handle)
    assert document["version"] == export_service.FORMAT_VERSION
    assert "exported_at" in document
    root = document["root_nodes"][0]
    assert root["name"] == "GraphMem"
    assert root["children"][0]["observations"][0]["content"] == "streams progress"

    assert [event["type"] for event in events] == ["progress", "progress", "progress", "complete"]
    assert events[0]["current"] == 0
    assert events[0]["message"] == "Starting export..."
    assert events[2]["current"] == events[2]["total"] == 2
    assert events[2]["percentage"] == 100.0
    assert events[-1]["download_path"] == "/exports/job-1/download"
    assert events[-1]["message"] == "Export complete! 2 nodes exported."


def test_export_of_empty_selection_still_completes(db_session):
    notifier, events = _notifier("empty")
    result = export_service.run_export("empty", [], notifier, db=db_session)

    assert result["status"] == "complete"
    assert events[0]["total"] == 1
    assert events[-1]["type"] == "complete"


def test_run_export_failure_publishes_error(db_session, monkeypatch):
    def _boom(db, seed_ids):
        raise RuntimeError("boom")

    monkeypatch.setattr(export_service, "count_subtree_nodes", _boom)
    notifier, events = _notifier("job-2")

    result = export_service.run_export("job-2", [1], notifier, db=db_session)

    assert result["status"] == "error"
    assert events == [{"type": "error", "error": "Export failed: boom"}]
    assert not export_service.export_exists("job-2")


def test_run_export_without_database(monkeypatch, tmp_path):
    from core.db import DB

    monkeypatch.setattr(config, "EXPORT_DIR", str(tmp_path))
    monkeypatch.setattr(DB, "SessionLocal", None)
    notifier, events = _notifier("job-3")

    assert export_service.run_export("job-3", [1], notifier)["status"] == "error"
    assert events[0]["type"] == "error"


@pytest.mark.parametrize("export_id", ["", "../secret", "a/b", "x" * 129])
def test_export_id_is_validated(export_id):
    with pytest.raises(ValidationIssue):
        export_service.validate_export_id(export_id)
    assert export_service.export_exists(export_id) is False


def test_cleanup_old_exports(server_db):
    os.makedirs(config.EXPORT_DIR, exist_ok=True)
    old_path = os.path.join(config.EXPORT_DIR, "export_old.json")
    new_path = os.path.join(config.EXPORT_DIR, "export_new.json")
    other_path = os.path.join(config.EXPORT_DIR, "notes.json")
    for path in (old_path, new_path, other_path):
        with open(path, "w", encoding="utf-8") as handle:
            handle.write("{}")
    stale = time.time() - 7200
    os.utime(old_path, (stale, stale))
    os.utime(other_path, (stale, stale))

    assert export_service.cleanup_old_exports(max_age_seconds=3600) == 1
    assert not os.path.exists(old_path)
    assert os.path.exists(new_path)
    assert os.path.exists(other_path)
