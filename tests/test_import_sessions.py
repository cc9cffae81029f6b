import os
import time

import pytest

from core.services.import_sessions import ImportSessionStore


@pytest.fixture
def store(tmp_path):
    return ImportSessionStore(str(tmp_path / "sessions"))


def test_round_trip(store):
    payload = {"entities": [{"name": "Redis"}]}
    session_id = store.create(payload, [{"name": "Redis", "match": None}], {"new": 1}, "1.0")

    assert store.exists(session_id)
    assert store.load_data(session_id) == payload
    assert store.load_matches(session_id) == [{"name": "Redis", "match": None}]
    assert store.load_stats(session_id) == {"new": 1}
    assert store.load_version(session_id) == "1.0"
    assert not store.report_exists(session_id)

    assert store.store_report(session_id, {"created": 1}) is True
    assert store.report_exists(session_id)
    assert store.load_report(session_id) == {"created": 1}


def test_cleanup_removes_every_blob(store):
    session_id = store.create({}, [], {}, None)
    store.store_report(session_id, {})
    store.cleanup(session_id)

    assert not store.exists(session_id)
    assert store.load_report(session_id) is None
    assert os.listdir(store.base_dir) == []


@pytest.mark.parametrize("session_id", [None, "", "../../etc/passwd", "a" * 65, "has space"])
def test_invalid_session_ids_are_inert(store, session_id):
    assert store.exists(session_id) is False
    assert store.load_data(session_id) is None
    assert store.load_version(session_id) is None
    assert store.report_exists(session_id) is False
    assert store.store_report(session_id, {"x": 1}) is False
    store.cleanup(session_id)


def test_missing_session_loads_none(store):
    assert store.load_data("00000000-0000-0000-0000-000000000000") is None


def test_corrupt_blob_loads_none(store):
    session_id = store.create({"ok": True}, [], {}, "1.0")
    with open(os.path.join(store.base_dir, f"{session_id}_stats.json"), "w", encoding="utf-8") as handle:
        handle.write("{not json")

    assert store.load_stats(session_id) is None
    assert store.load_data(session_id) == {"ok": True}


def test_cleanup_old_sessions(store):
    old_id = store.create({}, [], {}, "1.0")
    new_id = store.create({}, [], {}, "1.0")
    stale = time.time() - 7200
    for name in os.listdir(store.base_dir):
        if name.startswith(old_id):
            path = os.path.join(store.base_dir, name)
            os.utime(path, (stale, stale))

    assert store.cleanup_old_sessions(max_age_seconds=3600) == 4
    assert not store.exists(old_id)
    assert store.exists(new_id)


def test_cleanup_without_directory(tmp_path):
    assert ImportSessionStore(str(tmp_path / "missing")).cleanup_old_sessions(60) == 0


def test_default_directory_follows_config(server_db):
    import core.config as config
    from core.services.import_sessions import import_sessions

    assert import_sessions.base_dir == config.IMPORT_SESSION_DIR
