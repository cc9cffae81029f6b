import pytest
from fastapi.testclient import TestClient

from app.main import create_app
from core.db import DB
from core.services import graph_service
from core.services.maintenance_service import run_maintenance


@pytest.fixture
def client(server_db, monkeypatch):
    import app.routes.health as health

    monkeypatch.setattr(health, "_get_schema_revisions", lambda engine: ("head", "head"))
    with TestClient(create_app(with_lifespan=False)) as test_client:
        yield test_client


def test_root_lists_endpoints(client):
    body = client.get("/").json()
    assert body["service"] == "GraphMem"
    assert body["endpoints"]["exports"] == "/exports"


def test_health_reports_vector_columns(client):
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["database"]["schema_up_to_date"] is True
    assert body["embedding_provider"]["vector_columns"] is True
    assert body["embedding_provider"]["checked"] is False


def test_health_deps_checks_provider(client, monkeypatch):
    from core.services.embedding_service import embedding_service

    monkeypatch.setattr(embedding_service, "healthcheck", lambda: {"status": "ok", "latency_ms": 3})
    body = client.get("/health/deps").json()
    assert body["embedding_provider"]["checked"] is True
    assert body["embedding_provider"]["status"] == "ok"


def test_health_unavailable_without_database(client):
    engine = DB.engine
    DB.engine = None
    try:
        response = client.get("/health")
    finally:
        DB.engine = engine
    assert response.status_code == 503


def test_export_lifecycle(client, db_session):
    project = graph_service.create_entity(db_session, "HTTP Project", "Project")
    child = graph_service.create_entity(db_session, "HTTP Child", "Task")
    graph_service.create_relation(db_session, child.id, project.id, "part_of")

    started = client.post("/exports", json={"project_id": project.id})
    assert started.status_code == 202
    payload = started.json()
    assert payload["entity_count"] == 2
    assert payload["topic"] == f"export_progress_{payload['export_id']}"

    status = client.get(f"/exports/{payload['export_id']}").json()
    assert status["status"] == "complete"

    download = client.get(status["download_path"])
    assert download.status_code == 200
    assert download.json()["root_nodes"][0]["name"] == "HTTP Project"


def test_export_defaults_to_root_nodes(client, db_session):
    graph_service.create_entity(db_session, "Root One", "Project")
    graph_service.create_entity(db_session, "Root Two", "Tool")

    payload = client.post("/exports", json={}).json()
    assert payload["entity_count"] == 2


def test_export_rejects_bad_ids(client):
    assert client.post("/exports", json={"entity_ids": ["a"]}).status_code == 422
    assert client.get("/exports/bad$id").status_code == 400
    assert client.get("/exports/unknown/download").status_code == 404


def test_maintenance_reports_and_audit_endpoints(client, db_session):
    graph_service.create_entity(db_session, "Reported", "Tool")
    run_maintenance(db_session)

    reports = client.get("/maintenance/reports", params={"report_type": "orphans"}).json()
    assert reports["count"] == 1
    assert reports["reports"][0]["data"]["count"] == 1
    assert client.get("/maintenance/reports", params={"report_type": "bogus"}).status_code == 400

    trail = client.get("/audit", params={"auditable_type": "MemoryEntity"}).json()
    assert trail["count"] == 1
    assert trail["entries"][0]["action"] == "create"
    assert client.get("/audit", params={"limit": 100000}).status_code == 400



def test_export_scope_from_project_header(client, db_session):
    project = graph_service.create_entity(db_session, "Scoped", "Project")
    member = graph_service.create_entity(db_session, "Member", "Task")
    graph_service.create_entity(db_session, "Unrelated", "Tool")
    graph_service.create_relation(db_session, member.id, project.id, "part_of")

    response = client.post("/exports", json={}, headers={"X-Project-Id": str(project.id)})
    assert response.status_code == 202
    assert response.json()["entity_count"] == 2


def test_search_endpoints_fall_back_to_keyword(client, db_session, monkeypatch):
    from core.services.embedding_service import embedding_service

    monkeypatch.setattr(embedding_service, "embed", lambda text: None)
    entity = graph_service.create_entity(db_session, "Searchable", "Tool", description="graph index")
    graph_service.add_observation(db_session, entity.id, "indexed nightly")

    entities = client.get("/search/entities", params={"q": "graph"}).json()
    assert entities["mode"] == "keyword"
    assert entities["results"][0]["name"] == "Searchable"

    observations = client.get("/search/observations", params={"q": "nightly", "semantic": "false"}).json()
    assert observations["count"] == 1
    assert client.get("/search/entities", params={"q": "x", "limit": 100000}).status_code == 400
