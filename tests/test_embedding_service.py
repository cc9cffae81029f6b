import json
import threading

import httpx
import pytest

from core.models import AuditLog, MemoryEntity, MemoryObservation
from core.services import graph_service
from core.services.embedding_service import (
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    EmbeddingService,
    VectorCapability,
    compose_entity_text,
)

DIMS = 3


class _ClosedCapability:
    def enabled(self, engine=None) -> bool:
        return False


def _ollama_handler(calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(json.loads(request.content))
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2, 0.3]]})

    return handler


def _service(handler, provider="ollama", capability=None, sleeps=None):
    return EmbeddingService(
        base_url="http://embeddings.test",
        model="test-model",
        provider=provider,
        dims=DIMS,
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        capability=capability or VectorCapability(),
        sleep=(sleeps.append if sleeps is not None else (lambda _: None)),
    )


def test_ollama_request_shape():
    calls = []
    service = _service(_ollama_handler(calls))
    assert service.embed("hello graph") == [0.1, 0.2, 0.3]
    assert calls == [{"model": "test-model", "input": "hello graph"}]
    assert service.endpoint == "http://embeddings.test/api/embed"


def test_openai_compatible_response():
    def handler(request):
        assert request.url.path == "/embeddings"
        return httpx.Response(200, json={"data": [{"embedding": [1.0, 2.0, 3.0]}]})

    service = _service(handler, provider="openai_compatible")
    assert service.embed("hi") == [1.0, 2.0, 3.0]


@pytest.mark.parametrize("text", [None, "", "   \n"])
def test_blank_input_makes_no_call(text):
    calls = []
    service = _service(_ollama_handler(calls))
    assert service.embed(text) is None
    assert calls == []


def test_retries_with_exponential_backoff_then_gives_up():
    attempts = []
    sleeps = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(503, text="busy")

    service = _service(handler, sleeps=sleeps)
    assert service.embed("retry me") is None
    assert len(attempts) == MAX_RETRIES + 1
    assert sleeps == [RETRY_BASE_DELAY * (2 ** attempt) for attempt in range(MAX_RETRIES)]


def test_recovers_after_transient_failure():
    responses = iter([
        httpx.Response(500, text="oops"),
        httpx.Response(200, json={"embeddings": [[0.5, 0.5, 0.5]]}),
    ])
    service = _service(lambda request: next(responses))
    assert service.embed("second time lucky") == [0.5, 0.5, 0.5]


def test_dimension_mismatch_is_a_failure():
    def handler(request):
        return httpx.Response(200, json={"embeddings": [[0.1, 0.2]]})

    service = _service(handler)
    assert service.embed("too short") is None


def test_transport_error_is_retried():
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.ConnectError("refused", request=request)

    service = _service(handler)
    assert service.embed("unreachable") is None
    assert len(attempts) == MAX_RETRIES + 1


def test_ollama_singular_embedding_key():
    def handler(request):
        return httpx.Response(200, json={"embedding": [0.3, 0.2, 0.1]})

    service = _service(handler)
    assert service.embed("legacy endpoint") == [0.3, 0.2, 0.1]


def test_non_json_success_body_is_retried():
    sleeps = []
    responses = iter([
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json={"embeddings": [[0.4, 0.5, 0.6]]}),
    ])
    service = _service(lambda request: next(responses), sleeps=sleeps)
    assert service.embed("through a proxy") == [0.4, 0.5, 0.6]
    assert sleeps == [RETRY_BASE_DELAY]


def test_lazy_client_is_created_once_across_threads():
    service = EmbeddingService(base_url="http://embeddings.test", dims=DIMS)
    barrier = threading.Barrier(8)
    clients = []

    def grab():
        barrier.wait()
        clients.append(service.client)

    threads = [threading.Thread(target=grab) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    try:
        assert len(clients) == 8
        assert len({id(client) for client in clients}) == 1
    finally:
        service.close()
    assert service._client is None


def test_compose_entity_text():
    entity = MemoryEntity(name="Redis", entity_type="Service", aliases="cache", description="In-memory store")
    assert compose_entity_text(entity) == "Service: Redis. Aliases: cache. In-memory store"


def test_embed_entity_stores_vector_without_side_effects(db_session):
    entity = graph_service.create_entity(db_session, "Redis", "Service")
    updated_at = entity.updated_at
    audit_before = db_session.query(AuditLog).count()

    service = _service(_ollama_handler([]))
    assert service.embed_entity(db_session, entity) == {"status": "stored"}
    db_session.commit()

    stored = db_session.query(MemoryEntity.embedding).filter(MemoryEntity.id == entity.id).scalar()
    assert stored == [0.1, 0.2, 0.3]
    db_session.refresh(entity)
    assert entity.updated_at == updated_at
    assert db_session.query(AuditLog).count() == audit_before


def test_closed_capability_skips_provider(db_session):
    calls = []
    entity = graph_service.create_entity(db_session, "Redis", "Service")
    service = _service(_ollama_handler(calls), capability=_ClosedCapability())

    assert service.embed_entity(db_session, entity) == {"status": "skipped", "reason": "vector_disabled"}
    assert calls == []
    assert service.backfill(db_session)["reason"] == "vector_disabled"


def test_capability_detects_columns(server_db):
    capability = VectorCapability()
    assert capability.enabled(server_db) is True
    assert VectorCapability._detect(None) is False


def test_backfill_fills_missing_vectors(db_session):
    entity = graph_service.create_entity(db_session, "Redis", "Service")
    graph_service.add_observation(db_session, entity.id, "used for sessions")
    graph_service.add_observation(db_session, entity.id, "evicts with LRU")

    calls = []
    service = _service(_ollama_handler(calls))
    result = service.backfill(db_session, batch_size=1)
    assert result == {"status": "ok", "entities": 1, "observations": 2}
    assert len(calls) == 3

    missing = db_session.query(MemoryObservation).filter(MemoryObservation.embedding.is_(None)).count()
    assert missing == 0
    assert service.backfill(db_session)["observations"] == 0


def test_backfill_moves_past_failures(db_session):
    graph_service.create_entity(db_session, "One", "Tool")
    graph_service.create_entity(db_session, "Two", "Tool")

    def handler(request):
        return httpx.Response(500, text="down")

    service = _service(handler)
    result = service.backfill(db_session, batch_size=1)
    assert result["entities"] == 2
    missing = db_session.query(MemoryEntity).filter(MemoryEntity.embedding.is_(None)).count()
    assert missing == 2


def test_embedding_on_write_uses_given_embedder(db_session):
    calls = []
    service = _service(_ollama_handler(calls))
    entity = graph_service.create_entity(db_session, "Indexed", "Tool", embedder=service)
    graph_service.update_entity(db_session, entity.id, description="now with text", embedder=service)
    graph_service.update_entity(db_session, entity.id, description="now with text", embedder=service)

    assert len(calls) == 2


def test_healthcheck_reports_errors():
    service = _service(lambda request: httpx.Response(500, text="down"))
    status = service.healthcheck()
    assert status["status"] == "error"
    assert "HTTP 500" in status["error"]


def test_capability_closed_without_embedding_columns(tmp_path):
    from sqlalchemy import create_engine, text

    engine = create_engine(f"sqlite:///{tmp_path / 'plain.sqlite'}")
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE memory_entities (id INTEGER PRIMARY KEY)"))
        conn.execute(text("CREATE TABLE memory_observations (id INTEGER PRIMARY KEY, embedding TEXT)"))
    try:
        assert VectorCapability().enabled(engine) is False
    finally:
        engine.dispose()


def test_stored_vector_is_left_to_the_caller_to_commit(db_session):
    entity = graph_service.create_entity(db_session, "Staged", "Tool")
    service = _service(_ollama_handler([]))

    assert service.embed_entity(db_session, entity)["status"] == "stored"
    db_session.rollback()

    stored = db_session.query(MemoryEntity.embedding).filter(MemoryEntity.id == entity.id).scalar()
    assert stored is None


def test_failed_embedding_reports_failed_status(db_session):
    entity = graph_service.create_entity(db_session, "Unlucky", "Tool")
    graph_service.add_observation(db_session, entity.id, "never indexed")
    observation = entity.observations[0]
    service = _service(lambda request: httpx.Response(500, text="down"))

    assert service.embed_entity(db_session, entity) == {"status": "failed", "reason": "no_embedding"}
    assert service.embed_observation(db_session, observation)["status"] == "failed"
