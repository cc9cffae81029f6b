"""
Embedding indexer: vectors for entities and observations via an Ollama or
OpenAI-compatible HTTP provider.
"""

from __future__ import annotations

import asyncio
import threading
import time
from typing import Callable, List, Optional

import httpx
from sqlalchemy import inspect, update

import core.config as config
from core.db import DB
from core.errors import EmbeddingProviderError
from core.models import MemoryEntity, MemoryObservation

logger = config.logger

MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.5

VECTOR_TABLES = (MemoryEntity.__tablename__, MemoryObservation.__tablename__)


class VectorCapability:
    """
    Process-wide answer to "does the schema carry embedding columns?".

    Computed once under a lock and cached until ``reset()``.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._enabled: Optional[bool] = None

    def enabled(self, engine=None) -> bool:
        with self._lock:
            if self._enabled is None:
                self._enabled = self._detect(engine or DB.engine)
            return self._enabled

    def reset(self) -> None:
        with self._lock:
            self._enabled = None

    @staticmethod
    def _detect(engine) -> bool:
        if engine is None:
            return False
        try:
            inspector = inspect(engine)
            for table in VECTOR_TABLES:
                columns = {column["name"] for column in inspector.get_columns(table)}
                if "embedding" not in columns:
                    return False
            return True
        except Exception as exc:
            logger.warning(f"Vector capability check failed: {exc}")
            return False


vector_capability = VectorCapability()


def compose_entity_text(entity) -> str:
    parts = []
    if entity.name:
        parts.append(f"{entity.entity_type}: {entity.name}")
    if entity.aliases:
        parts.append(f"Aliases: {entity.aliases}")
    if entity.description:
        parts.append(entity.description)
    return ". ".join(parts)


class EmbeddingService:
    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        dims: Optional[int] = None,
        client: Optional[httpx.Client] = None,
        capability: Optional[VectorCapability] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.base_url = (base_url or config.EMBEDDING_BASE_URL).rstrip("/")
        self.model = model or config.EMBEDDING_MODEL
        self.provider = (provider or config.EMBEDDING_PROVIDER).strip().lower()
        self.dims = dims or config.EMBEDDING_DIMS
        self.capability = capability or vector_capability
        self._client = client
        self._client_lock = threading.Lock()
        self._sleep = sleep

    # -- HTTP -----------------------------------------------------------------

    @property
    def client(self) -> httpx.Client:
        if self._client is not None:
            return self._client
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(
                        config.EMBEDDING_READ_TIMEOUT_SECONDS,
                        connect=config.EMBEDDING_CONNECT_TIMEOUT_SECONDS,
                    ),
                    limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
                    headers={"Content-Type": "application/json"},
                )
                logger.info("HTTP client initialized")
            return self._client

    def close(self) -> None:
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None
                logger.info("HTTP client closed")

    @property
    def endpoint(self) -> str:
        if self.provider == "openai_compatible":
            return f"{self.base_url}/embeddings"
        return f"{self.base_url}/api/embed"

    def _request_embedding(self, text: str) -> dict:
        try:
            response = self.client.post(self.endpoint, json={"model": self.model, "input": text})
        except httpx.HTTPError as exc:
            raise EmbeddingProviderError(f"request error: {exc}") from exc
        if not response.is_success:
            raise EmbeddingProviderError(f"HTTP {response.status_code}: {response.text[:200]}")
        try:
            return response.json()
        except ValueError as exc:
            raise EmbeddingProviderError("response body is not JSON") from exc

    def _extract_vector(self, body) -> List[float]:
        vector = None
        try:
            if self.provider == "openai_compatible":
                vector = body["data"][0]["embedding"]
            else:
                embeddings = body.get("embeddings")
                vector = embeddings[0] if embeddings else body.get("embedding")
        except (KeyError, IndexError, TypeError, AttributeError):
            vector = None
        if not isinstance(vector, list) or not vector:
            raise EmbeddingProviderError("No embedding found in response")
        return vector

    def _validate_dimensions(self, vector: List[float]) -> None:
        if len(vector) != self.dims:
            raise EmbeddingProviderError(
                f"Dimension mismatch: expected {self.dims}, got {len(vector)}"
            )

    def embed(self, text: Optional[str]) -> Optional[List[float]]:
        """
        Embedding vector for ``text``, or None.

        Blank input returns None without a provider call. Failures are retried
        with exponential backoff up to MAX_RETRIES, then logged; this never
        raises.
        """
        if not isinstance(text, str) or not text.strip():
            return None
        for attempt in range(MAX_RETRIES + 1):
            try:
                vector = self._extract_vector(self._request_embedding(text))
                self._validate_dimensions(vector)
                return vector
            except Exception as exc:
                if attempt >= MAX_RETRIES:
                    logger.error(f"Embedding failed after {MAX_RETRIES} retries: {exc}")
                    return None
                delay = RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    f"Embedding retry {attempt + 1}/{MAX_RETRIES} after {delay}s: {exc}"
                )
                self._sleep(delay)
        return None

    # -- Storage --------------------------------------------------------------

    def vector_enabled(self, db=None) -> bool:
        engine = db.get_bind() if db is not None else None
        return self.capability.enabled(engine)

    def _store_vector(self, db, record, vector: List[float]) -> None:
        table = type(record).__table__
        # Core UPDATE: no ORM hooks fire and updated_at keeps its value.
        # The caller owns the transaction.
        db.execute(
            update(table)
            .where(table.c.id == record.id)
            .values(embedding=vector, updated_at=table.c.updated_at)
        )
        db.flush()

    def _index(self, db, record, text: Optional[str]) -> dict:
        if not self.vector_enabled(db):
            return {"status": "skipped", "reason": "vector_disabled"}
        vector = self.embed(text)
        if vector is None:
            return {"status": "failed", "reason": "no_embedding"}
        self._store_vector(db, record, vector)
        return {"status": "stored"}

    def embed_entity(self, db, entity) -> dict:
        """
        Compute and stage the entity's vector in ``db``.

        Returns ``{"status": "stored" | "skipped" | "failed", ...}``; the
        caller commits.
        """
        return self._index(db, entity, compose_entity_text(entity))

    def embed_observation(self, db, observation) -> dict:
        return self._index(db, observation, observation.content)

    def _iter_missing(self, db, model, batch_size: int):
        last_id = 0
        while True:
            batch = (
                db.query(model)
                .filter(model.embedding.is_(None), model.id > last_id)
                .order_by(model.id.asc())
                .limit(batch_size)
                .all()
            )
            if not batch:
                return
            last_id = batch[-1].id
            yield from batch
            db.expunge_all()

    def backfill(self, db=None, batch_size: Optional[int] = None) -> dict:
        """Embed every entity, then every observation, that lacks a vector."""
        batch_size = batch_size or config.EMBEDDING_BACKFILL_BATCH_SIZE
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        owns_session = db is None
        if owns_session:
            if DB.SessionLocal is None:
                return {"status": "skipped", "reason": "db_not_initialized", "entities": 0, "observations": 0}
            db = DB.SessionLocal()
        try:
            if not self.vector_enabled(db):
                logger.warning("Vector columns not present, skipping embedding backfill")
                return {"status": "skipped", "reason": "vector_disabled", "entities": 0, "observations": 0}

            entities = 0
            for entity in self._iter_missing(db, MemoryEntity, batch_size):
                if self.embed_entity(db, entity)["status"] == "stored":
                    db.commit()
                entities += 1

            observations = 0
            for observation in self._iter_missing(db, MemoryObservation, batch_size):
                if self.embed_observation(db, observation)["status"] == "stored":
                    db.commit()
                observations += 1

            logger.info(f"Embedding backfill processed {entities} entities, {observations} observations")
            return {"status": "ok", "entities": entities, "observations": observations}
        finally:
            if owns_session:
                db.close()

    def healthcheck(self) -> dict:
        start = time.time()
        try:
            vector = self._extract_vector(self._request_embedding("healthcheck"))
            self._validate_dimensions(vector)
        except EmbeddingProviderError as exc:
            return {"status": "error", "error": str(exc)}
        return {"status": "ok", "latency_ms": int((time.time() - start) * 1000)}


embedding_service = EmbeddingService()


async def embedding_backfill_loop() -> None:
    if config.EMBEDDING_BACKFILL_INTERVAL_SECONDS <= 0:
        return
    while True:
        await asyncio.sleep(config.EMBEDDING_BACKFILL_INTERVAL_SECONDS)
        try:
            stats = await asyncio.to_thread(embedding_service.backfill)
            if stats.get("status") == "ok":
                logger.debug("embedding_backfill_complete", extra=stats)
        except Exception as exc:
            logger.warning(f"Embedding backfill error: {exc}")
