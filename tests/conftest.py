import os

os.environ.setdefault("DB_BACKEND", "sqlite")
os.environ.setdefault("VECTOR_BACKEND", "none")
os.environ.setdefault("EMBEDDING_ON_WRITE", "false")
os.environ.setdefault("EMBEDDING_BACKFILL_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import core.config as config
from core.db import DB
from core.models import Base
from core.services.embedding_service import vector_capability


@pytest.fixture
def server_db(tmp_path, monkeypatch):
    db_path = tmp_path / "graphmem.sqlite"
    engine = create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)

    monkeypatch.setattr(config, "EXPORT_DIR", str(tmp_path / "exports"))
    monkeypatch.setattr(config, "IMPORT_SESSION_DIR", str(tmp_path / "sessions"))

    previous_engine = DB.engine
    previous_session = DB.SessionLocal
    DB.engine = engine
    DB.SessionLocal = SessionLocal
    vector_capability.reset()
    try:
        yield engine
    finally:
        DB.engine = previous_engine
        DB.SessionLocal = previous_session
        vector_capability.reset()
        engine.dispose()


@pytest.fixture
def db_session(server_db):
    db = DB.SessionLocal()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
