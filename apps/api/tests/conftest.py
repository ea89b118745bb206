from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from docqa.config import get_settings
from docqa.db import Base, get_engine
from docqa.main import app, get_embedding_client, get_llm_client


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    caches = (get_settings, get_engine, get_llm_client, get_embedding_client)
    for cached in caches:
        cached.cache_clear()
    yield
    for cached in caches:
        cached.cache_clear()


@pytest.fixture
def storage_dir(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    path = tmp_path / "documents"
    path.mkdir()
    monkeypatch.setenv("DOCQA_STORAGE_DIR", str(path))
    return path


@pytest.fixture
def engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, storage_dir: Path) -> Iterator[Engine]:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("API_DB_ECHO", "false")

    db_engine = get_engine()
    Base.metadata.create_all(bind=db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def client(engine: Engine) -> Iterator[TestClient]:
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
