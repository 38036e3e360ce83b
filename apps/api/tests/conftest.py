from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from docqa.config import get_settings
from docqa.db import get_engine
from docqa.main import app, get_memory_client, get_registry
from docqa.services.rag.registry import InMemoryIngestionRegistry
from fakes import FakeMemoryEngine


@pytest.fixture(autouse=True)
def reset_api_caches(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    monkeypatch.setenv("OLLAMA_PROBE_ON_STARTUP", "false")
    monkeypatch.setenv("RAG_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setenv("RAG_INGESTION_INDEX", "documents")
    monkeypatch.setenv("RAG_DELETE_CONFIRM_SECONDS", "1")
    monkeypatch.setenv("RAG_DELETE_POLL_SECONDS", "0.05")
    monkeypatch.setenv("RAG_READY_POLL_SECONDS", "0.05")
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_registry.cache_clear()
    yield
    get_settings.cache_clear()
    get_engine.cache_clear()
    get_registry.cache_clear()


@pytest.fixture
def engine() -> FakeMemoryEngine:
    return FakeMemoryEngine()


@pytest.fixture
def registry() -> InMemoryIngestionRegistry:
    return InMemoryIngestionRegistry()


@pytest.fixture
def client(engine: FakeMemoryEngine, registry: InMemoryIngestionRegistry) -> Iterator[TestClient]:
    app.dependency_overrides[get_memory_client] = lambda: engine
    app.dependency_overrides[get_registry] = lambda: registry

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
