import pytest

from docqa.config import get_settings


def test_ingestion_index_uses_explicit_env(monkeypatch) -> None:
    monkeypatch.setenv("RAG_INGESTION_INDEX", "policies")

    settings = get_settings()

    assert settings.ingestion_index == "policies"


def test_blank_ingestion_index_falls_back_to_default(monkeypatch) -> None:
    monkeypatch.setenv("RAG_INGESTION_INDEX", "   ")

    settings = get_settings()

    assert settings.ingestion_index == "documents"


def test_numeric_settings_are_clamped_to_minimums(monkeypatch) -> None:
    monkeypatch.setenv("RAG_LIMIT", "0")
    monkeypatch.setenv("RAG_DELETE_POLL_SECONDS", "0")

    settings = get_settings()

    assert settings.rag_limit == 1
    assert settings.delete_poll_seconds == 0.01


def test_registry_backend_and_log_level_are_normalized(monkeypatch) -> None:
    monkeypatch.setenv("RAG_REGISTRY_BACKEND", "SQL")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    settings = get_settings()

    assert settings.registry_backend == "sql"
    assert settings.log_level == "DEBUG"


def test_invalid_log_level_is_rejected(monkeypatch) -> None:
    monkeypatch.setenv("LOG_LEVEL", "chatty")

    with pytest.raises(ValueError, match="Invalid LOG_LEVEL"):
        get_settings()
