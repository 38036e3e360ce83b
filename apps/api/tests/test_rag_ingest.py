from pathlib import Path
import re

import pytest

from docqa.ingest import ingest_directory
from docqa.services.rag.ingest import ingest_file, safe_file_name, to_valid_document_id
from docqa.services.rag.memory_client import InvalidIndexError
from docqa.services.rag.registry import InMemoryIngestionRegistry
from fakes import FakeMemoryEngine


def test_document_id_is_sanitized_prefix_plus_random_suffix() -> None:
    document_id = to_valid_document_id("uploads/Quarterly Report (final) v2.PDF")

    assert re.fullmatch(r"quarterly_report-[0-9a-f]{8}", document_id)


def test_document_id_falls_back_to_doc_prefix() -> None:
    assert to_valid_document_id("").startswith("doc-")


def test_document_ids_are_unique_per_upload() -> None:
    assert to_valid_document_id("a.txt") != to_valid_document_id("a.txt")


def test_safe_file_name_strips_directories() -> None:
    assert safe_file_name("..\\..\\etc\\passwd") == "passwd"
    assert safe_file_name("/tmp/notes.md") == "notes.md"
    with pytest.raises(ValueError):
        safe_file_name("..")


def test_ingest_file_saves_imports_and_registers(tmp_path: Path) -> None:
    engine = FakeMemoryEngine()
    registry = InMemoryIngestionRegistry()

    result = ingest_file(
        engine,
        registry,
        content=b"pump maintenance",
        file_name="manuals/pump.txt",
        index="documents",
        configured_index="documents",
        tags={"country": ["NL"]},
        upload_dir=tmp_path / "uploads",
    )

    assert result.file_name == "pump.txt"
    assert result.index == "documents"
    assert Path(result.file_path).read_bytes() == b"pump maintenance"
    assert engine.documents[("documents", result.document_id)].tags == {"country": ["NL"]}
    assert registry.resolve_file_name(result.document_id) == "pump.txt"


def test_ingest_file_surfaces_invalid_index_without_registering(tmp_path: Path) -> None:
    engine = FakeMemoryEngine()
    registry = InMemoryIngestionRegistry()

    with pytest.raises(InvalidIndexError):
        ingest_file(
            engine,
            registry,
            content=b"x",
            file_name="x.txt",
            index="Bad Index",
            configured_index="documents",
            tags={},
            upload_dir=tmp_path,
        )

    assert registry.snapshot() == []


def test_ingest_directory_ingests_every_supported_file(tmp_path: Path) -> None:
    source_dir = tmp_path / "sample_docs"
    source_dir.mkdir()
    (source_dir / "a.txt").write_text("alpha", encoding="utf-8")
    (source_dir / "b.md").write_text("# beta", encoding="utf-8")
    (source_dir / "empty.txt").write_text("", encoding="utf-8")
    (source_dir / "image.png").write_bytes(b"\x89PNG")

    engine = FakeMemoryEngine()
    registry = InMemoryIngestionRegistry()

    results = ingest_directory(engine, registry, source_dir=source_dir, index="documents", tag_value="BE")

    assert [result.file_name for result in results] == ["a.txt", "b.md"]
    assert all(
        engine.documents[("documents", result.document_id)].tags == {"country": ["BE"]}
        for result in results
    )
    assert len(registry.snapshot()) == 2


def test_ingest_directory_rejects_missing_directory(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        ingest_directory(
            FakeMemoryEngine(),
            InMemoryIngestionRegistry(),
            source_dir=tmp_path / "missing",
            index="documents",
            tag_value="NL",
        )
