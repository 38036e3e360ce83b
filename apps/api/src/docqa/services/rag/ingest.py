from __future__ import annotations

from pathlib import Path
import re
import uuid

import structlog

from docqa.services.rag.memory_client import (
    IngestionCapacityError,
    InvalidIndexError,
    MemoryClient,
    MemoryClientError,
)
from docqa.services.rag.registry import IngestionRegistry
from docqa.services.rag.types import UploadIngestionResult

log = structlog.get_logger(__name__)

_INVALID_ID_CHARS = re.compile(r"[^A-Za-z0-9._-]")
_ID_PREFIX_CHARS = 16


def to_valid_document_id(file_name: str) -> str:
    base_name = Path(Path(file_name).name).stem
    prefix = _INVALID_ID_CHARS.sub("_", base_name)[:_ID_PREFIX_CHARS]
    if not prefix.strip():
        prefix = "doc"
    return f"{prefix}-{uuid.uuid4().hex[:8]}".lower()


def safe_file_name(file_name: str) -> str:
    # strip client-supplied directories, including Windows-style ones
    name = Path(file_name.replace("\\", "/")).name
    if not name or name in {".", ".."}:
        raise ValueError(f"Invalid file name: {file_name!r}")
    return name


def save_upload(upload_dir: Path, file_name: str, content: bytes) -> Path:
    upload_dir.mkdir(parents=True, exist_ok=True)
    destination = upload_dir / safe_file_name(file_name)
    destination.write_bytes(content)
    return destination


def ingest_file(
    client: MemoryClient,
    registry: IngestionRegistry,
    *,
    content: bytes,
    file_name: str,
    index: str,
    configured_index: str,
    tags: dict[str, list[str]],
    upload_dir: Path,
) -> UploadIngestionResult:
    name = safe_file_name(file_name)
    file_path = save_upload(upload_dir, name, content)
    document_id = to_valid_document_id(name)

    log.debug("memory_ingesting", file_name=name, document_id=document_id, index=index)
    try:
        returned_id = client.import_document(
            content=content,
            file_name=name,
            document_id=document_id,
            tags=tags,
            index=index,
        )
    except InvalidIndexError as exc:
        log.error(
            "memory_ingest_invalid_index",
            file_name=name,
            document_id=document_id,
            index=exc.index or index,
            configured_index=configured_index,
            errors=exc.errors,
        )
        raise
    except IngestionCapacityError as exc:
        log.error(
            "memory_ingest_capacity_exceeded",
            file_name=name,
            document_id=document_id,
            index=index,
            errors=exc.errors,
            hint=(
                "reduce the partition size (max tokens per paragraph) or switch "
                "to an embedding backend with a larger batch limit"
            ),
        )
        raise
    except MemoryClientError as exc:
        log.error(
            "memory_ingest_failed",
            file_name=name,
            document_id=document_id,
            index=index,
            error=str(exc),
        )
        raise

    registry.put(name, returned_id, index)
    log.debug("memory_ingest_success", file_name=name, document_id=returned_id, index=index)
    return UploadIngestionResult(
        file_name=name,
        document_id=returned_id,
        index=index,
        file_path=str(file_path),
    )
