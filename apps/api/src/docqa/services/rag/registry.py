from __future__ import annotations

from datetime import datetime, timezone
from threading import Lock
from typing import Protocol

from sqlalchemy import DateTime, bindparam, delete, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from docqa.models import IngestionRecordRow
from docqa.services.rag.types import UNKNOWN_FILE_NAME, IngestionRecord


class IngestionRegistry(Protocol):
    """File name -> (document id, index) cache consulted when the engine cannot enumerate."""

    def put(self, file_name: str, document_id: str, index: str) -> None: ...

    def resolve_file_name(self, document_id: str) -> str: ...

    def remove_all_for(self, document_id: str) -> int: ...

    def snapshot(self) -> list[IngestionRecord]: ...


def _file_key(file_name: str) -> str:
    return file_name.casefold()


class InMemoryIngestionRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._records: dict[str, IngestionRecord] = {}

    def put(self, file_name: str, document_id: str, index: str) -> None:
        record = IngestionRecord(file_name=file_name, document_id=document_id, index=index)
        with self._lock:
            self._records[_file_key(file_name)] = record

    def resolve_file_name(self, document_id: str) -> str:
        with self._lock:
            for record in self._records.values():
                if record.document_id == document_id:
                    return record.file_name
        return UNKNOWN_FILE_NAME

    def remove_all_for(self, document_id: str) -> int:
        with self._lock:
            keys = [key for key, record in self._records.items() if record.document_id == document_id]
            for key in keys:
                del self._records[key]
        return len(keys)

    def snapshot(self) -> list[IngestionRecord]:
        with self._lock:
            return list(self._records.values())


class SqlIngestionRegistry:
    """Same contract as the in-memory registry, persisted in ``ingestion_records``."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def put(self, file_name: str, document_id: str, index: str) -> None:
        # one statement: the upsert is atomic per file_key
        with self._engine.begin() as connection:
            connection.execute(
                text(
                    """
                    INSERT INTO ingestion_records (file_key, file_name, document_id, index_name, updated_at)
                    VALUES (:file_key, :file_name, :document_id, :index_name, :updated_at)
                    ON CONFLICT(file_key) DO UPDATE
                    SET file_name = EXCLUDED.file_name,
                        document_id = EXCLUDED.document_id,
                        index_name = EXCLUDED.index_name,
                        updated_at = EXCLUDED.updated_at
                    """
                ).bindparams(bindparam("updated_at", type_=DateTime(timezone=True))),
                {
                    "file_key": _file_key(file_name),
                    "file_name": file_name,
                    "document_id": document_id,
                    "index_name": index,
                    "updated_at": datetime.now(timezone.utc),
                },
            )

    def resolve_file_name(self, document_id: str) -> str:
        with Session(self._engine) as session:
            file_name = session.scalar(
                select(IngestionRecordRow.file_name)
                .where(IngestionRecordRow.document_id == document_id)
                .limit(1)
            )
        return file_name if file_name is not None else UNKNOWN_FILE_NAME

    def remove_all_for(self, document_id: str) -> int:
        with Session(self._engine) as session:
            result = session.execute(
                delete(IngestionRecordRow).where(IngestionRecordRow.document_id == document_id)
            )
            session.commit()
        return int(result.rowcount or 0)

    def snapshot(self) -> list[IngestionRecord]:
        with Session(self._engine) as session:
            rows = session.scalars(
                select(IngestionRecordRow).order_by(
                    IngestionRecordRow.updated_at.asc(), IngestionRecordRow.file_key.asc()
                )
            ).all()
        return [
            IngestionRecord(file_name=row.file_name, document_id=row.document_id, index=row.index_name)
            for row in rows
        ]
