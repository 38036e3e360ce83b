from __future__ import annotations

from dataclasses import dataclass, field

from docqa.services.rag.memory_client import (
    DocumentStatus,
    IndexInfo,
    InvalidIndexError,
    SearchResponse,
)

PIPELINE_STEPS = ["extract", "partition", "gen_embeddings", "save_records"]
DEFAULT_INDEX_NAME = "default"


@dataclass
class StoredDocument:
    document_id: str
    index: str
    file_name: str
    text: str
    tags: dict[str, list[str]]
    ready: bool = True
    relevance: float = 0.5


@dataclass
class FakeMemoryEngine:
    """In-memory stand-in for the retrieval engine used across API and service tests."""

    auto_ready: bool = True
    enumerable: bool = True
    extra_indexes: list[str] = field(default_factory=list)
    documents: dict[tuple[str, str], StoredDocument] = field(default_factory=dict)
    calls: list[tuple[str, str | None, str | None]] = field(default_factory=list)
    timeouts: list[float | None] = field(default_factory=list)

    def add(
        self,
        *,
        document_id: str,
        index: str,
        text: str,
        file_name: str | None = None,
        tags: dict[str, list[str]] | None = None,
        ready: bool = True,
        relevance: float = 0.5,
    ) -> None:
        self.documents[(index, document_id)] = StoredDocument(
            document_id=document_id,
            index=index,
            file_name=file_name or f"{document_id}.txt",
            text=text,
            tags=tags or {},
            ready=ready,
            relevance=relevance,
        )

    def import_document(
        self,
        *,
        content: bytes,
        file_name: str,
        document_id: str,
        tags: dict[str, list[str]],
        index: str | None,
        timeout: float | None = None,
    ) -> str:
        resolved = index or DEFAULT_INDEX_NAME
        self.calls.append(("import", document_id, index))
        if resolved != resolved.lower() or " " in resolved:
            raise InvalidIndexError(
                f"The index name '{resolved}' is invalid",
                index=resolved,
                errors=["index name must be lower case without spaces"],
            )
        self.add(
            document_id=document_id,
            index=resolved,
            text=content.decode("utf-8"),
            file_name=file_name,
            tags={key: list(values) for key, values in tags.items()},
            ready=self.auto_ready,
        )
        return document_id

    def search(
        self,
        *,
        query: str,
        index: str | None,
        filter: dict[str, list[str]] | None = None,
        min_relevance: float = 0.0,
        limit: int = -1,
        timeout: float | None = None,
    ) -> SearchResponse:
        resolved = index or DEFAULT_INDEX_NAME
        self.calls.append(("search", None, index))
        self.timeouts.append(timeout)
        if not query.strip() and not self.enumerable:
            return SearchResponse.model_validate({"query": query, "noResult": True, "results": []})

        results = []
        for document in self.documents.values():
            if document.index != resolved:
                continue
            if filter and any(
                not set(values) & set(document.tags.get(key, [])) for key, values in filter.items()
            ):
                continue
            paragraphs = [part for part in document.text.split("\n\n") if part.strip()] or [""]
            results.append(
                {
                    "documentId": document.document_id,
                    "index": document.index,
                    "sourceName": document.file_name,
                    "sourceContentType": "text/plain",
                    "sourceUrl": None,
                    "link": f"{document.index}/{document.document_id}/{document.file_name}",
                    "partitions": [
                        {
                            "text": paragraph,
                            "relevance": round(document.relevance - number * 0.1, 4),
                            "partitionNumber": number,
                            "sectionNumber": 0,
                            "tags": document.tags,
                        }
                        for number, paragraph in enumerate(paragraphs)
                    ],
                }
            )
        return SearchResponse.model_validate({"query": query, "results": results})

    def is_document_ready(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> bool:
        self.calls.append(("ready", document_id, index))
        self.timeouts.append(timeout)
        document = self.documents.get((index or DEFAULT_INDEX_NAME, document_id))
        return document is not None and document.ready

    def get_document_status(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> DocumentStatus | None:
        self.calls.append(("status", document_id, index))
        self.timeouts.append(timeout)
        document = self.documents.get((index or DEFAULT_INDEX_NAME, document_id))
        if document is None:
            return None
        return DocumentStatus.model_validate(
            {
                "index": document.index,
                "document_id": document.document_id,
                "completed": document.ready,
                "remaining_steps": [] if document.ready else PIPELINE_STEPS[1:],
                "completed_steps": PIPELINE_STEPS if document.ready else PIPELINE_STEPS[:1],
            }
        )

    def delete_document(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> None:
        self.calls.append(("delete", document_id, index))
        self.documents.pop((index or DEFAULT_INDEX_NAME, document_id), None)

    def list_indexes(self, *, timeout: float | None = None) -> list[IndexInfo]:
        self.calls.append(("list_indexes", None, None))
        names = sorted({index for index, _ in self.documents} | set(self.extra_indexes))
        return [IndexInfo(name=name) for name in names]
