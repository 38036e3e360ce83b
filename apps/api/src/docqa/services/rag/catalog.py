from __future__ import annotations

from collections.abc import Iterable

import structlog

from docqa.services.rag.memory_client import MemoryClient, SearchResult
from docqa.services.rag.registry import IngestionRegistry
from docqa.services.rag.types import ChunkResult, DocumentListing, DocumentSummary

log = structlog.get_logger(__name__)

BROAD_QUERY = " "
PREVIEW_CHARS = 200
ELLIPSIS = "…"

ENGINE_NOTE = (
    "Listed from a broad engine search; documents the engine does not return "
    "for an empty query are not shown."
)
CACHE_NOTE = (
    "The engine returned no documents; listing entries ingested by this process "
    "instead (partition counts and relevance unavailable)."
)
EMPTY_NOTE = "No documents found in the engine or the local ingestion cache."


def tag_filter(tag_key: str, tag_value: str | None) -> dict[str, list[str]] | None:
    if tag_value is None or not tag_value.strip():
        return None
    return {tag_key: [tag_value.strip()]}


def flatten_results(results: Iterable[SearchResult], *, default_index: str | None = None) -> list[ChunkResult]:
    chunks: list[ChunkResult] = []
    for result in results:
        for partition in result.partitions:
            chunks.append(
                ChunkResult(
                    document_id=result.document_id,
                    index=result.index or default_index or "",
                    source_name=result.source_name,
                    content_type=result.source_content_type,
                    source_url=result.source_url,
                    link=result.link,
                    partition_number=partition.partition_number,
                    section_number=partition.section_number,
                    relevance=partition.relevance,
                    text=partition.text,
                    tags=partition.tags,
                )
            )
    return chunks


def _preview(chunks: list[ChunkResult]) -> str:
    for chunk in chunks:
        text = chunk.text.strip()
        if not text:
            continue
        if len(text) > PREVIEW_CHARS:
            return text[:PREVIEW_CHARS] + ELLIPSIS
        return text
    return ""


def summarize_documents(chunks: Iterable[ChunkResult], *, tag_key: str) -> list[DocumentSummary]:
    groups: dict[tuple[str, str, str, str, str, str], list[ChunkResult]] = {}
    for chunk in chunks:
        groups.setdefault(chunk.document_key, []).append(chunk)

    summaries: list[DocumentSummary] = []
    for (index, document_id, source_name, content_type, source_url, link), members in groups.items():
        tags = {value for chunk in members for value in chunk.tags.get(tag_key, [])}
        max_relevance = max((chunk.relevance for chunk in members), default=0.0)
        summaries.append(
            DocumentSummary(
                index=index,
                document_id=document_id,
                source_name=source_name,
                content_type=content_type,
                source_url=source_url,
                link=link,
                tags=frozenset(tags),
                partition_count=len(members),
                max_relevance=round(max_relevance, 3),
                preview=_preview(members),
            )
        )

    summaries.sort(key=lambda summary: summary.max_relevance, reverse=True)
    return summaries


def _cached_summaries(registry: IngestionRegistry) -> list[DocumentSummary]:
    return [
        DocumentSummary(
            index=record.index,
            document_id=record.document_id,
            source_name=record.file_name,
            content_type="",
            source_url="",
            link="",
            tags=frozenset(),
            partition_count=0,
            max_relevance=0.0,
            preview="",
        )
        for record in registry.snapshot()
    ]


def list_documents(
    client: MemoryClient,
    registry: IngestionRegistry,
    *,
    index: str,
    tag_key: str,
    tag_value: str | None = None,
    limit: int,
) -> DocumentListing:
    """Enumerate indexed documents, falling back to the ingestion cache.

    The fallback only kicks in when the engine yields nothing at all; a
    partial engine answer is returned as-is since omissions cannot be
    detected from here.
    """
    response = client.search(
        query=BROAD_QUERY,
        index=index,
        filter=tag_filter(tag_key, tag_value),
        min_relevance=0.0,
        limit=limit,
    )
    documents = summarize_documents(
        flatten_results(response.results, default_index=index),
        tag_key=tag_key,
    )
    if documents:
        log.debug("documents_listed", index=index, tag_value=tag_value, count=len(documents))
        return DocumentListing(documents=documents, from_cache=False, note=ENGINE_NOTE)

    cached = _cached_summaries(registry)
    if cached:
        log.info("documents_listed_from_cache", index=index, tag_value=tag_value, count=len(cached))
        return DocumentListing(documents=cached, from_cache=True, note=CACHE_NOTE)

    return DocumentListing(documents=[], from_cache=False, note=EMPTY_NOTE)


def list_chunks(
    client: MemoryClient,
    *,
    index: str,
    tag_key: str,
    tag_value: str | None,
    min_relevance: float,
    limit: int,
) -> list[ChunkResult]:
    response = client.search(
        query=BROAD_QUERY,
        index=index,
        filter=tag_filter(tag_key, tag_value),
        min_relevance=min_relevance,
        limit=limit,
    )
    chunks = flatten_results(response.results, default_index=index)
    chunks.sort(key=lambda chunk: chunk.relevance, reverse=True)
    log.info(
        "chunks_listed",
        index=index,
        count=len(chunks),
        min_relevance=min_relevance,
        limit=limit,
        tag_value=tag_value,
    )
    return chunks
