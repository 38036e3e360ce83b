from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from functools import lru_cache
from pathlib import Path
from time import monotonic, perf_counter
from typing import Annotated, Any
import uuid

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, Response, UploadFile
from fastapi.responses import JSONResponse
import structlog

from docqa.config import get_settings
from docqa.db import get_engine
from docqa.llm import GenerationSettings, LLMClient, LLMClientError, OllamaChatClient
from docqa.logging_config import setup_logging
from docqa.services.rag import (
    DeletionCoordinator,
    IngestionRegistry,
    InMemoryIngestionRegistry,
    SqlIngestionRegistry,
    build_citations,
    ingest_file,
    list_chunks,
    list_documents,
    summarize_citations,
    wait_for_ready,
)
from docqa.services.rag.catalog import ELLIPSIS, PREVIEW_CHARS, tag_filter
from docqa.services.rag.memory_client import (
    KernelMemoryClient,
    MemoryClient,
    MemoryClientError,
    SearchResult,
)
from docqa.services.rag.types import (
    ChunkResult,
    Citation,
    DeletionOutcome,
    DocumentSummary,
    ReadinessResult,
    UploadIngestionResult,
)

setup_logging()
log = structlog.get_logger(__name__)

DEFAULT_MODEL_LABEL = "default"

PROMPT_TEMPLATE = """Please use this information to answer the question:
-----------------
{context}
-----------------

Question: {question}"""


def _ollama_client() -> OllamaChatClient:
    settings = get_settings()
    return OllamaChatClient(
        base_url=settings.ollama_base_url,
        default_model=settings.ollama_model,
        fallback_model=settings.ollama_fallback_model,
        timeout_seconds=settings.ollama_timeout_seconds,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    if settings.registry_backend == "sql":
        get_engine()
    if settings.ollama_probe_on_startup:
        _ollama_client().probe()
    log.info(
        "docqa_started",
        ingestion_index=settings.ingestion_index,
        registry_backend=settings.registry_backend,
        memory_base_url=settings.memory_base_url,
    )
    yield


app = FastAPI(title="Document QA API", version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    start = perf_counter()
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request.headers.get("x-request-id", str(uuid.uuid4()))
    )

    response = await call_next(request)

    log.info(
        "request_processed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((perf_counter() - start) * 1000, 2),
    )
    return response


def get_memory_client() -> MemoryClient:
    settings = get_settings()
    return KernelMemoryClient(
        base_url=settings.memory_base_url,
        api_key=settings.memory_api_key,
        timeout_seconds=settings.memory_timeout_seconds,
    )


@lru_cache
def get_registry() -> IngestionRegistry:
    settings = get_settings()
    if settings.registry_backend == "sql":
        return SqlIngestionRegistry(get_engine())
    return InMemoryIngestionRegistry()


def get_llm_client() -> LLMClient:
    return _ollama_client()


def get_deletion_coordinator(
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    registry: Annotated[IngestionRegistry, Depends(get_registry)],
) -> DeletionCoordinator:
    settings = get_settings()
    return DeletionCoordinator(
        client,
        registry,
        ingestion_index=settings.ingestion_index,
        confirm_timeout_seconds=settings.delete_confirm_seconds,
        poll_interval_seconds=settings.delete_poll_seconds,
        search_limit=settings.rag_limit,
        call_timeout_seconds=settings.memory_timeout_seconds,
    )


def _preview(text: str | None) -> str:
    if not text:
        return ""
    return text[:PREVIEW_CHARS] + ELLIPSIS if len(text) > PREVIEW_CHARS else text


def _upload_item(result: UploadIngestionResult, readiness: ReadinessResult | None = None) -> dict[str, Any]:
    item: dict[str, Any] = {
        "file_name": result.file_name,
        "document_id": result.document_id,
        "index": result.index,
    }
    if readiness is not None:
        item["ready"] = readiness.ready
        item["timed_out"] = readiness.timed_out
        item["diagnostic"] = readiness.diagnostic
    return item


def _summary_item(summary: DocumentSummary) -> dict[str, Any]:
    return {
        "index": summary.index,
        "document_id": summary.document_id,
        "source_name": summary.source_name,
        "content_type": summary.content_type,
        "source_url": summary.source_url,
        "link": summary.link,
        "tags": sorted(summary.tags),
        "partition_count": summary.partition_count,
        "max_relevance": summary.max_relevance,
        "preview": summary.preview,
    }


def _citation_item(citation: Citation) -> dict[str, Any]:
    return {
        "index": citation.index,
        "document_id": citation.document_id,
        "source_name": citation.source_name,
        "content_type": citation.content_type,
        "source_url": citation.source_url,
        "link": citation.link,
        "partitions": [
            {
                "partition_number": partition.partition_number,
                "section_number": partition.section_number,
                "relevance": partition.relevance,
                "text": partition.text,
            }
            for partition in citation.partitions
        ],
    }


def _chunk_item(chunk: ChunkResult) -> dict[str, Any]:
    return {
        "index": chunk.index,
        "document_id": chunk.document_id,
        "source_name": chunk.source_name,
        "content_type": chunk.content_type,
        "source_url": chunk.source_url,
        "link": chunk.link,
        "partition_number": chunk.partition_number,
        "section_number": chunk.section_number,
        "relevance": round(chunk.relevance, 3),
        "text": chunk.text,
        "tags": chunk.tags,
    }


def _build_context(results: list[SearchResult]) -> str:
    blocks = [
        f"[{result.source_name or result.link or result.document_id}#{partition.partition_number}]\n"
        f"{partition.text}"
        for result in results
        for partition in result.partitions
        if partition.text.strip()
    ]
    return "\n\n".join(blocks) or "No relevant information was found in the indexed documents."


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/extract/upload")
def upload_and_extract(
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    registry: Annotated[IngestionRegistry, Depends(get_registry)],
    files: Annotated[list[UploadFile] | None, File()] = None,
    country: str | None = Query(default=None),
    wait: bool = Query(default=False),
    wait_seconds: float | None = Query(default=None, alias="waitSeconds", ge=0),
) -> Any:
    if not files:
        raise HTTPException(status_code=400, detail="No files uploaded.")

    payloads = [(upload.filename or "", upload.file.read()) for upload in files]
    payloads = [(name, content) for name, content in payloads if content]
    if not payloads:
        raise HTTPException(status_code=400, detail="All uploaded files were empty.")

    settings = get_settings()
    tag_value = (country or "").strip() or settings.rag_default_tag_value
    tags = {settings.rag_tag_key: [tag_value]}

    committed: list[UploadIngestionResult] = []
    failures: list[dict[str, str]] = []
    for file_name, content in payloads:
        try:
            committed.append(
                ingest_file(
                    client,
                    registry,
                    content=content,
                    file_name=file_name,
                    index=settings.ingestion_index,
                    configured_index=settings.ingestion_index,
                    tags=tags,
                    upload_dir=Path(settings.rag_upload_dir),
                )
            )
        except (MemoryClientError, ValueError) as exc:
            failures.append({"file_name": file_name, "error": str(exc)})

    if failures:
        log.warning("upload_batch_failed", failed=len(failures), committed=len(committed))
        return JSONResponse(
            status_code=400,
            content={
                "detail": "Extraction failed: "
                + "; ".join(f"{failure['file_name']}: {failure['error']}" for failure in failures),
                "files": [_upload_item(result) for result in committed],
                "failures": failures,
            },
        )

    if not wait:
        return {"files": [_upload_item(result) for result in committed]}

    requested = settings.ready_default_wait_seconds if wait_seconds is None else wait_seconds
    # one deadline for the whole batch
    deadline = monotonic() + min(requested, settings.ready_max_wait_seconds)
    items = []
    for result in committed:
        readiness = wait_for_ready(
            client,
            document_id=result.document_id,
            index=result.index,
            timeout_seconds=max(0.0, deadline - monotonic()),
            poll_interval_seconds=settings.ready_poll_seconds,
            call_timeout_seconds=settings.memory_timeout_seconds,
        )
        items.append(_upload_item(result, readiness))
    return {"files": items}


@app.get("/indexed")
def get_indexed_documents(
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    registry: Annotated[IngestionRegistry, Depends(get_registry)],
    country: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
) -> dict[str, Any]:
    settings = get_settings()
    try:
        listing = list_documents(
            client,
            registry,
            index=settings.ingestion_index,
            tag_key=settings.rag_tag_key,
            tag_value=country,
            limit=limit or settings.rag_limit,
        )
    except MemoryClientError as exc:
        log.error("documents_list_failed", index=settings.ingestion_index, error=str(exc))
        raise HTTPException(status_code=400, detail=f"Failed to list indexed files: {exc}") from exc

    return {
        "index": settings.ingestion_index,
        "country": country,
        "count": len(listing.documents),
        "from_cache": listing.from_cache,
        "note": listing.note,
        "documents": [_summary_item(summary) for summary in listing.documents],
    }


@app.delete("/memory/{document_id}", status_code=204)
def delete_indexed_document(
    document_id: str,
    coordinator: Annotated[DeletionCoordinator, Depends(get_deletion_coordinator)],
    index: str | None = Query(default=None),
) -> Response:
    if not document_id.strip():
        raise HTTPException(status_code=400, detail="documentId is required.")

    try:
        result = coordinator.delete(document_id, index)
    except MemoryClientError as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Failed to delete document '{document_id}': {exc}",
        ) from exc

    if result.outcome is DeletionOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail=f"Document '{document_id}' not found in any index.")
    return Response(status_code=204)


@app.get("/memory/{document_id}/ready")
def get_document_readiness(
    document_id: str,
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    index: str | None = Query(default=None),
) -> dict[str, Any]:
    resolved_index = index or get_settings().ingestion_index
    try:
        ready = client.is_document_ready(document_id=document_id, index=resolved_index)
    except MemoryClientError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"document_id": document_id, "index": resolved_index, "ready": ready}


@app.get("/memory/{document_id}/status")
def get_document_pipeline_status(
    document_id: str,
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    index: str | None = Query(default=None),
) -> dict[str, Any]:
    resolved_index = index or get_settings().ingestion_index
    try:
        status = client.get_document_status(document_id=document_id, index=resolved_index)
    except MemoryClientError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    if status is None:
        raise HTTPException(
            status_code=404,
            detail=f"No pipeline status for document '{document_id}' in index '{resolved_index}'.",
        )
    return {
        "document_id": document_id,
        "index": resolved_index,
        "completed": status.completed,
        "failed": status.failed,
        "empty": status.empty,
        "remaining_steps": status.remaining_steps,
        "completed_steps": status.completed_steps,
    }


@app.get("/search")
def search(
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
    query: str = Query(default=""),
    model: str = Query(default=""),
    country: str | None = Query(default=None),
) -> dict[str, Any]:
    question = query.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Query cannot be empty.")

    settings = get_settings()
    tag_value = (country or "").strip() or settings.rag_default_tag_value
    log.info("query_received", query=question, country=tag_value)

    try:
        response = client.search(
            query=question,
            index=settings.ingestion_index,
            filter=tag_filter(settings.rag_tag_key, tag_value),
            min_relevance=settings.rag_min_relevance,
            limit=settings.rag_limit,
        )
    except MemoryClientError as exc:
        log.error("query_search_failed", index=settings.ingestion_index, error=str(exc))
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    for result in response.results:
        for partition in result.partitions:
            log.debug(
                "memory_partition",
                index=result.index,
                source=result.source_name or result.link,
                country=partition.tags.get(settings.rag_tag_key),
                relevance=partition.relevance,
                partition_number=partition.partition_number,
                text=_preview(partition.text),
            )

    model_label = model.strip() or DEFAULT_MODEL_LABEL
    prompt = PROMPT_TEMPLATE.format(context=_build_context(response.results), question=question)
    try:
        chat_result = llm_client.generate(
            prompt,
            GenerationSettings(
                model=model.strip() or None,
                max_tokens=settings.rag_max_tokens,
                temperature=settings.rag_temperature,
            ),
        )
    except LLMClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    log.info(
        "answer_generated",
        model=model_label,
        index=settings.ingestion_index,
        limit=settings.rag_limit,
        min_relevance=settings.rag_min_relevance,
        text=_preview(chat_result.answer),
    )

    citations = build_citations(response.results)
    overview = summarize_citations(citations)
    return {
        "question": question,
        "answer": chat_result.answer,
        "model": model_label,
        "citations": [_citation_item(citation) for citation in citations],
        "overview": {
            "documents": overview.document_count,
            "chunks": overview.chunk_count,
        },
    }


@app.get("/chunks")
def get_chunks(
    client: Annotated[MemoryClient, Depends(get_memory_client)],
    country: str | None = Query(default=None),
) -> dict[str, Any]:
    settings = get_settings()
    try:
        chunks = list_chunks(
            client,
            index=settings.ingestion_index,
            tag_key=settings.rag_tag_key,
            tag_value=country,
            min_relevance=settings.rag_min_relevance,
            limit=settings.rag_limit,
        )
    except MemoryClientError as exc:
        raise HTTPException(status_code=400, detail=f"Failed to list chunks: {exc}") from exc

    return {
        "index": settings.ingestion_index,
        "country": country,
        "min_relevance": settings.rag_min_relevance,
        "limit": settings.rag_limit,
        "chunks": [_chunk_item(chunk) for chunk in chunks],
    }


@app.get("/models")
def get_models(llm_client: Annotated[LLMClient, Depends(get_llm_client)]) -> list[str]:
    try:
        return llm_client.list_models()
    except LLMClientError as exc:
        raise HTTPException(
            status_code=502,
            detail=f"Failed to retrieve models from Ollama: {exc}",
        ) from exc


def run() -> None:
    import uvicorn

    uvicorn.run("docqa.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
