from docqa.services.rag.catalog import list_chunks, list_documents
from docqa.services.rag.citations import build_citations, summarize_citations
from docqa.services.rag.deletion import DeletionCoordinator
from docqa.services.rag.ingest import ingest_file
from docqa.services.rag.readiness import wait_for_ready
from docqa.services.rag.registry import (
    IngestionRegistry,
    InMemoryIngestionRegistry,
    SqlIngestionRegistry,
)

__all__ = [
    "DeletionCoordinator",
    "IngestionRegistry",
    "InMemoryIngestionRegistry",
    "SqlIngestionRegistry",
    "build_citations",
    "ingest_file",
    "list_chunks",
    "list_documents",
    "summarize_citations",
    "wait_for_ready",
]
