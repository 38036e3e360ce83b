from __future__ import annotations

from collections.abc import Iterable

from docqa.services.rag.memory_client import SearchResult
from docqa.services.rag.types import Citation, CitationOverview, CitationPartition

MAX_PARTITIONS_PER_CITATION = 3


def build_citations(
    results: Iterable[SearchResult],
    *,
    max_partitions: int = MAX_PARTITIONS_PER_CITATION,
) -> list[Citation]:
    """Compact per-document citations, keeping the engine's document order."""
    citations: list[Citation] = []
    for result in results:
        ranked = sorted(result.partitions, key=lambda partition: partition.relevance, reverse=True)
        citations.append(
            Citation(
                index=result.index,
                document_id=result.document_id,
                source_name=result.source_name,
                content_type=result.source_content_type,
                source_url=result.source_url,
                link=result.link,
                partitions=[
                    CitationPartition(
                        partition_number=partition.partition_number,
                        section_number=partition.section_number,
                        relevance=round(partition.relevance, 3),
                        text=partition.text,
                    )
                    for partition in ranked[:max_partitions]
                ],
            )
        )
    return citations


def summarize_citations(citations: Iterable[Citation]) -> CitationOverview:
    document_ids: set[tuple[str, str]] = set()
    chunk_count = 0
    for citation in citations:
        document_ids.add((citation.index, citation.document_id))
        chunk_count += len(citation.partitions)
    return CitationOverview(document_count=len(document_ids), chunk_count=chunk_count)
