from dataclasses import dataclass, field
from enum import Enum

UNKNOWN_FILE_NAME = "<unknown>"


@dataclass(frozen=True)
class IngestionRecord:
    file_name: str
    document_id: str
    index: str


@dataclass(frozen=True)
class UploadIngestionResult:
    file_name: str
    document_id: str
    index: str
    file_path: str


@dataclass(frozen=True)
class ChunkResult:
    document_id: str
    index: str
    source_name: str
    content_type: str
    source_url: str
    link: str
    partition_number: int
    section_number: int
    relevance: float
    text: str
    tags: dict[str, list[str]] = field(default_factory=dict)

    @property
    def document_key(self) -> tuple[str, str, str, str, str, str]:
        return (
            self.index,
            self.document_id,
            self.source_name,
            self.content_type,
            self.source_url,
            self.link,
        )


@dataclass(frozen=True)
class DocumentSummary:
    index: str
    document_id: str
    source_name: str
    content_type: str
    source_url: str
    link: str
    tags: frozenset[str]
    partition_count: int
    max_relevance: float
    preview: str


@dataclass(frozen=True)
class DocumentListing:
    documents: list[DocumentSummary]
    from_cache: bool
    note: str


@dataclass(frozen=True)
class CitationPartition:
    partition_number: int
    section_number: int
    relevance: float
    text: str


@dataclass(frozen=True)
class Citation:
    index: str
    document_id: str
    source_name: str
    content_type: str
    source_url: str
    link: str
    partitions: list[CitationPartition]


@dataclass(frozen=True)
class CitationOverview:
    document_count: int
    chunk_count: int


@dataclass(frozen=True)
class ReadinessResult:
    ready: bool
    timed_out: bool
    diagnostic: str | None


class DeletionOutcome(str, Enum):
    DELETED = "deleted"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class DeletionResult:
    outcome: DeletionOutcome
    document_id: str
    index: str | None = None
    confirmed: bool = False
    file_name: str = UNKNOWN_FILE_NAME
