from __future__ import annotations

import argparse
from pathlib import Path
import sys

from docqa.config import get_settings
from docqa.main import get_memory_client, get_registry
from docqa.services.rag import ingest_file, wait_for_ready
from docqa.services.rag.loader import list_source_files
from docqa.services.rag.memory_client import MemoryClient, MemoryClientError
from docqa.services.rag.registry import IngestionRegistry
from docqa.services.rag.types import UploadIngestionResult


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="rag-ingest",
        description="Ingest every supported file of a directory into the retrieval engine",
    )
    parser.add_argument("source_dir", help="Directory containing documents to ingest")
    parser.add_argument(
        "--country",
        default=settings.rag_default_tag_value,
        help=f"Value for the '{settings.rag_tag_key}' tag attached to every document",
    )
    parser.add_argument(
        "--index",
        default=settings.ingestion_index,
        help="Target index name",
    )
    parser.add_argument(
        "--wait-seconds",
        type=float,
        default=0.0,
        help="Wait up to this many seconds per document for the pipeline to finish",
    )
    return parser


def ingest_directory(
    client: MemoryClient,
    registry: IngestionRegistry,
    *,
    source_dir: Path,
    index: str,
    tag_value: str,
) -> list[UploadIngestionResult]:
    settings = get_settings()
    tags = {settings.rag_tag_key: [tag_value]}
    return [
        ingest_file(
            client,
            registry,
            content=path.read_bytes(),
            file_name=path.name,
            index=index,
            configured_index=settings.ingestion_index,
            tags=tags,
            upload_dir=Path(settings.rag_upload_dir),
        )
        for path in list_source_files(source_dir)
    ]


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()
    settings = get_settings()
    client = get_memory_client()

    try:
        results = ingest_directory(
            client,
            get_registry(),
            source_dir=Path(args.source_dir),
            index=args.index,
            tag_value=args.country,
        )
    except (MemoryClientError, OSError, ValueError) as exc:
        print(f"[rag-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    for result in results:
        line = f"[rag-ingest] ingested file={result.file_name} document_id={result.document_id} index={result.index}"
        if args.wait_seconds > 0:
            readiness = wait_for_ready(
                client,
                document_id=result.document_id,
                index=result.index,
                timeout_seconds=args.wait_seconds,
                poll_interval_seconds=settings.ready_poll_seconds,
                call_timeout_seconds=settings.memory_timeout_seconds,
            )
            line += f" ready={readiness.ready}"
            if readiness.diagnostic:
                line += f" diagnostic={readiness.diagnostic!r}"
        print(line, flush=True)

    print(f"[rag-ingest] completed documents={len(results)}", flush=True)


if __name__ == "__main__":
    main()
