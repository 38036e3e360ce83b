from __future__ import annotations

from collections.abc import Callable
import time

import structlog

from docqa.services.rag.catalog import BROAD_QUERY
from docqa.services.rag.memory_client import DocumentNotFoundError, MemoryClient
from docqa.services.rag.registry import IngestionRegistry
from docqa.services.rag.types import DeletionOutcome, DeletionResult

log = structlog.get_logger(__name__)

# The engine's own default index, addressed by omitting the index name.
DEFAULT_INDEX = None


def _index_label(index: str | None) -> str:
    return "<default>" if index is None else index


class DeletionCoordinator:
    """Deletes a document from whichever index holds it.

    With an explicit index the delete is issued straight away and then
    confirmed by polling. Without one, candidate indexes are probed in
    order (listed indexes, the ingestion index, the engine default) and
    the first one holding the document is used.
    """

    def __init__(
        self,
        client: MemoryClient,
        registry: IngestionRegistry,
        *,
        ingestion_index: str,
        confirm_timeout_seconds: float = 5.0,
        poll_interval_seconds: float = 0.5,
        search_limit: int = 100,
        call_timeout_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._registry = registry
        self._ingestion_index = ingestion_index
        self._confirm_timeout_seconds = confirm_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._search_limit = search_limit
        self._call_timeout_seconds = call_timeout_seconds
        self._clock = clock
        self._sleep = sleep

    def delete(self, document_id: str, index: str | None = None) -> DeletionResult:
        if not document_id.strip():
            raise ValueError("document_id must not be empty")

        file_name = self._registry.resolve_file_name(document_id)
        explicit = bool(index and index.strip())
        candidates = [index.strip()] if explicit else self.candidate_indexes()

        for candidate in candidates:
            try:
                if not explicit and not self._holds_document(document_id, candidate):
                    continue
                self._issue_delete(document_id, candidate)
            except Exception as exc:
                if explicit:
                    log.error(
                        "memory_delete_error",
                        document_id=document_id,
                        index=candidate,
                        file_name=file_name,
                        error=str(exc),
                    )
                    raise
                log.warning(
                    "memory_delete_attempt_failed",
                    document_id=document_id,
                    index=_index_label(candidate),
                    error=str(exc),
                )
                continue

            confirmed = self._confirm_removed(document_id, candidate)
            self._registry.remove_all_for(document_id)
            log.info(
                "memory_deleted",
                document_id=document_id,
                index=_index_label(candidate),
                file_name=file_name,
                confirmed=confirmed,
            )
            return DeletionResult(
                outcome=DeletionOutcome.DELETED,
                document_id=document_id,
                index=candidate,
                confirmed=confirmed,
                file_name=file_name,
            )

        removed = self._registry.remove_all_for(document_id)
        log.error(
            "memory_delete_not_found",
            document_id=document_id,
            candidates=[_index_label(candidate) for candidate in candidates],
            stale_cache_entries=removed,
        )
        return DeletionResult(
            outcome=DeletionOutcome.NOT_FOUND,
            document_id=document_id,
            file_name=file_name,
        )

    def candidate_indexes(self) -> list[str | None]:
        names: list[str] = []
        try:
            names.extend(info.name for info in self._client.list_indexes(timeout=self._call_timeout_seconds))
        except Exception as exc:
            log.warning("memory_list_indexes_failed", error=str(exc))
        names.append(self._ingestion_index)

        seen: set[str] = set()
        candidates: list[str | None] = []
        for name in names:
            if not name or not name.strip() or name.casefold() in seen:
                continue
            seen.add(name.casefold())
            candidates.append(name)
        candidates.append(DEFAULT_INDEX)
        return candidates

    def _holds_document(self, document_id: str, index: str | None) -> bool:
        status = self._client.get_document_status(
            document_id=document_id, index=index, timeout=self._call_timeout_seconds
        )
        if status is not None:
            return True
        return self._chunk_present(document_id, index, timeout=self._call_timeout_seconds)

    def _issue_delete(self, document_id: str, index: str | None) -> None:
        try:
            self._client.delete_document(
                document_id=document_id, index=index, timeout=self._call_timeout_seconds
            )
        except DocumentNotFoundError:
            log.debug("memory_delete_already_gone", document_id=document_id, index=_index_label(index))

    def _chunk_present(self, document_id: str, index: str | None, *, timeout: float | None) -> bool:
        response = self._client.search(
            query=BROAD_QUERY,
            index=index,
            min_relevance=0.0,
            limit=self._search_limit,
            timeout=timeout,
        )
        return any(result.document_id == document_id for result in response.results)

    def _confirm_removed(self, document_id: str, index: str | None) -> bool:
        deadline = self._clock() + self._confirm_timeout_seconds

        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            call_timeout = self._bounded(remaining)
            try:
                status = self._client.get_document_status(
                    document_id=document_id, index=index, timeout=call_timeout
                )
                if status is None:
                    remaining = deadline - self._clock()
                    if remaining <= 0:
                        break
                    if not self._chunk_present(document_id, index, timeout=self._bounded(remaining)):
                        return True
            except Exception as exc:
                log.debug(
                    "memory_delete_confirm_failed",
                    document_id=document_id,
                    index=_index_label(index),
                    error=str(exc),
                )

            remaining = deadline - self._clock()
            if remaining <= 0:
                break
            self._sleep(min(self._poll_interval_seconds, remaining))

        log.warning(
            "memory_delete_unconfirmed",
            document_id=document_id,
            index=_index_label(index),
            timeout_seconds=self._confirm_timeout_seconds,
        )
        return False

    def _bounded(self, remaining: float) -> float:
        if self._call_timeout_seconds is None:
            return remaining
        return min(self._call_timeout_seconds, remaining)
