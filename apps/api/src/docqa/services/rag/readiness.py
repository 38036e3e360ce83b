from __future__ import annotations

from collections.abc import Callable
import time

import structlog

from docqa.services.rag.memory_client import DocumentStatus, MemoryClient
from docqa.services.rag.types import ReadinessResult

log = structlog.get_logger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 2.0


def describe_status(status: DocumentStatus) -> str | None:
    if status.remaining_steps:
        return f"remaining steps: {', '.join(status.remaining_steps)}"
    if status.completed_steps:
        return f"completed steps: {', '.join(status.completed_steps)}"
    return None


def wait_for_ready(
    client: MemoryClient,
    *,
    document_id: str,
    index: str | None,
    timeout_seconds: float,
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS,
    call_timeout_seconds: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> ReadinessResult:
    """Block until the engine reports the document ready or ``timeout_seconds`` pass.

    A failed poll is logged and the loop carries on. Each engine call is
    bounded by the time left, so a hung engine cannot outlast the deadline.
    """
    deadline = clock() + max(0.0, timeout_seconds)
    diagnostic: str | None = None

    while True:
        remaining = deadline - clock()
        if remaining <= 0:
            break
        call_timeout = remaining if call_timeout_seconds is None else min(call_timeout_seconds, remaining)

        try:
            if client.is_document_ready(document_id=document_id, index=index, timeout=call_timeout):
                log.debug("document_ready", document_id=document_id, index=index)
                return ReadinessResult(ready=True, timed_out=False, diagnostic=None)
        except Exception as exc:
            log.debug("readiness_check_failed", document_id=document_id, index=index, error=str(exc))

        remaining = deadline - clock()
        if remaining <= 0:
            break
        call_timeout = remaining if call_timeout_seconds is None else min(call_timeout_seconds, remaining)

        try:
            status = client.get_document_status(document_id=document_id, index=index, timeout=call_timeout)
        except Exception as exc:
            log.debug("status_check_failed", document_id=document_id, index=index, error=str(exc))
        else:
            if status is not None:
                diagnostic = describe_status(status) or diagnostic

        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(poll_interval_seconds, remaining))

    if diagnostic is None:
        diagnostic = f"timed out after {timeout_seconds:g}s waiting for document readiness"
    log.info(
        "document_ready_timeout",
        document_id=document_id,
        index=index,
        timeout_seconds=timeout_seconds,
        diagnostic=diagnostic,
    )
    return ReadinessResult(ready=False, timed_out=True, diagnostic=diagnostic)
