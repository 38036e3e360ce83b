from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator
import structlog

log = structlog.get_logger(__name__)

_CAPACITY_MARKERS = (
    "batch",
    "too many tokens",
    "token limit",
    "context length",
    "maximum context",
    "payload too large",
)


class MemoryClientError(RuntimeError):
    def __init__(self, message: str, *, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class InvalidIndexError(MemoryClientError):
    def __init__(self, message: str, *, index: str | None, errors: list[str] | None = None) -> None:
        super().__init__(message, errors=errors)
        self.index = index


class IngestionCapacityError(MemoryClientError):
    pass


class DocumentNotFoundError(MemoryClientError):
    pass


def _fold(name: str) -> str:
    return name.replace("_", "").replace("-", "").lower()


def normalize_keys(payload: Mapping[str, Any], fields: Iterable[str]) -> dict[str, Any]:
    """Map any known spelling of a field name onto its canonical name.

    ``documentId``, ``DocumentId`` and ``document_id`` all resolve to
    ``document_id``. Unknown keys and null values are dropped so model
    defaults apply. The first spelling seen for a field wins.
    """
    canonical = {_fold(name): name for name in fields}
    normalized: dict[str, Any] = {}
    for key, value in payload.items():
        if not isinstance(key, str) or value is None:
            continue
        name = canonical.get(_fold(key))
        if name is not None and name not in normalized:
            normalized[name] = value
    return normalized


class _EngineModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    @model_validator(mode="before")
    @classmethod
    def _normalize_field_names(cls, data: Any) -> Any:
        if isinstance(data, Mapping):
            return normalize_keys(data, cls.model_fields)
        return data


class SearchPartition(_EngineModel):
    text: str = ""
    relevance: float = 0.0
    partition_number: int = 0
    section_number: int = 0
    tags: dict[str, list[str]] = {}

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> dict[str, list[str]]:
        if not isinstance(value, Mapping):
            return {}
        tags: dict[str, list[str]] = {}
        for key, raw in value.items():
            items = raw if isinstance(raw, list) else [raw]
            tags[str(key)] = [str(item) for item in items if item is not None]
        return tags


class SearchResult(_EngineModel):
    document_id: str = ""
    index: str = ""
    source_name: str = ""
    source_content_type: str = ""
    source_url: str = ""
    link: str = ""
    partitions: list[SearchPartition] = []


class SearchResponse(_EngineModel):
    query: str = ""
    no_result: bool = False
    results: list[SearchResult] = []


class DocumentStatus(_EngineModel):
    index: str = ""
    document_id: str = ""
    completed: bool = False
    failed: bool = False
    empty: bool = False
    steps: list[str] = []
    remaining_steps: list[str] = []
    completed_steps: list[str] = []


class IndexInfo(_EngineModel):
    name: str = ""


_ModelT = TypeVar("_ModelT", bound=_EngineModel)


class MemoryClient(Protocol):
    def import_document(
        self,
        *,
        content: bytes,
        file_name: str,
        document_id: str,
        tags: dict[str, list[str]],
        index: str | None,
        timeout: float | None = None,
    ) -> str: ...

    def search(
        self,
        *,
        query: str,
        index: str | None,
        filter: dict[str, list[str]] | None = None,
        min_relevance: float = 0.0,
        limit: int = -1,
        timeout: float | None = None,
    ) -> SearchResponse: ...

    def is_document_ready(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> bool: ...

    def get_document_status(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> DocumentStatus | None: ...

    def delete_document(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> None: ...

    def list_indexes(self, *, timeout: float | None = None) -> list[IndexInfo]: ...


def _error_messages(response: httpx.Response) -> list[str]:
    try:
        payload = response.json()
    except ValueError:
        text = response.text.strip()
        return [text] if text else []

    if not isinstance(payload, dict):
        return [str(payload)] if payload else []

    messages: list[str] = []
    errors = payload.get("errors")
    if isinstance(errors, dict):
        for field_errors in errors.values():
            if isinstance(field_errors, list):
                messages.extend(str(item) for item in field_errors)
            else:
                messages.append(str(field_errors))
    elif isinstance(errors, list):
        messages.extend(str(item) for item in errors)

    for key in ("detail", "message", "title"):
        value = payload.get(key)
        if isinstance(value, str) and value.strip() and value not in messages:
            messages.append(value)
    return messages


def error_from_response(response: httpx.Response, *, index: str | None) -> MemoryClientError:
    messages = _error_messages(response)
    summary = "; ".join(messages) or f"HTTP {response.status_code}"
    lowered = summary.lower()

    if response.status_code == 413 or any(marker in lowered for marker in _CAPACITY_MARKERS):
        return IngestionCapacityError(summary, errors=messages)
    if response.status_code == 400 and "index" in lowered:
        return InvalidIndexError(summary, index=index, errors=messages)
    if response.status_code == 404:
        return DocumentNotFoundError(summary, errors=messages)
    return MemoryClientError(f"HTTP {response.status_code}: {summary}", errors=messages)


class KernelMemoryClient:
    """HTTP client for a Kernel Memory web service."""

    def __init__(self, *, base_url: str, api_key: str = "", timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

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
        data: dict[str, Any] = {
            "documentId": document_id,
            "tags": [f"{key}:{value}" for key, values in tags.items() for value in values],
        }
        if index:
            data["index"] = index

        response = self._request(
            "POST",
            "/upload",
            timeout=timeout,
            data=data,
            files={"file": (file_name, content)},
        )
        if not response.is_success:
            raise error_from_response(response, index=index)

        payload = _json_object(response)
        returned = normalize_keys(payload, ["document_id"]).get("document_id")
        return str(returned) if returned else document_id

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
        body: dict[str, Any] = {
            "index": index,
            "query": query,
            "filters": [filter] if filter else [],
            "minRelevance": min_relevance,
            "limit": limit,
        }
        response = self._request("POST", "/search", timeout=timeout, json=body)
        if not response.is_success:
            raise error_from_response(response, index=index)
        return _parse(SearchResponse, _json_object(response))

    def is_document_ready(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> bool:
        status = self.get_document_status(document_id=document_id, index=index, timeout=timeout)
        return status is not None and status.completed and not status.empty

    def get_document_status(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> DocumentStatus | None:
        response = self._request(
            "GET",
            "/upload-status",
            timeout=timeout,
            params=_document_params(document_id, index),
        )
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise error_from_response(response, index=index)
        return _parse(DocumentStatus, _json_object(response))

    def delete_document(
        self, *, document_id: str, index: str | None, timeout: float | None = None
    ) -> None:
        response = self._request(
            "DELETE",
            "/documents",
            timeout=timeout,
            params=_document_params(document_id, index),
        )
        if not response.is_success:
            raise error_from_response(response, index=index)

    def list_indexes(self, *, timeout: float | None = None) -> list[IndexInfo]:
        response = self._request("GET", "/indexes", timeout=timeout)
        if not response.is_success:
            raise error_from_response(response, index=None)

        results = normalize_keys(_json_object(response), ["results"]).get("results")
        if not isinstance(results, list):
            raise MemoryClientError("Invalid indexes payload: missing results")
        return [_parse(IndexInfo, item) for item in results if isinstance(item, Mapping)]

    def _request(
        self,
        method: str,
        path: str,
        *,
        timeout: float | None,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
        data: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
    ) -> httpx.Response:
        headers = {"Authorization": self._api_key} if self._api_key else None
        effective_timeout = self._timeout_seconds if timeout is None else timeout
        log.debug("memory_request", method=method, path=path, params=params, timeout=effective_timeout)
        try:
            return httpx.request(
                method,
                f"{self._base_url}{path}",
                params=params,
                json=json,
                data=data,
                files=files,
                headers=headers,
                timeout=effective_timeout,
            )
        except httpx.HTTPError as exc:
            raise MemoryClientError(f"{method} {path} failed: {exc}") from exc


def _document_params(document_id: str, index: str | None) -> dict[str, str]:
    params = {"documentId": document_id}
    if index:
        params["index"] = index
    return params


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise MemoryClientError(f"Invalid engine payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise MemoryClientError("Invalid engine payload: expected a JSON object")
    return payload


def _parse(model: type[_ModelT], payload: Mapping[str, Any]) -> _ModelT:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        errors = [
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()
        ]
        raise MemoryClientError(
            f"Invalid engine payload for {model.__name__}: {'; '.join(errors)}", errors=errors
        ) from exc
