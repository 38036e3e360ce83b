from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx
import structlog

log = structlog.get_logger(__name__)


class LLMClientError(RuntimeError):
    pass


@dataclass(frozen=True)
class GenerationSettings:
    model: str | None = None
    max_tokens: int = 512
    temperature: float = 0.2


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate(self, prompt: str, settings: GenerationSettings) -> ChatResult: ...

    def list_models(self) -> list[str]: ...


class OllamaChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._timeout_seconds = timeout_seconds

    @property
    def server_url(self) -> str:
        return self._base_url.removesuffix("/v1")

    def generate(self, prompt: str, settings: GenerationSettings) -> ChatResult:
        for model, used_fallback in self._model_candidates(settings.model):
            try:
                content = self._chat_completion(model=model, prompt=prompt, settings=settings)
            except (httpx.HTTPError, ValueError) as exc:
                if used_fallback or not self._has_fallback(settings.model):
                    raise LLMClientError(str(exc)) from exc
                log.warning("llm_default_model_failed", model=model, error=str(exc))
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        raise LLMClientError("No model candidates configured")

    def list_models(self) -> list[str]:
        try:
            response = httpx.get(f"{self.server_url}/api/tags", timeout=self._timeout_seconds)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMClientError(str(exc)) from exc

        models = payload.get("models") if isinstance(payload, dict) else None
        if not isinstance(models, list):
            raise LLMClientError("Invalid tags payload: missing models")

        names = [
            item["name"]
            for item in models
            if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"].strip()
        ]
        return sorted(names, key=str.casefold)

    def probe(self) -> bool:
        try:
            response = httpx.get(f"{self.server_url}/", timeout=self._timeout_seconds)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            log.error("ollama_connection_failed", url=self.server_url, error=str(exc))
            return False

        if "Ollama is running" not in response.text:
            log.error("ollama_connection_failed", url=self.server_url, error="unexpected response")
            return False

        log.info("ollama_connection_ok", url=self.server_url)
        return True

    def _has_fallback(self, requested_model: str | None) -> bool:
        return len(self._model_candidates(requested_model)) > 1

    def _model_candidates(self, requested_model: str | None) -> list[tuple[str, bool]]:
        if requested_model:
            return [(requested_model, False)]
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append((self._fallback_model, True))
        return candidates

    def _chat_completion(self, *, model: str, prompt: str, settings: GenerationSettings) -> str:
        response = httpx.post(
            f"{self._base_url}/chat/completions",
            json={
                "model": model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": settings.max_tokens,
                "temperature": settings.temperature,
            },
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()
