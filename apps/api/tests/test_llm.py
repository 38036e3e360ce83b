import httpx
import pytest

from docqa.llm import GenerationSettings, LLMClientError, OllamaChatClient


class _FakeResponse:
    def __init__(self, payload: object, *, status_code: int = 200, text: str = "") -> None:
        self._payload = payload
        self.status_code = status_code
        self.text = text

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            request = httpx.Request("POST", "http://localhost:11434/v1/chat/completions")
            response = httpx.Response(self.status_code, request=request)
            raise httpx.HTTPStatusError("request failed", request=request, response=response)

    def json(self) -> object:
        return self._payload


def _completion(content: str) -> _FakeResponse:
    return _FakeResponse({"choices": [{"message": {"content": content}}]})


def _client() -> OllamaChatClient:
    return OllamaChatClient(
        base_url="http://localhost:11434/v1",
        default_model="main-model",
        fallback_model="small-model",
        timeout_seconds=9,
    )


def test_generate_sends_prompt_and_generation_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_post(url: str, *, json: dict[str, object], timeout: float) -> _FakeResponse:
        captured["url"] = url
        captured["json"] = json
        captured["timeout"] = timeout
        return _completion("  the answer  ")

    monkeypatch.setattr("docqa.llm.httpx.post", fake_post)

    result = _client().generate("prompt text", GenerationSettings(max_tokens=64, temperature=0.1))

    assert result.answer == "the answer"
    assert result.model == "main-model"
    assert result.used_fallback is False
    assert captured["url"] == "http://localhost:11434/v1/chat/completions"
    assert captured["json"] == {
        "model": "main-model",
        "messages": [{"role": "user", "content": "prompt text"}],
        "max_tokens": 64,
        "temperature": 0.1,
    }
    assert captured["timeout"] == 9


def test_generate_falls_back_when_default_model_fails(monkeypatch: pytest.MonkeyPatch) -> None:
    models: list[str] = []

    def fake_post(url: str, *, json: dict[str, object], timeout: float) -> _FakeResponse:
        models.append(str(json["model"]))
        if json["model"] == "main-model":
            return _FakeResponse({}, status_code=500)
        return _completion("fallback answer")

    monkeypatch.setattr("docqa.llm.httpx.post", fake_post)

    result = _client().generate("prompt", GenerationSettings())

    assert models == ["main-model", "small-model"]
    assert result.model == "small-model"
    assert result.used_fallback is True


def test_explicit_model_is_not_retried_on_fallback(monkeypatch: pytest.MonkeyPatch) -> None:
    models: list[str] = []

    def fake_post(url: str, *, json: dict[str, object], timeout: float) -> _FakeResponse:
        models.append(str(json["model"]))
        return _FakeResponse({"choices": []})

    monkeypatch.setattr("docqa.llm.httpx.post", fake_post)

    with pytest.raises(LLMClientError, match="missing choices"):
        _client().generate("prompt", GenerationSettings(model="llama3"))

    assert models == ["llama3"]


def test_list_models_sorts_names_case_insensitively(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_get(url: str, *, timeout: float) -> _FakeResponse:
        captured["url"] = url
        return _FakeResponse({"models": [{"name": "qwen2.5"}, {"name": "Llama3"}, {"name": " "}, {"model": "x"}]})

    monkeypatch.setattr("docqa.llm.httpx.get", fake_get)

    assert _client().list_models() == ["Llama3", "qwen2.5"]
    assert captured["url"] == "http://localhost:11434/api/tags"


def test_probe_checks_server_banner(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "docqa.llm.httpx.get",
        lambda url, *, timeout: _FakeResponse({}, text="Ollama is running"),
    )
    assert _client().probe() is True

    monkeypatch.setattr(
        "docqa.llm.httpx.get",
        lambda url, *, timeout: _FakeResponse({}, text="nginx"),
    )
    assert _client().probe() is False
