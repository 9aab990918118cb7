from __future__ import annotations

import json
from types import SimpleNamespace

import httpx
import pytest

from morpheum.config.schema import Config
from morpheum.errors import ConfigurationError, ProviderError
from morpheum.providers.base import PlainText
from morpheum.providers.copilot_provider import CopilotClient
from morpheum.providers.factory import create_client, validate_credentials
from morpheum.providers.ollama_provider import OllamaClient
from morpheum.providers.openai_provider import OpenAIClient, _normalize_api_key


class _Stream:
    def __init__(self, deltas: list[str | None]) -> None:
        self.events = [
            SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=d))]) for d in deltas
        ]
        self.events.insert(1, SimpleNamespace(choices=[]))

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event


class _FakeCompletions:
    def __init__(self, deltas: list[str | None] | None = None, error: Exception | None = None) -> None:
        self.deltas = deltas or []
        self.error = error
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        return _Stream(self.deltas)


class _FakeOpenAI:
    def __init__(self, completions: _FakeCompletions) -> None:
        self.chat = SimpleNamespace(completions=completions)
        self.closed = False

    async def close(self) -> None:
        self.closed = True


class _Chunks:
    def __init__(self) -> None:
        self.items: list = []

    async def __call__(self, chunk) -> None:
        self.items.append(chunk)


@pytest.mark.asyncio
async def test_openai_streams_deltas_and_returns_full_text() -> None:
    completions = _FakeCompletions(["Hel", None, "lo"])
    client = OpenAIClient(api_key="sk-test", model="gpt-4", client=_FakeOpenAI(completions))
    chunks = _Chunks()

    assert await client.send_streaming("hi", chunks) == "Hello"
    assert chunks.items == [PlainText("Hel"), PlainText("lo")]
    assert completions.calls[0]["messages"] == [{"role": "user", "content": "hi"}]
    assert completions.calls[0]["model"] == "gpt-4"


@pytest.mark.asyncio
async def test_openai_errors_become_provider_errors() -> None:
    completions = _FakeCompletions(error=RuntimeError("429 Too Many Requests"))
    client = OpenAIClient(api_key="sk-test", client=_FakeOpenAI(completions))
    with pytest.raises(ProviderError, match="429"):
        await client.send("hi")
    assert client.metrics()["requests"] == 1


def test_bearer_prefix_is_dropped() -> None:
    assert _normalize_api_key("Bearer sk-abc ") == "sk-abc"
    assert _normalize_api_key(None) == ""


@pytest.mark.asyncio
async def test_ollama_reads_ndjson_stream() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        lines = [
            {"response": "Job's ", "done": False},
            {"response": "done!", "done": False},
            {"response": "", "done": True},
        ]
        return httpx.Response(200, content="\n".join(json.dumps(l) for l in lines) + "\n")

    client = OllamaClient(model="llama3", transport=httpx.MockTransport(handler))
    chunks = _Chunks()

    assert await client.send_streaming("go", chunks) == "Job's done!"
    assert seen["path"] == "/api/generate"
    assert seen["body"] == {"model": "llama3", "prompt": "go", "stream": True}
    assert len(chunks.items) == 2
    await client.close()


@pytest.mark.asyncio
async def test_ollama_http_error() -> None:
    client = OllamaClient(transport=httpx.MockTransport(lambda r: httpx.Response(404, text="model not found")))
    with pytest.raises(ProviderError, match="HTTP 404: model not found"):
        await client.send("go")


@pytest.mark.asyncio
async def test_ollama_error_field() -> None:
    body = json.dumps({"error": "out of memory"}) + "\n"
    client = OllamaClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, content=body)))
    with pytest.raises(ProviderError, match="out of memory"):
        await client.send("go")


def test_validate_credentials() -> None:
    config = Config()
    with pytest.raises(ConfigurationError, match="Unknown provider"):
        validate_credentials("claude", config)
    with pytest.raises(ConfigurationError, match="OpenAI API key"):
        validate_credentials("openai", config)
    with pytest.raises(ConfigurationError, match="GitHub token"):
        validate_credentials("copilot", config)
    validate_credentials("ollama", config)


def test_create_client_uses_configured_defaults() -> None:
    config = Config()
    config.providers.ollama.model = "coder"
    client = create_client("ollama", config)
    assert isinstance(client, OllamaClient)
    assert client.identity.target == "coder"

    config.providers.openai.api_key = "sk-test"
    client = create_client(" OpenAI ", config, target="gpt-4o")
    assert isinstance(client, OpenAIClient)
    assert client.identity.model == "gpt-4o"


def test_copilot_needs_repository() -> None:
    config = Config()
    config.providers.copilot.api_key = "ghp_test"
    with pytest.raises(ConfigurationError, match="No repository configured"):
        create_client("copilot", config)
    client = create_client("copilot", config, target="acme/widgets")
    assert isinstance(client, CopilotClient)
    assert client.identity.repository == "acme/widgets"
