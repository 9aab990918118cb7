"""Base LLM client contract and progress chunk types."""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Union

from loguru import logger


# Sentinel used by older ticket clients to smuggle a dual rendering
# through a text-only chunk stream.
DUAL_MESSAGE_PREFIX = "__DUAL_MESSAGE__"


class ExecutionMode(str, Enum):
    """How a provider does its work."""

    ITERATIVE = "iterative"  # request/response chat, commands run locally
    TICKET = "ticket"  # out-of-band session, the provider polls for status


@dataclass(frozen=True)
class ProviderIdentity:
    """Which backend is active and what it targets."""

    kind: str  # openai | ollama | copilot
    target: str  # model name, or owner/repo for copilot
    base_url: str = ""
    credential: str | None = None

    @property
    def model(self) -> str:
        return self.target

    @property
    def repository(self) -> str:
        return self.target

    def describe(self) -> str:
        return f"{self.kind} ({self.target})"


@dataclass(frozen=True)
class PlainText:
    """A status line rendered as-is (markdown-aware)."""

    text: str


@dataclass(frozen=True)
class DualRendering:
    """One progress event with both a plain and a rich HTML rendering."""

    text: str
    html: str


ProgressChunk = Union[PlainText, DualRendering]
ChunkCallback = Callable[[ProgressChunk], Awaitable[None]]


def coerce_chunk(raw: "str | PlainText | DualRendering") -> ProgressChunk:
    """Normalize anything a client may emit into a ProgressChunk.

    Strings carrying the legacy dual-message prefix are decoded; a payload
    that fails to decode degrades to plain text of the raw chunk.
    """
    if isinstance(raw, (PlainText, DualRendering)):
        return raw
    if not raw.startswith(DUAL_MESSAGE_PREFIX):
        return PlainText(raw)
    try:
        payload = json.loads(raw[len(DUAL_MESSAGE_PREFIX):])
        text = payload["text"]
        html = payload["html"]
        if not isinstance(text, str) or not isinstance(html, str):
            raise TypeError("text and html must be strings")
    except (json.JSONDecodeError, KeyError, TypeError) as e:
        logger.warning(f"Malformed dual message chunk, sending as text: {e}")
        return PlainText(raw)
    return DualRendering(text=text, html=html)


def encode_dual(text: str, html: str) -> str:
    """Encode a dual rendering in the legacy prefixed form."""
    return DUAL_MESSAGE_PREFIX + json.dumps({"text": text, "html": html})


class LLMClient(ABC):
    """
    Abstract base class for LLM clients.

    Implementations emit progress through ``on_chunk`` and return the
    authoritative final text.
    """

    mode: ExecutionMode = ExecutionMode.ITERATIVE

    def __init__(self, identity: ProviderIdentity):
        self.identity = identity
        self.request_count = 0
        self.total_latency = 0.0

    @abstractmethod
    async def send_streaming(self, prompt: str, on_chunk: ChunkCallback) -> str:
        """Send a prompt, stream progress, return the full response."""
        pass

    async def send(self, prompt: str) -> str:
        """Send a prompt and return the full response without streaming."""

        async def _discard(_chunk: ProgressChunk) -> None:
            return None

        return await self.send_streaming(prompt, _discard)

    def metrics(self) -> dict[str, float]:
        avg = self.total_latency / self.request_count if self.request_count else 0.0
        return {
            "requests": self.request_count,
            "total_latency": round(self.total_latency, 3),
            "average_latency": round(avg, 3),
        }

    def _record(self, elapsed: float) -> None:
        self.request_count += 1
        self.total_latency += elapsed

    async def close(self) -> None:
        """Release transport resources held by the client."""
        return None
