"""OpenAI-compatible LLM client.

Works with OpenAI itself or any endpoint speaking the chat completions API.
"""

import time

from loguru import logger
from openai import AsyncOpenAI

from morpheum.errors import ProviderError
from morpheum.providers.base import ChunkCallback, LLMClient, PlainText, ProviderIdentity


def _normalize_api_key(value: str | None) -> str:
    """Drop a pasted ``Bearer`` prefix; the SDK adds its own."""
    token = (value or "").strip()
    if token.lower().startswith("bearer "):
        token = token[7:].strip()
    return token


class OpenAIClient(LLMClient):
    """Streams chat completions for a single-prompt conversation."""

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://api.openai.com/v1",
        max_retries: int = 3,
        timeout: float = 600.0,
        client: AsyncOpenAI | None = None,
    ):
        super().__init__(ProviderIdentity("openai", model, base_url, api_key or None))
        self.model = model
        self.client = client or AsyncOpenAI(
            api_key=_normalize_api_key(api_key),
            base_url=base_url,
            max_retries=max_retries,
            timeout=timeout,
        )

    async def send_streaming(self, prompt: str, on_chunk: ChunkCallback) -> str:
        started = time.monotonic()
        parts: list[str] = []
        try:
            stream = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                stream=True,
            )
            async for event in stream:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    parts.append(delta)
                    await on_chunk(PlainText(delta))
        except Exception as e:
            if isinstance(e, ProviderError):
                raise
            logger.error(f"OpenAI request failed: {e}")
            raise ProviderError(f"OpenAI request failed: {e}") from e
        finally:
            self._record(time.monotonic() - started)

        return "".join(parts)

    async def close(self) -> None:
        await self.client.close()
