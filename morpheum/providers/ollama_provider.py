"""Ollama client over the native /api/generate endpoint."""

import json
import time

import httpx
from loguru import logger

from morpheum.errors import ProviderError
from morpheum.providers.base import ChunkCallback, LLMClient, PlainText, ProviderIdentity


class OllamaClient(LLMClient):
    """Streams newline-delimited JSON from a local Ollama server."""

    def __init__(
        self,
        model: str = "morpheum-local",
        base_url: str = "http://localhost:11434",
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(ProviderIdentity("ollama", model, base_url))
        self.model = model
        self.base_url = base_url.rstrip("/")
        self._http = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )

    async def send_streaming(self, prompt: str, on_chunk: ChunkCallback) -> str:
        started = time.monotonic()
        parts: list[str] = []
        body = {"model": self.model, "prompt": prompt, "stream": True}
        try:
            async with self._http.stream("POST", "/api/generate", json=body) as resp:
                if resp.status_code >= 400:
                    detail = (await resp.aread()).decode("utf-8", "replace")
                    raise ProviderError(
                        f"Ollama returned HTTP {resp.status_code}: {detail[:200]}"
                    )
                async for line in resp.aiter_lines():
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        data = json.loads(line)
                    except json.JSONDecodeError:
                        logger.debug(f"Skipping non-JSON Ollama line: {line[:80]}")
                        continue
                    if data.get("error"):
                        raise ProviderError(f"Ollama error: {data['error']}")
                    piece = data.get("response") or ""
                    if piece:
                        parts.append(piece)
                        await on_chunk(PlainText(piece))
                    if data.get("done"):
                        break
        except httpx.HTTPError as e:
            logger.error(f"Ollama request to {self.base_url} failed: {e}")
            raise ProviderError(f"Ollama request failed: {e}") from e
        finally:
            self._record(time.monotonic() - started)

        return "".join(parts)

    async def close(self) -> None:
        await self._http.aclose()
