"""
Ollama provider.

Streams ``POST /api/chat`` as newline-delimited JSON. Each line carries a
message delta; the final line has ``done: true`` and the call's counters.
"""

from typing import AsyncIterator, List, Optional
import json
import httpx
import structlog

from contextforge.domain.context.context_assembler import AssembledPrompt
from contextforge.domain.errors import ProviderError
from contextforge.domain.generation.provider import GenerationOptions, ProviderClient, ProviderEvent, ProviderHealth
from contextforge.domain.models.generation import GenerationUsage

logger = structlog.get_logger(__name__)


class OllamaProvider(ProviderClient):
    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        default_model: str = "gpt-oss:latest",
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=10.0)
            )
        return self._client

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _build_payload(self, prompt: AssembledPrompt, options: GenerationOptions) -> dict:
        return {
            "model": options.model or self.default_model,
            "messages": prompt.to_provider_messages(self.system_suffix(options)),
            "stream": True,
            "options": {"temperature": options.temperature},
        }

    @staticmethod
    def parse_line(line: str) -> Optional[ProviderEvent]:
        """Parse one NDJSON line. Blank or malformed lines yield None."""

        if not line.strip():
            return None
        try:
            chunk = json.loads(line)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed Ollama line", line=line[:200])
            return None
        if not isinstance(chunk, dict):
            logger.debug("Skipping non-object Ollama line", line=line[:200])
            return None

        message = chunk.get("message")
        text = (message.get("content") if isinstance(message, dict) else None) or ""
        usage = None
        if chunk.get("done"):
            total_duration = chunk.get("total_duration")
            usage = GenerationUsage(
                input_units=chunk.get("prompt_eval_count"),
                output_units=chunk.get("eval_count"),
                # Ollama reports nanoseconds
                duration_ms=total_duration / 1_000_000 if total_duration else None
            )

        if not text and usage is None:
            return None
        return ProviderEvent(text=text, usage=usage)

    async def stream(self, prompt: AssembledPrompt, options: GenerationOptions) -> AsyncIterator[ProviderEvent]:
        client = self._get_client()
        payload = self._build_payload(prompt, options)

        logger.debug("Ollama stream request", model=payload["model"], messages=len(payload["messages"]))

        try:
            async with client.stream("POST", "/api/chat", json=payload) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(
                        f"Ollama error: {response.status_code} {response.reason_phrase} - {body}",
                        provider=self.name
                    )

                async for line in response.aiter_lines():
                    event = self.parse_line(line)
                    if event is not None:
                        yield event
        except httpx.RequestError as e:
            raise ProviderError(f"Ollama request failed: {e}", provider=self.name) from e

    async def list_models(self) -> List[str]:
        client = self._get_client()
        response = await client.get("/api/tags", timeout=5.0)
        response.raise_for_status()
        return [model["name"] for model in response.json().get("models", [])]

    async def check_health(self) -> ProviderHealth:
        try:
            models = await self.list_models()
        except httpx.HTTPStatusError as e:
            return ProviderHealth(ok=False, error=f"Ollama returned {e.response.status_code}")
        except httpx.RequestError as e:
            return ProviderHealth(ok=False, error=f"Cannot connect to Ollama at {self.base_url}: {e}")

        return ProviderHealth(
            ok=True,
            model=self.default_model,
            error=None if self.default_model in models else f"Model {self.default_model} is not pulled"
        )
