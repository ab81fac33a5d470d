"""
OpenRouter provider.

OpenAI-compatible ``POST /chat/completions`` with ``stream: true``, delivered
as server-sent events: ``data: {...}`` lines terminated by ``data: [DONE]``.
"""

from typing import AsyncIterator, Optional
import json
import httpx
import structlog

from contextforge.domain.context.context_assembler import AssembledPrompt
from contextforge.domain.errors import ProviderError, ProviderNotConfiguredError
from contextforge.domain.generation.provider import GenerationOptions, ProviderClient, ProviderEvent, ProviderHealth
from contextforge.domain.models.generation import GenerationUsage

logger = structlog.get_logger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class OpenRouterProvider(ProviderClient):
    name = "openrouter"

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://openrouter.ai/api/v1",
        default_model: str = "anthropic/claude-sonnet-4",
        timeout: float = 300.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.strip())

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=10.0)
            )
        return self._client

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "X-Title": "ContextForge",
        }

    async def close(self):
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @staticmethod
    def parse_line(line: str) -> Optional[ProviderEvent]:
        """Parse one SSE line. Comments, blanks, [DONE] and malformed data yield None."""

        line = line.strip()
        if not line.startswith(DATA_PREFIX):
            return None

        data = line[len(DATA_PREFIX):].strip()
        if not data or data == DONE_SENTINEL:
            return None

        try:
            chunk = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Skipping malformed OpenRouter event", data=data[:200])
            return None
        if not isinstance(chunk, dict):
            logger.debug("Skipping non-object OpenRouter event", data=data[:200])
            return None

        if "error" in chunk:
            error = chunk["error"]
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise ProviderError(f"OpenRouter error: {message}", provider="openrouter")

        text = ""
        choices = chunk.get("choices") or []
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            text = (choices[0].get("delta") or {}).get("content") or ""

        usage = None
        if isinstance(chunk.get("usage"), dict):
            usage = GenerationUsage(
                input_units=chunk["usage"].get("prompt_tokens"),
                output_units=chunk["usage"].get("completion_tokens"),
                cost=chunk["usage"].get("cost")
            )

        if not text and usage is None:
            return None
        return ProviderEvent(text=text, usage=usage)

    async def stream(self, prompt: AssembledPrompt, options: GenerationOptions) -> AsyncIterator[ProviderEvent]:
        # Fail before any network traffic
        if not self.configured:
            raise ProviderNotConfiguredError(
                "OpenRouter API key not configured. Set CONTEXTFORGE_OPENROUTER_API_KEY.",
                provider=self.name
            )

        client = self._get_client()
        payload = {
            "model": options.model or self.default_model,
            "messages": prompt.to_provider_messages(self.system_suffix(options)),
            "stream": True,
            "temperature": options.temperature,
            "usage": {"include": True},
        }

        logger.debug("OpenRouter stream request", model=payload["model"], messages=len(payload["messages"]))

        try:
            async with client.stream("POST", "/chat/completions", json=payload, headers=self._headers()) as response:
                if response.status_code != 200:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    raise ProviderError(
                        f"OpenRouter error: {response.status_code} {response.reason_phrase} - {body}",
                        provider=self.name
                    )

                async for line in response.aiter_lines():
                    event = self.parse_line(line)
                    if event is not None:
                        yield event
        except httpx.RequestError as e:
            raise ProviderError(f"OpenRouter request failed: {e}", provider=self.name) from e

    async def check_health(self) -> ProviderHealth:
        if not self.configured:
            # Expected when no key is set, not an error
            return ProviderHealth(ok=False, configured=False)

        try:
            response = await self._get_client().get("/models", headers=self._headers(), timeout=5.0)
        except httpx.RequestError as e:
            return ProviderHealth(ok=False, error=f"Cannot reach OpenRouter: {e}")

        if response.status_code != 200:
            return ProviderHealth(ok=False, error=f"OpenRouter returned {response.status_code}")
        return ProviderHealth(ok=True, model=self.default_model)
