# Langfuse integration
from typing import TYPE_CHECKING, Any, Dict, Optional
import asyncio
import structlog
from langfuse import Langfuse

from contextforge.domain.models.generation import GenerationUsage

if TYPE_CHECKING:
    from contextforge.domain.context.context_assembler import AssembledPrompt
    from contextforge.domain.generation.provider import GenerationOptions

logger = structlog.get_logger(__name__)


class GenerationSpan:
    """One traced provider call. Every method is safe to call on a disabled span."""

    def __init__(self, observation: Optional[Any] = None):
        self._observation = observation
        self._ended = False

    @property
    def enabled(self) -> bool:
        return self._observation is not None

    def _end(self, **kwargs):
        if self._observation is None or self._ended:
            return
        self._ended = True
        try:
            self._observation.end(**kwargs)
        except Exception as e:
            # Tracing never decides a generation's outcome
            logger.warning("Failed to end Langfuse generation", error=str(e))

    def complete(self, output: str, usage: Optional[GenerationUsage] = None):
        usage_details: Dict[str, Any] = {}
        if usage:
            if usage.input_units is not None:
                usage_details["input"] = usage.input_units
            if usage.output_units is not None:
                usage_details["output"] = usage.output_units
            if usage.cost is not None:
                usage_details["total_cost"] = usage.cost
        self._end(output=output, usage=usage_details or None)

    def cancelled(self, output: str):
        self._end(output=output, level="WARNING", status_message="cancelled")

    def failed(self, output: str, message: str):
        self._end(output=output, level="ERROR", status_message=message)


class GenerationTracer:
    """Opens a Langfuse trace + generation per provider call, or does nothing without keys"""

    def __init__(self, client: Optional[Langfuse] = None):
        self.client = client

    @classmethod
    def from_settings(cls, settings) -> "GenerationTracer":
        if not settings.tracing_enabled:
            return cls()

        client = Langfuse(
            public_key=settings.langfuse_public_key,
            secret_key=settings.langfuse_secret_key,
            host=settings.langfuse_host
        )
        logger.info("Langfuse tracing enabled", host=settings.langfuse_host)
        return cls(client)

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def start(
        self,
        generation_id: str,
        session_id: str,
        provider: str,
        prompt: "AssembledPrompt",
        options: "GenerationOptions"
    ) -> GenerationSpan:
        if self.client is None:
            return GenerationSpan()

        try:
            trace = self.client.trace(
                id=generation_id,
                name="generation",
                session_id=session_id,
                tags=[provider],
                metadata={"segments": [segment.value for segment in prompt.segments()]}
            )
            observation = trace.generation(
                name=f"{provider}_stream",
                model=options.model,
                model_parameters={"temperature": options.temperature},
                input=prompt.to_provider_messages()
            )
        except Exception as e:
            logger.warning("Failed to open Langfuse trace", generation_id=generation_id, error=str(e))
            return GenerationSpan()

        return GenerationSpan(observation)

    async def flush(self):
        """Flush buffered events without blocking the event loop"""

        if self.client is None:
            return
        await asyncio.to_thread(self.client.flush)
