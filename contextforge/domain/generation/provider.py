from typing import AsyncIterator, Optional
from abc import ABC, abstractmethod
from pydantic import BaseModel, Field

from contextforge.domain.context.context_assembler import AssembledPrompt
from contextforge.domain.models.generation import GenerationUsage


# Appended to the system instruction so chat-only calls don't drift into agent mode
AGENT_GUARD_SUFFIX = (
    "\n\nRespond directly in plain text. Do not use tools, run commands, "
    "or act autonomously."
)


class GenerationOptions(BaseModel):
    """Per-call knobs handed to a provider"""
    model: Optional[str] = Field(None, description="Model name; the provider default when omitted")
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    disable_agent_behavior: bool = Field(True, description="Append the agent-guard suffix to the system instruction")


class ProviderEvent(BaseModel):
    """One item of a provider stream: a text delta, a usage report, or both"""
    text: str = ""
    usage: Optional[GenerationUsage] = None


class ProviderHealth(BaseModel):
    ok: bool
    configured: bool = True
    disabled: bool = False
    error: Optional[str] = None
    version: Optional[str] = None
    model: Optional[str] = None


class ProviderClient(ABC):
    """
    A model backend.

    ``stream`` is an async generator. Closing it (``aclose``) must release the
    underlying connection or process; that is how cancellation reaches the
    provider.
    """

    name: str = "unknown"

    @abstractmethod
    def stream(self, prompt: AssembledPrompt, options: GenerationOptions) -> AsyncIterator[ProviderEvent]:
        """Stream events for one call. Raises ProviderError on failure."""
        pass

    @abstractmethod
    async def check_health(self) -> ProviderHealth:
        pass

    def system_suffix(self, options: GenerationOptions) -> str:
        return AGENT_GUARD_SUFFIX if options.disable_agent_behavior else ""
