from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


class GenerationStatus(str, Enum):
    """Lifecycle status of a generation attempt"""
    STREAMING = "streaming"
    COMPLETE = "complete"
    ERROR = "error"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not GenerationStatus.STREAMING


class ProviderKind(str, Enum):
    """Supported model providers"""
    OLLAMA = "ollama"
    OPENROUTER = "openrouter"
    CLAUDE = "claude"


class GenerationUsage(BaseModel):
    """Resource usage reported for a finished generation"""
    input_units: Optional[int] = Field(None, description="Prompt tokens")
    output_units: Optional[int] = Field(None, description="Completion tokens")
    cost: Optional[float] = Field(None, description="Cost in USD, when the provider reports it")
    duration_ms: Optional[float] = Field(None, description="Wall-clock duration of the call")


class GenerationRecord(BaseModel):
    """Persisted progress and outcome of one generation attempt"""
    id: str
    session_id: str
    provider: str
    status: GenerationStatus = Field(default=GenerationStatus.STREAMING)
    text: str = Field(default="", description="Accumulated output, append-only while streaming")
    error: Optional[str] = None
    usage: Optional[GenerationUsage] = None
    cancel_requested: bool = Field(default=False, description="Set by the cancellation actor, never cleared")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
