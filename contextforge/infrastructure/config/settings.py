"""Configuration for ContextForge, loaded from CONTEXTFORGE_* environment variables."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from contextforge.domain.models.generation import ProviderKind


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CONTEXTFORGE_",
        env_file=".env",
        extra="ignore",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")
    service_name: str = Field(default="contextforge")

    # Generation
    flush_interval_ms: int = Field(default=100, ge=1, description="Throttle for record text flushes")
    default_provider: ProviderKind = Field(default=ProviderKind.OLLAMA)
    disable_agent_behavior: bool = Field(default=True, description="Append the agent-guard suffix")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    request_timeout_seconds: float = Field(default=300.0, description="Read timeout for HTTP providers")

    # Ollama
    ollama_base_url: str = Field(default="http://localhost:11434")
    ollama_model: str = Field(default="gpt-oss:latest")

    # OpenRouter
    openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1")
    openrouter_api_key: Optional[str] = Field(default=None)
    openrouter_model: str = Field(default="anthropic/claude-sonnet-4")

    # Claude Code CLI
    claude_code_enabled: bool = Field(default=True)
    claude_code_path: Optional[str] = Field(default=None, description="Explicit path to the claude executable")
    claude_model: Optional[str] = Field(default=None)

    # Langfuse tracing, disabled unless both keys are set
    langfuse_public_key: Optional[str] = Field(default=None)
    langfuse_secret_key: Optional[str] = Field(default=None)
    langfuse_host: str = Field(default="https://cloud.langfuse.com")

    # API server
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    @property
    def flush_interval_seconds(self) -> float:
        return self.flush_interval_ms / 1000

    @property
    def tracing_enabled(self) -> bool:
        return bool(self.langfuse_public_key and self.langfuse_secret_key)


@lru_cache()
def get_settings() -> Settings:
    return Settings()
