from typing import Dict

from contextforge.domain.generation.provider import ProviderClient
from contextforge.domain.models.generation import ProviderKind

from .ollama_provider import OllamaProvider
from .openrouter_provider import OpenRouterProvider
from .claude_cli_provider import ClaudeCliProvider, ClaudeStreamParser


def build_providers(settings) -> Dict[ProviderKind, ProviderClient]:
    """Instantiate every provider from settings; unusable ones report it through check_health"""

    return {
        ProviderKind.OLLAMA: OllamaProvider(
            base_url=settings.ollama_base_url,
            default_model=settings.ollama_model,
            timeout=settings.request_timeout_seconds
        ),
        ProviderKind.OPENROUTER: OpenRouterProvider(
            api_key=settings.openrouter_api_key,
            base_url=settings.openrouter_base_url,
            default_model=settings.openrouter_model,
            timeout=settings.request_timeout_seconds
        ),
        ProviderKind.CLAUDE: ClaudeCliProvider(
            enabled=settings.claude_code_enabled,
            executable=settings.claude_code_path,
            default_model=settings.claude_model
        ),
    }


__all__ = [
    "build_providers",
    "OllamaProvider",
    "OpenRouterProvider",
    "ClaudeCliProvider",
    "ClaudeStreamParser",
]
