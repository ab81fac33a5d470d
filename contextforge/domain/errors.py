from typing import Optional


class ContextForgeError(Exception):
    """Base class for errors raised by ContextForge"""


class AssemblyInputError(ContextForgeError):
    """Context could not be assembled from the given inputs"""


class ContextNotLoadedError(AssemblyInputError):
    """Stored content has not been loaded yet"""

    def __init__(self, message: str = "Content not loaded yet"):
        super().__init__(message)


class GenerationNotFoundError(ContextForgeError):
    """No generation record exists for the given id"""

    def __init__(self, generation_id: str):
        super().__init__(f"Generation not found: {generation_id}")
        self.generation_id = generation_id


class ProviderError(ContextForgeError):
    """
    A provider call failed.

    Args:
        message: Diagnostic message reported by (or about) the provider
        provider: Provider name, e.g. "ollama"
        diagnostics: Low-level output captured alongside the failure,
            such as a subprocess's stderr
    """

    def __init__(self, message: str, provider: str = "unknown", diagnostics: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.diagnostics = diagnostics

    @property
    def full_message(self) -> str:
        """Message with any captured diagnostics appended"""

        if self.diagnostics and self.diagnostics.strip():
            return f"{self.message}\n{self.diagnostics.strip()}"
        return self.message


class ProviderNotConfiguredError(ProviderError):
    """The provider is missing configuration it needs before any call can start"""
