"""
Transports: how a client obtains a generation's text.

``DirectTransport`` streams straight from the provider to the caller.
``RelayedTransport`` starts a background worker and follows its generation
record. Both expose the same ``start`` / ``subscribe`` / ``cancel`` surface so
the conversation controller never branches on the provider.
"""

from typing import AsyncIterator, Dict, Mapping, Optional
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
import structlog

from contextforge.domain.context.context_assembler import AssembledPrompt
from contextforge.domain.errors import ProviderError
from contextforge.domain.generation.cancellation import CancellationToken, GenerationCancelled, iterate_until_cancelled
from contextforge.domain.generation.coordinator import GenerationCoordinator
from contextforge.domain.generation.provider import GenerationOptions, ProviderClient
from contextforge.domain.models.generation import GenerationStatus, GenerationUsage, ProviderKind

logger = structlog.get_logger(__name__)


@dataclass
class GenerationHandle:
    """A started generation as seen by one client"""
    session_id: str
    provider: str
    prompt: AssembledPrompt
    options: GenerationOptions
    token: CancellationToken = field(default_factory=CancellationToken)
    generation_id: Optional[str] = None
    usage: Optional[GenerationUsage] = None


class Transport(ABC):
    """Delivery mechanism for one provider"""

    relayed: bool = False

    def __init__(self, provider: ProviderClient, coordinator: GenerationCoordinator):
        self.provider = provider
        self.coordinator = coordinator

    @abstractmethod
    async def start(self, session_id: str, prompt: AssembledPrompt, options: GenerationOptions) -> GenerationHandle:
        pass

    @abstractmethod
    def subscribe(self, handle: GenerationHandle) -> AsyncIterator[str]:
        """
        Yield text deltas until the generation ends.

        Raises GenerationCancelled if it was cancelled and ProviderError if it
        failed. On normal completion ``handle.usage`` is populated.
        """
        pass

    @abstractmethod
    async def cancel(self, handle: GenerationHandle):
        pass


class DirectTransport(Transport):
    """Provider streamed in-process; cancellation is a single token"""

    async def start(self, session_id: str, prompt: AssembledPrompt, options: GenerationOptions) -> GenerationHandle:
        return GenerationHandle(
            session_id=session_id,
            provider=self.provider.name,
            prompt=prompt,
            options=options
        )

    async def subscribe(self, handle: GenerationHandle) -> AsyncIterator[str]:
        events = self.coordinator.stream_direct(
            self.provider,
            handle.prompt,
            handle.options,
            handle.token,
            session_id=handle.session_id
        )
        try:
            async for event in events:
                if event.usage is not None:
                    handle.usage = event.usage
                if event.text:
                    yield event.text
        finally:
            await events.aclose()

    async def cancel(self, handle: GenerationHandle):
        handle.token.cancel("stopped by client")


class RelayedTransport(Transport):
    """Provider run by a background worker; the client follows the generation record"""

    relayed = True

    async def start(self, session_id: str, prompt: AssembledPrompt, options: GenerationOptions) -> GenerationHandle:
        handle = GenerationHandle(
            session_id=session_id,
            provider=self.provider.name,
            prompt=prompt,
            options=options
        )
        handle.generation_id = await self.coordinator.start_relayed(session_id, self.provider, prompt, options)
        return handle

    async def subscribe(self, handle: GenerationHandle) -> AsyncIterator[str]:
        if handle.generation_id is None:
            raise ValueError("Relayed generation has not been started")

        snapshots = self.coordinator.record_store.subscribe(handle.generation_id)
        seen = 0

        async for record in iterate_until_cancelled(snapshots, handle.token):
            # Text only grows, so the new part is always a suffix
            if len(record.text) > seen:
                yield record.text[seen:]
                seen = len(record.text)

            if record.status == GenerationStatus.COMPLETE:
                handle.usage = record.usage
                return
            if record.status == GenerationStatus.ERROR:
                raise ProviderError(record.error or "Generation failed", provider=record.provider)
            if record.status == GenerationStatus.CANCELLED:
                raise GenerationCancelled("cancelled elsewhere")

    async def cancel(self, handle: GenerationHandle):
        handle.token.cancel("stopped by client")
        if handle.generation_id is not None:
            await self.coordinator.cancel(handle.generation_id)


def build_transports(
    providers: Mapping[ProviderKind, ProviderClient],
    coordinator: GenerationCoordinator
) -> Dict[ProviderKind, Transport]:
    """Claude runs as a local subprocess and is relayed; HTTP providers stream directly"""

    transports: Dict[ProviderKind, Transport] = {}
    for kind, provider in providers.items():
        if kind == ProviderKind.CLAUDE:
            transports[kind] = RelayedTransport(provider, coordinator)
        else:
            transports[kind] = DirectTransport(provider, coordinator)
    return transports
