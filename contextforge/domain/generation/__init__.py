from .cancellation import CancellationToken, GenerationCancelled, iterate_until_cancelled
from .stream_buffer import ThrottledBuffer
from .record_store import GenerationRecordStore, InMemoryGenerationRecordStore
from .provider import AGENT_GUARD_SUFFIX, GenerationOptions, ProviderClient, ProviderEvent, ProviderHealth
from .coordinator import GenerationCoordinator
from .transports import DirectTransport, GenerationHandle, RelayedTransport, Transport, build_transports

__all__ = [
    "CancellationToken",
    "GenerationCancelled",
    "iterate_until_cancelled",
    "ThrottledBuffer",
    "GenerationRecordStore",
    "InMemoryGenerationRecordStore",
    "AGENT_GUARD_SUFFIX",
    "GenerationOptions",
    "ProviderClient",
    "ProviderEvent",
    "ProviderHealth",
    "GenerationCoordinator",
    "DirectTransport",
    "GenerationHandle",
    "RelayedTransport",
    "Transport",
    "build_transports",
]
