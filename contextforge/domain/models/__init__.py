from .content import ContentItem, ContextStats, SYSTEM_PROMPT_KIND, Zone, ZONE_ORDER
from .conversation import Message, MessageRole, STOPPED_MARKER
from .generation import GenerationRecord, GenerationStatus, GenerationUsage, ProviderKind

__all__ = [
    "ContentItem",
    "ContextStats",
    "SYSTEM_PROMPT_KIND",
    "Zone",
    "ZONE_ORDER",
    "Message",
    "MessageRole",
    "STOPPED_MARKER",
    "GenerationRecord",
    "GenerationStatus",
    "GenerationUsage",
    "ProviderKind",
]
