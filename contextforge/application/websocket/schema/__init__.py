from .events import BaseEvent, ConnectionEvent, ErrorEvent, EventType, GenerationSnapshotEvent

__all__ = ["BaseEvent", "ConnectionEvent", "ErrorEvent", "EventType", "GenerationSnapshotEvent"]
