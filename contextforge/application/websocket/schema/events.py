from typing import Dict, Any, Optional, Literal
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum

from contextforge.domain.models.generation import GenerationRecord


class EventType(str, Enum):
    """WebSocket event types"""
    GENERATION_SNAPSHOT = "generation_snapshot"
    ERROR = "error"
    CONNECTION = "connection"


class BaseEvent(BaseModel):
    """Base event model for all WebSocket messages"""
    type: EventType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    generation_id: Optional[str] = None


class GenerationSnapshotEvent(BaseEvent):
    """Full record state after a change; the last one sent is terminal"""
    type: Literal[EventType.GENERATION_SNAPSHOT] = EventType.GENERATION_SNAPSHOT
    payload: GenerationRecord

    @classmethod
    def from_record(cls, record: GenerationRecord) -> "GenerationSnapshotEvent":
        return cls(payload=record, generation_id=record.id)


class ErrorEvent(BaseEvent):
    """Error event"""
    type: Literal[EventType.ERROR] = EventType.ERROR
    payload: Dict[str, Any]
    error_code: Optional[str] = None


class ConnectionEvent(BaseEvent):
    """Connection status event"""
    type: Literal[EventType.CONNECTION] = EventType.CONNECTION
    status: Literal["connected", "disconnected"]
