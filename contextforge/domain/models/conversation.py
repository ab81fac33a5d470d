from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum
import uuid


# Appended to partial output captured when a generation is stopped
STOPPED_MARKER = "\n\n*(generation stopped)*"


class MessageRole(str, Enum):
    """Conversation message author"""
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    """A message in an ephemeral conversation"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    saved_ref: Optional[str] = Field(None, description="Content item id once saved to the store")
