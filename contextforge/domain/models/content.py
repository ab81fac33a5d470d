from typing import Dict
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum
import uuid


class Zone(str, Enum):
    """Volatility bucket for stored content"""
    PERMANENT = "PERMANENT"
    STABLE = "STABLE"
    WORKING = "WORKING"


# Least volatile first
ZONE_ORDER = (Zone.PERMANENT, Zone.STABLE, Zone.WORKING)

# Content of this kind is routed to the provider's system-instruction parameter
SYSTEM_PROMPT_KIND = "system_prompt"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ContentItem(BaseModel):
    """A single piece of stored content belonging to a session zone"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique item identifier")
    session_id: str = Field(description="Owning session")
    content: str = Field(description="Item text")
    kind: str = Field(default="note", description="Content kind tag")
    zone: Zone = Field(description="Zone the item lives in")
    position: float = Field(description="Order within the zone, lower comes first")
    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @property
    def is_system_prompt(self) -> bool:
        return self.kind == SYSTEM_PROMPT_KIND


class ZoneStats(BaseModel):
    """Item count and character total for one zone"""
    count: int = 0
    chars: int = 0


class ContextStats(BaseModel):
    """Size of stored content per zone"""
    zones: Dict[Zone, ZoneStats] = Field(
        default_factory=lambda: {zone: ZoneStats() for zone in ZONE_ORDER}
    )
    total: ZoneStats = Field(default_factory=ZoneStats)
