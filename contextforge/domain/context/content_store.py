from typing import Dict, List, Optional
from abc import ABC, abstractmethod
from collections import defaultdict
import asyncio
import structlog

from contextforge.domain.models.content import ContentItem, Zone, ZONE_ORDER
from contextforge.domain.models.conversation import MessageRole

logger = structlog.get_logger(__name__)


class ContentStore(ABC):
    """Zoned session content"""

    @abstractmethod
    async def list_zoned_content(self, session_id: str) -> List[ContentItem]:
        """Return the session's items ordered by zone, then position"""
        pass

    @abstractmethod
    async def add_item(
        self,
        session_id: str,
        content: str,
        zone: Zone = Zone.WORKING,
        kind: str = "note",
        position: Optional[float] = None
    ) -> ContentItem:
        pass


def _zone_rank(zone: Zone) -> int:
    return ZONE_ORDER.index(zone)


class InMemoryContentStore(ContentStore):
    """Process-local content store for tests and single-node use"""

    def __init__(self):
        self.items: Dict[str, List[ContentItem]] = defaultdict(list)
        self._lock = asyncio.Lock()

    async def list_zoned_content(self, session_id: str) -> List[ContentItem]:
        async with self._lock:
            items = list(self.items.get(session_id, []))

        return sorted(items, key=lambda item: (_zone_rank(item.zone), item.position, item.id))

    async def add_item(
        self,
        session_id: str,
        content: str,
        zone: Zone = Zone.WORKING,
        kind: str = "note",
        position: Optional[float] = None
    ) -> ContentItem:
        """Add an item, appending to the end of its zone unless a position is given"""

        async with self._lock:
            if position is None:
                positions = [
                    item.position for item in self.items[session_id]
                    if item.zone == zone
                ]
                position = max(positions, default=-1.0) + 1.0

            item = ContentItem(
                session_id=session_id,
                content=content,
                kind=kind,
                zone=zone,
                position=position
            )
            self.items[session_id].append(item)

        logger.debug("Content item added", session_id=session_id, zone=zone.value, item_id=item.id)
        return item

    async def clear_session(self, session_id: str):
        """Remove all items for a session"""

        async with self._lock:
            self.items.pop(session_id, None)

    async def save_message(self, session_id: str, content: str, role: MessageRole, zone: Zone) -> str:
        """Message sink for the conversation controller: store a chat message as a note"""

        item = await self.add_item(session_id, content, zone=zone, kind=f"{role.value}_message")
        return item.id
