from typing import AsyncIterator, Dict, Optional
from abc import ABC, abstractmethod
from datetime import datetime, timezone
import asyncio
import uuid
import structlog

from contextforge.domain.errors import GenerationNotFoundError
from contextforge.domain.models.generation import GenerationRecord, GenerationStatus, GenerationUsage

logger = structlog.get_logger(__name__)


class GenerationRecordStore(ABC):
    """
    Persisted record of each generation attempt.

    Contract:
        - ``status`` only moves from streaming to one terminal state, once
        - ``text`` only grows, and only while streaming
        - writes against a terminal record are no-ops and return False
        - ``request_cancel`` touches the cancellation flag, never ``text``
    """

    @abstractmethod
    async def create(self, session_id: str, provider: str) -> str:
        pass

    @abstractmethod
    async def get(self, record_id: str) -> GenerationRecord:
        """Snapshot of a record. Raises GenerationNotFoundError."""
        pass

    @abstractmethod
    async def get_latest(self, session_id: str) -> Optional[GenerationRecord]:
        pass

    @abstractmethod
    async def append_text(self, record_id: str, chunk: str) -> bool:
        pass

    @abstractmethod
    async def mark_complete(self, record_id: str, usage: Optional[GenerationUsage] = None) -> bool:
        pass

    @abstractmethod
    async def mark_error(self, record_id: str, message: str) -> bool:
        pass

    @abstractmethod
    async def mark_cancelled(self, record_id: str) -> bool:
        pass

    @abstractmethod
    async def request_cancel(self, record_id: str) -> bool:
        """Set the cancellation flag. Idempotent; False once terminal."""
        pass

    @abstractmethod
    async def is_cancel_requested(self, record_id: str) -> bool:
        pass

    @abstractmethod
    def subscribe(self, record_id: str) -> AsyncIterator[GenerationRecord]:
        """Yield a snapshot per change, ending after the terminal snapshot"""
        pass


class InMemoryGenerationRecordStore(GenerationRecordStore):
    """Process-local record store; change notification through a condition"""

    def __init__(self):
        self.records: Dict[str, GenerationRecord] = {}
        self._versions: Dict[str, int] = {}
        self._changed = asyncio.Condition()

    def _require(self, record_id: str) -> GenerationRecord:
        record = self.records.get(record_id)
        if record is None:
            raise GenerationNotFoundError(record_id)
        return record

    def _touch(self, record: GenerationRecord):
        # Caller holds the condition's lock
        record.updated_at = datetime.now(timezone.utc)
        self._versions[record.id] += 1
        self._changed.notify_all()

    async def create(self, session_id: str, provider: str) -> str:
        record = GenerationRecord(
            id=str(uuid.uuid4()),
            session_id=session_id,
            provider=provider
        )

        async with self._changed:
            self.records[record.id] = record
            self._versions[record.id] = 0

        logger.debug("Generation record created", generation_id=record.id, session_id=session_id)
        return record.id

    async def get(self, record_id: str) -> GenerationRecord:
        async with self._changed:
            return self._require(record_id).model_copy(deep=True)

    async def get_latest(self, session_id: str) -> Optional[GenerationRecord]:
        async with self._changed:
            candidates = [r for r in self.records.values() if r.session_id == session_id]
            if not candidates:
                return None
            return max(candidates, key=lambda r: r.created_at).model_copy(deep=True)

    async def append_text(self, record_id: str, chunk: str) -> bool:
        async with self._changed:
            record = self._require(record_id)
            if record.status.is_terminal:
                logger.debug("Late chunk ignored", generation_id=record_id, status=record.status.value)
                return False
            if not chunk:
                return True

            record.text += chunk
            self._touch(record)
            return True

    async def _transition(self, record_id: str, status: GenerationStatus, **fields) -> bool:
        async with self._changed:
            record = self._require(record_id)
            if record.status.is_terminal:
                logger.debug(
                    "Transition ignored on terminal record",
                    generation_id=record_id,
                    current=record.status.value,
                    requested=status.value
                )
                return False

            record.status = status
            for key, value in fields.items():
                setattr(record, key, value)
            self._touch(record)

        logger.info("Generation finished", generation_id=record_id, status=status.value)
        return True

    async def mark_complete(self, record_id: str, usage: Optional[GenerationUsage] = None) -> bool:
        return await self._transition(record_id, GenerationStatus.COMPLETE, usage=usage)

    async def mark_error(self, record_id: str, message: str) -> bool:
        return await self._transition(record_id, GenerationStatus.ERROR, error=message)

    async def mark_cancelled(self, record_id: str) -> bool:
        return await self._transition(record_id, GenerationStatus.CANCELLED)

    async def request_cancel(self, record_id: str) -> bool:
        async with self._changed:
            record = self._require(record_id)
            if record.status.is_terminal:
                return False
            if not record.cancel_requested:
                record.cancel_requested = True
                self._touch(record)

        logger.info("Cancellation requested", generation_id=record_id)
        return True

    async def is_cancel_requested(self, record_id: str) -> bool:
        async with self._changed:
            return self._require(record_id).cancel_requested

    async def subscribe(self, record_id: str) -> AsyncIterator[GenerationRecord]:
        seen_version = -1

        while True:
            async with self._changed:
                self._require(record_id)
                await self._changed.wait_for(lambda: self._versions[record_id] != seen_version)

                snapshot = self._require(record_id).model_copy(deep=True)
                seen_version = self._versions[record_id]

            yield snapshot

            if snapshot.status.is_terminal:
                return
