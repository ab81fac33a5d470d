from typing import AsyncIterator, Dict, Optional
import asyncio
import time
import uuid
import structlog

from contextforge.domain.context.context_assembler import AssembledPrompt
from contextforge.domain.errors import ProviderError
from contextforge.domain.generation.cancellation import CancellationToken, GenerationCancelled, iterate_until_cancelled
from contextforge.domain.generation.provider import GenerationOptions, ProviderClient, ProviderEvent
from contextforge.domain.generation.record_store import GenerationRecordStore
from contextforge.domain.generation.stream_buffer import ThrottledBuffer
from contextforge.domain.models.generation import GenerationStatus, GenerationUsage
from contextforge.infrastructure.observability.langfuse_tracing import GenerationSpan, GenerationTracer
from contextforge.infrastructure.observability.logging import MetricsCollector, metrics as default_metrics

logger = structlog.get_logger(__name__)

DEFAULT_FLUSH_INTERVAL_SECONDS = 0.1


class GenerationCoordinator:
    """
    Drives provider calls and owns the generation lifecycle.

    Relayed generations run as background workers that write to the record
    store; clients follow the record. Direct generations stream straight to
    the caller with nothing persisted.

    Cancellation has two layers. The primary one is an in-process
    ``CancellationToken`` per generation, which tears the provider stream down
    immediately. The fallback is the record's persisted ``cancel_requested``
    flag, checked by the worker after every flush, so a cancel issued from a
    process that cannot reach the token still lands within one flush interval.
    """

    def __init__(
        self,
        record_store: GenerationRecordStore,
        flush_interval_seconds: float = DEFAULT_FLUSH_INTERVAL_SECONDS,
        tracer: Optional[GenerationTracer] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.record_store = record_store
        self.flush_interval_seconds = flush_interval_seconds
        self.tracer = tracer or GenerationTracer()
        self.metrics = metrics or default_metrics

        self._active: Dict[str, CancellationToken] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def active_generations(self) -> int:
        return len(self._tasks)

    async def start_relayed(
        self,
        session_id: str,
        provider: ProviderClient,
        prompt: AssembledPrompt,
        options: GenerationOptions
    ) -> str:
        """Create a streaming record and start its worker. Returns as soon as the record exists."""

        record_id = await self.record_store.create(session_id, provider.name)
        token = CancellationToken()
        self._active[record_id] = token

        task = asyncio.create_task(
            self._run_worker(record_id, session_id, provider, prompt, options, token),
            name=f"generation-{record_id}"
        )
        self._tasks[record_id] = task
        task.add_done_callback(lambda _: self._forget(record_id))
        self.metrics.set_active(len(self._tasks))

        logger.info(
            "Relayed generation started",
            generation_id=record_id,
            session_id=session_id,
            provider=provider.name
        )
        return record_id

    def _forget(self, record_id: str):
        self._active.pop(record_id, None)
        self._tasks.pop(record_id, None)
        self.metrics.set_active(len(self._tasks))

    async def cancel(self, record_id: str) -> bool:
        """
        Request cancellation of a relayed generation.

        Sets the persisted flag first, then raises the in-process token when
        the worker lives here. Returns False when the record was already
        terminal.
        """

        requested = await self.record_store.request_cancel(record_id)

        token = self._active.get(record_id)
        if token is not None:
            token.cancel("cancel requested")

        return requested

    async def wait_for(self, record_id: str):
        """Wait for a local worker to finish. No-op when there is none."""

        task = self._tasks.get(record_id)
        if task is not None:
            await asyncio.shield(task)

    async def shutdown(self):
        """Cancel every in-flight worker and wait for them to finalize"""

        tasks = list(self._tasks.items())
        for record_id, _ in tasks:
            token = self._active.get(record_id)
            if token is not None:
                token.cancel("shutdown")

        if tasks:
            await asyncio.gather(*(task for _, task in tasks), return_exceptions=True)
            logger.info("Generation workers stopped", count=len(tasks))

    async def _flush(self, record_id: str, buffer: ThrottledBuffer):
        text = buffer.drain()
        if text:
            await self.record_store.append_text(record_id, text)

    async def _run_worker(
        self,
        record_id: str,
        session_id: str,
        provider: ProviderClient,
        prompt: AssembledPrompt,
        options: GenerationOptions,
        token: CancellationToken
    ):
        buffer = ThrottledBuffer(self.flush_interval_seconds)
        span = self.tracer.start(record_id, session_id, provider.name, prompt, options)
        usage: Optional[GenerationUsage] = None
        output = ""
        outcome = GenerationStatus.ERROR
        started = time.monotonic()

        structlog.contextvars.bind_contextvars(generation_id=record_id, session_id=session_id)

        try:
            async for event in iterate_until_cancelled(provider.stream(prompt, options), token):
                if event.usage is not None:
                    usage = event.usage
                if event.text:
                    buffer.add(event.text)
                    output += event.text

                if buffer.due():
                    await self._flush(record_id, buffer)
                    # Fallback layer: a cancel that never reached our token
                    if await self.record_store.is_cancel_requested(record_id):
                        token.cancel("cancel flag set")

            await self._flush(record_id, buffer)
            outcome = await self._finalize(record_id, usage, started)

        except GenerationCancelled as e:
            await self._flush(record_id, buffer)
            await self.record_store.mark_cancelled(record_id)
            outcome = GenerationStatus.CANCELLED
            logger.info("Generation cancelled", generation_id=record_id, reason=e.reason)

        except ProviderError as e:
            await self._flush(record_id, buffer)
            await self.record_store.mark_error(record_id, e.full_message)
            logger.error("Provider failed", generation_id=record_id, provider=e.provider, error=e.message)

        except Exception as e:
            logger.exception("Generation worker failed", generation_id=record_id)
            await self._flush(record_id, buffer)
            await self.record_store.mark_error(record_id, str(e) or type(e).__name__)

        finally:
            self._record_outcome(span, provider.name, outcome, output, usage, started)
            structlog.contextvars.unbind_contextvars("generation_id", "session_id")
            await self.tracer.flush()

    async def _finalize(self, record_id: str, usage: Optional[GenerationUsage], started: float) -> GenerationStatus:
        # Re-read: a cancel may have landed after the last flush-time check
        record = await self.record_store.get(record_id)

        if record.status.is_terminal:
            return record.status

        if record.cancel_requested:
            await self.record_store.mark_cancelled(record_id)
            return GenerationStatus.CANCELLED

        usage = (usage or GenerationUsage()).model_copy()
        if usage.duration_ms is None:
            usage.duration_ms = (time.monotonic() - started) * 1000

        await self.record_store.mark_complete(record_id, usage)
        return GenerationStatus.COMPLETE

    def _record_outcome(
        self,
        span: GenerationSpan,
        provider: str,
        outcome: GenerationStatus,
        output: str,
        usage: Optional[GenerationUsage],
        started: float
    ):
        duration_ms = (time.monotonic() - started) * 1000
        self.metrics.record_generation(provider, outcome.value, duration_ms)

        if outcome == GenerationStatus.COMPLETE:
            span.complete(output, usage)
        elif outcome == GenerationStatus.CANCELLED:
            span.cancelled(output)
        else:
            span.failed(output, "generation failed")

    async def stream_direct(
        self,
        provider: ProviderClient,
        prompt: AssembledPrompt,
        options: GenerationOptions,
        token: CancellationToken,
        session_id: Optional[str] = None
    ) -> AsyncIterator[ProviderEvent]:
        """
        Stream a provider call straight to the caller, nothing persisted.

        Raises GenerationCancelled when ``token`` fires and ProviderError on
        provider failure.
        """

        started = time.monotonic()
        outcome = GenerationStatus.ERROR
        span = self.tracer.start(str(uuid.uuid4()), session_id or "direct", provider.name, prompt, options)
        output = ""
        usage: Optional[GenerationUsage] = None

        try:
            async for event in iterate_until_cancelled(provider.stream(prompt, options), token):
                if event.usage is not None:
                    usage = event.usage
                output += event.text
                yield event
            outcome = GenerationStatus.COMPLETE
        except GenerationCancelled:
            outcome = GenerationStatus.CANCELLED
            raise
        finally:
            self._record_outcome(span, provider.name, outcome, output, usage, started)
