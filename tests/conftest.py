"""Pytest configuration and shared fixtures for all tests."""

from unittest.mock import MagicMock

import pytest

from contextforge.domain.context.content_store import InMemoryContentStore
from contextforge.domain.generation.coordinator import GenerationCoordinator
from contextforge.domain.generation.record_store import InMemoryGenerationRecordStore
from contextforge.domain.models.content import SYSTEM_PROMPT_KIND, Zone
from contextforge.infrastructure.observability.logging import MetricsCollector


@pytest.fixture
def record_store() -> InMemoryGenerationRecordStore:
    return InMemoryGenerationRecordStore()


@pytest.fixture
def content_store() -> InMemoryContentStore:
    return InMemoryContentStore()


@pytest.fixture
def metrics_collector() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def make_coordinator(record_store, metrics_collector):
    """Factory so each test picks its own flush interval"""

    def _make(flush_interval_seconds: float = 0.0) -> GenerationCoordinator:
        return GenerationCoordinator(
            record_store,
            flush_interval_seconds=flush_interval_seconds,
            metrics=metrics_collector
        )

    return _make


@pytest.fixture
def coordinator(make_coordinator) -> GenerationCoordinator:
    return make_coordinator()


@pytest.fixture
async def seeded_content_store(content_store: InMemoryContentStore) -> InMemoryContentStore:
    """A session with one item per zone plus a system prompt"""

    await content_store.add_item("s1", "You are a careful writer.", zone=Zone.PERMANENT, kind=SYSTEM_PROMPT_KIND)
    await content_store.add_item("s1", "Style: concise.", zone=Zone.PERMANENT)
    await content_store.add_item("s1", "Glossary: zone, item.", zone=Zone.STABLE)
    await content_store.add_item("s1", "Draft chapter 3.", zone=Zone.WORKING)
    return content_store


@pytest.fixture
def error_callback() -> MagicMock:
    return MagicMock()
