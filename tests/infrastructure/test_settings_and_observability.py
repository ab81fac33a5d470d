"""Tests for settings, provider wiring, metrics and Langfuse tracing."""

from unittest.mock import MagicMock

import pytest

from contextforge.domain.context.context_assembler import assemble
from contextforge.domain.generation.provider import GenerationOptions
from contextforge.domain.models.generation import GenerationUsage, ProviderKind
from contextforge.infrastructure.config.settings import Settings
from contextforge.infrastructure.observability.langfuse_tracing import GenerationTracer
from contextforge.infrastructure.observability.logging import MetricsCollector
from contextforge.infrastructure.providers import (
    ClaudeCliProvider,
    OllamaProvider,
    OpenRouterProvider,
    build_providers,
)


class TestSettings:
    def test_defaults(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CONTEXTFORGE_FLUSH_INTERVAL_MS", raising=False)

        settings = Settings(_env_file=None)

        assert settings.flush_interval_seconds == 0.1
        assert settings.disable_agent_behavior is True
        assert settings.ollama_model == "gpt-oss:latest"
        assert settings.tracing_enabled is False

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CONTEXTFORGE_FLUSH_INTERVAL_MS", "250")
        monkeypatch.setenv("CONTEXTFORGE_DEFAULT_PROVIDER", "claude")
        monkeypatch.setenv("CONTEXTFORGE_CLAUDE_CODE_ENABLED", "false")

        settings = Settings(_env_file=None)

        assert settings.flush_interval_seconds == 0.25
        assert settings.default_provider == ProviderKind.CLAUDE
        assert settings.claude_code_enabled is False

    def test_build_providers(self) -> None:
        settings = Settings(_env_file=None, openrouter_api_key="sk-x", claude_code_path="/opt/claude")

        providers = build_providers(settings)

        assert isinstance(providers[ProviderKind.OLLAMA], OllamaProvider)
        assert isinstance(providers[ProviderKind.OPENROUTER], OpenRouterProvider)
        assert providers[ProviderKind.OPENROUTER].configured
        assert isinstance(providers[ProviderKind.CLAUDE], ClaudeCliProvider)
        assert providers[ProviderKind.CLAUDE].executable == "/opt/claude"


class TestMetricsCollector:
    def test_latency_per_provider(self) -> None:
        collector = MetricsCollector()
        collector.record_generation("ollama", "complete", 10.0)
        collector.record_generation("ollama", "cancelled", 30.0)

        latency = collector.summary()["latency"]["ollama"]

        assert latency == {"count": 2, "avg_ms": 20.0, "min_ms": 10.0, "max_ms": 30.0}

    def test_outcomes_and_active_count(self) -> None:
        collector = MetricsCollector()
        collector.record_generation("claude", "complete", 5.0)
        collector.record_generation("claude", "complete", 5.0)
        collector.record_generation("claude", "error", 1.0)
        collector.set_active(4)

        summary = collector.summary()

        assert summary["outcomes"] == {"claude.complete": 2, "claude.error": 1}
        assert summary["active_generations"] == 4

    def test_empty_summary(self) -> None:
        assert MetricsCollector().summary() == {"active_generations": 0, "outcomes": {}, "latency": {}}


class TestGenerationTracer:
    def test_disabled_without_keys(self) -> None:
        tracer = GenerationTracer.from_settings(Settings(_env_file=None))

        span = tracer.start("g1", "s1", "ollama", assemble([], [], [], "Hi"), GenerationOptions())

        assert tracer.enabled is False
        assert span.enabled is False
        span.complete("text")

    def test_span_reports_usage(self) -> None:
        client = MagicMock()
        observation = client.trace.return_value.generation.return_value
        tracer = GenerationTracer(client)

        span = tracer.start("g1", "s1", "claude", assemble([], [], [], "Hi"), GenerationOptions(model="sonnet"))
        span.complete("Hello", GenerationUsage(input_units=5, output_units=1, cost=0.01))
        span.complete("again")

        client.trace.assert_called_once()
        assert client.trace.call_args.kwargs["session_id"] == "s1"
        observation.end.assert_called_once_with(
            output="Hello",
            usage={"input": 5, "output": 1, "total_cost": 0.01}
        )

    def test_failed_span_sets_error_level(self) -> None:
        client = MagicMock()
        observation = client.trace.return_value.generation.return_value

        span = GenerationTracer(client).start("g1", "s1", "claude", assemble([], [], [], "Hi"), GenerationOptions())
        span.failed("partial", "exit 1")

        assert observation.end.call_args.kwargs["level"] == "ERROR"

    async def test_flush_runs_off_loop(self) -> None:
        client = MagicMock()

        await GenerationTracer(client).flush()

        client.flush.assert_called_once()
