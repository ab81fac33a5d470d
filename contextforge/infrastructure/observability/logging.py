import structlog
import logging
import sys
import os
from dataclasses import dataclass, field
from typing import Dict, Any, Optional
from datetime import datetime, timezone

from contextforge import __version__


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "contextforge"
) -> None:
    """Setup structured logging configuration"""

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_generation_context,
    ]

    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()
    processors.append(renderer)

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=__version__
    )


def add_generation_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy the bound session and generation ids onto every entry."""

    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())

    context = structlog.contextvars.get_contextvars()
    for key in ("session_id", "generation_id"):
        if key not in event_dict and context.get(key):
            event_dict[key] = context[key]

    return event_dict


metrics_logger = structlog.get_logger("contextforge.metrics")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def as_dict(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg_ms": self.total_ms / self.count if self.count else 0.0,
            "min_ms": self.min_ms or 0.0,
            "max_ms": self.max_ms,
        }


@dataclass
class MetricsCollector:
    """
    In-process generation metrics.

    Every observation is also emitted as a ``metric`` log event so a log
    shipper can aggregate across processes; the in-memory counts only back
    the ``/health`` summary.
    """

    outcomes: Dict[str, int] = field(default_factory=dict)
    latency: Dict[str, LatencyStats] = field(default_factory=dict)
    active: int = 0

    def record_generation(self, provider: str, outcome: str, duration_ms: float) -> None:
        key = f"{provider}.{outcome}"
        self.outcomes[key] = self.outcomes.get(key, 0) + 1
        self.latency.setdefault(provider, LatencyStats()).add(duration_ms)

        metrics_logger.info(
            "metric",
            metric_type="generation",
            provider=provider,
            outcome=outcome,
            duration_ms=round(duration_ms, 2)
        )

    def set_active(self, count: int) -> None:
        self.active = count
        metrics_logger.debug("metric", metric_type="gauge", name="active_generations", value=count)

    def summary(self) -> Dict[str, Any]:
        return {
            "active_generations": self.active,
            "outcomes": dict(self.outcomes),
            "latency": {provider: stats.as_dict() for provider, stats in self.latency.items()},
        }


# Global metrics collector
metrics = MetricsCollector()
