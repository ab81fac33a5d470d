from .logging import MetricsCollector, metrics, setup_logging
from .langfuse_tracing import GenerationTracer

__all__ = ["MetricsCollector", "metrics", "setup_logging", "GenerationTracer"]
