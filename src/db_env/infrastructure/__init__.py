"""Infrastructure layer - cross-cutting concerns."""

from db_env.infrastructure.bootstrap import configure_observability
from db_env.infrastructure.config import Config, get_config
from db_env.infrastructure.container import Container, get_container, reset_container
from db_env.infrastructure.logging import setup_logging, get_logger
from db_env.infrastructure.metrics import setup_metrics, get_metrics, MetricsRegistry
from db_env.infrastructure.tracing import setup_tracing, get_tracer, reset_tracing, trace_span

__all__ = [
    "configure_observability",
    "Config",
    "get_config",
    "Container",
    "get_container",
    "reset_container",
    "setup_logging",
    "get_logger",
    "setup_metrics",
    "get_metrics",
    "MetricsRegistry",
    "setup_tracing",
    "get_tracer",
    "reset_tracing",
    "trace_span",
]
