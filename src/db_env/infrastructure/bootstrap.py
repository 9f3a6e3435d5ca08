"""Process-wide observability setup driven by Config."""

from __future__ import annotations

import threading

from db_env.infrastructure.config import Config, get_config
from db_env.infrastructure.logging import get_logger, setup_logging
from db_env.infrastructure.metrics import setup_metrics
from db_env.infrastructure.tracing import setup_tracing

_lock = threading.Lock()
_configured = False


def configure_observability(config: Config | None = None, force: bool = False) -> bool:
    """
    Configure logging, metrics and tracing from ``config.observability``.

    Runs once per process unless ``force`` is set.

    Returns:
        True if this call performed the setup.
    """
    global _configured
    with _lock:
        if _configured and not force:
            return False
        settings = (config or get_config()).observability
        setup_logging(settings.log_level, settings.log_format)
        setup_metrics(port=settings.metrics_port)
        setup_tracing(settings.otel_service_name, settings.otel_endpoint)
        _configured = True

    get_logger(__name__).info(
        "observability_configured",
        log_level=settings.log_level,
        metrics_port=settings.metrics_port,
        otel_endpoint=settings.otel_endpoint,
    )
    return True
