"""
Application wiring.

Sets up structured logging and builds a masking engine from settings.
"""

import logging
from typing import Any, Callable, Dict, Optional

import structlog

from .config import Settings, get_settings
from .core.audit_sink import AuditSink
from .core.masking import MaskingEngine
from .core.metrics import MetricsCollector
from .models.record import LogRecord


def configure_logging(log_level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structured logging for the application."""
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
    )

    renderer: Any = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def create_engine(
    settings: Optional[Settings] = None,
    *,
    callbacks: Optional[Dict[str, Callable[[Any], Any]]] = None,
    conditions: Optional[Dict[str, Callable[[LogRecord], bool]]] = None,
    audit_sink: Optional[AuditSink] = None,
    metrics: Optional[MetricsCollector] = None,
    setup_logging: bool = True,
) -> MaskingEngine:
    """
    Build a masking engine from settings.

    Code-only rules (callbacks and conditions) are passed in here since
    they cannot be expressed in YAML or environment variables.
    """
    settings = settings or get_settings()

    if setup_logging:
        configure_logging(settings.log_level, settings.json_logs)

    logger = structlog.get_logger(__name__)
    engine = MaskingEngine.from_settings(
        settings,
        callbacks=callbacks,
        conditions=conditions,
        audit_sink=audit_sink,
        metrics=metrics or MetricsCollector(),
    )
    logger.info(
        "Masking engine created",
        audit_enabled=settings.audit.enabled,
        audit_profile=settings.audit.profile,
        default_patterns=settings.masking.use_default_patterns,
    )
    return engine
