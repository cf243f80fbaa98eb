"""
Prometheus metrics collection.

Each collector owns its registry so several engines (and test cases) can
live in one process without duplicate registration errors.
"""

from typing import Optional

import structlog
from prometheus_client import CollectorRegistry, Counter, Histogram, Info, generate_latest

from .. import __version__

logger = structlog.get_logger(__name__)


class MetricsCollector:
    """
    Centralized metrics collection for logmask.

    In-memory counters only; scraping and storage are left to Prometheus.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self.registry = registry if registry is not None else CollectorRegistry()

        # Library info
        self.service_info = Info(
            "logmask",
            "logmask masking engine information",
            registry=self.registry,
        )
        self.service_info.info({
            "version": __version__,
            "component": "masking_engine",
        })

        # Masking metrics
        self.masking_operations_total = Counter(
            "logmask_masking_operations_total",
            "Total masking operations by category and outcome",
            ["operation_type", "status"],
            registry=self.registry,
        )

        self.masking_retries_total = Counter(
            "logmask_masking_retries_total",
            "Total retried masking attempts",
            ["operation_type"],
            registry=self.registry,
        )

        self.masking_fallbacks_total = Counter(
            "logmask_masking_fallbacks_total",
            "Total masking operations that ended in a fallback value",
            ["failure_mode"],
            registry=self.registry,
        )

        self.conditional_skips_total = Counter(
            "logmask_conditional_skips_total",
            "Records whose context masking was skipped by a conditional rule",
            ["rule"],
            registry=self.registry,
        )

        self.record_failures_total = Counter(
            "logmask_record_failures_total",
            "Records replaced by the last-resort fallback",
            registry=self.registry,
        )

        # Audit metrics
        self.audit_events_total = Counter(
            "logmask_audit_events_total",
            "Audit emissions by category and outcome",
            ["category", "outcome"],
            registry=self.registry,
        )

        # Processing time
        self.record_processing_seconds = Histogram(
            "logmask_record_processing_seconds",
            "Time spent masking a single record",
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=self.registry,
        )

        logger.debug("Metrics collector initialized")

    def record_operation(self, operation_type: str, status: str) -> None:
        self.masking_operations_total.labels(operation_type=operation_type, status=status).inc()

    def record_retries(self, operation_type: str, retries: int) -> None:
        if retries > 0:
            self.masking_retries_total.labels(operation_type=operation_type).inc(retries)

    def record_fallback(self, failure_mode: str) -> None:
        self.masking_fallbacks_total.labels(failure_mode=failure_mode).inc()

    def record_conditional_skip(self, rule: str) -> None:
        self.conditional_skips_total.labels(rule=rule).inc()

    def record_record_failure(self) -> None:
        self.record_failures_total.inc()

    def record_audit_event(self, category: str, outcome: str) -> None:
        self.audit_events_total.labels(category=category, outcome=outcome).inc()

    def observe_processing_time(self, seconds: float) -> None:
        self.record_processing_seconds.observe(seconds)

    def get_value(self, name: str, labels: Optional[dict] = None) -> float:
        """Read a sample value back from the registry (0.0 when absent)."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def export(self) -> bytes:
        """Render the registry in the Prometheus text format."""
        return generate_latest(self.registry)
