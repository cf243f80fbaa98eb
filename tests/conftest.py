"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

import os
from typing import Any, Callable, Dict, Generator, List
from unittest.mock import patch

import pytest

from logmask.config import get_settings, reload_settings
from logmask.core.audit_sink import ListAuditSink
from logmask.core.masking import MaskingConfig, MaskingEngine
from logmask.core.metrics import MetricsCollector
from logmask.core.patterns import PatternValidator
from logmask.core.recovery import RecoveryPolicy, RetryStrategy
from logmask.models.record import LogLevel, LogRecord

EMAIL_PATTERN = r"\b[\w.+-]+@[\w.-]+\.\w+\b"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def fake_clock() -> FakeClock:
    """Clock starting at a fixed instant."""
    return FakeClock()


@pytest.fixture
def no_sleep() -> RecordingSleep:
    """Sleep function that returns immediately."""
    return RecordingSleep()


@pytest.fixture
def list_sink() -> ListAuditSink:
    """Audit sink collecting emissions in memory."""
    return ListAuditSink()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector()


@pytest.fixture
def make_engine(no_sleep: RecordingSleep) -> Callable[..., MaskingEngine]:
    """Factory building engines with a fresh validator and no real sleeps."""

    def _make(metrics: Any = None, **config: Any) -> MaskingEngine:
        masking_config = MaskingConfig(**config)
        if "audit_profile" not in config and masking_config.audit_sink is not None:
            masking_config.audit_profile = "testing"
        return MaskingEngine(
            masking_config,
            metrics=metrics,
            pattern_validator=PatternValidator(),
            retry_strategy=RetryStrategy(masking_config.recovery, sleep=no_sleep),
        )

    return _make


@pytest.fixture
def sample_record() -> LogRecord:
    """Record with sensitive data in message and context."""
    return LogRecord(
        message="Login failed for john.doe@example.com",
        level=LogLevel.ERROR,
        channel="auth",
        context={
            "user": {
                "email": "john.doe@example.com",
                "ssn": "123-45-6789",
                "name": "John",
            },
            "request_id": "req-42",
            "attempts": 3,
        },
    )


@pytest.fixture
def recovery_policy() -> RecoveryPolicy:
    """Three attempts, fail safe."""
    return RecoveryPolicy(max_attempts=3, base_delay_ms=10, max_delay_ms=100)


@pytest.fixture
def test_config() -> Dict[str, Any]:
    """Test configuration data, shaped like config.yaml."""
    return {
        "logging": {"level": "DEBUG", "json": True},
        "masking": {
            "use_default_patterns": False,
            "patterns": {EMAIL_PATTERN: "***EMAIL***"},
            "field_rules": {"user.ssn": {"type": "remove"}},
            "type_rules": {"float": "0.0"},
            "max_depth": 20,
        },
        "recovery": {"max_attempts": 2, "failure_mode": "fail_closed"},
        "audit": {"enabled": True, "profile": "strict", "category_limits": {"regex_operations": 10}},
    }


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Isolate environment variables and the settings cache."""
    with patch.dict(os.environ, {}, clear=True):
        with patch("logmask.config.load_config_file", return_value={}):
            reload_settings()
            yield
    get_settings.cache_clear()
