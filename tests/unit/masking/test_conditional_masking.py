"""
Tests for conditional rules.

Every registered condition must pass for the context to be masked. A
condition that raises counts as not passing.
"""

import pytest

from logmask.core.audit import AuditStatus, OperationType
from logmask.core.audit_sink import CATEGORY_CONDITIONAL, ListAuditSink
from logmask.core.conditions import (
    MISSING,
    channel_in,
    context_equals,
    context_has,
    get_path,
    level_in,
    min_level,
)
from logmask.core.exceptions import InvalidConfigurationError
from logmask.core.metrics import MetricsCollector
from logmask.core.rules import FieldAction
from logmask.models.record import LogLevel, LogRecord

EMAIL_PATTERN = r"\b[\w.+-]+@[\w.-]+\.\w+\b"
SENSITIVE = {"user": {"ssn": "123-45-6789", "name": "Ann"}}
MASKED = {"user": {"name": "Ann"}}


def ssn_engine(make_engine, **config):
    return make_engine(field_rules={"user.ssn": FieldAction.remove()}, **config)


class TestConditionFactories:
    """Test the built-in condition factories."""

    def test_level_in(self) -> None:
        """Test level membership, with names or numbers."""

        condition = level_in(["error", LogLevel.CRITICAL, 550])
        assert condition(LogRecord(message="m", level="ERROR"))
        assert condition(LogRecord(message="m", level=LogLevel.ALERT))
        assert not condition(LogRecord(message="m", level="INFO"))

    def test_min_level(self) -> None:
        """Test severity thresholds."""

        condition = min_level("warn")
        assert condition(LogRecord(message="m", level="WARNING"))
        assert condition(LogRecord(message="m", level="EMERGENCY"))
        assert not condition(LogRecord(message="m", level="NOTICE"))

    def test_channel_in(self) -> None:
        """Test channel membership."""

        condition = channel_in(["auth", "billing"])
        assert condition(LogRecord(message="m", channel="auth"))
        assert not condition(LogRecord(message="m", channel="app"))

    def test_context_has(self) -> None:
        """Test presence checks, including null values."""

        condition = context_has("user.ssn")
        assert condition(LogRecord(message="m", context=SENSITIVE))
        assert condition(LogRecord(message="m", context={"user": {"ssn": None}}))
        assert not condition(LogRecord(message="m", context={"user": "Ann"}))

    def test_context_equals_is_type_sensitive(self) -> None:
        """Test equal values of different types do not match."""

        condition = context_equals("count", 1)
        assert condition(LogRecord(message="m", context={"count": 1}))
        assert not condition(LogRecord(message="m", context={"count": 1.0}))
        assert not condition(LogRecord(message="m", context={"count": True}))
        assert not condition(LogRecord(message="m", context={}))

    def test_get_path(self) -> None:
        """Test dotted lookups through maps and lists."""

        data = {"a": [{"b": 1}], "s": "text"}
        assert get_path(data, "a.0.b") == 1
        assert get_path(data, "a.1.b") is MISSING
        assert get_path(data, "a.x") is MISSING
        assert get_path(data, "s.0") is MISSING
        assert get_path(data, "missing") is MISSING

    def test_unknown_level_rejected(self) -> None:
        """Test factories validate level names eagerly."""

        with pytest.raises(ValueError):
            min_level("verbose")


class TestConditionalMasking:
    """Test conditions gating context masking."""

    def test_context_masked_when_condition_passes(self, make_engine) -> None:
        """Test a passing condition lets masking happen."""

        engine = ssn_engine(make_engine, conditions={"errors": level_in(["ERROR"])})
        masked = engine.process(LogRecord(message="m", level="ERROR", context=SENSITIVE))

        assert masked.context == MASKED

    def test_context_untouched_when_condition_fails(self, make_engine) -> None:
        """Test a failing condition leaves the context as-is."""

        engine = ssn_engine(make_engine, conditions={"errors": level_in(["ERROR"])})
        masked = engine.process(LogRecord(message="m", level="INFO", context=SENSITIVE))

        assert masked.context == SENSITIVE

    def test_all_conditions_must_pass(self, make_engine) -> None:
        """Test conditions are combined with AND."""

        engine = ssn_engine(
            make_engine,
            conditions={"severe": min_level("error"), "auth_only": channel_in(["auth"])},
        )
        assert engine.process(LogRecord(message="m", level="ERROR", channel="auth", context=SENSITIVE)).context == MASKED
        assert engine.process(LogRecord(message="m", level="ERROR", channel="app", context=SENSITIVE)).context == SENSITIVE

    def test_message_masked_regardless(self, make_engine) -> None:
        """Test message masking ignores conditions."""

        engine = ssn_engine(
            make_engine,
            patterns={EMAIL_PATTERN: "***EMAIL***"},
            conditions={"errors": level_in(["ERROR"])},
        )
        masked = engine.process(LogRecord(message="for a@b.io", level="DEBUG", context=SENSITIVE))

        assert masked.message == "for ***EMAIL***"
        assert masked.context == SENSITIVE

    def test_skip_is_audited(self, make_engine, list_sink: ListAuditSink) -> None:
        """Test a failed condition produces a skipped conditional record."""

        engine = ssn_engine(make_engine, conditions={"errors": level_in(["ERROR"])}, audit_sink=list_sink)
        engine.process(LogRecord(message="m", level="INFO", context=SENSITIVE))

        assert list_sink.paths == ["conditional:errors"]
        record = list_sink.records[0]
        assert record.operation_type is OperationType.CONDITIONAL
        assert record.status is AuditStatus.SKIPPED
        assert record.metadata["skip_reason"] == "condition_not_met"
        assert record.metadata["rule"] == "errors"
        assert engine.audit_sink.stats()[CATEGORY_CONDITIONAL]["admitted"] == 1

    def test_raising_condition_skips_masking(self, make_engine, list_sink: ListAuditSink) -> None:
        """Test a condition that raises is treated as not passing."""

        def broken(record: LogRecord) -> bool:
            raise KeyError("tenant")

        engine = ssn_engine(make_engine, conditions={"tenant": broken}, audit_sink=list_sink)
        masked = engine.process(LogRecord(message="m", context=SENSITIVE))

        assert masked.context == SENSITIVE
        record = list_sink.records[0]
        assert record.metadata["skip_reason"] == "rule_error"
        assert record.error is not None
        assert record.error.error_type == "KeyError"

    def test_skip_metrics(self, make_engine) -> None:
        """Test skips are counted per rule."""

        metrics = MetricsCollector()
        engine = ssn_engine(make_engine, metrics=metrics, conditions={"errors": level_in(["ERROR"])})
        engine.process(LogRecord(message="m", level="INFO", context=SENSITIVE))
        engine.process(LogRecord(message="m", level="ERROR", context=SENSITIVE))

        assert metrics.get_value("logmask_conditional_skips_total", {"rule": "errors"}) == 1

    def test_non_callable_condition_rejected(self, make_engine) -> None:
        """Test conditions are validated at construction."""

        with pytest.raises(InvalidConfigurationError):
            make_engine(conditions={"errors": "level == ERROR"})
