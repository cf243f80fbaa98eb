"""
Tests for RateLimitedAuditSink.

Tests category classification, per-category budgets, the rate limit
marker emission, dropped counts and sink error containment.
"""

from typing import Any, List, Tuple

import pytest
from structlog.testing import capture_logs

from logmask.core.audit import AuditRecord, ErrorInfo, OperationType
from logmask.core.audit_sink import (
    AUDIT_PROFILES,
    CATEGORY_CONDITIONAL,
    CATEGORY_ERROR,
    CATEGORY_GENERAL,
    CATEGORY_JSON,
    CATEGORY_REGEX,
    RATE_LIMIT_MARKER_PATH,
    ListAuditSink,
    RateLimitedAuditSink,
    StructlogAuditSink,
    accepts_audit_record,
    classify_path,
    classify_record,
)
from logmask.core.exceptions import InvalidConfigurationError
from logmask.core.metrics import MetricsCollector


class TestClassification:
    """Test how emissions are mapped to categories."""

    @pytest.mark.parametrize(
        "path,category",
        [
            ("conditional:level", CATEGORY_CONDITIONAL),
            ("message.json", CATEGORY_JSON),
            ("regex:message", CATEGORY_REGEX),
            ("batch_replace", CATEGORY_GENERAL),
            ("error.handler", CATEGORY_ERROR),
            ("user.email", CATEGORY_GENERAL),
        ],
    )
    def test_classify_path(self, path: str, category: str) -> None:
        """Test marker substrings in paths choose the category."""

        assert classify_path(path) == category

    def test_classify_record_uses_operation_type(self) -> None:
        """Test structured context takes the operation type into account."""

        assert classify_record(AuditRecord.success(OperationType.REGEX)) == CATEGORY_REGEX
        assert classify_record(AuditRecord.success(OperationType.JSON)) == CATEGORY_JSON
        assert classify_record(AuditRecord.skipped(OperationType.CONDITIONAL, "x")) == CATEGORY_CONDITIONAL
        assert classify_record(AuditRecord.success(OperationType.FIELD_PATH)) == CATEGORY_GENERAL

    def test_failed_records_go_to_error_category(self) -> None:
        """Test failures outside specific categories are throttled as errors."""

        record = AuditRecord.failed(OperationType.CALLBACK, ErrorInfo.create("ValueError", "boom"))
        assert classify_record(record) == CATEGORY_ERROR

    def test_detects_rich_sinks(self) -> None:
        """Test four-argument sinks receive the audit record."""

        def simple(path: str, original: Any, masked: Any) -> None:
            pass

        def rich(path: str, original: Any, masked: Any, record: Any) -> None:
            pass

        def variadic(*args: Any) -> None:
            pass

        assert not accepts_audit_record(simple)
        assert accepts_audit_record(rich)
        assert accepts_audit_record(variadic)
        assert accepts_audit_record(ListAuditSink())


class TestBudgets:
    """Test per-category rate limiting."""

    def test_emissions_pass_through_within_budget(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test admitted emissions reach the wrapped sink."""

        sink = RateLimitedAuditSink(list_sink, profile="testing", clock=fake_clock)
        assert sink.emit("user.email", "a@b.io", "***")
        assert list_sink.entries == [("user.email", "a@b.io", "***", None)]

    def test_over_budget_emissions_are_dropped(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test emissions beyond the category limit are dropped and counted."""

        sink = RateLimitedAuditSink(
            list_sink,
            category_limits={"general_operations": 2},
            clock=fake_clock,
        )
        results = [sink.emit(f"field{i}", i, "***") for i in range(5)]

        assert results == [True, True, False, False, False]
        assert sink.dropped_count(CATEGORY_GENERAL) == 3
        assert sink.dropped_count() == 3
        stats = sink.stats()[CATEGORY_GENERAL]
        assert stats["admitted"] == 2
        assert stats["dropped"] == 3
        assert stats["limit"] == 2
        assert stats["remaining"] == 0

    def test_single_marker_per_window(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test one rate_limit_exceeded marker is emitted per window."""

        sink = RateLimitedAuditSink(list_sink, category_limits={"general_operations": 1}, clock=fake_clock)
        for i in range(4):
            sink.emit(f"field{i}", i, "***")

        markers = [entry for entry in list_sink.entries if entry[0] == RATE_LIMIT_MARKER_PATH]
        assert len(markers) == 1
        _, category, details, _ = markers[0]
        assert category == CATEGORY_GENERAL
        assert details["dropped"] == 1
        assert details["limit"] == 1

        fake_clock.advance(60)
        sink.emit("later", 1, "***")
        sink.emit("later2", 1, "***")
        markers = [entry for entry in list_sink.entries if entry[0] == RATE_LIMIT_MARKER_PATH]
        assert len(markers) == 2

    def test_categories_have_independent_budgets(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test exhausting one category leaves others untouched."""

        sink = RateLimitedAuditSink(
            list_sink,
            category_limits={"regex_operations": 1},
            clock=fake_clock,
        )
        regex = AuditRecord.success(OperationType.REGEX)
        assert sink.emit_with_context("message", "x", "y", regex)
        assert not sink.emit_with_context("message", "x", "y", regex)
        assert sink.emit_with_context("user.name", "x", "y", AuditRecord.success(OperationType.FIELD_PATH))

    def test_budget_resets_after_window(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test dropped categories recover after the window."""

        sink = RateLimitedAuditSink(list_sink, profile="strict", window_seconds=30, clock=fake_clock)
        for _ in range(AUDIT_PROFILES["strict"].limit):
            assert sink.emit("a", 1, 2)
        assert not sink.emit("a", 1, 2)

        fake_clock.advance(30)
        assert sink.emit("a", 1, 2)

    def test_reset_clears_state(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test reset clears windows and counters."""

        sink = RateLimitedAuditSink(list_sink, category_limits={"general_operations": 1}, clock=fake_clock)
        sink.emit("a", 1, 2)
        sink.emit("a", 1, 2)
        sink.reset()
        assert sink.dropped_count() == 0
        assert sink.emit("a", 1, 2)


class TestDelivery:
    """Test what the wrapped sink receives."""

    def test_rich_sink_receives_record(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test four-argument sinks get the AuditRecord."""

        sink = RateLimitedAuditSink(list_sink, clock=fake_clock)
        record = AuditRecord.success(OperationType.DATA_TYPE)
        sink.emit_with_context("amount", 10, 0, record)
        assert list_sink.records == [record]

    def test_simple_sink_receives_three_arguments(self, fake_clock) -> None:
        """Test three-argument sinks work with structured emissions."""

        received: List[Tuple[str, Any, Any]] = []

        def simple(path: str, original: Any, masked: Any) -> None:
            received.append((path, original, masked))

        sink = RateLimitedAuditSink(simple, clock=fake_clock)
        sink.emit_with_context("user.email", "a@b.io", "***", AuditRecord.success(OperationType.REGEX))
        assert received == [("user.email", "a@b.io", "***")]

    def test_sink_errors_are_contained(self, fake_clock) -> None:
        """Test exceptions from the wrapped sink never propagate."""

        def broken(path: str, original: Any, masked: Any) -> None:
            raise RuntimeError("sink down: password=hunter2")

        sink = RateLimitedAuditSink(broken, clock=fake_clock)
        assert sink.emit("user.email", "a@b.io", "***") is True

    def test_callable_interface(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test the wrapper can itself be used as a sink."""

        sink = RateLimitedAuditSink(list_sink, clock=fake_clock)
        sink("a", 1, 2)
        sink("b", 1, 2, AuditRecord.success(OperationType.CALLBACK))
        assert list_sink.paths == ["a", "b"]
        assert len(list_sink.records) == 1

    def test_metrics_are_recorded(self, list_sink: ListAuditSink, fake_clock) -> None:
        """Test emitted and dropped counts reach Prometheus."""

        metrics = MetricsCollector()
        sink = RateLimitedAuditSink(
            list_sink,
            category_limits={"general_operations": 1},
            metrics=metrics,
            clock=fake_clock,
        )
        sink.emit("a", 1, 2)
        sink.emit("a", 1, 2)

        labels = {"category": CATEGORY_GENERAL}
        assert metrics.get_value("logmask_audit_events_total", {**labels, "outcome": "emitted"}) == 1
        assert metrics.get_value("logmask_audit_events_total", {**labels, "outcome": "dropped"}) == 1


class TestConfiguration:
    """Test constructor validation."""

    def test_unknown_profile(self, list_sink: ListAuditSink) -> None:
        """Test unknown profiles are rejected."""

        with pytest.raises(InvalidConfigurationError):
            RateLimitedAuditSink(list_sink, profile="lenient")

    def test_unknown_category(self, list_sink: ListAuditSink) -> None:
        """Test unknown category overrides are rejected."""

        with pytest.raises(InvalidConfigurationError):
            RateLimitedAuditSink(list_sink, category_limits={"bogus": 5})

    def test_profiles(self) -> None:
        """Test the documented preset limits."""

        assert {name: profile.limit for name, profile in AUDIT_PROFILES.items()} == {
            "strict": 50,
            "default": 100,
            "relaxed": 200,
            "testing": 1000,
        }
        assert all(profile.window_seconds == 60 for profile in AUDIT_PROFILES.values())


class TestStructlogAuditSink:
    """Test the structlog-backed sink."""

    def test_never_logs_original_value(self) -> None:
        """Test the original value is not part of the logged event."""

        with capture_logs() as captured:
            StructlogAuditSink()("user.ssn", "123-45-6789", None, AuditRecord.success(OperationType.FIELD_PATH))

        assert len(captured) == 1
        event = captured[0]
        assert event["event"] == "Masking audit"
        assert event["path"] == "user.ssn"
        assert "123-45-6789" not in repr(event)
