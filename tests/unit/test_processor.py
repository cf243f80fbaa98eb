"""
Tests for the structlog processor.
"""

import pytest
import structlog
from structlog.testing import CapturingLogger

from logmask.core.conditions import channel_in, min_level
from logmask.core.rules import FieldAction
from logmask.models.record import LogLevel
from logmask.processor import StructlogMaskingProcessor, level_for_method

EMAIL_PATTERN = r"\b[\w.+-]+@[\w.-]+\.\w+\b"


class TestLevelForMethod:
    """Test mapping of structlog method names to levels."""

    @pytest.mark.parametrize(
        "method,level",
        [
            ("debug", LogLevel.DEBUG),
            ("info", LogLevel.INFO),
            ("warn", LogLevel.WARNING),
            ("warning", LogLevel.WARNING),
            ("exception", LogLevel.ERROR),
            ("critical", LogLevel.CRITICAL),
            ("fatal", LogLevel.CRITICAL),
            ("msg", LogLevel.INFO),
            ("trace", LogLevel.INFO),
        ],
    )
    def test_levels(self, method: str, level: LogLevel) -> None:
        """Test known names map to their level and unknown ones to INFO."""

        assert level_for_method(method) is level


class TestStructlogMaskingProcessor:
    """Test masking of event dicts."""

    def test_event_and_context_masked(self, make_engine) -> None:
        """Test the event text and extra keys are masked."""

        engine = make_engine(patterns={EMAIL_PATTERN: "***EMAIL***"}, field_rules={"password": FieldAction.remove()})
        processor = StructlogMaskingProcessor(engine)

        result = processor(None, "info", {"event": "login by a@b.io", "password": "hunter2", "user": "bob"})

        assert result == {"event": "login by ***EMAIL***", "user": "bob"}

    def test_metadata_keys_pass_through(self, make_engine) -> None:
        """Test level, logger and timestamp are never masked."""

        engine = make_engine(type_rules={"string": "S"})
        processor = StructlogMaskingProcessor(engine)

        result = processor(
            None,
            "info",
            {"event": "hello", "level": "info", "logger": "auth", "timestamp": "2024-01-01T00:00:00Z", "user": "bob"},
        )

        assert result == {
            "event": "hello",
            "level": "info",
            "logger": "auth",
            "timestamp": "2024-01-01T00:00:00Z",
            "user": "S",
        }

    def test_method_level_drives_conditions(self, make_engine) -> None:
        """Test conditions see the level of the logging call."""

        engine = make_engine(field_rules={"password": FieldAction.remove()}, conditions={"severe": min_level("error")})
        processor = StructlogMaskingProcessor(engine)

        assert processor(None, "info", {"event": "e", "password": "x"}) == {"event": "e", "password": "x"}
        assert processor(None, "error", {"event": "e", "password": "x"}) == {"event": "e"}

    def test_logger_name_is_channel(self, make_engine) -> None:
        """Test the logger name becomes the record channel."""

        engine = make_engine(field_rules={"token": "[T]"}, conditions={"auth": channel_in(["auth"])})
        processor = StructlogMaskingProcessor(engine)

        assert processor(None, "info", {"event": "e", "logger": "auth", "token": "t"})["token"] == "[T]"
        assert processor(None, "info", {"event": "e", "logger": "web", "token": "t"})["token"] == "t"

    def test_in_processor_chain(self, make_engine) -> None:
        """Test the processor works inside a structlog logger."""

        engine = make_engine(patterns={EMAIL_PATTERN: "***EMAIL***"})
        capturing = CapturingLogger()
        log = structlog.wrap_logger(capturing, processors=[StructlogMaskingProcessor(engine)])

        log.info("signup", email="a@b.io")

        assert len(capturing.calls) == 1
        call = capturing.calls[0]
        assert call.method_name == "info"
        assert call.kwargs == {"event": "signup", "email": "***EMAIL***"}
