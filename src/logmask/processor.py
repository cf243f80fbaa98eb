"""
structlog integration.

``StructlogMaskingProcessor`` masks each event dict before it reaches the
renderer. Place it after the processors that add metadata and before
the renderer:

    structlog.configure(processors=[
        structlog.stdlib.add_log_level,
        StructlogMaskingProcessor(engine),
        structlog.dev.ConsoleRenderer(),
    ])
"""

from typing import Any, Dict, Optional

from .core.masking import MaskingEngine, get_masking_engine
from .models.record import LogLevel, LogRecord

PASSTHROUGH_KEYS = frozenset({"level", "logger", "timestamp", "exc_info", "stack_info"})

_METHOD_LEVELS = {
    "exception": LogLevel.ERROR,
    "msg": LogLevel.INFO,
    "log": LogLevel.INFO,
    "fatal": LogLevel.CRITICAL,
}


def level_for_method(method_name: str) -> LogLevel:
    """Map a structlog method name to a level, defaulting to INFO."""
    if method_name in _METHOD_LEVELS:
        return _METHOD_LEVELS[method_name]
    try:
        return LogLevel.parse(method_name)
    except ValueError:
        return LogLevel.INFO


class StructlogMaskingProcessor:
    """Processor applying a ``MaskingEngine`` to structlog event dicts."""

    def __init__(self, engine: Optional[MaskingEngine] = None, default_channel: str = "app") -> None:
        self.engine = engine or get_masking_engine()
        self.default_channel = default_channel

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        passthrough = {key: event_dict[key] for key in PASSTHROUGH_KEYS if key in event_dict}
        context = {
            key: value
            for key, value in event_dict.items()
            if key != "event" and key not in PASSTHROUGH_KEYS
        }

        record = LogRecord(
            message=str(event_dict.get("event", "")),
            level=level_for_method(method_name),
            channel=str(event_dict.get("logger") or getattr(logger, "name", None) or self.default_channel),
            context=context,
        )
        masked = self.engine.process(record)

        result: Dict[str, Any] = dict(masked.context)
        result.update(passthrough)
        result["event"] = masked.message
        return result
