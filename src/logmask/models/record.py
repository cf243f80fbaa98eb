"""
Log record model.

- message, level, channel and a nested context tree
- records are immutable; masking produces a new record
"""

from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(IntEnum):
    """Syslog-style severities, ordered from least to most severe."""

    DEBUG = 100
    INFO = 200
    NOTICE = 250
    WARNING = 300
    ERROR = 400
    CRITICAL = 500
    ALERT = 550
    EMERGENCY = 600

    @classmethod
    def parse(cls, value: Union[str, int, "LogLevel"]) -> "LogLevel":
        """Parse a level from its name (case-insensitive) or number."""
        if isinstance(value, LogLevel):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        name = str(value).strip().upper()
        if name == "WARN":
            name = "WARNING"
        if name == "FATAL":
            name = "CRITICAL"
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown log level '{value}'") from None


class LogRecord(BaseModel):
    """
    A single log record.

    The context may hold arbitrary nested maps, lists, scalars and
    objects. Records are frozen; use ``model_copy(update=...)`` to derive
    a changed record.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    message: str = Field(description="Log message text")
    level: LogLevel = Field(default=LogLevel.INFO, description="Record severity")
    channel: str = Field(default="app", description="Logger channel name")
    context: Dict[str, Any] = Field(default_factory=dict, description="Structured context data")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Processor-added data")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the record was created",
    )

    @field_validator("level", mode="before")
    def parse_level(cls, v: Any) -> LogLevel:
        """Accept level names as well as numbers."""
        return LogLevel.parse(v)
