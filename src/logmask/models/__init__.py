"""
Pydantic data models package.

Contains the log record handed to and returned by the masking engine.
"""

from .record import LogLevel, LogRecord

__all__ = [
    "LogLevel",
    "LogRecord",
]
