"""
Factories for conditional masking rules.

A condition is a named predicate over a ``LogRecord``. Context masking
only happens when every registered condition returns True.
"""

from collections.abc import Mapping as MappingABC, Sequence as SequenceABC
from typing import Any, Callable, Iterable, Union

from ..models.record import LogLevel, LogRecord

Condition = Callable[[LogRecord], bool]

MISSING = object()


def get_path(data: Any, path: str) -> Any:
    """Read a dotted path from nested maps and lists; ``MISSING`` if absent."""
    current = data
    for segment in path.split("."):
        if isinstance(current, MappingABC):
            if segment not in current:
                return MISSING
            current = current[segment]
        elif isinstance(current, SequenceABC) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    return current


def level_in(levels: Iterable[Union[str, int, LogLevel]]) -> Condition:
    """Match records whose level is one of ``levels``."""
    allowed = frozenset(LogLevel.parse(level) for level in levels)

    def condition(record: LogRecord) -> bool:
        return record.level in allowed

    return condition


def min_level(level: Union[str, int, LogLevel]) -> Condition:
    """Match records at ``level`` or more severe."""
    threshold = LogLevel.parse(level)

    def condition(record: LogRecord) -> bool:
        return record.level >= threshold

    return condition


def channel_in(channels: Iterable[str]) -> Condition:
    allowed = frozenset(channels)

    def condition(record: LogRecord) -> bool:
        return record.channel in allowed

    return condition


def context_has(path: str) -> Condition:
    """Match records whose context contains ``path``."""

    def condition(record: LogRecord) -> bool:
        return get_path(record.context, path) is not MISSING

    return condition


def context_equals(path: str, expected: Any) -> Condition:
    """Match records whose context value at ``path`` equals ``expected``."""

    def condition(record: LogRecord) -> bool:
        value = get_path(record.context, path)
        return value is not MISSING and value == expected and type(value) is type(expected)

    return condition
