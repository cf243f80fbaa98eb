"""
Regular expression validation and caching.

Patterns are compiled and inspected once before they are used on any
record. The inspection walks the pattern grammar looking for shapes that
backtrack catastrophically:

- a group holding an unbounded quantifier that is itself repeated
  without bound, e.g. ``(a+)+`` or ``((ab)*c)+``
- a repeated alternation whose branches can start on the same input,
  e.g. ``(a|ab)*`` or ``(.|x)+``

This is a static heuristic. It can reject patterns that are safe and miss
some that are not; Python's ``re`` has no execution time budget to fall
back on, so patterns from untrusted sources should still be reviewed.
"""

import re
import threading
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

import structlog

from .exceptions import InvalidPatternError

logger = structlog.get_logger(__name__)

_DELIMITERS = "/#~"
_DELIMITER_FLAGS = {
    "i": re.IGNORECASE,
    "m": re.MULTILINE,
    "s": re.DOTALL,
    "x": re.VERBOSE,
    "u": 0,
}
_GROUP_PREFIX = re.compile(r"\?(?:[:=!>]|<[=!]|P?<[A-Za-z_]\w*>|[aiLmsux-]+:)")
_BRACE_QUANTIFIER = re.compile(r"\{(\d*)(,?)(\d*)\}")


@dataclass(frozen=True)
class ValidatedPattern:
    """A compiled pattern that passed validation."""

    source: str
    body: str
    flags: int
    compiled: "re.Pattern[str]"

    def search(self, text: str) -> bool:
        return self.compiled.search(text) is not None

    def sub(self, text: str, replacement: str) -> str:
        """Replace every match with the literal replacement text."""
        return self.compiled.sub(lambda _match: replacement, text)


@dataclass
class _Frame:
    start: int
    branch_start: int
    branches: List[str]
    has_unbounded: bool = False


def split_delimiters(pattern: str) -> Tuple[str, int]:
    """
    Strip ``/body/flags`` style delimiters.

    Returns the body and the ``re`` flags. A pattern without recognisable
    delimiters is returned unchanged with no flags.
    """
    if len(pattern) >= 2 and pattern[0] in _DELIMITERS:
        delimiter = pattern[0]
        end = pattern.rfind(delimiter)
        if end > 0:
            modifiers = pattern[end + 1:]
            if all(char in _DELIMITER_FLAGS for char in modifiers):
                flags = 0
                for char in modifiers:
                    flags |= _DELIMITER_FLAGS[char]
                return pattern[1:end], flags
    return pattern, 0


def _skip_class(body: str, index: int) -> int:
    """Return the index just past the character class starting at ``index``."""
    i = index + 1
    if i < len(body) and body[i] == "^":
        i += 1
    if i < len(body) and body[i] == "]":
        i += 1
    while i < len(body):
        char = body[i]
        if char == "\\":
            i += 2
            continue
        if char == "]":
            return i + 1
        i += 1
    return len(body)


def _read_quantifier(body: str, index: int) -> Tuple[Optional[bool], int]:
    """
    Read a quantifier at ``index``.

    Returns ``(unbounded, next_index)``; ``unbounded`` is None when there is
    no quantifier at that position.
    """
    if index >= len(body):
        return None, index
    char = body[index]
    if char in "*+":
        unbounded: Optional[bool] = True
        index += 1
    elif char == "?":
        unbounded = False
        index += 1
    elif char == "{":
        match = _BRACE_QUANTIFIER.match(body, index)
        if not match or not (match.group(1) or match.group(3)):
            return None, index
        unbounded = bool(match.group(2)) and not match.group(3)
        index = match.end()
    else:
        return None, index
    # Lazy or possessive suffix
    if index < len(body) and body[index] in "?+":
        index += 1
    return unbounded, index


def _first_token(branch: str) -> str:
    if not branch:
        return ""
    if branch[0] == "\\":
        return branch[:2]
    if branch[0] == "[":
        return branch[:_skip_class(branch, 0)]
    return branch[0]


def _branches_overlap(branches: List[str]) -> bool:
    tokens = [_first_token(branch) for branch in branches]
    seen = set()
    for token in tokens:
        if not token:
            continue
        if token == "." or token in seen:
            return True
        seen.add(token)
    return False


def find_redos_risk(body: str) -> Optional[str]:
    """
    Inspect a pattern body for catastrophic backtracking shapes.

    Returns a short reason string, or None when nothing was found.
    """
    stack: List[_Frame] = [_Frame(start=0, branch_start=0, branches=[])]
    i = 0
    length = len(body)

    while i < length:
        char = body[i]

        if char == "\\":
            i += 2
            unbounded, i = _read_quantifier(body, i)
            if unbounded:
                stack[-1].has_unbounded = True
            continue

        if char == "[":
            i = _skip_class(body, i)
            unbounded, i = _read_quantifier(body, i)
            if unbounded:
                stack[-1].has_unbounded = True
            continue

        if char == "(":
            content_start = i + 1
            prefix = _GROUP_PREFIX.match(body, content_start)
            if prefix:
                content_start = prefix.end()
            stack.append(_Frame(start=i, branch_start=content_start, branches=[]))
            i = content_start
            continue

        if char == "|":
            frame = stack[-1]
            frame.branches.append(body[frame.branch_start:i])
            frame.branch_start = i + 1
            i += 1
            continue

        if char == ")" and len(stack) > 1:
            frame = stack.pop()
            frame.branches.append(body[frame.branch_start:i])
            unbounded, i = _read_quantifier(body, i + 1)
            if unbounded:
                if frame.has_unbounded:
                    return "nested_quantifier"
                if len(frame.branches) > 1 and _branches_overlap(frame.branches):
                    return "overlapping_alternation"
            if frame.has_unbounded or unbounded:
                stack[-1].has_unbounded = True
            continue

        unbounded, next_index = _read_quantifier(body, i + 1)
        if unbounded:
            stack[-1].has_unbounded = True
        i = next_index if unbounded is not None else i + 1

    return None


class PatternValidator:
    """
    Compiles, vets and caches regular expressions.

    Safe to share between threads; the cache is guarded by a lock.
    """

    def __init__(self) -> None:
        self._cache: Dict[str, ValidatedPattern] = {}
        self._lock = threading.Lock()

    def validate(self, pattern: str) -> ValidatedPattern:
        """
        Validate a single pattern.

        Args:
            pattern: Regex source, optionally wrapped as ``/body/flags``

        Returns:
            The compiled, validated pattern

        Raises:
            InvalidPatternError: If the pattern is empty, does not compile,
                can match the empty string or looks ReDoS-prone
        """
        with self._lock:
            cached = self._cache.get(pattern)
        if cached is not None:
            return cached

        validated = self._build(pattern)

        with self._lock:
            self._cache.setdefault(pattern, validated)
        return validated

    def validate_all(self, patterns: Mapping[str, str]) -> Dict[str, ValidatedPattern]:
        """
        Validate every pattern of a pattern → replacement mapping.

        Fails on the first invalid entry; the error names that pattern.
        """
        validated: Dict[str, ValidatedPattern] = {}
        for pattern in patterns:
            validated[pattern] = self.validate(pattern)
        return validated

    def is_valid(self, pattern: str) -> bool:
        try:
            self.validate(pattern)
        except InvalidPatternError:
            return False
        return True

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cached_patterns(self) -> List[str]:
        with self._lock:
            return list(self._cache)

    def _build(self, pattern: str) -> ValidatedPattern:
        if not isinstance(pattern, str) or not pattern.strip():
            raise InvalidPatternError("Pattern must be a non-empty string", pattern=str(pattern), reason="empty")

        body, flags = split_delimiters(pattern)
        if not body.strip():
            raise InvalidPatternError(
                f"Pattern '{pattern}' has an empty body", pattern=pattern, reason="empty_body"
            )

        risk = find_redos_risk(body)
        if risk is not None:
            logger.warning("Rejected ReDoS-prone pattern", pattern=pattern, reason=risk)
            raise InvalidPatternError(
                f"Pattern '{pattern}' is potentially vulnerable to ReDoS ({risk})",
                pattern=pattern,
                reason=risk,
            )

        try:
            compiled = re.compile(body, flags)
        except re.error as e:
            raise InvalidPatternError(
                f"Pattern compilation failed for '{pattern}': {e}",
                pattern=pattern,
                reason="compile_error",
            ) from e

        if compiled.fullmatch("") is not None:
            raise InvalidPatternError(
                f"Pattern '{pattern}' matches the empty string",
                pattern=pattern,
                reason="matches_empty",
            )

        logger.debug("Validated pattern", pattern=pattern)
        return ValidatedPattern(source=pattern, body=body, flags=flags, compiled=compiled)


# Global pattern validator instance
_pattern_validator: Optional[PatternValidator] = None


def get_pattern_validator() -> PatternValidator:
    """Get or create the global pattern validator."""
    global _pattern_validator

    if _pattern_validator is None:
        _pattern_validator = PatternValidator()

    return _pattern_validator
