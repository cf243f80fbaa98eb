"""
Rate-limited audit trail.

Audit emissions are classified into operation categories and each
category gets its own sliding window budget, so a flood of one kind of
masking event cannot drown out the others or overwhelm the sink.
"""

import inspect
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from .audit import AuditRecord, AuditStatus, OperationType
from .exceptions import InvalidConfigurationError
from .metrics import MetricsCollector
from .rate_limiter import SlidingWindowRateLimiter
from .sanitizer import sanitize_error_message

logger = structlog.get_logger(__name__)

AuditSink = Callable[..., None]

CATEGORY_CONDITIONAL = "audit:conditional_operations"
CATEGORY_JSON = "audit:json_operations"
CATEGORY_REGEX = "audit:regex_operations"
CATEGORY_ERROR = "audit:error_operations"
CATEGORY_GENERAL = "audit:general_operations"

CATEGORIES = (
    CATEGORY_CONDITIONAL,
    CATEGORY_JSON,
    CATEGORY_REGEX,
    CATEGORY_ERROR,
    CATEGORY_GENERAL,
)

RATE_LIMIT_MARKER_PATH = "rate_limit_exceeded"


@dataclass(frozen=True)
class AuditProfile:
    """Per-category budget applied to every audit category."""

    limit: int
    window_seconds: int = 60


AUDIT_PROFILES: Dict[str, AuditProfile] = {
    "strict": AuditProfile(limit=50),
    "default": AuditProfile(limit=100),
    "relaxed": AuditProfile(limit=200),
    "testing": AuditProfile(limit=1000),
}

_PATH_MARKERS: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("conditional",), CATEGORY_CONDITIONAL),
    (("json",), CATEGORY_JSON),
    (("regex",), CATEGORY_REGEX),
    (("error",), CATEGORY_ERROR),
)

_OPERATION_CATEGORIES = {
    OperationType.CONDITIONAL: CATEGORY_CONDITIONAL,
    OperationType.JSON: CATEGORY_JSON,
    OperationType.REGEX: CATEGORY_REGEX,
}


def classify_path(path: str) -> str:
    """Infer an audit category from marker substrings in a path."""
    lowered = path.lower()
    for markers, category in _PATH_MARKERS:
        if any(marker in lowered for marker in markers):
            return category
    return CATEGORY_GENERAL


def classify_record(record: AuditRecord) -> str:
    category = _OPERATION_CATEGORIES.get(record.operation_type)
    if category is not None:
        return category
    if record.status is AuditStatus.FAILED:
        return CATEGORY_ERROR
    return CATEGORY_GENERAL


def accepts_audit_record(sink: AuditSink) -> bool:
    """Whether ``sink`` takes a fourth positional argument for the AuditRecord."""
    try:
        signature = inspect.signature(sink)
    except (TypeError, ValueError):
        return False

    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind is inspect.Parameter.VAR_POSITIONAL:
            return True
        if parameter.kind in (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 4


class RateLimitedAuditSink:
    """
    Wraps a user sink with per-category rate limits.

    Over-budget emissions are dropped. The first drop in a category
    within a window is followed by one ``rate_limit_exceeded`` marker
    emission. Errors raised by the wrapped sink are logged, never raised.
    """

    def __init__(
        self,
        sink: AuditSink,
        profile: str = "default",
        category_limits: Optional[Mapping[str, int]] = None,
        window_seconds: Optional[int] = None,
        metrics: Optional[MetricsCollector] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if profile not in AUDIT_PROFILES:
            raise InvalidConfigurationError(
                f"Unknown audit profile '{profile}'",
                details={"allowed": sorted(AUDIT_PROFILES)},
            )

        preset = AUDIT_PROFILES[profile]
        window = window_seconds if window_seconds is not None else preset.window_seconds
        limits = {category: preset.limit for category in CATEGORIES}
        for category, limit in (category_limits or {}).items():
            key = category if category.startswith("audit:") else f"audit:{category}"
            if key not in limits:
                raise InvalidConfigurationError(
                    f"Unknown audit category '{category}'",
                    details={"allowed": list(CATEGORIES)},
                )
            limits[key] = limit

        self.sink = sink
        self.profile = profile
        self.window_seconds = window
        self.metrics = metrics
        self._rich_sink = accepts_audit_record(sink)
        self._limiters = {
            category: SlidingWindowRateLimiter(limit, window, clock=clock)
            for category, limit in limits.items()
        }
        self._warning_limiter = SlidingWindowRateLimiter(1, window, clock=clock)
        self._counts_lock = threading.Lock()
        self._admitted: Dict[str, int] = {category: 0 for category in CATEGORIES}
        self._dropped: Dict[str, int] = {category: 0 for category in CATEGORIES}

        logger.debug("Audit sink initialized", profile=profile, window_seconds=window, rich_sink=self._rich_sink)

    def __call__(self, path: str, original: Any, masked: Any, record: Optional[AuditRecord] = None) -> None:
        if record is None:
            self.emit(path, original, masked)
        else:
            self.emit_with_context(path, original, masked, record)

    def emit(self, path: str, original: Any, masked: Any) -> bool:
        """Emit without structured context; the category comes from ``path``."""
        return self._emit(classify_path(path), path, original, masked, None)

    def emit_with_context(self, path: str, original: Any, masked: Any, record: AuditRecord) -> bool:
        """Emit with an AuditRecord; the category comes from its operation type."""
        return self._emit(classify_record(record), path, original, masked, record)

    def stats(self) -> Dict[str, Dict[str, Any]]:
        """Admitted and dropped counts plus the current window per category."""
        with self._counts_lock:
            admitted = dict(self._admitted)
            dropped = dict(self._dropped)

        result: Dict[str, Dict[str, Any]] = {}
        for category, limiter in self._limiters.items():
            window = limiter.stats_for(category)
            result[category] = {
                "limit": limiter.limit,
                "admitted": admitted[category],
                "dropped": dropped[category],
                "current": window.current,
                "remaining": window.remaining,
                "reset_in_seconds": window.reset_in_seconds,
            }
        return result

    def dropped_count(self, category: Optional[str] = None) -> int:
        with self._counts_lock:
            if category is None:
                return sum(self._dropped.values())
            return self._dropped.get(category, 0)

    def reset(self) -> None:
        """Clear all windows and counters. Intended for test harnesses."""
        for limiter in self._limiters.values():
            limiter.clear_all()
        self._warning_limiter.clear_all()
        with self._counts_lock:
            for category in CATEGORIES:
                self._admitted[category] = 0
                self._dropped[category] = 0

    def _emit(
        self,
        category: str,
        path: str,
        original: Any,
        masked: Any,
        record: Optional[AuditRecord],
    ) -> bool:
        if not self._limiters[category].is_allowed(category):
            with self._counts_lock:
                self._dropped[category] += 1
                dropped = self._dropped[category]
            self._record_metric(category, "dropped")
            self._maybe_warn(category, dropped)
            return False

        with self._counts_lock:
            self._admitted[category] += 1
        self._record_metric(category, "emitted")

        if record is not None and self._rich_sink:
            self._deliver(path, original, masked, record)
        else:
            self._deliver(path, original, masked)
        return True

    def _maybe_warn(self, category: str, dropped: int) -> None:
        if not self._warning_limiter.is_allowed(category):
            return

        logger.warning("Audit rate limit exceeded", category=category, dropped=dropped)
        self._deliver(
            RATE_LIMIT_MARKER_PATH,
            category,
            {
                "category": category,
                "dropped": dropped,
                "limit": self._limiters[category].limit,
                "window_seconds": self.window_seconds,
            },
        )

    def _deliver(self, *args: Any) -> None:
        try:
            self.sink(*args)
        except Exception as e:
            logger.error(
                "Audit sink raised an error",
                path=args[0],
                error=sanitize_error_message(str(e)),
                error_type=type(e).__name__,
                exc_info=True,
            )

    def _record_metric(self, category: str, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_audit_event(category, outcome)


class ListAuditSink:
    """Keeps every emission in memory."""

    def __init__(self) -> None:
        self.entries: List[Tuple[str, Any, Any, Optional[AuditRecord]]] = []
        self._lock = threading.Lock()

    def __call__(self, path: str, original: Any, masked: Any, record: Optional[AuditRecord] = None) -> None:
        with self._lock:
            self.entries.append((path, original, masked, record))

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def records(self) -> List[AuditRecord]:
        return [record for _, _, _, record in self.entries if record is not None]

    @property
    def paths(self) -> List[str]:
        return [path for path, _, _, _ in self.entries]

    def clear(self) -> None:
        with self._lock:
            self.entries.clear()


class StructlogAuditSink:
    """
    Writes audit records as structlog events.

    Only the path, the masked value's type and the record are logged; the
    original value is never written.
    """

    def __init__(self, logger_name: str = "logmask.audit") -> None:
        self._logger = structlog.get_logger(logger_name)

    def __call__(self, path: str, original: Any, masked: Any, record: Optional[AuditRecord] = None) -> None:
        if path == RATE_LIMIT_MARKER_PATH:
            self._logger.warning("Audit events dropped", **masked)
            return
        fields: Dict[str, Any] = {"path": path, "masked_type": type(masked).__name__}
        if record is not None:
            fields.update(record.to_dict())
        self._logger.info("Masking audit", **fields)
