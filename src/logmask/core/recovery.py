"""
Retry, backoff and fallback around fallible masking operations.

Every masking operation runs through ``RetryStrategy.execute``. Errors are
contained here: the caller always gets a ``RecoveryResult`` whose value is
either the masked value or a fallback chosen by the ``FailureMode``.
"""

import random
import re
import time
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

import structlog

from .audit import AuditRecord, ErrorInfo, OperationType
from .constants import MaskConstants as Mask
from .exceptions import (
    InvalidConfigurationError,
    InvalidPatternError,
    MaskingOperationFailedError,
    RecursionDepthExceededError,
)

logger = structlog.get_logger(__name__)

_NON_RECOVERABLE = (RecursionDepthExceededError, InvalidPatternError, re.error, RecursionError)
_NON_RECOVERABLE_MARKERS = ("pattern compilation failed", "redos")


class FailureMode(str, Enum):
    """What to return when masking cannot be completed."""

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"
    FAIL_SAFE = "fail_safe"

    @property
    def description(self) -> str:
        return _FAILURE_MODE_DESCRIPTIONS[self]

    @classmethod
    def recommended(cls) -> "FailureMode":
        return cls.FAIL_SAFE

    @classmethod
    def parse(cls, value: Union[str, "FailureMode"]) -> "FailureMode":
        if isinstance(value, FailureMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise InvalidConfigurationError(
                f"Unknown failure mode '{value}'",
                details={"allowed": [mode.value for mode in cls]},
            ) from None


_FAILURE_MODE_DESCRIPTIONS = {
    FailureMode.FAIL_OPEN: "Return the original value unmasked (risky: may leak sensitive data)",
    FailureMode.FAIL_CLOSED: "Replace the value with a fixed redaction token",
    FailureMode.FAIL_SAFE: "Replace the value with a type-aware placeholder (recommended)",
}


@dataclass(frozen=True)
class RecoveryPolicy:
    """Retry and fallback settings for masking operations."""

    max_attempts: int = 3
    base_delay_ms: float = 10.0
    max_delay_ms: float = 100.0
    failure_mode: FailureMode = FailureMode.FAIL_SAFE
    fallback_mask: Optional[str] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise InvalidConfigurationError(
                "max_attempts must be at least 1",
                details={"max_attempts": self.max_attempts},
            )
        if self.base_delay_ms < 0:
            raise InvalidConfigurationError(
                "base_delay_ms cannot be negative",
                details={"base_delay_ms": self.base_delay_ms},
            )
        if self.max_delay_ms < self.base_delay_ms:
            raise InvalidConfigurationError(
                "max_delay_ms must be greater than or equal to base_delay_ms",
                details={"base_delay_ms": self.base_delay_ms, "max_delay_ms": self.max_delay_ms},
            )
        if not isinstance(self.failure_mode, FailureMode):
            object.__setattr__(self, "failure_mode", FailureMode.parse(self.failure_mode))

    @classmethod
    def default(cls) -> "RecoveryPolicy":
        return cls()

    @classmethod
    def no_retry(cls, failure_mode: FailureMode = FailureMode.FAIL_SAFE) -> "RecoveryPolicy":
        return cls(max_attempts=1, base_delay_ms=0, max_delay_ms=0, failure_mode=failure_mode)

    @classmethod
    def fast(cls) -> "RecoveryPolicy":
        return cls(max_attempts=2, base_delay_ms=5, max_delay_ms=20, failure_mode=FailureMode.FAIL_SAFE)

    @classmethod
    def thorough(cls) -> "RecoveryPolicy":
        return cls(max_attempts=5, base_delay_ms=20, max_delay_ms=200, failure_mode=FailureMode.FAIL_CLOSED)


class RecoveryOutcome(str, Enum):
    SUCCESS = "success"
    RECOVERED = "recovered"
    FALLBACK = "fallback"
    FAILED = "failed"


@dataclass(frozen=True)
class RecoveryResult:
    """
    Outcome of one recovered masking attempt.

    Built once per operation and consumed right away to produce an
    ``AuditRecord``.
    """

    outcome: RecoveryOutcome
    value: Any
    attempts: int
    last_error: Optional[ErrorInfo] = None
    duration_ms: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, value: Any, duration_ms: float = 0.0) -> "RecoveryResult":
        return cls(RecoveryOutcome.SUCCESS, value, 1, duration_ms=duration_ms)

    @classmethod
    def recovered(cls, value: Any, attempts: int, duration_ms: float = 0.0) -> "RecoveryResult":
        return cls(RecoveryOutcome.RECOVERED, value, attempts, duration_ms=duration_ms)

    @classmethod
    def fallback(
        cls,
        value: Any,
        attempts: int,
        last_error: ErrorInfo,
        duration_ms: float = 0.0,
    ) -> "RecoveryResult":
        return cls(RecoveryOutcome.FALLBACK, value, attempts, last_error, duration_ms)

    @classmethod
    def failed(
        cls,
        original_value: Any,
        attempts: int,
        last_error: ErrorInfo,
        duration_ms: float = 0.0,
    ) -> "RecoveryResult":
        return cls(RecoveryOutcome.FAILED, original_value, attempts, last_error, duration_ms)

    @property
    def is_success(self) -> bool:
        return self.outcome in (RecoveryOutcome.SUCCESS, RecoveryOutcome.RECOVERED)

    @property
    def used_fallback(self) -> bool:
        return self.outcome is RecoveryOutcome.FALLBACK

    def masked_value(self) -> Any:
        """Value safe to write into the output record."""
        if self.outcome is RecoveryOutcome.FAILED:
            return Mask.MASK_REDACTED
        return self.value

    def to_audit_record(
        self,
        operation_type: OperationType,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuditRecord:
        merged = dict(self.metadata)
        merged.update(metadata or {})

        if self.outcome is RecoveryOutcome.SUCCESS:
            return AuditRecord.success(operation_type, self.duration_ms, merged)
        if self.outcome is RecoveryOutcome.RECOVERED:
            return AuditRecord.recovered(operation_type, self.attempts, self.duration_ms, merged)

        merged["outcome"] = self.outcome.value
        error = self.last_error or ErrorInfo.create("UnknownError", "Masking failed")
        return AuditRecord.failed(operation_type, error, self.attempts, self.duration_ms, merged)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "outcome": self.outcome.value,
            "attempts": self.attempts,
            "duration_ms": round(self.duration_ms, 3),
        }
        if self.last_error is not None:
            data["error"] = self.last_error.to_dict()
        return data


class FallbackMaskStrategy:
    """Chooses the value written when masking fails."""

    def __init__(self, failure_mode: FailureMode = FailureMode.FAIL_SAFE, fallback_mask: Optional[str] = None) -> None:
        self.failure_mode = failure_mode
        self.fallback_mask = fallback_mask

    def fallback_for(self, value: Any) -> Any:
        if self.fallback_mask is not None:
            return self.fallback_mask
        if self.failure_mode is FailureMode.FAIL_OPEN:
            return value
        if self.failure_mode is FailureMode.FAIL_CLOSED:
            return Mask.MASK_REDACTED
        return self.safe_placeholder(value)

    @staticmethod
    def safe_placeholder(value: Any) -> str:
        """Placeholder describing the shape of a value without its content."""
        if value is None:
            return Mask.MASK_NULL
        if isinstance(value, bool):
            return Mask.MASK_BOOL
        if isinstance(value, int):
            return Mask.MASK_INT
        if isinstance(value, float):
            return Mask.MASK_FLOAT
        if isinstance(value, str):
            if len(value) > 10:
                return f"{Mask.MASK_STRING} ({len(value)} chars)"
            return Mask.MASK_STRING
        if isinstance(value, (list, tuple, set, frozenset)):
            return f"{Mask.MASK_ARRAY} ({len(value)} items)"
        if isinstance(value, MappingABC):
            return f"{Mask.MASK_OBJECT} ({len(value)} keys)"
        return f"{Mask.MASK_OBJECT} ({type(value).__name__})"


class RetryStrategy:
    """
    Runs a masking operation with retries and a fallback.

    Delays block the calling thread. They are capped by
    ``policy.max_delay_ms`` and only happen after a failure.
    """

    def __init__(
        self,
        policy: Optional[RecoveryPolicy] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.policy = policy or RecoveryPolicy.default()
        self.fallback_strategy = FallbackMaskStrategy(self.policy.failure_mode, self.policy.fallback_mask)
        self._sleep = sleep
        self._rng = rng or random.Random()

    def execute(
        self,
        operation: Callable[[], Any],
        original_value: Any,
        path: str = "",
    ) -> RecoveryResult:
        """
        Run ``operation`` until it succeeds or attempts run out.

        Args:
            operation: Zero-argument callable producing the masked value
            original_value: Value being masked, used for the fallback
            path: Location of the value, for logging

        Returns:
            Success, Recovered, Fallback or Failed result
        """
        started = time.perf_counter()

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                value = operation()
            except Exception as e:
                recoverable = self.is_recoverable(e)
                logger.warning(
                    "Masking attempt failed",
                    path=path,
                    attempt=attempt,
                    max_attempts=self.policy.max_attempts,
                    error_type=type(e).__name__,
                    recoverable=recoverable,
                )
                if not recoverable or attempt == self.policy.max_attempts:
                    return self._give_up(e, original_value, attempt, path, started)
                self._sleep(self.delay_for(attempt) / 1000.0)
                continue

            duration_ms = (time.perf_counter() - started) * 1000
            if attempt == 1:
                return RecoveryResult.success(value, duration_ms)
            logger.info("Masking operation recovered", path=path, attempts=attempt)
            return RecoveryResult.recovered(value, attempt, duration_ms)

        raise MaskingOperationFailedError("Retry loop ran no attempts", recoverable=False)

    def _give_up(
        self,
        error: Exception,
        original_value: Any,
        attempts: int,
        path: str,
        started: float,
    ) -> RecoveryResult:
        """Build the Fallback (or Failed) result after the last failed attempt."""
        error_info = ErrorInfo.from_exception(error, {"path": path} if path else None)
        duration_ms = (time.perf_counter() - started) * 1000

        try:
            fallback = self.fallback_strategy.fallback_for(original_value)
        except Exception as e:
            logger.error(
                "Fallback mask selection failed",
                path=path,
                error_type=type(e).__name__,
                exc_info=True,
            )
            return RecoveryResult.failed(original_value, attempts, error_info, duration_ms)

        logger.warning(
            "Masking fell back",
            path=path,
            attempts=attempts,
            failure_mode=self.policy.failure_mode.value,
            error_type=error_info.error_type,
        )
        return RecoveryResult.fallback(fallback, attempts, error_info, duration_ms)

    def delay_for(self, attempt: int) -> float:
        """Delay in milliseconds after the given failed attempt."""
        base = self.policy.base_delay_ms * (2 ** (attempt - 1))
        jitter = self._rng.uniform(0, base * 0.25) if base > 0 else 0.0
        return min(self.policy.max_delay_ms, base + jitter)

    @staticmethod
    def is_recoverable(error: BaseException) -> bool:
        """Whether retrying could help. Depth and pattern errors never do."""
        if isinstance(error, _NON_RECOVERABLE):
            return False
        if isinstance(error, MaskingOperationFailedError) and not error.recoverable:
            return False
        message = str(error).lower()
        return not any(marker in message for marker in _NON_RECOVERABLE_MARKERS)

    def with_policy(self, policy: RecoveryPolicy) -> "RetryStrategy":
        return RetryStrategy(policy, sleep=self._sleep, rng=self._rng)
