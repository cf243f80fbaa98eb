"""
Structured audit records.

One ``AuditRecord`` is produced per masking decision and handed to the
audit sink. Error text is sanitized when an ``ErrorInfo`` is built, so a
record can never carry raw exception messages.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from .sanitizer import sanitize_error_message


class OperationType(str, Enum):
    """Category of a masking operation, used for audit throttling."""

    REGEX = "regex"
    FIELD_PATH = "field_path"
    CALLBACK = "callback"
    DATA_TYPE = "data_type"
    JSON = "json"
    CONDITIONAL = "conditional"
    TRAVERSAL = "traversal"


class AuditStatus(str, Enum):
    """Outcome of a masking operation."""

    SUCCESS = "success"
    FAILED = "failed"
    RECOVERED = "recovered"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ErrorInfo:
    """Sanitized description of an error."""

    error_type: str
    message: str
    code: str = "error"
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ErrorInfo":
        """Build an ErrorInfo, sanitizing the exception text."""
        code = getattr(error, "error_code", None) or type(error).__name__
        return cls(
            error_type=type(error).__name__,
            message=sanitize_error_message(str(error)),
            code=str(code),
            metadata=dict(metadata or {}),
        )

    @classmethod
    def create(
        cls,
        error_type: str,
        message: str,
        code: str = "error",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "ErrorInfo":
        """Build an ErrorInfo from raw text, sanitizing it."""
        return cls(
            error_type=error_type,
            message=sanitize_error_message(message),
            code=code,
            metadata=dict(metadata or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "error_type": self.error_type,
            "message": self.message,
            "code": self.code,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data


def generate_correlation_id() -> str:
    """Generate an id that ties together the audit records of one record."""
    return uuid.uuid4().hex


@dataclass(frozen=True)
class AuditRecord:
    """What happened to a single value during masking."""

    operation_type: OperationType
    status: AuditStatus
    attempt_number: int = 1
    duration_ms: float = 0.0
    error: Optional[ErrorInfo] = None
    correlation_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @classmethod
    def success(
        cls,
        operation_type: OperationType,
        duration_ms: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "AuditRecord":
        return cls(
            operation_type=operation_type,
            status=AuditStatus.SUCCESS,
            duration_ms=duration_ms,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def failed(
        cls,
        operation_type: OperationType,
        error: ErrorInfo,
        attempt_number: int = 1,
        duration_ms: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "AuditRecord":
        return cls(
            operation_type=operation_type,
            status=AuditStatus.FAILED,
            attempt_number=attempt_number,
            duration_ms=duration_ms,
            error=error,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def recovered(
        cls,
        operation_type: OperationType,
        attempt_number: int,
        duration_ms: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "AuditRecord":
        return cls(
            operation_type=operation_type,
            status=AuditStatus.RECOVERED,
            attempt_number=attempt_number,
            duration_ms=duration_ms,
            metadata=dict(metadata or {}),
        )

    @classmethod
    def skipped(
        cls,
        operation_type: OperationType,
        reason: str,
        error: Optional[ErrorInfo] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "AuditRecord":
        merged = {"skip_reason": reason}
        merged.update(metadata or {})
        return cls(
            operation_type=operation_type,
            status=AuditStatus.SKIPPED,
            attempt_number=0,
            error=error,
            metadata=merged,
        )

    def with_metadata(self, **metadata: Any) -> "AuditRecord":
        """Return a copy with extra metadata merged in."""
        merged = dict(self.metadata)
        merged.update(metadata)
        return replace(self, metadata=merged)

    def with_correlation_id(self, correlation_id: str) -> "AuditRecord":
        return replace(self, correlation_id=correlation_id)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "operation_type": self.operation_type.value,
            "status": self.status.value,
            "attempt_number": self.attempt_number,
            "duration_ms": round(self.duration_ms, 3),
            "timestamp": self.timestamp,
        }
        if self.correlation_id is not None:
            data["correlation_id"] = self.correlation_id
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data
