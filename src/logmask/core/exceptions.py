"""
Custom exceptions for the masking engine.

Configuration errors are raised at construction time and stop the engine
from being built. Runtime masking errors are contained by the recovery
layer and never reach the caller of ``MaskingEngine.process``.
"""

from typing import Any, Dict, Optional


class LogMaskException(Exception):
    """Base exception for logmask."""

    def __init__(
        self,
        message: str,
        error_code: str = "internal_error",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class InvalidPatternError(LogMaskException):
    """Raised when a regular expression is rejected by the pattern validator."""

    def __init__(self, message: str, pattern: str = "", reason: str = "invalid") -> None:
        super().__init__(
            message=message,
            error_code="invalid_pattern",
            details={"pattern": pattern, "reason": reason},
        )
        self.pattern = pattern
        self.reason = reason


class InvalidConfigurationError(LogMaskException):
    """Raised when field, type, callback or condition configuration is invalid."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(
            message=message,
            error_code="invalid_configuration",
            details=details,
        )


class RateLimitConfigurationError(InvalidConfigurationError):
    """Raised when rate limiter parameters or keys are out of range."""

    def __init__(self, message: str, parameter: str = "", value: Any = None) -> None:
        super().__init__(message, details={"parameter": parameter, "value": value})
        self.error_code = "invalid_rate_limit_configuration"


class MaskingOperationFailedError(LogMaskException):
    """Raised when a single masking operation fails at runtime."""

    def __init__(
        self,
        message: str,
        operation_type: str = "unknown",
        recoverable: bool = True,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = {"operation_type": operation_type}
        merged.update(details or {})
        super().__init__(
            message=message,
            error_code="masking_operation_failed",
            details=merged,
        )
        self.operation_type = operation_type
        self.recoverable = recoverable


class RecursionDepthExceededError(LogMaskException):
    """Raised when a context tree is nested deeper than the configured limit."""

    def __init__(self, depth: int, max_depth: int, path: str = "") -> None:
        super().__init__(
            message=f"Maximum recursion depth of {max_depth} exceeded at depth {depth}",
            error_code="recursion_depth_exceeded",
            details={"depth": depth, "max_depth": max_depth, "path": path},
        )
        self.depth = depth
        self.max_depth = max_depth
        self.path = path
