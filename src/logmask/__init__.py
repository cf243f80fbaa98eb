"""
logmask - sensitive data masking for log records

Rewrites log records so that regulated or secret data is replaced,
removed or transformed before it is written anywhere, with retry and
fallback around every masking operation and a rate-limited audit trail.
"""

__version__ = "0.1.0"

from .core.masking import MaskingConfig, MaskingEngine
from .core.recovery import FailureMode, RecoveryPolicy
from .core.rules import FieldAction
from .models.record import LogLevel, LogRecord
from .processor import StructlogMaskingProcessor

__all__ = [
    "FailureMode",
    "FieldAction",
    "LogLevel",
    "LogRecord",
    "MaskingConfig",
    "MaskingEngine",
    "RecoveryPolicy",
    "StructlogMaskingProcessor",
]
