"""
Data masking engine for log records.

Rewrites the message and the nested context of a ``LogRecord`` so that
sensitive values are replaced, removed or transformed. Each masking
operation runs through the recovery layer and is reported to the
rate-limited audit sink.

Policy:
- message regex (and embedded JSON) masking always runs
- conditional rules gate context masking only
- containers nested deeper than ``max_depth`` are replaced by the
  fallback placeholder; cycles are replaced by ``[CIRCULAR_REFERENCE]``
"""

import time
from collections.abc import Mapping as MappingABC
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Set

import structlog

from ..models.record import LogRecord
from .audit import AuditRecord, ErrorInfo, OperationType, generate_correlation_id
from .audit_sink import AuditSink, RateLimitedAuditSink, StructlogAuditSink
from .constants import MaskConstants as Mask
from .default_patterns import default_patterns
from .exceptions import RecursionDepthExceededError
from .json_masker import mask_json_in_text
from .metrics import MetricsCollector
from .patterns import PatternValidator, get_pattern_validator
from .recovery import RecoveryOutcome, RecoveryPolicy, RecoveryResult, RetryStrategy
from .rules import (
    CallbackRule,
    FieldActionType,
    FieldPathRule,
    RegexRule,
    RuleSet,
    TypeRule,
    apply_type_rule,
)
from .sanitizer import sanitize_error_message
from .validation import (
    build_callbacks,
    build_field_rules,
    build_regex_rules,
    build_type_rules,
    validate_conditions,
    validate_max_depth,
)

logger = structlog.get_logger(__name__)

_REMOVED = object()
_SEQUENCE_TYPES = (list, tuple, set, frozenset)


@dataclass
class MaskingConfig:
    """
    Everything a ``MaskingEngine`` is built from.

    Attributes:
        patterns: Regex → replacement, applied in insertion order
        field_rules: Dotted path → FieldAction (or its config form)
        type_rules: Value kind name → replacement
        callbacks: Dotted path → transform function
        conditions: Name → predicate over the record; all must pass for
            context masking to happen
        max_depth: Deepest container level that is traversed (1..300)
        recovery: Retry and fallback policy
        audit_sink: Callable receiving (path, original, masked[, record])
        audit_profile: Rate limit profile for the audit sink
        audit_limits: Per-category limit overrides
        audit_window_seconds: Overrides the profile window
        mask_json_in_message: Mask JSON documents embedded in the message
        use_default_patterns: Prepend the built-in PII patterns
    """

    patterns: Dict[str, str] = field(default_factory=dict)
    field_rules: Dict[str, Any] = field(default_factory=dict)
    type_rules: Dict[str, str] = field(default_factory=dict)
    callbacks: Dict[str, Callable[[Any], Any]] = field(default_factory=dict)
    conditions: Dict[str, Callable[[LogRecord], bool]] = field(default_factory=dict)
    max_depth: int = 100
    recovery: RecoveryPolicy = field(default_factory=RecoveryPolicy)
    audit_sink: Optional[AuditSink] = None
    audit_profile: str = "default"
    audit_limits: Dict[str, int] = field(default_factory=dict)
    audit_window_seconds: Optional[int] = None
    mask_json_in_message: bool = True
    use_default_patterns: bool = False


@dataclass
class _Traversal:
    """Per-record traversal state."""

    correlation_id: str
    ancestors: Set[int] = field(default_factory=set)
    audit_prefix: str = ""


class MaskingEngine:
    """
    Masks sensitive data in log records.

    Features:
    - Regex masking of the message and of selected context values
    - Field path rules (remove, replace, regex) with ``*`` wildcards
    - Type rules keyed on the runtime kind of a value
    - Callback transforms at field paths
    - Conditional rules gating context masking
    - Retry, backoff and fallback around every operation
    - Rate-limited audit trail

    One configured engine can be shared between threads. ``process``
    never raises.
    """

    def __init__(
        self,
        config: Optional[MaskingConfig] = None,
        *,
        metrics: Optional[MetricsCollector] = None,
        pattern_validator: Optional[PatternValidator] = None,
        retry_strategy: Optional[RetryStrategy] = None,
    ) -> None:
        config = config or MaskingConfig()
        validator = pattern_validator or get_pattern_validator()

        patterns: Dict[str, str] = {}
        if config.use_default_patterns:
            patterns.update(default_patterns())
        patterns.update(config.patterns)

        self.max_depth = validate_max_depth(config.max_depth)
        self.rules = RuleSet(
            regex_rules=build_regex_rules(patterns, validator),
            field_rules=build_field_rules(config.field_rules),
            type_rules=build_type_rules(config.type_rules),
            callbacks=build_callbacks(config.callbacks),
        )
        self.conditions = validate_conditions(config.conditions)
        self.retry = retry_strategy or RetryStrategy(config.recovery)
        self.mask_json_in_message = config.mask_json_in_message
        self.metrics = metrics

        self.audit_sink: Optional[RateLimitedAuditSink] = None
        if isinstance(config.audit_sink, RateLimitedAuditSink):
            self.audit_sink = config.audit_sink
        elif config.audit_sink is not None:
            self.audit_sink = RateLimitedAuditSink(
                config.audit_sink,
                profile=config.audit_profile,
                category_limits=config.audit_limits,
                window_seconds=config.audit_window_seconds,
                metrics=metrics,
            )

        logger.info(
            "Masking engine initialized",
            regex_rules=len(self.rules.regex_rules),
            type_rules=len(self.rules.type_rules),
            conditions=len(self.conditions),
            max_depth=self.max_depth,
            failure_mode=self.retry.policy.failure_mode.value,
            audit=self.audit_sink is not None,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        *,
        callbacks: Optional[Dict[str, Callable[[Any], Any]]] = None,
        conditions: Optional[Dict[str, Callable[[LogRecord], bool]]] = None,
        audit_sink: Optional[AuditSink] = None,
        metrics: Optional[MetricsCollector] = None,
        pattern_validator: Optional[PatternValidator] = None,
    ) -> "MaskingEngine":
        """Build an engine from ``logmask.config.Settings``."""
        masking = settings.masking
        recovery = settings.recovery
        audit = settings.audit

        if audit_sink is None and audit.enabled:
            audit_sink = StructlogAuditSink()

        config = MaskingConfig(
            patterns=dict(masking.patterns),
            field_rules=dict(masking.field_rules),
            type_rules=dict(masking.type_rules),
            callbacks=dict(callbacks or {}),
            conditions=dict(conditions or {}),
            max_depth=masking.max_depth,
            recovery=RecoveryPolicy(
                max_attempts=recovery.max_attempts,
                base_delay_ms=recovery.base_delay_ms,
                max_delay_ms=recovery.max_delay_ms,
                failure_mode=recovery.failure_mode,
                fallback_mask=recovery.fallback_mask,
            ),
            audit_sink=audit_sink if audit.enabled else None,
            audit_profile=audit.profile,
            audit_limits=dict(audit.category_limits),
            audit_window_seconds=audit.window_seconds,
            mask_json_in_message=masking.mask_json_in_message,
            use_default_patterns=masking.use_default_patterns,
        )
        return cls(config, metrics=metrics, pattern_validator=pattern_validator)

    def process(self, record: LogRecord) -> LogRecord:
        """
        Mask a record.

        Args:
            record: The record to mask; it is not modified

        Returns:
            A new record with masked message and context
        """
        started = time.perf_counter()
        try:
            masked = self._process(record)
        except Exception as e:
            logger.error(
                "Failed to mask log record",
                channel=record.channel,
                error=sanitize_error_message(str(e)),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if self.metrics is not None:
                self.metrics.record_record_failure()
            masked = self._masking_failed(record)

        if self.metrics is not None:
            self.metrics.observe_processing_time(time.perf_counter() - started)
        return masked

    __call__ = process

    def _process(self, record: LogRecord) -> LogRecord:
        state = _Traversal(correlation_id=generate_correlation_id())

        message = self._mask_message(record.message, state)

        context = record.context
        if self._conditions_pass(record, state):
            context = self._mask_mapping(record.context, "", 0, state)

        return record.model_copy(update={"message": message, "context": context})

    @staticmethod
    def _masking_failed(record: LogRecord) -> LogRecord:
        """Last-resort output when masking could not complete."""
        return record.model_copy(
            update={
                "message": Mask.MASK_REDACTED,
                "context": {"error": "masking_failed", "original_keys": [str(key) for key in record.context]},
            }
        )

    # Conditional rules

    def _conditions_pass(self, record: LogRecord, state: _Traversal) -> bool:
        for name, predicate in self.conditions.items():
            path = f"conditional:{name}"
            try:
                passed = bool(predicate(record))
            except Exception as e:
                logger.warning(
                    "Conditional rule raised; skipping context masking",
                    rule=name,
                    error_type=type(e).__name__,
                )
                error = ErrorInfo.from_exception(e, {"rule": name})
                self._skip(path, "rule_error", state, error=error, rule=name)
                return False

            if not passed:
                self._skip(path, "condition_not_met", state, rule=name)
                return False
        return True

    def _skip(
        self,
        path: str,
        reason: str,
        state: _Traversal,
        error: Optional[ErrorInfo] = None,
        **metadata: Any,
    ) -> None:
        record = AuditRecord.skipped(OperationType.CONDITIONAL, reason, error, {"path": path, **metadata})
        if self.metrics is not None:
            self.metrics.record_operation(OperationType.CONDITIONAL.value, record.status.value)
            if "rule" in metadata:
                self.metrics.record_conditional_skip(metadata["rule"])
        self._audit(path, None, None, record, state)

    # Message

    def _mask_message(self, message: str, state: _Traversal) -> str:
        if any(rule.pattern.search(message) for rule in self.rules.regex_rules):
            message = self._run(
                OperationType.REGEX,
                "message",
                message,
                lambda: self.rules.apply_regex(message),
                state,
            )

        if self.mask_json_in_message and isinstance(message, str) and ("{" in message or "[" in message):
            text = message

            def mask_embedded_json() -> str:
                return mask_json_in_text(text, lambda document: self._mask_document(document, state))

            result = self.retry.execute(mask_embedded_json, text, "message.json")
            masked = result.masked_value()
            if masked != text or not result.is_success:
                self._report(OperationType.JSON, "message.json", text, masked, result, state)
            message = masked

        return message

    def _mask_document(self, document: Any, state: _Traversal) -> Any:
        """Mask a decoded message document like a context, from depth 0."""
        document_state = _Traversal(correlation_id=state.correlation_id, audit_prefix="message.json.")
        if isinstance(document, MappingABC):
            return self._mask_mapping(document, "", 0, document_state)
        return self._mask_sequence(document, "", 0, document_state)

    # Context

    def _mask_node(self, value: Any, path: str, depth: int, state: _Traversal) -> Any:
        rule = self.rules.resolve(path, value)

        if isinstance(rule, CallbackRule):
            transform = rule.transform
            return self._run(OperationType.CALLBACK, path, value, lambda: transform(value), state)

        if isinstance(rule, FieldPathRule):
            return self._apply_field_rule(rule, value, path, depth, state)

        if isinstance(rule, TypeRule) and not rule.recursive:
            type_rule = rule
            return self._run(OperationType.DATA_TYPE, path, value, lambda: apply_type_rule(type_rule, value), state)

        if isinstance(rule, RegexRule):
            text = value
            return self._run(OperationType.REGEX, path, value, lambda: self.rules.apply_regex(text), state)

        if isinstance(value, MappingABC):
            return self._mask_mapping(value, path, depth, state)
        if isinstance(value, _SEQUENCE_TYPES):
            return self._mask_sequence(value, path, depth, state)
        return value

    def _apply_field_rule(
        self,
        rule: FieldPathRule,
        value: Any,
        path: str,
        depth: int,
        state: _Traversal,
    ) -> Any:
        action = rule.action

        if action.type is FieldActionType.REMOVE:
            record = AuditRecord.success(OperationType.FIELD_PATH, metadata={"path": path, "action": "remove"})
            if self.metrics is not None:
                self.metrics.record_operation(OperationType.FIELD_PATH.value, record.status.value)
            self._audit(path, value, None, record, state)
            return _REMOVED

        if action.type is FieldActionType.REPLACE:
            replacement = action.replacement
            return self._run(OperationType.FIELD_PATH, path, value, lambda: replacement, state)

        ancestors = set(state.ancestors)
        return self._run(
            OperationType.FIELD_PATH,
            path,
            value,
            lambda: self._regex_value(value, depth, ancestors),
            state,
        )

    def _enter(self, value: Any, path: str, depth: int, state: _Traversal) -> Any:
        """Depth and cycle checks before descending into a container."""
        if depth > self.max_depth:
            def exceeded() -> Any:
                raise RecursionDepthExceededError(depth, self.max_depth, path)

            return self._run(OperationType.TRAVERSAL, path, value, exceeded, state)

        if id(value) in state.ancestors:
            logger.debug("Circular reference in context", path=path)
            record = AuditRecord.skipped(OperationType.TRAVERSAL, "circular_reference", metadata={"path": path})
            self._audit(path, None, Mask.CIRCULAR_REFERENCE, record, state)
            return Mask.CIRCULAR_REFERENCE

        return None

    def _mask_mapping(self, value: Any, path: str, depth: int, state: _Traversal) -> Any:
        stopped = self._enter(value, path, depth, state)
        if stopped is not None:
            return stopped

        state.ancestors.add(id(value))
        try:
            masked: Dict[Any, Any] = {}
            for key, child in value.items():
                child_path = f"{path}.{key}" if path else str(key)
                result = self._mask_node(child, child_path, depth + 1, state)
                if result is not _REMOVED:
                    masked[key] = result
        finally:
            state.ancestors.discard(id(value))
        return masked

    def _mask_sequence(self, value: Any, path: str, depth: int, state: _Traversal) -> Any:
        stopped = self._enter(value, path, depth, state)
        if stopped is not None:
            return stopped

        state.ancestors.add(id(value))
        try:
            masked = []
            for index, child in enumerate(value):
                child_path = f"{path}.{index}" if path else str(index)
                result = self._mask_node(child, child_path, depth + 1, state)
                if result is not _REMOVED:
                    masked.append(result)
        finally:
            state.ancestors.discard(id(value))

        if isinstance(value, tuple):
            return tuple(masked)
        return masked

    def _regex_value(self, value: Any, depth: int, ancestors: Set[int]) -> Any:
        """Apply regex rules to a value treated as text, descending into containers."""
        if isinstance(value, str):
            return self.rules.apply_regex(value)

        if isinstance(value, (MappingABC,) + _SEQUENCE_TYPES):
            if depth > self.max_depth:
                raise RecursionDepthExceededError(depth, self.max_depth)
            if id(value) in ancestors:
                return Mask.CIRCULAR_REFERENCE

            ancestors.add(id(value))
            try:
                if isinstance(value, MappingABC):
                    return {key: self._regex_value(child, depth + 1, ancestors) for key, child in value.items()}
                items = [self._regex_value(child, depth + 1, ancestors) for child in value]
            finally:
                ancestors.discard(id(value))
            return tuple(items) if isinstance(value, tuple) else items

        text = str(value)
        masked = self.rules.apply_regex(text)
        return value if masked == text else masked

    # Recovery and audit

    def _run(
        self,
        operation_type: OperationType,
        path: str,
        value: Any,
        operation: Callable[[], Any],
        state: _Traversal,
    ) -> Any:
        result = self.retry.execute(operation, value, path)
        masked = result.masked_value()
        self._report(operation_type, path, value, masked, result, state)
        return masked

    def _report(
        self,
        operation_type: OperationType,
        path: str,
        original: Any,
        masked: Any,
        result: RecoveryResult,
        state: _Traversal,
    ) -> None:
        record = result.to_audit_record(operation_type, {"path": path})

        if self.metrics is not None:
            self.metrics.record_operation(operation_type.value, record.status.value)
            self.metrics.record_retries(operation_type.value, result.attempts - 1)
            if result.outcome is RecoveryOutcome.FALLBACK:
                self.metrics.record_fallback(self.retry.policy.failure_mode.value)

        self._audit(path, original, masked, record, state)

    def _audit(self, path: str, original: Any, masked: Any, record: AuditRecord, state: _Traversal) -> None:
        if self.audit_sink is None:
            return
        try:
            self.audit_sink.emit_with_context(
                state.audit_prefix + path,
                original,
                masked,
                record.with_correlation_id(state.correlation_id),
            )
        except Exception as e:
            logger.error(
                "Audit emission failed",
                path=path,
                error=sanitize_error_message(str(e)),
                error_type=type(e).__name__,
            )


# Global masking engine instance
_masking_engine: Optional[MaskingEngine] = None


def get_masking_engine() -> MaskingEngine:
    """Get or create the global masking engine built from settings."""
    global _masking_engine

    if _masking_engine is None:
        from ..config import get_settings

        _masking_engine = MaskingEngine.from_settings(get_settings(), metrics=MetricsCollector())

    return _masking_engine
