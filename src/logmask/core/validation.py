"""
Construction-time validation of masking configuration.

Turns raw configuration mappings into validated rule objects. Anything
wrong raises ``InvalidConfigurationError`` or ``InvalidPatternError``
before an engine exists.
"""

from typing import Any, Callable, Dict, List, Mapping

from .exceptions import InvalidConfigurationError
from .patterns import PatternValidator
from .rules import CallbackRule, FieldAction, FieldPathRule, RegexRule, TypeRule, ValueKind

MAX_DEPTH_LIMIT = 300


def validate_max_depth(max_depth: Any) -> int:
    if isinstance(max_depth, bool) or not isinstance(max_depth, int):
        raise InvalidConfigurationError(
            "max_depth must be an integer",
            details={"max_depth": repr(max_depth)},
        )
    if not 1 <= max_depth <= MAX_DEPTH_LIMIT:
        raise InvalidConfigurationError(
            f"max_depth must be between 1 and {MAX_DEPTH_LIMIT}",
            details={"max_depth": max_depth},
        )
    return max_depth


def validate_path(path: Any, kind: str) -> str:
    if not isinstance(path, str) or not path.strip():
        raise InvalidConfigurationError(f"{kind} path must be a non-empty string", details={"path": repr(path)})
    if any(not segment for segment in path.split(".")):
        raise InvalidConfigurationError(f"{kind} path '{path}' has an empty segment", details={"path": path})
    return path


def build_regex_rules(patterns: Mapping[str, Any], validator: PatternValidator) -> List[RegexRule]:
    """Validate patterns in registration order, failing on the first bad one."""
    validated = validator.validate_all(patterns)
    rules = []
    for source, replacement in patterns.items():
        if not isinstance(replacement, str):
            raise InvalidConfigurationError(
                f"Replacement for pattern '{source}' must be a string",
                details={"pattern": source, "replacement_type": type(replacement).__name__},
            )
        rules.append(RegexRule(pattern=validated[source], replacement=replacement))
    return rules


def build_field_rules(field_rules: Mapping[str, Any]) -> Dict[str, FieldPathRule]:
    rules: Dict[str, FieldPathRule] = {}
    for path, action in field_rules.items():
        validate_path(path, "Field")
        rules[path] = FieldPathRule(path=path, action=FieldAction.from_config(action))
    return rules


def build_type_rules(type_rules: Mapping[Any, Any]) -> Dict[ValueKind, TypeRule]:
    rules: Dict[ValueKind, TypeRule] = {}
    for type_name, replacement in type_rules.items():
        kind = ValueKind.parse(type_name)
        if not isinstance(replacement, str) or not replacement.strip():
            raise InvalidConfigurationError(
                f"Replacement for type '{type_name}' must be a non-empty string",
                details={"type": str(type_name)},
            )
        rules[kind] = TypeRule(kind=kind, replacement=replacement)
    return rules


def build_callbacks(callbacks: Mapping[str, Any]) -> Dict[str, CallbackRule]:
    rules: Dict[str, CallbackRule] = {}
    for path, transform in callbacks.items():
        validate_path(path, "Callback")
        if not callable(transform):
            raise InvalidConfigurationError(
                f"Callback for '{path}' is not callable",
                details={"path": path, "type": type(transform).__name__},
            )
        rules[path] = CallbackRule(path=path, transform=transform)
    return rules


def validate_conditions(conditions: Mapping[str, Any]) -> Dict[str, Callable[..., bool]]:
    validated: Dict[str, Callable[..., bool]] = {}
    for name, predicate in conditions.items():
        if not isinstance(name, str) or not name.strip():
            raise InvalidConfigurationError("Conditional rule name must be a non-empty string")
        if not callable(predicate):
            raise InvalidConfigurationError(
                f"Conditional rule '{name}' is not callable",
                details={"rule": name, "type": type(predicate).__name__},
            )
        validated[name] = predicate
    return validated
