"""
Masking rules and rule resolution.

Four rule variants exist: regex rules for free text, field path rules,
type rules and callback rules. ``RuleSet`` resolves at most one rule for
any value in a context tree, using a fixed precedence:

    callback > field path > type > regex

Paths are dotted (``user.email``, ``users.0.email``). A ``*`` segment
matches exactly one segment. An exact path beats a wildcard; among
wildcards the one with fewer ``*`` segments wins, then the earliest
registered.
"""

from collections.abc import Mapping as MappingABC
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Generic, List, Mapping, Optional, Tuple, TypeVar, Union

from .exceptions import InvalidConfigurationError
from .patterns import ValidatedPattern

PRESERVE = "preserve"
RECURSIVE = "recursive"


class ValueKind(str, Enum):
    """Runtime kind of a context value."""

    INTEGER = "integer"
    FLOAT = "float"
    STRING = "string"
    BOOLEAN = "boolean"
    NULL = "null"
    ARRAY = "array"
    OBJECT = "object"

    @classmethod
    def parse(cls, name: Union[str, "ValueKind"]) -> "ValueKind":
        """Parse a kind name, accepting common aliases."""
        if isinstance(name, ValueKind):
            return name
        key = str(name).strip().lower()
        kind = _KIND_ALIASES.get(key)
        if kind is None:
            raise InvalidConfigurationError(
                f"Unknown value type '{name}'",
                details={"type": str(name), "allowed": sorted(_KIND_ALIASES)},
            )
        return kind

    @property
    def is_container(self) -> bool:
        return self in (ValueKind.ARRAY, ValueKind.OBJECT)


_KIND_ALIASES: Dict[str, ValueKind] = {
    "integer": ValueKind.INTEGER,
    "int": ValueKind.INTEGER,
    "float": ValueKind.FLOAT,
    "double": ValueKind.FLOAT,
    "string": ValueKind.STRING,
    "str": ValueKind.STRING,
    "boolean": ValueKind.BOOLEAN,
    "bool": ValueKind.BOOLEAN,
    "null": ValueKind.NULL,
    "none": ValueKind.NULL,
    "array": ValueKind.ARRAY,
    "list": ValueKind.ARRAY,
    "object": ValueKind.OBJECT,
    "dict": ValueKind.OBJECT,
    "map": ValueKind.OBJECT,
}


def kind_of(value: Any) -> ValueKind:
    """Classify a value. ``bool`` is never treated as an integer."""
    if value is None:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, int):
        return ValueKind.INTEGER
    if isinstance(value, float):
        return ValueKind.FLOAT
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, (list, tuple, set, frozenset)):
        return ValueKind.ARRAY
    return ValueKind.OBJECT


class FieldActionType(str, Enum):
    REMOVE = "remove"
    REPLACE = "replace"
    MASK_REGEX = "mask_regex"


@dataclass(frozen=True)
class FieldAction:
    """What to do with a value found at a configured field path."""

    type: FieldActionType
    replacement: Any = None

    @classmethod
    def remove(cls) -> "FieldAction":
        return cls(FieldActionType.REMOVE)

    @classmethod
    def replace_with(cls, replacement: Any) -> "FieldAction":
        return cls(FieldActionType.REPLACE, replacement)

    @classmethod
    def apply_regex(cls) -> "FieldAction":
        return cls(FieldActionType.MASK_REGEX)

    @classmethod
    def from_config(cls, config: Any) -> "FieldAction":
        """
        Build an action from configuration data.

        Accepts an existing action, ``None`` (remove), a bare string
        (replace with it) or a dict with a ``type`` key.
        """
        if isinstance(config, FieldAction):
            return config
        if config is None:
            return cls.remove()
        if isinstance(config, str):
            return cls.replace_with(config)
        if not isinstance(config, MappingABC):
            raise InvalidConfigurationError(
                "Field action must be a mapping, a string or None",
                details={"value_type": type(config).__name__},
            )

        raw_type = str(config.get("type", "")).strip().lower()
        try:
            action_type = FieldActionType(raw_type)
        except ValueError:
            raise InvalidConfigurationError(
                f"Unknown field action type '{raw_type}'",
                details={"allowed": [t.value for t in FieldActionType]},
            ) from None

        if action_type is FieldActionType.REPLACE:
            if "replacement" not in config:
                raise InvalidConfigurationError("Replace action requires a 'replacement' value")
            return cls.replace_with(config["replacement"])
        return cls(action_type)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": self.type.value}
        if self.type is FieldActionType.REPLACE:
            data["replacement"] = self.replacement
        return data


@dataclass(frozen=True)
class RegexRule:
    pattern: ValidatedPattern
    replacement: str


@dataclass(frozen=True)
class FieldPathRule:
    path: str
    action: FieldAction


@dataclass(frozen=True)
class TypeRule:
    kind: ValueKind
    replacement: str

    @property
    def recursive(self) -> bool:
        return self.kind.is_container and self.replacement == RECURSIVE


@dataclass(frozen=True)
class CallbackRule:
    path: str
    transform: Callable[[Any], Any]


Rule = Union[RegexRule, FieldPathRule, TypeRule, CallbackRule]

R = TypeVar("R")


class PathTable(Generic[R]):
    """Path → rule lookup with single-segment ``*`` wildcards."""

    def __init__(self, rules: Mapping[str, R]) -> None:
        self._exact: Dict[str, R] = {}
        wildcards: List[Tuple[int, int, Tuple[str, ...], R]] = []
        for index, (path, rule) in enumerate(rules.items()):
            segments = tuple(path.split("."))
            if "*" in segments:
                wildcards.append((segments.count("*"), index, segments, rule))
            else:
                self._exact[path] = rule
        wildcards.sort(key=lambda item: (item[0], item[1]))
        self._wildcards = wildcards

    def __len__(self) -> int:
        return len(self._exact) + len(self._wildcards)

    def match(self, path: str) -> Optional[R]:
        rule = self._exact.get(path)
        if rule is not None:
            return rule
        if not self._wildcards:
            return None
        segments = path.split(".")
        for _, _, pattern, candidate in self._wildcards:
            if len(pattern) == len(segments) and all(
                expected == "*" or expected == actual
                for expected, actual in zip(pattern, segments)
            ):
                return candidate
        return None


class RuleSet:
    """Immutable, validated collection of rules with a fixed precedence."""

    def __init__(
        self,
        regex_rules: Optional[List[RegexRule]] = None,
        field_rules: Optional[Mapping[str, FieldPathRule]] = None,
        type_rules: Optional[Mapping[ValueKind, TypeRule]] = None,
        callbacks: Optional[Mapping[str, CallbackRule]] = None,
    ) -> None:
        self.regex_rules: Tuple[RegexRule, ...] = tuple(regex_rules or ())
        self.type_rules: Dict[ValueKind, TypeRule] = dict(type_rules or {})
        self._fields: PathTable[FieldPathRule] = PathTable(field_rules or {})
        self._callbacks: PathTable[CallbackRule] = PathTable(callbacks or {})

    @property
    def is_empty(self) -> bool:
        return not (self.regex_rules or self.type_rules or len(self._fields) or len(self._callbacks))

    def resolve(self, path: str, value: Any) -> Optional[Rule]:
        """
        Resolve the single rule that applies to ``value`` at ``path``.

        Regex rules only resolve for string values some pattern matches.
        """
        if path:
            callback = self._callbacks.match(path)
            if callback is not None:
                return callback
            field_rule = self._fields.match(path)
            if field_rule is not None:
                return field_rule

        type_rule = self.type_rules.get(kind_of(value))
        if type_rule is not None:
            return type_rule

        if isinstance(value, str):
            for rule in self.regex_rules:
                if rule.pattern.search(value):
                    return rule
        return None

    def apply_regex(self, text: str) -> str:
        """Apply every regex rule in registration order, composing results."""
        for rule in self.regex_rules:
            text = rule.pattern.sub(text, rule.replacement)
        return text


def _coerce_number(replacement: str, target: Callable[[Any], Any]) -> Any:
    try:
        return target(replacement)
    except (TypeError, ValueError):
        pass
    try:
        return target(float(replacement))
    except (TypeError, ValueError, OverflowError):
        return replacement


def apply_type_rule(rule: TypeRule, value: Any) -> Any:
    """
    Apply a non-recursive type rule to a value.

    Numeric replacements are coerced to the value's numeric type;
    ``"true"``/``"false"`` become booleans; ``"preserve"`` keeps booleans
    and nulls; opaque objects become ``{"masked", "original_class"}``.
    """
    replacement = rule.replacement
    kind = rule.kind

    if kind is ValueKind.INTEGER:
        return _coerce_number(replacement, int)
    if kind is ValueKind.FLOAT:
        return _coerce_number(replacement, float)
    if kind is ValueKind.BOOLEAN:
        if replacement == PRESERVE:
            return value
        lowered = replacement.lower()
        if lowered in ("true", "false"):
            return lowered == "true"
        return replacement
    if kind is ValueKind.NULL:
        return value if replacement == PRESERVE else replacement
    if kind is ValueKind.OBJECT and not isinstance(value, MappingABC):
        return {"masked": replacement, "original_class": type(value).__name__}
    return replacement
