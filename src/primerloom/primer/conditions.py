"""Closed predicate language over the Project Context Snapshot.

Conditions are parsed and type-checked when the catalog loads, then
evaluated as pure functions of a :class:`ProjectSnapshot`.  Supported forms
in YAML::

    condition: "constraints.frozen_count > 0"          # shorthand
    condition: "domains.names contains billing"        # shorthand membership
    condition: {field: project.language, op: "==", value: python}
    condition: {field: project.capabilities, contains: shell}
    condition: {all: [...]}  /  {any: [...]}  /  {not: {...}}
"""

from __future__ import annotations

import operator
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Union

if TYPE_CHECKING:
    from primerloom.index.snapshot import ProjectSnapshot

# ---------------------------------------------------------------------------
# Field table
# ---------------------------------------------------------------------------

FieldValue = Union[int, str, None, tuple[str, ...]]

# name -> (kind, accessor); kind is one of "int", "str", "list"
FIELDS: dict[str, tuple[str, Callable[[ProjectSnapshot], FieldValue]]] = {
    "project.language": ("str", lambda s: s.language),
    "project.capabilities": ("list", lambda s: tuple(sorted(s.capabilities))),
    "constraints.frozen_count": ("int", lambda s: s.frozen_count),
    "constraints.restricted_count": ("int", lambda s: s.restricted_count),
    "constraints.protected_count": ("int", lambda s: s.protected_count),
    "constraints.approval_count": ("int", lambda s: s.lock_counts.get("approval-required", 0)),
    "constraints.tests_required_count": ("int", lambda s: s.lock_counts.get("tests-required", 0)),
    "constraints.docs_required_count": ("int", lambda s: s.lock_counts.get("docs-required", 0)),
    "hacks.count": ("int", lambda s: len(s.markers)),
    "hacks.expired_count": ("int", lambda s: s.expired_marker_count),
    "attempts.active_count": ("int", lambda s: len(s.failed_attempts)),
    "domains.count": ("int", lambda s: len(s.domains)),
    "domains.names": ("list", lambda s: tuple(d.name for d in s.domains)),
    "conventions.count": ("int", lambda s: len(s.conventions)),
}

_OPERATORS: dict[str, Callable[[object, object], bool]] = {
    "==": operator.eq,
    "!=": operator.ne,
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
}
_EQUALITY_OPS: frozenset[str] = frozenset({"==", "!="})

_SHORTHAND_RE = re.compile(r"^\s*([a-z_.]+)\s*(==|!=|>=|<=|>|<)\s*(.+?)\s*$")
_CONTAINS_RE = re.compile(r"^\s*([a-z_.]+)\s+contains\s+(.+?)\s*$")

# ---------------------------------------------------------------------------
# Predicate types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Compare:
    """``field op value`` against a scalar snapshot field."""

    field: str
    op: str
    value: int | str


@dataclass(frozen=True)
class Contains:
    """Membership of ``value`` in a list snapshot field."""

    field: str
    value: str


@dataclass(frozen=True)
class AllOf:
    conditions: tuple[Condition, ...]


@dataclass(frozen=True)
class AnyOf:
    conditions: tuple[Condition, ...]


@dataclass(frozen=True)
class Not:
    condition: Condition


Condition = Union[Compare, Contains, AllOf, AnyOf, Not]

# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------


def _field_kind(name: str, context: str) -> str:
    entry = FIELDS.get(name)
    if entry is None:
        msg = f"{context}: unknown condition field '{name}', must be one of {sorted(FIELDS)}"
        raise ValueError(msg)
    return entry[0]


def _unquote(raw: str) -> str:
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "'\"":
        return raw[1:-1]
    return raw


def _make_compare(name: str, op: str, raw_value: object, context: str) -> Compare:
    kind = _field_kind(name, context)
    if op not in _OPERATORS:
        msg = f"{context}: invalid operator '{op}', must be one of {sorted(_OPERATORS)}"
        raise ValueError(msg)
    if kind == "list":
        msg = f"{context}: field '{name}' is a list; use 'contains' instead of '{op}'"
        raise ValueError(msg)

    if kind == "int":
        if isinstance(raw_value, bool):
            msg = f"{context}: field '{name}' is numeric, got boolean {raw_value!r}"
            raise ValueError(msg)
        if isinstance(raw_value, int):
            return Compare(field=name, op=op, value=raw_value)
        if isinstance(raw_value, str) and re.fullmatch(r"-?\d+", raw_value.strip()):
            return Compare(field=name, op=op, value=int(raw_value))
        msg = f"{context}: field '{name}' is numeric, got {raw_value!r}"
        raise ValueError(msg)

    # str field
    if op not in _EQUALITY_OPS:
        msg = f"{context}: operator '{op}' needs a numeric field, '{name}' is a string"
        raise ValueError(msg)
    if not isinstance(raw_value, str):
        msg = f"{context}: field '{name}' is a string, got {raw_value!r}"
        raise ValueError(msg)
    return Compare(field=name, op=op, value=_unquote(raw_value))


def _make_contains(name: str, raw_value: object, context: str) -> Contains:
    kind = _field_kind(name, context)
    if kind != "list":
        msg = f"{context}: 'contains' needs a list field, '{name}' is {kind}"
        raise ValueError(msg)
    if not isinstance(raw_value, (str, int)) or isinstance(raw_value, bool):
        msg = f"{context}: 'contains' value must be a string, got {raw_value!r}"
        raise ValueError(msg)
    return Contains(field=name, value=_unquote(str(raw_value)))


def _parse_shorthand(text: str, context: str) -> Condition:
    match = _CONTAINS_RE.match(text)
    if match:
        return _make_contains(match.group(1), match.group(2), context)
    match = _SHORTHAND_RE.match(text)
    if match:
        return _make_compare(match.group(1), match.group(2), match.group(3), context)
    msg = f"{context}: cannot parse condition '{text}' (expected '<field> <op> <value>')"
    raise ValueError(msg)


def _parse_list(raw: object, key: str, context: str) -> tuple[Condition, ...]:
    if not isinstance(raw, list) or not raw:
        msg = f"{context}: '{key}' must be a non-empty list of conditions"
        raise ValueError(msg)
    return tuple(parse_condition(item, f"{context}.{key}[{i}]") for i, item in enumerate(raw))


def parse_condition(raw: object, context: str = "condition") -> Condition:
    """Parse a YAML condition (string or mapping) into a predicate tree.

    Raises
    ------
    ValueError
        If the field is unknown, the operator is invalid, or the value does
        not match the field's type.
    """
    if isinstance(raw, str):
        return _parse_shorthand(raw, context)
    if not isinstance(raw, dict):
        msg = f"{context}: condition must be a string or a mapping, got {type(raw).__name__}"
        raise ValueError(msg)

    if "all" in raw:
        return AllOf(_parse_list(raw["all"], "all", context))
    if "any" in raw:
        return AnyOf(_parse_list(raw["any"], "any", context))
    if "not" in raw:
        return Not(parse_condition(raw["not"], f"{context}.not"))

    name = raw.get("field")
    if not isinstance(name, str):
        msg = f"{context}: condition mapping needs 'field', 'all', 'any' or 'not'"
        raise ValueError(msg)
    if "contains" in raw:
        return _make_contains(name, raw["contains"], context)
    if "op" not in raw or "value" not in raw:
        msg = f"{context}: condition on '{name}' needs 'op' and 'value' (or 'contains')"
        raise ValueError(msg)
    return _make_compare(name, str(raw["op"]), raw["value"], context)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------


def resolve_field(name: str, snapshot: ProjectSnapshot) -> FieldValue:
    return FIELDS[name][1](snapshot)


def evaluate_condition(condition: Condition | None, snapshot: ProjectSnapshot) -> bool:
    """Evaluate *condition* against *snapshot*; ``None`` is always true."""
    if condition is None:
        return True
    if isinstance(condition, Compare):
        actual = resolve_field(condition.field, snapshot)
        if actual is None:
            # unknown language: only inequality can hold
            return condition.op == "!="
        return _OPERATORS[condition.op](actual, condition.value)
    if isinstance(condition, Contains):
        actual = resolve_field(condition.field, snapshot)
        return isinstance(actual, tuple) and condition.value in actual
    if isinstance(condition, AllOf):
        return all(evaluate_condition(c, snapshot) for c in condition.conditions)
    if isinstance(condition, AnyOf):
        return any(evaluate_condition(c, snapshot) for c in condition.conditions)
    if isinstance(condition, Not):
        return not evaluate_condition(condition.condition, snapshot)
    msg = f"Unsupported condition type: {type(condition).__name__}"
    raise TypeError(msg)


def describe_condition(condition: Condition | None) -> str:
    """Human-readable form, used by ``--list-sections`` and ``--explain``."""
    if condition is None:
        return ""
    if isinstance(condition, Compare):
        return f"{condition.field} {condition.op} {condition.value}"
    if isinstance(condition, Contains):
        return f"{condition.field} contains {condition.value}"
    if isinstance(condition, AllOf):
        return "(" + " and ".join(describe_condition(c) for c in condition.conditions) + ")"
    if isinstance(condition, AnyOf):
        return "(" + " or ".join(describe_condition(c) for c in condition.conditions) + ")"
    if isinstance(condition, Not):
        return f"not {describe_condition(condition.condition)}"
    msg = f"Unsupported condition type: {type(condition).__name__}"
    raise TypeError(msg)
