"""
Condition helpers.

Each helper returns a predicate over ``EvaluationContext``. The field-based
helpers back the configuration compiler's condition vocabulary.
"""

from collections.abc import Mapping
from typing import Any, Callable, Iterable

from .models import EvaluationContext

Predicate = Callable[[EvaluationContext], bool]

CONTEXT_FIELDS = ("id", "kind", "severity", "subject_id", "created_at")

_MISSING = object()


def get_field_value(field: str, context: EvaluationContext) -> Any:
    """Resolve a field name against a context, or ``None`` when absent."""
    if field in CONTEXT_FIELDS:
        return getattr(context, field)

    if field in context.attributes:
        return context.attributes[field]

    # Nested attribute lookup, e.g. "device.ip"
    if "." in field:
        value: Any = context.attributes
        for part in field.split("."):
            if isinstance(value, Mapping):
                value = value.get(part, _MISSING)
            else:
                return None
            if value is _MISSING:
                return None
        return value

    return None


def field_equals(field: str, value: Any) -> Predicate:
    return lambda context: get_field_value(field, context) == value


def field_greater_than(field: str, value: Any) -> Predicate:
    def predicate(context):
        actual = get_field_value(field, context)
        return actual is not None and actual > value
    return predicate


def field_less_than(field: str, value: Any) -> Predicate:
    def predicate(context):
        actual = get_field_value(field, context)
        return actual is not None and actual < value
    return predicate


def field_in(field: str, values: Iterable[Any]) -> Predicate:
    values = list(values)
    return lambda context: get_field_value(field, context) in values


def severity_at_least(level: int) -> Predicate:
    return lambda context: context.severity >= level


def severity_between(minimum: int, maximum: int) -> Predicate:
    """Inclusive on both ends."""
    return lambda context: minimum <= context.severity <= maximum


def kind_is(kind: Any) -> Predicate:
    return field_equals("kind", getattr(kind, "value", kind))


def kind_in(*kinds: Any) -> Predicate:
    return field_in("kind", [getattr(kind, "value", kind) for kind in kinds])


def subject_is(subject_id: Any) -> Predicate:
    return field_equals("subject_id", subject_id)


def attribute_equals(key: str, value: Any) -> Predicate:
    return lambda context: context.attributes.get(key, _MISSING) == value


def has_attribute(key: str) -> Predicate:
    return lambda context: key in context.attributes


def all_of(*conditions: Predicate) -> Predicate:
    return lambda context: all(condition(context) for condition in conditions)


def any_of(*conditions: Predicate) -> Predicate:
    return lambda context: any(condition(context) for condition in conditions)


def negate(condition: Predicate) -> Predicate:
    return lambda context: not condition(context)
