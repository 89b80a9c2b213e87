"""Serialize criteria into Zoho Creator's filter expression syntax."""

from __future__ import annotations

from typing import Union

from zoho_connector.schemas.criteria import FieldFilter, RawCriteria, StructuredCriteria

CriteriaInput = Union[RawCriteria, StructuredCriteria, str, None]


def format_value(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    escaped = str(value).replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_filter(condition: FieldFilter) -> str:
    return f"{condition.field} {condition.comparator} {format_value(condition.value)}"


def format_criteria(criteria: CriteriaInput) -> str:
    """Return the expression sent as ``criteria`` to the data and bulk APIs.

    Plain strings are treated as raw expressions. Structured filters are
    joined with ``&&`` in the order given.
    """
    if criteria is None:
        return ""
    if isinstance(criteria, str):
        return criteria.strip()
    if isinstance(criteria, RawCriteria):
        return criteria.expression.strip()
    return " && ".join(format_filter(condition) for condition in criteria.filters)


__all__ = ["CriteriaInput", "format_criteria", "format_filter", "format_value"]
