"""
Context objects handed to user callables (defaults, validators, hooks).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from fieldtree.specs import FieldSpec


class Operation(StrEnum):
    """Write operation being performed."""

    CREATE = "create"
    UPDATE = "update"
    READ = "read"


@dataclass
class DefaultContext:
    """
    Passed to computed defaults.

    `sibling_data` is the object holding the field; earlier siblings
    already carry their resolved values.
    """

    field: FieldSpec
    path: str
    data: dict[str, Any]
    sibling_data: dict[str, Any]
    locale: str | None
    operation: Operation


@dataclass
class ValidationContext:
    """
    Passed to custom validators alongside the value.

    Carries the field's static constraints, the sibling object at the
    field's nesting level and the whole document.
    """

    field: FieldSpec
    path: str
    data: dict[str, Any]
    sibling_data: dict[str, Any]
    locale: str | None
    operation: Operation
    required: bool = False
    has_many: bool = False
    min_length: int | None = None
    max_length: int | None = None
    min: float | None = None
    max: float | None = None

    @classmethod
    def for_field(
        cls,
        field_spec: FieldSpec,
        path: str,
        data: dict[str, Any],
        sibling_data: dict[str, Any],
        locale: str | None,
        operation: Operation,
    ) -> ValidationContext:
        return cls(
            field=field_spec,
            path=path,
            data=data,
            sibling_data=sibling_data,
            locale=locale,
            operation=operation,
            required=field_spec.required,
            has_many=field_spec.has_many,
            min_length=field_spec.min_length,
            max_length=field_spec.max_length,
            min=field_spec.min,
            max=field_spec.max,
        )


@dataclass
class HookContext:
    """Passed to field hooks; `value` is the field's current value."""

    field: FieldSpec
    path: str
    value: Any
    data: dict[str, Any]
    sibling_data: dict[str, Any]
    locale: str | None
    operation: Operation
    original_doc: dict[str, Any] | None = None
