"""
Validation engine.

Walks a default-resolved document against the field tree and collects
every independent failure before reporting. `required` is checked first,
then the built-in type/constraint check for the field kind, then the
field's custom validator. Unique fields are not checked here; the
store enforces them through unique indexes at commit time.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from fieldtree.errors import FieldErrorDetail, FieldValidationError
from fieldtree.runtime.context import Operation, ValidationContext
from fieldtree.runtime.logging import get_logger, log_with_context
from fieldtree.runtime.traversal import (
    FieldVisitor,
    call_maybe_async,
    is_empty,
    join_path,
    resolve_block,
)
from fieldtree.specs import FieldKind, FieldSpec, iter_named_fields

logger = get_logger("Validation")

REQUIRED_MESSAGE = "This field is required."
INVALID_MESSAGE = "This field is invalid."


@dataclass
class ValidationResult:
    """Outcome of one validation walk."""

    errors: list[FieldErrorDetail] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


# =============================================================================
# Built-in element validators
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _validate_text(value: Any, ctx: ValidationContext) -> str | None:
    if not isinstance(value, str):
        return "This field must be text."
    if ctx.min_length is not None and len(value) < ctx.min_length:
        return f"This value must be longer than the minimum length of {ctx.min_length} characters."
    if ctx.max_length is not None and len(value) > ctx.max_length:
        return f"This value must be shorter than the max length of {ctx.max_length} characters."
    return None


def _validate_number(value: Any, ctx: ValidationContext) -> str | None:
    if not _is_number(value):
        return f"{value!r} is not a valid number."
    if ctx.min is not None and value < ctx.min:
        return f"{value} is less than the min allowed value of {ctx.min:g}."
    if ctx.max is not None and value > ctx.max:
        return f"{value} is greater than the max allowed value of {ctx.max:g}."
    return None


def _validate_select(value: Any, ctx: ValidationContext) -> str | None:
    if value not in (ctx.field.options or []):
        return "This field has an invalid selection."
    return None


def _validate_checkbox(value: Any, ctx: ValidationContext) -> str | None:
    if not isinstance(value, bool):
        return "This field must be true or false."
    return None


def _validate_date(value: Any, ctx: ValidationContext) -> str | None:
    if isinstance(value, date | datetime):
        return None
    if isinstance(value, str):
        try:
            datetime.fromisoformat(value)
            return None
        except ValueError:
            pass
    return "This field is not a valid date."


def _validate_json(value: Any, ctx: ValidationContext) -> str | None:
    try:
        if isinstance(value, str):
            json.loads(value)
        else:
            json.dumps(value)
    except (TypeError, ValueError):
        return "This field has an invalid JSON format."
    return None


def _validate_rich_text(value: Any, ctx: ValidationContext) -> str | None:
    if not isinstance(value, list) or not all(isinstance(node, dict) for node in value):
        return "Rich text must be a list of nodes."
    return None


def _validate_point(value: Any, ctx: ValidationContext) -> str | None:
    if (
        not isinstance(value, list | tuple)
        or len(value) != 2
        or not all(_is_number(c) for c in value)
    ):
        return "This field requires two numbers."
    lng, lat = value
    if not -180 <= lng <= 180 or not -90 <= lat <= 90:
        return "Point coordinates are out of range."
    return None


def _validate_relationship(value: Any, ctx: ValidationContext) -> str | None:
    targets = ctx.field.relation_to or []
    if ctx.field.is_polymorphic:
        if (
            not isinstance(value, dict)
            or value.get("relationTo") not in targets
            or value.get("value") is None
        ):
            return f"This relationship must be {{relationTo, value}} with relationTo in {targets}."
        return None
    if isinstance(value, bool) or not isinstance(value, str | int):
        return "This relationship field has an invalid identifier."
    return None


_BUILTIN: dict[FieldKind, Callable[[Any, ValidationContext], str | None]] = {
    FieldKind.TEXT: _validate_text,
    FieldKind.NUMBER: _validate_number,
    FieldKind.SELECT: _validate_select,
    FieldKind.CHECKBOX: _validate_checkbox,
    FieldKind.DATE: _validate_date,
    FieldKind.JSON: _validate_json,
    FieldKind.RICH_TEXT: _validate_rich_text,
    FieldKind.POINT: _validate_point,
    FieldKind.RELATIONSHIP: _validate_relationship,
}


def _check_rows(field: FieldSpec, count: int, noun: str) -> str | None:
    if count == 0 and not field.required:
        return None
    if field.min_rows is not None and count < field.min_rows:
        return f"This field requires at least {field.min_rows} {noun}(s)."
    if field.max_rows is not None and count > field.max_rows:
        return f"This field requires no more than {field.max_rows} {noun}(s)."
    return None


# =============================================================================
# Engine
# =============================================================================


class ValidationEngine(FieldVisitor):
    """
    Validate one document against a field tree.

    Example:
        engine = ValidationEngine(collection="number-fields")
        result = await engine.validate(fields, {"min": 5})
        # result.errors == [FieldErrorDetail(path="min", message="5 is less than ...")]
    """

    def __init__(
        self,
        collection: str | None = None,
        locale: str | None = None,
        operation: Operation = Operation.CREATE,
    ):
        self.collection = collection
        self.locale = locale
        self.operation = operation

    async def validate(self, fields: list[FieldSpec], doc: dict[str, Any]) -> ValidationResult:
        """
        Walk the whole tree and collect failures.

        Raises:
            StructuralSchemaError: A blocks row has an unknown discriminator
        """
        result = ValidationResult()
        await self._validate_fields(fields, doc, "", doc, result)
        return result

    async def validate_or_raise(
        self, fields: list[FieldSpec], doc: dict[str, Any]
    ) -> ValidationResult:
        """Validate and raise FieldValidationError if anything failed."""
        result = await self.validate(fields, doc)
        if result.errors:
            log_with_context(
                logger,
                logging.INFO,
                "Validation failed",
                collection=self.collection,
                paths=[e.path for e in result.errors],
            )
            raise FieldValidationError(result.errors, collection=self.collection)
        return result

    async def _validate_fields(
        self,
        fields: list[FieldSpec],
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        for field_spec in iter_named_fields(fields):
            await self.visit(field_spec, sibling, prefix, doc, result)

    async def _validate_rows(
        self,
        rows: list[tuple[list[FieldSpec], dict[str, Any], str]],
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        """Validate rows concurrently, merging results in row order."""
        partials = [ValidationResult() for _ in rows]
        await asyncio.gather(
            *(
                self._validate_fields(fields, row, row_path, doc, partial)
                for (fields, row, row_path), partial in zip(rows, partials, strict=True)
            )
        )
        for partial in partials:
            result.errors.extend(partial.errors)

    def _context(
        self, field_spec: FieldSpec, path: str, sibling: dict[str, Any], doc: dict[str, Any]
    ) -> ValidationContext:
        return ValidationContext.for_field(
            field_spec, path, doc, sibling, self.locale, self.operation
        )

    async def _run_custom(
        self,
        field_spec: FieldSpec,
        value: Any,
        ctx: ValidationContext,
        result: ValidationResult,
    ) -> bool:
        if field_spec.validate_fn is None:
            return True
        try:
            outcome = await call_maybe_async(field_spec.validate_fn, value, ctx)
        except Exception as e:
            log_with_context(
                logger,
                logging.WARNING,
                f"Validator raised: {e}",
                collection=self.collection,
                path=ctx.path,
            )
            outcome = str(e) or INVALID_MESSAGE
        if outcome is True:
            return True
        message = outcome if isinstance(outcome, str) and outcome else INVALID_MESSAGE
        result.errors.append(FieldErrorDetail(path=ctx.path, message=message))
        return False

    # -------------------------------------------------------------------------
    # Node kinds
    # -------------------------------------------------------------------------

    async def visit_scalar(
        self,
        field_spec: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        path = join_path(prefix, field_spec.name or "")
        value = sibling.get(field_spec.name or "")
        ctx = self._context(field_spec, path, sibling, doc)

        if field_spec.required and is_empty(value):
            message = REQUIRED_MESSAGE
            if field_spec.has_many:
                message = "This field requires at least one item."
            result.errors.append(FieldErrorDetail(path=path, message=message))
            return

        builtin = _BUILTIN[field_spec.kind]
        if value is not None:
            if field_spec.has_many:
                message = (
                    _check_rows(field_spec, len(value), "item")
                    if isinstance(value, list)
                    else "This field must be a list."
                )
                if message is None:
                    message = next(
                        (m for m in (builtin(item, ctx) for item in value) if m is not None), None
                    )
            else:
                message = builtin(value, ctx)
            if message is not None:
                result.errors.append(FieldErrorDetail(path=path, message=message))
                return

        await self._run_custom(field_spec, value, ctx, result)

    async def visit_group(
        self,
        field_spec: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        path = join_path(prefix, field_spec.name or "")
        value = sibling.get(field_spec.name or "")
        if value is None:
            # Stripped by access control, or never written
            return
        if not isinstance(value, dict):
            message = "This field must be an object."
            result.errors.append(FieldErrorDetail(path=path, message=message))
            return
        if not await self._run_custom(
            field_spec, value, self._context(field_spec, path, sibling, doc), result
        ):
            return
        await self._validate_fields(field_spec.fields, value, path, doc, result)

    async def _visit_rows(
        self,
        field_spec: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> tuple[str, list[Any] | None]:
        """Shared row-count checks; returns the rows to descend into."""
        path = join_path(prefix, field_spec.name or "")
        rows = sibling.get(field_spec.name or "")
        if field_spec.required and is_empty(rows):
            result.errors.append(
                FieldErrorDetail(path=path, message="This field requires at least one row.")
            )
            return path, None
        if rows is None:
            return path, None
        if not isinstance(rows, list):
            result.errors.append(FieldErrorDetail(path=path, message="This field must be a list."))
            return path, None
        message = _check_rows(field_spec, len(rows), "row")
        if message is not None:
            result.errors.append(FieldErrorDetail(path=path, message=message))
            return path, None
        if not await self._run_custom(
            field_spec, rows, self._context(field_spec, path, sibling, doc), result
        ):
            return path, None
        return path, rows

    async def visit_array(
        self,
        field_spec: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        path, rows = await self._visit_rows(field_spec, sibling, prefix, doc, result)
        if rows is None:
            return
        pending = []
        for i, row in enumerate(rows):
            row_path = join_path(path, i)
            if not isinstance(row, dict):
                message = "Rows must be objects."
                result.errors.append(FieldErrorDetail(path=row_path, message=message))
                continue
            pending.append((field_spec.fields, row, row_path))
        await self._validate_rows(pending, doc, result)

    async def visit_blocks(
        self,
        field_spec: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        result: ValidationResult,
    ) -> None:
        path, rows = await self._visit_rows(field_spec, sibling, prefix, doc, result)
        if rows is None:
            return
        pending = []
        for i, row in enumerate(rows):
            row_path = join_path(path, i)
            block = resolve_block(field_spec, row, row_path, self.collection)
            pending.append((block.fields, row, row_path))
        await self._validate_rows(pending, doc, result)
