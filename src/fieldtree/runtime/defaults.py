"""
Default value resolver.

Walks the field tree depth-first in declaration order and fills every
absent field that declares a default. Static literals are copied;
computed defaults (sync or async) receive a DefaultContext and are
bounded by a timeout. A failing default is recorded against its path
and the walk continues; failures are raised together at the end so a
document is never committed with a partial set of defaults.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from typing import Any

from fieldtree.errors import DefaultResolutionError, FieldErrorDetail
from fieldtree.runtime.context import DefaultContext, Operation
from fieldtree.runtime.logging import get_logger, log_with_context
from fieldtree.runtime.traversal import FieldVisitor, call_maybe_async, join_path, resolve_block
from fieldtree.specs import FieldSpec, iter_named_fields

logger = get_logger("Defaults")

Errors = list[FieldErrorDetail]


class DefaultValueResolver(FieldVisitor):
    """
    Materialize defaults for one document write.

    Example:
        resolver = DefaultValueResolver(collection="text-fields", timeout=10.0)
        doc = await resolver.resolve(fields, {"text": "text field"})
    """

    def __init__(
        self,
        collection: str | None = None,
        timeout: float = 10.0,
        locale: str | None = None,
        operation: Operation = Operation.CREATE,
    ):
        self.collection = collection
        self.timeout = timeout
        self.locale = locale
        self.operation = operation

    async def resolve(self, fields: list[FieldSpec], data: dict[str, Any]) -> dict[str, Any]:
        """
        Return a copy of data with defaults applied.

        Raises:
            DefaultResolutionError: One or more computed defaults failed
            StructuralSchemaError: A blocks row has an unknown discriminator
        """
        doc = copy.deepcopy(data)
        errors: Errors = []
        await self._resolve_fields(fields, doc, "", doc, errors)
        if errors:
            raise DefaultResolutionError(errors, collection=self.collection)
        return doc

    async def _resolve_fields(
        self,
        fields: list[FieldSpec],
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        # Sequential: later siblings may read earlier resolved values
        for field in iter_named_fields(fields):
            await self.visit(field, sibling, prefix, doc, errors)

    async def _resolve_rows(
        self,
        rows: list[tuple[list[FieldSpec], dict[str, Any], str]],
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        """Rows are independent; resolve them concurrently, report in row order."""
        partials: list[Errors] = [[] for _ in rows]
        await asyncio.gather(
            *(
                self._resolve_fields(fields, row, row_path, doc, partial)
                for (fields, row, row_path), partial in zip(rows, partials, strict=True)
            )
        )
        for partial in partials:
            errors.extend(partial)

    async def _apply_default(
        self,
        field: FieldSpec,
        sibling: dict[str, Any],
        path: str,
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        name = field.name or ""
        if sibling.get(name) is not None or not field.has_default:
            return

        default = field.default
        if not callable(default):
            sibling[name] = copy.deepcopy(default)
            return

        ctx = DefaultContext(
            field=field,
            path=path,
            data=doc,
            sibling_data=sibling,
            locale=self.locale,
            operation=self.operation,
        )
        try:
            value = await asyncio.wait_for(call_maybe_async(default, ctx), self.timeout)
        except TimeoutError:
            self._fail(errors, path, f"Default value timed out after {self.timeout}s")
            return
        except Exception as e:
            self._fail(errors, path, f"Default value failed: {e}")
            return

        if value is not None:
            sibling[name] = value

    def _fail(self, errors: Errors, path: str, message: str) -> None:
        errors.append(FieldErrorDetail(path=path, message=message))
        log_with_context(logger, logging.WARNING, message, collection=self.collection, path=path)

    # -------------------------------------------------------------------------
    # Node kinds
    # -------------------------------------------------------------------------

    async def visit_scalar(
        self,
        field: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        # has_many defaults apply to the whole sequence
        await self._apply_default(field, sibling, join_path(prefix, field.name or ""), doc, errors)

    async def visit_group(
        self,
        field: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        name = field.name or ""
        path = join_path(prefix, name)
        await self._apply_default(field, sibling, path, doc, errors)
        value = sibling.get(name)
        if value is None:
            value = {}
            sibling[name] = value
        if isinstance(value, dict):
            await self._resolve_fields(field.fields, value, path, doc, errors)

    async def visit_array(
        self,
        field: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        path = join_path(prefix, field.name or "")
        await self._apply_default(field, sibling, path, doc, errors)
        rows = sibling.get(field.name or "")
        if not isinstance(rows, list):
            return
        await self._resolve_rows(
            [
                (field.fields, row, join_path(path, i))
                for i, row in enumerate(rows)
                if isinstance(row, dict)
            ],
            doc,
            errors,
        )

    async def visit_blocks(
        self,
        field: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
        errors: Errors,
    ) -> None:
        path = join_path(prefix, field.name or "")
        await self._apply_default(field, sibling, path, doc, errors)
        rows = sibling.get(field.name or "")
        if not isinstance(rows, list):
            return
        pending = []
        for i, row in enumerate(rows):
            row_path = join_path(path, i)
            block = resolve_block(field, row, row_path, self.collection)
            pending.append((block.fields, row, row_path))
        await self._resolve_rows(pending, doc, errors)
