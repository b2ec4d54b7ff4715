"""
Document shaping passes run around validation.

- ChangeShaper normalizes a document into the shape the store expects:
  has_many values become sequences, single-target relationships become
  bare identifiers, and every array/blocks row gets a stable id.
- HookRunner runs one stage of field hooks (before_validate,
  before_change, after_read) over the tree.
"""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from fieldtree.runtime.context import HookContext, Operation
from fieldtree.runtime.traversal import FieldVisitor, call_maybe_async, join_path, resolve_block
from fieldtree.specs import BLOCK_TYPE_KEY, ROW_ID_KEY, FieldSpec, iter_named_fields


def new_row_id() -> str:
    """Identifier for a new array/blocks row."""
    return uuid4().hex


def _bare_relationship(field: FieldSpec, value: Any) -> Any:
    if (
        isinstance(value, dict)
        and value.get("relationTo") in (field.relation_to or [])
        and "value" in value
    ):
        return value["value"]
    return value


# =============================================================================
# Change shaping
# =============================================================================


class ChangeShaper(FieldVisitor):
    """
    Normalize a document in place before it is validated and stored.

    Row ids already present are kept, so reordering rows preserves their
    identity; a row without an id, or repeating an id already used earlier
    in the same sequence, gets a fresh one.
    """

    def __init__(self, collection: str | None = None):
        self.collection = collection

    def shape(self, fields: list[FieldSpec], doc: dict[str, Any]) -> dict[str, Any]:
        self._shape_fields(fields, doc, "")
        return doc

    def _shape_fields(self, fields: list[FieldSpec], sibling: dict[str, Any], prefix: str) -> None:
        for field in iter_named_fields(fields):
            self.visit(field, sibling, prefix)

    def visit_scalar(self, field: FieldSpec, sibling: dict[str, Any], prefix: str) -> None:
        if not field.has_many:
            return
        name = field.name or ""
        value = sibling.get(name)
        if value is None:
            sibling[name] = []
        elif not isinstance(value, list):
            sibling[name] = [value]

    def visit_relationship(self, field: FieldSpec, sibling: dict[str, Any], prefix: str) -> None:
        self.visit_scalar(field, sibling, prefix)
        name = field.name or ""
        if field.is_polymorphic or name not in sibling:
            return
        value = sibling[name]
        if isinstance(value, list):
            sibling[name] = [_bare_relationship(field, v) for v in value]
        else:
            sibling[name] = _bare_relationship(field, value)

    def visit_group(self, field: FieldSpec, sibling: dict[str, Any], prefix: str) -> None:
        value = sibling.get(field.name or "")
        if isinstance(value, dict):
            self._shape_fields(field.fields, value, join_path(prefix, field.name or ""))

    def _assign_ids(self, rows: list[Any]) -> list[dict[str, Any]]:
        seen: set[Any] = set()
        shaped = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            row_id = row.get(ROW_ID_KEY)
            if not row_id or row_id in seen:
                row_id = new_row_id()
                row[ROW_ID_KEY] = row_id
            seen.add(row_id)
            shaped.append(row)
        return shaped

    def visit_array(self, field: FieldSpec, sibling: dict[str, Any], prefix: str) -> None:
        rows = sibling.get(field.name or "")
        if not isinstance(rows, list):
            return
        path = join_path(prefix, field.name or "")
        for i, row in enumerate(self._assign_ids(rows)):
            self._shape_fields(field.fields, row, join_path(path, i))

    def visit_blocks(self, field: FieldSpec, sibling: dict[str, Any], prefix: str) -> None:
        rows = sibling.get(field.name or "")
        if not isinstance(rows, list):
            return
        path = join_path(prefix, field.name or "")
        for i, row in enumerate(self._assign_ids(rows)):
            row_path = join_path(path, i)
            block = resolve_block(field, row, row_path, self.collection)
            self._shape_fields(block.fields, row, row_path)


# =============================================================================
# Field hooks
# =============================================================================


class HookRunner(FieldVisitor):
    """
    Run one hook stage over the tree, parents before children.

    A hook's return value replaces the field value; returning None
    leaves it unchanged.
    """

    STAGES = ("before_validate", "before_change", "after_read")

    def __init__(
        self,
        stage: str,
        locale: str | None = None,
        operation: Operation = Operation.CREATE,
        original_doc: dict[str, Any] | None = None,
    ):
        if stage not in self.STAGES:
            raise ValueError(f"Unknown hook stage: {stage}")
        self.stage = stage
        self.locale = locale
        self.operation = operation
        self.original_doc = original_doc

    async def run(self, fields: list[FieldSpec], doc: dict[str, Any]) -> dict[str, Any]:
        await self._run_fields(fields, doc, "", doc)
        return doc

    async def _run_fields(
        self,
        fields: list[FieldSpec],
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
    ) -> None:
        for field in iter_named_fields(fields):
            await self._run_hooks(field, sibling, prefix, doc)
            await self.visit(field, sibling, prefix, doc)

    async def _run_hooks(
        self,
        field: FieldSpec,
        sibling: dict[str, Any],
        prefix: str,
        doc: dict[str, Any],
    ) -> None:
        hooks = getattr(field.hooks, self.stage)
        if not hooks:
            return
        name = field.name or ""
        for hook in hooks:
            ctx = HookContext(
                field=field,
                path=join_path(prefix, name),
                value=sibling.get(name),
                data=doc,
                sibling_data=sibling,
                locale=self.locale,
                operation=self.operation,
                original_doc=self.original_doc,
            )
            value = await call_maybe_async(hook, ctx)
            if value is not None:
                sibling[name] = value

    async def visit_scalar(self, field: FieldSpec, *args: Any) -> None:
        return None

    async def visit_group(
        self, field: FieldSpec, sibling: dict[str, Any], prefix: str, doc: dict[str, Any]
    ) -> None:
        value = sibling.get(field.name or "")
        if isinstance(value, dict):
            await self._run_fields(field.fields, value, join_path(prefix, field.name or ""), doc)

    async def visit_array(
        self, field: FieldSpec, sibling: dict[str, Any], prefix: str, doc: dict[str, Any]
    ) -> None:
        rows = sibling.get(field.name or "")
        if not isinstance(rows, list):
            return
        path = join_path(prefix, field.name or "")
        for i, row in enumerate(rows):
            if isinstance(row, dict):
                await self._run_fields(field.fields, row, join_path(path, i), doc)

    async def visit_blocks(
        self, field: FieldSpec, sibling: dict[str, Any], prefix: str, doc: dict[str, Any]
    ) -> None:
        rows = sibling.get(field.name or "")
        if not isinstance(rows, list):
            return
        path = join_path(prefix, field.name or "")
        for i, row in enumerate(rows):
            block = field.get_block(row.get(BLOCK_TYPE_KEY)) if isinstance(row, dict) else None
            if block is not None:
                await self._run_fields(block.fields, row, join_path(path, i), doc)
