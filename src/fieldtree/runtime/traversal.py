"""
Generic recursive descent over a field tree.

Default resolution, validation, change shaping and localization all walk
the same tree the same way: layout-only nodes flattened, named nodes in
declaration order, parents before children. Each feature subclasses
FieldVisitor and implements one method per node kind.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable
from typing import Any

from fieldtree.errors import make_structural_error
from fieldtree.specs import BLOCK_TYPE_KEY, SCALAR_KINDS, BlockSpec, FieldKind, FieldSpec

_STRUCTURAL_METHODS = {
    FieldKind.RELATIONSHIP: "visit_relationship",
    FieldKind.GROUP: "visit_group",
    FieldKind.ARRAY: "visit_array",
    FieldKind.BLOCKS: "visit_blocks",
}


class FieldVisitor:
    """
    Dispatch a field node to the visit method for its kind.

    Methods may be sync or async; `visit` returns whatever the method
    returns, so async visitors await the result.
    """

    def visit(self, field: FieldSpec, *args: Any, **kwargs: Any) -> Any:
        if field.kind in SCALAR_KINDS:
            method_name = "visit_scalar"
        else:
            method_name = _STRUCTURAL_METHODS[field.kind]
        return getattr(self, method_name)(field, *args, **kwargs)

    def visit_scalar(self, field: FieldSpec, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def visit_relationship(self, field: FieldSpec, *args: Any, **kwargs: Any) -> Any:
        return self.visit_scalar(field, *args, **kwargs)

    def visit_group(self, field: FieldSpec, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def visit_array(self, field: FieldSpec, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError

    def visit_blocks(self, field: FieldSpec, *args: Any, **kwargs: Any) -> Any:
        raise NotImplementedError


def join_path(prefix: str, *segments: str | int) -> str:
    """Join dot-path segments, skipping an empty prefix."""
    parts = [prefix] if prefix else []
    parts.extend(str(s) for s in segments)
    return ".".join(parts)


def resolve_block(
    field: FieldSpec,
    row: Any,
    path: str,
    collection: str | None = None,
) -> BlockSpec:
    """
    Select the variant for a blocks row by its discriminator.

    Raises:
        StructuralSchemaError: Row is not an object, or the tag is unknown
    """
    if not isinstance(row, dict):
        raise make_structural_error(
            "Block rows must be objects", collection=collection, path=path
        )
    block_type = row.get(BLOCK_TYPE_KEY)
    block = field.get_block(block_type) if isinstance(block_type, str) else None
    if block is None:
        known = ", ".join(b.slug for b in field.blocks)
        raise make_structural_error(
            f"Unknown block type '{block_type}' (expected one of: {known})",
            collection=collection,
            path=path,
        )
    return block


def is_empty(value: Any) -> bool:
    """True for values that count as absent for required checks."""
    return value is None or value == "" or value == [] or value == {}


async def call_maybe_async(fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call fn and await the result if it is awaitable."""
    result = fn(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result
