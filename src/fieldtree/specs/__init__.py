"""
Schema specification type definitions.

This module exports all field and collection specification types.
"""

from fieldtree.specs.collection import CREATED_AT, ID_FIELD, UPDATED_AT, CollectionSpec
from fieldtree.specs.field import (
    BLOCK_NAME_KEY,
    BLOCK_TYPE_KEY,
    HAS_MANY_KINDS,
    ROW_ID_KEY,
    SCALAR_KINDS,
    SCHEMALESS_KINDS,
    BlockSpec,
    FieldHooks,
    FieldKind,
    FieldSpec,
    find_field,
    iter_named_fields,
)

__all__ = [
    # Field types
    "FieldKind",
    "FieldSpec",
    "BlockSpec",
    "FieldHooks",
    "SCALAR_KINDS",
    "SCHEMALESS_KINDS",
    "HAS_MANY_KINDS",
    # Row keys
    "ROW_ID_KEY",
    "BLOCK_TYPE_KEY",
    "BLOCK_NAME_KEY",
    # Tree helpers
    "find_field",
    "iter_named_fields",
    # Collection types
    "CollectionSpec",
    "CREATED_AT",
    "UPDATED_AT",
    "ID_FIELD",
]
