"""
fieldtree - declarative document schemas with a runtime to match.

Declare collections as nested field trees (groups, tabs, arrays, blocks,
relationships, localized fields) and get:
- Default value materialization (static, sync and async computed)
- Whole-document validation with aggregated, path-keyed errors
- Localization fan-out on write and fan-in (with fallback) on read
- Dot-path queries across arrays, block variants and relationships
"""

from fieldtree._version import get_version as _get_version
from fieldtree.config import FieldtreeConfig, load_config
from fieldtree.errors import (
    DefaultResolutionError,
    DocumentNotFoundError,
    FieldtreeError,
    FieldValidationError,
    SchemaConfigError,
    StructuralSchemaError,
    UniquenessConflictError,
)
from fieldtree.runtime.logging import setup_logging
from fieldtree.runtime.service import CollectionService, FieldtreeEngine
from fieldtree.specs import BlockSpec, CollectionSpec, FieldHooks, FieldKind, FieldSpec

__version__ = _get_version()

__all__ = [
    "__version__",
    # Schema
    "BlockSpec",
    "CollectionSpec",
    "FieldHooks",
    "FieldKind",
    "FieldSpec",
    # Engine
    "CollectionService",
    "FieldtreeEngine",
    "FieldtreeConfig",
    "load_config",
    "setup_logging",
    # Errors
    "FieldtreeError",
    "SchemaConfigError",
    "StructuralSchemaError",
    "FieldValidationError",
    "UniquenessConflictError",
    "DefaultResolutionError",
    "DocumentNotFoundError",
]
