"""
Runtime - compiled schemas and the pipelines that interpret them.

Write path: DefaultValueResolver -> ValidationEngine -> LocalizationExpander -> DocumentStore
Read path: DocumentStore -> LocalizationCollapser
Query path: PathResolver -> QueryTranslator -> DocumentStore
"""

from fieldtree.runtime.context import DefaultContext, HookContext, Operation, ValidationContext
from fieldtree.runtime.defaults import DefaultValueResolver
from fieldtree.runtime.document_store import (
    DocumentStore,
    DuplicateKeyError,
    MemoryDocumentStore,
    PaginatedDocs,
)
from fieldtree.runtime.filters import (
    And,
    Condition,
    ElemMatch,
    FilterNode,
    MatchAll,
    MatchNone,
    Operator,
    Or,
)
from fieldtree.runtime.localization import (
    ALL_LOCALES,
    LocalizationCollapser,
    LocalizationExpander,
)
from fieldtree.runtime.path_resolver import (
    JoinDescriptor,
    PathResolver,
    StoragePath,
    VariantScope,
)
from fieldtree.runtime.query_translator import QueryTranslator
from fieldtree.runtime.registry import CompiledCollection, SchemaRegistry
from fieldtree.runtime.service import CollectionService, FieldtreeEngine
from fieldtree.runtime.validation import ValidationEngine, ValidationResult

__all__ = [
    # Contexts
    "DefaultContext",
    "HookContext",
    "Operation",
    "ValidationContext",
    # Registry
    "CompiledCollection",
    "SchemaRegistry",
    # Write/read pipeline
    "DefaultValueResolver",
    "ValidationEngine",
    "ValidationResult",
    "LocalizationExpander",
    "LocalizationCollapser",
    "ALL_LOCALES",
    # Query
    "PathResolver",
    "StoragePath",
    "VariantScope",
    "JoinDescriptor",
    "QueryTranslator",
    "FilterNode",
    "Condition",
    "And",
    "Or",
    "ElemMatch",
    "MatchNone",
    "MatchAll",
    "Operator",
    # Storage
    "DocumentStore",
    "MemoryDocumentStore",
    "DuplicateKeyError",
    "PaginatedDocs",
    # Service
    "CollectionService",
    "FieldtreeEngine",
]
