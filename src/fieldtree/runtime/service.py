"""
Collection service - the write, read and query pipelines.

Write: defaults -> before_validate hooks -> change shaping -> validation
-> before_change hooks -> localization expand -> store.
Read: store -> localization collapse -> after_read hooks.
Query: where clause -> QueryTranslator -> store.find -> read pipeline.

FieldtreeEngine wires a registry, a store and one CollectionService per
collection.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from fieldtree.config import FieldtreeConfig, load_config
from fieldtree.errors import (
    DocumentNotFoundError,
    ErrorContext,
    FieldErrorDetail,
    UniquenessConflictError,
    make_structural_error,
)
from fieldtree.runtime.context import Operation
from fieldtree.runtime.defaults import DefaultValueResolver
from fieldtree.runtime.document_store import (
    DocumentStore,
    DuplicateKeyError,
    MemoryDocumentStore,
    PaginatedDocs,
    index_values,
)
from fieldtree.runtime.filters import Condition, Operator
from fieldtree.runtime.localization import (
    ALL_LOCALES,
    LocalizationCollapser,
    LocalizationExpander,
)
from fieldtree.runtime.logging import get_logger, log_with_context, setup_logging
from fieldtree.runtime.query_translator import QueryTranslator
from fieldtree.runtime.registry import CompiledCollection, SchemaRegistry
from fieldtree.runtime.shaping import ChangeShaper, HookRunner
from fieldtree.runtime.traversal import call_maybe_async
from fieldtree.runtime.validation import ValidationEngine
from fieldtree.specs import CREATED_AT, ID_FIELD, UPDATED_AT, CollectionSpec, FieldSpec

logger = get_logger("Write")
query_logger = get_logger("Query")

UNIQUE_MESSAGE = "Value must be unique"

# Callback signature: (collection, doc_id, doc, previous_doc)
ChangeCallback = Callable[[str, str, dict[str, Any], dict[str, Any] | None], Any]

_SYSTEM_KEYS = (ID_FIELD, CREATED_AT, UPDATED_AT)


def _now() -> str:
    return datetime.now(UTC).isoformat()


def _without_system_keys(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if k not in _SYSTEM_KEYS}


class CollectionService:
    """
    Create, read, update and query documents of one collection.

    Example:
        texts = engine.collection("text-fields")
        doc = await texts.create({"text": "text field"})
        page = await texts.find({"text": {"equals": "text field"}})
    """

    def __init__(self, compiled: CompiledCollection, engine: FieldtreeEngine):
        self.compiled = compiled
        self.engine = engine
        self.store = engine.store
        self.slug = compiled.slug
        localization = engine.config.localization
        self._expander = LocalizationExpander(localization, self.slug)
        self._collapser = LocalizationCollapser(localization, self.slug)
        self._on_created_callbacks: list[ChangeCallback] = []
        self._on_updated_callbacks: list[ChangeCallback] = []

    @property
    def fields(self) -> list[FieldSpec]:
        return self.compiled.fields

    def on_created(self, callback: ChangeCallback) -> None:
        """Register a callback to be called after document creation."""
        self._on_created_callbacks.append(callback)

    def on_updated(self, callback: ChangeCallback) -> None:
        """Register a callback to be called after document update."""
        self._on_updated_callbacks.append(callback)

    async def _notify(
        self,
        callbacks: list[ChangeCallback],
        doc_id: str,
        doc: dict[str, Any],
        previous: dict[str, Any] | None,
    ) -> None:
        for callback in callbacks:
            try:
                await call_maybe_async(callback, self.slug, doc_id, doc, previous)
            except Exception as e:
                # Log but don't fail the write
                log_with_context(
                    logger,
                    logging.WARNING,
                    f"Change callback failed: {e}",
                    collection=self.slug,
                    id=doc_id,
                )

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def _write_locale(self, locale: str | None) -> str | None:
        if locale == ALL_LOCALES:
            raise make_structural_error(
                "Writes require a single locale, not 'all'", collection=self.slug
            )
        return self._expander.check_locale(locale)

    async def _prepare(
        self,
        data: dict[str, Any],
        locale: str | None,
        operation: Operation,
        original: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Run every pipeline stage up to localization."""
        timeout = self.engine.config.defaults.timeout_seconds
        resolver = DefaultValueResolver(self.slug, timeout, locale, operation)
        doc = await resolver.resolve(self.fields, data)
        await HookRunner("before_validate", locale, operation, original).run(self.fields, doc)
        ChangeShaper(self.slug).shape(self.fields, doc)
        await ValidationEngine(self.slug, locale, operation).validate_or_raise(self.fields, doc)
        await HookRunner("before_change", locale, operation, original).run(self.fields, doc)
        return doc

    async def create(
        self,
        data: dict[str, Any],
        locale: str | None = None,
        fallback_locale: str | list[str] | bool | None = None,
    ) -> dict[str, Any]:
        """
        Create a document.

        Args:
            data: Document in application shape for one locale
            locale: Write locale; the default locale when omitted

        Returns:
            The created document, read back in the same locale

        Raises:
            DefaultResolutionError: A computed default failed
            FieldValidationError: One or more fields are invalid
            UniquenessConflictError: A unique field value is taken
            StructuralSchemaError: Unknown block type or locale
        """
        await self.engine.ensure_indexes()
        active = self._write_locale(locale)
        doc = await self._prepare(_without_system_keys(data), active, Operation.CREATE)

        stored = self._expander.expand(self.fields, doc, None, active)
        if self.compiled.spec.timestamps:
            stored[CREATED_AT] = stored[UPDATED_AT] = _now()

        await self._check_unique(stored)
        try:
            saved = await self.store.create(self.slug, stored)
        except DuplicateKeyError as e:
            raise self._conflict(e) from e

        log_with_context(
            logger, logging.INFO, "Created document", collection=self.slug, id=saved[ID_FIELD]
        )
        result = await self._read(saved, active, fallback_locale)
        await self._notify(self._on_created_callbacks, saved[ID_FIELD], result, None)
        return result

    async def update(
        self,
        id: str,
        data: dict[str, Any],
        locale: str | None = None,
        fallback_locale: str | list[str] | bool | None = None,
    ) -> dict[str, Any]:
        """
        Update a document in one locale.

        Fields absent from `data` keep their stored value; other locales'
        slots are never touched.

        Raises:
            DocumentNotFoundError: No document with this id
        """
        await self.engine.ensure_indexes()
        active = self._write_locale(locale)
        existing = await self.store.find_by_id(self.slug, id)
        if existing is None:
            raise DocumentNotFoundError(
                f"Document '{id}' not found", ErrorContext(collection=self.slug)
            )

        current = _without_system_keys(
            self._collapser.collapse(self.fields, existing, active, fallback_locale=False)
        )
        merged = {**current, **_without_system_keys(data)}
        doc = await self._prepare(merged, active, Operation.UPDATE, original=current)

        stored = self._expander.expand(self.fields, doc, existing, active)
        if self.compiled.spec.timestamps:
            stored[UPDATED_AT] = _now()

        await self._check_unique(stored, exclude=id)
        try:
            saved = await self.store.update(self.slug, id, stored)
        except DuplicateKeyError as e:
            raise self._conflict(e) from e

        log_with_context(logger, logging.INFO, "Updated document", collection=self.slug, id=id)
        result = await self._read(saved, active, fallback_locale)
        await self._notify(self._on_updated_callbacks, id, result, current)
        return result

    async def _check_unique(self, stored: dict[str, Any], exclude: str | None = None) -> None:
        """
        Advisory uniqueness check before the write.

        The store's own index is still authoritative; a conflict raced in
        after this check surfaces as DuplicateKeyError from the write.
        """
        errors: list[FieldErrorDetail] = []
        for storage_path, field_path in self.compiled.unique_paths.items():
            if any(e.path == field_path for e in errors):
                continue
            multikey = storage_path in self.compiled.multikey_paths
            for value in index_values(stored, storage_path, multikey):
                if value is None:
                    continue
                condition = Condition(storage_path, Operator.EQUALS, value)
                ids = await self.store.find_ids(self.slug, condition)
                if any(other != exclude for other in ids):
                    errors.append(FieldErrorDetail(path=field_path, message=UNIQUE_MESSAGE))
                    break
        if errors:
            log_with_context(
                logger,
                logging.INFO,
                "Uniqueness conflict",
                collection=self.slug,
                paths=[e.path for e in errors],
            )
            raise UniquenessConflictError(errors, collection=self.slug)

    def _conflict(self, error: DuplicateKeyError) -> UniquenessConflictError:
        field_path = self.compiled.unique_paths.get(error.path, error.path)
        log_with_context(
            logger,
            logging.WARNING,
            "Store rejected duplicate value",
            collection=self.slug,
            path=field_path,
        )
        return UniquenessConflictError(
            [FieldErrorDetail(path=field_path, message=UNIQUE_MESSAGE)], collection=self.slug
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def _read(
        self,
        stored: dict[str, Any],
        locale: str | None,
        fallback_locale: str | list[str] | bool | None,
    ) -> dict[str, Any]:
        doc = self._collapser.collapse(self.fields, stored, locale, fallback_locale)
        active = self._collapser.check_locale(locale)
        await HookRunner("after_read", active, Operation.READ, stored).run(self.fields, doc)
        return doc

    async def find_by_id(
        self,
        id: str,
        locale: str | None = None,
        fallback_locale: str | list[str] | bool | None = None,
    ) -> dict[str, Any]:
        """
        Read one document.

        Raises:
            DocumentNotFoundError: No document with this id
        """
        stored = await self.store.find_by_id(self.slug, id)
        if stored is None:
            raise DocumentNotFoundError(
                f"Document '{id}' not found", ErrorContext(collection=self.slug)
            )
        return await self._read(stored, locale, fallback_locale)

    async def find(
        self,
        where: dict[str, Any] | None = None,
        locale: str | None = None,
        fallback_locale: str | list[str] | bool | None = None,
        page: int = 1,
        limit: int | None = None,
        sort: str | None = None,
    ) -> PaginatedDocs:
        """
        Query documents.

        Args:
            where: Where clause, e.g. {"blocks.text": {"equals": "green"}}
            locale: Read locale; also pins localized filter paths
            page: 1-based page number
            limit: Page size; the configured default when omitted, 0 for all
            sort: Field path, '-' prefix for descending

        Raises:
            StructuralSchemaError: The where clause cannot be resolved
        """
        self._collapser.check_locale(locale)
        node = await self.engine.translator.translate(self.slug, where, locale)
        if limit is None:
            limit = self.engine.config.query.default_limit
        result = await self.store.find(
            self.slug, node, page=page, limit=limit, sort=sort or self.compiled.spec.default_sort
        )
        docs = await asyncio.gather(
            *(self._read(doc, locale, fallback_locale) for doc in result.docs)
        )
        log_with_context(
            query_logger,
            logging.DEBUG,
            "Find",
            collection=self.slug,
            total=result.total_docs,
        )
        return dataclasses.replace(result, docs=list(docs))


class FieldtreeEngine:
    """
    Entry point: registry, store and per-collection services.

    Example:
        engine = FieldtreeEngine([texts, relationships], config=load_config())
        engine = FieldtreeEngine.from_config([texts, relationships], "fieldtree.toml")
        doc = await engine.collection("text-fields").create({"text": "a"})
    """

    def __init__(
        self,
        collections: Iterable[CollectionSpec],
        config: FieldtreeConfig | None = None,
        store: DocumentStore | None = None,
    ):
        self.config = config or FieldtreeConfig()
        self.registry = SchemaRegistry(collections, self.config.localization)
        self.store = store or MemoryDocumentStore()
        self.translator = QueryTranslator(self.registry, self.store, self.config.query)
        self._services = {
            compiled.slug: CollectionService(compiled, self) for compiled in self.registry
        }
        self._indexes_ready = False

    @classmethod
    def from_config(
        cls,
        collections: Iterable[CollectionSpec],
        path: Path | str | None = None,
        store: DocumentStore | None = None,
    ) -> FieldtreeEngine:
        """
        Build an engine from fieldtree.toml, applying its logging settings.

        Args:
            collections: Collection specs to register
            path: Path to fieldtree.toml or its directory; the working
                directory when omitted
            store: Storage backend; an in-memory store when omitted
        """
        config = load_config(path)
        setup_logging(config.logging)
        return cls(collections, config=config, store=store)

    def collection(self, slug: str) -> CollectionService:
        """Get the service for a collection; raises SchemaConfigError if unknown."""
        return self._services[self.registry.get(slug).slug]

    async def ensure_indexes(self) -> None:
        """Declare every compiled unique path on the store (once)."""
        if self._indexes_ready:
            return
        for compiled in self.registry:
            for path in compiled.unique_paths:
                multikey = path in compiled.multikey_paths
                await self.store.ensure_unique_index(compiled.slug, path, multikey)
        self._indexes_ready = True
        logger.debug("Unique indexes ready")
