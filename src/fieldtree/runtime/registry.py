"""
Schema registry - compiles collection specs once at startup.

The registry is read-only after construction and is shared by every
request-scoped pipeline (defaults, validation, localization, queries).
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import TYPE_CHECKING

from fieldtree.config import LocalizationConfig
from fieldtree.errors import ErrorContext, SchemaConfigError
from fieldtree.runtime.logging import get_logger
from fieldtree.runtime.traversal import join_path
from fieldtree.specs import (
    BLOCK_NAME_KEY,
    BLOCK_TYPE_KEY,
    ID_FIELD,
    ROW_ID_KEY,
    CollectionSpec,
    FieldKind,
    FieldSpec,
    iter_named_fields,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator, Mapping

logger = get_logger("Schema")

_ROW_RESERVED = frozenset({ROW_ID_KEY, BLOCK_TYPE_KEY, BLOCK_NAME_KEY})


@dataclass(frozen=True)
class CompiledCollection:
    """
    A collection ready for use by the runtime.

    Attributes:
        spec: The declared collection
        unique_paths: Storage path the store must keep unique, mapped to
            the logical field path reported on conflict
        multikey_paths: Unique paths whose sequence values index each element
    """

    spec: CollectionSpec
    unique_paths: Mapping[str, str]
    multikey_paths: frozenset[str] = frozenset()

    @property
    def slug(self) -> str:
        return self.spec.slug

    @property
    def fields(self) -> list[FieldSpec]:
        """Fields that accept input."""
        return self.spec.fields

    @property
    def query_fields(self) -> list[FieldSpec]:
        """Fields that filters may address, including system timestamps."""
        return self.spec.fields + self.spec.system_fields


class SchemaRegistry:
    """
    Immutable map of collection slug to compiled collection.

    Example:
        registry = SchemaRegistry([texts, relationships], localization)
        compiled = registry.get("text-fields")
    """

    def __init__(
        self,
        collections: Iterable[CollectionSpec],
        localization: LocalizationConfig | None = None,
    ):
        self.localization = localization or LocalizationConfig()
        specs = list(collections)

        slugs = [c.slug for c in specs]
        duplicates = sorted({s for s in slugs if slugs.count(s) > 1})
        if duplicates:
            raise SchemaConfigError(f"Duplicate collection slugs: {', '.join(duplicates)}")

        compiled: dict[str, CompiledCollection] = {}
        for spec in specs:
            compiled[spec.slug] = self._compile(spec, set(slugs))
            logger.debug(f"Compiled collection {spec.slug}")

        self._collections = MappingProxyType(compiled)

    def get(self, slug: str) -> CompiledCollection:
        """Get a compiled collection by slug."""
        try:
            return self._collections[slug]
        except KeyError:
            raise SchemaConfigError(f"Unknown collection '{slug}'") from None

    def __contains__(self, slug: object) -> bool:
        return slug in self._collections

    def __iter__(self) -> Iterator[CompiledCollection]:
        return iter(self._collections.values())

    @property
    def slugs(self) -> list[str]:
        return list(self._collections)

    # -------------------------------------------------------------------------
    # Compilation
    # -------------------------------------------------------------------------

    def _compile(self, spec: CollectionSpec, known_slugs: set[str]) -> CompiledCollection:
        reserved = {ID_FIELD} | {f.name for f in spec.system_fields if f.name}
        self._check_namespace(spec, spec.fields, "", reserved, known_slugs)
        indexes = list(self._unique_indexes(spec.fields, "", "", False))
        return CompiledCollection(
            spec=spec,
            unique_paths=MappingProxyType({path: logical for path, logical, _ in indexes}),
            multikey_paths=frozenset(path for path, _, many in indexes if many),
        )

    def _check_namespace(
        self,
        spec: CollectionSpec,
        fields: list[FieldSpec],
        prefix: str,
        reserved: set[str] | frozenset[str],
        known_slugs: set[str],
    ) -> None:
        seen: set[str] = set()
        for field in iter_named_fields(fields):
            name = field.name or ""
            path = join_path(prefix, name)
            context = ErrorContext(collection=spec.slug, path=path)
            if name in seen:
                raise SchemaConfigError(f"Duplicate field name '{name}'", context)
            if name in reserved:
                raise SchemaConfigError(f"Field name '{name}' is reserved", context)
            seen.add(name)

            if field.kind == FieldKind.RELATIONSHIP:
                missing = [t for t in field.relation_to or [] if t not in known_slugs]
                if missing:
                    raise SchemaConfigError(
                        f"Relationship targets unknown collections: {', '.join(missing)}",
                        context,
                    )
            elif field.kind == FieldKind.GROUP:
                self._check_namespace(spec, field.fields, path, frozenset(), known_slugs)
            elif field.kind == FieldKind.ARRAY:
                self._check_namespace(spec, field.fields, path, _ROW_RESERVED, known_slugs)
            elif field.kind == FieldKind.BLOCKS:
                for block in field.blocks:
                    self._check_namespace(
                        spec, block.fields, join_path(path, block.slug), _ROW_RESERVED, known_slugs
                    )

    def _unique_indexes(
        self, fields: list[FieldSpec], prefix: str, logical: str, localized: bool
    ) -> Iterator[tuple[str, str, bool]]:
        """
        (storage path, field path, multikey) of every unique field.

        Fields inside array and blocks rows index the values of all rows;
        has_many fields index each element.
        """
        locales = self.localization.locales
        for field in iter_named_fields(fields):
            path = join_path(prefix, field.name or "")
            field_path = join_path(logical, field.name or "")
            fans_out = field.localized and not localized and bool(locales)
            prefixes = [join_path(path, code) for code in locales] if fans_out else [path]
            nested = localized or fans_out
            if field.kind in (FieldKind.GROUP, FieldKind.ARRAY):
                for storage in prefixes:
                    yield from self._unique_indexes(field.fields, storage, field_path, nested)
            elif field.kind == FieldKind.BLOCKS:
                for storage in prefixes:
                    for block in field.blocks:
                        yield from self._unique_indexes(block.fields, storage, field_path, nested)
            elif field.unique:
                for storage in prefixes:
                    yield storage, field_path, field.has_many
