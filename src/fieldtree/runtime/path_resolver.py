"""
Path resolver - logical dot-paths to storage filter paths.

A logical path such as ``blocks.richText.children.text`` or
``array.relationship.text`` names fields, not storage positions. The
resolver walks it against the compiled field tree and returns every
concrete place it can address:

- group/tab segments concatenate
- array segments concatenate without a row index (any row may match)
- blocks segments fan out over the variants that declare the next
  segment, each scoped by its discriminator
- relationship segments followed by more segments become a join on the
  target collection
- localized fields take an explicit locale segment if present, else the
  pinned query locale, else every configured locale
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Union

from fieldtree.errors import make_structural_error
from fieldtree.runtime.registry import SchemaRegistry
from fieldtree.runtime.traversal import join_path
from fieldtree.specs import (
    BLOCK_NAME_KEY,
    BLOCK_TYPE_KEY,
    ID_FIELD,
    ROW_ID_KEY,
    SCALAR_KINDS,
    SCHEMALESS_KINDS,
    FieldKind,
    FieldSpec,
    find_field,
)

_ARRAY_ROW_KEYS = frozenset({ROW_ID_KEY})
_BLOCK_ROW_KEYS = frozenset({ROW_ID_KEY, BLOCK_TYPE_KEY, BLOCK_NAME_KEY})
_POLYMORPHIC_KEYS = frozenset({"relationTo", "value"})


@dataclass(frozen=True)
class StoragePath:
    """A concrete storage path; `leaf` is the addressed field when known."""

    path: str
    leaf: FieldSpec | None = dataclasses.field(default=None, compare=False)


@dataclass(frozen=True)
class VariantScope:
    """
    Paths inside rows of one block variant.

    `inner` paths are relative to the row at `rows_path`.
    """

    rows_path: str
    block_type: str
    inner: tuple[Resolution, ...]


@dataclass(frozen=True)
class JoinDescriptor:
    """Filter on a related collection, substituted back by identifier."""

    local_path: str
    foreign_collection: str
    foreign_path: str
    polymorphic: bool = False


Resolution = Union[StoragePath, VariantScope, JoinDescriptor]


class PathResolver:
    """
    Resolve logical paths against a schema registry.

    Example:
        resolver = PathResolver(registry)
        resolver.resolve("block-fields", "blocks.text")
        # [VariantScope(rows_path="blocks", block_type="content",
        #               inner=(StoragePath("text"),))]
    """

    def __init__(self, registry: SchemaRegistry):
        self.registry = registry
        self.localization = registry.localization

    def resolve(self, collection: str, path: str, locale: str | None = None) -> list[Resolution]:
        """
        Args:
            collection: Collection slug
            path: Logical dot-path
            locale: Pinned query locale; None or "all" matches every slot

        Raises:
            StructuralSchemaError: A segment cannot be resolved
        """
        compiled = self.registry.get(collection)
        segments = path.split(".")
        if not path or any(not s for s in segments):
            raise make_structural_error("Empty path segment", collection=collection, path=path)
        pinned = locale if locale in self.localization.locales else None
        walker = _Walker(self.registry, collection, path, pinned)
        return walker.resolve_fields(
            compiled.query_fields, segments, "", frozenset({ID_FIELD}), inside_localized=False
        )


class _Walker:
    """Per-call state for one resolution."""

    def __init__(
        self, registry: SchemaRegistry, collection: str, path: str, pinned: str | None
    ):
        self.registry = registry
        self.collection = collection
        self.path = path
        self.pinned = pinned
        self.locales = registry.localization.locales

    def fail(self, message: str) -> Exception:
        return make_structural_error(message, collection=self.collection, path=self.path)

    def resolve_fields(
        self,
        fields: list[FieldSpec],
        segments: list[str],
        prefix: str,
        row_keys: frozenset[str],
        inside_localized: bool,
    ) -> list[Resolution]:
        head, rest = segments[0], segments[1:]
        if head in row_keys:
            if rest:
                raise self.fail(f"Cannot query into '{head}'")
            return [StoragePath(join_path(prefix, head))]

        field = find_field(fields, head)
        if field is None:
            raise self.fail(f"The following path cannot be queried: {head}")

        base = join_path(prefix, head)
        if field.localized and self.locales and not inside_localized:
            if rest and rest[0] in self.locales:
                bases = [join_path(base, rest[0])]
                rest = rest[1:]
            elif self.pinned:
                bases = [join_path(base, self.pinned)]
            else:
                bases = [join_path(base, code) for code in self.locales]
            inside_localized = True
        else:
            bases = [base]

        resolutions: list[Resolution] = []
        for b in bases:
            resolutions.extend(self.descend(field, rest, b, inside_localized))
        return resolutions

    def descend(
        self,
        field: FieldSpec,
        rest: list[str],
        base: str,
        inside_localized: bool,
    ) -> list[Resolution]:
        kind = field.kind
        if kind in SCHEMALESS_KINDS:
            return [StoragePath(join_path(base, *rest), field)]
        if not rest:
            return [StoragePath(base, field)]
        if kind in SCALAR_KINDS:
            raise self.fail(f"Cannot query into {kind} field '{field.name}'")

        if kind == FieldKind.GROUP:
            return self.resolve_fields(field.fields, rest, base, frozenset(), inside_localized)
        if kind == FieldKind.ARRAY:
            return self.resolve_fields(field.fields, rest, base, _ARRAY_ROW_KEYS, inside_localized)
        if kind == FieldKind.BLOCKS:
            return self.descend_blocks(field, rest, base, inside_localized)
        return self.descend_relationship(field, rest, base)

    def descend_blocks(
        self,
        field: FieldSpec,
        rest: list[str],
        base: str,
        inside_localized: bool,
    ) -> list[Resolution]:
        if rest[0] in _BLOCK_ROW_KEYS:
            if len(rest) > 1:
                raise self.fail(f"Cannot query into '{rest[0]}'")
            return [StoragePath(join_path(base, rest[0]))]

        scopes: list[Resolution] = []
        for block in field.blocks:
            if find_field(block.fields, rest[0]) is None:
                continue
            inner = self.resolve_fields(block.fields, rest, "", _BLOCK_ROW_KEYS, inside_localized)
            scopes.append(VariantScope(rows_path=base, block_type=block.slug, inner=tuple(inner)))
        if not scopes:
            raise self.fail(f"No block in '{field.name}' declares a field named '{rest[0]}'")
        return scopes

    def descend_relationship(
        self, field: FieldSpec, rest: list[str], base: str
    ) -> list[Resolution]:
        polymorphic = field.is_polymorphic
        if polymorphic and rest[0] in _POLYMORPHIC_KEYS:
            if len(rest) > 1:
                raise self.fail(f"Cannot query into '{rest[0]}'")
            return [StoragePath(join_path(base, rest[0]), field)]
        if not polymorphic and rest == [ID_FIELD]:
            return [StoragePath(base, field)]
        targets = field.relation_to or []
        if polymorphic:
            # Only targets that declare the next segment can match
            targets = [t for t in targets if self.declares(t, rest[0])]
            if not targets:
                raise self.fail(
                    f"No collection related by '{field.name}' declares a field named '{rest[0]}'"
                )
        foreign_path = ".".join(rest)
        return [
            JoinDescriptor(
                local_path=base,
                foreign_collection=target,
                foreign_path=foreign_path,
                polymorphic=polymorphic,
            )
            for target in targets
        ]

    def declares(self, collection: str, name: str) -> bool:
        if name == ID_FIELD:
            return True
        return find_field(self.registry.get(collection).query_fields, name) is not None
