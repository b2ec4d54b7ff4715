"""Tests for schema compilation and the registry."""

from __future__ import annotations

import pytest

from fieldtree.config import LocalizationConfig
from fieldtree.errors import SchemaConfigError
from fieldtree.runtime.registry import SchemaRegistry
from fieldtree.specs import BlockSpec, CollectionSpec, FieldSpec


def _collection(slug: str, *fields: FieldSpec) -> CollectionSpec:
    return CollectionSpec(slug=slug, fields=list(fields))


class TestRegistryLookup:
    def test_get_compiled_collection(self, registry):
        compiled = registry.get("text-fields")
        assert compiled.slug == "text-fields"
        assert compiled.fields[0].name == "text"

    def test_unknown_slug(self, registry):
        with pytest.raises(SchemaConfigError, match="Unknown collection 'nope'"):
            registry.get("nope")

    def test_contains_and_iter(self, registry):
        assert "block-fields" in registry
        assert "nope" not in registry
        assert {c.slug for c in registry} == set(registry.slugs)

    def test_collections_are_read_only(self, registry):
        with pytest.raises(TypeError):
            registry._collections["other"] = registry.get("text-fields")

    def test_query_fields_include_timestamps(self, registry):
        names = [f.name for f in registry.get("date-fields").query_fields]
        assert names == ["default", "createdAt", "updatedAt"]


class TestNamespaceChecks:
    def test_duplicate_collection_slugs(self):
        spec = _collection("posts", FieldSpec(kind="text", name="title"))
        with pytest.raises(SchemaConfigError, match="Duplicate collection slugs: posts"):
            SchemaRegistry([spec, spec])

    def test_duplicate_sibling_names(self):
        spec = _collection(
            "posts",
            FieldSpec(kind="text", name="title"),
            FieldSpec(kind="text", name="title"),
        )
        with pytest.raises(SchemaConfigError, match="Duplicate field name 'title'"):
            SchemaRegistry([spec])

    def test_promoted_children_collide(self):
        spec = _collection(
            "posts",
            FieldSpec(kind="text", name="title"),
            FieldSpec(kind="group", fields=[FieldSpec(kind="text", name="title")]),
        )
        with pytest.raises(SchemaConfigError, match="Duplicate field name"):
            SchemaRegistry([spec])

    def test_same_name_in_different_groups_is_fine(self):
        spec = _collection(
            "posts",
            FieldSpec(kind="group", name="a", fields=[FieldSpec(kind="text", name="title")]),
            FieldSpec(kind="group", name="b", fields=[FieldSpec(kind="text", name="title")]),
        )
        assert "posts" in SchemaRegistry([spec])

    def test_reserved_top_level_names(self):
        spec = _collection("posts", FieldSpec(kind="date", name="createdAt"))
        with pytest.raises(SchemaConfigError, match="reserved"):
            SchemaRegistry([spec])

    def test_reserved_row_keys(self):
        spec = _collection(
            "posts",
            FieldSpec(
                kind="blocks",
                name="layout",
                blocks=[
                    BlockSpec(slug="content", fields=[FieldSpec(kind="text", name="blockType")])
                ],
            ),
        )
        with pytest.raises(SchemaConfigError, match="'blockType' is reserved"):
            SchemaRegistry([spec])

    def test_relationship_to_unknown_collection(self):
        spec = _collection(
            "posts", FieldSpec(kind="relationship", name="author", relation_to="users")
        )
        with pytest.raises(SchemaConfigError, match="unknown collections: users"):
            SchemaRegistry([spec])

    def test_error_carries_path(self):
        spec = _collection(
            "posts",
            FieldSpec(
                kind="array",
                name="items",
                fields=[FieldSpec(kind="text", name="id")],
            ),
        )
        with pytest.raises(SchemaConfigError) as exc_info:
            SchemaRegistry([spec])
        assert exc_info.value.context.path == "items.id"


class TestUniquePaths:
    def test_unique_paths_with_locales(self, registry):
        paths = dict(registry.get("indexed-fields").unique_paths)
        assert paths == {
            "uniqueText": "uniqueText",
            "group.localizedUnique.en": "group.localizedUnique",
            "group.localizedUnique.es": "group.localizedUnique",
            "tags": "tags",
            "rows.code": "rows.code",
        }
        assert registry.get("indexed-fields").multikey_paths == frozenset({"tags"})

    def test_unique_paths_without_locales(self, collections):
        registry = SchemaRegistry(collections, LocalizationConfig())
        paths = dict(registry.get("indexed-fields").unique_paths)
        assert paths == {
            "uniqueText": "uniqueText",
            "group.localizedUnique": "group.localizedUnique",
            "tags": "tags",
            "rows.code": "rows.code",
        }

    def test_unique_inside_localized_rows(self, localization):
        spec = _collection(
            "posts",
            FieldSpec(
                kind="array",
                name="items",
                localized=True,
                fields=[FieldSpec(kind="text", name="sku", unique=True)],
            ),
        )
        compiled = SchemaRegistry([spec], localization).get("posts")
        assert dict(compiled.unique_paths) == {
            "items.en.sku": "items.sku",
            "items.es.sku": "items.sku",
        }
        assert compiled.multikey_paths == frozenset()

    def test_unique_inside_blocks(self):
        spec = _collection(
            "pages",
            FieldSpec(
                kind="blocks",
                name="layout",
                blocks=[
                    BlockSpec(
                        slug="hero",
                        fields=[FieldSpec(kind="text", name="anchor", unique=True)],
                    ),
                    BlockSpec(slug="quote", fields=[FieldSpec(kind="text", name="text")]),
                ],
            ),
        )
        assert dict(SchemaRegistry([spec]).get("pages").unique_paths) == {
            "layout.anchor": "layout.anchor"
        }
