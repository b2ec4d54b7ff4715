"""Shared pytest fixtures for fieldtree tests."""

from __future__ import annotations

import asyncio

import pytest

from fieldtree.config import FieldtreeConfig, LocalizationConfig
from fieldtree.runtime.document_store import MemoryDocumentStore
from fieldtree.runtime.registry import SchemaRegistry
from fieldtree.runtime.service import FieldtreeEngine
from fieldtree.specs import BlockSpec, CollectionSpec, FieldHooks, FieldSpec

DEFAULT_TEXT = "default-text"
ARRAY_DEFAULT = [{"text": "row one"}, {"text": "row two"}]
GROUP_DEFAULT_PARENT = "Parent value"
GROUP_DEFAULT_CHILD = "Child value"
NAMED_TAB_DEFAULT = "default text inside of a named tab"


async def _default_async(ctx):
    await asyncio.sleep(0.001)
    return DEFAULT_TEXT


async def _field_with_default_value(ctx):
    await asyncio.sleep(0.001)
    return "some-value"


# ---------------------------------------------------------------------------
# Collections
# ---------------------------------------------------------------------------


def text_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="text-fields",
        default_sort="id",
        fields=[
            FieldSpec(kind="text", name="text", required=True),
            FieldSpec(kind="text", name="localizedText", localized=True),
            FieldSpec(kind="text", name="defaultFunction", default=lambda ctx: DEFAULT_TEXT),
            FieldSpec(kind="text", name="defaultAsync", default=_default_async),
            FieldSpec(kind="text", name="fieldWithDefaultValue", default=_field_with_default_value),
            FieldSpec(
                kind="text",
                name="dependentOnFieldWithDefaultValue",
                hooks=FieldHooks(
                    before_change=[lambda ctx: ctx.data.get("fieldWithDefaultValue") or ""]
                ),
            ),
            FieldSpec(kind="text", name="customError", min_length=3),
            FieldSpec(kind="text", name="hasMany", has_many=True),
            FieldSpec(kind="text", name="localizedHasMany", has_many=True, localized=True),
        ],
    )


def number_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="number-fields",
        fields=[
            FieldSpec(kind="number", name="number"),
            FieldSpec(kind="number", name="min", min=10),
            FieldSpec(kind="number", name="max", max=10),
            FieldSpec(kind="number", name="positiveNumber", min=0),
            FieldSpec(kind="number", name="negativeNumber", max=0),
            FieldSpec(kind="number", name="decimalMin", min=0.5),
            FieldSpec(kind="number", name="decimalMax", max=0.5),
            FieldSpec(kind="number", name="defaultNumber", default=5),
            FieldSpec(kind="number", name="hasMany", has_many=True, min_rows=1, max_rows=3),
            FieldSpec(kind="number", name="localizedHasMany", has_many=True, localized=True),
        ],
    )


def select_fields() -> CollectionSpec:
    options = ["one", "two", "three"]
    return CollectionSpec(
        slug="select-fields",
        fields=[
            FieldSpec(kind="select", name="select", options=options),
            FieldSpec(kind="select", name="selectHasMany", has_many=True, options=options),
            FieldSpec(
                kind="select",
                name="selectHasManyLocalized",
                has_many=True,
                localized=True,
                options=options,
            ),
        ],
    )


def json_fields() -> CollectionSpec:
    return CollectionSpec(slug="json-fields", fields=[FieldSpec(kind="json", name="json")])


def point_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="point-fields",
        fields=[
            FieldSpec(kind="point", name="point", required=True, unique=True),
            FieldSpec(kind="point", name="camelCasePoint"),
            FieldSpec(
                kind="group",
                name="group",
                fields=[FieldSpec(kind="point", name="point")],
            ),
        ],
    )


def group_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="group-fields",
        fields=[
            FieldSpec(
                kind="group",
                name="group",
                fields=[
                    FieldSpec(kind="text", name="text"),
                    FieldSpec(kind="text", name="defaultParent", default=GROUP_DEFAULT_PARENT),
                    FieldSpec(kind="text", name="defaultChild", default=GROUP_DEFAULT_CHILD),
                    FieldSpec(
                        kind="group",
                        name="subGroup",
                        fields=[
                            FieldSpec(kind="text", name="textWithinGroup"),
                            FieldSpec(
                                kind="array",
                                name="arrayWithinGroup",
                                fields=[FieldSpec(kind="text", name="textWithinArray")],
                            ),
                        ],
                    ),
                ],
            ),
            FieldSpec(
                kind="group",
                name="potentiallyEmptyGroup",
                fields=[FieldSpec(kind="text", name="text")],
            ),
        ],
    )


def _set_true(ctx):
    return True


def tabs_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="tabs-fields",
        fields=[
            FieldSpec(
                kind="tabs",
                fields=[
                    FieldSpec(
                        kind="group",
                        label="Tab with text",
                        fields=[FieldSpec(kind="text", name="unnamedTabText")],
                    ),
                    FieldSpec(
                        kind="group",
                        name="tab",
                        fields=[
                            FieldSpec(kind="text", name="text"),
                            FieldSpec(kind="text", name="defaultValue", default=NAMED_TAB_DEFAULT),
                        ],
                    ),
                    FieldSpec(
                        kind="group",
                        name="namedTabWithDefaultValue",
                        fields=[
                            FieldSpec(kind="text", name="defaultValue", default=NAMED_TAB_DEFAULT)
                        ],
                    ),
                    FieldSpec(
                        kind="group",
                        name="localizedTab",
                        localized=True,
                        fields=[FieldSpec(kind="text", name="text")],
                    ),
                    FieldSpec(
                        kind="group",
                        name="hooksTab",
                        fields=[
                            FieldSpec(
                                kind="checkbox",
                                name="beforeValidate",
                                hooks=FieldHooks(before_validate=[_set_true]),
                            ),
                            FieldSpec(
                                kind="checkbox",
                                name="beforeChange",
                                hooks=FieldHooks(before_change=[_set_true]),
                            ),
                            FieldSpec(
                                kind="checkbox",
                                name="afterRead",
                                hooks=FieldHooks(after_read=[_set_true]),
                            ),
                        ],
                    ),
                ],
            ),
        ],
    )


def array_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="array-fields",
        fields=[
            FieldSpec(
                kind="array",
                name="items",
                required=True,
                default=ARRAY_DEFAULT,
                fields=[
                    FieldSpec(kind="text", name="text", required=True),
                    FieldSpec(
                        kind="array",
                        name="subArray",
                        fields=[FieldSpec(kind="text", name="text")],
                    ),
                ],
            ),
            FieldSpec(
                kind="array",
                name="localized",
                localized=True,
                default=ARRAY_DEFAULT,
                fields=[FieldSpec(kind="text", name="text", required=True)],
            ),
            FieldSpec(
                kind="array",
                name="rowsWithLocalizedText",
                min_rows=0,
                max_rows=2,
                fields=[FieldSpec(kind="text", name="label", localized=True)],
            ),
        ],
    )


def _content_blocks() -> list[BlockSpec]:
    return [
        BlockSpec(slug="content", fields=[FieldSpec(kind="text", name="text", required=True)]),
        BlockSpec(slug="number", fields=[FieldSpec(kind="number", name="number")]),
        BlockSpec(slug="richText", fields=[FieldSpec(kind="richText", name="richText")]),
        BlockSpec(
            slug="subBlocks",
            fields=[
                FieldSpec(
                    kind="blocks",
                    name="subBlocks",
                    blocks=[
                        BlockSpec(slug="text", fields=[FieldSpec(kind="text", name="text")]),
                        BlockSpec(slug="number", fields=[FieldSpec(kind="number", name="number")]),
                    ],
                )
            ],
        ),
    ]


def block_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="block-fields",
        fields=[
            FieldSpec(kind="blocks", name="blocks", blocks=_content_blocks()),
            FieldSpec(
                kind="blocks", name="localizedBlocks", localized=True, blocks=_content_blocks()
            ),
            FieldSpec(
                kind="blocks",
                name="relationshipBlocks",
                blocks=[
                    BlockSpec(
                        slug="relationships",
                        fields=[
                            FieldSpec(
                                kind="relationship", name="relationship", relation_to="text-fields"
                            )
                        ],
                    )
                ],
            ),
        ],
    )


def relationship_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="relationship-fields",
        fields=[
            FieldSpec(kind="text", name="text"),
            FieldSpec(
                kind="relationship",
                name="relationship",
                required=True,
                relation_to=["text-fields", "array-fields"],
            ),
            FieldSpec(
                kind="relationship", name="relationToSelf", relation_to="relationship-fields"
            ),
            FieldSpec(
                kind="array",
                name="array",
                fields=[
                    FieldSpec(kind="relationship", name="relationship", relation_to="text-fields")
                ],
            ),
        ],
    )


def rich_text_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="rich-text-fields",
        fields=[
            FieldSpec(kind="text", name="title"),
            FieldSpec(kind="richText", name="richText"),
        ],
    )


def indexed_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="indexed-fields",
        fields=[
            FieldSpec(kind="text", name="text", index=True),
            FieldSpec(kind="text", name="uniqueText", unique=True),
            FieldSpec(
                kind="group",
                name="group",
                fields=[
                    FieldSpec(kind="text", name="localizedUnique", unique=True, localized=True),
                ],
            ),
            FieldSpec(kind="text", name="tags", has_many=True, unique=True),
            FieldSpec(
                kind="array",
                name="rows",
                fields=[FieldSpec(kind="text", name="code", unique=True)],
            ),
        ],
    )


def date_fields() -> CollectionSpec:
    return CollectionSpec(
        slug="date-fields",
        fields=[FieldSpec(kind="date", name="default", required=True)],
    )


ALL_COLLECTIONS = [
    text_fields,
    number_fields,
    select_fields,
    json_fields,
    point_fields,
    group_fields,
    tabs_fields,
    array_fields,
    block_fields,
    relationship_fields,
    rich_text_fields,
    indexed_fields,
    date_fields,
]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def localization() -> LocalizationConfig:
    return LocalizationConfig(locales=["en", "es"], default_locale="en")


@pytest.fixture
def config(localization: LocalizationConfig) -> FieldtreeConfig:
    return FieldtreeConfig(localization=localization)


@pytest.fixture
def collections() -> list[CollectionSpec]:
    return [make() for make in ALL_COLLECTIONS]


@pytest.fixture
def registry(collections: list[CollectionSpec], localization: LocalizationConfig) -> SchemaRegistry:
    return SchemaRegistry(collections, localization)


@pytest.fixture
def store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def engine(
    collections: list[CollectionSpec], config: FieldtreeConfig, store: MemoryDocumentStore
) -> FieldtreeEngine:
    return FieldtreeEngine(collections, config=config, store=store)
