"""Tests for localization expand/collapse."""

from __future__ import annotations

import pytest

from fieldtree.config import LocalizationConfig
from fieldtree.errors import StructuralSchemaError
from fieldtree.runtime.localization import LocalizationCollapser, LocalizationExpander
from fieldtree.specs import FieldSpec


@pytest.fixture
def expander(localization):
    return LocalizationExpander(localization, "tests")


@pytest.fixture
def collapser(localization):
    return LocalizationCollapser(localization, "tests")


# ---------------------------------------------------------------------------
# Expand
# ---------------------------------------------------------------------------


class TestExpand:
    def test_localized_scalar_gets_slot(self, expander, registry):
        fields = registry.get("text-fields").fields
        stored = expander.expand(fields, {"text": "t", "localizedText": "hello"}, None, "en")
        assert stored == {"text": "t", "localizedText": {"en": "hello", "es": None}}

    def test_other_locale_preserved(self, expander, registry):
        fields = registry.get("text-fields").fields
        existing = {"text": "t", "localizedText": {"en": "hello", "es": None}}
        stored = expander.expand(fields, {"localizedText": "hola"}, existing, "es")
        assert stored["localizedText"] == {"en": "hello", "es": "hola"}
        assert stored["text"] == "t"
        assert existing["localizedText"]["es"] is None

    def test_default_locale_used_when_none(self, expander, registry):
        fields = registry.get("text-fields").fields
        stored = expander.expand(fields, {"localizedText": "hello"}, None, None)
        assert stored["localizedText"]["en"] == "hello"

    def test_all_writes_each_provided_slot(self, expander, registry):
        fields = registry.get("text-fields").fields
        existing = {"localizedText": {"en": "hello", "es": "hola"}}
        stored = expander.expand(fields, {"localizedText": {"es": "buenas"}}, existing, "all")
        assert stored["localizedText"] == {"en": "hello", "es": "buenas"}

    def test_unknown_locale(self, expander, registry):
        with pytest.raises(StructuralSchemaError, match="Unknown locale 'fr'"):
            expander.expand(registry.get("text-fields").fields, {}, None, "fr")

    def test_rows_matched_by_id_keep_other_locale(self, expander, registry):
        fields = registry.get("array-fields").fields
        existing = {
            "rowsWithLocalizedText": [
                {"id": "r1", "label": {"en": "one", "es": "uno"}},
                {"id": "r2", "label": {"en": "two", "es": "dos"}},
            ]
        }
        data = {"rowsWithLocalizedText": [{"id": "r2", "label": "TWO"}, {"id": "r3", "label": "x"}]}
        stored = expander.expand(fields, data, existing, "en")
        assert stored["rowsWithLocalizedText"] == [
            {"id": "r2", "label": {"en": "TWO", "es": "dos"}},
            {"id": "r3", "label": {"en": "x", "es": None}},
        ]

    def test_rows_without_stored_id_match_by_index(self, expander, registry):
        fields = registry.get("array-fields").fields
        existing = {
            "rowsWithLocalizedText": [
                {"id": "r1", "label": {"en": "one", "es": "uno"}},
                {"id": "r2", "label": {"en": "two", "es": "dos"}},
            ]
        }
        data = {"rowsWithLocalizedText": [{"id": "fresh", "label": "ONE"}]}
        stored = expander.expand(fields, data, existing, "en")
        assert stored["rowsWithLocalizedText"] == [
            {"id": "r1", "label": {"en": "ONE", "es": "uno"}},
        ]

    def test_index_match_skips_rows_claimed_by_id(self, expander, registry):
        fields = registry.get("array-fields").fields
        existing = {
            "rowsWithLocalizedText": [
                {"id": "r1", "label": {"en": "one", "es": "uno"}},
                {"id": "r2", "label": {"en": "two", "es": "dos"}},
            ]
        }
        data = {"rowsWithLocalizedText": [{"id": "new", "label": "zero"}, {"id": "r1"}]}
        stored = expander.expand(fields, data, existing, "en")
        assert stored["rowsWithLocalizedText"] == [
            {"id": "new", "label": {"en": "zero", "es": None}},
            {"id": "r1", "label": {"en": "one", "es": "uno"}},
        ]

    def test_index_match_requires_same_block_type(self, expander, registry):
        fields = registry.get("block-fields").fields
        existing = {"blocks": [{"id": "b1", "blockType": "content", "text": "x"}]}
        data = {"blocks": [{"id": "n1", "blockType": "number", "number": 3}]}
        stored = expander.expand(fields, data, existing, "en")
        assert stored["blocks"] == [{"id": "n1", "blockType": "number", "number": 3}]

    def test_localized_array_not_fanned_twice(self, expander, registry):
        fields = registry.get("array-fields").fields
        stored = expander.expand(
            fields, {"localized": [{"id": "a", "text": "row"}]}, None, "es"
        )
        assert stored["localized"] == {"en": None, "es": [{"id": "a", "text": "row"}]}

    def test_localized_blocks_slot(self, expander, registry):
        fields = registry.get("block-fields").fields
        rows = [{"id": "b1", "blockType": "content", "text": "green"}]
        stored = expander.expand(fields, {"localizedBlocks": rows}, None, "en")
        assert stored["localizedBlocks"]["en"] == rows
        assert stored["localizedBlocks"]["es"] is None

    def test_localization_disabled_stores_plain_values(self, registry):
        expander = LocalizationExpander(LocalizationConfig(), "text-fields")
        stored = expander.expand(
            registry.get("text-fields").fields, {"localizedText": "hello"}, None, "en"
        )
        assert stored == {"localizedText": "hello"}


# ---------------------------------------------------------------------------
# Collapse
# ---------------------------------------------------------------------------


class TestCollapse:
    def test_picks_requested_slot(self, collapser, registry):
        stored = {"id": "1", "localizedText": {"en": "hello", "es": "hola"}}
        doc = collapser.collapse(registry.get("text-fields").fields, stored, "es")
        assert doc == {"id": "1", "localizedText": "hola"}

    def test_fallback_to_default_locale(self, collapser, registry):
        stored = {"localizedText": {"en": "hello", "es": None}}
        doc = collapser.collapse(registry.get("text-fields").fields, stored, "es")
        assert doc["localizedText"] == "hello"

    def test_fallback_disabled(self, collapser, registry):
        stored = {"localizedText": {"en": "hello", "es": None}}
        doc = collapser.collapse(
            registry.get("text-fields").fields, stored, "es", fallback_locale=False
        )
        assert doc["localizedText"] is None

    def test_explicit_fallback_locale(self, registry):
        collapser = LocalizationCollapser(
            LocalizationConfig(locales=["en", "es", "de"], default_locale="en"), "text-fields"
        )
        stored = {"localizedText": {"en": "hello", "es": None, "de": "hallo"}}
        doc = collapser.collapse(
            registry.get("text-fields").fields, stored, "es", fallback_locale="de"
        )
        assert doc["localizedText"] == "hallo"

    def test_all_returns_every_slot(self, collapser, registry):
        stored = {"localizedHasMany": {"en": ["a", "b"], "es": ["c"]}}
        doc = collapser.collapse(registry.get("text-fields").fields, stored, "all")
        assert doc["localizedHasMany"] == {"en": ["a", "b"], "es": ["c"]}

    def test_rows_collapse_inner_localized_fields(self, collapser, registry):
        stored = {
            "rowsWithLocalizedText": [
                {"id": "r1", "label": {"en": "one", "es": "uno"}},
                {"id": "r2", "label": {"en": "two", "es": None}},
            ]
        }
        doc = collapser.collapse(registry.get("array-fields").fields, stored, "es")
        assert doc["rowsWithLocalizedText"] == [
            {"id": "r1", "label": "uno"},
            {"id": "r2", "label": "two"},
        ]

    def test_block_rows_keep_row_keys(self, collapser, registry):
        row = {"id": "b1", "blockType": "content", "blockName": "hero", "text": "green"}
        stored = {"localizedBlocks": {"en": [row], "es": None}}
        doc = collapser.collapse(registry.get("block-fields").fields, stored, "en")
        assert doc["localizedBlocks"] == [row]

    def test_missing_field_stays_absent(self, collapser, registry):
        doc = collapser.collapse(registry.get("text-fields").fields, {"text": "t"}, "en")
        assert "localizedText" not in doc

    def test_unknown_locale(self, collapser, registry):
        with pytest.raises(StructuralSchemaError, match="Unknown locale"):
            collapser.collapse(registry.get("text-fields").fields, {}, "fr")

    def test_round_trip_per_locale(self, expander, collapser, registry):
        fields = [FieldSpec(kind="text", name="title", localized=True)]
        stored = expander.expand(fields, {"title": "hello"}, None, "en")
        stored = expander.expand(fields, {"title": "hola"}, stored, "es")
        assert collapser.collapse(fields, stored, "en") == {"title": "hello"}
        assert collapser.collapse(fields, stored, "es") == {"title": "hola"}
