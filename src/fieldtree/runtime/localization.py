"""
Localization expander/collapser.

Write side (expand): merge a single-locale document into the stored
document, so that every localized field holds a mapping keyed by locale
code and only the active locale's slot changes. Rows of arrays/blocks are
matched to stored rows by id, so localized fields inside a row keep their
other-locale values even when the row sequence is replaced wholesale.

Read side (collapse): turn a stored document into the application shape
for a requested locale, substituting the first populated fallback locale
when the requested slot is empty, or return every slot for "all".

A localized field nested inside a localized ancestor is stored once per
ancestor slot; it is not fanned out a second time.
"""

from __future__ import annotations

import copy
from typing import Any

from fieldtree.config import LocalizationConfig
from fieldtree.errors import make_structural_error
from fieldtree.runtime.traversal import FieldVisitor
from fieldtree.specs import (
    BLOCK_NAME_KEY,
    BLOCK_TYPE_KEY,
    ROW_ID_KEY,
    FieldSpec,
    iter_named_fields,
)

ALL_LOCALES = "all"

_ROW_KEYS = (ROW_ID_KEY, BLOCK_TYPE_KEY, BLOCK_NAME_KEY)


class _LocaleAware:
    """Shared locale bookkeeping for both directions."""

    def __init__(self, config: LocalizationConfig, collection: str | None = None):
        self.config = config
        self.collection = collection

    def fans_out(self, field: FieldSpec, inside_localized: bool) -> bool:
        return field.localized and self.config.enabled and not inside_localized

    def check_locale(self, locale: str | None) -> str | None:
        """Return the effective locale; None when localization is off."""
        if not self.config.enabled:
            return None
        if locale is None:
            return self.config.default_locale
        if locale != ALL_LOCALES and locale not in self.config.locales:
            raise make_structural_error(
                f"Unknown locale '{locale}' (configured: {', '.join(self.config.locales)})",
                collection=self.collection,
            )
        return locale

    def empty_slots(self) -> dict[str, Any]:
        return {code: None for code in self.config.locales}


# =============================================================================
# Expand (write)
# =============================================================================


class LocalizationExpander(_LocaleAware, FieldVisitor):
    """
    Build the stored shape for a write.

    Example:
        expander = LocalizationExpander(config.localization, "text-fields")
        stored = expander.expand(fields, {"localizedText": "hola"}, existing, "es")
        # stored["localizedText"] == {"en": "hello", "es": "hola"}
    """

    def expand(
        self,
        fields: list[FieldSpec],
        data: dict[str, Any],
        existing: dict[str, Any] | None,
        locale: str | None,
    ) -> dict[str, Any]:
        active = self.check_locale(locale)
        stored = copy.deepcopy(existing) if existing else {}
        self._expand_fields(fields, data, stored, active, inside_localized=False)
        return stored

    def _expand_fields(
        self,
        fields: list[FieldSpec],
        data: dict[str, Any],
        stored: dict[str, Any],
        locale: str | None,
        inside_localized: bool,
    ) -> None:
        for field in iter_named_fields(fields):
            name = field.name or ""
            if name not in data:
                continue
            value = data[name]
            if not self.fans_out(field, inside_localized):
                stored[name] = self.visit(field, value, stored.get(name), locale, inside_localized)
                continue

            current = stored.get(name)
            slots = {**self.empty_slots(), **(current if isinstance(current, dict) else {})}
            if locale == ALL_LOCALES:
                incoming = value if isinstance(value, dict) else {}
                for code in self.config.locales:
                    if code in incoming:
                        slots[code] = self.visit(field, incoming[code], slots.get(code), code, True)
            else:
                slots[locale] = self.visit(field, value, slots.get(locale), locale, True)
            stored[name] = slots

    def visit_scalar(
        self, field: FieldSpec, value: Any, stored: Any, locale: str | None, inside: bool
    ) -> Any:
        return copy.deepcopy(value)

    def visit_group(
        self, field: FieldSpec, value: Any, stored: Any, locale: str | None, inside: bool
    ) -> Any:
        if not isinstance(value, dict):
            return copy.deepcopy(value)
        target = copy.deepcopy(stored) if isinstance(stored, dict) else {}
        self._expand_fields(field.fields, value, target, locale, inside)
        return target

    def _expand_rows(
        self,
        field: FieldSpec,
        rows: Any,
        stored: Any,
        locale: str | None,
        inside: bool,
    ) -> Any:
        """
        Merge incoming rows into stored rows.

        Rows match by id; a row whose id is not stored takes the place of
        the unclaimed stored row at the same index, adopting its id, so
        other locales' values in that row survive.
        """
        if not isinstance(rows, list):
            return copy.deepcopy(rows)
        previous_rows = stored if isinstance(stored, list) else []
        previous_rows = [row for row in previous_rows if isinstance(row, dict)]
        by_id = {row.get(ROW_ID_KEY): row for row in previous_rows if row.get(ROW_ID_KEY)}
        claimed = {
            row.get(ROW_ID_KEY)
            for row in rows
            if isinstance(row, dict) and row.get(ROW_ID_KEY) in by_id
        }
        result = []
        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                continue
            previous = by_id.get(row.get(ROW_ID_KEY))
            adopted_id = None
            if previous is None and index < len(previous_rows):
                candidate = previous_rows[index]
                if candidate.get(ROW_ID_KEY) not in claimed:
                    previous, adopted_id = candidate, candidate.get(ROW_ID_KEY)
            if previous is not None and previous.get(BLOCK_TYPE_KEY) != row.get(BLOCK_TYPE_KEY):
                previous, adopted_id = None, None
            target = copy.deepcopy(previous) if previous is not None else {}
            for key in _ROW_KEYS:
                if key in row:
                    target[key] = row[key]
            if adopted_id:
                target[ROW_ID_KEY] = adopted_id
            if field.blocks:
                block = field.get_block(row.get(BLOCK_TYPE_KEY))
                row_fields = block.fields if block is not None else []
            else:
                row_fields = field.fields
            self._expand_fields(row_fields, row, target, locale, inside)
            result.append(target)
        return result

    def visit_array(
        self, field: FieldSpec, value: Any, stored: Any, locale: str | None, inside: bool
    ) -> Any:
        return self._expand_rows(field, value, stored, locale, inside)

    def visit_blocks(
        self, field: FieldSpec, value: Any, stored: Any, locale: str | None, inside: bool
    ) -> Any:
        return self._expand_rows(field, value, stored, locale, inside)


# =============================================================================
# Collapse (read)
# =============================================================================


class LocalizationCollapser(_LocaleAware, FieldVisitor):
    """
    Build the application shape for a read.

    Example:
        collapser = LocalizationCollapser(config.localization, "text-fields")
        doc = collapser.collapse(fields, stored, "es")
        doc = collapser.collapse(fields, stored, "all")
    """

    def collapse(
        self,
        fields: list[FieldSpec],
        stored: dict[str, Any],
        locale: str | None,
        fallback_locale: str | list[str] | bool | None = None,
    ) -> dict[str, Any]:
        """
        Args:
            fields: Field tree of the collection
            stored: Stored document
            locale: Locale code, "all", or None for the default locale
            fallback_locale: Override the configured fallback chain; a code,
                a list of codes, or False to disable fallback
        """
        active = self.check_locale(locale)
        chain = self._chain(active, fallback_locale)
        return self._collapse_fields(fields, stored, dict(stored), active, chain, False)

    def _chain(
        self, locale: str | None, fallback_locale: str | list[str] | bool | None
    ) -> list[str]:
        if fallback_locale is False:
            return []
        if fallback_locale is None or fallback_locale is True:
            return self.config.fallback_chain(locale)
        codes = [fallback_locale] if isinstance(fallback_locale, str) else list(fallback_locale)
        for code in codes:
            self.check_locale(code)
        return [c for c in codes if c != locale]

    def _collapse_fields(
        self,
        fields: list[FieldSpec],
        stored: dict[str, Any],
        out: dict[str, Any],
        locale: str | None,
        chain: list[str],
        inside_localized: bool,
    ) -> dict[str, Any]:
        for field in iter_named_fields(fields):
            name = field.name or ""
            if name not in stored:
                # Absent after access stripping or never written
                continue
            value = stored[name]
            if not self.fans_out(field, inside_localized) or not isinstance(value, dict):
                out[name] = self.visit(field, value, locale, chain, inside_localized)
            elif locale == ALL_LOCALES:
                out[name] = {
                    code: self.visit(field, value.get(code), code, [], True)
                    for code in self.config.locales
                }
            else:
                out[name] = self.visit(field, self._pick(value, locale, chain), locale, chain, True)
        return out

    def _pick(self, slots: dict[str, Any], locale: str | None, chain: list[str]) -> Any:
        value = slots.get(locale) if locale else None
        if value is not None:
            return value
        for code in chain:
            if slots.get(code) is not None:
                return slots[code]
        return None

    def visit_scalar(
        self, field: FieldSpec, value: Any, locale: str | None, chain: list[str], inside: bool
    ) -> Any:
        return copy.deepcopy(value)

    def visit_group(
        self, field: FieldSpec, value: Any, locale: str | None, chain: list[str], inside: bool
    ) -> Any:
        if not isinstance(value, dict):
            return copy.deepcopy(value)
        return self._collapse_fields(field.fields, value, {}, locale, chain, inside)

    def _collapse_rows(
        self, field: FieldSpec, rows: Any, locale: str | None, chain: list[str], inside: bool
    ) -> Any:
        if not isinstance(rows, list):
            return copy.deepcopy(rows)
        result = []
        for row in rows:
            if not isinstance(row, dict):
                continue
            out = {key: row[key] for key in _ROW_KEYS if key in row}
            if field.blocks:
                block = field.get_block(row.get(BLOCK_TYPE_KEY))
                row_fields = block.fields if block is not None else []
            else:
                row_fields = field.fields
            result.append(self._collapse_fields(row_fields, row, out, locale, chain, inside))
        return result

    def visit_array(
        self, field: FieldSpec, value: Any, locale: str | None, chain: list[str], inside: bool
    ) -> Any:
        return self._collapse_rows(field, value, locale, chain, inside)

    def visit_blocks(
        self, field: FieldSpec, value: Any, locale: str | None, chain: list[str], inside: bool
    ) -> Any:
        return self._collapse_rows(field, value, locale, chain, inside)
