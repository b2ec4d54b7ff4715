"""
Document store interface and in-memory implementation.

The store is the storage collaborator of the write and query pipelines.
It receives documents already in stored shape (locale-keyed slots, rows
with ids) and filters built by the QueryTranslator; it knows nothing
about field schemas.

MemoryDocumentStore evaluates the filter tree directly and is used by
the test suite and for embedding without a database.
"""

from __future__ import annotations

import asyncio
import copy
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from typing import Any
from uuid import uuid4

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
from fieldtree.runtime.logging import get_logger
from fieldtree.specs import ID_FIELD

logger = get_logger("Store")


# =============================================================================
# Errors and results
# =============================================================================


class DuplicateKeyError(Exception):
    """Raised when a write would violate a unique index."""

    def __init__(self, collection: str, path: str, value: Any = None):
        self.collection = collection
        self.path = path
        self.value = value
        super().__init__(f"Duplicate value for unique index {collection}.{path}")


@dataclass
class PaginatedDocs:
    """One page of a find() result."""

    docs: list[dict[str, Any]] = field(default_factory=list)
    total_docs: int = 0
    page: int = 1
    limit: int = 10
    total_pages: int = 1

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_prev_page(self) -> bool:
        return self.page > 1


# =============================================================================
# Interface
# =============================================================================


class DocumentStore(ABC):
    """Storage primitives used by the collection service."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: FilterNode | None = None,
        page: int = 1,
        limit: int | None = 10,
        sort: str | None = None,
    ) -> PaginatedDocs:
        """Find documents matching a filter; limit None returns every match."""

    @abstractmethod
    async def find_ids(self, collection: str, filter: FilterNode | None = None) -> list[Any]:
        """Identifiers of every matching document."""

    @abstractmethod
    async def find_by_id(self, collection: str, id: Any) -> dict[str, Any] | None:
        """Get a stored document, or None."""

    @abstractmethod
    async def create(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]:
        """
        Insert a document, assigning an id if it has none.

        Raises:
            DuplicateKeyError: A unique index already holds one of its values
        """

    @abstractmethod
    async def update(self, collection: str, id: Any, doc: dict[str, Any]) -> dict[str, Any]:
        """
        Replace a stored document.

        Raises:
            DuplicateKeyError: A unique index already holds one of its values
            KeyError: No document with this id
        """

    @abstractmethod
    async def ensure_unique_index(
        self, collection: str, path: str, multikey: bool = False
    ) -> None:
        """
        Declare a sparse unique index on a storage path.

        A multikey index treats each element of a sequence value as its own
        key; otherwise a sequence (such as a point) is one key.
        """


# =============================================================================
# Filter evaluation
# =============================================================================


def values_at(doc: Any, path: str) -> list[Any]:
    """
    Every value reachable at a dot path.

    Sequences met along the way are crossed element by element, so
    `items.title` yields the title of every row.
    """
    current = [doc]
    for segment in path.split("."):
        found: list[Any] = []
        for value in current:
            if isinstance(value, dict):
                if segment in value:
                    found.append(value[segment])
            elif isinstance(value, list):
                if segment.isdigit() and int(segment) < len(value):
                    found.append(value[int(segment)])
                    continue
                for item in value:
                    if isinstance(item, dict) and segment in item:
                        found.append(item[segment])
        current = found
    return current


def flatten_values(values: list[Any]) -> list[Any]:
    """Splice sequence values into one flat list."""
    flat: list[Any] = []
    for value in values:
        if isinstance(value, list):
            flat.extend(value)
        else:
            flat.append(value)
    return flat


def index_values(doc: Any, path: str, multikey: bool = False) -> list[Any]:
    """
    Values a unique index holds for one document.

    Sequences at the leaf are one value (a point) unless the index is
    multikey (a has_many field), in which case each element is a value.
    """
    values = values_at(doc, path)
    return flatten_values(values) if multikey else values


def _candidates(values: list[Any]) -> list[Any]:
    """Each value, followed by the elements of sequence values."""
    found: list[Any] = []
    for value in values:
        found.append(value)
        if isinstance(value, list):
            found.extend(value)
    return found


def _as_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def _comparable(left: Any, right: Any) -> tuple[Any, Any] | None:
    """Coerce a stored value and an operand to a comparable pair."""
    numbers = (int, float)
    if isinstance(left, bool) or isinstance(right, bool):
        return None
    if isinstance(left, numbers) and isinstance(right, numbers):
        return left, right
    if isinstance(left, datetime | date) or isinstance(right, datetime | date):
        a, b = _as_datetime(left), _as_datetime(right)
        return (a, b) if a is not None and b is not None else None
    if isinstance(left, str) and isinstance(right, str):
        a, b = _as_datetime(left), _as_datetime(right)
        if a is not None and b is not None:
            return a, b
        return left, right
    return None


def _equal(left: Any, right: Any) -> bool:
    if left == right:
        return True
    pair = _comparable(left, right)
    return pair is not None and pair[0] == pair[1]


def _like(value: Any, pattern: Any) -> bool:
    """Every word of the pattern occurs in the value, ignoring case."""
    if not isinstance(value, str) or not isinstance(pattern, str):
        return False
    words = pattern.split() or [pattern]
    return all(re.search(re.escape(word), value, re.IGNORECASE) for word in words)


def _compare(operator: Operator, value: Any, operand: Any) -> bool:
    pair = _comparable(value, operand)
    if pair is None:
        return False
    left, right = pair
    if operator == Operator.GREATER_THAN:
        return left > right  # type: ignore[no-any-return]
    if operator == Operator.GREATER_THAN_EQUAL:
        return left >= right  # type: ignore[no-any-return]
    if operator == Operator.LESS_THAN:
        return left < right  # type: ignore[no-any-return]
    return left <= right  # type: ignore[no-any-return]


def _evaluate_condition(node: Condition, doc: dict[str, Any]) -> bool:
    values = _candidates(values_at(doc, node.path))
    present = [v for v in values if v is not None and v != []]
    operator, operand = node.operator, node.value

    if operator == Operator.EXISTS:
        return bool(present) == bool(operand)
    if operator == Operator.EQUALS:
        if operand is None:
            return not present
        return any(_equal(v, operand) for v in present)
    if operator == Operator.NOT_EQUALS:
        if operand is None:
            return bool(present)
        return not any(_equal(v, operand) for v in present)
    if operator == Operator.IN:
        return any(_equal(v, candidate) for v in present for candidate in operand)
    if operator == Operator.NOT_IN:
        return not any(_equal(v, candidate) for v in present for candidate in operand)
    if operator == Operator.LIKE:
        return any(_like(v, operand) for v in present)
    return any(_compare(operator, v, operand) for v in present)


def matches(node: FilterNode | None, doc: dict[str, Any]) -> bool:
    """Evaluate a filter tree against one stored document (or row)."""
    if node is None or isinstance(node, MatchAll):
        return True
    if isinstance(node, MatchNone):
        return False
    if isinstance(node, And):
        return all(matches(child, doc) for child in node.children)
    if isinstance(node, Or):
        return any(matches(child, doc) for child in node.children)
    if isinstance(node, ElemMatch):
        elements = flatten_values(values_at(doc, node.path))
        return any(isinstance(e, dict) and matches(node.filter, e) for e in elements)
    return _evaluate_condition(node, doc)


def _sort_key(path: str):
    # Missing values sort last; numbers and dates before other values
    def key(doc: dict[str, Any]) -> tuple[int, float, str]:
        values = [v for v in flatten_values(values_at(doc, path)) if v is not None]
        if not values:
            return (2, 0.0, "")
        value = values[0]
        if isinstance(value, int | float) and not isinstance(value, bool):
            return (0, float(value), "")
        as_dt = _as_datetime(value)
        if as_dt is not None:
            return (0, as_dt.timestamp(), "")
        return (1, 0.0, str(value))

    return key


# =============================================================================
# Memory store
# =============================================================================


class MemoryDocumentStore(DocumentStore):
    """
    In-process document store.

    Documents are deep-copied on the way in and out, so callers never
    share state with stored documents.

    Example:
        store = MemoryDocumentStore()
        await store.ensure_unique_index("indexed-fields", "text")
        doc = await store.create("indexed-fields", {"text": "a"})
    """

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}
        self._unique: dict[str, dict[str, bool]] = {}
        self._lock = asyncio.Lock()

    def _docs(self, collection: str) -> dict[str, dict[str, Any]]:
        return self._collections.setdefault(collection, {})

    async def ensure_unique_index(
        self, collection: str, path: str, multikey: bool = False
    ) -> None:
        self._unique.setdefault(collection, {})[path] = multikey
        logger.debug(f"Unique index on {collection}.{path}")

    def _check_unique(self, collection: str, doc: dict[str, Any], exclude: Any = None) -> None:
        for path, multikey in sorted(self._unique.get(collection, {}).items()):
            values = [v for v in index_values(doc, path, multikey) if v is not None]
            if not values:
                # Sparse: absent values never conflict
                continue
            for other_id, other in self._docs(collection).items():
                if other_id == exclude:
                    continue
                taken = index_values(other, path, multikey)
                for value in values:
                    if value in taken:
                        raise DuplicateKeyError(collection, path, value)

    async def create(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            stored = copy.deepcopy(doc)
            doc_id = stored.get(ID_FIELD) or uuid4().hex
            stored[ID_FIELD] = doc_id
            if doc_id in self._docs(collection):
                raise DuplicateKeyError(collection, ID_FIELD, doc_id)
            self._check_unique(collection, stored)
            self._docs(collection)[doc_id] = stored
        logger.debug(f"Created {collection}/{doc_id}")
        return copy.deepcopy(stored)

    async def update(self, collection: str, id: Any, doc: dict[str, Any]) -> dict[str, Any]:
        async with self._lock:
            docs = self._docs(collection)
            if id not in docs:
                raise KeyError(id)
            stored = copy.deepcopy(doc)
            stored[ID_FIELD] = id
            self._check_unique(collection, stored, exclude=id)
            docs[id] = stored
        logger.debug(f"Updated {collection}/{id}")
        return copy.deepcopy(stored)

    async def find_by_id(self, collection: str, id: Any) -> dict[str, Any] | None:
        doc = self._docs(collection).get(id)
        return copy.deepcopy(doc) if doc is not None else None

    def _matching(
        self, collection: str, filter: FilterNode | None, sort: str | None = None
    ) -> list[dict[str, Any]]:
        docs = [d for d in self._docs(collection).values() if matches(filter, d)]
        if sort:
            descending = sort.startswith("-")
            docs.sort(key=_sort_key(sort.lstrip("-")), reverse=descending)
        return docs

    async def find_ids(self, collection: str, filter: FilterNode | None = None) -> list[Any]:
        return [d[ID_FIELD] for d in self._matching(collection, filter)]

    async def find(
        self,
        collection: str,
        filter: FilterNode | None = None,
        page: int = 1,
        limit: int | None = 10,
        sort: str | None = None,
    ) -> PaginatedDocs:
        docs = self._matching(collection, filter, sort)
        total = len(docs)
        page = max(page, 1)
        if not limit:
            return PaginatedDocs(
                docs=copy.deepcopy(docs), total_docs=total, page=1, limit=total, total_pages=1
            )
        start = (page - 1) * limit
        return PaginatedDocs(
            docs=copy.deepcopy(docs[start : start + limit]),
            total_docs=total,
            page=page,
            limit=limit,
            total_pages=max(1, math.ceil(total / limit)),
        )
