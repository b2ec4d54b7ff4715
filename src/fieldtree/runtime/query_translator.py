"""
Query translator - logical where clauses to storage filters.

Accepts the nested where shape used by the HTTP and local APIs:

    {"text": {"equals": "green"}}
    {"and": [{...}, {...}]}
    {"or": [{...}, {...}]}
    {"relationToSelf.text": {"equals": "alt text"}}

Every leaf path is resolved by the PathResolver. Several concrete paths
for one leaf become a disjunction. Joins run a sub-query on the target
collection and substitute the matching identifiers back into the outer
filter; sub-queries are memoized per translation, so a join reached
twice is only run once and a cycle reuses the identifiers already known.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fieldtree.config import QueryConfig
from fieldtree.errors import make_structural_error
from fieldtree.runtime.filters import (
    Condition,
    ElemMatch,
    FilterNode,
    MatchAll,
    MatchNone,
    Operator,
    and_,
    or_,
)
from fieldtree.runtime.logging import get_logger, log_with_context
from fieldtree.runtime.path_resolver import (
    JoinDescriptor,
    PathResolver,
    Resolution,
    StoragePath,
    VariantScope,
)
from fieldtree.runtime.registry import SchemaRegistry
from fieldtree.specs import BLOCK_TYPE_KEY

if TYPE_CHECKING:
    from fieldtree.runtime.document_store import DocumentStore

logger = get_logger("Query")

JoinKey = tuple[str, str, str, str, str | None]


@dataclass
class _TranslationState:
    """Memo shared by every join of one translate() call."""

    tasks: dict[JoinKey, asyncio.Task[list[Any]]] = field(default_factory=dict)
    known_ids: dict[JoinKey, list[Any]] = field(default_factory=dict)
    joins_run: int = 0


class QueryTranslator:
    """
    Translate where clauses for one registry and store.

    Example:
        translator = QueryTranslator(registry, store)
        node = await translator.translate(
            "relationship-fields", {"relationToSelf.text": {"equals": "x"}}
        )
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: DocumentStore,
        config: QueryConfig | None = None,
    ):
        self.registry = registry
        self.store = store
        self.config = config or QueryConfig()
        self.resolver = PathResolver(registry)

    async def translate(
        self,
        collection: str,
        where: dict[str, Any] | None,
        locale: str | None = None,
    ) -> FilterNode:
        """
        Args:
            collection: Collection slug to filter
            where: Nested where clause; empty or None matches everything
            locale: Active locale; "all" or None leaves localized paths unpinned

        Raises:
            StructuralSchemaError: Unresolvable path, unknown operator or
                join depth exceeded
        """
        state = _TranslationState()
        node = await self._translate_where(collection, where or {}, locale, 0, frozenset(), state)
        log_with_context(
            logger,
            logging.DEBUG,
            "Translated where clause",
            collection=collection,
            locale=locale,
            joins=state.joins_run,
        )
        return node

    # -------------------------------------------------------------------------
    # Where clauses
    # -------------------------------------------------------------------------

    async def _translate_where(
        self,
        collection: str,
        where: dict[str, Any],
        locale: str | None,
        depth: int,
        visited: frozenset[JoinKey],
        state: _TranslationState,
    ) -> FilterNode:
        if not isinstance(where, dict):
            raise make_structural_error("Where clause must be an object", collection=collection)

        pending = []
        for key, value in where.items():
            if key.lower() in ("and", "or"):
                if not isinstance(value, list):
                    raise make_structural_error(
                        f"'{key}' expects a list of where clauses", collection=collection
                    )
                pending.append(
                    self._translate_group(
                        collection, key.lower(), value, locale, depth, visited, state
                    )
                )
            else:
                if not isinstance(value, dict):
                    raise make_structural_error(
                        "Conditions must map operators to values", collection=collection, path=key
                    )
                for op, operand in value.items():
                    pending.append(
                        self._translate_leaf(
                            collection, key, op, operand, locale, depth, visited, state
                        )
                    )
        return and_(*await asyncio.gather(*pending))

    async def _translate_group(
        self,
        collection: str,
        combinator: str,
        clauses: list[Any],
        locale: str | None,
        depth: int,
        visited: frozenset[JoinKey],
        state: _TranslationState,
    ) -> FilterNode:
        children = await asyncio.gather(
            *(
                self._translate_where(collection, clause, locale, depth, visited, state)
                for clause in clauses
            )
        )
        return and_(*children) if combinator == "and" else or_(*children)

    async def _translate_leaf(
        self,
        collection: str,
        path: str,
        op: str,
        operand: Any,
        locale: str | None,
        depth: int,
        visited: frozenset[JoinKey],
        state: _TranslationState,
    ) -> FilterNode:
        try:
            operator = Operator(op)
        except ValueError:
            raise make_structural_error(
                f"Unknown operator '{op}'", collection=collection, path=path
            ) from None
        resolutions = self.resolver.resolve(collection, path, locale)
        nodes = await asyncio.gather(
            *(
                self._build(collection, r, operator, operand, locale, depth, visited, state)
                for r in resolutions
            )
        )
        return or_(*nodes)

    # -------------------------------------------------------------------------
    # Resolutions
    # -------------------------------------------------------------------------

    async def _build(
        self,
        collection: str,
        resolution: Resolution,
        operator: Operator,
        operand: Any,
        locale: str | None,
        depth: int,
        visited: frozenset[JoinKey],
        state: _TranslationState,
    ) -> FilterNode:
        if isinstance(resolution, StoragePath):
            return condition(resolution.path, operator, operand)

        if isinstance(resolution, VariantScope):
            inner = await asyncio.gather(
                *(
                    self._build(collection, r, operator, operand, locale, depth, visited, state)
                    for r in resolution.inner
                )
            )
            scoped = or_(*inner)
            if isinstance(scoped, MatchNone):
                return scoped
            discriminator = Condition(BLOCK_TYPE_KEY, Operator.EQUALS, resolution.block_type)
            return ElemMatch(resolution.rows_path, and_(discriminator, scoped))

        ids = await self._join_ids(
            collection, resolution, operator, operand, locale, depth, visited, state
        )
        if not ids:
            return MatchNone()
        if resolution.polymorphic:
            target = Condition("relationTo", Operator.EQUALS, resolution.foreign_collection)
            matched = condition("value", Operator.IN, ids)
            return ElemMatch(resolution.local_path, and_(target, matched))
        return condition(resolution.local_path, Operator.IN, ids)

    async def _join_ids(
        self,
        collection: str,
        join: JoinDescriptor,
        operator: Operator,
        operand: Any,
        locale: str | None,
        depth: int,
        visited: frozenset[JoinKey],
        state: _TranslationState,
    ) -> list[Any]:
        key: JoinKey = (
            join.foreign_collection,
            join.foreign_path,
            str(operator),
            _freeze(operand),
            locale,
        )
        if key in visited:
            # Cycle back to a join still being expanded
            return list(state.known_ids.get(key, []))
        if depth >= self.config.max_join_depth:
            raise make_structural_error(
                f"Join depth exceeds the maximum of {self.config.max_join_depth}",
                collection=collection,
                path=join.local_path,
            )

        task = state.tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(
                self._run_join(join, operator, operand, locale, depth, visited | {key}, key, state)
            )
            state.tasks[key] = task
        return await task

    async def _run_join(
        self,
        join: JoinDescriptor,
        operator: Operator,
        operand: Any,
        locale: str | None,
        depth: int,
        visited: frozenset[JoinKey],
        key: JoinKey,
        state: _TranslationState,
    ) -> list[Any]:
        state.known_ids.setdefault(key, [])
        sub_where = {join.foreign_path: {str(operator): operand}}
        sub_filter = await self._translate_where(
            join.foreign_collection, sub_where, locale, depth + 1, visited, state
        )
        ids = await self.store.find_ids(join.foreign_collection, sub_filter)
        state.known_ids[key] = ids
        state.joins_run += 1
        log_with_context(
            logger,
            logging.DEBUG,
            "Resolved join",
            collection=join.foreign_collection,
            path=join.foreign_path,
            matches=len(ids),
        )
        return ids


def condition(path: str, operator: Operator, operand: Any) -> FilterNode:
    """
    Build a leaf condition, normalizing the operand for the operator.

    `in`/`not_in` accept a list or a comma-separated string; an empty
    `in` matches nothing and an empty `not_in` matches everything.
    `like` keeps its operand literal.
    """
    if operator in (Operator.IN, Operator.NOT_IN):
        if isinstance(operand, str):
            values = [v.strip() for v in operand.split(",") if v.strip()]
        elif isinstance(operand, list | tuple | set | frozenset):
            values = list(operand)
        else:
            values = [operand]
        if not values:
            return MatchNone() if operator == Operator.IN else MatchAll()
        return Condition(path, operator, tuple(values))
    if operator == Operator.EXISTS:
        if isinstance(operand, str):
            operand = operand.lower() == "true"
        return Condition(path, operator, bool(operand))
    return Condition(path, operator, operand)


def _freeze(operand: Any) -> str:
    """Hashable form of an operand for memo keys."""
    return json.dumps(operand, sort_keys=True, default=str)
