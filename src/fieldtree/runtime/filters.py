"""
Storage-neutral filter tree.

The query translator emits these nodes; a storage adapter turns them into
its own query language (the in-memory store evaluates them directly).

Paths are dot-delimited storage paths. When a path crosses a sequence
(array rows, has_many values), a condition holds if any element matches.
ElemMatch scopes several conditions to the same element (or object).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Union


class Operator(StrEnum):
    """Leaf comparison operators."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    GREATER_THAN_EQUAL = "greater_than_equal"
    LESS_THAN = "less_than"
    LESS_THAN_EQUAL = "less_than_equal"
    LIKE = "like"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"


@dataclass(frozen=True)
class Condition:
    """Compare the value at `path` using `operator`."""

    path: str
    operator: Operator
    value: Any

    def to_dict(self) -> dict[str, Any]:
        return {self.path: {str(self.operator): self.value}}


@dataclass(frozen=True)
class And:
    children: tuple[FilterNode, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"and": [c.to_dict() for c in self.children]}


@dataclass(frozen=True)
class Or:
    children: tuple[FilterNode, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"or": [c.to_dict() for c in self.children]}


@dataclass(frozen=True)
class ElemMatch:
    """`filter` must hold for one element of the sequence (or the object) at `path`."""

    path: str
    filter: FilterNode

    def to_dict(self) -> dict[str, Any]:
        return {self.path: {"elem_match": self.filter.to_dict()}}


@dataclass(frozen=True)
class MatchNone:
    def to_dict(self) -> dict[str, Any]:
        return {"match_none": True}


@dataclass(frozen=True)
class MatchAll:
    def to_dict(self) -> dict[str, Any]:
        return {}


FilterNode = Union[Condition, And, Or, ElemMatch, MatchNone, MatchAll]


def and_(*nodes: FilterNode) -> FilterNode:
    """Conjunction, flattened; MatchNone absorbs, MatchAll drops out."""
    children: list[FilterNode] = []
    for node in nodes:
        if isinstance(node, MatchNone):
            return node
        if isinstance(node, MatchAll):
            continue
        children.extend(node.children if isinstance(node, And) else (node,))
    if not children:
        return MatchAll()
    if len(children) == 1:
        return children[0]
    return And(tuple(children))


def or_(*nodes: FilterNode) -> FilterNode:
    """Disjunction, flattened; MatchAll absorbs, MatchNone drops out."""
    children: list[FilterNode] = []
    for node in nodes:
        if isinstance(node, MatchAll):
            return node
        if isinstance(node, MatchNone):
            continue
        children.extend(node.children if isinstance(node, Or) else (node,))
    if not children:
        return MatchNone()
    if len(children) == 1:
        return children[0]
    return Or(tuple(children))
