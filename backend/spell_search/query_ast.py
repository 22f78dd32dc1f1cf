"""
Boolean AST for advanced spell queries
Nodes are immutable values; they can be cached and shared freely
"""

from dataclasses import dataclass
from typing import Iterator, Union

from .field_catalogue import FieldCatalogue


@dataclass(frozen=True)
class FieldNode:
    field: str
    value: str


@dataclass(frozen=True)
class AndNode:
    left: 'QueryNode'
    right: 'QueryNode'


@dataclass(frozen=True)
class OrNode:
    left: 'QueryNode'
    right: 'QueryNode'


@dataclass(frozen=True)
class NotNode:
    operand: 'QueryNode'


QueryNode = Union[FieldNode, AndNode, OrNode, NotNode]


def iter_fields(node: QueryNode) -> Iterator[FieldNode]:
    """Yield every field atom in the tree, left to right"""
    if isinstance(node, FieldNode):
        yield node
    elif isinstance(node, NotNode):
        yield from iter_fields(node.operand)
    else:
        yield from iter_fields(node.left)
        yield from iter_fields(node.right)


def format_query(node: QueryNode, catalogue: FieldCatalogue) -> str:
    """
    Print an AST back to query syntax (without the leading ^).

    Binary nodes are always parenthesized so that parsing the output yields
    the same tree regardless of operator precedence.
    """
    if isinstance(node, FieldNode):
        return f"{catalogue.preferred_alias(node.field)}:{node.value}"
    if isinstance(node, NotNode):
        return f"NOT {format_query(node.operand, catalogue)}"
    operator = 'AND' if isinstance(node, AndNode) else 'OR'
    return f"({format_query(node.left, catalogue)} {operator} {format_query(node.right, catalogue)})"
