"""Arena representation of a parsed syntax tree.

Nodes live in one flat table and refer to each other by integer id, so a tree
holds no parent/child object cycles. Spans are character offsets into the exact
source string the tree was parsed from.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

NodeId = int


@dataclass(frozen=True)
class Position:
    line: int
    column: int
    offset: int


@dataclass(frozen=True)
class Span:
    start: Position
    end: Position

    def __post_init__(self) -> None:
        if self.start.offset > self.end.offset:
            raise ValueError(f"Span start {self.start.offset} is after end {self.end.offset}")

    @property
    def first_line(self) -> int:
        """1-based first line."""
        return self.start.line + 1

    @property
    def last_line(self) -> int:
        """
        1-based last line (inclusive).

        A span that ends at column 0 of a later line only carries the newline of
        the previous line, so that previous line is its last one.
        """
        if self.end.column == 0 and self.end.line > self.start.line:
            return self.end.line
        return self.end.line + 1


@dataclass(frozen=True)
class SyntaxNode:
    id: NodeId
    type: str
    span: Optional[Span] = None
    parent_id: Optional[NodeId] = None
    child_ids: Tuple[NodeId, ...] = ()
    data: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class SyntaxTree:
    language: str
    source_text: str
    root_id: NodeId
    nodes: List[SyntaxNode] = field(default_factory=list)

    @property
    def root(self) -> Optional[SyntaxNode]:
        return node_by_id(self, self.root_id)

    def children(self, node: SyntaxNode) -> List[SyntaxNode]:
        """Resolve `node.child_ids` in source order, skipping dangling ids."""
        out: List[SyntaxNode] = []
        for child_id in node.child_ids:
            child = node_by_id(self, child_id)
            if child is not None:
                out.append(child)
        return out


def source_text_of(tree: SyntaxTree, node: SyntaxNode) -> str:
    if node.span is None:
        return ""
    return tree.source_text[node.span.start.offset:node.span.end.offset]


def node_by_id(tree: SyntaxTree, node_id: NodeId) -> Optional[SyntaxNode]:
    if 0 <= node_id < len(tree.nodes):
        return tree.nodes[node_id]
    return None


class TreeBuilder:
    """
    Append-only builder that hands out dense ids in insertion order.

    Parents are added before their children, so the finished node table is in
    pre-order, which is also source order for well-formed trees.
    """

    def __init__(self, language: str, source_text: str) -> None:
        self._language = language
        self._source = source_text
        self._types: List[str] = []
        self._spans: List[Optional[Span]] = []
        self._parents: List[Optional[NodeId]] = []
        self._children: List[List[NodeId]] = []
        self._data: List[Dict[str, Any]] = []

    def add(
        self,
        node_type: str,
        span: Optional[Span],
        parent_id: Optional[NodeId] = None,
        data: Optional[Dict[str, Any]] = None,
    ) -> NodeId:
        node_id = len(self._types)
        self._types.append(node_type)
        self._spans.append(span)
        self._parents.append(parent_id)
        self._children.append([])
        self._data.append(dict(data or {}))
        if parent_id is not None:
            if not 0 <= parent_id < node_id:
                raise ValueError(f"Unknown parent id {parent_id}")
            self._children[parent_id].append(node_id)
        return node_id

    def set_data(self, node_id: NodeId, key: str, value: Any) -> None:
        self._data[node_id][key] = value

    def build(self, root_id: NodeId = 0) -> SyntaxTree:
        if self._types and self._parents[root_id] is not None:
            raise ValueError("Root node must not have a parent")
        nodes = [
            SyntaxNode(
                id=i,
                type=self._types[i],
                span=self._spans[i],
                parent_id=self._parents[i],
                child_ids=tuple(self._children[i]),
                data=self._data[i],
            )
            for i in range(len(self._types))
        ]
        return SyntaxTree(language=self._language, source_text=self._source, root_id=root_id, nodes=nodes)


__all__ = [
    "NodeId",
    "Position",
    "Span",
    "SyntaxNode",
    "SyntaxTree",
    "TreeBuilder",
    "source_text_of",
    "node_by_id",
]
