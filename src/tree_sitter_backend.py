"""Tree-sitter parser handles producing arena `SyntaxTree`s.

Tree-sitter works on RAW BYTES; offsets are converted to character offsets of the
decoded source while the arena is built, so every span slices the `str` source.
Only named nodes enter the arena.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Tuple

try:  # pragma: no cover - dependency guard for tooling envs
    from tree_sitter_language_pack import get_parser
except ModuleNotFoundError as exc:  # pragma: no cover
    get_parser = None  # type: ignore[assignment]
    TREE_SITTER_IMPORT_ERROR = exc
else:  # pragma: no cover - success path
    TREE_SITTER_IMPORT_ERROR = None

from LineMapper import ByteOffsetMapper, LineMapper
from language_config import LANGUAGE_REGISTRY, get_language_config
from parser_registry import ParseError, register_parser_factory
from syntax_tree import NodeId, Position, Span, SyntaxTree, TreeBuilder

logger = logging.getLogger(__name__)


class TreeSitterParser:
    """Parser handle around one tree-sitter grammar from `tree_sitter_language_pack`."""

    def __init__(
        self,
        language: str,
        grammar: Optional[str] = None,
        attributes: Optional[Dict[str, Dict[str, str]]] = None,
        transparent: Iterable[str] = (),
    ) -> None:
        if TREE_SITTER_IMPORT_ERROR is not None:
            raise RuntimeError("tree-sitter-language-pack is required for structural parsing") from TREE_SITTER_IMPORT_ERROR
        self.language = language
        self.grammar = grammar or language
        self._attributes = attributes or {}
        self._transparent = frozenset(transparent)
        # Raises for grammars the language pack does not ship.
        self._parser = get_parser(self.grammar)

    def parse(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree:
        opts = options or {}
        contents = source.encode("utf-8")
        ts_tree = self._parser.parse(contents)
        root = ts_tree.root_node
        if root is None:
            raise ParseError(f"tree-sitter produced no tree for {self.language}")
        if opts.get("strict") and root.has_error:
            raise ParseError(f"Syntax errors in {self.language} source")
        return _build_arena(root, contents, source, self.language, self._attributes, self._transparent)

    async def parse_async(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree:
        # Runs to completion; there is no await point inside a tree-sitter parse.
        return self.parse(source, options)


def _build_arena(
    root,
    contents: bytes,
    text: str,
    language: str,
    attributes: Dict[str, Dict[str, str]],
    transparent: FrozenSet[str] = frozenset(),
) -> SyntaxTree:
    """
    Flatten a tree-sitter tree into a `SyntaxTree` in pre-order (iterative, no recursion limit).

    Nodes of a `transparent` type (Markdown's `section`) are left out and their
    children attached to the nearest kept ancestor, so headings, paragraphs and
    fences sit at one level whatever the heading depth.
    """
    offsets = ByteOffsetMapper(contents, text)
    lines = LineMapper(text)
    builder = TreeBuilder(language, text)

    stack: List[Tuple[Any, Optional[NodeId]]] = [(root, None)]
    while stack:
        ts_node, parent_id = stack.pop()
        if parent_id is not None and ts_node.type in transparent:
            for child in reversed(list(ts_node.named_children)):
                stack.append((child, parent_id))
            continue
        span = _span_of(ts_node, offsets, lines)
        node_id = builder.add(ts_node.type, span, parent_id)
        for key, child_type in attributes.get(ts_node.type, {}).items():
            value = _child_attribute(ts_node, child_type, contents)
            if value:
                builder.set_data(node_id, key, value)
        children = list(ts_node.named_children)
        for child in reversed(children):
            stack.append((child, node_id))
    return builder.build()


def _span_of(ts_node, offsets: ByteOffsetMapper, lines: LineMapper) -> Span:
    start = offsets.to_char(ts_node.start_byte)
    end = offsets.to_char(ts_node.end_byte)
    s_row, s_col = lines.offset_to_point(start)
    e_row, e_col = lines.offset_to_point(end)
    return Span(Position(s_row, s_col, start), Position(e_row, e_col, end))


def _child_attribute(ts_node, child_type: str, contents: bytes) -> Optional[str]:
    """First whitespace-separated token of the first named child of `child_type`."""
    for child in ts_node.named_children:
        if child.type != child_type:
            continue
        raw = contents[child.start_byte:child.end_byte].decode("utf-8", errors="replace").strip()
        return raw.split()[0] if raw else None
    return None


def discover_parser(language: str) -> TreeSitterParser:
    """Convention-based discovery: a language-pack grammar named like the language."""
    return TreeSitterParser(language, grammar=language)


def _tree_sitter_factory(language: str) -> TreeSitterParser:
    config = get_language_config(language)
    if config is None:
        raise ParseError(f"No language configuration for {language}")
    logger.debug("Loading tree-sitter grammar %s for %s", config.parser, language)
    return TreeSitterParser(
        language, grammar=config.parser, attributes=config.attributes, transparent=config.transparent
    )


for _name in LANGUAGE_REGISTRY:
    register_parser_factory(_name, _tree_sitter_factory)


__all__ = ["TreeSitterParser", "discover_parser"]
