# Shared test fixtures utilities.
# Provides deterministic text generators, hand-built syntax trees and fake parser
# handles so engine tests run without tree-sitter.

from __future__ import annotations

import random
import sys
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Tuple
from unittest import mock

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from LineMapper import LineMapper  # noqa: E402
from parser_registry import (  # noqa: E402
    ParseError,
    clear_parser_cache,
    get_parser_factory,
    register_parser_factory,
    unregister_parser_factory,
)
from syntax_tree import Position, Span, SyntaxTree, TreeBuilder  # noqa: E402
import tree_sitter_backend  # noqa: E402


def rand_text(n: int, rate: float = 0.05, seed: int = 42) -> str:
    """Deterministic ASCII-ish text with occasional newlines.

    - n: total length in characters
    - rate: probability of a newline at each step
    - seed: RNG seed for determinism
    """
    rnd = random.Random(seed)
    alphabet = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ 0123456789"
    return "".join("\n" if rnd.random() < rate else rnd.choice(alphabet) for _ in range(n))


@dataclass
class N:
    """Node template: `type` over text[start:end], with children and attribute data."""
    type: str
    start: int
    end: int
    children: List["N"] = field(default_factory=list)
    data: Dict[str, Any] = field(default_factory=dict)
    spanless: bool = False


def locate(text: str, snippet: str, after: int = 0) -> Tuple[int, int]:
    start = text.index(snippet, after)
    return start, start + len(snippet)


def node_over(text: str, node_type: str, snippet: str, *children: N, after: int = 0, **data: Any) -> N:
    start, end = locate(text, snippet, after)
    return N(node_type, start, end, list(children), dict(data))


def build_tree(language: str, text: str, children: Sequence[N], root_type: str = "root") -> SyntaxTree:
    """Root spanning the whole text with `children` below it, built through TreeBuilder."""
    mapper = LineMapper(text)
    builder = TreeBuilder(language, text)

    def span(start: int, end: int) -> Span:
        s_row, s_col = mapper.offset_to_point(start)
        e_row, e_col = mapper.offset_to_point(end)
        return Span(Position(s_row, s_col, start), Position(e_row, e_col, end))

    root_id = builder.add(root_type, span(0, len(text)))
    stack: List[Tuple[N, int]] = [(child, root_id) for child in reversed(children)]
    while stack:
        tmpl, parent_id = stack.pop()
        node_id = builder.add(
            tmpl.type,
            None if tmpl.spanless else span(tmpl.start, tmpl.end),
            parent_id,
            tmpl.data,
        )
        stack.extend((child, node_id) for child in reversed(tmpl.children))
    return builder.build(root_id)


class FakeParser:
    """Parser handle returning trees from a builder callback; records every call."""

    def __init__(self, build: Callable[[str], SyntaxTree]):
        self._build = build
        self.calls: List[Tuple[str, Optional[Dict[str, Any]]]] = []

    def parse(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree:
        self.calls.append((source, options))
        return self._build(source)

    async def parse_async(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree:
        return self.parse(source, options)


class FailingParser:
    def __init__(self, message: str = "boom"):
        self.message = message

    def parse(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree:
        raise ParseError(self.message)

    async def parse_async(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree:
        return self.parse(source, options)


@contextmanager
def use_parsers(handles: Dict[str, Any]) -> Iterator[None]:
    """
    Temporarily route the given languages to fixed parser handles (None = unavailable).
    Grammar auto-discovery is disabled meanwhile so results do not depend on installed grammars.
    """
    previous = {lang: get_parser_factory(lang) for lang in handles}

    def factory_for(handle):
        def factory(_language: str):
            if handle is None:
                raise ParseError("parser unavailable")
            return handle
        return factory

    for lang, handle in handles.items():
        register_parser_factory(lang, factory_for(handle))
    clear_parser_cache()
    no_discovery = mock.patch.object(
        tree_sitter_backend, "discover_parser", side_effect=ParseError("discovery disabled in tests")
    )
    try:
        with no_discovery:
            yield
    finally:
        for lang, factory in previous.items():
            if factory is None:
                unregister_parser_factory(lang)
            else:
                register_parser_factory(lang, factory)
        clear_parser_cache()


__all__ = [
    "ROOT",
    "SRC",
    "rand_text",
    "N",
    "locate",
    "node_over",
    "build_tree",
    "FakeParser",
    "FailingParser",
    "use_parsers",
]
