# SCOPE:
# - Structural parsing (tree-sitter by default) for every language in language_config.json.
#   Parsers are resolved through parser_registry; a missing parser or a parse failure
#   degrades to character chunking, never to an exception.
# - Semantic unit = one top-level boundary node (function/class/section...). Oversized units
#   are split along their children; childless oversized nodes are split by size, cut at the
#   last newline that fits.
# - Embedded code (fenced blocks in Markdown) is re-chunked once with its own language and
#   re-anchored onto host line numbers. Exactly one level is unwound.
# - Only size-split pieces are merged; a semantic unit is never merged into another.
# - Lines are 1-based and inclusive everywhere.

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, List, Optional, Sequence, Tuple

from Chunk import ChunkResult
from LineMapper import LineMapper
from language_config import (
    LANGUAGE_REGISTRY,
    PLAIN_TEXT_LANGUAGES,
    LanguageConfig,
    context_nodes,
    detect_embedded_language,
    embedded_config_for,
    get_language_config,
    get_language_from_path,
    is_boundary,
)
from parser_registry import resolve_parser
from syntax_tree import SyntaxNode, SyntaxTree, source_text_of

logger = logging.getLogger(__name__)

# ---------------- Constants & Config ----------------
DEFAULT_MAX_CHUNK_SIZE = 1000
DEFAULT_MIN_CHUNK_SIZE = 100
# A size cut is pulled back to a newline only within this share of the budget.
NEWLINE_WINDOW_RATIO = 0.5

_FENCE_RE = re.compile(r"^(`{3,}|~{3,})[^\n]*\n(.*?)\n\1[ \t]*$", re.MULTILINE | re.DOTALL)

_EMIT, _EXPAND = "emit", "expand"


@dataclass(frozen=True)
class ChunkOptions:
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE
    min_chunk_size: int = DEFAULT_MIN_CHUNK_SIZE
    preserve_context: bool = True
    node_types: Optional[Tuple[str, ...]] = None
    parse_embedded: bool = True

    def __post_init__(self) -> None:
        if self.max_chunk_size < 1:
            raise ValueError("max_chunk_size must be positive")
        if self.min_chunk_size < 0:
            raise ValueError("min_chunk_size must not be negative")
        if self.node_types is not None and not isinstance(self.node_types, tuple):
            object.__setattr__(self, "node_types", tuple(self.node_types))


# ---------------- Public API ----------------

async def chunk_code_by_ast(
    code: str,
    file_path: str,
    options: Optional[ChunkOptions] = None,
    **overrides: Any,
) -> List[ChunkResult]:
    """
    Chunk `code` along syntactic boundaries of the language detected from `file_path`
    (a path or a language id).

    Steps:
      1) detect language -> unknown: character chunking
      2) resolve parser + parse -> unavailable/failed: character chunking
      3) extract semantic chunks (splitting oversized units)
      4) re-chunk embedded code when the language declares it and `parse_embedded` is set
      5) merge small split pieces
      6) nothing left for non-blank input: one whole-file `no-semantic-boundaries` chunk

    Empty or whitespace-only input yields an empty list.
    """
    opts = options or ChunkOptions()
    if overrides:
        opts = replace(opts, **overrides)
    if not code or not code.strip():
        return []

    language = get_language_from_path(file_path)
    if not language:
        logger.warning("Unknown language for %s, falling back to character chunking", file_path)
        return create_fallback_chunks(code, opts.max_chunk_size)

    config = get_language_config(language)
    tree = await parse_with_parser(code, language, config)
    if tree is None:
        logger.warning("Structural parsing unavailable for %s, falling back to character chunking", language)
        return create_fallback_chunks(code, opts.max_chunk_size)

    try:
        chunks = extract_semantic_chunks(tree, config, opts)
        if opts.parse_embedded and config is not None and config.embedded:
            chunks = await parse_embedded_chunks(chunks, config, opts)
        merged = merge_small_chunks(chunks, opts.min_chunk_size)
    except Exception as exc:
        logger.warning("Chunk extraction failed for %s: %s", language, exc)
        return create_fallback_chunks(code, opts.max_chunk_size)

    if not merged:
        return [_no_boundaries_chunk(code)]
    return merged


async def chunk_code_by_ast_simple(
    code: str,
    file_path: str,
    options: Optional[ChunkOptions] = None,
    **overrides: Any,
) -> List[str]:
    """Same as `chunk_code_by_ast`, returning only chunk contents."""
    chunks = await chunk_code_by_ast(code, file_path, options, **overrides)
    return [chunk.content for chunk in chunks]


def chunk_file(path: str, options: Optional[ChunkOptions] = None) -> List[ChunkResult]:
    """Read `path` as UTF-8 (undecodable bytes replaced) and chunk it synchronously."""
    text = Path(path).read_text(encoding="utf-8", errors="replace")
    return asyncio.run(chunk_code_by_ast(text, str(path), options))


def get_supported_languages() -> List[str]:
    return list(LANGUAGE_REGISTRY.keys())


# ---------------- Parsing ----------------

async def parse_with_parser(code: str, language: str, config: Optional[LanguageConfig]) -> Optional[SyntaxTree]:
    """Parse at the plugin boundary; any failure yields None and the partial result is dropped."""
    parser = await resolve_parser(language)
    if parser is None:
        return None
    try:
        options = dict(config.parser_options) if config is not None else {}
        return await parser.parse_async(code, options)
    except Exception as exc:
        logger.warning("Parsing failed for %s: %s", language, exc)
        return None


# ---------------- Extraction ----------------

def extract_semantic_chunks(tree: SyntaxTree, config: Optional[LanguageConfig], options: ChunkOptions) -> List[ChunkResult]:
    """
    Emit one chunk per top-level boundary node, delegating oversized nodes to
    `extract_sub_chunks`. Non-boundary nodes are skipped.

    With `preserve_context`, context nodes (imports...) are prepended to every
    chunk. The size check applies to the prefixed text, but an oversized node is
    split without the prefix.
    """
    root = tree.root
    if root is None:
        return []

    prefix = ""
    if options.preserve_context and config is not None:
        prefix = "\n".join(source_text_of(tree, node) for node in context_nodes(tree, config))
        if prefix:
            prefix += "\n\n"

    chunks: List[ChunkResult] = []
    for node in _top_level_nodes(tree, root, config):
        if node.span is None:
            continue
        if options.node_types is not None:
            boundary = node.type in options.node_types
        else:
            boundary = is_boundary(node, config)
        if not boundary:
            continue

        content = source_text_of(tree, node)
        final_content = prefix + content if options.preserve_context else content
        if len(final_content) > options.max_chunk_size:
            chunks.extend(extract_sub_chunks(tree, node, options.max_chunk_size))
        else:
            chunks.append(_node_chunk(node, final_content))
    return chunks


def _top_level_nodes(tree: SyntaxTree, root: SyntaxNode, config: Optional[LanguageConfig]) -> List[SyntaxNode]:
    """Root children, looking through a single implicit wrapper (e.g. the top-level JSON object)."""
    top = tree.children(root)
    if len(top) == 1 and config is not None and top[0].type in config.wrappers and top[0].child_ids:
        return tree.children(top[0])
    return top


def extract_sub_chunks(tree: SyntaxTree, node: SyntaxNode, max_chunk_size: int) -> List[ChunkResult]:
    """
    Split an oversized node along its children, descending while a child is still
    oversized. A childless node is split by size into `"<type>[i]"` pieces.

    Uses an explicit work stack so deep trees cannot hit the recursion limit.
    Items are popped in source order.
    """
    chunks: List[ChunkResult] = []
    stack: List[Tuple[str, SyntaxNode, str]] = [(_EXPAND, node, "")]
    while stack:
        kind, current, content = stack.pop()
        if kind == _EMIT:
            chunks.append(_node_chunk(current, content))
            continue
        if not current.child_ids:
            chunks.extend(_split_leaf(tree, current, max_chunk_size))
            continue

        pending: List[Tuple[str, SyntaxNode, str]] = []
        for child in tree.children(current):
            if child.span is None:
                continue
            text = source_text_of(tree, child)
            pending.append((_EXPAND if len(text) > max_chunk_size else _EMIT, child, text))
        if not pending:
            chunks.extend(_split_leaf(tree, current, max_chunk_size))
            continue
        stack.extend(reversed(pending))
    return chunks


def _split_leaf(tree: SyntaxTree, node: SyntaxNode, max_chunk_size: int) -> List[ChunkResult]:
    """Size-split a childless node; pieces start at line 1 when the node has no span."""
    text = source_text_of(tree, node)
    mapper = LineMapper(text)
    base_line = node.span.start.line if node.span is not None else 0
    chunks: List[ChunkResult] = []
    for i, (s, e) in enumerate(_newline_aligned_ranges(mapper, 0, len(text), max_chunk_size)):
        chunks.append(ChunkResult(
            content=text[s:e],
            type=f"{node.type}[{i}]",
            start_line=base_line + mapper.line_of(s),
            end_line=base_line + mapper.last_line_of(s, e),
            metadata={"split": True, "index": i},
        ))
    return chunks


def _node_chunk(node: SyntaxNode, content: str) -> ChunkResult:
    return ChunkResult(
        content=content,
        type=node.type,
        start_line=node.span.first_line,
        end_line=node.span.last_line,
        metadata=dict(node.data),
    )


# ---------------- Embedded code ----------------

async def parse_embedded_chunks(
    chunks: Sequence[ChunkResult],
    config: Optional[LanguageConfig],
    options: ChunkOptions,
) -> List[ChunkResult]:
    """
    Replace chunks hosting another language (e.g. a fenced block tagged `python`)
    with the chunks of their payload, shifted onto host lines.

    The nested run has `parse_embedded=False`. A host chunk is kept unchanged when
    its language is unknown or plain text, or when the nested run only produced
    fallback chunks.
    """
    if config is None or not config.embedded:
        return list(chunks)

    nested_options = replace(options, parse_embedded=False)
    result: List[ChunkResult] = []
    for chunk in chunks:
        rule = embedded_config_for(chunk.type, config)
        if rule is not None and rule.recursive:
            language = detect_embedded_language(chunk.metadata, rule)
            if language and language not in PLAIN_TEXT_LANGUAGES:
                payload = strip_fence(chunk.content)
                sub_chunks = await chunk_code_by_ast(payload, language, nested_options)
                if sub_chunks and not sub_chunks[0].is_fallback:
                    result.extend(_reanchor(sub_chunks, chunk, language))
                    continue
                logger.debug("Keeping %s chunk at line %d: no structure for %s", chunk.type, chunk.start_line, language)
        result.append(chunk)
    return result


def strip_fence(content: str) -> str:
    """Payload between an opening and a closing fence line, or `content` unchanged."""
    match = _FENCE_RE.search(content)
    if match:
        return match.group(2)
    return content


def _reanchor(sub_chunks: Sequence[ChunkResult], host: ChunkResult, language: str) -> List[ChunkResult]:
    offset = host.start_line - 1
    return [
        replace(
            sub,
            start_line=sub.start_line + offset,
            end_line=sub.end_line + offset,
            metadata={**sub.metadata, "embeddedIn": host.type, "embeddedLanguage": language},
        )
        for sub in sub_chunks
    ]


# ---------------- Merging ----------------

def merge_small_chunks(chunks: Sequence[ChunkResult], min_chunk_size: int) -> List[ChunkResult]:
    """
    Coalesce runs of adjacent undersized split pieces.

    Semantic chunks and chunks at/above `min_chunk_size` pass through (flushing any
    buffered piece first). Merged pieces are joined by a blank line, their types by
    `+`, and flagged `merged`.
    """
    merged: List[ChunkResult] = []
    buffer: Optional[ChunkResult] = None

    for chunk in chunks:
        passes_through = chunk.is_semantic or len(chunk.content) >= min_chunk_size
        if buffer is None:
            if passes_through:
                merged.append(chunk)
            else:
                buffer = chunk
            continue

        if not passes_through and not buffer.is_semantic and len(buffer.content) < min_chunk_size:
            buffer = ChunkResult(
                content=f"{buffer.content}\n\n{chunk.content}",
                type=f"{buffer.type}+{chunk.type}",
                start_line=buffer.start_line,
                end_line=chunk.end_line,
                metadata={**buffer.metadata, "merged": True},
            )
            continue

        merged.append(buffer)
        if passes_through:
            merged.append(chunk)
            buffer = None
        else:
            buffer = chunk

    if buffer is not None:
        merged.append(buffer)
    return merged


# ---------------- Fallback ----------------

def create_fallback_chunks(code: str, max_chunk_size: int) -> List[ChunkResult]:
    """Character chunking for input without usable structure."""
    mapper = LineMapper(code)
    return [
        ChunkResult(
            content=code[s:e],
            type="text",
            start_line=mapper.line_of(s),
            end_line=mapper.last_line_of(s, e),
            metadata={"fallback": True, "index": i},
        )
        for i, (s, e) in enumerate(_newline_aligned_ranges(mapper, 0, len(code), max_chunk_size))
    ]


def split_text(text: str, max_chunk_size: int) -> List[str]:
    """Split `text` into pieces of at most `max_chunk_size` characters, preferring line ends."""
    mapper = LineMapper(text)
    return [text[s:e] for s, e in _newline_aligned_ranges(mapper, 0, len(text), max_chunk_size)]


def _no_boundaries_chunk(code: str) -> ChunkResult:
    return ChunkResult(
        content=code,
        type="unknown",
        start_line=1,
        end_line=LineMapper(code).line_count,
        metadata={"fallback": True, "reason": "no-semantic-boundaries"},
    )


def _newline_aligned_ranges(mapper: LineMapper, start: int, end: int, max_size: int) -> List[Tuple[int, int]]:
    """
    Split [start, end) into contiguous ranges of at most `max_size` characters.
    Each cut is pulled back to just after the last newline within the trailing
    NEWLINE_WINDOW_RATIO of the budget; without one it is a hard cut.
    Full coverage, no overlap, guaranteed progress.
    """
    if start >= end:
        return []
    ranges: List[Tuple[int, int]] = []
    window = max(1, int(max_size * NEWLINE_WINDOW_RATIO))
    cur = start
    while cur < end:
        hard_end = min(cur + max_size, end)
        split = hard_end
        if hard_end < end:
            nudged = mapper.find_last_newline(max(cur, hard_end - window), hard_end)
            if nudged is not None and nudged > cur:
                split = nudged
        ranges.append((cur, split))
        cur = split
    return ranges


__all__ = [
    "DEFAULT_MAX_CHUNK_SIZE",
    "DEFAULT_MIN_CHUNK_SIZE",
    "ChunkOptions",
    "chunk_code_by_ast",
    "chunk_code_by_ast_simple",
    "chunk_file",
    "get_supported_languages",
    "parse_with_parser",
    "extract_semantic_chunks",
    "extract_sub_chunks",
    "parse_embedded_chunks",
    "strip_fence",
    "merge_small_chunks",
    "create_fallback_chunks",
    "split_text",
]
