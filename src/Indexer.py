#!/usr/bin/env python3
"""
Indexer.py: command line front end

- Input: file paths to chunk
- Filters binaries via suffix + byte sniffing
- PROCESS: read -> chunk (bounded by --timeout) -> optionally persist to the lexical store
- A timed-out file is chunked by size instead of structure. The timeout is
  best-effort: it is checked only at await points, and a tree-sitter parse
  runs to completion without one
- Prints a concise JSON summary to stdout
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import chunker
from Chunk import ChunkResult
from Persist import DBConfig, PersistenceAdapter, create_persistence_adapter
from language_config import get_language_from_path
from text_detection import BinaryDetector

logger = logging.getLogger("syntax_chunker")

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_value(name: str) -> str:
    return (os.environ.get(name) or "").strip()


def _env_int(name: str, default: int) -> int:
    raw = _env_value(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = _env_value(name).lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    if raw:
        logger.warning("Ignoring non-boolean %s=%r", name, raw)
    return default


def _resolve_options(args: argparse.Namespace) -> chunker.ChunkOptions:
    """Environment defaults, overridden by explicit flags."""
    max_size = args.max_chunk_size
    if max_size is None:
        max_size = _env_int("CHUNKER_MAX_CHUNK_SIZE", chunker.DEFAULT_MAX_CHUNK_SIZE)
    min_size = args.min_chunk_size
    if min_size is None:
        min_size = _env_int("CHUNKER_MIN_CHUNK_SIZE", chunker.DEFAULT_MIN_CHUNK_SIZE)
    preserve_context = False if args.no_context else _env_bool("CHUNKER_PRESERVE_CONTEXT", True)
    parse_embedded = False if args.no_embedded else _env_bool("CHUNKER_PARSE_EMBEDDED", True)
    return chunker.ChunkOptions(
        max_chunk_size=max_size,
        min_chunk_size=min_size,
        preserve_context=preserve_context,
        parse_embedded=parse_embedded,
    )


async def _chunk_text(
    text: str,
    path: str,
    options: chunker.ChunkOptions,
    timeout: Optional[float],
) -> Tuple[List[ChunkResult], bool]:
    """Chunk one file; returns (chunks, timed_out)."""
    if timeout is None or timeout <= 0:
        return await chunker.chunk_code_by_ast(text, path, options), False
    try:
        chunks = await asyncio.wait_for(chunker.chunk_code_by_ast(text, path, options), timeout)
        return chunks, False
    except asyncio.TimeoutError:
        logger.warning("Chunking %s timed out after %.2fs, falling back to character chunking", path, timeout)
        if not text.strip():
            return [], True
        return chunker.create_fallback_chunks(text, options.max_chunk_size), True


async def _process_files(
    paths: Sequence[str],
    options: chunker.ChunkOptions,
    timeout: Optional[float],
    persist: Optional[PersistenceAdapter],
) -> Tuple[List[Dict[str, Any]], List[Dict[str, str]]]:
    """Chunk (and persist) every path. Per-file failures are logged and reported, not raised."""
    results: List[Dict[str, Any]] = []
    failed: List[Dict[str, str]] = []
    for p in paths:
        logger.info("Processing file: %s", p)
        try:
            text = Path(p).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.error("Failed reading %s: %s", p, exc)
            failed.append({"path": p, "error": str(exc)})
            continue

        chunks, timed_out = await _chunk_text(text, p, options, timeout)
        language = get_language_from_path(p)
        logger.debug("File %s produced %d chunks", p, len(chunks))

        if persist is not None:
            try:
                persist.persist_file(p, text, language, chunks)
            except Exception as exc:
                logger.error("Persist failed for %s: %s", p, exc)
                failed.append({"path": p, "error": str(exc)})
                continue

        results.append({
            "path": p,
            "language": language,
            "timed_out": timed_out,
            "chunks": [chunk.to_dict() for chunk in chunks],
        })
    return results, failed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Split source files into syntax-aware chunks.")
    parser.add_argument("paths", nargs="*", help="Files to chunk")
    parser.add_argument("--max-chunk-size", type=int, help="Maximum characters per chunk (env CHUNKER_MAX_CHUNK_SIZE)")
    parser.add_argument("--min-chunk-size", type=int, help="Split pieces below this size are merged (env CHUNKER_MIN_CHUNK_SIZE)")
    parser.add_argument("--no-context", action="store_true", help="Do not prepend imports/context to chunks")
    parser.add_argument("--no-embedded", action="store_true", help="Do not re-chunk embedded code blocks")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Best-effort per-file chunking timeout in seconds; checked between awaits, not inside a parse",
    )
    parser.add_argument("--languages", action="store_true", help="Print supported languages and exit")
    parser.add_argument("--db", help="SQLAlchemy URL of the lexical store (env DATABASE_URL)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    """CLI entrypoint.

    - Parses paths and chunking flags
    - Filters binaries out
    - Chunks text files, persisting them when a store is configured
    - Prints JSON summary
    """
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.languages:
        print(json.dumps(chunker.get_supported_languages()))
        return

    options = _resolve_options(args)
    detector = BinaryDetector()
    text_paths, skipped_binary = detector.partition(args.paths)
    if skipped_binary:
        logger.info("Skipping %d binary files", len(skipped_binary))

    db_url = args.db or _env_value("DATABASE_URL")
    persist: Optional[PersistenceAdapter] = None
    if db_url:
        persist = create_persistence_adapter("sqlite", cfg=DBConfig.sqlite(db_url))
        logger.info("Persisting chunks to %s", db_url)

    try:
        files, failed = asyncio.run(_process_files(text_paths, options, args.timeout, persist))
    finally:
        if persist is not None:
            persist.close()

    summary = {
        "options": {
            "max_chunk_size": options.max_chunk_size,
            "min_chunk_size": options.min_chunk_size,
            "preserve_context": options.preserve_context,
            "parse_embedded": options.parse_embedded,
        },
        "processed_files": len(files),
        "processed_chunks": sum(len(f["chunks"]) for f in files),
        "persisted": persist is not None,
        "skipped_binary": skipped_binary,
        "failed": failed,
        "files": files,
    }
    print(json.dumps(summary, ensure_ascii=False))


if __name__ == "__main__":
    main()
