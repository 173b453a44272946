"""Registry of structural parser factories and the per-process parser cache."""
from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Protocol, Union

from syntax_tree import SyntaxTree

logger = logging.getLogger(__name__)


class ParseError(RuntimeError):
    """Raised by a parser handle when a source cannot be turned into a usable tree."""


class ParserHandle(Protocol):
    def parse(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree: ...

    async def parse_async(self, source: str, options: Optional[Dict[str, Any]] = None) -> SyntaxTree: ...


ParserFactory = Callable[[str], Union[ParserHandle, Awaitable[ParserHandle]]]

_REGISTRY: Dict[str, ParserFactory] = {}
# None records a language whose parser could not be loaded; it is never retried.
_PARSER_CACHE: Dict[str, Optional[ParserHandle]] = {}


def register_parser_factory(name: str, factory: ParserFactory) -> None:
    key = _normalize(name)
    if not key:
        raise ValueError("Parser name must be non-empty")
    if not callable(factory):
        raise TypeError("Parser factory must be callable")
    _REGISTRY[key] = factory


def unregister_parser_factory(name: str) -> None:
    key = _normalize(name)
    _REGISTRY.pop(key, None)


def get_parser_factory(name: str) -> Optional[ParserFactory]:
    key = _normalize(name)
    return _REGISTRY.get(key)


def available_parser_factories() -> Iterable[str]:
    return sorted(_REGISTRY.keys())


def clear_parser_cache() -> None:
    _PARSER_CACHE.clear()


async def resolve_parser(language: str) -> Optional[ParserHandle]:
    """
    Return a loaded parser handle for `language`, or None.

    Lookup order: cached result (including a cached miss), the registered factory,
    then convention-based discovery of a tree-sitter grammar with the same name.
    """
    key = _normalize(language)
    if not key:
        return None
    if key in _PARSER_CACHE:
        return _PARSER_CACHE[key]

    factory = get_parser_factory(key)
    if factory is not None:
        try:
            handle = await _load(factory, key)
            _PARSER_CACHE[key] = handle
            return handle
        except Exception as exc:
            logger.warning("Failed to load registered parser for %s: %s", key, exc)

    try:
        handle = await _load(tree_sitter_backend.discover_parser, key)
        _PARSER_CACHE[key] = handle
        logger.info("Auto-discovered parser for %s", key)
        return handle
    except Exception as exc:
        logger.debug("No parser discovered for %s: %s", key, exc)

    _PARSER_CACHE[key] = None
    return None


async def _load(factory: ParserFactory, key: str) -> ParserHandle:
    handle = factory(key)
    if inspect.isawaitable(handle):
        handle = await handle
    if handle is None:
        raise ParseError(f"Parser factory for {key} returned nothing")
    return handle


def _normalize(name: str) -> str:
    return (name or "").strip().lower()


# Import side-effect: registers tree-sitter factories for every configured language.
import tree_sitter_backend  # noqa: E402


__all__ = [
    "ParseError",
    "ParserHandle",
    "ParserFactory",
    "register_parser_factory",
    "unregister_parser_factory",
    "get_parser_factory",
    "available_parser_factories",
    "clear_parser_cache",
    "resolve_parser",
]
