"""Per-language chunking configuration and node classification.

The registry is loaded once from `language_config.json` next to this module.
Each entry names the tree-sitter grammar to parse with and the node types that
are chunk boundaries, context (prepended to every chunk) or hosts of embedded
code.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from syntax_tree import SyntaxNode, SyntaxTree

PLAIN_TEXT_LANGUAGES = frozenset({"text", "plain", "plaintext", "txt"})


@dataclass(frozen=True)
class EmbeddedLanguageConfig:
    node_type: str
    recursive: bool = True
    lang_attr: Optional[str] = None
    default_language: Optional[str] = None


@dataclass(frozen=True)
class LanguageConfig:
    name: str
    parser: str
    extensions: Tuple[str, ...] = ()
    aliases: Tuple[str, ...] = ()
    boundaries: frozenset = frozenset()
    context_types: frozenset = frozenset()
    wrappers: frozenset = frozenset()
    # Dropped while building the tree; their children move up to the parent.
    transparent: frozenset = frozenset()
    embedded: Tuple[EmbeddedLanguageConfig, ...] = ()
    attributes: Dict[str, Dict[str, str]] = field(default_factory=dict, compare=False)
    parser_options: Dict[str, Any] = field(default_factory=dict, compare=False)


def _parse_language(name: str, raw: Dict[str, Any]) -> LanguageConfig:
    embedded = tuple(
        EmbeddedLanguageConfig(
            node_type=str(rule["node_type"]),
            recursive=bool(rule.get("recursive", True)),
            lang_attr=rule.get("lang_attr"),
            default_language=(rule.get("default_language") or None),
        )
        for rule in raw.get("embedded", [])
    )
    return LanguageConfig(
        name=name,
        parser=str(raw.get("parser") or name),
        extensions=tuple(str(e).lower() for e in raw.get("extensions", [])),
        aliases=tuple(str(a).lower() for a in raw.get("aliases", [])),
        boundaries=frozenset(raw.get("boundaries", [])),
        context_types=frozenset(raw.get("context_types", [])),
        wrappers=frozenset(raw.get("wrappers", [])),
        transparent=frozenset(raw.get("transparent", [])),
        embedded=embedded,
        attributes={k: dict(v) for k, v in raw.get("attributes", {}).items()},
        parser_options=dict(raw.get("parser_options", {})),
    )


def _load_language_config() -> tuple[dict[str, LanguageConfig], dict[str, str], dict[str, str]]:
    """Load the language registry, the extension table and the alias table from JSON."""
    cfg_path = Path(__file__).with_name("language_config.json")
    with cfg_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    registry: dict[str, LanguageConfig] = {}
    extensions: dict[str, str] = {}
    aliases: dict[str, str] = {}
    for name, raw in data.get("languages", {}).items():
        key = name.lower()
        config = _parse_language(key, raw)
        registry[key] = config
        for ext in config.extensions:
            extensions.setdefault(ext, key)
        for alias in config.aliases:
            aliases.setdefault(alias, key)
    for ext, lang in data.get("extra_extensions", {}).items():
        extensions.setdefault(str(ext).lower(), str(lang).lower())
    return registry, extensions, aliases


LANGUAGE_REGISTRY, EXTENSION_MAP, ALIAS_MAP = _load_language_config()


def get_language_config(language: str | None) -> Optional[LanguageConfig]:
    if not language:
        return None
    return LANGUAGE_REGISTRY.get(language.strip().lower())


def get_language_from_path(path_or_id: str | None) -> Optional[str]:
    """
    Resolve a file path or language identifier to a language id.

    Tries, in order: a known language id or alias (`"python"`, `"py"`), the file
    extension (`"src/app.ts"`), and a bare `file.<language>` name whose suffix is
    itself a language id or alias.
    """
    raw = (path_or_id or "").strip()
    if not raw:
        return None
    lowered = raw.lower()
    if lowered in LANGUAGE_REGISTRY:
        return lowered
    if lowered in ALIAS_MAP:
        return ALIAS_MAP[lowered]

    name = Path(raw).name.lower()
    if "." not in name:
        return EXTENSION_MAP.get(name)
    suffix = name.rsplit(".", 1)[1]
    if suffix in EXTENSION_MAP:
        return EXTENSION_MAP[suffix]
    if suffix in LANGUAGE_REGISTRY:
        return suffix
    return ALIAS_MAP.get(suffix)


def is_boundary(node: SyntaxNode, config: Optional[LanguageConfig]) -> bool:
    if config is None:
        return False
    return node.type in config.boundaries


def context_nodes(tree: SyntaxTree, config: Optional[LanguageConfig]) -> List[SyntaxNode]:
    """Nodes whose type is a configured context type, in tree order."""
    if config is None or not config.context_types:
        return []
    return [node for node in tree.nodes if node.type in config.context_types]


def embedded_config_for(node_type: str, config: Optional[LanguageConfig]) -> Optional[EmbeddedLanguageConfig]:
    """First embedding rule for `node_type`. Takes the type so chunks can be matched too."""
    if config is None or not config.embedded:
        return None
    for rule in config.embedded:
        if rule.node_type == node_type:
            return rule
    return None


def detect_embedded_language(attributes: Mapping[str, Any], rule: EmbeddedLanguageConfig) -> Optional[str]:
    """Language named by the attribute bag (node data or chunk metadata), else the rule's default."""
    if rule.lang_attr and attributes:
        lang = attributes.get(rule.lang_attr)
        if isinstance(lang, str) and lang:
            return lang.lower()
    return rule.default_language


__all__ = [
    "PLAIN_TEXT_LANGUAGES",
    "EmbeddedLanguageConfig",
    "LanguageConfig",
    "LANGUAGE_REGISTRY",
    "EXTENSION_MAP",
    "ALIAS_MAP",
    "get_language_config",
    "get_language_from_path",
    "is_boundary",
    "context_nodes",
    "embedded_config_for",
    "detect_embedded_language",
]
