"""Lexical-store persistence for chunked files, implemented with SQLAlchemy.

One `files` row per path, one `chunks` row per chunk and one `document_vectors`
row per (chunk, term). After every write the corpus-wide `idf_scores` are
recomputed (`idf = ln(N / df)` over chunks) and every term row's `tfidf` and
every chunk's `magnitude` are refreshed.
"""
from __future__ import annotations

import hashlib
import json
import logging
import math
import re
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

try:  # pragma: no cover - dependency guard for tooling envs
    from sqlalchemy import bindparam, create_engine, text
    from sqlalchemy.engine import Engine
except ModuleNotFoundError as exc:  # pragma: no cover
    bindparam = None  # type: ignore[assignment]
    create_engine = None  # type: ignore[assignment]
    text = None  # type: ignore[assignment]
    Engine = Any  # type: ignore[assignment]
    SQLALCHEMY_IMPORT_ERROR = exc
else:  # pragma: no cover - success path
    SQLALCHEMY_IMPORT_ERROR = None

from Chunk import ChunkResult
from migrations import run_migrations

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"[a-z0-9_]+")


def tokenize(content: str) -> List[str]:
    """Lower-cased word tokens of at least two characters."""
    return [tok for tok in _TOKEN_RE.findall(content.lower()) if len(tok) > 1]


class PersistenceAdapter(Protocol):
    def persist_file(self, path: str, content: str, language: Optional[str], chunks: Sequence[ChunkResult]) -> int: ...

    def delete_batch(self, paths: List[str]) -> None: ...

    def close(self) -> None: ...


@dataclass(frozen=True)
class DBConfig:
    provider: str
    url: str

    @classmethod
    def sqlite(cls, url: str = "sqlite://") -> "DBConfig":
        return cls(provider="sqlite", url=url)


class PersistInSqlite(PersistenceAdapter):
    """Lexical store on SQLite (file or in-memory) through a SQLAlchemy engine."""

    def __init__(
        self,
        *,
        cfg: DBConfig,
        engine: Optional[Engine] = None,
        engine_factory: Optional[Callable[[], Engine]] = None,
        migrate: bool = True,
        **_: Any,
    ) -> None:
        if SQLALCHEMY_IMPORT_ERROR is not None:
            raise RuntimeError("SQLAlchemy is required for lexical persistence") from SQLALCHEMY_IMPORT_ERROR
        if cfg.provider != "sqlite":
            raise TypeError("cfg.provider must be 'sqlite' for PersistInSqlite")
        self._cfg = cfg
        if engine is not None:
            self._engine = engine
            self._owns_engine = False
        else:
            factory = engine_factory or self._build_engine
            self._engine = factory()
            self._owns_engine = True
        if migrate:
            run_migrations(self._engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    def persist_file(
        self,
        path: str,
        content: str,
        language: Optional[str],
        chunks: Sequence[ChunkResult],
        mtime: Optional[int] = None,
    ) -> int:
        """Replace everything stored for `path` with `chunks`; returns the file id."""
        now = int(time.time() * 1000)
        file_params = {
            "path": path,
            "content": content,
            "hash": hashlib.sha256(content.encode("utf-8")).hexdigest(),
            "size": len(content.encode("utf-8")),
            "mtime": now if mtime is None else int(mtime),
            "language": language,
            "indexed_at": now,
            "token_count": 0,
        }
        chunk_tokens = [tokenize(chunk.content) for chunk in chunks]
        file_params["token_count"] = sum(len(tokens) for tokens in chunk_tokens)

        with self._engine.begin() as conn:
            conn.execute(text(self._upsert_file_sql), file_params)
            file_id = conn.execute(text("SELECT id FROM files WHERE path = :path"), {"path": path}).scalar_one()
            self._delete_file_rows(conn, [file_id])

            for chunk, tokens in zip(chunks, chunk_tokens):
                result = conn.execute(text(self._insert_chunk_sql), self._chunk_params(file_id, chunk, tokens))
                chunk_id = result.lastrowid
                terms = self._term_params(chunk_id, tokens)
                if terms:
                    conn.execute(text(self._insert_term_sql), terms)

            self._refresh_scores(conn)
        logger.debug("Persisted %d chunks for %s", len(chunks), path)
        return int(file_id)

    def delete_batch(self, paths: List[str]) -> None:
        if not paths:
            return
        select_stmt = (
            text("SELECT id FROM files WHERE path IN :paths")
            .bindparams(bindparam("paths", expanding=True))
        )
        with self._engine.begin() as conn:
            ids = [row[0] for row in conn.execute(select_stmt, {"paths": tuple(paths)}).all()]
            if not ids:
                return
            self._delete_file_rows(conn, ids)
            delete_files = text("DELETE FROM files WHERE id IN :ids").bindparams(bindparam("ids", expanding=True))
            conn.execute(delete_files, {"ids": tuple(ids)})
            self._refresh_scores(conn)

    def get_chunks(self, path: str) -> List[ChunkResult]:
        """Stored chunks of `path` in insertion order."""
        stmt = text(
            "SELECT c.content, c.type, c.start_line, c.end_line, c.metadata "
            "FROM chunks AS c JOIN files AS f ON f.id = c.file_id "
            "WHERE f.path = :path ORDER BY c.id"
        )
        with self._engine.connect() as conn:
            rows = conn.execute(stmt, {"path": path}).mappings().all()
        return [self._row_to_chunk(row) for row in rows]

    def get_idf(self, term: str) -> Optional[float]:
        with self._engine.connect() as conn:
            value = conn.execute(text("SELECT idf FROM idf_scores WHERE term = :term"), {"term": term}).scalar()
        return None if value is None else float(value)

    def term_rows(self, path: str) -> List[Dict[str, Any]]:
        stmt = text(
            "SELECT v.term, v.raw_freq, v.tf, v.tfidf, v.chunk_id "
            "FROM document_vectors AS v "
            "JOIN chunks AS c ON c.id = v.chunk_id "
            "JOIN files AS f ON f.id = c.file_id "
            "WHERE f.path = :path ORDER BY v.id"
        )
        with self._engine.connect() as conn:
            return [dict(row) for row in conn.execute(stmt, {"path": path}).mappings().all()]

    def close(self) -> None:
        if getattr(self, "_owns_engine", True):
            dispose = getattr(self._engine, "dispose", None)
            if callable(dispose):  # pragma: no branch
                dispose()

    def _delete_file_rows(self, conn, file_ids: Sequence[int]) -> None:
        delete_terms = text(
            "DELETE FROM document_vectors WHERE chunk_id IN (SELECT id FROM chunks WHERE file_id IN :ids)"
        ).bindparams(bindparam("ids", expanding=True))
        delete_chunks = text("DELETE FROM chunks WHERE file_id IN :ids").bindparams(bindparam("ids", expanding=True))
        conn.execute(delete_terms, {"ids": tuple(file_ids)})
        conn.execute(delete_chunks, {"ids": tuple(file_ids)})

    def _refresh_scores(self, conn) -> None:
        total = conn.execute(text("SELECT COUNT(*) FROM chunks")).scalar_one()
        conn.execute(text("DELETE FROM idf_scores"))
        if not total:
            return
        rows = conn.execute(text(
            "SELECT term, COUNT(DISTINCT chunk_id) AS df FROM document_vectors GROUP BY term"
        )).all()
        idf_params = [
            {"term": term, "idf": math.log(total / df), "df": df}
            for term, df in rows
        ]
        if idf_params:
            conn.execute(
                text("INSERT INTO idf_scores (term, idf, document_frequency) VALUES (:term, :idf, :df)"),
                idf_params,
            )
        conn.execute(text(
            "UPDATE document_vectors SET tfidf = tf * "
            "COALESCE((SELECT idf FROM idf_scores WHERE idf_scores.term = document_vectors.term), 0)"
        ))
        magnitudes = conn.execute(text(
            "SELECT chunk_id, SUM(tfidf * tfidf) FROM document_vectors GROUP BY chunk_id"
        )).all()
        if magnitudes:
            conn.execute(
                text("UPDATE chunks SET magnitude = :magnitude WHERE id = :id"),
                [{"id": chunk_id, "magnitude": math.sqrt(squares or 0.0)} for chunk_id, squares in magnitudes],
            )

    @staticmethod
    def _chunk_params(file_id: int, chunk: ChunkResult, tokens: Sequence[str]) -> Dict[str, Any]:
        return {
            "file_id": file_id,
            "content": chunk.content,
            "type": chunk.type,
            "start_line": chunk.start_line,
            "end_line": chunk.end_line,
            "metadata": json.dumps(chunk.metadata, sort_keys=True),
            "token_count": len(tokens),
        }

    @staticmethod
    def _term_params(chunk_id: int, tokens: Sequence[str]) -> List[Dict[str, Any]]:
        if not tokens:
            return []
        counts = Counter(tokens)
        total = len(tokens)
        return [
            {"chunk_id": chunk_id, "term": term, "raw_freq": freq, "tf": freq / total, "tfidf": 0.0}
            for term, freq in counts.items()
        ]

    @property
    def _upsert_file_sql(self) -> str:
        return (
            "INSERT INTO files (path, content, hash, size, mtime, language, indexed_at, token_count) "
            "VALUES (:path, :content, :hash, :size, :mtime, :language, :indexed_at, :token_count) "
            "ON CONFLICT(path) DO UPDATE SET content=excluded.content, hash=excluded.hash, size=excluded.size, "
            "mtime=excluded.mtime, language=excluded.language, indexed_at=excluded.indexed_at, "
            "token_count=excluded.token_count"
        )

    @property
    def _insert_chunk_sql(self) -> str:
        return (
            "INSERT INTO chunks (file_id, content, type, start_line, end_line, metadata, token_count) "
            "VALUES (:file_id, :content, :type, :start_line, :end_line, :metadata, :token_count)"
        )

    @property
    def _insert_term_sql(self) -> str:
        return (
            "INSERT INTO document_vectors (chunk_id, term, tf, tfidf, raw_freq) "
            "VALUES (:chunk_id, :term, :tf, :tfidf, :raw_freq)"
        )

    def _build_engine(self) -> Engine:
        if create_engine is None:
            raise RuntimeError("SQLAlchemy is required for lexical persistence")
        return create_engine(self._cfg.url, future=True)

    @staticmethod
    def _row_to_chunk(row: Dict[str, Any]) -> ChunkResult:
        raw_meta = row.get("metadata")
        return ChunkResult(
            content=row.get("content") or "",
            type=row.get("type") or "unknown",
            start_line=int(row.get("start_line") or 0),
            end_line=int(row.get("end_line") or 0),
            metadata=json.loads(raw_meta) if raw_meta else {},
        )


# ---------------- Adapter registry ----------------

AdapterFactory = Callable[..., PersistenceAdapter]

_ADAPTERS: Dict[str, AdapterFactory] = {}


def register_persistence_adapter(name: str, factory: AdapterFactory) -> None:
    key = _normalize(name)
    if not key:
        raise ValueError("Adapter name must be non-empty")
    if not callable(factory):
        raise TypeError("Adapter factory must be callable")
    _ADAPTERS[key] = factory


def get_persistence_adapter(name: str) -> Optional[AdapterFactory]:
    return _ADAPTERS.get(_normalize(name))


def available_persistence_adapters() -> List[str]:
    return sorted(_ADAPTERS.keys())


def _normalize(name: str) -> str:
    return (name or "").strip().lower()


def _sqlite_factory(
    *,
    cfg: DBConfig,
    engine: Optional[Engine] = None,
    engine_factory: Optional[Callable[[], Engine]] = None,
    **kwargs: Any,
) -> PersistenceAdapter:
    return PersistInSqlite(cfg=cfg, engine=engine, engine_factory=engine_factory, **kwargs)


register_persistence_adapter("sqlite", _sqlite_factory)


def create_persistence_adapter(adapter: str, *, cfg: DBConfig, **kwargs: Any) -> PersistenceAdapter:
    key = _normalize(adapter) or "sqlite"
    factory = get_persistence_adapter(key)
    if factory is None:
        raise ValueError(f"Unsupported persistence adapter '{adapter}'")
    return factory(cfg=cfg, **kwargs)


__all__ = [
    "DBConfig",
    "PersistInSqlite",
    "PersistenceAdapter",
    "tokenize",
    "register_persistence_adapter",
    "get_persistence_adapter",
    "available_persistence_adapters",
    "create_persistence_adapter",
]
