"""Schema migrations for the lexical store, applied with SQLAlchemy.

Steps run in order and are recorded by hash in the `__migrations` ledger, so
re-running `run_migrations` against an up-to-date database is a no-op.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import List, Sequence, Tuple

try:  # pragma: no cover - dependency guard for tooling envs
    from sqlalchemy import text
except ModuleNotFoundError as exc:  # pragma: no cover
    text = None  # type: ignore[assignment]
    SQLALCHEMY_IMPORT_ERROR = exc
else:  # pragma: no cover - success path
    SQLALCHEMY_IMPORT_ERROR = None

logger = logging.getLogger(__name__)

LEDGER_TABLE = "__migrations"


@dataclass(frozen=True)
class Migration:
    hash: str
    statements: Tuple[str, ...]
    note: str = ""


MIGRATIONS: Tuple[Migration, ...] = (
    Migration(
        hash="initial_schema_v1",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS files (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              path TEXT NOT NULL UNIQUE,
              content TEXT NOT NULL,
              hash TEXT NOT NULL,
              size INTEGER NOT NULL,
              mtime INTEGER NOT NULL,
              language TEXT,
              indexed_at INTEGER NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS files_path_idx ON files(path)",
            "CREATE INDEX IF NOT EXISTS files_hash_idx ON files(hash)",
            """
            CREATE TABLE IF NOT EXISTS document_vectors (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              file_id INTEGER NOT NULL,
              term TEXT NOT NULL,
              tf REAL NOT NULL,
              tfidf REAL NOT NULL,
              raw_freq INTEGER NOT NULL,
              FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS vectors_file_id_idx ON document_vectors(file_id)",
            "CREATE INDEX IF NOT EXISTS vectors_term_idx ON document_vectors(term)",
            "CREATE INDEX IF NOT EXISTS vectors_tfidf_idx ON document_vectors(tfidf)",
            """
            CREATE TABLE IF NOT EXISTS idf_scores (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              term TEXT NOT NULL UNIQUE,
              idf REAL NOT NULL,
              document_frequency INTEGER NOT NULL
            )
            """,
            "CREATE INDEX IF NOT EXISTS idf_term_idx ON idf_scores(term)",
            """
            CREATE TABLE IF NOT EXISTS index_metadata (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              key TEXT NOT NULL UNIQUE,
              value TEXT NOT NULL,
              updated_at INTEGER NOT NULL
            )
            """,
        ),
    ),
    Migration(
        hash="add_magnitude_column_v1",
        statements=("ALTER TABLE files ADD COLUMN magnitude REAL DEFAULT 0",),
    ),
    Migration(
        hash="add_composite_term_index_v1",
        statements=("CREATE INDEX IF NOT EXISTS vectors_term_file_idx ON document_vectors(term, file_id)",),
    ),
    Migration(
        hash="add_token_count_column_v1",
        statements=("ALTER TABLE files ADD COLUMN token_count INTEGER DEFAULT 0",),
    ),
    Migration(
        hash="add_chunks_table_v1",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS chunks (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              file_id INTEGER NOT NULL,
              content TEXT NOT NULL,
              type TEXT NOT NULL,
              start_line INTEGER NOT NULL,
              end_line INTEGER NOT NULL,
              metadata TEXT,
              token_count INTEGER DEFAULT 0,
              magnitude REAL DEFAULT 0,
              FOREIGN KEY (file_id) REFERENCES files(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS chunks_file_id_idx ON chunks(file_id)",
            "CREATE INDEX IF NOT EXISTS chunks_type_idx ON chunks(type)",
            # Term rows move from file level to chunk level.
            "DROP TABLE IF EXISTS document_vectors",
            """
            CREATE TABLE document_vectors (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              chunk_id INTEGER NOT NULL,
              term TEXT NOT NULL,
              tf REAL NOT NULL,
              tfidf REAL NOT NULL,
              raw_freq INTEGER NOT NULL,
              FOREIGN KEY (chunk_id) REFERENCES chunks(id) ON DELETE CASCADE
            )
            """,
            "CREATE INDEX IF NOT EXISTS vectors_chunk_id_idx ON document_vectors(chunk_id)",
            "CREATE INDEX IF NOT EXISTS vectors_term_idx ON document_vectors(term)",
            "CREATE INDEX IF NOT EXISTS vectors_tfidf_idx ON document_vectors(tfidf)",
            "CREATE INDEX IF NOT EXISTS vectors_term_chunk_idx ON document_vectors(term, chunk_id)",
            "DELETE FROM idf_scores",
        ),
        note="Index needs to be rebuilt after this migration",
    ),
)


def _ensure_ledger(conn) -> None:
    conn.execute(text(
        f"CREATE TABLE IF NOT EXISTS {LEDGER_TABLE} ("
        "id INTEGER PRIMARY KEY AUTOINCREMENT, "
        "hash TEXT NOT NULL UNIQUE, "
        "created_at INTEGER NOT NULL)"
    ))


def applied_migrations(engine) -> List[str]:
    """Hashes recorded in the ledger, in application order."""
    with engine.begin() as conn:
        _ensure_ledger(conn)
        rows = conn.execute(text(f"SELECT hash FROM {LEDGER_TABLE} ORDER BY id")).all()
    return [row[0] for row in rows]


def run_migrations(engine, migrations: Sequence[Migration] = MIGRATIONS) -> List[str]:
    """
    Apply every pending migration, each in its own transaction.

    Returns the hashes applied by this call (empty when the schema is current).
    A failing step rolls back and propagates; later steps are not attempted.
    """
    if SQLALCHEMY_IMPORT_ERROR is not None:
        raise RuntimeError("SQLAlchemy is required for schema migrations") from SQLALCHEMY_IMPORT_ERROR

    done = set(applied_migrations(engine))
    applied: List[str] = []
    for migration in migrations:
        if migration.hash in done:
            continue
        logger.info("Running migration: %s", migration.hash)
        with engine.begin() as conn:
            for statement in migration.statements:
                conn.execute(text(statement))
            conn.execute(
                text(f"INSERT INTO {LEDGER_TABLE} (hash, created_at) VALUES (:hash, :created_at)"),
                {"hash": migration.hash, "created_at": _now_ms()},
            )
        logger.info("Migration complete: %s", migration.hash)
        if migration.note:
            logger.info("%s", migration.note)
        applied.append(migration.hash)
    return applied


def _now_ms() -> int:
    return int(time.time() * 1000)


__all__ = ["Migration", "MIGRATIONS", "LEDGER_TABLE", "applied_migrations", "run_migrations"]
