"""
Relational Schema.

DDL for the relational source (``users`` and ``index_queue``) and
:func:`initialize_schema`, run on every startup.

The applied version lives in the single-row ``schema_version`` table:

- version 0 (fresh file): every statement of :data:`_TABLE_DEFINITIONS`
  runs at once;
- version N: the functions registered in :data:`_MIGRATIONS` for the
  versions above N run in order.

Either path and the version bump share one transaction, so a failed
upgrade leaves the database at version N and is retried next start.

To change the schema: bump :data:`CURRENT_SCHEMA_VERSION`, update the DDL
below for fresh databases, and register a ``_migrate_vN_to_vN+1`` function
for existing ones.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Callable

from usersearch.logger import StructuredLogger

__all__ = ["CURRENT_SCHEMA_VERSION", "initialize_schema"]

CURRENT_SCHEMA_VERSION: int = 2

_VERSION_TABLE_DDL = """
    CREATE TABLE IF NOT EXISTS schema_version (
        id INTEGER PRIMARY KEY CHECK (id = 1),
        version INTEGER NOT NULL,
        applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
"""

_INDEX_QUEUE_DDL = """
    CREATE TABLE IF NOT EXISTS index_queue (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        doc_type TEXT NOT NULL,
        doc_id TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending'
               CHECK (status IN ('pending', 'failed')),
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        attempted_at TIMESTAMP,
        error_message TEXT
    )
"""

_INDEX_QUEUE_INDEXES: tuple[str, ...] = (
    "CREATE INDEX IF NOT EXISTS idx_index_queue_doc ON index_queue(doc_type, doc_id)",
    "CREATE INDEX IF NOT EXISTS idx_index_queue_status ON index_queue(status)",
)

_TABLE_DEFINITIONS: list[str] = [
    _VERSION_TABLE_DDL,
    # scm_accounts holds a JSON array of strings
    """
    CREATE TABLE IF NOT EXISTS users (
        uuid TEXT PRIMARY KEY,
        login TEXT NOT NULL UNIQUE,
        name TEXT,
        email TEXT,
        active INTEGER NOT NULL DEFAULT 1 CHECK (active IN (0, 1)),
        scm_accounts TEXT NOT NULL DEFAULT '[]',
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    _INDEX_QUEUE_DDL,
    "CREATE INDEX IF NOT EXISTS idx_users_email ON users(email)",
    *_INDEX_QUEUE_INDEXES,
]

_ALLOWED_TABLES: frozenset[str] = frozenset({"schema_version", "users", "index_queue"})
"""Tables whose names may be interpolated into ``PRAGMA table_info``."""


def _column_exists(conn: sqlite3.Connection, table: str, column: str) -> bool:
    if table not in _ALLOWED_TABLES:
        raise ValueError(
            f"Invalid table name: {table!r}. Allowed tables: {sorted(_ALLOWED_TABLES)}"
        )
    return any(row[1] == column for row in conn.execute(f"PRAGMA table_info({table})"))


def _read_version(conn: sqlite3.Connection) -> int:
    """Create the version table if needed and return the stored version (0 if none)."""
    conn.execute(_VERSION_TABLE_DDL)
    conn.commit()
    row = conn.execute("SELECT version FROM schema_version WHERE id = 1").fetchone()
    return int(row[0]) if row is not None else 0


def _write_version(conn: sqlite3.Connection, version: int) -> None:
    """Record *version*. Does **not** commit."""
    conn.execute(
        """
        INSERT INTO schema_version (id, version) VALUES (1, ?)
        ON CONFLICT(id) DO UPDATE SET version = excluded.version,
                                      applied_at = CURRENT_TIMESTAMP
        """,
        (version,),
    )


# ---------------------------------------------------------------------------
# Migrations, keyed by the version they produce
# ---------------------------------------------------------------------------

def _migrate_v1_to_v2(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Version 1 only had ``users``; add the ``index_queue`` write-ahead log."""
    conn.execute(_INDEX_QUEUE_DDL)
    # Pre-release v1 builds created index_queue without this column.
    if not _column_exists(conn, "index_queue", "error_message"):
        conn.execute("ALTER TABLE index_queue ADD COLUMN error_message TEXT")
    for ddl in _INDEX_QUEUE_INDEXES:
        conn.execute(ddl)
    logger.info("Migration to v2: index_queue created.")


MigrationFunc = Callable[[sqlite3.Connection, StructuredLogger], None]

_MIGRATIONS: dict[int, MigrationFunc] = {
    2: _migrate_v1_to_v2,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def initialize_schema(conn: sqlite3.Connection, logger: StructuredLogger) -> None:
    """Bring *conn* up to :data:`CURRENT_SCHEMA_VERSION`. Idempotent.

    Raises whatever ``sqlite3`` raised after rolling the upgrade back.
    """
    current = _read_version(conn)
    if current >= CURRENT_SCHEMA_VERSION:
        logger.info("Schema is up to date (version %d).", current)
        return

    logger.info("Upgrading schema from version %d to %d.", current, CURRENT_SCHEMA_VERSION)
    try:
        if current == 0:
            for ddl in _TABLE_DEFINITIONS:
                conn.execute(ddl)
        else:
            for version in sorted(v for v in _MIGRATIONS if current < v <= CURRENT_SCHEMA_VERSION):
                logger.info("Running migration to version %d.", version)
                _MIGRATIONS[version](conn, logger)
        _write_version(conn, CURRENT_SCHEMA_VERSION)
        conn.commit()
    except sqlite3.Error:
        conn.rollback()
        logger.error(
            "Schema upgrade failed; database left at version %d.", current, exc_info=True,
        )
        raise

    logger.info("Schema initialised at version %d.", CURRENT_SCHEMA_VERSION)
