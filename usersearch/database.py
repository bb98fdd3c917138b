"""
Relational Source Connection.

One SQLite connection to the database holding the authoritative ``users``
table and the ``index_queue`` of documents awaiting indexing, shared by
every repository through :class:`DbSession` units of work.  Queries live
in the repositories, not here.

Wiring::

    from usersearch.database import DatabaseManager
    from usersearch.logger import StructuredLogger

    db = DatabaseManager(
        sqlite_path=Path("usersearch.db"),
        logger=StructuredLogger(name="database"),
    )
    with db.session() as session:
        user_repo.insert(session, user)
        indexer.commit_and_index(session, user)
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterable, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Union

from usersearch.logger import StructuredLogger

SqlParams = Union[Sequence[object], dict[str, object]]


class DbSession:
    """A unit of work on the relational source.

    Wraps the shared SQLite connection.  Nothing written through a session
    is visible to other connections until :meth:`commit` is called; leaving
    the :meth:`DatabaseManager.session` block without committing rolls the
    pending changes back.
    """

    def __init__(self, conn: sqlite3.Connection, logger: StructuredLogger) -> None:
        self._conn = conn
        self._logger = logger

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def in_transaction(self) -> bool:
        """``True`` when uncommitted changes are pending."""
        return self._conn.in_transaction

    def execute(self, sql: str, params: SqlParams = ()) -> sqlite3.Cursor:
        return self._conn.execute(sql, params)

    def executemany(self, sql: str, rows: Iterable[SqlParams]) -> sqlite3.Cursor:
        return self._conn.executemany(sql, rows)

    def commit(self) -> None:
        self._conn.commit()

    def rollback(self) -> None:
        self._conn.rollback()


class DatabaseManager:
    """Manages the connection to the local SQLite relational source.

    Fully configured at construction time via dependency injection.

    Parameters
    ----------
    sqlite_path:
        Filesystem path for the SQLite database file, or ``":memory:"``.
        Parent directories must already exist.
    logger:
        A ``StructuredLogger`` instance for structured JSON log output.
    """

    def __init__(
        self,
        sqlite_path: Union[Path, str],
        logger: StructuredLogger,
    ) -> None:
        self._logger: StructuredLogger = logger
        self._write_lock: threading.RLock = threading.RLock()
        self._closed: bool = False
        self._sqlite_conn: sqlite3.Connection = self._connect_sqlite(sqlite_path)

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def sqlite(self) -> sqlite3.Connection:
        """Return the initialised SQLite connection."""
        return self._sqlite_conn

    @property
    def write_lock(self) -> threading.RLock:
        """Return the lock serialising access to the shared connection.

        :meth:`session` acquires it for the lifetime of the session, so
        code holding a session never needs to take it explicitly.
        """
        return self._write_lock

    @contextmanager
    def session(self) -> Generator[DbSession, None, None]:
        """Open a :class:`DbSession` for the duration of the ``with`` block.

        On exception the pending transaction is rolled back and the error
        re-raised.  On normal exit, changes that were never committed are
        rolled back as well: callers decide explicitly when to commit.

        Example::

            with db.session() as session:
                repo.insert(session, user)
                session.commit()
        """
        with self._write_lock:
            session = DbSession(self._sqlite_conn, self._logger)
            try:
                yield session
            except Exception:
                if self._sqlite_conn.in_transaction:
                    self._sqlite_conn.rollback()
                    self._logger.error(
                        "Session rolled back due to exception.", exc_info=True,
                    )
                raise
            if self._sqlite_conn.in_transaction:
                self._sqlite_conn.rollback()
                self._logger.debug("Uncommitted session changes rolled back.")

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the connection. Idempotent, so it can also be registered with ``atexit``."""
        with self._write_lock:
            if self._closed:
                return
            try:
                self._sqlite_conn.close()
                self._logger.info("SQLite connection closed.")
            except sqlite3.ProgrammingError:
                # Already closed.
                pass
            self._closed = True

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _connect_sqlite(self, path: Union[Path, str]) -> sqlite3.Connection:
        """Open (or create) *path* with ``sqlite3.Row`` rows, WAL and foreign keys.

        ``check_same_thread`` is off because the connection is shared across
        threads; :attr:`write_lock` serialises access.
        """
        try:
            conn = sqlite3.connect(str(path), check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys = ON")
        except (PermissionError, sqlite3.OperationalError) as exc:
            msg = (
                f"Cannot open the user database at '{path}': {exc}. "
                "Check that its directory exists and is writable."
            )
            self._logger.error(msg)
            raise sqlite3.OperationalError(msg) from exc
        self._logger.info("User database opened at %s", path)
        return conn
