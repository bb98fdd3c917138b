"""
Base Repository.

Provides shared infrastructure for all repositories:
- DatabaseManager reference
- Logger reference
- Chunked ``IN (...)`` lookups that stay under SQLite's parameter limit
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence

from usersearch.database import DatabaseManager, DbSession
from usersearch.logger import StructuredLogger


class BaseRepository:
    """Base class for all repositories. Receives dependencies via __init__.

    Repositories never commit: every write runs in the caller's
    :class:`DbSession` and becomes visible when the caller commits.
    """

    TABLE: str = ""

    # SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds.
    _IN_CHUNK_SIZE: int = 500

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        self._db = db
        self._logger = logger

    def _select_in(
        self,
        session: DbSession,
        column: str,
        values: Sequence[str],
        columns: str = "*",
    ) -> list[sqlite3.Row]:
        """Return every row of :attr:`TABLE` whose *column* is one of *values*.

        *column* and *columns* are interpolated, so they must come from code,
        never from user input.
        """
        rows: list[sqlite3.Row] = []
        for start in range(0, len(values), self._IN_CHUNK_SIZE):
            chunk = values[start:start + self._IN_CHUNK_SIZE]
            placeholders = ",".join("?" for _ in chunk)
            rows.extend(
                session.execute(
                    f"SELECT {columns} FROM {self.TABLE} WHERE {column} IN ({placeholders})",
                    list(chunk),
                ).fetchall()
            )
        return rows
