"""
Index Queue Repository.

The ``index_queue`` table is the write-ahead log of the search index:
a transaction that changes users enqueues their uuids before committing,
and the rows are removed only once the store has accepted the documents.
Rows left behind (crash, store outage) are replayed by
:meth:`UserIndexer.index_pending`.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Optional

from usersearch.database import DatabaseManager, DbSession
from usersearch.logger import StructuredLogger
from usersearch.models.index_queue import IndexQueueItem, QueueStatus
from usersearch.repositories.base_repository import BaseRepository


class IndexQueueRepository(BaseRepository):
    """Data access layer for ``index_queue`` rows. Never commits."""

    TABLE = "index_queue"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    def enqueue(self, session: DbSession, doc_type: str, doc_ids: Iterable[str]) -> list[int]:
        """Add one ``pending`` row per id; returns the new row ids."""
        queue_ids: list[int] = []
        for doc_id in doc_ids:
            cursor = session.execute(
                f"INSERT INTO {self.TABLE} (doc_type, doc_id, status) VALUES (?, ?, ?)",
                (doc_type, doc_id, QueueStatus.PENDING.value),
            )
            queue_ids.append(int(cursor.lastrowid))
        return queue_ids

    def select_pending(
        self, session: DbSession, doc_type: str, limit: Optional[int] = None,
    ) -> list[IndexQueueItem]:
        """Oldest first; includes rows whose previous attempt failed."""
        rows = session.execute(
            f"""
            SELECT * FROM {self.TABLE}
            WHERE doc_type = ?
            ORDER BY id ASC
            LIMIT ?
            """,
            (doc_type, limit if limit is not None else -1),
        ).fetchall()
        return [IndexQueueItem(**dict(row)) for row in rows]

    def delete(self, session: DbSession, queue_ids: Sequence[int]) -> None:
        session.executemany(
            f"DELETE FROM {self.TABLE} WHERE id = ?",
            [(queue_id,) for queue_id in queue_ids],
        )

    def mark_failed(
        self, session: DbSession, queue_ids: Sequence[int], error_message: str,
    ) -> None:
        """Transition rows to ``failed`` and record why.

        Parameters
        ----------
        queue_ids:
            Primary keys of the ``index_queue`` rows.
        error_message:
            Human-readable description of the failure, kept for diagnostics.
        """
        session.executemany(
            f"""
            UPDATE {self.TABLE}
            SET status = ?,
                attempted_at = CURRENT_TIMESTAMP,
                error_message = ?
            WHERE id = ?
            """,
            [(QueueStatus.FAILED.value, error_message, queue_id) for queue_id in queue_ids],
        )

    def count(self, session: DbSession, status: Optional[QueueStatus] = None) -> int:
        if status is None:
            row = session.execute(f"SELECT COUNT(*) AS cnt FROM {self.TABLE}").fetchone()
        else:
            row = session.execute(
                f"SELECT COUNT(*) AS cnt FROM {self.TABLE} WHERE status = ?",
                (status.value,),
            ).fetchone()
        return int(row["cnt"]) if row else 0
