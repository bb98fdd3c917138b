"""
User Indexer Service.

The only writer of user documents.  Keeps the document store in step with
the relational ``users`` table through three triggers:

- :meth:`UserIndexer.index_on_startup` / :meth:`UserIndexer.index_all`:
  full rebuild, streamed from the table in batches of
  ``AppConfig.INDEX_BATCH_SIZE``.
- :meth:`UserIndexer.commit_and_index`: incremental sync of the users a
  transaction just wrote.

Incremental sync is a two-phase dual write:

    1. in the caller's session, enqueue one ``index_queue`` row per uuid
       and commit (user rows and queue rows land together);
    2. read those users back and upsert their documents synchronously,
       then delete the queue rows.

If phase 2 fails the queue rows stay behind, marked ``failed``, and
:class:`IndexingFailure` is raised.  :meth:`UserIndexer.index_pending`
replays them.  There is no background worker and no retry loop.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Collection, Iterable, Sequence
from typing import Optional, Union

from usersearch.config import AppConfig
from usersearch.database import DatabaseManager, DbSession
from usersearch.index.definition import TYPE_USER
from usersearch.index.store import DocumentStore, DocumentStoreError
from usersearch.logger import StructuredLogger
from usersearch.models.user import User
from usersearch.models.user_doc import UserDoc
from usersearch.repositories.index_queue_repository import IndexQueueRepository
from usersearch.repositories.user_repository import UserRepository
from usersearch.services.base_service import BaseService

# Store outages, relational errors, and malformed rows (pydantic's
# ValidationError and json's JSONDecodeError are both ValueErrors).
_INDEXING_ERRORS = (DocumentStoreError, sqlite3.Error, ValueError)


class IndexingFailure(Exception):
    """Raised when documents could not be brought in line with the relational source."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class UserIndexer(BaseService):
    """Synchronises ``users`` rows into ``users/user`` documents.

    Parameters
    ----------
    db:
        Relational source.
    store:
        Document store receiving the documents.
    user_repo / queue_repo:
        Repositories over ``users`` and ``index_queue``.
    config:
        Provides ``INDEX_BATCH_SIZE``.
    logger:
        Structured JSON logger.
    """

    def __init__(
        self,
        db: DatabaseManager,
        store: DocumentStore,
        user_repo: UserRepository,
        queue_repo: IndexQueueRepository,
        config: AppConfig,
        logger: StructuredLogger,
    ) -> None:
        super().__init__(logger)
        self._db = db
        self._store = store
        self._user_repo = user_repo
        self._queue_repo = queue_repo
        self._config = config

    # ------------------------------------------------------------------
    # Full rebuilds
    # ------------------------------------------------------------------

    def index_on_startup(self, excluded_uuids: Collection[str]) -> int:
        """Rebuild every user document, skipping *excluded_uuids*.

        Excluded users are neither written nor pruned: a caller migrating
        them concurrently owns their documents.  Returns the number of
        documents written.
        """
        self._logger.info(
            "Indexing users on startup (%d uuid(s) excluded).", len(excluded_uuids),
        )
        return self._rebuild(frozenset(excluded_uuids), operation="index_on_startup")

    def index_all(self) -> int:
        """Rebuild every user document. Returns the number of documents written."""
        return self._rebuild(frozenset(), operation="index_all")

    def _rebuild(self, excluded_uuids: frozenset[str], operation: str) -> int:
        indexed_uuids: set[str] = set()
        try:
            with self._timed(operation), self._db.session() as session:
                for batch in self._user_repo.scroll_all(
                    session, self._config.INDEX_BATCH_SIZE, excluded_uuids,
                ):
                    docs = [UserDoc.from_user(user) for user in batch]
                    self._store.put_documents(TYPE_USER, docs)
                    indexed_uuids.update(doc.uuid for doc in docs)
                    self._logger.debug(
                        "%s: indexed batch of %d user(s).", operation, len(docs),
                    )

                # Still inside the session: no commit_and_index can land a
                # document between the scan and the prune.
                stale = self._store.document_ids(TYPE_USER) - indexed_uuids - excluded_uuids
                if stale:
                    self._store.delete_documents(TYPE_USER, sorted(stale))
                    self._logger.info(
                        "%s: pruned %d document(s) with no matching user.",
                        operation, len(stale),
                    )
        except _INDEXING_ERRORS as exc:
            self._logger.error(
                "%s failed after %d document(s): %s",
                operation, len(indexed_uuids), exc, exc_info=True,
            )
            raise IndexingFailure(
                f"{operation} failed after {len(indexed_uuids)} document(s): {exc}", exc,
            ) from exc

        self._logger.info("%s: indexed %d user(s).", operation, len(indexed_uuids))
        return len(indexed_uuids)

    # ------------------------------------------------------------------
    # Incremental sync
    # ------------------------------------------------------------------

    def commit_and_index(self, session: DbSession, users: Union[User, Iterable[User]]) -> int:
        """Commit *session* and index exactly *users* (one user or many).

        Documents are visible to queries when this returns.  Returns the
        number of documents written.
        """
        if isinstance(users, User):
            users = [users]
        return self.commit_and_index_by_uuids(session, [user.uuid for user in users])

    def commit_and_index_by_uuids(self, session: DbSession, uuids: Iterable[str]) -> int:
        """Commit *session* and index exactly the users with the given uuids."""
        unique_uuids: list[str] = list(dict.fromkeys(uuids))
        try:
            queue_ids = self._queue_repo.enqueue(session, TYPE_USER.key, unique_uuids)
            session.commit()
        except sqlite3.Error as exc:
            self._logger.error(
                "Could not commit transaction before indexing: %s", exc, exc_info=True,
            )
            raise IndexingFailure(f"Could not commit transaction: {exc}", exc) from exc

        if not unique_uuids:
            return 0
        return self._index_queued(session, queue_ids, unique_uuids)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    def index_pending(self, limit: Optional[int] = None) -> int:
        """Replay ``index_queue`` rows left behind by failed or interrupted syncs.

        Must not be called while the caller holds an open session with
        uncommitted changes.  Returns the number of documents written.
        """
        with self._db.session() as session:
            try:
                items = self._queue_repo.select_pending(session, TYPE_USER.key, limit)
            except sqlite3.Error as exc:
                raise IndexingFailure(f"Could not read index queue: {exc}", exc) from exc
            if not items:
                self._logger.debug("Index queue is empty.")
                return 0

            self._logger.info("Replaying %d index queue row(s).", len(items))
            uuids = list(dict.fromkeys(item.doc_id for item in items))
            return self._index_queued(session, [item.id for item in items], uuids)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _index_queued(
        self, session: DbSession, queue_ids: Sequence[int], uuids: Sequence[str],
    ) -> int:
        """Upsert the documents of *uuids*, then drop their queue rows."""
        try:
            users = self._user_repo.select_by_uuids(session, uuids)
            docs = [UserDoc.from_user(user) for user in users]
            self._store.put_documents(TYPE_USER, docs)
        except _INDEXING_ERRORS as exc:
            self._logger.error(
                "Indexing of %d user(s) failed: %s", len(uuids), exc, exc_info=True,
            )
            self._mark_failed(session, queue_ids, str(exc))
            raise IndexingFailure(
                f"Indexing of {len(uuids)} user(s) failed: {exc}", exc,
            ) from exc

        missing = set(uuids) - {doc.uuid for doc in docs}
        if missing:
            self._logger.warning(
                "%d queued user(s) no longer exist and were skipped: %s",
                len(missing), sorted(missing),
            )

        try:
            self._queue_repo.delete(session, queue_ids)
            session.commit()
        except sqlite3.Error as exc:
            # Documents are already written; the rows will be replayed idempotently.
            self._logger.warning(
                "Indexed %d user(s) but could not clear their queue rows: %s",
                len(docs), exc,
            )
        self._logger.debug("Indexed %d user(s) incrementally.", len(docs))
        return len(docs)

    def _mark_failed(
        self, session: DbSession, queue_ids: Sequence[int], error_message: str,
    ) -> None:
        try:
            self._queue_repo.mark_failed(session, queue_ids, error_message)
            session.commit()
        except sqlite3.Error as exc:
            self._logger.warning(
                "Failed to mark %d index queue row(s) as failed: %s",
                len(queue_ids), exc,
            )
