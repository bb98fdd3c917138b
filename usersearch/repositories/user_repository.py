"""
User Repository.

Handles all access to the relational ``users`` table, the authoritative
source of user records the search index is rebuilt from.
"""

from __future__ import annotations

import json
from collections.abc import Collection, Iterable, Iterator
from typing import Optional

from usersearch.database import DatabaseManager, DbSession
from usersearch.logger import StructuredLogger
from usersearch.models.user import User
from usersearch.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository):
    """Data access layer for User records.

    **No ``delete()`` method.**  Users are deactivated, never removed:
    :meth:`deactivate` flips ``active`` and the document that mirrors the
    row is updated, not dropped, on the next sync.
    """

    TABLE = "users"

    def __init__(self, db: DatabaseManager, logger: StructuredLogger) -> None:
        super().__init__(db, logger)

    # ------------------------------------------------------------------
    # Writes (never commit)
    # ------------------------------------------------------------------

    def insert(self, session: DbSession, user: User) -> User:
        """Insert *user*; returns the row as stored, timestamps included."""
        session.execute(
            f"""
            INSERT INTO {self.TABLE}
                (uuid, login, name, email, active, scm_accounts)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user.uuid,
                user.login,
                user.name,
                user.email,
                int(user.active),
                json.dumps(user.scm_accounts),
            ),
        )
        self._logger.debug("User inserted: %s (%s)", user.login, user.uuid)
        stored = self.select_by_uuid(session, user.uuid)
        return stored if stored is not None else user

    def update(self, session: DbSession, user: User) -> Optional[User]:
        """Overwrite every mutable column of the row keyed by ``user.uuid``.

        Returns the updated row, or ``None`` when no such user exists.
        """
        cursor = session.execute(
            f"""
            UPDATE {self.TABLE}
            SET login = ?,
                name = ?,
                email = ?,
                active = ?,
                scm_accounts = ?,
                updated_at = CURRENT_TIMESTAMP
            WHERE uuid = ?
            """,
            (
                user.login,
                user.name,
                user.email,
                int(user.active),
                json.dumps(user.scm_accounts),
                user.uuid,
            ),
        )
        if cursor.rowcount == 0:
            self._logger.warning("Cannot update user %s: not found.", user.uuid)
            return None
        return self.select_by_uuid(session, user.uuid)

    def deactivate(self, session: DbSession, uuid: str) -> Optional[User]:
        """Soft-delete a user by clearing ``active``.

        Returns the deactivated row, or ``None`` when no such user exists.
        Deactivating an inactive user is a no-op.
        """
        existing = self.select_by_uuid(session, uuid)
        if existing is None:
            self._logger.warning("Cannot deactivate user %s: not found.", uuid)
            return None
        if not existing.active:
            self._logger.info("User %s is already deactivated, nothing to do.", uuid)
            return existing

        session.execute(
            f"UPDATE {self.TABLE} SET active = 0, updated_at = CURRENT_TIMESTAMP "
            f"WHERE uuid = ?",
            (uuid,),
        )
        self._logger.info("User deactivated: %s", uuid)
        return self.select_by_uuid(session, uuid)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def select_by_uuid(self, session: DbSession, uuid: str) -> Optional[User]:
        row = session.execute(
            f"SELECT * FROM {self.TABLE} WHERE uuid = ?", (uuid,)
        ).fetchone()
        return User.from_row(row) if row else None

    def select_by_uuids(self, session: DbSession, uuids: Iterable[str]) -> list[User]:
        """Fetch the users with the given uuids, in uuid order. Unknown uuids are skipped."""
        rows = self._select_in(session, "uuid", sorted(set(uuids)))
        return sorted((User.from_row(row) for row in rows), key=lambda u: u.uuid)

    def scroll_all(
        self,
        session: DbSession,
        batch_size: int,
        excluded_uuids: Collection[str] = frozenset(),
    ) -> Iterator[list[User]]:
        """Stream every user in batches of at most *batch_size*.

        Only one batch is materialised at a time.  Users whose uuid is in
        *excluded_uuids* are skipped; a batch may therefore come back
        shorter than *batch_size*, but never empty.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1 (got {batch_size})")
        cursor = session.execute(f"SELECT * FROM {self.TABLE} ORDER BY uuid")
        while True:
            rows = cursor.fetchmany(batch_size)
            if not rows:
                return
            batch = [
                User.from_row(row) for row in rows if row["uuid"] not in excluded_uuids
            ]
            if batch:
                yield batch

    def count(self, session: DbSession) -> int:
        row = session.execute(f"SELECT COUNT(*) AS cnt FROM {self.TABLE}").fetchone()
        return int(row["cnt"]) if row else 0
