"""
User Query Engine.

Read-only access to ``users/user`` documents:

- :meth:`UserIndex.get_at_most_three_active_users_for_scm_account` resolves
  an SCM account (commit author, version-control username, address) to the
  active users it may belong to;
- :meth:`UserIndex.search` backs user search with a text criterion and an
  active/inactive filter, one page at a time.

Both are built from the per-field rules in
:mod:`usersearch.index.definition`.
"""

from __future__ import annotations

from typing import Optional

from usersearch.index.definition import (
    DEFAULT_SORT,
    FIELD_ACTIVE,
    SCM_ACCOUNT_RULES,
    TEXT_SEARCH_RULES,
    TYPE_USER,
)
from usersearch.index.query import DocumentQuery
from usersearch.index.store import DocumentStore, DocumentStoreError
from usersearch.logger import StructuredLogger
from usersearch.models.search_models import SearchOptions, SearchResult, UserQuery
from usersearch.models.user_doc import UserDoc
from usersearch.services.base_service import BaseService

MAX_SCM_ACCOUNT_MATCHES: int = 3


class QueryFailure(Exception):
    """Raised when a query could not be answered by the document store."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class UserIndex(BaseService):
    """Query engine over the user documents of a :class:`DocumentStore`."""

    def __init__(self, store: DocumentStore, logger: StructuredLogger) -> None:
        super().__init__(logger)
        self._store = store

    def get_at_most_three_active_users_for_scm_account(
        self, scm_account: Optional[str],
    ) -> list[UserDoc]:
        """Return up to three active users matching *scm_account*.

        A user matches when the term equals its login (case-sensitive),
        its email (case-insensitive) or one of its SCM accounts
        (case-insensitive).  When more than three users match, which three
        come back is unspecified.
        """
        if not scm_account:
            return []

        query = DocumentQuery(
            filters={FIELD_ACTIVE: True},
            should=[rule.match(scm_account) for rule in SCM_ACCOUNT_RULES],
            sort=list(DEFAULT_SORT),
            limit=MAX_SCM_ACCOUNT_MATCHES,
        )
        return self._execute(query, "get_at_most_three_active_users_for_scm_account").docs

    def search(
        self, user_query: UserQuery, options: Optional[SearchOptions] = None,
    ) -> SearchResult[UserDoc]:
        """Return one page of users matching *user_query*, ordered by login."""
        options = options or SearchOptions()
        should = (
            [rule.match(user_query.text_query) for rule in TEXT_SEARCH_RULES]
            if user_query.text_query is not None
            else []
        )
        query = DocumentQuery(
            filters={FIELD_ACTIVE: user_query.active},
            should=should,
            sort=list(DEFAULT_SORT),
            offset=options.offset,
            limit=options.limit,
        )
        return self._execute(query, "search")

    def _execute(self, query: DocumentQuery, operation: str) -> SearchResult[UserDoc]:
        try:
            with self._timed(operation):
                return self._store.search(TYPE_USER, query, UserDoc)
        except (DocumentStoreError, ValueError) as exc:
            self._logger.error("%s failed: %s", operation, exc, exc_info=True)
            raise QueryFailure(f"{operation} failed: {exc}", exc) from exc
