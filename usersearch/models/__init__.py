"""
Data Models Package.

Re-exports all Pydantic models:
    from usersearch.models import User, UserDoc, IndexQueueItem
    from usersearch.models import SearchOptions, SearchResult, UserQuery
"""

from usersearch.models.index_queue import IndexQueueItem, QueueStatus
from usersearch.models.search_models import SearchOptions, SearchResult, UserQuery
from usersearch.models.user import User
from usersearch.models.user_doc import UserDoc

__all__ = [
    "IndexQueueItem",
    "QueueStatus",
    "SearchOptions",
    "SearchResult",
    "User",
    "UserDoc",
    "UserQuery",
]
