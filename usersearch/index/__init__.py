"""
Search Index Package.

The document store, the structured queries it executes, and the
definition of the ``users/user`` index type.
"""

from usersearch.index.definition import TYPE_USER, FieldRule, IndexType
from usersearch.index.query import DocumentQuery, FieldMatch, MatchStrategy
from usersearch.index.store import DocumentStore, DocumentStoreError, SqliteDocumentStore

__all__ = [
    "DocumentQuery",
    "DocumentStore",
    "DocumentStoreError",
    "FieldMatch",
    "FieldRule",
    "IndexType",
    "MatchStrategy",
    "SqliteDocumentStore",
    "TYPE_USER",
]
