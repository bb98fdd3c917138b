"""
Document Store.

:class:`DocumentStore` is the contract the indexer writes through and the
query engine reads through.  :class:`SqliteDocumentStore` implements it on
a dedicated SQLite database: each document is one JSON body in the
``documents`` table, and :class:`~usersearch.index.query.DocumentQuery`
objects are compiled to SQL over ``json_extract`` / ``json_each``.

Case-insensitive strategies compare values folded with ``str.casefold``,
registered on the connection as the SQL function ``casefold`` so that
non-ASCII addresses fold the same way in SQL and in Python.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from pathlib import Path
from typing import Optional, TypeVar, Union

from pydantic import BaseModel, ValidationError

from usersearch.index.definition import IndexType
from usersearch.index.query import DocumentQuery, FieldMatch, MatchStrategy
from usersearch.logger import StructuredLogger
from usersearch.models.search_models import SearchResult

M = TypeVar("M", bound=BaseModel)

__all__ = ["DocumentStore", "DocumentStoreError", "SqliteDocumentStore"]


class DocumentStoreError(Exception):
    """Raised when the store backend cannot serve a request."""

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        self.message: str = message
        self.original_error: Optional[Exception] = original_error
        super().__init__(self.message)


class DocumentStore(ABC):
    """Holds documents grouped by :class:`IndexType`, addressable by id."""

    @abstractmethod
    def put_documents(self, index_type: IndexType, docs: Iterable[BaseModel]) -> int:
        """Insert or fully replace *docs*; returns how many were written."""

    @abstractmethod
    def get_documents(self, index_type: IndexType, model: type[M]) -> list[M]:
        """Return every document of *index_type*, ordered by id."""

    @abstractmethod
    def count_documents(self, index_type: IndexType) -> int:
        ...

    @abstractmethod
    def document_ids(self, index_type: IndexType) -> set[str]:
        ...

    @abstractmethod
    def delete_documents(self, index_type: IndexType, ids: Iterable[str]) -> int:
        """Remove the documents with the given ids; returns how many existed."""

    @abstractmethod
    def search(
        self, index_type: IndexType, query: DocumentQuery, model: type[M],
    ) -> SearchResult[M]:
        """Execute *query* and return the requested window plus the total hit count."""


def _casefold(value: object) -> object:
    return value.casefold() if isinstance(value, str) else value


class SqliteDocumentStore(DocumentStore):
    """SQLite-backed :class:`DocumentStore`.

    Parameters
    ----------
    path:
        Database file, or ``":memory:"``.
    logger:
        A ``StructuredLogger`` instance.
    """

    _DDL: tuple[str, ...] = (
        """
        CREATE TABLE IF NOT EXISTS documents (
            index_type TEXT NOT NULL,
            doc_id TEXT NOT NULL,
            body TEXT NOT NULL,
            indexed_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (index_type, doc_id)
        )
        """,
    )

    def __init__(self, path: Union[Path, str], logger: StructuredLogger) -> None:
        self._logger = logger
        self._lock: threading.RLock = threading.RLock()
        try:
            self._conn: sqlite3.Connection = sqlite3.connect(
                str(path), check_same_thread=False,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.create_function("casefold", 1, _casefold, deterministic=True)
            for ddl in self._DDL:
                self._conn.execute(ddl)
            self._conn.commit()
        except sqlite3.Error as exc:
            raise DocumentStoreError(
                f"Cannot open document store at '{path}': {exc}", exc,
            ) from exc
        self._logger.info("Document store opened at %s", path)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put_documents(self, index_type: IndexType, docs: Iterable[BaseModel]) -> int:
        rows: list[tuple[str, str, str]] = [
            (index_type.key, str(getattr(doc, index_type.id_field)), doc.model_dump_json())
            for doc in docs
        ]
        if not rows:
            return 0
        with self._lock:
            try:
                self._conn.executemany(
                    """
                    INSERT INTO documents (index_type, doc_id, body)
                    VALUES (?, ?, ?)
                    ON CONFLICT(index_type, doc_id) DO UPDATE SET
                        body = excluded.body,
                        indexed_at = CURRENT_TIMESTAMP
                    """,
                    rows,
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DocumentStoreError(
                    f"Failed to write {len(rows)} document(s) to {index_type}: {exc}", exc,
                ) from exc
        self._logger.debug("Wrote %d document(s) to %s", len(rows), index_type)
        return len(rows)

    def delete_documents(self, index_type: IndexType, ids: Iterable[str]) -> int:
        params = [(index_type.key, doc_id) for doc_id in ids]
        if not params:
            return 0
        with self._lock:
            try:
                cursor = self._conn.executemany(
                    "DELETE FROM documents WHERE index_type = ? AND doc_id = ?",
                    params,
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                self._conn.rollback()
                raise DocumentStoreError(
                    f"Failed to delete documents from {index_type}: {exc}", exc,
                ) from exc
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_documents(self, index_type: IndexType, model: type[M]) -> list[M]:
        rows = self._fetch_all(
            "SELECT body FROM documents WHERE index_type = ? ORDER BY doc_id",
            [index_type.key],
        )
        return self._decode(rows, model)

    def count_documents(self, index_type: IndexType) -> int:
        rows = self._fetch_all(
            "SELECT COUNT(*) AS cnt FROM documents WHERE index_type = ?",
            [index_type.key],
        )
        return int(rows[0]["cnt"])

    def document_ids(self, index_type: IndexType) -> set[str]:
        rows = self._fetch_all(
            "SELECT doc_id FROM documents WHERE index_type = ?",
            [index_type.key],
        )
        return {row["doc_id"] for row in rows}

    def search(
        self, index_type: IndexType, query: DocumentQuery, model: type[M],
    ) -> SearchResult[M]:
        where, params = self._compile_where(index_type, query)
        order, order_params = self._compile_order(index_type, query.sort)

        total_rows = self._fetch_all(
            f"SELECT COUNT(*) AS cnt FROM documents AS d WHERE {where}", params,
        )
        page_rows = self._fetch_all(
            f"SELECT d.body FROM documents AS d WHERE {where} "
            f"ORDER BY {order} LIMIT ? OFFSET ?",
            [*params, *order_params,
             query.limit if query.limit is not None else -1, query.offset],
        )
        return SearchResult[model](
            docs=self._decode(page_rows, model),
            total=int(total_rows[0]["cnt"]),
        )

    def close(self) -> None:
        with self._lock:
            try:
                self._conn.close()
            except sqlite3.ProgrammingError:
                pass

    # ------------------------------------------------------------------
    # Query compilation
    # ------------------------------------------------------------------

    @staticmethod
    def _path(field: str) -> str:
        return f"$.{field}"

    def _check_fields(self, index_type: IndexType, query: DocumentQuery) -> None:
        unknown = query.referenced_fields() - index_type.field_names
        if unknown:
            raise ValueError(
                f"Unknown field(s) for {index_type}: {sorted(unknown)}. "
                f"Allowed fields: {sorted(index_type.field_names)}"
            )

    def _compile_where(
        self, index_type: IndexType, query: DocumentQuery,
    ) -> tuple[str, list[object]]:
        self._check_fields(index_type, query)

        clauses: list[str] = ["d.index_type = ?"]
        params: list[object] = [index_type.key]

        for field, value in query.filters.items():
            clauses.append("json_extract(d.body, ?) = ?")
            params.extend([self._path(field), value])

        if query.should:
            alternatives: list[str] = []
            for match in query.should:
                clause, clause_params = self._compile_match(index_type, match)
                alternatives.append(clause)
                params.extend(clause_params)
            clauses.append("(" + " OR ".join(alternatives) + ")")

        return " AND ".join(clauses), params

    def _compile_match(
        self, index_type: IndexType, match: FieldMatch,
    ) -> tuple[str, list[object]]:
        if match.field in index_type.array_fields:
            operand = "item.value"
        else:
            operand = "json_extract(d.body, ?)"

        if match.strategy is MatchStrategy.EXACT:
            condition, value = f"{operand} = ?", match.value
        elif match.strategy is MatchStrategy.EXACT_IGNORE_CASE:
            condition, value = f"casefold({operand}) = ?", match.value.casefold()
        elif match.strategy is MatchStrategy.CONTAINS_IGNORE_CASE:
            condition, value = f"instr(casefold({operand}), ?) > 0", match.value.casefold()
        else:
            raise ValueError(f"Unsupported match strategy: {match.strategy!r}")

        if match.field in index_type.array_fields:
            return (
                "EXISTS (SELECT 1 FROM json_each(d.body, ?) AS item "
                f"WHERE {condition})",
                [self._path(match.field), value],
            )
        return condition, [self._path(match.field), value]

    def _compile_order(
        self, index_type: IndexType, sort: list[str],
    ) -> tuple[str, list[object]]:
        terms: list[str] = []
        params: list[object] = []
        for field in sort:
            if field in index_type.array_fields:
                raise ValueError(f"Cannot sort on array field {field!r}")
            terms.append("json_extract(d.body, ?)")
            params.append(self._path(field))
        terms.append("d.doc_id")
        return ", ".join(terms), params

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _fetch_all(self, sql: str, params: list[object]) -> list[sqlite3.Row]:
        with self._lock:
            try:
                return self._conn.execute(sql, params).fetchall()
            except sqlite3.Error as exc:
                raise DocumentStoreError(f"Document store query failed: {exc}", exc) from exc

    @staticmethod
    def _decode(rows: list[sqlite3.Row], model: type[M]) -> list[M]:
        try:
            return [model.model_validate_json(row["body"]) for row in rows]
        except ValidationError as exc:
            raise DocumentStoreError(f"Stored document is not a valid {model.__name__}", exc) from exc
