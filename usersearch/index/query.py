"""
Structured Document Queries.

A :class:`DocumentQuery` is the only thing a :class:`~usersearch.index.store.DocumentStore`
knows how to execute.  Matching rules are tagged per field with a
:class:`MatchStrategy` so case sensitivity is declared, not improvised at
each call site.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Optional, Union

from pydantic import BaseModel, Field

__all__ = ["DocumentQuery", "FieldMatch", "FilterValue", "MatchStrategy"]

FilterValue = Union[bool, int, str]


class MatchStrategy(StrEnum):
    """How a query value is compared with a document field.

    Array fields match when any of their elements matches.
    """

    EXACT = "EXACT"
    EXACT_IGNORE_CASE = "EXACT_IGNORE_CASE"
    CONTAINS_IGNORE_CASE = "CONTAINS_IGNORE_CASE"


class FieldMatch(BaseModel):
    """A single field-level criterion."""

    field: str
    strategy: MatchStrategy
    value: str = Field(min_length=1)

    model_config = {"frozen": True}


class DocumentQuery(BaseModel):
    """Filter, sort and window applied to one index type.

    - every entry of ``filters`` must hold (field equals value);
    - when ``should`` is non-empty, at least one of its matches must hold;
    - hits are ordered by ``sort`` then by document id;
    - ``limit=None`` returns every hit from ``offset`` on.
    """

    filters: dict[str, FilterValue] = Field(default_factory=dict)
    should: list[FieldMatch] = Field(default_factory=list)
    sort: list[str] = Field(default_factory=list)
    offset: int = Field(default=0, ge=0)
    limit: Optional[int] = Field(default=None, ge=1)

    def referenced_fields(self) -> set[str]:
        """Every field name the query touches, for allowlist checks."""
        fields = set(self.filters) | set(self.sort)
        fields.update(match.field for match in self.should)
        return fields
