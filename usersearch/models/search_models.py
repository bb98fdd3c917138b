"""
Search Data Transfer Objects.

Pydantic models for validated input/output at the query engine boundary:
what to search for (:class:`UserQuery`), which page of it
(:class:`SearchOptions`), and what came back (:class:`SearchResult`).
"""

from __future__ import annotations

from typing import ClassVar, Generic, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator, model_validator

T = TypeVar("T")

__all__ = [
    "SearchOptions",
    "SearchResult",
    "UserQuery",
]


class SearchOptions(BaseModel):
    """Paging window of a search.

    ``limit`` above :attr:`MAX_PAGE_SIZE` is capped rather than rejected.
    Windows reaching past :attr:`MAX_RETURNABLE_RESULTS` are refused.
    """

    MAX_PAGE_SIZE: ClassVar[int] = 500
    MAX_RETURNABLE_RESULTS: ClassVar[int] = 10_000
    DEFAULT_LIMIT: ClassVar[int] = 10

    offset: int = Field(default=0, ge=0)
    limit: int = Field(default=10, ge=1)

    model_config = {"frozen": True}

    @field_validator("limit")
    @classmethod
    def _cap_limit(cls, value: int) -> int:
        return min(value, cls.MAX_PAGE_SIZE)

    @model_validator(mode="after")
    def _check_window(self) -> "SearchOptions":
        if self.offset + self.limit > self.MAX_RETURNABLE_RESULTS:
            raise ValueError(
                f"Can return only the first {self.MAX_RETURNABLE_RESULTS} results. "
                f"{self.offset + self.limit}th result asked."
            )
        return self

    @classmethod
    def for_page(cls, page: int, page_size: int = 10) -> "SearchOptions":
        """Build options for the 1-based *page* of *page_size* results."""
        if page < 1:
            raise ValueError(f"Page must be greater or equal to 1 (got {page})")
        if page_size < 1:
            raise ValueError(f"Page size must be greater or equal to 1 (got {page_size})")
        page_size = min(page_size, cls.MAX_PAGE_SIZE)
        return cls(offset=(page - 1) * page_size, limit=page_size)

    @property
    def page(self) -> int:
        return self.offset // self.limit + 1


class SearchResult(BaseModel, Generic[T]):
    """One page of hits plus the total number of matching documents."""

    docs: list[T] = Field(default_factory=list)
    total: int = 0


class UserQuery(BaseModel):
    """Criteria of a user search.

    ``text_query`` is matched as a case-insensitive substring of login,
    name or email.  A blank text query means "no text criterion".
    """

    text_query: Optional[str] = None
    active: bool = True

    model_config = {"frozen": True}

    @field_validator("text_query")
    @classmethod
    def _blank_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        stripped = value.strip()
        return stripped or None
