"""
User Model.

Pydantic model of a row of the relational ``users`` table, the
authoritative source the search index is built from.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def unique_in_order(values: list[str]) -> list[str]:
    """Drop repeated entries, keeping the first occurrence of each."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class User(BaseModel):
    """Represents a user account as stored in the relational source.

    ``scm_accounts`` is an ordered set of aliases (version-control
    usernames and the like) used to resolve commit authors to users.
    It is persisted as a JSON array in the ``scm_accounts`` column.
    """

    uuid: str = Field(min_length=1)
    login: str = Field(min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None
    active: bool = True
    scm_accounts: list[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_validator("scm_accounts")
    @classmethod
    def _dedupe_scm_accounts(cls, value: list[str]) -> list[str]:
        return unique_in_order(value)

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "User":
        """Build a ``User`` from a ``users`` row."""
        data = dict(row)
        raw_accounts = data.get("scm_accounts")
        data["scm_accounts"] = json.loads(raw_accounts) if raw_accounts else []
        return cls(**data)
