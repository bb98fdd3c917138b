"""
User Document Model.

The denormalized, independently addressable form of a user held by the
document store.  One document per user, keyed by ``uuid``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field, field_validator

from usersearch.models.user import User, unique_in_order


class UserDoc(BaseModel):
    """A user as seen by the search index.

    Documents are always written whole: an update replaces every field,
    nothing is merged with the previous version.
    """

    uuid: str = Field(min_length=1)
    login: str = Field(min_length=1)
    name: Optional[str] = None
    email: Optional[str] = None
    active: bool = True
    scm_accounts: list[str] = Field(default_factory=list)

    @field_validator("scm_accounts")
    @classmethod
    def _dedupe_scm_accounts(cls, value: list[str]) -> list[str]:
        return unique_in_order(value)

    @classmethod
    def from_user(cls, user: User) -> "UserDoc":
        return cls(
            uuid=user.uuid,
            login=user.login,
            name=user.name,
            email=user.email,
            active=user.active,
            scm_accounts=list(user.scm_accounts),
        )
