"""
User Index Definition.

Names the ``users/user`` index type, its fields, and the per-field
matching rules both user queries are built from.
"""

from __future__ import annotations

from pydantic import BaseModel

from usersearch.index.query import FieldMatch, MatchStrategy


class IndexType(BaseModel):
    """Identifies a family of documents inside a store.

    ``field_names`` is the allowlist of queryable fields; ``array_fields`` is
    the subset holding JSON arrays.
    """

    index: str
    type: str
    id_field: str
    field_names: frozenset[str]
    array_fields: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @property
    def key(self) -> str:
        return f"{self.index}/{self.type}"

    def __str__(self) -> str:
        return self.key


class FieldRule(BaseModel):
    """A field paired with the strategy used to match it."""

    field: str
    strategy: MatchStrategy

    model_config = {"frozen": True}

    def match(self, value: str) -> FieldMatch:
        return FieldMatch(field=self.field, strategy=self.strategy, value=value)


FIELD_UUID = "uuid"
FIELD_LOGIN = "login"
FIELD_NAME = "name"
FIELD_EMAIL = "email"
FIELD_ACTIVE = "active"
FIELD_SCM_ACCOUNTS = "scm_accounts"

TYPE_USER = IndexType(
    index="users",
    type="user",
    id_field=FIELD_UUID,
    field_names=frozenset({
        FIELD_UUID,
        FIELD_LOGIN,
        FIELD_NAME,
        FIELD_EMAIL,
        FIELD_ACTIVE,
        FIELD_SCM_ACCOUNTS,
    }),
    array_fields=frozenset({FIELD_SCM_ACCOUNTS}),
)

# Resolving an SCM account: login is an identifier and stays case-sensitive,
# addresses and aliases are not.
SCM_ACCOUNT_RULES: tuple[FieldRule, ...] = (
    FieldRule(field=FIELD_LOGIN, strategy=MatchStrategy.EXACT),
    FieldRule(field=FIELD_EMAIL, strategy=MatchStrategy.EXACT_IGNORE_CASE),
    FieldRule(field=FIELD_SCM_ACCOUNTS, strategy=MatchStrategy.EXACT_IGNORE_CASE),
)

TEXT_SEARCH_RULES: tuple[FieldRule, ...] = (
    FieldRule(field=FIELD_LOGIN, strategy=MatchStrategy.CONTAINS_IGNORE_CASE),
    FieldRule(field=FIELD_NAME, strategy=MatchStrategy.CONTAINS_IGNORE_CASE),
    FieldRule(field=FIELD_EMAIL, strategy=MatchStrategy.CONTAINS_IGNORE_CASE),
)

DEFAULT_SORT: tuple[str, ...] = (FIELD_LOGIN,)
