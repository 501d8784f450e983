"""Recipient references.

Subject documents list recipients by either the user record's document id or
the user's authentication id, and nothing in the document says which. A
``RecipientRef`` records what is known about an identifier; only the
resolver turns refs into canonical user record ids.
"""

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class ByRecordId:
    """A user referenced by the user collection's own document id."""

    id: str


@dataclass(frozen=True)
class ByAuthId:
    """A user referenced by their authentication id."""

    id: str


@dataclass(frozen=True)
class AnyId:
    """An identifier of unknown kind, matched against both id forms."""

    id: str


RecipientRef = ByRecordId | ByAuthId | AnyId


def refs_from_values(values: Iterable[object] | None) -> list[RecipientRef]:
    """Wrap identifiers read from a document field as ``AnyId`` refs.

    Blank and non-string entries are dropped.
    """
    if not values:
        return []
    return [
        AnyId(value.strip())
        for value in values
        if isinstance(value, str) and value.strip()
    ]


def matches_record_id(ref: RecipientRef) -> bool:
    """Whether the ref may name a user record by its document id."""
    return isinstance(ref, ByRecordId | AnyId)


def matches_auth_id(ref: RecipientRef) -> bool:
    """Whether the ref may name a user by authentication id."""
    return isinstance(ref, ByAuthId | AnyId)
