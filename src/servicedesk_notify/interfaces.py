"""
Defines the interfaces the notification pipeline depends on.

The Firestore repositories and the Expo client implement these; tests supply
in-memory versions.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from servicedesk_notify.services.push_gateway import (
    PushMessage,
    PushReceipt,
    PushTicket,
)


@dataclass(frozen=True)
class UserRecord:
    """A user document as the pipeline sees it.

    ``push_tokens`` is the raw value of the token field and is expected to map
    delivery project namespace to a list of device tokens. It is left
    unvalidated here; the resolver decides what to do with other shapes.
    """

    id: str
    auth_id: str | None = None
    push_tokens: Any = None


class UserStore(Protocol):
    """Read and token-cleanup access to the user collection."""

    async def find_by_record_ids(self, record_ids: Sequence[str]) -> list[UserRecord]:
        """
        Return the users whose document id is one of ``record_ids``.

        Callers pass at most the store's "in" query limit.
        """
        ...

    async def find_by_auth_ids(self, auth_ids: Sequence[str]) -> list[UserRecord]:
        """Return the users whose authentication id is one of ``auth_ids``."""
        ...

    async def remove_tokens(
        self, record_id: str, tokens_by_project: Mapping[str, Sequence[str]]
    ) -> None:
        """
        Atomically remove tokens from one user's per-project token lists.

        Removing a token that is no longer present is a no-op.
        """
        ...


class NotificationStore(Protocol):
    """Write access to the per-user notification subcollections."""

    async def create_for_recipients(
        self, recipient_ids: Sequence[str], record: Mapping[str, Any]
    ) -> dict[str, str]:
        """
        Create one notification record per recipient in a single atomic batch.

        Returns:
            Mapping of recipient record id to the new notification id.

        Raises:
            FanOutWriteError: If the batch could not be committed. Nothing was written.
        """
        ...


class PushGateway(Protocol):
    """Bulk send and bulk receipt lookup against the push delivery gateway."""

    async def send(self, messages: Sequence[PushMessage]) -> list[PushTicket]: ...

    async def get_receipts(
        self, ticket_ids: Sequence[str]
    ) -> dict[str, PushReceipt]: ...
