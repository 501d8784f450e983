"""Sends push messages in gateway-sized chunks with bounded retry."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field

from servicedesk_notify.errors import PushGatewayError
from servicedesk_notify.interfaces import PushGateway
from servicedesk_notify.services.push_gateway import (
    DEVICE_NOT_REGISTERED,
    PushMessage,
    PushTicket,
)
from servicedesk_notify.storage.schema import DATA_NOTIFICATION_ID
from servicedesk_notify.utils.batching import chunked

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 100
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0


@dataclass(frozen=True)
class SentTicket:
    """A successfully accepted message: the gateway's ticket id and its token."""

    ticket_id: str
    token: str


@dataclass
class DispatchResult:
    sent: list[SentTicket] = field(default_factory=list)
    # Tokens the gateway rejected outright as no longer registered
    unregistered_tokens: list[str] = field(default_factory=list)
    # Messages in chunks that were abandoned or rejected
    failed: int = 0


def attach_notification_ids(
    messages_by_project: Mapping[str, Sequence[PushMessage]],
    token_owners: Mapping[str, str],
    notification_ids: Mapping[str, str],
) -> dict[str, list[PushMessage]]:
    """Give each message the notification id of the user its token belongs to.

    Messages for tokens whose owner has no notification record (excluded or
    unknown users) are dropped.
    """
    attached: dict[str, list[PushMessage]] = {}
    for project, messages in messages_by_project.items():
        for message in messages:
            owner = token_owners.get(message.to)
            notification_id = notification_ids.get(owner) if owner else None
            if notification_id is None:
                continue
            attached.setdefault(project, []).append(
                message.model_copy(
                    update={
                        "data": {**message.data, DATA_NOTIFICATION_ID: notification_id}
                    }
                )
            )
    return attached


class PushDispatcher:
    """Delivers push messages to the gateway, one project namespace at a time.

    A send request may only carry tokens from a single project, so chunks
    never mix namespaces.
    """

    def __init__(
        self,
        gateway: PushGateway,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            gateway: Push gateway client.
            chunk_size: Maximum messages per send request.
            max_attempts: Attempts per chunk before it is abandoned.
            base_delay: Delay before the first retry; doubles on each further retry.
            sleep: Awaitable sleep, replaceable in tests.
        """
        self._gateway = gateway
        self.chunk_size = chunk_size
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def dispatch(
        self, messages_by_project: Mapping[str, Sequence[PushMessage]]
    ) -> DispatchResult:
        result = DispatchResult()
        total = sum(len(m) for m in messages_by_project.values())
        if total == 0:
            logger.info("No push messages to send")
            return result

        logger.info(
            f"Preparing to send {total} push notifications across "
            f"{len(messages_by_project)} projects"
        )
        for project, messages in messages_by_project.items():
            for index, chunk in enumerate(chunked(messages, self.chunk_size)):
                label = f"{project} chunk {index + 1}"
                tickets = await self._send_with_retry(chunk, label)
                if tickets is None:
                    result.failed += len(chunk)
                    continue
                self._record_tickets(chunk, tickets, result)

        logger.info(
            f"Push dispatch finished: {len(result.sent)} accepted, "
            f"{len(result.unregistered_tokens)} unregistered, {result.failed} failed"
        )
        return result

    async def _send_with_retry(
        self, chunk: list[PushMessage], label: str
    ) -> list[PushTicket] | None:
        """Send one chunk, retrying with exponential backoff.

        Returns:
            The tickets, or None if the chunk was abandoned.
        """
        for attempt in range(self.max_attempts):
            try:
                return await self._gateway.send(chunk)
            except PushGatewayError as e:
                if attempt == self.max_attempts - 1:
                    logger.error(
                        f"Giving up on {label} ({len(chunk)} messages) after "
                        f"{self.max_attempts} attempts: {e}",
                        exc_info=True,
                    )
                    return None
                delay = self.base_delay * (2**attempt)
                logger.warning(
                    f"Sending {label} failed (attempt {attempt + 1}/{self.max_attempts}): {e}. "
                    f"Retrying in {delay:.1f} seconds"
                )
                await self._sleep(delay)
            except Exception as e:
                logger.error(
                    f"Unexpected error sending {label}, not retrying: {e}", exc_info=True
                )
                return None
        return None

    def _record_tickets(
        self,
        chunk: list[PushMessage],
        tickets: list[PushTicket],
        result: DispatchResult,
    ) -> None:
        for message, ticket in zip(chunk, tickets, strict=True):
            if ticket.ok and ticket.id:
                result.sent.append(SentTicket(ticket_id=ticket.id, token=message.to))
                continue
            result.failed += 1
            if ticket.error_code == DEVICE_NOT_REGISTERED:
                logger.info(f"Push token {message.to} is no longer registered")
                result.unregistered_tokens.append(message.to)
            else:
                logger.warning(
                    f"Push to {message.to} rejected: {ticket.error_code or ticket.status} "
                    f"{ticket.message or ''}".rstrip()
                )
