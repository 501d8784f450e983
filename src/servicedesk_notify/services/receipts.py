"""Fetches delivery receipts and prunes tokens the gateway no longer accepts."""

import asyncio
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

from servicedesk_notify.errors import PushGatewayError
from servicedesk_notify.interfaces import PushGateway, UserStore
from servicedesk_notify.services.dispatcher import SentTicket
from servicedesk_notify.services.push_gateway import DEVICE_NOT_REGISTERED
from servicedesk_notify.utils.batching import chunked, dedupe

logger = logging.getLogger(__name__)

DEFAULT_RECEIPT_CHUNK_SIZE = 300


@dataclass
class CleanupReport:
    receipts_checked: int = 0
    unregistered_tokens: list[str] = field(default_factory=list)
    # user record id -> project -> tokens removed
    removed: dict[str, dict[str, list[str]]] = field(default_factory=dict)
    failed_users: list[str] = field(default_factory=list)

    @property
    def tokens_removed(self) -> int:
        return len({
            token
            for by_project in self.removed.values()
            for tokens in by_project.values()
            for token in tokens
        })


def group_tokens_for_removal(
    tokens: Iterable[str],
    token_owners: Mapping[str, str],
    token_projects: Mapping[str, Sequence[str]],
) -> dict[str, dict[str, list[str]]]:
    """Group tokens by owning user, then by every project list they were found in."""
    grouped: dict[str, dict[str, list[str]]] = {}
    for token in dedupe(list(tokens)):
        owner = token_owners.get(token)
        projects = token_projects.get(token)
        if owner is None or not projects:
            logger.warning(f"Cannot remove push token {token}: owner unknown")
            continue
        by_project = grouped.setdefault(owner, {})
        for project in projects:
            by_project.setdefault(project, []).append(token)
    return grouped


class ReceiptReconciler:
    """Turns delivery receipts into token removals."""

    def __init__(
        self,
        gateway: PushGateway,
        users: UserStore,
        chunk_size: int = DEFAULT_RECEIPT_CHUNK_SIZE,
    ) -> None:
        self._gateway = gateway
        self._users = users
        self.chunk_size = chunk_size

    async def find_unregistered(self, sent: Sequence[SentTicket]) -> tuple[int, list[str]]:
        """Look up receipts for accepted tickets.

        Returns:
            The number of receipts received and the tokens reported as no
            longer registered.
        """
        token_by_ticket = {ticket.ticket_id: ticket.token for ticket in sent}
        checked = 0
        unregistered: list[str] = []
        for chunk in chunked(list(token_by_ticket), self.chunk_size):
            try:
                receipts = await self._gateway.get_receipts(chunk)
            except PushGatewayError as e:
                logger.error(
                    f"Could not fetch receipts for {len(chunk)} tickets: {e}", exc_info=True
                )
                continue

            checked += len(receipts)
            for ticket_id, receipt in receipts.items():
                if receipt.ok:
                    continue
                token = token_by_ticket.get(ticket_id)
                if receipt.error_code == DEVICE_NOT_REGISTERED and token is not None:
                    unregistered.append(token)
                else:
                    logger.warning(
                        f"Delivery failed for ticket {ticket_id}: "
                        f"{receipt.error_code or receipt.status} {receipt.message or ''}".rstrip()
                    )
        return checked, dedupe(unregistered)

    async def remove_tokens(
        self,
        tokens: Iterable[str],
        token_owners: Mapping[str, str],
        token_projects: Mapping[str, Sequence[str]],
    ) -> CleanupReport:
        """Remove tokens from the exact project list of the exact user holding them.

        One update per affected user; the updates run concurrently and a
        failure for one user does not affect the others.
        """
        report = CleanupReport()
        grouped = group_tokens_for_removal(tokens, token_owners, token_projects)
        report.unregistered_tokens = dedupe([
            token for by_project in grouped.values() for t in by_project.values() for token in t
        ])
        if not grouped:
            return report

        outcomes = await asyncio.gather(
            *(
                self._users.remove_tokens(owner, by_project)
                for owner, by_project in grouped.items()
            ),
            return_exceptions=True,
        )
        for (owner, by_project), outcome in zip(grouped.items(), outcomes, strict=True):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Failed to remove stale push tokens for user {owner}: {outcome}",
                    exc_info=outcome,
                )
                report.failed_users.append(owner)
            else:
                report.removed[owner] = by_project

        logger.info(
            f"Removed {report.tokens_removed} stale push tokens from {len(report.removed)} users"
        )
        return report

    async def reconcile(
        self,
        sent: Sequence[SentTicket],
        token_owners: Mapping[str, str],
        token_projects: Mapping[str, Sequence[str]],
        already_unregistered: Iterable[str] = (),
    ) -> CleanupReport:
        """Check receipts for ``sent`` and remove every unregistered token.

        ``already_unregistered`` holds tokens the gateway rejected at send
        time; they are removed along with those flagged by receipts.
        """
        checked, unregistered = await self.find_unregistered(sent)
        report = await self.remove_tokens(
            [*already_unregistered, *unregistered], token_owners, token_projects
        )
        report.receipts_checked = checked
        return report
