"""
The notification pipeline: resolve, write, push, reconcile.

``NotificationPipeline.deliver`` handles one event. Its stages run strictly in
order and each hands the next a plain value, so every stage can be exercised
on its own:

1. resolve recipient references to user records and push tokens;
2. write one notification record per recipient (a single atomic batch);
3. push to every token of every recipient, tagging each message with that
   recipient's notification id.

If step 2 fails nothing is pushed: a push without a stored notification
would point the client at a record that does not exist.

``NotificationPipeline.reconcile`` then fetches delivery receipts for any
number of delivered events at once and removes tokens the gateway reports as
unregistered. One trigger invocation can carry several events, and they share
a single receipt wait. ``notify`` runs both steps for a single event.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from servicedesk_notify.config_models import AppConfig, PushConfig
from servicedesk_notify.errors import FanOutWriteError
from servicedesk_notify.interfaces import NotificationStore, PushGateway, UserStore
from servicedesk_notify.models import NotificationContent
from servicedesk_notify.recipients import RecipientRef
from servicedesk_notify.services.dispatcher import (
    PushDispatcher,
    SentTicket,
    attach_notification_ids,
)
from servicedesk_notify.services.fanout import NotificationFanOutWriter
from servicedesk_notify.services.receipts import CleanupReport, ReceiptReconciler
from servicedesk_notify.services.resolver import DEFAULT_IN_QUERY_LIMIT, IdentifierResolver

logger = logging.getLogger(__name__)


@dataclass
class PendingReceipts:
    """What delivery leaves for reconciliation: accepted tickets and token owners."""

    sent: list[SentTicket] = field(default_factory=list)
    # Tokens the gateway rejected at send time as no longer registered
    unregistered_tokens: list[str] = field(default_factory=list)
    token_owners: dict[str, str] = field(default_factory=dict)
    token_projects: dict[str, list[str]] = field(default_factory=dict)

    @property
    def empty(self) -> bool:
        return not self.sent and not self.unregistered_tokens

    @property
    def tokens(self) -> set[str]:
        return {ticket.token for ticket in self.sent} | set(self.unregistered_tokens)

    def merge(self, other: "PendingReceipts") -> None:
        self.sent.extend(other.sent)
        self.unregistered_tokens.extend(other.unregistered_tokens)
        for token, owner in other.token_owners.items():
            self.token_owners.setdefault(token, owner)
        for token, projects in other.token_projects.items():
            known = self.token_projects.setdefault(token, [])
            known.extend(p for p in projects if p not in known)


@dataclass
class NotifyOutcome:
    """What happened for one event."""

    notification_ids: dict[str, str] = field(default_factory=dict)
    messages_sent: int = 0
    messages_failed: int = 0
    tokens_removed: int = 0
    aborted: bool = False
    pending: PendingReceipts = field(default_factory=PendingReceipts, repr=False)


class NotificationPipeline:
    """Runs the resolve, fan-out, dispatch and reconcile stages for events."""

    def __init__(
        self,
        users: UserStore,
        notifications: NotificationStore,
        gateway: PushGateway,
        push_config: PushConfig | None = None,
        in_query_limit: int = DEFAULT_IN_QUERY_LIMIT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        push_config = push_config or PushConfig()
        self.resolver = IdentifierResolver(users, in_query_limit=in_query_limit)
        self.writer = NotificationFanOutWriter(notifications)
        self.dispatcher = PushDispatcher(
            gateway,
            chunk_size=push_config.send_chunk_size,
            max_attempts=push_config.max_attempts,
            base_delay=push_config.base_delay_seconds,
            sleep=sleep,
        )
        self.reconciler = ReceiptReconciler(
            gateway, users, chunk_size=push_config.receipt_chunk_size
        )
        self.sound = push_config.sound
        self.receipt_delay = push_config.receipt_delay_seconds
        self._sleep = sleep

    @classmethod
    def from_config(
        cls,
        users: UserStore,
        notifications: NotificationStore,
        gateway: PushGateway,
        config: AppConfig,
    ) -> "NotificationPipeline":
        return cls(
            users,
            notifications,
            gateway,
            push_config=config.push,
            in_query_limit=config.store.in_query_limit,
        )

    async def notify(
        self,
        recipients: Sequence[RecipientRef],
        content: NotificationContent,
        exclude: Sequence[RecipientRef] = (),
        label: str = "notification",
    ) -> NotifyOutcome:
        """Deliver one event and reconcile its receipts straight away."""
        outcome = await self.deliver(recipients, content, exclude=exclude, label=label)
        await self.reconcile([outcome])
        return outcome

    async def deliver(
        self,
        recipients: Sequence[RecipientRef],
        content: NotificationContent,
        exclude: Sequence[RecipientRef] = (),
        label: str = "notification",
    ) -> NotifyOutcome:
        """Write records for and push one event, leaving receipts pending.

        Args:
            recipients: Who should be told. Repeats and unknown users are dropped.
            content: Title, body and data payload of the notification.
            exclude: Users who must not be told, in whichever id form is known.
                They are matched after resolution, so either id form excludes
                the user.
            label: Describes the event in log lines.
        """
        outcome = NotifyOutcome()
        if not recipients:
            logger.info(f"No recipients for {label}")
            return outcome

        try:
            resolution = await self.resolver.resolve([*recipients, *exclude])
        except Exception as e:
            logger.error(f"Could not resolve recipients for {label}: {e}", exc_info=True)
            outcome.aborted = True
            return outcome

        excluded = set(resolution.canonical_ids(exclude)) | {ref.id for ref in exclude}
        recipient_ids = [
            record_id
            for record_id in resolution.canonical_ids(recipients)
            if record_id not in excluded
        ]
        if not recipient_ids:
            logger.info(f"No resolvable recipients left for {label}")
            return outcome

        logger.info(f"Notifying {len(recipient_ids)} users for {label}: {recipient_ids}")
        try:
            outcome.notification_ids = await self.writer.write(recipient_ids, content)
        except FanOutWriteError as e:
            logger.error(f"Aborting {label}, no push will be sent: {e}")
            outcome.aborted = True
            return outcome

        messages = attach_notification_ids(
            resolution.messages_for(content, sound=self.sound),
            resolution.token_owners,
            outcome.notification_ids,
        )
        dispatch = await self.dispatcher.dispatch(messages)
        outcome.messages_sent = len(dispatch.sent)
        outcome.messages_failed = dispatch.failed
        outcome.pending = PendingReceipts(
            sent=list(dispatch.sent),
            unregistered_tokens=list(dispatch.unregistered_tokens),
            token_owners=dict(resolution.token_owners),
            token_projects={t: list(p) for t, p in resolution.token_projects.items()},
        )
        return outcome

    async def reconcile(self, outcomes: Sequence[NotifyOutcome]) -> CleanupReport | None:
        """Check receipts for every delivered outcome and prune unregistered tokens.

        Waits for the receipt delay once, however many outcomes are passed.
        Each outcome's ``tokens_removed`` counts the removed tokens it sent to,
        and its pending receipts are cleared so a second call does nothing.
        """
        pending = PendingReceipts()
        for outcome in outcomes:
            pending.merge(outcome.pending)
        if pending.empty:
            return None

        if pending.sent and self.receipt_delay > 0:
            # Receipts only exist once the gateway has handed messages on
            await self._sleep(self.receipt_delay)

        report = await self.reconciler.reconcile(
            pending.sent,
            pending.token_owners,
            pending.token_projects,
            already_unregistered=pending.unregistered_tokens,
        )
        removed = {
            token
            for by_project in report.removed.values()
            for tokens in by_project.values()
            for token in tokens
        }
        for outcome in outcomes:
            outcome.tokens_removed = len(removed & outcome.pending.tokens)
            outcome.pending = PendingReceipts()
        return report
