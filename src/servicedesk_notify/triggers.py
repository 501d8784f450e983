"""
Decides which notifications a document change calls for, and sends them.

Detection is pure: given the document state (or before/after states) it
returns the events worth notifying about. ``TriggerHandlers`` feeds each
event through the pipeline independently, so a failure on one event never
suppresses another from the same write.
"""

import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from servicedesk_notify import templates
from servicedesk_notify.config_models import TemplateConfig
from servicedesk_notify.models import Announcement, NotificationContent, ServiceRequest
from servicedesk_notify.pipeline import NotificationPipeline, NotifyOutcome
from servicedesk_notify.recipients import RecipientRef, refs_from_values
from servicedesk_notify.utils.batching import dedupe

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    NEW_TASK = "new_task"
    TASK_ASSIGNED = "task_assigned"
    NEW_COMMENT = "new_comment"
    ARRIVED_ON_SITE = "arrived_on_site"
    USER_RESPONSE = "user_response"
    ANNOUNCEMENT = "announcement"


@dataclass
class NotificationEvent:
    kind: EventKind
    subject_id: str
    recipients: list[RecipientRef]
    content: NotificationContent
    exclude: list[RecipientRef] = field(default_factory=list)


def _parse_ticket(data: Mapping[str, Any] | None, request_id: str) -> ServiceRequest | None:
    if data is None:
        return None
    try:
        return ServiceRequest.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Service request {request_id} has an unexpected shape: {e}")
        return None


def _creator_refs(ticket: ServiceRequest) -> list[RecipientRef]:
    return refs_from_values([ticket.creator_id])


def detect_ticket_created(
    request_id: str, data: Mapping[str, Any] | None
) -> list[NotificationEvent]:
    """A new ticket notifies everyone assigned to it from the start."""
    ticket = _parse_ticket(data, request_id)
    if ticket is None:
        logger.info(f"No data for created service request {request_id}, nothing to do")
        return []

    assigned = refs_from_values(ticket.assigned_users)
    if not assigned:
        logger.info(f"Service request {request_id} created with no assigned users")
        return []
    return [
        NotificationEvent(
            kind=EventKind.NEW_TASK,
            subject_id=request_id,
            recipients=assigned,
            content=templates.new_task(request_id, ticket),
        )
    ]


def detect_ticket_updated(
    request_id: str,
    before_data: Mapping[str, Any] | None,
    after_data: Mapping[str, Any] | None,
    config: TemplateConfig | None = None,
) -> list[NotificationEvent]:
    """Compare two states of a ticket and list every event the update contains.

    Checks are independent: one write can assign users, add a comment, mark
    arrival and record a response all at once.
    """
    config = config or TemplateConfig()
    before = _parse_ticket(before_data, request_id)
    after = _parse_ticket(after_data, request_id)
    if before is None or after is None:
        logger.info(f"Missing before or after data for service request {request_id}")
        return []

    events: list[NotificationEvent] = []

    # Newly assigned users
    previously_assigned = {ref.id for ref in refs_from_values(before.assigned_users)}
    new_assignees = [
        ref
        for ref in refs_from_values(after.assigned_users)
        if ref.id not in previously_assigned
    ]
    if new_assignees:
        events.append(
            NotificationEvent(
                kind=EventKind.TASK_ASSIGNED,
                subject_id=request_id,
                recipients=new_assignees,
                content=templates.task_assigned(request_id, after),
            )
        )

    # New comment
    if len(after.comments) > len(before.comments):
        comment = after.comments[-1]
        if templates.is_auto_accept_comment(comment, config.auto_accept_comments):
            logger.info(f"Comment on {request_id} is an automatic acceptance note, skipping")
        elif templates.is_status_change_comment(comment):
            logger.info(f"Comment on {request_id} is a status change, skipping")
        else:
            recipients = dedupe([
                *refs_from_values(after.assigned_users),
                *_creator_refs(after),
            ])
            exclude = refs_from_values([comment.user_id])
            events.append(
                NotificationEvent(
                    kind=EventKind.NEW_COMMENT,
                    subject_id=request_id,
                    recipients=recipients,
                    exclude=exclude,
                    content=templates.new_comment(
                        request_id, after, comment, config.comment_max_length
                    ),
                )
            )

    # Arrival on site
    if not before.on_location and after.on_location:
        creator = _creator_refs(after)
        if creator:
            events.append(
                NotificationEvent(
                    kind=EventKind.ARRIVED_ON_SITE,
                    subject_id=request_id,
                    recipients=creator,
                    content=templates.arrived_on_site(request_id, after),
                )
            )
        else:
            logger.info(f"Arrival on {request_id} but the ticket has no creator to notify")

    # New user response
    if len(after.user_responses) > len(before.user_responses):
        response = after.user_responses[-1]
        creator = _creator_refs(after)
        if creator:
            events.append(
                NotificationEvent(
                    kind=EventKind.USER_RESPONSE,
                    subject_id=request_id,
                    recipients=creator,
                    content=templates.user_responded(
                        request_id, after, response.user_name, response.response
                    ),
                )
            )
        else:
            logger.info(f"Response on {request_id} but the ticket has no creator to notify")

    return events


def detect_announcement_created(
    announcement_id: str, data: Mapping[str, Any] | None
) -> list[NotificationEvent]:
    """A new announcement goes, verbatim, to everyone it is assigned to."""
    if data is None:
        logger.info(f"No data for created announcement {announcement_id}, nothing to do")
        return []
    try:
        item = Announcement.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Announcement {announcement_id} has an unexpected shape: {e}")
        return []

    assigned = refs_from_values(item.assigned_users)
    if not assigned:
        logger.info(f"Announcement {announcement_id} created with no assigned users")
        return []
    return [
        NotificationEvent(
            kind=EventKind.ANNOUNCEMENT,
            subject_id=announcement_id,
            recipients=assigned,
            content=templates.announcement(announcement_id, item),
        )
    ]


class TriggerHandlers:
    """Entry points called with document snapshots when a trigger fires."""

    def __init__(
        self, pipeline: NotificationPipeline, config: TemplateConfig | None = None
    ) -> None:
        self.pipeline = pipeline
        self.config = config or TemplateConfig()

    async def on_ticket_created(
        self, request_id: str, data: Mapping[str, Any] | None
    ) -> list[NotifyOutcome]:
        return await self._run(detect_ticket_created(request_id, data))

    async def on_ticket_updated(
        self,
        request_id: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> list[NotifyOutcome]:
        return await self._run(
            detect_ticket_updated(request_id, before, after, self.config)
        )

    async def on_announcement_created(
        self, announcement_id: str, data: Mapping[str, Any] | None
    ) -> list[NotifyOutcome]:
        return await self._run(detect_announcement_created(announcement_id, data))

    async def _run(self, events: list[NotificationEvent]) -> list[NotifyOutcome]:
        outcomes: list[NotifyOutcome] = []
        for event in events:
            label = f"{event.kind.value} on {event.subject_id}"
            try:
                outcomes.append(
                    await self.pipeline.deliver(
                        event.recipients,
                        event.content,
                        exclude=event.exclude,
                        label=label,
                    )
                )
            except Exception as e:
                logger.error(f"Failed to send notifications for {label}: {e}", exc_info=True)
                outcomes.append(NotifyOutcome(aborted=True))

        # One receipt pass for everything this invocation sent
        try:
            await self.pipeline.reconcile(outcomes)
        except Exception as e:
            logger.error(f"Failed to reconcile delivery receipts: {e}", exc_info=True)
        return outcomes


__all__ = [
    "EventKind",
    "NotificationEvent",
    "TriggerHandlers",
    "detect_announcement_created",
    "detect_ticket_created",
    "detect_ticket_updated",
]
