"""Writes one notification record per recipient (fan-out on write)."""

import logging
from collections.abc import Sequence

from servicedesk_notify.interfaces import NotificationStore
from servicedesk_notify.models import NotificationContent
from servicedesk_notify.storage.schema import DATA_SUBJECT_ID, DATA_TYPE
from servicedesk_notify.utils.batching import dedupe

logger = logging.getLogger(__name__)


class NotificationFanOutWriter:
    """Creates the in-app notification records for one event."""

    def __init__(self, store: NotificationStore) -> None:
        self._store = store

    async def write(
        self, recipient_ids: Sequence[str], content: NotificationContent
    ) -> dict[str, str]:
        """Create a record for every recipient in one atomic batch.

        Args:
            recipient_ids: Canonical user record ids. Repeats are collapsed.
            content: The notification to store.

        Returns:
            Mapping of recipient record id to the created notification id.

        Raises:
            FanOutWriteError: If the batch was not committed.
        """
        recipients = dedupe(recipient_ids)
        if not recipients:
            logger.info("No recipients to write notification records for")
            return {}

        notification_ids = await self._store.create_for_recipients(
            recipients, content.to_record()
        )
        logger.info(
            f"Wrote {len(notification_ids)} notification records for event "
            f"{content.data.get(DATA_TYPE)}/{content.data.get(DATA_SUBJECT_ID)}"
        )
        return notification_ids
