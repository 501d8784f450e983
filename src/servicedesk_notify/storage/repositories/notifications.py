"""Repository for the per-user notification subcollections."""

from collections.abc import Mapping, Sequence
from typing import Any

from google.api_core.exceptions import GoogleAPIError
from google.cloud.firestore_v1 import SERVER_TIMESTAMP

from servicedesk_notify.errors import FanOutWriteError
from servicedesk_notify.storage.schema import FIELD_CREATED_AT

from .base import BaseRepository


class NotificationRepository(BaseRepository):
    """Writes notification records, one copy per recipient."""

    async def create_for_recipients(
        self, recipient_ids: Sequence[str], record: Mapping[str, Any]
    ) -> dict[str, str]:
        """Create one record under each recipient in a single batch.

        Document ids are generated client-side before the commit so the caller
        learns every recipient's notification id from this one round trip.

        Raises:
            FanOutWriteError: If the batch commit fails. No record is written.
        """
        if not recipient_ids:
            return {}

        batch = self._client.batch()
        notification_ids: dict[str, str] = {}
        for recipient_id in recipient_ids:
            ref = (
                self.users.document(recipient_id)
                .collection(self._config.notifications_subcollection)
                .document()
            )
            batch.set(ref, {**record, FIELD_CREATED_AT: SERVER_TIMESTAMP})
            notification_ids[recipient_id] = ref.id

        try:
            await batch.commit()
        except (GoogleAPIError, ValueError) as e:
            self._logger.error(
                f"Failed to commit notification batch for {len(recipient_ids)} recipients: {e}",
                exc_info=True,
            )
            raise FanOutWriteError(
                f"Notification batch for {len(recipient_ids)} recipients was not committed"
            ) from e
        return notification_ids
