"""
Store context for Firestore access.

Bundles the async client with the repositories built on it, so callers wire
one object into the pipeline and tests can swap in fakes repository by
repository.
"""

from google.cloud.firestore_v1 import AsyncClient

from servicedesk_notify.config_models import StoreConfig
from servicedesk_notify.storage.repositories import (
    NotificationRepository,
    UserRepository,
)


class StoreContext:
    """Entry point to the user and notification repositories."""

    def __init__(self, client: AsyncClient, config: StoreConfig | None = None) -> None:
        self.client = client
        self.config = config or StoreConfig()

        # Repository instances (lazy-loaded)
        self._users: UserRepository | None = None
        self._notifications: NotificationRepository | None = None

    @property
    def users(self) -> UserRepository:
        if self._users is None:
            self._users = UserRepository(self.client, self.config)
        return self._users

    @property
    def notifications(self) -> NotificationRepository:
        if self._notifications is None:
            self._notifications = NotificationRepository(self.client, self.config)
        return self._notifications
