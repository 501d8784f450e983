"""Base repository class for storage repositories."""

import logging

from google.cloud.firestore_v1 import AsyncClient, AsyncCollectionReference

from servicedesk_notify.config_models import StoreConfig


class BaseRepository:
    """Base class for all Firestore repositories."""

    def __init__(self, client: AsyncClient, config: StoreConfig) -> None:
        """Initialize repository with a Firestore client.

        Args:
            client: The async Firestore client
            config: Collection and field names
        """
        self._client = client
        self._config = config
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    @property
    def users(self) -> AsyncCollectionReference:
        return self._client.collection(self._config.users_collection)
