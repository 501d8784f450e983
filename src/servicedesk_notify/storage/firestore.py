"""Process-wide Firebase app and async Firestore client.

The client is created on first use and reused by every invocation handled by
the process, so connections and credentials are shared. The pipeline never
imports this module; it is handed stores built on the client.
"""

import json
import logging

import firebase_admin
from firebase_admin import credentials, firestore_async
from google.cloud.firestore_v1 import AsyncClient

from servicedesk_notify.config_models import FirebaseConfig

logger = logging.getLogger(__name__)

_client: AsyncClient | None = None


def _load_credentials(config: FirebaseConfig) -> credentials.Base | None:
    if config.credentials_path:
        return credentials.Certificate(config.credentials_path)
    if config.credentials_json:
        return credentials.Certificate(json.loads(config.credentials_json))
    # Application default credentials (the Cloud Functions runtime provides them)
    return None


def _get_or_init_app(config: FirebaseConfig) -> firebase_admin.App:
    try:
        return firebase_admin.get_app()
    except ValueError:
        pass
    options = {"projectId": config.project_id} if config.project_id else None
    app = firebase_admin.initialize_app(_load_credentials(config), options)
    logger.info(f"Firebase Admin SDK initialized for project {app.project_id}")
    return app


def get_firestore_client(config: FirebaseConfig) -> AsyncClient:
    """Return the shared async Firestore client, creating it on first call."""
    global _client
    if _client is None:
        _client = firestore_async.client(_get_or_init_app(config))
    return _client


async def close_firestore_client() -> None:
    """Close the shared client's channel and delete the Firebase app.

    Must be awaited on the event loop the client was used from. Call at
    process exit.
    """
    global _client
    client, _client = _client, None
    if client is not None:
        # AsyncClient has no public close; the gRPC channel belongs to its
        # GAPIC client, which only exists once a request has been made
        api = getattr(client, "_firestore_api_internal", None)
        if api is not None:
            await api.transport.close()
            logger.info("Firestore client closed")
    try:
        firebase_admin.delete_app(firebase_admin.get_app())
    except ValueError:
        return
    logger.info("Firebase Admin SDK app deleted")
