"""Firestore-backed storage for users and notification records."""

from servicedesk_notify.storage.context import StoreContext
from servicedesk_notify.storage.firestore import (
    close_firestore_client,
    get_firestore_client,
)

__all__ = ["StoreContext", "close_firestore_client", "get_firestore_client"]
