"""Repositories for Firestore collections."""

from .notifications import NotificationRepository
from .users import UserRepository

__all__ = ["NotificationRepository", "UserRepository"]
