"""Cloud Functions source entry point: exposes the trigger functions."""

from servicedesk_notify.cloud_functions import (
    send_announcement_notification,
    send_new_request_notification_on_create,
    service_request_update_manager,
)

__all__ = [
    "send_announcement_notification",
    "send_new_request_notification_on_create",
    "service_request_update_manager",
]
