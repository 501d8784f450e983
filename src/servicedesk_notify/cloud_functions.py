"""
Firestore trigger functions deployed to Cloud Functions.

Each function converts the trigger event into plain dicts and hands them to
the shared ``TriggerHandlers``. Pipeline failures are logged by the handlers
and never fail the invocation: the document write that fired the trigger has
already been committed.
"""

import logging
from typing import Any

from firebase_functions import firestore_fn, options

from servicedesk_notify.config_loader import load_config
from servicedesk_notify.runtime import get_runtime

logger = logging.getLogger(__name__)

_config = load_config()

options.set_global_options(region=_config.firebase.region)

_SERVICE_REQUEST_DOCUMENT = f"{_config.store.service_requests_collection}/{{requestId}}"
_ANNOUNCEMENT_DOCUMENT = f"{_config.store.announcements_collection}/{{announcementId}}"


def _to_dict(snapshot: firestore_fn.DocumentSnapshot | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return snapshot.to_dict()


@firestore_fn.on_document_created(document=_SERVICE_REQUEST_DOCUMENT)
def send_new_request_notification_on_create(
    event: firestore_fn.Event[firestore_fn.DocumentSnapshot | None],
) -> None:
    request_id = event.params["requestId"]
    runtime = get_runtime(_config)
    outcomes = runtime.run(
        runtime.handlers.on_ticket_created(request_id, _to_dict(event.data))
    )
    logger.info(f"Processed creation of service request {request_id}: {outcomes}")


@firestore_fn.on_document_updated(document=_SERVICE_REQUEST_DOCUMENT)
def service_request_update_manager(
    event: firestore_fn.Event[firestore_fn.Change[firestore_fn.DocumentSnapshot | None]],
) -> None:
    request_id = event.params["requestId"]
    if event.data is None:
        logger.info(f"Update event for {request_id} carries no data")
        return
    runtime = get_runtime(_config)
    outcomes = runtime.run(
        runtime.handlers.on_ticket_updated(
            request_id, _to_dict(event.data.before), _to_dict(event.data.after)
        )
    )
    logger.info(f"Processed update of service request {request_id}: {outcomes}")


@firestore_fn.on_document_created(document=_ANNOUNCEMENT_DOCUMENT)
def send_announcement_notification(
    event: firestore_fn.Event[firestore_fn.DocumentSnapshot | None],
) -> None:
    announcement_id = event.params["announcementId"]
    runtime = get_runtime(_config)
    outcomes = runtime.run(
        runtime.handlers.on_announcement_created(announcement_id, _to_dict(event.data))
    )
    logger.info(f"Processed announcement {announcement_id}: {outcomes}")
