"""
Command line entry point.

``replay`` runs a trigger handler locally against documents stored as JSON,
which is how trigger behaviour is reproduced against the emulator or a
staging project. With ``--dry-run`` it only prints the events that would be
sent.
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

from servicedesk_notify.config_loader import load_config
from servicedesk_notify.config_models import AppConfig
from servicedesk_notify.pipeline import NotificationPipeline, NotifyOutcome
from servicedesk_notify.services.push_gateway import ExpoPushClient
from servicedesk_notify.storage import StoreContext, close_firestore_client, get_firestore_client
from servicedesk_notify.triggers import (
    NotificationEvent,
    TriggerHandlers,
    detect_announcement_created,
    detect_ticket_created,
    detect_ticket_updated,
)

# --- Logging Configuration ---
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s", level=logging.INFO
)
# Keep external libraries less verbose
logging.getLogger("httpx").setLevel(logging.WARNING)
logger = logging.getLogger(__name__)

EVENT_CREATED = "created"
EVENT_UPDATED = "updated"
EVENT_ANNOUNCEMENT = "announcement"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="servicedesk-notify", description="Service desk push notifications"
    )
    parser.add_argument(
        "--config-file", default="config.yaml", help="Operator configuration YAML file"
    )
    parser.add_argument(
        "--defaults-file", default="defaults.yaml", help="Shipped defaults YAML file"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    replay = subparsers.add_parser(
        "replay", help="Run a trigger handler against JSON documents"
    )
    replay.add_argument(
        "event",
        choices=[EVENT_CREATED, EVENT_UPDATED, EVENT_ANNOUNCEMENT],
        help="Which trigger to run",
    )
    replay.add_argument("--id", required=True, help="Document id of the subject")
    replay.add_argument(
        "--document", type=Path, help="Document JSON (created and announcement events)"
    )
    replay.add_argument("--before", type=Path, help="Document JSON before the update")
    replay.add_argument("--after", type=Path, help="Document JSON after the update")
    replay.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the detected events without writing or pushing anything",
    )
    return parser


def _read_document(path: Path | None, name: str) -> dict[str, Any]:
    if path is None:
        raise ValueError(f"--{name} is required for this event")
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    return data


def detect_events(args: argparse.Namespace, config: AppConfig) -> list[NotificationEvent]:
    if args.event == EVENT_CREATED:
        return detect_ticket_created(args.id, _read_document(args.document, "document"))
    if args.event == EVENT_UPDATED:
        return detect_ticket_updated(
            args.id,
            _read_document(args.before, "before"),
            _read_document(args.after, "after"),
            config.templates,
        )
    return detect_announcement_created(args.id, _read_document(args.document, "document"))


async def replay(args: argparse.Namespace, config: AppConfig) -> list[NotifyOutcome]:
    client = get_firestore_client(config.firebase)
    store = StoreContext(client, config.store)
    push_client = ExpoPushClient(
        base_url=config.push.base_url,
        access_token=config.push.access_token,
        timeout=config.push.timeout_seconds,
    )
    try:
        pipeline = NotificationPipeline.from_config(
            store.users, store.notifications, push_client, config
        )
        handlers = TriggerHandlers(pipeline, config.templates)
        if args.event == EVENT_CREATED:
            return await handlers.on_ticket_created(
                args.id, _read_document(args.document, "document")
            )
        if args.event == EVENT_UPDATED:
            return await handlers.on_ticket_updated(
                args.id,
                _read_document(args.before, "before"),
                _read_document(args.after, "after"),
            )
        return await handlers.on_announcement_created(
            args.id, _read_document(args.document, "document")
        )
    finally:
        await push_client.close()
        await close_firestore_client()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config = load_config(
        defaults_file_path=args.defaults_file, config_file_path=args.config_file
    )

    try:
        if args.dry_run:
            for event in detect_events(args, config):
                print(
                    json.dumps(
                        {
                            "kind": event.kind.value,
                            "recipients": [ref.id for ref in event.recipients],
                            "exclude": [ref.id for ref in event.exclude],
                            "title": event.content.title,
                            "body": event.content.body,
                            "data": event.content.data,
                        },
                        ensure_ascii=False,
                    )
                )
            return 0

        outcomes = asyncio.run(replay(args, config))
    except (OSError, ValueError) as e:
        logger.error(f"Cannot replay {args.event} event: {e}")
        return 2

    for outcome in outcomes:
        logger.info(
            f"Wrote {len(outcome.notification_ids)} notifications, sent "
            f"{outcome.messages_sent} pushes ({outcome.messages_failed} failed), "
            f"removed {outcome.tokens_removed} stale tokens"
            + (" [aborted]" if outcome.aborted else "")
        )
    return 1 if any(outcome.aborted for outcome in outcomes) else 0


if __name__ == "__main__":
    sys.exit(main())
