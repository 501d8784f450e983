"""
Process-wide wiring for the deployed triggers.

Trigger functions are synchronous and may be invoked concurrently on one
instance, while the Firestore and HTTP clients are async and bound to the
event loop that created them. ``Runtime`` keeps one event loop running in a
background thread for the life of the process and submits every invocation
to it, so clients are created once and shared between invocations.
"""

import asyncio
import atexit
import logging
import threading
from collections.abc import Coroutine
from typing import Any, TypeVar

from servicedesk_notify.config_loader import load_config
from servicedesk_notify.config_models import AppConfig
from servicedesk_notify.pipeline import NotificationPipeline
from servicedesk_notify.services.push_gateway import ExpoPushClient
from servicedesk_notify.storage import StoreContext, close_firestore_client, get_firestore_client
from servicedesk_notify.triggers import TriggerHandlers

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Runtime:
    """Owns the event loop, the store clients and the trigger handlers."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._loop.run_forever, name="notify-event-loop", daemon=True
        )
        self._thread.start()
        self._lock = threading.Lock()
        self._handlers: TriggerHandlers | None = None
        self._push_client: ExpoPushClient | None = None

    def run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run ``coro`` on the shared loop and wait for its result."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop).result()

    async def _build_handlers(self) -> TriggerHandlers:
        client = get_firestore_client(self.config.firebase)
        store = StoreContext(client, self.config.store)
        self._push_client = ExpoPushClient(
            base_url=self.config.push.base_url,
            access_token=self.config.push.access_token,
            timeout=self.config.push.timeout_seconds,
        )
        pipeline = NotificationPipeline.from_config(
            store.users, store.notifications, self._push_client, self.config
        )
        return TriggerHandlers(pipeline, self.config.templates)

    @property
    def handlers(self) -> TriggerHandlers:
        with self._lock:
            if self._handlers is None:
                # Clients must be created on the loop thread they will run on
                self._handlers = self.run(self._build_handlers())
                logger.info("Notification pipeline initialized")
            return self._handlers

    def close(self) -> None:
        if self._push_client is not None:
            try:
                self.run(self._push_client.close())
            except Exception as e:
                logger.warning(f"Error closing push client: {e}")
            self._push_client = None
        self._handlers = None
        try:
            # The client's channel is bound to this loop
            self.run(close_firestore_client())
        except Exception as e:
            logger.warning(f"Error closing Firestore client: {e}")
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=5)


_runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime(config: AppConfig | None = None) -> Runtime:
    """Return the process-wide runtime, creating it on first call."""
    global _runtime
    with _runtime_lock:
        if _runtime is None:
            _runtime = Runtime(config or load_config())
            atexit.register(_close_runtime)
        return _runtime


def _close_runtime() -> None:
    global _runtime
    if _runtime is not None:
        _runtime.close()
        _runtime = None
