import logging

import pytest

from servicedesk_notify.config_models import PushConfig
from servicedesk_notify.pipeline import NotificationPipeline
from servicedesk_notify.triggers import TriggerHandlers
from tests.mocks.fakes import (
    FakeNotificationStore,
    FakePushGateway,
    FakeUserStore,
    RecordingSleep,
)

# Configure logging for tests
logging.basicConfig(level=logging.INFO)


@pytest.fixture
def user_store() -> FakeUserStore:
    return FakeUserStore()


@pytest.fixture
def notification_store() -> FakeNotificationStore:
    return FakeNotificationStore()


@pytest.fixture
def push_gateway() -> FakePushGateway:
    return FakePushGateway()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def pipeline(
    user_store: FakeUserStore,
    notification_store: FakeNotificationStore,
    push_gateway: FakePushGateway,
    recording_sleep: RecordingSleep,
) -> NotificationPipeline:
    """A pipeline wired to in-memory fakes, with sleeps recorded instead of awaited."""
    return NotificationPipeline(
        user_store,
        notification_store,
        push_gateway,
        push_config=PushConfig(receipt_delay_seconds=0),
        sleep=recording_sleep,
    )


@pytest.fixture
def handlers(pipeline: NotificationPipeline) -> TriggerHandlers:
    return TriggerHandlers(pipeline)
