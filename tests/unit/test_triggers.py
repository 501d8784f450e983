"""Tests for change detection and per-event isolation in the trigger handlers."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from servicedesk_notify.config_models import DEFAULT_AUTO_ACCEPT_COMMENT, TemplateConfig
from servicedesk_notify.pipeline import NotifyOutcome
from servicedesk_notify.recipients import AnyId
from servicedesk_notify.triggers import (
    EventKind,
    TriggerHandlers,
    detect_announcement_created,
    detect_ticket_created,
    detect_ticket_updated,
)


def _ticket(**overrides: Any) -> dict[str, Any]:  # noqa: ANN401
    doc: dict[str, Any] = {
        "title": "تسرب مياه",
        "type": "مشكلة",
        "priority": "عالية",
        "creatorId": "creatorUid",
        "assignedUsers": ["docA"],
        "comments": [],
        "userResponses": [],
        "onLocation": False,
    }
    doc.update(overrides)
    return doc


def _comment(user_id: str, content: str, **extra: Any) -> dict[str, Any]:  # noqa: ANN401
    return {"userId": user_id, "userName": "سارة", "content": content, **extra}


class TestTicketCreated:
    def test_notifies_assigned_users(self) -> None:
        events = detect_ticket_created("req1", _ticket(assignedUsers=["docA", "docB"]))

        assert len(events) == 1
        assert events[0].kind is EventKind.NEW_TASK
        assert events[0].recipients == [AnyId("docA"), AnyId("docB")]
        assert events[0].content.data == {"type": "serviceRequest", "id": "req1"}

    def test_no_assignees_no_event(self) -> None:
        assert detect_ticket_created("req1", _ticket(assignedUsers=[])) == []

    def test_missing_document(self) -> None:
        assert detect_ticket_created("req1", None) == []

    def test_malformed_document_is_skipped(self) -> None:
        assert detect_ticket_created("req1", _ticket(comments="not a list")) == []


class TestTicketUpdated:
    def test_no_change_no_events(self) -> None:
        assert detect_ticket_updated("req1", _ticket(), _ticket()) == []

    def test_newly_assigned_only(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(assignedUsers=["docA"]),
            _ticket(assignedUsers=["docA", "docB", "docC"]),
        )

        assert [e.kind for e in events] == [EventKind.TASK_ASSIGNED]
        assert events[0].recipients == [AnyId("docB"), AnyId("docC")]

    def test_new_comment_goes_to_assignees_and_creator_minus_commenter(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(assignedUsers=["docA", "uidB"]),
            _ticket(assignedUsers=["docA", "uidB"], comments=[_comment("uidB", "تم الإصلاح")]),
        )

        assert [e.kind for e in events] == [EventKind.NEW_COMMENT]
        assert events[0].recipients == [AnyId("docA"), AnyId("uidB"), AnyId("creatorUid")]
        assert events[0].exclude == [AnyId("uidB")]
        assert events[0].content.body == "تم الإصلاح"

    def test_creator_already_assigned_is_listed_once(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(assignedUsers=["creatorUid"]),
            _ticket(assignedUsers=["creatorUid"], comments=[_comment("docZ", "مرحبا")]),
        )

        assert events[0].recipients == [AnyId("creatorUid")]

    def test_auto_accept_comment_is_suppressed(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(),
            _ticket(comments=[_comment("docA", DEFAULT_AUTO_ACCEPT_COMMENT)]),
        )

        assert events == []

    def test_configured_auto_accept_sentences(self) -> None:
        config = TemplateConfig(auto_accept_comments=["تم القبول آلياً"])

        events = detect_ticket_updated(
            "req1",
            _ticket(),
            _ticket(comments=[_comment("docA", "تم القبول آلياً")]),
            config,
        )

        assert events == []

    def test_status_change_comment_is_suppressed(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(),
            _ticket(comments=[_comment("docA", "مغلق", isStatusChange=True)]),
        )

        assert events == []

    def test_arrival_notifies_creator_only(self) -> None:
        events = detect_ticket_updated(
            "req1", _ticket(onLocation=False), _ticket(onLocation=True)
        )

        assert [e.kind for e in events] == [EventKind.ARRIVED_ON_SITE]
        assert events[0].recipients == [AnyId("creatorUid")]

    def test_staying_on_location_is_not_an_arrival(self) -> None:
        assert detect_ticket_updated(
            "req1", _ticket(onLocation=True), _ticket(onLocation=True)
        ) == []

    def test_new_response_notifies_creator(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(),
            _ticket(userResponses=[{"userId": "docA", "userName": "أحمد", "response": "completed"}]),
        )

        assert [e.kind for e in events] == [EventKind.USER_RESPONSE]
        assert events[0].recipients == [AnyId("creatorUid")]
        assert "أكمل المهمة بنجاح" in events[0].content.body

    def test_all_four_events_from_one_write(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(),
            _ticket(
                assignedUsers=["docA", "docB"],
                comments=[_comment("docA", "في الطريق")],
                onLocation=True,
                userResponses=[{"userId": "docA", "userName": "أحمد", "response": "accepted"}],
            ),
        )

        assert [e.kind for e in events] == [
            EventKind.TASK_ASSIGNED,
            EventKind.NEW_COMMENT,
            EventKind.ARRIVED_ON_SITE,
            EventKind.USER_RESPONSE,
        ]

    def test_no_creator_means_no_arrival_event(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(creatorId=None),
            _ticket(creatorId=None, onLocation=True),
        )

        assert events == []

    def test_malformed_old_comment_does_not_hide_an_arrival(self) -> None:
        events = detect_ticket_updated(
            "req1",
            _ticket(comments=[None]),
            _ticket(comments=[None], onLocation=True),
        )

        assert [e.kind for e in events] == [EventKind.ARRIVED_ON_SITE]

    def test_malformed_history_entries_are_dropped(self) -> None:
        history = [_comment("docA", "قديم"), "junk", {"userId": 42, "content": "رقم"}]
        responses = [None, {"userId": "docA", "userName": "أحمد", "response": "accepted"}]

        events = detect_ticket_updated(
            "req1",
            _ticket(comments=history, userResponses=responses),
            _ticket(
                assignedUsers=["docA", "docB"],
                comments=[*history, _comment("docB", "جديد")],
                userResponses=responses,
            ),
        )

        assert [e.kind for e in events] == [EventKind.TASK_ASSIGNED, EventKind.NEW_COMMENT]
        assert events[1].content.body == "جديد"

    def test_missing_before_or_after(self) -> None:
        assert detect_ticket_updated("req1", None, _ticket()) == []
        assert detect_ticket_updated("req1", _ticket(), None) == []


def test_announcement_created() -> None:
    events = detect_announcement_created(
        "ann1", {"head": "إعلان", "body": "نص", "assignedUsers": ["docA", ""]}
    )

    assert len(events) == 1
    assert events[0].kind is EventKind.ANNOUNCEMENT
    assert events[0].recipients == [AnyId("docA")]
    assert events[0].content.title == "إعلان"


def test_announcement_without_recipients() -> None:
    assert detect_announcement_created("ann1", {"head": "إعلان", "body": "نص"}) == []


@pytest.mark.asyncio
async def test_failure_in_one_event_does_not_suppress_the_next() -> None:
    pipeline = MagicMock()
    pipeline.deliver = AsyncMock(
        side_effect=[RuntimeError("boom"), NotifyOutcome(notification_ids={"creator": "n1"})]
    )
    pipeline.reconcile = AsyncMock(return_value=None)
    handlers = TriggerHandlers(pipeline)

    outcomes = await handlers.on_ticket_updated(
        "req1",
        _ticket(),
        _ticket(comments=[_comment("docA", "ملاحظة")], onLocation=True),
    )

    assert pipeline.deliver.await_count == 2
    assert outcomes[0].aborted
    assert outcomes[1].notification_ids == {"creator": "n1"}
    pipeline.reconcile.assert_awaited_once_with(outcomes)


@pytest.mark.asyncio
async def test_receipt_failure_does_not_lose_delivered_outcomes() -> None:
    pipeline = MagicMock()
    pipeline.deliver = AsyncMock(return_value=NotifyOutcome(messages_sent=1))
    pipeline.reconcile = AsyncMock(side_effect=RuntimeError("receipts down"))
    handlers = TriggerHandlers(pipeline)

    outcomes = await handlers.on_ticket_created("req1", _ticket())

    assert [o.messages_sent for o in outcomes] == [1]
    assert not outcomes[0].aborted
