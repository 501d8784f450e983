"""Tests for IdentifierResolver."""

import logging

import pytest

from servicedesk_notify.models import NotificationContent
from servicedesk_notify.recipients import AnyId, ByAuthId, ByRecordId
from servicedesk_notify.services.resolver import IdentifierResolver
from tests.mocks.fakes import FakeUserStore, expo_token


@pytest.fixture
def store() -> FakeUserStore:
    store = FakeUserStore()
    store.add_user("docA", auth_id="uidA", tokens={"@team/app": [expo_token("a1")]})
    store.add_user(
        "docB",
        auth_id="uidB",
        tokens={"@team/app": [expo_token("b1")], "@team/legacy": [expo_token("b2")]},
    )
    store.add_user("docC", auth_id="uidC")
    return store


@pytest.mark.asyncio
async def test_empty_input_issues_no_query(store: FakeUserStore) -> None:
    resolution = await IdentifierResolver(store).resolve([])

    assert resolution.record_ids == {}
    assert resolution.token_owners == {}
    assert resolution.messages_for(NotificationContent("t", "b", {})) == {}
    assert store.record_id_queries == []
    assert store.auth_id_queries == []


@pytest.mark.asyncio
async def test_resolves_both_identifier_forms(store: FakeUserStore) -> None:
    resolution = await IdentifierResolver(store).resolve([AnyId("docA"), AnyId("uidB")])

    assert resolution.record_ids == {AnyId("docA"): "docA", AnyId("uidB"): "docB"}
    assert resolution.canonical_ids([AnyId("uidB"), AnyId("docA")]) == ["docB", "docA"]


@pytest.mark.asyncio
async def test_typed_refs_only_query_their_own_form(store: FakeUserStore) -> None:
    resolution = await IdentifierResolver(store).resolve([
        ByRecordId("docA"),
        ByAuthId("uidC"),
    ])

    assert resolution.record_ids == {ByRecordId("docA"): "docA", ByAuthId("uidC"): "docC"}
    assert store.record_id_queries == [["docA"]]
    assert store.auth_id_queries == [["uidC"]]


@pytest.mark.asyncio
async def test_same_user_by_both_forms_resolves_to_one_record(store: FakeUserStore) -> None:
    resolution = await IdentifierResolver(store).resolve([
        AnyId("docA"),
        AnyId("uidA"),
        AnyId("docA"),
    ])

    assert resolution.canonical_ids([AnyId("docA"), AnyId("uidA")]) == ["docA"]
    assert list(resolution.users) == ["docA"]


@pytest.mark.asyncio
async def test_unknown_identifiers_are_dropped(
    store: FakeUserStore, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO):
        resolution = await IdentifierResolver(store).resolve([AnyId("ghost"), AnyId("docA")])

    assert resolution.record_ids == {AnyId("docA"): "docA"}
    assert "ghost" in caplog.text


@pytest.mark.asyncio
async def test_record_id_match_wins_over_auth_id_match() -> None:
    store = FakeUserStore()
    store.add_user("shared", auth_id="uid1")
    store.add_user("doc2", auth_id="shared")

    resolution = await IdentifierResolver(store).resolve([AnyId("shared")])

    assert resolution.record_ids == {AnyId("shared"): "shared"}


@pytest.mark.asyncio
async def test_typed_refs_with_the_same_string_resolve_by_their_own_form() -> None:
    store = FakeUserStore()
    store.add_user("x", auth_id="uid1")
    store.add_user("doc2", auth_id="x")

    resolution = await IdentifierResolver(store).resolve([ByRecordId("x"), ByAuthId("x")])

    assert resolution.canonical_ids([ByRecordId("x")]) == ["x"]
    assert resolution.canonical_ids([ByAuthId("x")]) == ["doc2"]


@pytest.mark.asyncio
async def test_token_under_two_projects_is_sent_once_and_tracked_for_both() -> None:
    store = FakeUserStore()
    store.add_user(
        "docA", tokens={"@team/one": [expo_token("same")], "@team/two": [expo_token("same")]}
    )

    resolution = await IdentifierResolver(store).resolve([AnyId("docA")])

    assert resolution.token_projects == {expo_token("same"): ["@team/one", "@team/two"]}
    messages = resolution.messages_for(NotificationContent("t", "b", {}))
    assert {project: [m.to for m in ms] for project, ms in messages.items()} == {
        "@team/one": [expo_token("same")],
    }


@pytest.mark.asyncio
async def test_tokens_grouped_by_project(store: FakeUserStore) -> None:
    resolution = await IdentifierResolver(store).resolve([AnyId("docA"), AnyId("docB")])

    assert resolution.token_owners == {
        expo_token("a1"): "docA",
        expo_token("b1"): "docB",
        expo_token("b2"): "docB",
    }
    assert resolution.tokens_by_project() == {
        "@team/app": [expo_token("a1"), expo_token("b1")],
        "@team/legacy": [expo_token("b2")],
    }

    content = NotificationContent("title", "body", {"type": "serviceRequest", "id": "r1"})
    messages = resolution.messages_for(content)
    assert {project: [m.to for m in ms] for project, ms in messages.items()} == {
        "@team/app": [expo_token("a1"), expo_token("b1")],
        "@team/legacy": [expo_token("b2")],
    }
    assert all(m.title == "title" and m.sound == "default" for ms in messages.values() for m in ms)


@pytest.mark.asyncio
async def test_user_without_tokens_still_resolves(store: FakeUserStore) -> None:
    resolution = await IdentifierResolver(store).resolve([AnyId("docC")])

    assert resolution.record_ids == {AnyId("docC"): "docC"}
    assert resolution.token_owners == {}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tokens",
    [
        ["ExponentPushToken[x]"],
        "ExponentPushToken[x]",
        42,
    ],
)
async def test_malformed_token_map_is_skipped(tokens: object) -> None:
    store = FakeUserStore()
    store.add_user("docBad", tokens=tokens)
    store.add_user("docGood", tokens={"@team/app": [expo_token("good")]})

    resolution = await IdentifierResolver(store).resolve([AnyId("docBad"), AnyId("docGood")])

    assert resolution.canonical_ids([AnyId("docBad"), AnyId("docGood")]) == [
        "docBad",
        "docGood",
    ]
    assert resolution.token_owners == {expo_token("good"): "docGood"}


@pytest.mark.asyncio
async def test_invalid_tokens_and_non_list_projects_are_skipped(
    caplog: pytest.LogCaptureFixture,
) -> None:
    store = FakeUserStore()
    store.add_user(
        "docA",
        tokens={
            "@team/app": [expo_token("ok"), "not-a-token", None],
            "@team/broken": {"nested": "value"},
        },
    )

    with caplog.at_level(logging.WARNING):
        resolution = await IdentifierResolver(store).resolve([AnyId("docA")])

    assert resolution.token_owners == {expo_token("ok"): "docA"}
    assert "Invalid push token" in caplog.text
    assert "@team/broken" in caplog.text


@pytest.mark.asyncio
async def test_token_shared_by_two_users_keeps_first_owner() -> None:
    store = FakeUserStore()
    store.add_user("doc1", tokens={"@team/app": [expo_token("same")]})
    store.add_user("doc2", tokens={"@team/app": [expo_token("same")]})

    resolution = await IdentifierResolver(store).resolve([AnyId("doc1"), AnyId("doc2")])

    assert resolution.token_owners == {expo_token("same"): "doc1"}


@pytest.mark.asyncio
async def test_ceiling_sized_list_resolves_in_one_query_per_form() -> None:
    store = FakeUserStore()
    ids = [f"doc{i}" for i in range(30)]
    for record_id in ids:
        store.add_user(record_id)

    resolution = await IdentifierResolver(store, in_query_limit=30).resolve(
        [AnyId(i) for i in ids]
    )

    assert len(store.record_id_queries) == 1
    assert len(store.auth_id_queries) == 1
    assert resolution.canonical_ids([AnyId(i) for i in ids]) == ids


@pytest.mark.asyncio
async def test_list_over_ceiling_is_chunked_without_losing_recipients() -> None:
    store = FakeUserStore()
    ids = [f"doc{i}" for i in range(31)]
    for record_id in ids:
        store.add_user(record_id)

    resolution = await IdentifierResolver(store, in_query_limit=30).resolve(
        [AnyId(i) for i in ids]
    )

    assert [len(q) for q in store.record_id_queries] == [30, 1]
    assert [len(q) for q in store.auth_id_queries] == [30, 1]
    assert resolution.canonical_ids([AnyId(i) for i in ids]) == ids
