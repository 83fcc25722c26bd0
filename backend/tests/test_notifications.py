"""Notification dispatcher behaviour and the notification inbox API."""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any

from travel_desk.models.enums import Capability, NotificationCategory
from travel_desk.models.notification import Notification
from travel_desk.services.directory import InMemoryDirectoryService
from travel_desk.services.notification import (
    DatabaseNotificationSink,
    Delivery,
    InMemoryNotificationSink,
    NotificationDispatcher,
    set_notification_dispatcher,
)
from travel_desk.services.roles import RoleResolver
from travel_desk.services.workflow import Audience, NotificationIntent

if TYPE_CHECKING:
    from httpx import AsyncClient
    from sqlalchemy.ext.asyncio import AsyncSession

EMPLOYEE = "e@corp.com"
MANAGER = "m@corp.com"
POC = "poc@corp.com"
SECOND_POC = "poc2@corp.com"
OUTSIDER = "x@corp.com"

TRIP: dict[str, Any] = {
    "trip_nature": "One Way",
    "origin": "Mumbai",
    "destination": "Goa",
    "travel_date": "2025-03-01",
}


def _intent(audience: Audience, title: str = "Hello") -> NotificationIntent:
    return NotificationIntent(
        audience=audience,
        category=NotificationCategory.COMMENT,
        title=title,
        body="Body",
        related_human_id="TR-2025-0060001",
    )


class _FailingSink:
    async def deliver(self, delivery: Delivery) -> None:
        raise RuntimeError("mail relay down")


class _BrokenDirectory(InMemoryDirectoryService):
    async def list_with_capability(self, capability: Capability) -> list[Any]:
        raise ConnectionError("directory unreachable")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


async def test_pool_audience_expands_to_current_holders(directory: InMemoryDirectoryService) -> None:
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(sink=sink)
    try:
        dispatcher.dispatch([_intent(Audience.pool(Capability.POC))])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()
    assert sorted(d.recipient_identity for d in sink.deliveries) == sorted([POC, SECOND_POC])


async def test_dispatch_after_stop_starts_a_fresh_worker(directory: InMemoryDirectoryService) -> None:
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(sink=sink)
    try:
        dispatcher.dispatch([_intent(Audience.identity(EMPLOYEE), title="First")])
        await dispatcher.drain()
        await dispatcher.stop()
        dispatcher.dispatch([_intent(Audience.identity(EMPLOYEE), title="Second")])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()
    assert [d.title for d in sink.for_recipient(EMPLOYEE)] == ["First", "Second"]


async def test_manager_audience_without_manager_delivers_nothing(directory: InMemoryDirectoryService) -> None:
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(sink=sink)
    try:
        dispatcher.dispatch([_intent(Audience.manager_of(MANAGER)), _intent(Audience.manager_of(EMPLOYEE))])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()
    assert [d.recipient_identity for d in sink.deliveries] == [MANAGER]


async def test_override_recipient_redirects_everything(directory: InMemoryDirectoryService) -> None:
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(sink=sink, override_recipient="qa@corp.com")
    try:
        dispatcher.dispatch([_intent(Audience.identity(EMPLOYEE)), _intent(Audience.pool(Capability.POC))])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()
    assert [d.recipient_identity for d in sink.deliveries] == ["qa@corp.com"] * 3


async def test_full_queue_drops_instead_of_blocking(directory: InMemoryDirectoryService) -> None:
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(sink=sink, max_queue_size=1)
    try:
        dispatcher.dispatch([_intent(Audience.identity(EMPLOYEE), title=str(i)) for i in range(3)])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()
    assert [d.title for d in sink.deliveries] == ["0"]


async def test_sink_failure_is_swallowed(directory: InMemoryDirectoryService) -> None:
    dispatcher = NotificationDispatcher(sink=_FailingSink())
    try:
        dispatcher.dispatch([_intent(Audience.identity(EMPLOYEE))])
        await dispatcher.drain()
        dispatcher.dispatch([_intent(Audience.identity(EMPLOYEE))])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()


async def test_directory_failure_during_expansion_is_swallowed() -> None:
    sink = InMemoryNotificationSink()
    dispatcher = NotificationDispatcher(sink=sink, resolver=RoleResolver(_BrokenDirectory()))
    try:
        dispatcher.dispatch([_intent(Audience.pool(Capability.POC)), _intent(Audience.identity(EMPLOYEE))])
        await dispatcher.drain()
    finally:
        await dispatcher.stop()
    assert [d.recipient_identity for d in sink.deliveries] == [EMPLOYEE]


async def test_transition_succeeds_when_delivery_fails(async_client: AsyncClient) -> None:
    failing = NotificationDispatcher(sink=_FailingSink())
    set_notification_dispatcher(failing)
    try:
        created = await async_client.post("/requests", json=TRIP, headers={"X-User-Email": EMPLOYEE})
        assert created.status_code == 201
        resp = await async_client.post(
            f"/requests/{created.json()['id']}/manager-approve", headers={"X-User-Email": MANAGER}
        )
        assert resp.status_code == 200
        await failing.drain()
    finally:
        await failing.stop()


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------


async def _seed(db_session: AsyncSession, recipient: str, *, is_read: bool = False, title: str = "t") -> Notification:
    notification = Notification(
        recipient_identity=recipient,
        category=NotificationCategory.APPROVAL.value,
        title=title,
        body="body",
        related_human_id="TR-2025-0060001",
        is_read=is_read,
    )
    db_session.add(notification)
    await db_session.commit()
    return notification


async def test_database_sink_fills_the_inbox(async_client: AsyncClient) -> None:
    dispatcher = NotificationDispatcher(sink=DatabaseNotificationSink())
    set_notification_dispatcher(dispatcher)
    try:
        await async_client.post("/requests", json=TRIP, headers={"X-User-Email": EMPLOYEE})
        await dispatcher.drain()
    finally:
        await dispatcher.stop()

    inbox = (await async_client.get("/notifications", headers={"X-User-Email": MANAGER})).json()
    assert inbox["unread_count"] == 1
    [item] = inbox["items"]
    assert item["category"] == "request_created"
    assert item["is_read"] is False
    assert item["related_human_id"].startswith("TR-")


async def test_list_notifications(async_client: AsyncClient, db_session: AsyncSession) -> None:
    await _seed(db_session, EMPLOYEE, title="unread")
    await _seed(db_session, EMPLOYEE, is_read=True, title="read")
    await _seed(db_session, OUTSIDER)

    inbox = (await async_client.get("/notifications", headers={"X-User-Email": EMPLOYEE})).json()
    assert inbox["unread_count"] == 1
    assert sorted(n["title"] for n in inbox["items"]) == ["read", "unread"]

    unread = (
        await async_client.get("/notifications?unread_only=true", headers={"X-User-Email": EMPLOYEE})
    ).json()
    assert [n["title"] for n in unread["items"]] == ["unread"]


async def test_mark_read_and_read_all(async_client: AsyncClient, db_session: AsyncSession) -> None:
    first = await _seed(db_session, EMPLOYEE)
    await _seed(db_session, EMPLOYEE)
    await _seed(db_session, EMPLOYEE)

    resp = await async_client.post(f"/notifications/{first.id}/read", headers={"X-User-Email": EMPLOYEE})
    assert resp.status_code == 200
    assert resp.json()["is_read"] is True

    resp = await async_client.post("/notifications/read-all", headers={"X-User-Email": EMPLOYEE})
    assert resp.json() == {"updated": 2}
    inbox = (await async_client.get("/notifications", headers={"X-User-Email": EMPLOYEE})).json()
    assert inbox["unread_count"] == 0


async def test_notifications_are_private(async_client: AsyncClient, db_session: AsyncSession) -> None:
    theirs = await _seed(db_session, OUTSIDER)
    read = await async_client.post(f"/notifications/{theirs.id}/read", headers={"X-User-Email": EMPLOYEE})
    assert read.status_code == 404
    delete = await async_client.delete(f"/notifications/{theirs.id}", headers={"X-User-Email": EMPLOYEE})
    assert delete.status_code == 404


async def test_delete_notification(async_client: AsyncClient, db_session: AsyncSession) -> None:
    mine = await _seed(db_session, EMPLOYEE)
    resp = await async_client.delete(f"/notifications/{mine.id}", headers={"X-User-Email": EMPLOYEE})
    assert resp.status_code == 204
    again = await async_client.delete(f"/notifications/{mine.id}", headers={"X-User-Email": EMPLOYEE})
    assert again.status_code == 404
    missing = await async_client.delete(f"/notifications/{uuid.uuid4()}", headers={"X-User-Email": EMPLOYEE})
    assert missing.status_code == 404
