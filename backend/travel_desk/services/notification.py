"""Fire-and-forget notification delivery.

Transitions hand their ``NotificationIntent``s to ``NotificationDispatcher.dispatch``
after committing. ``dispatch`` only enqueues; a background task expands each
audience against the directory and hands one ``Delivery`` per recipient to the
configured sink. Every failure on that path is logged and swallowed: a
notification problem never reaches the actor whose transition produced it.
Delivery is at most one attempt per recipient.
"""

# ruff: noqa: TC003
from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from sqlalchemy import func, select, update
from sqlmodel import col

from travel_desk.config import get_settings
from travel_desk.db import get_session_factory
from travel_desk.exceptions import NotFoundError
from travel_desk.models.enums import Capability, NotificationCategory
from travel_desk.models.notification import Notification
from travel_desk.schemas.notification import MarkAllReadResponse, NotificationListResponse, NotificationResponse
from travel_desk.services.roles import RoleResolver
from travel_desk.services.workflow import AudienceKind

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from travel_desk.schemas.auth import AuthContext
    from travel_desk.services.workflow import Audience, NotificationIntent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Delivery:
    """One notification addressed to one recipient."""

    recipient_identity: str
    category: NotificationCategory
    title: str
    body: str
    related_request_id: uuid.UUID | None
    related_human_id: str | None


@runtime_checkable
class NotificationSink(Protocol):
    """Where deliveries end up (inbox table, e-mail relay, ...)."""

    async def deliver(self, delivery: Delivery) -> None: ...


class InMemoryNotificationSink:
    """In-memory sink for development and tests."""

    def __init__(self) -> None:
        self.deliveries: list[Delivery] = []

    async def deliver(self, delivery: Delivery) -> None:
        self.deliveries.append(delivery)

    def for_recipient(self, identity: str) -> list[Delivery]:
        return [d for d in self.deliveries if d.recipient_identity == identity]


class DatabaseNotificationSink:
    """Writes each delivery to the ``notification`` inbox table in its own session."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
        self._session_factory = session_factory

    async def deliver(self, delivery: Delivery) -> None:
        factory = self._session_factory or get_session_factory()
        async with factory() as session:
            session.add(
                Notification(
                    recipient_identity=delivery.recipient_identity,
                    category=delivery.category.value,
                    title=delivery.title,
                    body=delivery.body,
                    related_request_id=delivery.related_request_id,
                    related_human_id=delivery.related_human_id,
                )
            )
            await session.commit()


class NotificationDispatcher:
    """Queues notification intents and delivers them off the request path."""

    def __init__(
        self,
        sink: NotificationSink | None = None,
        resolver: RoleResolver | None = None,
        max_queue_size: int | None = None,
        override_recipient: str | None = None,
    ) -> None:
        settings = get_settings()
        self.sink: NotificationSink = sink if sink is not None else DatabaseNotificationSink()
        self._resolver = resolver if resolver is not None else RoleResolver()
        self._max_queue_size = max_queue_size if max_queue_size is not None else settings.notification_queue_size
        self._override_recipient = override_recipient or settings.notification_override_recipient
        self._queue: asyncio.Queue[NotificationIntent] | None = None
        self._worker: asyncio.Task[None] | None = None

    def start(self) -> asyncio.Queue[NotificationIntent]:
        """Start the consumer task on the running loop (idempotent) and return its queue."""
        queue = self._queue
        if queue is None or self._worker is None or self._worker.done():
            queue = asyncio.Queue(maxsize=self._max_queue_size)
            self._queue = queue
            self._worker = asyncio.get_running_loop().create_task(self._run(queue), name="notification-dispatcher")
        return queue

    def dispatch(self, intents: Iterable[NotificationIntent]) -> None:
        """Enqueue intents without waiting. Never raises."""
        for intent in intents:
            try:
                self.start().put_nowait(intent)
            except asyncio.QueueFull:
                logger.warning(
                    "Notification queue full; dropping %s for %s", intent.category, intent.related_human_id
                )
            except Exception:
                logger.exception("Could not enqueue %s notification for %s", intent.category, intent.related_human_id)

    async def drain(self) -> None:
        """Wait until every queued intent has been processed."""
        if self._queue is not None and self._worker is not None and not self._worker.done():
            await self._queue.join()

    async def stop(self) -> None:
        """Cancel the consumer task; undelivered intents are dropped."""
        if self._worker is not None:
            self._worker.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._worker
            self._worker = None
        self._queue = None

    async def _run(self, queue: asyncio.Queue[NotificationIntent]) -> None:
        while True:
            intent = await queue.get()
            try:
                await self._deliver(intent)
            except Exception:
                logger.exception("Notification delivery failed for %s (%s)", intent.related_human_id, intent.category)
            finally:
                queue.task_done()

    async def _deliver(self, intent: NotificationIntent) -> None:
        for recipient in await self._expand(intent.audience):
            target = self._override_recipient or recipient
            if target != recipient:
                logger.info("Notification override: %s -> %s", recipient, target)
            try:
                await self.sink.deliver(
                    Delivery(
                        recipient_identity=target,
                        category=intent.category,
                        title=intent.title,
                        body=intent.body,
                        related_request_id=intent.related_request_id,
                        related_human_id=intent.related_human_id,
                    )
                )
            except Exception:
                logger.exception("Could not deliver %s notification to %s", intent.category, target)

    async def _expand(self, audience: Audience) -> list[str]:
        if audience.kind == AudienceKind.IDENTITY:
            recipients = [audience.value]
        elif audience.kind == AudienceKind.CAPABILITY:
            recipients = await self._resolver.identities_with(Capability(audience.value))
        else:
            manager = await self._resolver.manager_identity_of(audience.value)
            recipients = [manager] if manager else []
        return list(dict.fromkeys(recipients))


_dispatcher: NotificationDispatcher | None = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Return the process-wide dispatcher, creating it on first use."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher


def set_notification_dispatcher(dispatcher: NotificationDispatcher | None) -> None:
    """Override the dispatcher (for testing or production wiring)."""
    global _dispatcher
    _dispatcher = dispatcher


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------


def _build_notification_response(notification: Notification) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        category=NotificationCategory(notification.category),
        title=notification.title,
        body=notification.body,
        related_request_id=notification.related_request_id,
        related_human_id=notification.related_human_id,
        is_read=notification.is_read,
        created_at=notification.created_at,
    )


async def list_notifications(
    session: AsyncSession,
    auth: AuthContext,
    unread_only: bool = False,
    limit: int = 50,
) -> NotificationListResponse:
    """Most recent notifications for the caller, plus their unread count."""
    filters = [col(Notification.recipient_identity) == auth.identity]
    if unread_only:
        filters.append(col(Notification.is_read).is_(False))

    result = await session.execute(
        select(Notification).where(*filters).order_by(col(Notification.created_at).desc()).limit(limit)
    )
    unread = await session.execute(
        select(func.count())
        .select_from(Notification)
        .where(col(Notification.recipient_identity) == auth.identity, col(Notification.is_read).is_(False))
    )
    return NotificationListResponse(
        items=[_build_notification_response(n) for n in result.scalars().all()],
        unread_count=unread.scalar_one(),
    )


async def _get_own_notification(
    session: AsyncSession,
    auth: AuthContext,
    notification_id: uuid.UUID,
) -> Notification:
    """Other people's notifications are indistinguishable from missing ones."""
    result = await session.execute(
        select(Notification).where(
            col(Notification.id) == notification_id,
            col(Notification.recipient_identity) == auth.identity,
        )
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        raise NotFoundError("Notification not found")
    return notification


async def mark_read(session: AsyncSession, auth: AuthContext, notification_id: uuid.UUID) -> NotificationResponse:
    notification = await _get_own_notification(session, auth, notification_id)
    if not notification.is_read:
        notification.is_read = True
        session.add(notification)
        await session.commit()
        await session.refresh(notification)
    return _build_notification_response(notification)


async def mark_all_read(session: AsyncSession, auth: AuthContext) -> MarkAllReadResponse:
    result = await session.execute(
        update(Notification)
        .where(col(Notification.recipient_identity) == auth.identity, col(Notification.is_read).is_(False))
        .values(is_read=True)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return MarkAllReadResponse(updated=result.rowcount)


async def delete_notification(session: AsyncSession, auth: AuthContext, notification_id: uuid.UUID) -> None:
    notification = await _get_own_notification(session, auth, notification_id)
    await session.delete(notification)
    await session.commit()
