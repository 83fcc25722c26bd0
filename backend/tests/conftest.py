from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from travel_desk.config import set_settings
from travel_desk.db import get_session, set_session_factory
from travel_desk.main import app
from travel_desk.models import Capability, SQLModel
from travel_desk.services.directory import DirectoryEntry, InMemoryDirectoryService, set_directory_service
from travel_desk.services.notification import (
    InMemoryNotificationSink,
    NotificationDispatcher,
    set_notification_dispatcher,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine

EMPLOYEE = "e@corp.com"
MANAGER = "m@corp.com"
NUMBERED_REPORT = "f@corp.com"
POC = "poc@corp.com"
SECOND_POC = "poc2@corp.com"
VENDOR = "vendor@corp.com"
ADMIN = "admin@corp.com"
OUTSIDER = "x@corp.com"


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncIterator[AsyncEngine]:
    """A fresh SQLite database file per test, with all tables created."""
    _engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'travel_desk.db'}")
    async with _engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield _engine
    await _engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> Iterator[async_sessionmaker[AsyncSession]]:
    factory = async_sessionmaker(engine, expire_on_commit=False)
    set_session_factory(factory)
    yield factory
    set_session_factory(None)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_settings() -> Iterator[None]:
    yield
    set_settings(None)


@pytest.fixture
def directory() -> Iterator[InMemoryDirectoryService]:
    """Seed the in-memory directory with one person per role."""
    svc = InMemoryDirectoryService()
    svc.seed(
        DirectoryEntry(
            identity=EMPLOYEE,
            display_name="Esha Employee",
            employee_number="E100",
            manager_identity=MANAGER,
            manager_employee_number="M200",
        )
    )
    svc.seed(DirectoryEntry(identity=MANAGER, display_name="Mohan Manager", employee_number="M200"))
    svc.seed(
        DirectoryEntry(
            identity=NUMBERED_REPORT,
            display_name="Farah Report",
            employee_number="E101",
            manager_employee_number="M200",
        )
    )
    svc.seed(DirectoryEntry(identity=POC, display_name="Priya POC", capabilities={Capability.POC}))
    svc.seed(DirectoryEntry(identity=SECOND_POC, display_name="Pavan POC", capabilities={Capability.POC}))
    svc.seed(DirectoryEntry(identity=VENDOR, display_name="Vikram Vendor", capabilities={Capability.VENDOR}))
    svc.seed(DirectoryEntry(identity=ADMIN, display_name="Anil Admin", capabilities={Capability.ADMIN}))
    svc.seed(DirectoryEntry(identity=OUTSIDER, display_name="Xavier Outsider", manager_identity="boss@corp.com"))
    set_directory_service(svc)
    yield svc
    set_directory_service(InMemoryDirectoryService())


@pytest.fixture
def sink() -> InMemoryNotificationSink:
    return InMemoryNotificationSink()


@pytest.fixture
async def dispatcher(
    sink: InMemoryNotificationSink,
    directory: InMemoryDirectoryService,
) -> AsyncIterator[NotificationDispatcher]:
    """Dispatcher delivering to an in-memory sink; call ``drain()`` before asserting."""
    _dispatcher = NotificationDispatcher(sink=sink, override_recipient=None)
    set_notification_dispatcher(_dispatcher)
    yield _dispatcher
    await _dispatcher.stop()
    set_notification_dispatcher(None)


@pytest.fixture
async def async_client(
    session_factory: async_sessionmaker[AsyncSession],
    directory: InMemoryDirectoryService,
    dispatcher: NotificationDispatcher,
) -> AsyncIterator[AsyncClient]:
    """Async HTTP client; each API call gets its own session, like production."""

    async def _override_get_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()
