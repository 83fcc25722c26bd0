from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field, field_validator

from travel_desk.models.enums import Capability


def normalize_identity(identity: str) -> str:
    """Identities are e-mail addresses compared case-insensitively."""
    return identity.strip().lower()


class DirectoryEntry(BaseModel):
    """A person as known to the employee directory and account records."""

    identity: str
    display_name: str
    employee_number: str | None = None
    manager_identity: str | None = None
    manager_employee_number: str | None = None
    capabilities: set[Capability] = Field(default_factory=set)

    @field_validator("identity", "manager_identity")
    @classmethod
    def _normalize(cls, value: str | None) -> str | None:
        return normalize_identity(value) if value else value


@runtime_checkable
class DirectoryService(Protocol):
    """Interface for the employee directory.

    Implementations raise ``DependencyFailureError`` when the backing store is
    unreachable.
    """

    async def get_person(self, identity: str) -> DirectoryEntry | None:
        """Fetch one person. Returns None if not found."""
        ...

    async def list_with_capability(self, capability: Capability) -> list[DirectoryEntry]:
        """List everyone currently holding a capability."""
        ...

    async def list_reports(self, manager_identity: str) -> list[DirectoryEntry]:
        """List employees whose manager is the given identity."""
        ...


class InMemoryDirectoryService:
    """In-memory stub implementation for development."""

    def __init__(self) -> None:
        self._people: dict[str, DirectoryEntry] = {}

    def seed(self, person: DirectoryEntry) -> None:
        """Seed (or replace) a person for testing."""
        self._people[person.identity] = person

    def grant(self, identity: str, capability: Capability) -> None:
        """Add a capability to an existing person."""
        self._people[normalize_identity(identity)].capabilities.add(capability)

    def revoke(self, identity: str, capability: Capability) -> None:
        """Remove a capability from an existing person."""
        self._people[normalize_identity(identity)].capabilities.discard(capability)

    async def get_person(self, identity: str) -> DirectoryEntry | None:
        """Fetch one person. Returns None if not found."""
        return self._people.get(normalize_identity(identity))

    async def list_with_capability(self, capability: Capability) -> list[DirectoryEntry]:
        """List everyone currently holding a capability."""
        return [p for p in self._people.values() if capability in p.capabilities]

    async def list_reports(self, manager_identity: str) -> list[DirectoryEntry]:
        """List employees whose manager is the given identity."""
        manager = self._people.get(normalize_identity(manager_identity))
        manager_number = manager.employee_number if manager else None
        return [
            p
            for p in self._people.values()
            if p.manager_identity == normalize_identity(manager_identity)
            or (manager_number is not None and p.manager_employee_number == manager_number)
        ]


_directory_service: DirectoryService = InMemoryDirectoryService()


def get_directory_service() -> DirectoryService:
    """FastAPI dependency for the directory."""
    return _directory_service


def set_directory_service(service: DirectoryService) -> None:
    """Override the service (for testing or production wiring)."""
    global _directory_service
    _directory_service = service
