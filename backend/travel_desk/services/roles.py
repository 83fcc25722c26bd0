"""Role resolution against the directory, and the capability checks that gate
each workflow transition.

Nothing here is cached: every call reads the directory, so a capability
revoked between two requests is honoured by the second one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

from travel_desk.exceptions import DependencyFailureError, ForbiddenError
from travel_desk.models.enums import Capability
from travel_desk.services.directory import get_directory_service, normalize_identity

if TYPE_CHECKING:
    from travel_desk.models.request import TravelRequest
    from travel_desk.services.directory import DirectoryEntry, DirectoryService

logger = logging.getLogger(__name__)


class RoleResolver:
    """Answers identity questions from current directory state."""

    def __init__(self, directory: DirectoryService | None = None) -> None:
        self._directory = directory

    @property
    def directory(self) -> DirectoryService:
        return self._directory if self._directory is not None else get_directory_service()

    async def get_person(self, identity: str) -> DirectoryEntry | None:
        try:
            return await self.directory.get_person(normalize_identity(identity))
        except DependencyFailureError:
            raise
        except Exception as exc:
            logger.exception("Directory lookup failed for %s", identity)
            raise DependencyFailureError("Employee directory is unavailable") from exc

    async def display_name(self, identity: str) -> str:
        person = await self.get_person(identity)
        return person.display_name if person is not None else identity

    async def is_manager_of(self, identity: str, employee_identity: str) -> bool:
        """True if ``identity`` is the reporting manager of ``employee_identity``."""
        employee = await self.get_person(employee_identity)
        if employee is None:
            return False
        identity = normalize_identity(identity)
        if employee.manager_identity is not None and employee.manager_identity == identity:
            return True
        if employee.manager_employee_number:
            manager = await self.get_person(identity)
            return manager is not None and manager.employee_number == employee.manager_employee_number
        return False

    async def manager_identity_of(self, employee_identity: str) -> str | None:
        employee = await self.get_person(employee_identity)
        return employee.manager_identity if employee is not None else None

    async def has_capability(self, identity: str, capability: Capability) -> bool:
        person = await self.get_person(identity)
        return person is not None and capability in person.capabilities

    async def identities_with(self, capability: Capability) -> list[str]:
        try:
            people = await self.directory.list_with_capability(capability)
        except DependencyFailureError:
            raise
        except Exception as exc:
            logger.exception("Directory listing failed for %s", capability)
            raise DependencyFailureError("Employee directory is unavailable") from exc
        return [p.identity for p in people]

    async def reports_of(self, manager_identity: str) -> list[str]:
        try:
            people = await self.directory.list_reports(normalize_identity(manager_identity))
        except DependencyFailureError:
            raise
        except Exception as exc:
            logger.exception("Directory listing failed for reports of %s", manager_identity)
            raise DependencyFailureError("Employee directory is unavailable") from exc
        return [p.identity for p in people]


# ---------------------------------------------------------------------------
# Capability checks
# ---------------------------------------------------------------------------


class Requirement(Protocol):
    """Who may perform a transition."""

    @property
    def description(self) -> str: ...

    async def allows(self, resolver: RoleResolver, actor: str, request: TravelRequest) -> bool: ...


@dataclass(frozen=True)
class ManagerOfOriginator:
    @property
    def description(self) -> str:
        return "the originator's manager"

    async def allows(self, resolver: RoleResolver, actor: str, request: TravelRequest) -> bool:
        return await resolver.is_manager_of(actor, request.originator_identity)


@dataclass(frozen=True)
class HoldsCapability:
    capability: Capability

    @property
    def description(self) -> str:
        return {
            Capability.POC: "a POC",
            Capability.VENDOR: "a vendor",
            Capability.ADMIN: "an administrator",
        }[self.capability]

    async def allows(self, resolver: RoleResolver, actor: str, request: TravelRequest) -> bool:
        return await resolver.has_capability(actor, self.capability)


@dataclass(frozen=True)
class ChatParticipant:
    """The originator, or anyone holding vendor capability."""

    @property
    def description(self) -> str:
        return "the vendor or the requester"

    async def allows(self, resolver: RoleResolver, actor: str, request: TravelRequest) -> bool:
        if normalize_identity(actor) == request.originator_identity:
            return True
        return await resolver.has_capability(actor, Capability.VENDOR)


MANAGER_OF_ORIGINATOR = ManagerOfOriginator()
POC = HoldsCapability(Capability.POC)
VENDOR = HoldsCapability(Capability.VENDOR)
ADMIN = HoldsCapability(Capability.ADMIN)
CHAT_PARTICIPANT = ChatParticipant()


async def ensure_allowed(
    requirement: Requirement,
    resolver: RoleResolver,
    actor: str,
    request: TravelRequest,
    verb: str,
) -> None:
    """Raise 403 unless ``actor`` currently satisfies ``requirement``."""
    if not await requirement.allows(resolver, actor, request):
        raise ForbiddenError(f"Only {requirement.description} may {verb} request {request.human_id}")
