"""Durable registry of discovered printers and role assignments.

The registry is the only writer of role assignment state. It keeps an
in-memory copy of the current assignments so the rest of the fleet keeps
working when the database is unavailable; write failures are logged and the
in-memory state is updated anyway.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.roles import ROLE_KEYWORDS, AssignmentSource, PrinterRole, parse_role
from backend.app.models.discovered_printer import DiscoveredPrinter
from backend.app.models.printer_assignment import PrinterAssignment
from backend.app.services.network_utils import make_endpoint
from backend.app.services.printer_driver import DEFAULT_FAMILY

logger = logging.getLogger(__name__)


class AssignmentNotFoundError(LookupError):
    """Raised when a role has no assignment to modify."""


class CandidateNotFoundError(LookupError):
    """Raised when an endpoint has never been discovered."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        super().__init__(f"Printer {endpoint} not found. Run discovery first.")


@dataclass(slots=True)
class PrinterCandidate:
    """A printer-shaped endpoint seen on the network."""

    ip: str
    port: int
    driver_family: str = DEFAULT_FAMILY
    name: str | None = None
    role: str | None = None
    status: str = "online"
    last_seen: datetime = field(default_factory=datetime.now)

    @property
    def endpoint(self) -> str:
        return make_endpoint(self.ip, self.port)


@dataclass(slots=True)
class RoleAssignment:
    """Current binding of a role to an endpoint."""

    role: PrinterRole
    endpoint: str
    ip: str
    port: int
    driver_family: str = DEFAULT_FAMILY
    name: str | None = None
    source: AssignmentSource = AssignmentSource.AUTO
    enabled: bool = True
    locked: bool = False
    updated_at: datetime | None = None


@dataclass
class FleetConfig:
    """Printer configuration handed to the connection manager."""

    printers: dict[PrinterRole, RoleAssignment] = field(default_factory=dict)

    def get(self, role: PrinterRole) -> RoleAssignment | None:
        return self.printers.get(role)


def match_role_by_name(name: str | None) -> PrinterRole | None:
    """Guess a role from a printer name ("Kitchen-TM20", "bar.local", ...)."""
    if not name:
        return None
    name_lower = name.lower()
    for role, keywords in ROLE_KEYWORDS.items():
        if any(keyword in name_lower for keyword in keywords):
            return role
    return None


def _candidate_from_row(row: DiscoveredPrinter) -> PrinterCandidate:
    return PrinterCandidate(
        ip=row.ip,
        port=row.port,
        driver_family=row.driver_family or DEFAULT_FAMILY,
        name=row.name,
        role=row.role,
        status=row.status,
        last_seen=row.last_seen,
    )


def _assignment_from_row(row: PrinterAssignment) -> RoleAssignment:
    return RoleAssignment(
        role=PrinterRole(row.role),
        endpoint=row.endpoint,
        ip=row.ip,
        port=row.port,
        driver_family=row.driver_family or DEFAULT_FAMILY,
        name=row.name,
        source=AssignmentSource(row.source),
        enabled=row.enabled,
        locked=row.locked,
        updated_at=row.updated_at,
    )


class PrinterRegistry:
    """Persistent candidate table and role assignments."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._assignments: dict[PrinterRole, RoleAssignment] = {}
        self._candidates: dict[str, PrinterCandidate] = {}

    async def load(self):
        """Load role assignments and known candidates from the database into memory."""
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(PrinterAssignment))
                rows = result.scalars().all()
                result = await db.execute(select(DiscoveredPrinter))
                candidate_rows = result.scalars().all()
        except SQLAlchemyError as e:
            logger.warning("Could not load printer registry, keeping current state: %s", e)
            return

        self._candidates = {row.endpoint: _candidate_from_row(row) for row in candidate_rows}

        assignments = {}
        for row in rows:
            try:
                assignments[PrinterRole(row.role)] = _assignment_from_row(row)
            except ValueError:
                logger.warning("Ignoring assignment with unknown role %r", row.role)
        self._assignments = assignments
        logger.info(
            "Loaded %s printer assignment(s) and %s known printer(s) from database",
            len(assignments),
            len(self._candidates),
        )

    # ------------------------------------------------------------------
    # Candidates
    # ------------------------------------------------------------------

    async def upsert_candidate(self, candidate: PrinterCandidate):
        """Insert or refresh one discovered printer, keyed by endpoint."""
        await self.upsert_candidates([candidate])

    async def upsert_candidates(self, candidates: list[PrinterCandidate]):
        """Insert or refresh discovered printers, keyed by endpoint."""
        if not candidates:
            return
        for candidate in candidates:
            known = self._candidates.get(candidate.endpoint)
            if known is not None and not candidate.name:
                candidate.name = known.name
            if known is not None and not candidate.role:
                candidate.role = known.role
            self._candidates[candidate.endpoint] = candidate

        try:
            async with self._session_factory() as db:
                for candidate in candidates:
                    result = await db.execute(
                        select(DiscoveredPrinter).where(DiscoveredPrinter.endpoint == candidate.endpoint)
                    )
                    row = result.scalar_one_or_none()
                    if row is None:
                        db.add(
                            DiscoveredPrinter(
                                ip=candidate.ip,
                                port=candidate.port,
                                endpoint=candidate.endpoint,
                                driver_family=candidate.driver_family,
                                name=candidate.name,
                                role=candidate.role,
                                status=candidate.status,
                                last_seen=candidate.last_seen,
                            )
                        )
                    else:
                        row.status = candidate.status
                        row.last_seen = candidate.last_seen
                        row.driver_family = candidate.driver_family
                        if candidate.name:
                            row.name = candidate.name
                        if candidate.role:
                            row.role = candidate.role
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Error saving discovered printers: %s", e)

    async def mark_offline(self, scanned_hosts: list[str], seen_endpoints: set[str]) -> int:
        """Mark candidates on scanned hosts that did not answer as offline."""
        hosts = set(scanned_hosts)
        stale = [
            c
            for c in self._candidates.values()
            if c.ip in hosts and c.endpoint not in seen_endpoints and c.status != "offline"
        ]
        if not stale:
            return 0
        for candidate in stale:
            candidate.status = "offline"
        logger.info("Marked %s missing printer(s) offline", len(stale))

        try:
            async with self._session_factory() as db:
                await db.execute(
                    update(DiscoveredPrinter)
                    .where(DiscoveredPrinter.endpoint.in_([c.endpoint for c in stale]))
                    .values(status="offline")
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Error marking missing printers offline: %s", e)
        return len(stale)

    def list_candidates(self) -> list[PrinterCandidate]:
        """All printers ever discovered, most recently seen first."""
        return sorted(self._candidates.values(), key=lambda c: c.last_seen or datetime.min, reverse=True)

    def get_candidate(self, endpoint: str) -> PrinterCandidate | None:
        return self._candidates.get(endpoint)

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def get_active_assignment(self, role: PrinterRole | str) -> RoleAssignment | None:
        """Current enabled assignment for a role, if any."""
        role = parse_role(role)
        assignment = self._assignments.get(role)
        if assignment and assignment.enabled:
            return assignment
        return None

    def get_assignment(self, role: PrinterRole | str) -> RoleAssignment | None:
        """Current assignment for a role, enabled or not."""
        return self._assignments.get(parse_role(role))

    def list_assignments(self) -> list[RoleAssignment]:
        return [self._assignments[role] for role in PrinterRole if role in self._assignments]

    def load_config(self) -> FleetConfig:
        """Snapshot of the assignments for the connection manager."""
        return FleetConfig(printers={role: replace(a) for role, a in self._assignments.items()})

    async def assign_role(
        self,
        role: PrinterRole | str,
        candidate: PrinterCandidate,
        source: AssignmentSource | str = AssignmentSource.MANUAL,
        locked: bool | None = None,
    ) -> RoleAssignment:
        """Bind a role to a candidate, replacing the role's previous binding."""
        role = parse_role(role)
        source = AssignmentSource(source)
        current = self._assignments.get(role)

        assignment = RoleAssignment(
            role=role,
            endpoint=candidate.endpoint,
            ip=candidate.ip,
            port=candidate.port,
            driver_family=candidate.driver_family,
            name=candidate.name,
            source=source,
            enabled=current.enabled if current else True,
            locked=locked if locked is not None else (current.locked if current else False),
            updated_at=datetime.now(),
        )
        self._assignments[role] = assignment
        candidate.role = role.value

        await self._save_assignment(assignment)
        logger.info("Assigned %s printer: %s (%s)", role, candidate.endpoint, source)
        return assignment

    async def assign_endpoint(
        self,
        role: PrinterRole | str,
        endpoint: str,
        locked: bool | None = None,
    ) -> RoleAssignment:
        """Manually bind a role to a previously discovered endpoint.

        Raises:
            InvalidRoleError: if the role is unknown.
            CandidateNotFoundError: if the endpoint was never discovered.
        """
        role = parse_role(role)
        candidate = self._candidates.get(endpoint)
        if candidate is None:
            raise CandidateNotFoundError(endpoint)
        return await self.assign_role(role, candidate, AssignmentSource.MANUAL, locked=locked)

    async def set_enabled(self, role: PrinterRole | str, enabled: bool) -> RoleAssignment:
        return await self._modify(role, enabled=enabled)

    async def set_locked(self, role: PrinterRole | str, locked: bool) -> RoleAssignment:
        return await self._modify(role, locked=locked)

    async def _modify(self, role: PrinterRole | str, **changes) -> RoleAssignment:
        role = parse_role(role)
        current = self._assignments.get(role)
        if current is None:
            raise AssignmentNotFoundError(f"No printer assigned to {role}")
        assignment = replace(current, updated_at=datetime.now(), **changes)
        self._assignments[role] = assignment
        await self._save_assignment(assignment)
        return assignment

    async def _save_assignment(self, assignment: RoleAssignment):
        try:
            async with self._session_factory() as db:
                result = await db.execute(select(PrinterAssignment).where(PrinterAssignment.role == assignment.role))
                row = result.scalar_one_or_none()
                if row is None:
                    row = PrinterAssignment(role=assignment.role.value)
                    db.add(row)
                row.endpoint = assignment.endpoint
                row.ip = assignment.ip
                row.port = assignment.port
                row.driver_family = assignment.driver_family
                row.name = assignment.name
                row.source = assignment.source.value
                row.enabled = assignment.enabled
                row.locked = assignment.locked

                await db.execute(
                    update(DiscoveredPrinter)
                    .where(DiscoveredPrinter.endpoint == assignment.endpoint)
                    .values(role=assignment.role.value)
                )
                await db.commit()
        except SQLAlchemyError as e:
            logger.error("Error saving %s printer config: %s", assignment.role, e)

    # ------------------------------------------------------------------
    # Auto-configuration
    # ------------------------------------------------------------------

    def _snapshot(self) -> dict[PrinterRole, tuple]:
        return {
            role: (a.endpoint, a.driver_family, a.source, a.enabled, a.locked) for role, a in self._assignments.items()
        }

    async def auto_configure(self, candidates: list[PrinterCandidate]) -> bool:
        """Assign roles from the result of a scan.

        On a fresh install (no assignments besides locked ones) the first
        candidate becomes the kitchen printer and the second the bar printer.
        Once any role is configured, scan order no longer matters: existing
        assignments whose endpoint was seen again are refreshed, and remaining
        roles are matched by printer name. A configured printer is only replaced
        when it has vanished from the scan, and an operator assignment only if it
        is not locked; locked assignments are never replaced.

        Returns:
            True if any role assignment changed.
        """
        if not candidates:
            return False

        before = self._snapshot()
        fresh = all(a.locked for a in self._assignments.values())

        if fresh:
            locked_endpoints = {a.endpoint for a in self._assignments.values() if a.locked}
            open_roles = [
                role for role in (PrinterRole.KITCHEN, PrinterRole.BAR) if not self._is_locked(self._assignments.get(role))
            ]
            available = [c for c in candidates if c.endpoint not in locked_endpoints]
            for role, candidate in zip(open_roles, available):
                await self.assign_role(role, candidate, AssignmentSource.AUTO)
        else:
            seen = {c.endpoint: c for c in candidates}
            claimed: set[PrinterRole] = set()

            # Refresh assignments whose printer is still there
            for role, current in list(self._assignments.items()):
                candidate = seen.get(current.endpoint)
                if candidate is not None:
                    await self.assign_role(role, candidate, current.source)
                    claimed.add(role)

            # Match the rest by name
            for candidate in candidates:
                if any(a.endpoint == candidate.endpoint for a in self._assignments.values()):
                    continue
                role = match_role_by_name(candidate.name)
                if role is None or role in claimed:
                    continue
                if not self._may_replace(self._assignments.get(role), seen):
                    continue
                await self.assign_role(role, candidate, AssignmentSource.AUTO)
                claimed.add(role)

        changed = self._snapshot() != before
        if changed:
            logger.info("Auto-configuration updated printer assignments")
        return changed

    @staticmethod
    def _is_locked(assignment: RoleAssignment | None) -> bool:
        return assignment is not None and assignment.locked

    @staticmethod
    def _may_replace(current: RoleAssignment | None, seen: dict[str, PrinterCandidate]) -> bool:
        if current is None:
            return True
        if current.locked:
            return False
        if current.source == AssignmentSource.MANUAL and current.endpoint in seen:
            return False
        return True
