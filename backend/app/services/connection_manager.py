"""Live printer handles per station role.

Handles are rebuilt from the registry's `FleetConfig` whenever assignments
change. Print jobs never raise: an unconfigured, unreachable or failing printer
yields `False` and a warning in the log.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from backend.app.core.config import settings
from backend.app.core.roles import PrinterRole, parse_role
from backend.app.services.printer_driver import PrinterDriver, PrinterHandle
from backend.app.services.printer_registry import FleetConfig, RoleAssignment
from backend.app.services.ticket_format import StationTicket, format_test_slip, render_ticket

logger = logging.getLogger(__name__)


@dataclass
class PrinterConnection:
    """Live handle for one role. Jobs on the same role are serialized."""

    assignment: RoleAssignment
    handle: PrinterHandle
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)


class PrinterConnectionManager:
    """Manager for the printer handles of each role."""

    def __init__(self, driver: PrinterDriver, *, timeout: float | None = None, line_width: int | None = None):
        self._driver = driver
        self.timeout = timeout or settings.printer_timeout
        self.line_width = line_width or settings.ticket_line_width
        self._config = FleetConfig()
        self._connections: dict[PrinterRole, PrinterConnection] = {}

    def initialize(self, config: FleetConfig) -> int:
        """Build handles for every enabled role, replacing existing ones.

        Returns:
            Number of printers ready for jobs.
        """
        connections = {}
        for role, assignment in config.printers.items():
            if not assignment.enabled:
                logger.info("Printer for %s is disabled", role)
                continue
            try:
                handle = self._driver.open(assignment.endpoint, assignment.driver_family)
            except Exception as e:
                logger.error("Error adding printer %s (%s): %s", role, assignment.endpoint, e)
                continue
            connections[role] = PrinterConnection(assignment=assignment, handle=handle)
            logger.info("Printer %s configured at %s", role, assignment.endpoint)

        self._config = config
        self._connections = connections
        logger.info("Printer connections initialized: %s printer(s)", len(connections))
        return len(connections)

    def has_printer(self, role: PrinterRole | str) -> bool:
        return parse_role(role) in self._connections

    async def is_reachable(self, role: PrinterRole | str) -> bool:
        """Check whether the printer for a role answers. Never raises."""
        role = parse_role(role)
        connection = self._connections.get(role)
        if connection is None:
            return False
        try:
            return await asyncio.wait_for(
                self._driver.test_reachable(connection.assignment.endpoint, self.timeout),
                timeout=self.timeout,
            )
        except Exception as e:
            logger.debug("Reachability check for %s failed: %s", role, e)
            return False

    async def send_raw(self, role: PrinterRole | str, text: str) -> bool:
        """Print preformatted text, one line per non-empty line, then cut."""
        role = parse_role(role)

        def render(handle: PrinterHandle):
            for line in text.split("\n"):
                if line.strip():
                    handle.write_line(line)
            handle.cut()

        return await self._run_job(role, render)

    async def send_formatted(self, role: PrinterRole | str, ticket: StationTicket) -> bool:
        """Print a styled station ticket."""
        role = parse_role(role)
        return await self._run_job(role, lambda handle: render_ticket(handle, ticket, self.line_width))

    async def test_print(self, role: PrinterRole | str) -> bool:
        role = parse_role(role)
        return await self.send_raw(role, format_test_slip(role, self.line_width))

    async def _run_job(self, role: PrinterRole, render: Callable[[PrinterHandle], None]) -> bool:
        connection = self._connections.get(role)
        if connection is None:
            logger.warning("No printer configured for %s", role)
            return False

        if not await self.is_reachable(role):
            logger.warning("Printer %s is not connected", role)
            return False

        async with connection.lock:
            handle = connection.handle
            try:
                handle.clear()
                render(handle)
                await asyncio.wait_for(handle.flush(self.timeout), timeout=self.timeout)
            except Exception as e:
                handle.clear()
                logger.warning("Error printing to %s: %s", role, e)
                return False

        logger.info("Printed %s ticket on %s", role, connection.assignment.endpoint)
        return True

    async def get_status(self, role: PrinterRole | str) -> dict:
        """Configuration and live reachability of a role's printer."""
        role = parse_role(role)
        assignment = self._config.get(role)
        return {
            "role": role.value,
            "configured": assignment is not None,
            "enabled": bool(assignment and assignment.enabled),
            "connected": await self.is_reachable(role),
            "endpoint": assignment.endpoint if assignment else None,
            "name": assignment.name if assignment else None,
            "driver_family": assignment.driver_family if assignment else None,
            "source": assignment.source.value if assignment else None,
            "locked": bool(assignment and assignment.locked),
        }

    async def list_printers(self) -> list[dict]:
        """Status of every role, checked concurrently."""
        return list(await asyncio.gather(*(self.get_status(role) for role in PrinterRole)))
