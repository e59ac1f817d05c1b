"""Composition of the printer fleet services.

Builds discovery, registry, connections and the ticket router with explicit
dependencies. The application creates one fleet in its lifespan and stores it
on `app.state.fleet`; tests build their own with fake collaborators.
"""

import asyncio
import logging
from dataclasses import dataclass, field

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.websocket import StationConnectionManager
from backend.app.services.connection_manager import PrinterConnectionManager
from backend.app.services.discovery import PrinterDiscoveryService
from backend.app.services.order_source import HttpOrderSource, OrderSource
from backend.app.services.printer_driver import EscposPrinterDriver, PrinterDriver
from backend.app.services.printer_registry import PrinterRegistry
from backend.app.services.ticket_router import TicketRouter

logger = logging.getLogger(__name__)


@dataclass
class PrinterFleet:
    registry: PrinterRegistry
    discovery: PrinterDiscoveryService
    connections: PrinterConnectionManager
    router: TicketRouter
    notifier: StationConnectionManager
    order_source: OrderSource
    _startup_scan: asyncio.Task | None = field(default=None, init=False, repr=False)

    async def reload_connections(self):
        """Rebuild printer handles from the current role assignments."""
        self.connections.initialize(self.registry.load_config())

    async def start(self, auto_discover: bool | None = None, discovery_interval: int | None = None):
        """Load state from the database and start background discovery."""
        auto_discover = settings.auto_discover_printers if auto_discover is None else auto_discover
        discovery_interval = settings.printer_discovery_interval if discovery_interval is None else discovery_interval

        await self.registry.load()
        await self.reload_connections()

        if auto_discover:
            logger.info("Discovering printers on startup...")
            self._startup_scan = asyncio.create_task(self.discovery.scan())

        if discovery_interval > 0:
            self.discovery.start_periodic_scan(discovery_interval)

    async def stop(self):
        if self._startup_scan and not self._startup_scan.done():
            self._startup_scan.cancel()
        self.discovery.stop_periodic_scan()
        await self.order_source.close()


def build_fleet(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    driver: PrinterDriver | None = None,
    order_source: OrderSource | None = None,
    notifier: StationConnectionManager | None = None,
) -> PrinterFleet:
    driver = driver or EscposPrinterDriver()
    order_source = order_source or HttpOrderSource()
    notifier = notifier or StationConnectionManager()

    registry = PrinterRegistry(session_factory)
    discovery = PrinterDiscoveryService(registry, driver)
    connections = PrinterConnectionManager(driver)
    router = TicketRouter(connections, order_source, session_factory, notifier)

    fleet = PrinterFleet(
        registry=registry,
        discovery=discovery,
        connections=connections,
        router=router,
        notifier=notifier,
        order_source=order_source,
    )
    discovery.set_assignments_changed_callback(fleet.reload_connections)
    return fleet


def get_fleet(request: Request) -> PrinterFleet:
    """FastAPI dependency returning the application's fleet."""
    return request.app.state.fleet
