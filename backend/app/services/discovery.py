"""Network discovery of thermal printers.

Scans an IPv4 range for endpoints answering on printing ports (raw 9100,
LPD 515, IPP 631), works out which command dialect each one speaks and hands
the results to the printer registry.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from backend.app.core.config import settings
from backend.app.services.network_utils import expand_hosts, get_local_subnet, make_endpoint, probe_tcp, reverse_lookup
from backend.app.services.printer_driver import DEFAULT_FAMILY, PrinterDriver
from backend.app.services.printer_registry import PrinterCandidate, PrinterRegistry

logger = logging.getLogger(__name__)


class PrinterDiscoveryService:
    """Bounded-concurrency subnet scanner for network printers.

    Only one scan runs at a time. Hosts are probed in batches; every port of
    every host in a batch is probed concurrently and the batch is awaited in
    full before the next one starts.
    """

    def __init__(
        self,
        registry: PrinterRegistry,
        driver: PrinterDriver,
        *,
        ports: list[int] | None = None,
        timeout: float | None = None,
        batch_size: int | None = None,
        max_hosts: int | None = None,
        fallback_subnet: str | None = None,
    ):
        self._registry = registry
        self._driver = driver
        self.ports = list(ports or settings.discovery_ports)
        self.timeout = timeout or settings.discovery_timeout
        self.batch_size = max(1, batch_size or settings.discovery_batch_size)
        self.max_hosts = max_hosts or settings.discovery_max_hosts
        self.fallback_subnet = fallback_subnet or settings.discovery_fallback_subnet

        self._running = False
        self._scanned = 0
        self._total = 0
        self._last_scan: datetime | None = None
        self._last_range: str | None = None
        self._periodic_task: asyncio.Task | None = None
        self._on_assignments_changed: Callable[[], Awaitable[None]] | None = None

    def set_assignments_changed_callback(self, callback: Callable[[], Awaitable[None]]):
        """Set callback run after a scan changed role assignments."""
        self._on_assignments_changed = callback

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def progress(self) -> dict:
        return {"scanned": self._scanned, "total": self._total}

    @property
    def last_scan(self) -> datetime | None:
        return self._last_scan

    @property
    def last_range(self) -> str | None:
        return self._last_range

    @property
    def discovered_printers(self) -> list[PrinterCandidate]:
        """Known candidates, including those found by a scan still in progress."""
        return self._registry.list_candidates()

    async def scan(
        self,
        address_range: str | None = None,
        ports: list[int] | None = None,
        timeout: float | None = None,
    ) -> list[PrinterCandidate]:
        """Scan a range for printers.

        Args:
            address_range: CIDR range or single address; defaults to the local /24
            ports: Ports to probe on every host
            timeout: Per-probe timeout in seconds

        Returns:
            Printers found by this scan. If a scan is already running, the
            currently known printers are returned instead.
        """
        # Checked and set with no await in between
        if self._running:
            logger.info("Scan already in progress, returning known printers")
            return self.discovered_printers
        self._running = True

        found: list[PrinterCandidate] = []
        try:
            ports = list(ports or self.ports)
            timeout = timeout or self.timeout
            address_range = address_range or get_local_subnet(self.fallback_subnet)
            hosts = expand_hosts(address_range, self.max_hosts)

            self._scanned = 0
            self._total = len(hosts)
            self._last_range = address_range
            logger.info("Scanning %s (%s hosts) on ports %s", address_range, len(hosts), ports)

            for start in range(0, len(hosts), self.batch_size):
                batch = hosts[start : start + self.batch_size]
                results = await asyncio.gather(
                    *(self._scan_printer(ip, port, timeout) for ip in batch for port in ports),
                    return_exceptions=True,
                )
                batch_found = []
                for result in results:
                    if isinstance(result, PrinterCandidate):
                        batch_found.append(result)
                    elif isinstance(result, Exception):
                        logger.debug("Probe failed: %s", result)

                self._scanned += len(batch)
                if batch_found:
                    found.extend(batch_found)
                    await self._registry.upsert_candidates(batch_found)

            await self._registry.mark_offline(hosts, {c.endpoint for c in found})
            logger.info("Found %s printer(s) in %s", len(found), address_range)

            if await self._registry.auto_configure(found) and self._on_assignments_changed:
                await self._on_assignments_changed()
        except Exception as e:
            logger.error("Error scanning network: %s", e, exc_info=True)
        finally:
            self._running = False
            self._last_scan = datetime.now()

        return found

    async def _scan_printer(self, ip: str, port: int, timeout: float) -> PrinterCandidate | None:
        """Probe one host:port and describe the printer behind it, if any."""
        if not await probe_tcp(ip, port, timeout):
            return None

        endpoint = make_endpoint(ip, port)
        family = await self._detect_family(endpoint, timeout)
        name = await reverse_lookup(ip, timeout)
        logger.info("Found printer at %s (%s)", endpoint, family)
        return PrinterCandidate(ip=ip, port=port, driver_family=family, name=name)

    async def _detect_family(self, endpoint: str, timeout: float) -> str:
        for family in self._driver.families:
            try:
                if await self._driver.handshake(endpoint, family, timeout):
                    return family
            except Exception as e:
                logger.debug("%s handshake with %s raised: %s", family, endpoint, e)
        # Something answered on a printing port; assume the common dialect
        return DEFAULT_FAMILY

    # ------------------------------------------------------------------
    # Periodic scanning
    # ------------------------------------------------------------------

    def start_periodic_scan(self, interval_minutes: float):
        """Start rescanning the network in the background."""
        if self._periodic_task is not None:
            return
        self._periodic_task = asyncio.create_task(self._periodic_loop(interval_minutes * 60))
        logger.info("Periodic printer discovery every %s minute(s)", interval_minutes)

    def stop_periodic_scan(self):
        if self._periodic_task:
            self._periodic_task.cancel()
            self._periodic_task = None
            logger.info("Periodic printer discovery stopped")

    async def _periodic_loop(self, interval: float):
        while True:
            try:
                await asyncio.sleep(interval)
                if self._running:
                    continue
                await self.scan()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("Periodic printer discovery failed: %s", e)
