"""Unit tests for PrinterDiscoveryService.

Probing is patched so no traffic leaves the test host; the registry is real
and backed by the in-memory database.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from backend.app.core.roles import PrinterRole
from backend.app.services.discovery import PrinterDiscoveryService
from backend.app.services.printer_registry import PrinterRegistry


def _probe_answering(*open_endpoints: tuple[str, int]):
    """Build a probe_tcp replacement that answers only for the given host/port pairs."""
    answering = set(open_endpoints)

    async def _probe(host, port, timeout):
        return (host, port) in answering

    return _probe


class TestPrinterDiscoveryService:
    @pytest.fixture
    def registry(self, session_factory):
        return PrinterRegistry(session_factory)

    @pytest.fixture
    def service(self, registry, fake_driver):
        return PrinterDiscoveryService(registry, fake_driver, ports=[9100, 515, 631], timeout=0.1, batch_size=20)

    @pytest.fixture(autouse=True)
    def no_reverse_dns(self):
        with patch("backend.app.services.discovery.reverse_lookup", AsyncMock(return_value=None)) as mock:
            yield mock

    # ========================================================================
    # Scanning
    # ========================================================================

    @pytest.mark.asyncio
    async def test_finds_printers_in_range(self, service):
        probe = _probe_answering(("10.0.0.5", 9100), ("10.0.0.9", 515))
        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            found = await service.scan("10.0.0.0/28")

        assert sorted(c.endpoint for c in found) == ["tcp://10.0.0.5:9100", "tcp://10.0.0.9:515"]
        assert all(c.status == "online" for c in found)

    @pytest.mark.asyncio
    async def test_probes_every_port_of_every_host(self, service):
        probe = AsyncMock(return_value=False)
        with patch("backend.app.services.discovery.probe_tcp", probe):
            await service.scan("10.0.0.0/29")

        # 6 hosts x 3 ports
        assert probe.await_count == 18
        probed = {(c.args[0], c.args[1]) for c in probe.await_args_list}
        assert ("10.0.0.1", 9100) in probed
        assert ("10.0.0.6", 631) in probed

    @pytest.mark.asyncio
    async def test_empty_network_finds_nothing(self, service):
        with patch("backend.app.services.discovery.probe_tcp", AsyncMock(return_value=False)):
            assert await service.scan("10.0.0.0/29") == []
        assert service.progress == {"scanned": 6, "total": 6}

    @pytest.mark.asyncio
    async def test_uses_local_subnet_by_default(self, service):
        with (
            patch("backend.app.services.discovery.get_local_subnet", return_value="10.9.9.0/30") as mock_subnet,
            patch("backend.app.services.discovery.probe_tcp", AsyncMock(return_value=False)),
        ):
            await service.scan()

        mock_subnet.assert_called_once_with(service.fallback_subnet)
        assert service.last_range == "10.9.9.0/30"

    @pytest.mark.asyncio
    async def test_batches_are_sequential(self, registry, fake_driver):
        """No probe of a batch starts before every probe of the previous batch finished."""
        service = PrinterDiscoveryService(registry, fake_driver, ports=[9100], timeout=0.1, batch_size=4)
        in_flight = 0
        max_in_flight = 0

        async def _probe(host, port, timeout):
            nonlocal in_flight, max_in_flight
            in_flight += 1
            max_in_flight = max(max_in_flight, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return False

        with patch("backend.app.services.discovery.probe_tcp", side_effect=_probe):
            await service.scan("10.0.0.0/28")

        assert max_in_flight == 4

    @pytest.mark.asyncio
    async def test_known_list_updated_after_each_batch(self, registry, fake_driver):
        service = PrinterDiscoveryService(registry, fake_driver, ports=[9100], timeout=0.1, batch_size=2)
        seen_during_scan = []

        async def _probe(host, port, timeout):
            if host == "10.0.0.4":
                seen_during_scan.extend(c.endpoint for c in service.discovered_printers)
            return host == "10.0.0.1"

        with patch("backend.app.services.discovery.probe_tcp", side_effect=_probe):
            await service.scan("10.0.0.0/29")

        assert seen_during_scan == ["tcp://10.0.0.1:9100"]

    # ========================================================================
    # Classification
    # ========================================================================

    @pytest.mark.asyncio
    async def test_detects_star_family(self, service, fake_driver):
        fake_driver.families_by_endpoint["tcp://10.0.0.2:9100"] = "star"
        probe = _probe_answering(("10.0.0.2", 9100))
        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            found = await service.scan("10.0.0.2")

        assert found[0].driver_family == "star"
        assert fake_driver.handshakes == [("tcp://10.0.0.2:9100", "epson"), ("tcp://10.0.0.2:9100", "star")]

    @pytest.mark.asyncio
    async def test_unconfirmed_family_defaults_to_epson(self, service, fake_driver):
        fake_driver.families_by_endpoint["tcp://10.0.0.2:9100"] = "unknown"
        probe = _probe_answering(("10.0.0.2", 9100))
        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            found = await service.scan("10.0.0.2")

        assert len(found) == 1
        assert found[0].driver_family == "epson"

    @pytest.mark.asyncio
    async def test_handshake_errors_fall_back_to_epson(self, service, fake_driver):
        fake_driver.handshake = AsyncMock(side_effect=OSError("reset by peer"))
        probe = _probe_answering(("10.0.0.2", 9100))
        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            found = await service.scan("10.0.0.2")

        assert found[0].driver_family == "epson"

    @pytest.mark.asyncio
    async def test_reverse_dns_names_candidates(self, service, no_reverse_dns):
        no_reverse_dns.return_value = "cocina.local"
        probe = _probe_answering(("10.0.0.2", 9100))
        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            found = await service.scan("10.0.0.2")

        assert found[0].name == "cocina.local"

    # ========================================================================
    # Registry side effects
    # ========================================================================

    @pytest.mark.asyncio
    async def test_candidates_persisted_and_auto_configured(self, service, registry):
        probe = _probe_answering(("10.0.0.1", 9100), ("10.0.0.2", 9100))
        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            await service.scan("10.0.0.0/29")

        assert registry.get_candidate("tcp://10.0.0.1:9100") is not None
        assert registry.get_active_assignment(PrinterRole.KITCHEN).endpoint == "tcp://10.0.0.1:9100"
        assert registry.get_active_assignment(PrinterRole.BAR).endpoint == "tcp://10.0.0.2:9100"

    @pytest.mark.asyncio
    async def test_assignment_change_runs_callback(self, service):
        callback = AsyncMock()
        service.set_assignments_changed_callback(callback)
        probe = _probe_answering(("10.0.0.1", 9100))

        with patch("backend.app.services.discovery.probe_tcp", side_effect=probe):
            await service.scan("10.0.0.1")
            await service.scan("10.0.0.1")

        # Second scan changes nothing
        callback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_missing_printers_marked_offline(self, service, registry):
        with patch("backend.app.services.discovery.probe_tcp", side_effect=_probe_answering(("10.0.0.1", 9100))):
            await service.scan("10.0.0.0/29")
        with patch("backend.app.services.discovery.probe_tcp", AsyncMock(return_value=False)):
            await service.scan("10.0.0.0/29")

        assert registry.get_candidate("tcp://10.0.0.1:9100").status == "offline"

    @pytest.mark.asyncio
    async def test_printers_outside_range_not_marked_offline(self, service, registry):
        with patch("backend.app.services.discovery.probe_tcp", side_effect=_probe_answering(("10.0.0.1", 9100))):
            await service.scan("10.0.0.1")
        with patch("backend.app.services.discovery.probe_tcp", AsyncMock(return_value=False)):
            await service.scan("10.0.1.0/29")

        assert registry.get_candidate("tcp://10.0.0.1:9100").status == "online"

    # ========================================================================
    # Re-entrancy and failures
    # ========================================================================

    @pytest.mark.asyncio
    async def test_concurrent_scan_returns_known_state(self, service):
        """A scan requested while one runs returns the known list without probing."""
        release = asyncio.Event()
        probe_calls = 0

        async def _probe(host, port, timeout):
            nonlocal probe_calls
            probe_calls += 1
            await release.wait()
            return False

        with patch("backend.app.services.discovery.probe_tcp", side_effect=_probe):
            first = asyncio.create_task(service.scan("10.0.0.1"))
            await asyncio.sleep(0.01)
            assert service.is_running is True
            calls_before = probe_calls

            second = await service.scan("10.0.0.0/24")

            assert second == []
            assert probe_calls == calls_before
            release.set()
            await first

        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_invalid_range_is_logged_not_raised(self, service):
        assert await service.scan("999.1.1.0/24") == []
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_partial_results(self, registry, fake_driver):
        service = PrinterDiscoveryService(registry, fake_driver, ports=[9100], timeout=0.1, batch_size=1)
        with (
            patch("backend.app.services.discovery.probe_tcp", side_effect=_probe_answering(("10.0.0.1", 9100))),
            patch.object(registry, "mark_offline", AsyncMock(side_effect=RuntimeError("boom"))),
        ):
            found = await service.scan("10.0.0.0/30")

        assert [c.endpoint for c in found] == ["tcp://10.0.0.1:9100"]
        assert service.is_running is False

    @pytest.mark.asyncio
    async def test_probe_exception_skips_endpoint(self, service):
        async def _probe(host, port, timeout):
            if host == "10.0.0.1":
                raise RuntimeError("socket exploded")
            return host == "10.0.0.2" and port == 9100

        with patch("backend.app.services.discovery.probe_tcp", side_effect=_probe):
            found = await service.scan("10.0.0.0/30")

        assert [c.endpoint for c in found] == ["tcp://10.0.0.2:9100"]

    # ========================================================================
    # Periodic scanning
    # ========================================================================

    @pytest.mark.asyncio
    async def test_periodic_scan_runs_and_stops(self, service):
        with patch.object(service, "scan", AsyncMock(return_value=[])) as mock_scan:
            service.start_periodic_scan(0.0005)  # 30 ms
            await asyncio.sleep(0.1)
            service.stop_periodic_scan()

        assert mock_scan.await_count >= 1
        assert service._periodic_task is None

    @pytest.mark.asyncio
    async def test_periodic_scan_started_once(self, service):
        service.start_periodic_scan(10)
        task = service._periodic_task
        service.start_periodic_scan(10)

        assert service._periodic_task is task
        service.stop_periodic_scan()
