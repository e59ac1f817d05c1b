"""
Printer discovery API endpoints.

Scans the local network for thermal printers answering on the raw, LPD and
IPP ports.
"""

import logging

from fastapi import APIRouter, Depends

from backend.app.core.config import settings
from backend.app.schemas.discovery import (
    DiscoveredPrinterResponse,
    DiscoveryInfo,
    DiscoveryStatus,
    ScanRequest,
    ScanResponse,
)
from backend.app.services.network_utils import get_local_subnet, get_network_interfaces
from backend.app.services.printer_fleet import PrinterFleet, get_fleet

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/discovery", tags=["discovery"])


@router.get("/info", response_model=DiscoveryInfo)
async def get_discovery_info(fleet: PrinterFleet = Depends(get_fleet)):
    """Get the network defaults a scan would use."""
    discovery = fleet.discovery
    return DiscoveryInfo(
        default_range=get_local_subnet(discovery.fallback_subnet),
        subnets=[iface["subnet"] for iface in get_network_interfaces()],
        ports=discovery.ports,
        timeout=discovery.timeout,
        periodic_interval=settings.printer_discovery_interval,
    )


@router.get("/status", response_model=DiscoveryStatus)
async def get_discovery_status(fleet: PrinterFleet = Depends(get_fleet)):
    """Get scan progress."""
    discovery = fleet.discovery
    return DiscoveryStatus(
        running=discovery.is_running,
        last_scan=discovery.last_scan,
        last_range=discovery.last_range,
        **discovery.progress,
    )


@router.post("/scan", response_model=ScanResponse)
async def scan_for_printers(request: ScanRequest | None = None, fleet: PrinterFleet = Depends(get_fleet)):
    """Scan for printers and auto-configure stations.

    If a scan is already running, the printers known so far are returned.
    """
    request = request or ScanRequest()
    printers = await fleet.discovery.scan(request.ip_range, request.ports, request.timeout)
    return ScanResponse(
        success=True,
        count=len(printers),
        printers=[DiscoveredPrinterResponse.model_validate(p) for p in printers],
    )


@router.get("/printers", response_model=list[DiscoveredPrinterResponse])
async def get_discovered_printers(fleet: PrinterFleet = Depends(get_fleet)):
    """Get every printer discovered so far."""
    return [DiscoveredPrinterResponse.model_validate(p) for p in fleet.discovery.discovered_printers]
