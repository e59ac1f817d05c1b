import logging

from fastapi import APIRouter, Depends, HTTPException

from backend.app.core.roles import parse_role
from backend.app.schemas.printer import (
    AssignPrinterRequest,
    PrinterAssignmentResponse,
    PrinterAssignmentUpdate,
    PrinterStatusResponse,
    PrintRequest,
    PrintResponse,
)
from backend.app.services.printer_fleet import PrinterFleet, get_fleet
from backend.app.services.printer_registry import AssignmentNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/printers", tags=["printers"])


@router.get("/", response_model=list[PrinterStatusResponse])
async def list_printers(fleet: PrinterFleet = Depends(get_fleet)):
    """List station printers with live status."""
    return await fleet.connections.list_printers()


@router.get("/{role}/status", response_model=PrinterStatusResponse)
async def get_printer_status(role: str, fleet: PrinterFleet = Depends(get_fleet)):
    """Get configuration and reachability of a station printer."""
    return await fleet.connections.get_status(parse_role(role))


@router.post("/{role}/test", response_model=PrintResponse)
async def test_print(role: str, fleet: PrinterFleet = Depends(get_fleet)):
    """Print a test slip on a station printer."""
    role = parse_role(role)
    if not await fleet.connections.test_print(role):
        raise HTTPException(503, "Printer not available or print failed")
    return PrintResponse(success=True, message="Test print sent successfully")


@router.post("/{role}/print", response_model=PrintResponse)
async def print_content(role: str, request: PrintRequest, fleet: PrinterFleet = Depends(get_fleet)):
    """Print preformatted text on a station printer."""
    role = parse_role(role)
    if not await fleet.connections.send_raw(role, request.content):
        raise HTTPException(503, "Printer not available or print failed")
    return PrintResponse(success=True, message="Printed successfully")


@router.post("/{role}/assign", response_model=PrinterAssignmentResponse)
async def assign_printer(role: str, request: AssignPrinterRequest, fleet: PrinterFleet = Depends(get_fleet)):
    """Assign a discovered printer to a station."""
    assignment = await fleet.registry.assign_endpoint(role, request.endpoint, locked=request.locked)
    await fleet.reload_connections()
    return assignment


@router.patch("/{role}", response_model=PrinterAssignmentResponse)
async def update_assignment(role: str, update: PrinterAssignmentUpdate, fleet: PrinterFleet = Depends(get_fleet)):
    """Enable, disable, lock or unlock a station's printer assignment."""
    role = parse_role(role)
    try:
        assignment = fleet.registry.get_assignment(role)
        if update.enabled is not None:
            assignment = await fleet.registry.set_enabled(role, update.enabled)
        if update.locked is not None:
            assignment = await fleet.registry.set_locked(role, update.locked)
    except AssignmentNotFoundError as e:
        raise HTTPException(404, str(e)) from e

    if assignment is None:
        raise HTTPException(404, f"No printer assigned to {role}")
    await fleet.reload_connections()
    return assignment
