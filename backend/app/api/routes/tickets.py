import logging

from fastapi import APIRouter, Depends, HTTPException, Query

from backend.app.core.roles import parse_role
from backend.app.schemas.ticket import (
    CompleteTicketResponse,
    OrderPayload,
    RouteOrderResponse,
    TicketDispatchResponse,
    TicketResponse,
)
from backend.app.services.order_source import OrderSourceError
from backend.app.services.printer_fleet import PrinterFleet, get_fleet
from backend.app.services.ticket_router import TicketDispatchResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tickets", tags=["tickets"])


def _route_response(order_id: str, results: list[TicketDispatchResult]) -> RouteOrderResponse:
    return RouteOrderResponse(
        order_id=order_id,
        tickets=[
            TicketDispatchResponse(
                role=r.role.value,
                order_id=r.order_id,
                item_count=r.item_count,
                ticket_id=r.ticket_id,
                dispatched=r.dispatched,
                persisted=r.persisted,
                notified=r.notified,
            )
            for r in results
        ],
    )


@router.get("/", response_model=list[TicketResponse])
async def list_tickets(
    role: str | None = None,
    status: str | None = None,
    limit: int = Query(50, ge=1, le=500),
    fleet: PrinterFleet = Depends(get_fleet),
):
    """List ticket records, newest first."""
    if role is not None:
        role = parse_role(role)
    return await fleet.router.list_tickets(role=role, status=status, limit=limit)


@router.post("/orders/{order_id}/route", response_model=RouteOrderResponse)
async def route_order(order_id: str, fleet: PrinterFleet = Depends(get_fleet)):
    """Fetch an order from the POS and print its station tickets."""
    try:
        results = await fleet.router.route_order(order_id)
    except OrderSourceError as e:
        raise HTTPException(502, str(e)) from e
    return _route_response(order_id, results)


@router.post("/route", response_model=RouteOrderResponse)
async def route_order_payload(order: OrderPayload, fleet: PrinterFleet = Depends(get_fleet)):
    """Print station tickets for an order sent in the request body."""
    results = await fleet.router.route_ticket_order(order.to_ticket_data())
    return _route_response(order.order_id, results)


@router.post("/orders/{order_id}/{role}/complete", response_model=CompleteTicketResponse)
async def complete_ticket(order_id: str, role: str, fleet: PrinterFleet = Depends(get_fleet)):
    """Mark an order's tickets at a station as completed."""
    role = parse_role(role)
    updated = await fleet.router.mark_completed(order_id, role)
    return CompleteTicketResponse(order_id=order_id, role=role.value, updated=updated)
