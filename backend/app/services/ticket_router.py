"""Routes order items to station printers and records the tickets.

Each order is split into one ticket per station. Every ticket is recorded and
announced to its station whether or not paper came out of the printer; the
physical outcome is kept on the record as `dispatched`.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.app.core.config import settings
from backend.app.core.roles import BAR_CATEGORY_TYPES, PrinterRole, parse_role
from backend.app.core.websocket import StationConnectionManager
from backend.app.models.kitchen_ticket import KitchenTicket
from backend.app.services.connection_manager import PrinterConnectionManager
from backend.app.services.order_source import OrderItemData, OrderNotFoundError, OrderSource, OrderTicketData
from backend.app.services.ticket_format import StationTicket, TicketItem, format_ticket_text

logger = logging.getLogger(__name__)

TICKET_STATUS_PRINTED = "printed"
TICKET_STATUS_COMPLETED = "completed"
TICKET_STATUS_CANCELLED = "cancelled"


@dataclass(slots=True)
class TicketDispatchResult:
    """Outcome of routing one station ticket."""

    role: PrinterRole
    order_id: str
    item_count: int
    ticket_id: int | None = None
    dispatched: bool = False  # Paper came out of the station printer
    persisted: bool = False  # Ticket record was written
    notified: bool = False  # Station channel was told


def classify_item(item: OrderItemData) -> PrinterRole:
    """Station for an item; anything not marked bar or drinks is kitchen."""
    category_type = (item.category_type or "kitchen").strip().lower()
    if category_type in BAR_CATEGORY_TYPES:
        return PrinterRole.BAR
    return PrinterRole.KITCHEN


def build_station_tickets(order: OrderTicketData) -> list[StationTicket]:
    """Split an order into tickets, kitchen first, skipping empty stations."""
    partitions: dict[PrinterRole, list[TicketItem]] = {role: [] for role in PrinterRole}
    for item in order.items:
        partitions[classify_item(item)].append(
            TicketItem(name=item.name, quantity=item.quantity, notes=item.notes, category=item.category)
        )

    return [
        StationTicket(
            role=role,
            order_id=order.order_id,
            order_number=order.order_number,
            table=order.table,
            items=items,
            created_at=order.created_at,
            notes=order.notes,
        )
        for role, items in partitions.items()
        if items
    ]


class TicketRouter:
    """Classifies, prints, records and announces station tickets."""

    def __init__(
        self,
        connections: PrinterConnectionManager,
        order_source: OrderSource,
        session_factory: async_sessionmaker[AsyncSession],
        notifier: StationConnectionManager,
        *,
        line_width: int | None = None,
    ):
        self._connections = connections
        self._order_source = order_source
        self._session_factory = session_factory
        self._notifier = notifier
        self.line_width = line_width or settings.ticket_line_width

    async def route_order(self, order_id: str) -> list[TicketDispatchResult]:
        """Fetch an order and route its items to the stations.

        Raises:
            OrderNotFoundError: if the order does not exist.
        """
        order = await self._order_source.get_order_with_items(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return await self.route_ticket_order(order)

    async def route_ticket_order(self, order: OrderTicketData) -> list[TicketDispatchResult]:
        """Route an order that is already in hand."""
        tickets = build_station_tickets(order)
        if not tickets:
            logger.info("Order %s has no items to route", order.order_id)
            return []

        results = []
        for ticket in tickets:
            results.append(await self._dispatch(ticket))
        return results

    async def _dispatch(self, ticket: StationTicket) -> TicketDispatchResult:
        result = TicketDispatchResult(role=ticket.role, order_id=ticket.order_id, item_count=len(ticket.items))
        text = format_ticket_text(ticket, self.line_width)
        logger.info("%s ticket for order %s:\n%s", ticket.role, ticket.order_number, text)

        try:
            result.dispatched = await self._connections.send_formatted(ticket.role, ticket)
        except Exception as e:
            logger.error("Error printing %s ticket for order %s: %s", ticket.role, ticket.order_id, e)
        if not result.dispatched:
            logger.warning("%s printer not available, ticket for order %s logged only", ticket.role, ticket.order_id)

        result.ticket_id = await self._store_ticket(ticket, text, result.dispatched)
        result.persisted = result.ticket_id is not None

        try:
            await self._notifier.send_new_ticket(ticket.role, ticket.order_id, [i.to_dict() for i in ticket.items])
            result.notified = True
        except Exception as e:
            logger.warning("Could not notify %s station about order %s: %s", ticket.role, ticket.order_id, e)

        return result

    async def _store_ticket(self, ticket: StationTicket, text: str, dispatched: bool) -> int | None:
        try:
            async with self._session_factory() as db:
                record = KitchenTicket(
                    order_id=ticket.order_id,
                    role=ticket.role.value,
                    content=ticket.to_dict(),
                    text=text,
                    status=TICKET_STATUS_PRINTED,
                    dispatched=dispatched,
                )
                db.add(record)
                await db.commit()
                return record.id
        except SQLAlchemyError as e:
            logger.warning("Could not store %s ticket for order %s: %s", ticket.role, ticket.order_id, e)
            return None

    async def mark_completed(self, order_id: str, role: PrinterRole | str) -> int:
        """Mark an order's tickets for a station as completed.

        Returns:
            Number of ticket records updated.
        """
        role = parse_role(role)
        try:
            async with self._session_factory() as db:
                result = await db.execute(
                    update(KitchenTicket)
                    .where(KitchenTicket.order_id == order_id)
                    .where(KitchenTicket.role == role.value)
                    .where(KitchenTicket.status != TICKET_STATUS_COMPLETED)
                    .values(status=TICKET_STATUS_COMPLETED, completed_at=datetime.now())
                )
                await db.commit()
                updated = result.rowcount
        except SQLAlchemyError as e:
            logger.error("Error completing %s ticket for order %s: %s", role, order_id, e)
            return 0

        logger.info("Completed %s ticket(s) for order %s at %s", updated, order_id, role)
        if updated:
            try:
                await self._notifier.send_ticket_completed(role, order_id)
            except Exception as e:
                logger.warning("Could not notify %s station about completion: %s", role, e)
        return updated

    async def list_tickets(
        self,
        role: PrinterRole | str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[KitchenTicket]:
        """Ticket records, newest first."""
        query = select(KitchenTicket).order_by(KitchenTicket.created_at.desc(), KitchenTicket.id.desc()).limit(limit)
        if role is not None:
            query = query.where(KitchenTicket.role == parse_role(role).value)
        if status is not None:
            query = query.where(KitchenTicket.status == status)

        async with self._session_factory() as db:
            result = await db.execute(query)
            return list(result.scalars().all())
