"""Station ticket layout.

Tickets are rendered twice: as plain text for the ticket record and the print
passthrough, and as styled lines written into a printer handle.
"""

from dataclasses import dataclass, field
from datetime import datetime

from backend.app.core.roles import PrinterRole
from backend.app.services.printer_driver import PrinterHandle

STATION_TITLES = {
    PrinterRole.KITCHEN: "KITCHEN",
    PrinterRole.BAR: "BAR",
}

TIME_FORMAT = "%H:%M"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class TicketItem:
    name: str
    quantity: int = 1
    notes: str | None = None
    category: str | None = None

    def to_dict(self) -> dict:
        return {"name": self.name, "quantity": self.quantity, "notes": self.notes, "category": self.category}


@dataclass(slots=True)
class StationTicket:
    """Items of one order destined for one station."""

    role: PrinterRole
    order_id: str
    order_number: str
    table: str
    items: list[TicketItem] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)
    notes: str | None = None

    def to_dict(self) -> dict:
        return {
            "role": self.role.value,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "table": self.table,
            "items": [item.to_dict() for item in self.items],
            "created_at": self.created_at.isoformat(),
            "notes": self.notes,
        }


def _item_line(item: TicketItem) -> str:
    return f"{item.quantity}x {item.name}"


def _note_line(note: str) -> str:
    return f"   Note: {note}"


def _info_lines(ticket: StationTicket) -> list[str]:
    return [
        f"Order: #{ticket.order_number}",
        f"Table: {ticket.table}",
        f"Time: {ticket.created_at.strftime(TIME_FORMAT)}",
    ]


def _item_groups(ticket: StationTicket) -> list[tuple[str | None, list[TicketItem]]]:
    """Items paired with the category header printed above them, if any.

    Kitchen tickets group items by menu category; headers only appear when an
    order spans more than one category. Bar tickets are a single list.
    """
    if ticket.role != PrinterRole.KITCHEN:
        return [(None, ticket.items)]

    groups: dict[str, list[TicketItem]] = {}
    for item in ticket.items:
        groups.setdefault(item.category or "", []).append(item)
    return [
        (f"[{category.upper()}]" if category and len(groups) > 1 else None, items) for category, items in groups.items()
    ]


def format_ticket_text(ticket: StationTicket, width: int = 42, printed_at: datetime | None = None) -> str:
    """Render a ticket as plain text, one printed line per text line."""
    printed_at = printed_at or datetime.now()
    title = STATION_TITLES[ticket.role]

    lines = ["=" * width, title.center(width).rstrip(), "=" * width]
    lines.extend(_info_lines(ticket))
    lines.append("-" * width)

    for header, items in _item_groups(ticket):
        if header:
            lines.append(header)
        for item in items:
            lines.append(_item_line(item))
            if item.notes:
                lines.append(_note_line(item.notes))

    if ticket.notes:
        lines.append("-" * width)
        lines.append(f"NOTES: {ticket.notes}")

    lines.append("=" * width)
    lines.append(printed_at.strftime(TIMESTAMP_FORMAT).center(width).rstrip())
    return "\n".join(lines)


def render_ticket(handle: PrinterHandle, ticket: StationTicket, width: int = 42, printed_at: datetime | None = None):
    """Write a styled ticket into a printer handle, ending with a cut."""
    printed_at = printed_at or datetime.now()

    handle.write_line(STATION_TITLES[ticket.role], align="center", bold=True, double=True)
    handle.write_line("-" * width)
    for line in _info_lines(ticket):
        handle.write_line(line)
    handle.write_line("-" * width)

    for header, items in _item_groups(ticket):
        if header:
            handle.write_line(header, bold=True)
        for item in items:
            handle.write_line(_item_line(item), bold=True)
            if item.notes:
                handle.write_line(_note_line(item.notes))

    if ticket.notes:
        handle.write_line("-" * width)
        handle.write_line(f"NOTES: {ticket.notes}", bold=True)

    handle.write_line("-" * width)
    handle.write_line(printed_at.strftime(TIMESTAMP_FORMAT), align="center")
    handle.write_line()
    handle.cut()


def format_test_slip(role: PrinterRole, width: int = 42, printed_at: datetime | None = None) -> str:
    printed_at = printed_at or datetime.now()
    return "\n".join(
        [
            "=" * width,
            "PRINTER TEST".center(width).rstrip(),
            "=" * width,
            f"Station: {STATION_TITLES[role]}",
            f"Date: {printed_at.strftime(TIMESTAMP_FORMAT)}",
            "=" * width,
        ]
    )
