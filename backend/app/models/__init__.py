from backend.app.models.discovered_printer import DiscoveredPrinter
from backend.app.models.kitchen_ticket import KitchenTicket
from backend.app.models.printer_assignment import PrinterAssignment

__all__ = [
    "DiscoveredPrinter",
    "KitchenTicket",
    "PrinterAssignment",
]
