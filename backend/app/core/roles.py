"""Logical printer roles.

A role names a station that tickets are routed to, independent of which
physical device currently serves it.
"""

from enum import StrEnum


class PrinterRole(StrEnum):
    """Stations that receive printed tickets."""

    KITCHEN = "kitchen"
    BAR = "bar"


class AssignmentSource(StrEnum):
    """How a role assignment was created."""

    AUTO = "auto"  # Picked by auto-configuration after a scan
    MANUAL = "manual"  # Chosen by an operator


# Substrings that identify a station in a printer's name
ROLE_KEYWORDS: dict[PrinterRole, tuple[str, ...]] = {
    PrinterRole.KITCHEN: ("kitchen", "cocina"),
    PrinterRole.BAR: ("bar", "bebidas"),
}

# Item category types that route to the bar
BAR_CATEGORY_TYPES = frozenset({"bar", "drinks"})


class InvalidRoleError(ValueError):
    """Raised when a value is not a known printer role."""

    def __init__(self, value: object):
        self.value = value
        super().__init__(f'Invalid printer type "{value}". Must be "kitchen" or "bar"')


def parse_role(value: PrinterRole | str) -> PrinterRole:
    """Validate and convert a role name.

    Raises:
        InvalidRoleError: if the value is not "kitchen" or "bar".
    """
    if isinstance(value, PrinterRole):
        return value
    try:
        return PrinterRole(value)
    except ValueError:
        raise InvalidRoleError(value) from None
