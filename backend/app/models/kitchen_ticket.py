from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


class KitchenTicket(Base):
    """Audit record of a ticket routed to a station.

    status "printed" means the ticket was handed to the station, whether or not
    paper came out. The physical outcome is kept separately in `dispatched`.
    Records are never deleted.
    """

    __tablename__ = "kitchen_tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    order_id: Mapped[str] = mapped_column(String(64), index=True)
    role: Mapped[str] = mapped_column(String(20), index=True)  # kitchen, bar
    content: Mapped[dict] = mapped_column(JSON)  # Serialized ticket payload
    text: Mapped[str | None] = mapped_column(Text)  # Rendered plain-text ticket
    status: Mapped[str] = mapped_column(String(20), default="printed", index=True)  # printed, completed, cancelled
    dispatched: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), index=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
