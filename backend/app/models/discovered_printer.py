from datetime import datetime

from sqlalchemy import DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.core.database import Base


class DiscoveredPrinter(Base):
    """A network endpoint that answered on a printing port during a scan.

    Rows are never deleted. Endpoints that stop answering are marked offline
    so the history of what was seen on the network is kept.
    """

    __tablename__ = "discovered_printers"

    id: Mapped[int] = mapped_column(primary_key=True)
    ip: Mapped[str] = mapped_column(String(45))
    port: Mapped[int] = mapped_column(Integer)
    endpoint: Mapped[str] = mapped_column(String(255), unique=True, index=True)  # tcp://ip:port
    driver_family: Mapped[str] = mapped_column(String(50), default="epson")
    name: Mapped[str | None] = mapped_column(String(255))  # Reverse DNS name, if any
    role: Mapped[str | None] = mapped_column(String(20))  # Role it was last assigned to
    status: Mapped[str] = mapped_column(String(20), default="online", index=True)  # online, offline
    last_seen: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
