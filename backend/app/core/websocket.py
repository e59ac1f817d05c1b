"""WebSocket connection manager for station displays."""

import asyncio
import logging
from datetime import datetime

from fastapi import WebSocket

from backend.app.core.roles import PrinterRole

logger = logging.getLogger(__name__)


class StationConnectionManager:
    """Tracks WebSocket clients per station and fans events out to them.

    Sending is fire-and-forget: a client that fails to receive a message is
    dropped and the failure is never raised to the sender.
    """

    def __init__(self):
        self._rooms: dict[PrinterRole, set[WebSocket]] = {role: set() for role in PrinterRole}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, role: PrinterRole):
        await websocket.accept()
        async with self._lock:
            self._rooms[role].add(websocket)
        logger.info("Station client joined %s (%s connected)", role, len(self._rooms[role]))

    async def disconnect(self, websocket: WebSocket):
        async with self._lock:
            for role, clients in self._rooms.items():
                if websocket in clients:
                    clients.discard(websocket)
                    logger.info("Station client left %s", role)

    def connection_count(self, role: PrinterRole | None = None) -> int:
        if role is not None:
            return len(self._rooms[role])
        return sum(len(clients) for clients in self._rooms.values())

    async def send_to_station(self, role: PrinterRole, message: dict) -> int:
        """Send a message to every client of a station.

        Returns:
            Number of clients the message reached.
        """
        async with self._lock:
            clients = list(self._rooms[role])

        delivered = 0
        dead = []
        for websocket in clients:
            try:
                await websocket.send_json(message)
                delivered += 1
            except Exception as e:
                logger.debug("Dropping station client of %s: %s", role, e)
                dead.append(websocket)

        if dead:
            async with self._lock:
                for websocket in dead:
                    self._rooms[role].discard(websocket)
        return delivered

    async def send_new_ticket(self, role: PrinterRole, order_id: str, items: list[dict]) -> int:
        return await self.send_to_station(
            role,
            {
                "type": "new_ticket",
                "role": role.value,
                "order_id": order_id,
                "items": items,
                "timestamp": datetime.now().isoformat(),
            },
        )

    async def send_ticket_completed(self, role: PrinterRole, order_id: str) -> int:
        return await self.send_to_station(
            role,
            {
                "type": "ticket_completed",
                "role": role.value,
                "order_id": order_id,
                "timestamp": datetime.now().isoformat(),
            },
        )
