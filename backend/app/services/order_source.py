"""Access to orders owned by the POS order service."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime

import httpx

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


class OrderNotFoundError(LookupError):
    """Raised when an order does not exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order {order_id} not found")


class OrderSourceError(Exception):
    """Raised when the order service could not be queried."""


@dataclass(slots=True)
class OrderItemData:
    name: str
    quantity: int = 1
    notes: str | None = None
    category: str | None = None
    category_type: str | None = None  # Explicit routing hint: "kitchen", "bar", "drinks"

    @classmethod
    def from_dict(cls, data: dict) -> "OrderItemData":
        # Category metadata may carry the station as "type" or "location"
        metadata = data.get("category_metadata") or {}
        category_type = data.get("category_type") or metadata.get("type") or metadata.get("location")
        return cls(
            name=data.get("name") or data.get("product_name") or "Item",
            quantity=int(data.get("quantity") or 1),
            notes=data.get("notes") or None,
            category=data.get("category") or data.get("category_name"),
            category_type=category_type,
        )


@dataclass(slots=True)
class OrderTicketData:
    """Order fields needed to build station tickets."""

    order_id: str
    order_number: str
    table: str = "N/A"
    items: list[OrderItemData] = field(default_factory=list)
    notes: str | None = None
    created_at: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_dict(cls, data: dict) -> "OrderTicketData":
        order_id = str(data.get("order_id") or data.get("id"))
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            try:
                created_at = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
            except ValueError:
                created_at = None
        return cls(
            order_id=order_id,
            order_number=str(data.get("order_number") or order_id),
            table=str(data.get("table") or data.get("table_number") or data.get("table_name") or "N/A"),
            items=[OrderItemData.from_dict(item) for item in data.get("items") or []],
            notes=data.get("notes") or None,
            created_at=created_at or datetime.now(),
        )


class OrderSource(ABC):
    """Supplies orders and their items to the ticket router."""

    @abstractmethod
    async def get_order_with_items(self, order_id: str) -> OrderTicketData | None:
        """Fetch an order with its items, or None if it does not exist."""

    async def close(self):
        pass


class HttpOrderSource(OrderSource):
    """Order source backed by the POS order service REST API."""

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or settings.order_service_url).rstrip("/")
        self.timeout = timeout or settings.order_service_timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                limits=httpx.Limits(max_keepalive_connections=5, max_connections=10, keepalive_expiry=30.0),
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_order_with_items(self, order_id: str) -> OrderTicketData | None:
        client = await self._get_client()
        try:
            response = await client.get(f"{self.base_url}/orders/{order_id}")
            if response.status_code == 404:
                return None
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("Failed to fetch order %s: %s", order_id, e)
            raise OrderSourceError(f"Order service unavailable: {e}") from e
        except ValueError as e:
            logger.error("Order service returned invalid JSON for order %s: %s", order_id, e)
            raise OrderSourceError(f"Invalid response from order service: {e}") from e

        # Some deployments wrap the payload as {"data": {...}}
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            data = data["data"]
        if not isinstance(data, dict):
            logger.error("Order service returned %s for order %s", type(data).__name__, order_id)
            raise OrderSourceError(f"Unexpected order payload: {type(data).__name__}")
        data.setdefault("order_id", order_id)
        return OrderTicketData.from_dict(data)
