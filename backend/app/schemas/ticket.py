from datetime import datetime

from pydantic import BaseModel, Field

from backend.app.services.order_source import OrderItemData, OrderTicketData


class OrderItemPayload(BaseModel):
    name: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)
    notes: str | None = None
    category: str | None = None
    category_type: str | None = None  # "kitchen", "bar", "drinks"


class OrderPayload(BaseModel):
    """Order pushed by the POS for immediate routing."""

    order_id: str = Field(..., min_length=1)
    order_number: str | None = None
    table: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    items: list[OrderItemPayload] = []

    def to_ticket_data(self) -> OrderTicketData:
        return OrderTicketData(
            order_id=self.order_id,
            order_number=self.order_number or self.order_id,
            table=self.table or "N/A",
            notes=self.notes,
            created_at=self.created_at or datetime.now(),
            items=[
                OrderItemData(
                    name=item.name,
                    quantity=item.quantity,
                    notes=item.notes,
                    category=item.category,
                    category_type=item.category_type,
                )
                for item in self.items
            ],
        )


class TicketDispatchResponse(BaseModel):
    role: str
    order_id: str
    item_count: int
    ticket_id: int | None = None
    dispatched: bool
    persisted: bool
    notified: bool


class RouteOrderResponse(BaseModel):
    order_id: str
    tickets: list[TicketDispatchResponse]


class TicketResponse(BaseModel):
    id: int
    order_id: str
    role: str
    content: dict
    text: str | None = None
    status: str
    dispatched: bool
    created_at: datetime
    completed_at: datetime | None = None

    class Config:
        from_attributes = True


class CompleteTicketResponse(BaseModel):
    order_id: str
    role: str
    updated: int
