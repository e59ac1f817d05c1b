from datetime import datetime

from pydantic import BaseModel, Field


class PrinterStatusResponse(BaseModel):
    role: str
    configured: bool
    enabled: bool
    connected: bool
    endpoint: str | None = None
    name: str | None = None
    driver_family: str | None = None  # "epson", "star"
    source: str | None = None  # "auto", "manual"
    locked: bool = False


class PrintRequest(BaseModel):
    content: str = Field(..., min_length=1)


class PrintResponse(BaseModel):
    success: bool
    message: str


class AssignPrinterRequest(BaseModel):
    endpoint: str = Field(..., min_length=1)  # tcp://ip:port of a discovered printer
    locked: bool | None = None


class PrinterAssignmentUpdate(BaseModel):
    enabled: bool | None = None
    locked: bool | None = None


class PrinterAssignmentResponse(BaseModel):
    role: str
    endpoint: str
    ip: str
    port: int
    driver_family: str
    name: str | None = None
    source: str
    enabled: bool
    locked: bool
    updated_at: datetime | None = None

    class Config:
        from_attributes = True
