import ipaddress
from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class ScanRequest(BaseModel):
    """Request to scan for printers. Omitted fields use the configured defaults."""

    ip_range: str | None = None  # CIDR notation, e.g. "192.168.1.0/24", or a single address
    ports: list[int] | None = Field(default=None, min_length=1)
    timeout: float | None = Field(default=None, gt=0, le=30)  # Seconds per probe

    @field_validator("ip_range")
    @classmethod
    def validate_ip_range(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ipaddress.IPv4Network(v, strict=False)
        except ValueError as e:
            raise ValueError(f"Invalid IPv4 range: {v}") from e
        return v

    @field_validator("ports")
    @classmethod
    def validate_ports(cls, v: list[int] | None) -> list[int] | None:
        if v is not None and any(port < 1 or port > 65535 for port in v):
            raise ValueError("Ports must be between 1 and 65535")
        return v


class DiscoveredPrinterResponse(BaseModel):
    ip: str
    port: int
    endpoint: str
    driver_family: str
    name: str | None = None
    role: str | None = None
    status: str
    last_seen: datetime | None = None

    class Config:
        from_attributes = True


class ScanResponse(BaseModel):
    success: bool
    count: int
    printers: list[DiscoveredPrinterResponse]


class DiscoveryStatus(BaseModel):
    running: bool
    scanned: int
    total: int
    last_scan: datetime | None = None
    last_range: str | None = None


class DiscoveryInfo(BaseModel):
    """Network environment the scanner would use by default."""

    default_range: str
    subnets: list[str] = []
    ports: list[int]
    timeout: float
    periodic_interval: int  # Minutes, 0 when disabled
