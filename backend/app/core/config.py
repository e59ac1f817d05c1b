from pathlib import Path

from pydantic_settings import BaseSettings

# Application version - single source of truth
APP_VERSION = "0.3.0"

# Base directory for path calculations
_base_dir = Path(__file__).resolve().parent.parent.parent.parent


class Settings(BaseSettings):
    app_name: str = "Kitchen Printer Fleet"
    debug: bool = False  # Default to production mode

    # Paths
    base_dir: Path = _base_dir
    log_dir: Path = base_dir / "logs"
    database_url: str = f"sqlite+aiosqlite:///{_base_dir / 'printer_fleet.db'}"

    # Logging
    log_level: str = "INFO"  # Override with LOG_LEVEL env var or DEBUG=true
    log_to_file: bool = True  # Set to false to disable file logging

    # API
    api_prefix: str = "/api/v1"

    # Discovery
    discovery_ports: list[int] = [9100, 515, 631]
    discovery_timeout: float = 2.0  # Seconds per probe
    discovery_batch_size: int = 20  # Hosts probed concurrently
    discovery_max_hosts: int = 254
    discovery_fallback_subnet: str = "192.168.1.0/24"
    auto_discover_printers: bool = True  # Scan once on startup
    printer_discovery_interval: int = 0  # Minutes between periodic scans, 0 disables

    # Printers
    printer_timeout: float = 5.0  # Seconds per driver call
    ticket_line_width: int = 42  # Characters on 80mm paper

    # Order collaborator (POS CRUD API)
    order_service_url: str = "http://localhost:3000/api/v1"
    order_service_timeout: float = 5.0

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()

if settings.log_to_file:
    settings.log_dir.mkdir(exist_ok=True)
