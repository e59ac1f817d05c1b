"""Shared test fixtures for the printer fleet backend tests."""

import os
from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest

# IMPORTANT: Set environment variables BEFORE any app imports
# This must happen before settings/config are loaded
os.environ["LOG_TO_FILE"] = "false"
os.environ["DEBUG"] = "false"
os.environ["AUTO_DISCOVER_PRINTERS"] = "false"

from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402

# Ensure settings use our env vars - import and override before database import
from backend.app.core.config import settings  # noqa: E402

settings.log_to_file = False

from backend.app.core.database import Base  # noqa: E402
from backend.app.services.order_source import OrderSource, OrderTicketData  # noqa: E402
from backend.app.services.printer_driver import DEFAULT_FAMILY, PrinterDriver, PrinterDriverError, PrinterHandle  # noqa: E402

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# ============================================================================
# Fake collaborators
# ============================================================================


class FakePrinterHandle(PrinterHandle):
    """Records what would be printed instead of talking to a device."""

    def __init__(self, endpoint: str, family: str, driver: "FakePrinterDriver"):
        super().__init__(endpoint, family)
        self._driver = driver
        self.buffer: list[tuple] = []
        self.printed: list[list[tuple]] = []

    def write_line(self, text: str = "", *, align: str = "left", bold: bool = False, double: bool = False):
        self.buffer.append(("line", text, {"align": align, "bold": bold, "double": double}))

    def cut(self):
        self.buffer.append(("cut",))

    def clear(self):
        self.buffer = []

    @property
    def lines(self) -> list[str]:
        """Text of every line of the last printed job."""
        return [entry[1] for entry in self.printed[-1] if entry[0] == "line"] if self.printed else []

    async def flush(self, timeout: float):
        if self.endpoint in self._driver.failing_endpoints:
            self.buffer = []
            raise PrinterDriverError(f"Failed to write to {self.endpoint}")
        self.printed.append(self.buffer)
        self.buffer = []


class FakePrinterDriver(PrinterDriver):
    """In-memory driver; every endpoint is reachable unless listed as offline."""

    def __init__(self):
        self.offline_endpoints: set[str] = set()
        self.failing_endpoints: set[str] = set()
        self.families_by_endpoint: dict[str, str] = {}
        self.handles: dict[str, FakePrinterHandle] = {}
        self.handshakes: list[tuple[str, str]] = []

    async def test_reachable(self, endpoint: str, timeout: float) -> bool:
        return endpoint not in self.offline_endpoints

    async def handshake(self, endpoint: str, family: str, timeout: float) -> bool:
        self.handshakes.append((endpoint, family))
        return self.families_by_endpoint.get(endpoint, DEFAULT_FAMILY) == family

    def open(self, endpoint: str, family: str) -> FakePrinterHandle:
        handle = FakePrinterHandle(endpoint, family, self)
        self.handles[endpoint] = handle
        return handle


class FakeOrderSource(OrderSource):
    def __init__(self):
        self.orders: dict[str, OrderTicketData] = {}

    async def get_order_with_items(self, order_id: str) -> OrderTicketData | None:
        return self.orders.get(order_id)


# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    # Import all models to register them
    from backend.app.models import discovered_printer, kitchen_ticket, printer_assignment  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def broken_session_factory():
    """Session factory whose sessions fail on every statement."""
    from sqlalchemy.exc import OperationalError

    def _factory():
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=False)
        session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("database is locked")))
        session.commit = AsyncMock(side_effect=OperationalError("COMMIT", {}, Exception("database is locked")))
        session.add = MagicMock()
        return session

    return _factory


# ============================================================================
# Fleet
# ============================================================================


@pytest.fixture
def fake_driver() -> FakePrinterDriver:
    return FakePrinterDriver()


@pytest.fixture
def fake_order_source() -> FakeOrderSource:
    return FakeOrderSource()


@pytest.fixture
def mock_notifier():
    """Station notifier that records events."""
    notifier = MagicMock()
    notifier.send_new_ticket = AsyncMock(return_value=1)
    notifier.send_ticket_completed = AsyncMock(return_value=1)
    return notifier


@pytest.fixture
def fleet(session_factory, fake_driver, fake_order_source, mock_notifier):
    from backend.app.services.printer_fleet import build_fleet

    fleet = build_fleet(
        session_factory,
        driver=fake_driver,
        order_source=fake_order_source,
        notifier=mock_notifier,
    )
    # Keep scans tiny and fast
    fleet.discovery.ports = [9100]
    fleet.discovery.timeout = 0.1
    return fleet


@pytest.fixture
async def async_client(fleet) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client bound to the test fleet."""
    from backend.app.main import app

    # ASGITransport does not run the lifespan, so install the fleet directly
    app.state.fleet = fleet
    await fleet.registry.load()
    await fleet.reload_connections()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    del app.state.fleet


# ============================================================================
# Factory Fixtures for Test Data
# ============================================================================


@pytest.fixture
def candidate_factory():
    """Factory to create discovered printer candidates."""
    _counter = [0]  # Use list to allow mutation in nested function

    def _create_candidate(**kwargs):
        from backend.app.services.printer_registry import PrinterCandidate

        _counter[0] += 1
        defaults = {
            "ip": f"192.168.1.{100 + _counter[0]}",
            "port": 9100,
            "driver_family": "epson",
            "name": None,
        }
        defaults.update(kwargs)
        return PrinterCandidate(**defaults)

    return _create_candidate


@pytest.fixture
def order_factory():
    """Factory to create orders with items."""

    def _create_order(order_id: str = "order-1", items: list[dict] | None = None, **kwargs):
        from backend.app.services.order_source import OrderItemData

        if items is None:
            items = [
                {"name": "Burger", "quantity": 2, "category": "Mains"},
                {"name": "Beer", "quantity": 1, "category": "Drinks", "category_type": "bar"},
            ]
        defaults = {
            "order_id": order_id,
            "order_number": "1001",
            "table": "5",
        }
        defaults.update(kwargs)
        return OrderTicketData(items=[OrderItemData(**item) for item in items], **defaults)

    return _create_order
