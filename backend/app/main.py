import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

# Import settings first for logging configuration
from backend.app.core.config import APP_VERSION, settings as app_settings

# Configure logging based on settings
# DEBUG=true -> DEBUG level, else use LOG_LEVEL setting
log_level_str = "DEBUG" if app_settings.debug else app_settings.log_level.upper()
log_level = getattr(logging, log_level_str, logging.INFO)
log_format = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

# Create root logger
root_logger = logging.getLogger()
root_logger.setLevel(log_level)

# Console handler - always enabled
console_handler = logging.StreamHandler()
console_handler.setLevel(log_level)
console_handler.setFormatter(logging.Formatter(log_format))
root_logger.addHandler(console_handler)

# File handler - only in production or if explicitly enabled
if app_settings.log_to_file:
    log_file = app_settings.log_dir / "printer_fleet.log"
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=5 * 1024 * 1024,  # 5MB
        backupCount=3,
        encoding="utf-8",
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(logging.Formatter(log_format))
    root_logger.addHandler(file_handler)
    logging.info("Logging to file: %s", log_file)

# Reduce noise from third-party libraries in production
if not app_settings.debug:
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("escpos").setLevel(logging.WARNING)

logging.info("Kitchen printer fleet starting - debug=%s, log_level=%s", app_settings.debug, log_level_str)

from backend.app.api.routes import discovery, printers, tickets, websocket  # noqa: E402
from backend.app.core.database import async_session, init_db  # noqa: E402
from backend.app.core.roles import InvalidRoleError  # noqa: E402
from backend.app.services.order_source import OrderNotFoundError  # noqa: E402
from backend.app.services.printer_fleet import build_fleet  # noqa: E402
from backend.app.services.printer_registry import CandidateNotFoundError  # noqa: E402


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    await init_db()

    fleet = build_fleet(async_session)
    app.state.fleet = fleet
    await fleet.start()

    yield

    # Shutdown
    await fleet.stop()


app = FastAPI(
    title=app_settings.app_name,
    description="Discover kitchen and bar printers and route order tickets to them",
    version=APP_VERSION,
    lifespan=lifespan,
)


@app.exception_handler(InvalidRoleError)
async def invalid_role_handler(request: Request, exc: InvalidRoleError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(CandidateNotFoundError)
async def candidate_not_found_handler(request: Request, exc: CandidateNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(OrderNotFoundError)
async def order_not_found_handler(request: Request, exc: OrderNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


# API routes
app.include_router(printers.router, prefix=app_settings.api_prefix)
app.include_router(discovery.router, prefix=app_settings.api_prefix)
app.include_router(tickets.router, prefix=app_settings.api_prefix)
app.include_router(websocket.router, prefix=app_settings.api_prefix)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": APP_VERSION}
