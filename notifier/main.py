"""
Appointment Notifier API

FastAPI application entry point: wires the messaging connection, the
dispatcher and the change detectors, and exposes the admin endpoints.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError

from notifier.config import settings
from notifier.api.routes import connection, health, notifications
from notifier.core.connection import ChallengeBoard, ConnectionManager
from notifier.core.detection import (
    AppointmentChangeListener,
    AppointmentPoller,
    DetectionScheduler,
    ReminderSweep,
)
from notifier.core.notifications import NotificationDispatcher
from notifier.infra.credentials import get_credential_store
from notifier.infra.database import init_db, close_db
from notifier.infra.gateway import GatewayTransport
from notifier.infra.redis import check_redis_health, close_redis


def setup_logging() -> None:
    """Configure logging based on environment."""
    log_level = logging.DEBUG if settings.debug else logging.INFO
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
    )

    # Reduce noise from third-party libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(
        logging.INFO if settings.debug else logging.WARNING
    )


logger = logging.getLogger(__name__)


async def start_detectors(
    dispatcher: NotificationDispatcher,
) -> tuple[DetectionScheduler, list[asyncio.Task]]:
    """Start the configured change detector plus the reminder sweep.

    The poller and the sweep run as scheduler jobs; the push listener
    holds its own subscription task.
    """
    logger.info(f"Change detection strategy: {settings.detection_strategy}")
    tasks: list[asyncio.Task] = []
    poller = None
    if settings.detection_strategy == "push":
        listener = AppointmentChangeListener(dispatcher.handle)
        tasks.append(asyncio.create_task(listener.run(), name="change-listener"))
    else:
        poller = AppointmentPoller(dispatcher.handle)

    scheduler = DetectionScheduler(ReminderSweep(dispatcher.handle), poller)
    await scheduler.start()
    return scheduler, tasks


async def stop_tasks(tasks: list[asyncio.Task]) -> None:
    """Cancel background tasks and wait for them to finish."""
    for task in tasks:
        task.cancel()
    await asyncio.gather(*tasks, return_exceptions=True)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    # === STARTUP ===
    setup_logging()
    logger.info(f"Starting {settings.app_name} in {settings.app_env} mode")

    # Set health check start time
    health.set_start_time()

    # Initialize database (only in development - the booking site owns migrations)
    if settings.is_development:
        try:
            await init_db()
            logger.info("Database tables and change trigger initialized")
        except Exception as e:
            logger.warning(f"Database init skipped: {e}")

    # Redis only matters when it holds the pairing credentials
    if settings.credential_backend == "redis":
        if await check_redis_health():
            logger.info("Redis connection established")
        else:
            logger.warning("Redis unavailable - stored credentials cannot be read yet")

    # Messaging session
    transport = GatewayTransport()
    challenges = ChallengeBoard()
    connection_manager = ConnectionManager(
        transport,
        get_credential_store(),
        observers=[challenges],
    )
    dispatcher = NotificationDispatcher(connection_manager)

    app.state.connection = connection_manager
    app.state.challenges = challenges
    app.state.dispatcher = dispatcher

    # connect() may wait on the gateway; do not block startup on it
    tasks = [asyncio.create_task(connection_manager.start(), name="connection-start")]
    detection, detector_tasks = await start_detectors(dispatcher)
    tasks += detector_tasks

    logger.info(f"Application ready at http://{settings.host}:{settings.port}")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application...")

    await detection.stop()
    await stop_tasks(tasks)
    logger.info("Background tasks stopped")

    await connection_manager.shutdown()
    logger.info("Messaging connection closed")

    # Close Redis connection
    await close_redis()

    # Close database connections
    await close_db()
    logger.info("Database connections closed")

    logger.info("Shutdown complete")


app = FastAPI(
    title="Appointment Notifier API",
    description="""
    WhatsApp notifications for a barbershop booking system.

    ## Features
    - ✅ Confirmation when an appointment is booked
    - ⏰ Reminder about an hour before the appointment
    - ❌ Notice when an appointment is cancelled
    - 🔁 At most one message per appointment and kind

    ## Authentication
    Endpoints that send messages or touch the pairing require the
    `X-API-Key` header.
    """,
    version="1.0.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    openapi_url="/openapi.json" if settings.is_development else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Handle Pydantic validation errors."""
    logger.warning(f"Validation error: {exc.errors()}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "detail": exc.errors(),
        },
    )


@app.exception_handler(Exception)
async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle uncaught exceptions."""
    logger.exception(f"Unhandled exception: {exc}")

    # Don't expose internal errors in production
    detail = str(exc) if settings.is_development else "Internal server error"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "detail": detail,
        },
    )


@app.middleware("http")
async def request_timing_middleware(request: Request, call_next):
    """Log request duration in debug mode."""
    start_time = time.time()

    try:
        return await call_next(request)
    finally:
        if settings.debug:
            duration = time.time() - start_time
            logger.debug(
                f"{request.method} {request.url.path} "
                f"completed in {duration:.3f}s"
            )


# Routers (connection and notification routes check the admin key per endpoint)
app.include_router(health.router)
app.include_router(connection.router)
app.include_router(notifications.router)


@app.get("/", tags=["Root"])
async def root() -> dict:
    """
    Root endpoint.

    Returns basic API information.
    """
    return {
        "name": settings.app_name,
        "version": "1.0.0",
        "status": "running",
        "environment": settings.app_env,
        "docs": "/docs" if settings.is_development else None,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "notifier.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level="debug" if settings.debug else "info",
    )
