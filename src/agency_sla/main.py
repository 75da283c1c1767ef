"""
Agency SLA Engine - Main Application
=====================================

SLA tracking, breach detection and escalation for agency tickets.

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, value objects and calendar arithmetic
- Infrastructure: Database, event webhook, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Configuration and Core
from agency_sla.config import Settings, settings
from agency_sla.core import ApplicationException

# Infrastructure
from agency_sla.infrastructure.database import (
    init_database, close_database, create_tables,
    get_session, get_session_context, get_session_maker
)

# SLA Module
from agency_sla.sla.application import SlaTrackingService, BreachDetector
from agency_sla.sla.domain import resolve_timezone
from agency_sla.sla.infrastructure import (
    SQLAlchemyUnitOfWork, SQLAlchemySeedWriter, YAMLSeedLoader,
    WebhookEventPublisher, BreachScanScheduler
)
from agency_sla.sla.interfaces import sla_router

# Shared
from agency_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    MetricsMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from agency_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)


def init_sla_services(
    app: FastAPI,
    session_maker: async_sessionmaker[AsyncSession],
    app_settings: Settings,
    publisher: Optional[WebhookEventPublisher] = None
) -> None:
    """Build the SLA services over one session maker and store them on app.state."""

    def uow_factory() -> SQLAlchemyUnitOfWork:
        return SQLAlchemyUnitOfWork(session_maker)

    app.state.settings = app_settings
    app.state.uow_factory = uow_factory
    app.state.event_publisher = publisher
    app.state.tracking_service = SlaTrackingService(
        uow_factory,
        tz=resolve_timezone(app_settings.business_timezone),
        lookahead_days=app_settings.calendar_lookahead_days,
        max_iterations=app_settings.calendar_max_iterations
    )
    app.state.breach_detector = BreachDetector(uow_factory, publisher)


async def load_seed(seed_path: str) -> dict:
    """Load the YAML seed file and write it in one transaction."""
    config = YAMLSeedLoader(seed_path).load()
    async with get_session_context() as session:
        return await SQLAlchemySeedWriter(session).apply(config)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Load SLA seed data
    4. Build SLA services
    5. Start breach scan scheduler

    SHUTDOWN:
    1. Stop breach scan scheduler
    2. Close event publisher
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Agency SLA Engine", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use migrations in production)
    logger.info("Creating database tables")
    try:
        await create_tables()
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    session_maker = get_session_maker()

    if settings.sla_seed_path:
        logger.info(f"Loading SLA seed data from {settings.sla_seed_path}")
        try:
            await load_seed(str(settings.sla_seed_path))
        except ApplicationException as e:
            logger.error(f"SLA seed data not loaded: {e.message}", extra=e.details)

    publisher = WebhookEventPublisher(
        settings.event_webhook_url,
        timeout_seconds=settings.event_webhook_timeout_seconds
    )
    init_sla_services(app, session_maker, settings, publisher)

    scheduler: Optional[BreachScanScheduler] = None
    if settings.breach_scan_enabled:
        detector: BreachDetector = app.state.breach_detector

        async def breach_scan_job():
            """Background breach scan job."""
            try:
                await detector.run_scan()
            except Exception:
                logger.exception("Breach scan failed")

        scheduler = BreachScanScheduler(interval_seconds=settings.breach_scan_interval_seconds)
        await scheduler.start(breach_scan_job)
    app.state.scheduler = scheduler

    logger.info("Agency SLA Engine started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Agency SLA Engine")

    if scheduler:
        await scheduler.stop()

    await publisher.close()
    await close_database()

    logger.info("Agency SLA Engine shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Agency SLA Engine API",
    description="""
    ## SLA tracking for agency tickets

    **Endpoints:**
    - `POST /sla/tracking` - Attach SLA tracking to a ticket
    - `GET /sla/tickets/{id}/tracking` - Tracking record with live status
    - `GET /sla/tickets/{id}/escalations` - Escalation history of a ticket
    - `GET /sla/breaches` - Paginated breach logs
    - `POST /sla/breach-scan` - Run a breach scan now

    **Features:**
    - Policy and rule resolution per agency, priority and category
    - Due dates in agency business hours with holiday overrides
    - Breach detection every minute, at most one breach per commitment
    - Automatic escalation along the agency escalation matrix
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(MetricsMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_exception_handler(ApplicationException, application_exception_handler)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(sla_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "breach_scheduler": "running",
                        "event_webhook": "configured"
                    }
                }
            }
        }
    }
})
async def health_check(request: Request, session: AsyncSession = Depends(get_session)):
    """Health check endpoint for load balancers and orchestrators."""
    try:
        await session.execute(text("SELECT 1"))
        database = "connected"
    except SQLAlchemyError as e:
        database = f"error: {e.__class__.__name__}"

    scheduler = getattr(request.app.state, "scheduler", None)
    checks = {
        "database": database,
        "breach_scheduler": "running" if scheduler and scheduler.is_running else "stopped",
        "event_webhook": "configured" if settings.event_webhook_url else "not_configured"
    }

    return {
        "status": "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/tracking - Attach SLA tracking",
                    "GET /sla/tickets/{id}/tracking - Get tracking with live status",
                    "GET /sla/tickets/{id}/escalations - Get escalation history",
                    "GET /sla/breaches - List breaches",
                    "POST /sla/breach-scan - Run breach scan"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "agency_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
