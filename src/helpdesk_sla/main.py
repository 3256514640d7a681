"""
Helpdesk SLA - Main Application
================================

SLA tracking engine for a helpdesk.

Modules:
- SLA Tracking: Policies, per-ticket SLA records, reconciliation, statistics

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities, business calendar, evaluator
- Infrastructure: Database, config watcher, scheduler
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Configuration and Core
from helpdesk_sla.config import settings
from helpdesk_sla.core import ApplicationException

# Infrastructure
from helpdesk_sla.infrastructure.database import (
    init_database, close_database, create_tables, get_session_context
)

# SLA Module
from helpdesk_sla.sla.application import PolicyService, ReconcileReport
from helpdesk_sla.sla.infrastructure import (
    SLAConfigManager, SLAScheduler, SQLAlchemyPolicyRepository
)
from helpdesk_sla.sla.interfaces import sla_router, build_reconciler

# Shared
from helpdesk_sla.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    application_exception_handler,
    global_exception_handler
)
from helpdesk_sla.shared.infrastructure.logging import setup_logging, get_logger

logger = get_logger(__name__)

# Global service instances
sla_config_manager = None
sla_scheduler = None
database_ready = False


async def sla_reconciliation_job() -> None:
    """Background reconciliation pass; commits after every batch."""
    async with get_session_context() as session:
        async def commit_batch(report: ReconcileReport) -> None:
            await session.commit()

        reconciler = build_reconciler(session, sla_config_manager)
        await reconciler.reconcile_all(datetime.now(timezone.utc), on_batch=commit_batch)


async def seed_policies() -> None:
    """Create default policies for priorities that have none."""
    async with get_session_context() as session:
        service = PolicyService(SQLAlchemyPolicyRepository(session))
        await service.seed_defaults(
            sla_config_manager.config.seed_policies,
            datetime.now(timezone.utc)
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Load SLA configuration and watch it for changes
    3. Initialize database and create tables
    4. Seed default policies
    5. Start the reconciliation scheduler

    SHUTDOWN:
    1. Stop SLA scheduler
    2. Stop config watcher
    3. Close database connections
    """
    global sla_config_manager, sla_scheduler, database_ready

    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Helpdesk SLA service", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    # A broken config file fails startup; later reloads keep the last good one
    logger.info("Loading SLA configuration")
    sla_config_manager = SLAConfigManager()
    sla_config_manager.load(settings.sla_config_path)
    sla_config_manager.start_watching()
    app.state.sla_config_manager = sla_config_manager
    app.state.settings = settings

    logger.info("Initializing database")
    init_database()

    # Note: If database is not available, the server will start but
    # database-dependent endpoints will fail
    try:
        await create_tables()
        await seed_policies()
        database_ready = True
    except Exception as e:
        logger.warning(f"Database not available - running in degraded mode: {e}")

    if database_ready and settings.sla_reconcile_interval > 0:
        sla_scheduler = SLAScheduler(interval_seconds=settings.sla_reconcile_interval)
        await sla_scheduler.start(sla_reconciliation_job)
    else:
        logger.info("SLA scheduler disabled")

    logger.info("Helpdesk SLA service started successfully")

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Helpdesk SLA service")

    if sla_scheduler:
        await sla_scheduler.stop()

    if sla_config_manager:
        sla_config_manager.stop_watching()

    await close_database()

    logger.info("Helpdesk SLA service shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Helpdesk SLA API",
    description="""
    ## Helpdesk SLA Tracking Engine

    Assigns response and resolution deadlines to tickets, tracks them, and
    reports compliance.

    ---

    ### SLA Tracking Module

    **Endpoints:**
    - `POST /sla/tickets` - Assign an SLA to a new ticket
    - `GET /sla/tickets/{id}` - Get a ticket's SLA record
    - `POST /sla/tickets/{id}/first-response` - Record first response
    - `POST /sla/tickets/{id}/resolve` - Record resolution
    - `GET /sla/stats` - Compliance statistics
    - `POST /sla/reconcile` - Run a reconciliation pass
    - `/sla/policies` - Policy administration
    - `/sla/escalations` - Pending escalation events

    **Features:**
    - Business-hours deadlines (Mon-Fri 09:00-17:00 by default)
    - States: `on_track`, `at_risk`, `breached`; breaches never revert
    - Idempotent assignment safe under concurrent calls
    - Background reconciliation job (every 5 minutes by default)

    ---

    ### Default Policies (Minutes)

    | Priority | Response | Resolution | Business hours |
    |----------|----------|------------|----------------|
    | Critical | 30       | 240        | No             |
    | High     | 60       | 480        | Yes            |
    | Medium   | 240      | 1440       | Yes            |
    | Low      | 480      | 2880       | Yes            |

    ---
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
app.add_middleware(LoggingMiddleware)
app.add_middleware(CorrelationIDMiddleware)
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
                        "sla_config": "loaded",
                        "sla_scheduler": "running"
                    }
                }
            }
        }
    }
})
async def health_check():
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database availability at startup
    - SLA configuration status
    - Scheduler state
    """
    checks = {
        "database": "connected" if database_ready else "unavailable",
        "sla_config": "loaded" if sla_config_manager else "not_loaded",
        "sla_scheduler": "running" if sla_scheduler and sla_scheduler.is_running else "stopped"
    }

    return {
        "status": "healthy" if database_ready else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Helpdesk SLA",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "sla": {
                "prefix": "/sla",
                "endpoints": [
                    "POST /sla/tickets - Assign SLA",
                    "GET /sla/tickets/{id} - Get ticket SLA record",
                    "POST /sla/tickets/{id}/first-response - Record first response",
                    "POST /sla/tickets/{id}/resolve - Record resolution",
                    "GET /sla/stats - Compliance statistics",
                    "POST /sla/reconcile - Reconcile SLA records",
                    "GET /sla/policies - List policies",
                    "GET /sla/escalations - Pending escalations"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "helpdesk_sla.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
