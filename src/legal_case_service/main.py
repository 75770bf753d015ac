"""Main FastAPI application for legal-case-service."""

import asyncio
import logging
import sys
from contextlib import suppress
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from legal_case_service.api.routes.cases import (
    advocates_router,
    get_case_manager,
    get_case_repository,
    get_identity_provider,
    get_notifier,
)
from legal_case_service.api.routes.cases import router as cases_router
from legal_case_service.config import settings
from legal_case_service.core.exceptions import CaseServiceError
from legal_case_service.infrastructure.database import db_client
from legal_case_service.models.case import Actor, UserRole
from legal_case_service.models.requests import HealthResponse

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)

logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Legal Case Service",
    description="Case lifecycle, advocate assignment and audit trail",
    version="1.0.0",
)

# Services trust X-User-* headers from the API Gateway (no JWT validation here)
logger.info("Service trusts X-User-* headers from API Gateway (no JWT validation)")

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(cases_router)
app.include_router(advocates_router)


def _uses_sql_storage() -> bool:
    return settings.case_storage_type.lower() == "sql"


# Identity the periodic escalation sweep acts as
SWEEP_ACTOR = Actor(user_id="escalation-scheduler", role=UserRole.SYSTEM)
_sweep_task: Optional[asyncio.Task] = None


async def run_escalation_sweeps(interval_seconds: float) -> None:
    """Periodically flag cases whose court date came close while untouched."""
    while True:
        await asyncio.sleep(interval_seconds)
        manager = get_case_manager(get_case_repository(), get_identity_provider(), get_notifier())
        try:
            await manager.flag_due_escalations(SWEEP_ACTOR)
        except CaseServiceError as e:
            logger.error(f"Escalation sweep failed: {e.message}")


@app.on_event("startup")
async def startup():
    """Initialize database on startup."""
    logger.info(f"Starting {settings.service_name} on port {settings.port}")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Case storage: {settings.case_storage_type}")

    # Fail fast on a bad directory file rather than on the first request
    get_identity_provider()

    if _uses_sql_storage():
        await _init_database()

    global _sweep_task
    if settings.escalation_sweep_interval_seconds > 0:
        _sweep_task = asyncio.create_task(
            run_escalation_sweeps(settings.escalation_sweep_interval_seconds)
        )
        logger.info(
            f"Escalation sweep every {settings.escalation_sweep_interval_seconds}s"
        )


async def _init_database():
    logger.info(f"Database: {settings.database_url}")
    try:
        # Verify connection with retry logic (database may still be starting)
        await db_client.verify_connection()

        # Alembic migrations are the source of truth; create_tables covers
        # local runs without a migration step
        await db_client.create_tables()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


@app.on_event("shutdown")
async def shutdown():
    """Clean up resources on shutdown."""
    logger.info("Shutting down service")
    if _sweep_task is not None:
        _sweep_task.cancel()
        with suppress(asyncio.CancelledError):
            await _sweep_task
    await get_notifier().drain()
    await db_client.close()


@app.get(
    "/health",
    response_model=HealthResponse,
    summary="Health Check",
    description="""
Returns the health status of the Legal Case Service.

**Response Example**:
```json
{
  "status": "healthy",
  "service": "legal-case-service",
  "version": "1.0.0",
  "database": "inmemory"
}
```

**Use Cases**:
- Kubernetes liveness/readiness probes
- Load balancer health checks

**Storage**: No database query (reports storage type only)
**Authorization**: None required (public endpoint)
    """,
    responses={
        200: {"description": "Service is healthy and operational"},
        500: {"description": "Service is unhealthy or experiencing issues"}
    }
)
async def health_check():
    """Health check endpoint."""
    database = settings.database_url.split("://")[0] if _uses_sql_storage() else "inmemory"
    return HealthResponse(
        status="healthy",
        service=settings.service_name,
        version="1.0.0",
        database=database,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "legal_case_service.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.environment == "development",
    )
