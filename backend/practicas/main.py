"""
FastAPI Main Application Entry Point for the practicas service.

Handles the internship (practica) lifecycle:
- State machine transitions (Acta 1, tutor acceptance, report, evaluations, closing)
- Business-day deadlines against the national holiday calendar
- Overdue detection and escalation to coordinators and program directors
- Deadline reminders and background job scheduling
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from practicas.core.config import settings
from practicas.core.exceptions import PracticasException
from practicas.api.routes import (
    practica_router,
    cron_router,
    alert_router,
    holiday_router,
)
from practicas.services.scheduler import get_scheduler


# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    The scheduler only starts when enabled AND this instance is marked with
    RUN_SCHEDULER, so several workers never send the same escalation twice.
    """
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    logger.info(f"Debug mode: {settings.debug}")
    logger.info(f"Email enabled: {settings.email_enabled}")
    logger.info(f"Scheduler enabled: {settings.enable_scheduler}")
    logger.info(f"Run scheduler (this instance): {settings.run_scheduler}")

    app.state.scheduler = None

    if settings.enable_scheduler and settings.run_scheduler:
        try:
            app.state.scheduler = get_scheduler()
            app.state.scheduler.start()
            logger.info("Background scheduler started")
        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")

    yield

    if app.state.scheduler and app.state.scheduler.is_running:
        app.state.scheduler.stop()
        logger.info("Scheduler stopped")

    logger.info("Shutting down...")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="""
    # Practicas Service

    Lifecycle governance for student internships.

    ## Lifecycle
    PENDING -> PENDING_TUTOR_ACCEPTANCE -> IN_PROGRESS -> FINISHED_PENDING_EVAL
    -> EVALUATION_COMPLETE -> CLOSED, with REJECTED_BY_TUTOR and VOIDED branches.

    ## Deadlines
    - **Acta 1**: 5 calendar days after the start date
    - **Completion**: required program hours / 8 per day, business days only
    - **Overdue**: 5+ days past completion without a final report

    ## Identity
    Send `X-User-Id` and `X-User-Role` on every mutating request.
    """,
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PracticasException)
async def practicas_exception_handler(request, exc: PracticasException):
    """Handle all PracticasException subclasses."""
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


app.include_router(practica_router)
app.include_router(cron_router)
app.include_router(alert_router)
app.include_router(holiday_router)


@app.get("/health", tags=["System"])
async def health_check():
    """
    Health check endpoint for monitoring.

    Returns service status and scheduler health.
    """
    scheduler = getattr(app.state, 'scheduler', None)

    if scheduler:
        scheduler_status = scheduler.get_health_status()
    else:
        scheduler_status = {"status": "disabled", "is_running": False, "jobs": [], "failures": {}}

    return {
        "status": "degraded" if scheduler_status["status"] == "degraded" else "healthy",
        "service": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "scheduler": scheduler_status,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@app.get("/", tags=["System"])
async def root():
    """Root endpoint with API information."""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs" if settings.debug else "Docs disabled in production",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "practicas.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
