"""
RouteGuard API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.config import get_settings

settings = get_settings()
logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("RouteGuard API starting up", version=settings.app_version)
    scheduler = None
    if settings.embedded_scheduler:
        from workers.scheduler import SweepScheduler

        scheduler = SweepScheduler()
        await scheduler.start()
    app.state.scheduler = scheduler
    yield
    if scheduler is not None:
        await scheduler.stop()
    logger.info("RouteGuard API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Payment route failure prediction and on-call escalation",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import alerts, failure_prediction, health_graph, risk_notifications

app.include_router(failure_prediction.router)
app.include_router(health_graph.router)
app.include_router(risk_notifications.router)
app.include_router(alerts.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
