import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from analytics_app.config import settings
from analytics_app.database.connection import engine, Base
from analytics_app.api.v1 import analytics, realtime
from analytics_app.dependencies import get_broadcaster, get_ingestion_service, get_queue
from analytics_app.exceptions import AnalyticsError
from analytics_app.logging_config import configure_logging
from analytics_app.middleware.analytics_middleware import AnalyticsMiddleware
from analytics_app.stores.session_store import SessionStore
from analytics_app.workers.tracking_worker import TrackingWorker

# Import models to ensure they're registered with Base
from analytics_app.models import Visitor, VisitorSession, PageView, AnalyticsEvent  # noqa: F401

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()

    # Create database tables
    Base.metadata.create_all(bind=engine)

    broadcaster = get_broadcaster()
    broadcaster.start()

    worker = None
    worker_task = None
    if settings.run_embedded_worker:
        worker = TrackingWorker(
            queue=get_queue(),
            ingestion=get_ingestion_service(),
            sessions=SessionStore(),
            broadcaster=broadcaster,
        )
        worker_task = asyncio.create_task(worker.start())
    app.state.worker = worker

    logger.info("Analytics service started", environment=settings.environment, embedded_worker=worker is not None)
    yield

    if worker_task is not None:
        worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    await broadcaster.stop()
    logger.info("Analytics service stopped")


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Cookieless visitor analytics built with FastAPI",
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(AnalyticsMiddleware)


@app.exception_handler(AnalyticsError)
async def analytics_error_handler(request: Request, exc: AnalyticsError):
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.get("/")
def read_root():
    """Root endpoint with API information"""
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "environment": settings.environment}


######## Include routers
app.include_router(analytics.router, prefix="/api/v1")
app.include_router(realtime.router)
