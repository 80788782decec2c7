"""
CivicFeed Core - FastAPI application entry point.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .config import get_settings
from .database import engine, Base, SessionLocal
from .logging_config import api_logger, log_request, worker_logger
from .responses import api_exception_handler
from .routes import (
    feed_router,
    videos_router,
    video_pipeline_router,
    webhooks_router,
    health_router,
)
from .worker.encoding_worker import build_encoding_worker

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle - startup and shutdown"""
    # Startup
    # Create tables (in production, use Alembic migrations instead)
    Base.metadata.create_all(bind=engine)

    worker = build_encoding_worker(settings, SessionLocal)
    app.state.encoding_worker = worker

    if settings.encoding_worker_enabled:
        worker.start()
    else:
        worker_logger.info("Encoding worker disabled by configuration")

    yield  # App is running

    # Shutdown
    worker.stop()


app = FastAPI(
    title="CivicFeed Core",
    description="Slot-roll feed and video encoding pipeline",
    version="1.0.0",
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
    lifespan=lifespan,
)

app.add_exception_handler(HTTPException, api_exception_handler)
app.add_exception_handler(Exception, api_exception_handler)

app.add_middleware(log_request(api_logger))

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=[
        "Authorization",
        "Content-Type",
        "Accept",
        "Origin",
        "X-Requested-With",
    ],
    max_age=3600,  # Cache preflight requests for 1 hour
)

# Routes
app.include_router(feed_router)
app.include_router(videos_router)
app.include_router(video_pipeline_router)
app.include_router(webhooks_router)
app.include_router(health_router)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "CivicFeed Core",
        "docs": "/api/docs" if settings.debug else "Disabled in production",
    }
