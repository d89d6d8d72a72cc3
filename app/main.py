"""
Image Job Queue API
FastAPI Backend Entry Point
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from sqlalchemy import text

from app.core.config import settings
from app.core.database import SessionLocal, init_db
from app.core.errors import NotFoundError
from app.core.logging import configure_logging
from app.api import costs, jobs
from app.workers.runtime import build_runtime

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".png": "image/png",
    ".webp": "image/webp",
    ".gif": "image/gif",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    configure_logging()
    logger.info(f"Starting {settings.APP_NAME}...")
    init_db()

    runtime = build_runtime(settings)
    app.state.runtime = runtime
    await runtime.queue.resume_on_boot()
    yield

    logger.info(f"Shutting down {settings.APP_NAME}...")
    await runtime.close()


app = FastAPI(
    title=settings.APP_NAME,
    description="Asynchronous image generation/edit jobs with reference resolution and cost tracking",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])
app.include_router(costs.router, prefix="/api/v1/costs", tags=["Costs"])


def _ping_database() -> None:
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
    finally:
        db.close()


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Health check endpoint.
    Returns status of the database, the handle cache and the queue.
    """
    runtime = app.state.runtime
    status = {
        "status": "healthy",
        "version": "0.1.0",
        "environment": {
            "storage": runtime.storage.backend,
            "handle_cache": settings.HANDLE_CACHE_BACKEND,
        },
        "services": {},
        "queue": {
            "pending": len(runtime.queue.pending),
            "running": len(runtime.queue.running),
            "concurrency": runtime.queue.concurrency,
        },
    }

    # Check database connection
    try:
        await asyncio.to_thread(_ping_database)
        status["services"]["database"] = "ok"
    except Exception as e:
        status["services"]["database"] = f"error: {str(e)}"
        status["status"] = "degraded"

    # Check Redis connection
    if runtime.redis is not None:
        redis_status = await asyncio.to_thread(runtime.redis.health_check)
        if redis_status.get("connected"):
            status["services"]["redis"] = "ok"
            status["services"]["redis_version"] = redis_status.get("redis_version")
        else:
            status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
            status["status"] = "degraded"

    return status


@app.get("/files/{file_path:path}", tags=["Files"])
async def serve_file(file_path: str):
    """
    Serve stored files (references, generated images).
    Fallback retrieval URL when the backend cannot hand out public or signed URLs.
    """
    try:
        file_bytes = await app.state.runtime.storage.read(file_path)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    suffix = file_path[file_path.rfind("."):].lower() if "." in file_path else ""
    return Response(
        content=file_bytes,
        media_type=CONTENT_TYPES.get(suffix, "application/octet-stream"),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": settings.APP_NAME,
        "docs": "/docs",
        "health": "/health",
    }
