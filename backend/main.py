"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from utils.exceptions import AppError
from models.database import init_db
from engine.job_store import JobStore
from engine.job_queue import JobQueue
from engine.worker import process_transcode_job

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    force=True  # Override any existing config
)

logger = logging.getLogger(__name__)


async def reconcile_jobs(store: JobStore, queue: JobQueue) -> int:
    """
    Recover from crashes on startup.

    Jobs left PROCESSING by a previous process go back to PENDING, then
    every pending job is requeued in submission order.
    """
    pending = await store.recover_in_flight()
    for job_id in pending:
        await queue.enqueue(job_id)
    return len(pending)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup (init, reconciliation, workers) and shutdown.
    """
    # === STARTUP ===
    logger.info("Starting application...")

    await init_db()

    store = JobStore.get_instance()
    queue = JobQueue.get_instance()
    queue.set_processor(process_transcode_job)

    requeued = await reconcile_jobs(store, queue)
    if requeued:
        logger.info(f"Requeued {requeued} job(s) from previous run")

    await queue.start_workers()

    logger.info("Application ready")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down...")
    await queue.stop_workers(wait_for_current=False)
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    description="Audio transcoding service for the streaming library",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    """Global handler for custom application errors."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "type": type(exc).__name__}
    )

# Include routers
from routers import tracks, jobs, admin
app.include_router(tracks.router, prefix="/api/tracks", tags=["Tracks"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])
app.include_router(admin.router, prefix="/api/admin", tags=["Admin"])


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    queue = JobQueue.get_instance()
    return {
        "status": "healthy",
        "app": settings.app_name,
        "queue_size": queue.queue_size,
        "worker_running": queue.is_running
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port)
