"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from jobqueue import __version__
from jobqueue.api.jobs import router as jobs_router
from jobqueue.config import settings
from jobqueue.db.engine import engine
from jobqueue.db.models import Base
from jobqueue.utils.logger import setup_logger

setup_logger(log_format=settings.LOG_FORMAT, log_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL)
logger = logging.getLogger("jobqueue.main")


async def _embedded_worker() -> None:
    """Drain the watch loop inside the API process (SQLite dev mode)."""
    from jobqueue.worker.worker_main import import_job_modules, run_worker

    import_job_modules(settings.JOBS_IMPORT_MODULES)
    await run_worker(asyncio.Event())


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.is_sqlite:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    # else: for PostgreSQL, run `alembic upgrade head` before starting the server

    _worker_task: asyncio.Task | None = None
    if settings.WORKER_EMBEDDED:
        _worker_task = asyncio.create_task(_embedded_worker(), name="jobqueue-embedded-worker")
        logger.info(
            "Embedded worker started (queue=%s, sleep=%.1fs)",
            settings.WORKER_QUEUE,
            settings.WORKER_SLEEP_SECONDS,
        )

    logger.info("Application lifespan startup complete — entering serve loop")
    try:
        yield
    finally:
        if _worker_task is not None:
            _worker_task.cancel()
            with suppress(asyncio.CancelledError):
                await _worker_task
        await engine.dispose()


app = FastAPI(
    title="jobqueue",
    description="Durable database-backed job queue",
    version=__version__,
    lifespan=lifespan,
)

app.include_router(jobs_router, prefix="/api/jobs", tags=["jobs"])


@app.get("/api/health")
async def health():
    return {"status": "ok"}


@app.get("/api/metrics", response_class=PlainTextResponse, tags=["observability"])
async def prometheus_metrics():
    """Prometheus-compatible text exposition of in-process metrics.

    Example line: ``jobqueue_job_runs_total{queue="default",status="done"} 42``
    """
    from jobqueue.utils.metrics import to_prometheus_text
    return to_prometheus_text()
