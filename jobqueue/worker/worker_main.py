"""Worker process entrypoint.

Run as a standalone process (production PostgreSQL mode):

    python -m jobqueue.worker

    # Poll a single queue (trailing digits identify the worker):
    WORKER_QUEUE=mailers1 python -m jobqueue.worker

    # Register the application's jobs before polling:
    JOBS_IMPORT_MODULES='["myapp.jobs"]' python -m jobqueue.worker

The worker will:
1. Load jobqueue.config.settings (honours .env file)
2. Import JOBS_IMPORT_MODULES so their @job registrations exist
3. Block until the ``jobs`` table exists (new Alembic deployments may have a brief gap)
4. Run the watch loop, logging one line per executed job
5. Handle SIGINT/SIGTERM gracefully (finish the current job, then exit)

For single-process dev mode (SQLite), the worker is started automatically
as an asyncio.Task inside the API process (WORKER_EMBEDDED=true default).
"""

from __future__ import annotations

import asyncio
import importlib
import logging
import signal
import socket
import uuid

logger = logging.getLogger("jobqueue.worker")


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


def import_job_modules(modules: list[str]) -> None:
    for module_name in modules:
        importlib.import_module(module_name)
        logger.info("Imported job module %s", module_name)


async def _wait_for_db(max_retries: int = 10, delay: float = 2.0) -> None:
    """Wait until the ``jobs`` table is accessible."""
    from sqlalchemy import text
    from sqlalchemy.exc import SQLAlchemyError
    from jobqueue.db.engine import async_session

    for attempt in range(1, max_retries + 1):
        try:
            async with async_session() as db:
                await db.execute(text("SELECT 1 FROM jobs LIMIT 1"))
            logger.info("Database ready after %d attempt(s)", attempt)
            return
        except SQLAlchemyError as exc:
            logger.warning(
                "Database not ready (attempt %d/%d): %s", attempt, max_retries, exc
            )
            if attempt < max_retries:
                await asyncio.sleep(delay)

    raise RuntimeError(
        f"Database not accessible after {max_retries} attempts. "
        "Run `alembic upgrade head` before starting the worker."
    )


async def run_worker(stop_event: asyncio.Event, queue: str | None = None, stop_after: int | None = None) -> None:
    """Drain ``watch()`` until it stops, logging each line."""
    from jobqueue.config import settings
    from jobqueue.worker.loop import watch

    async for line in watch(
        queue or settings.WORKER_QUEUE,
        stop_after if stop_after is not None else settings.WORKER_STOP_AFTER,
        stop_event=stop_event,
    ):
        logger.info("%s", line)


async def main() -> None:
    """Worker process entrypoint."""
    from jobqueue.config import settings
    from jobqueue.utils.logger import ctx_worker_id, setup_logger

    setup_logger(
        log_format=settings.LOG_FORMAT,
        log_level="DEBUG" if settings.DEBUG else settings.LOG_LEVEL,
    )

    worker_id = settings.WORKER_ID or _default_worker_id()
    ctx_worker_id.set(worker_id)

    logger.info(
        "Starting job worker %s (dialect=%s, queue=%s)",
        worker_id,
        settings.JOBS_DB_DIALECT,
        settings.WORKER_QUEUE,
    )

    import_job_modules(settings.JOBS_IMPORT_MODULES)
    await _wait_for_db()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _handle_stop(*_):
        logger.info("Received shutdown signal — stopping worker")
        stop_event.set()

    # Register SIGINT/SIGTERM handlers (Unix only; Windows uses default)
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _handle_stop)
        except (NotImplementedError, AttributeError):
            # Windows doesn't support add_signal_handler
            pass

    await run_worker(stop_event)

    from jobqueue.db.engine import engine
    await engine.dispose()
    logger.info("Worker %s stopped cleanly", worker_id)


if __name__ == "__main__":
    asyncio.run(main())
