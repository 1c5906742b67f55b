"""Job runner and worker loop.

Architecture
------------
``watch()`` polls the ``jobs`` table for the most overdue eligible job and
hands its id to ``run_job()``, one job at a time, on a single asyncio task.
Several worker processes may poll the same table: the only coordination
between them is the conditional lock UPDATE in ``lock_service``.

Job lifecycle (one run):
  due (perform_at <= now, unlocked or lock older than 1 h)
    ↓   lock_job()          — loser gets JobLockedError, row untouched
    ↓   reload              — changed since loaded: unlock, JobLockedError
  locked
    ↓   handler(*args)
  success, one-shot   → row deleted
  success, recurring  → perform_at moved to next slot, unlocked
  failure             → number_attempts += 1, last_error / failed_at set,
                        perform_at = retry backoff or next slot, unlocked

One-shot jobs that failed more than JOBS_MAX_ATTEMPTS times stay in the
table (for inspection) but are no longer selected.  A job whose frequency
cannot reschedule it is parked (perform_at <= failed_at) until unfailed.
"""

from __future__ import annotations

import logging
import time
import traceback
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError

from jobqueue import config
from jobqueue.db.engine import async_session
from jobqueue.db.models import Job, as_utc
from jobqueue.registry.job_registry import JobContext, JobRegistry, job_registry
from jobqueue.services.job_service import JobNotFoundError, find_next_job_id, is_due
from jobqueue.services.lock_service import JobLockedError, lock_job, unlock_job
from jobqueue.services.schedule_service import fail, reschedule
from jobqueue.utils.clock import Clock, system_clock
from jobqueue.utils.frequency import FrequencyError, get_timezone
from jobqueue.utils.logger import job_context
from jobqueue.utils.metrics import record_job_run, record_lock_contention, record_misconfigured_job

logger = logging.getLogger("jobqueue.worker.loop")


@dataclass
class RunResult:
    job_id: int
    name: str
    status: str  # done | failed
    duration: float
    error: str | None = None

    @property
    def line(self) -> str:
        return f"job#{self.job_id} ({self.name}): {self.status} (in {self.duration:.3f} seconds)"


def _format_error(exc: BaseException) -> str:
    return "".join(traceback.format_exception_only(type(exc), exc)).strip()


def normalize_queue(queue: str) -> str:
    """Drop trailing digits so ``fetchers1`` and ``fetchers2`` poll ``fetchers``."""
    return queue.rstrip("0123456789") or queue


def _snapshot(job: Job) -> tuple:
    return as_utc(job.perform_at), job.number_attempts, as_utc(job.failed_at)


# ─────────────────────────────────────────────────────────────────────────────
# Runner
# ─────────────────────────────────────────────────────────────────────────────


async def _record_misconfiguration(db, job: Job, exc: FrequencyError, clock: Clock) -> None:
    job.last_error = _format_error(exc)
    job.failed_at = clock.now()
    await db.commit()
    await unlock_job(db, job)
    record_misconfigured_job(job.queue)


async def run_job(
    job_id: int,
    *,
    session_factory=None,
    clock: Clock | None = None,
    registry: JobRegistry | None = None,
    settings: config.Settings | None = None,
    due_only: bool = False,
) -> RunResult:
    """Execute job *job_id* now, whatever its ``perform_at``.

    With *due_only* (the worker loop), a job that is no longer eligible once
    locked is released untouched instead.

    Raises:
        JobNotFoundError: no job with this id.
        JobLockedError:   another worker holds the lock, or ran the job
                          between the load and the lock; nothing was changed.
        FrequencyError:   the job's frequency cannot reschedule it.  The
                          error is recorded on the job, which is unlocked.

    Any exception raised by the job itself is recorded on the job and
    reported as a ``failed`` RunResult.
    """
    session_factory = session_factory or async_session
    clock = clock or system_clock
    registry = registry or job_registry
    settings = settings or config.settings

    tz = get_timezone(settings.JOBS_TIMEZONE)
    lock_timeout = timedelta(seconds=settings.JOBS_LOCK_TIMEOUT_SECONDS)

    async with session_factory() as db:
        job = await db.get(Job, job_id)
        if job is None:
            raise JobNotFoundError(job_id)

        with job_context(job.id, job.name, job.queue):
            seen = _snapshot(job)
            if not await lock_job(db, job, clock=clock, timeout=lock_timeout):
                record_lock_contention(job.queue)
                raise JobLockedError(job.id, job.name)

            # The lock only guards from here on; reload what it now protects.
            await db.refresh(job)
            stale = _snapshot(job) != seen
            if stale or (due_only and not is_due(job, clock.now(), settings.JOBS_MAX_ATTEMPTS)):
                logger.info("Job %s (%s) changed before it was locked; releasing it", job.id, job.name)
                await unlock_job(db, job)
                record_lock_contention(job.queue)
                raise JobLockedError(job.id, job.name)

            started = time.perf_counter()
            error: str | None = None
            try:
                handler = registry.resolve(job.name)
                ctx = JobContext(
                    job_id=job.id,
                    name=job.name,
                    queue=job.queue,
                    number_attempts=job.number_attempts,
                    frequency=job.frequency,
                    session_factory=session_factory,
                    clock=clock,
                )
                await handler.invoke(job.args, ctx)
            except Exception as exc:
                error = _format_error(exc)
                logger.error("Job %s (%s) failed: %s", job.id, job.name, error, exc_info=True)

            now = clock.now()
            try:
                if error is None:
                    if job.frequency:
                        reschedule(job, now, tz)
                        await db.commit()
                        await unlock_job(db, job)
                    else:
                        await db.delete(job)
                        await db.commit()
                else:
                    job.number_attempts += 1
                    fail(job, error, now, tz)
                    await db.commit()
                    await unlock_job(db, job)
            except FrequencyError as exc:
                logger.error("Job %s (%s) is misconfigured: %s", job.id, job.name, exc)
                await _record_misconfiguration(db, job, exc, clock)
                raise

            duration = time.perf_counter() - started
            status = "done" if error is None else "failed"
            record_job_run(duration, status, job.queue)

            result = RunResult(job_id=job_id, name=job.name, status=status, duration=duration, error=error)
            logger.info("%s", result.line)
            return result


# ─────────────────────────────────────────────────────────────────────────────
# Worker loop
# ─────────────────────────────────────────────────────────────────────────────


async def watch(
    queue: str = "all",
    stop_after: int | None = None,
    *,
    sleep_seconds: float | None = None,
    clock: Clock | None = None,
    session_factory=None,
    registry: JobRegistry | None = None,
    stop_event=None,
    settings: config.Settings | None = None,
) -> AsyncIterator[str]:
    """Poll *queue* and run eligible jobs, yielding one status line per event.

    Args:
        queue:         Queue to poll; ``"all"`` polls every queue.  Trailing
                       digits are ignored.
        stop_after:    Stop after this many iterations, idle ones included
                       (None or <= 0: run until *stop_event* is set).
        sleep_seconds: Pause when no job is eligible (default: WORKER_SLEEP_SECONDS).
        stop_event:    ``asyncio.Event`` checked before each iteration.
    """
    session_factory = session_factory or async_session
    clock = clock or system_clock
    registry = registry or job_registry
    settings = settings or config.settings
    if sleep_seconds is None:
        sleep_seconds = settings.WORKER_SLEEP_SECONDS

    lock_timeout = timedelta(seconds=settings.JOBS_LOCK_TIMEOUT_SECONDS)
    queue = normalize_queue(queue)

    logger.info("Job worker started (queue=%s, stop_after=%s)", queue, stop_after)
    yield f"[Job worker ({queue}) started]"

    iterations = 0
    while stop_event is None or not stop_event.is_set():
        line: str | None = None
        job_id: int | None = None
        try:
            async with session_factory() as db:
                job_id = await find_next_job_id(
                    db,
                    queue,
                    clock=clock,
                    lock_timeout=lock_timeout,
                    max_attempts=settings.JOBS_MAX_ATTEMPTS,
                )
            if job_id is None:
                await clock.sleep(sleep_seconds)
            else:
                result = await run_job(
                    job_id,
                    session_factory=session_factory,
                    clock=clock,
                    registry=registry,
                    settings=settings,
                    due_only=True,
                )
                line = result.line
        except (JobLockedError, JobNotFoundError) as exc:
            # Another worker took (or finished) the job between select and lock.
            logger.warning("Skipping job %s: %s", job_id, exc)
            line = str(exc)
        except FrequencyError as exc:
            logger.error("Job %s cannot be rescheduled: %s", job_id, exc)
            line = f"job#{job_id}: failed ({exc})"
        except SQLAlchemyError:
            logger.exception("Database error in job worker loop; will retry")
            await clock.sleep(sleep_seconds)

        if line is not None:
            yield line

        iterations += 1
        if stop_after is not None and 0 < stop_after <= iterations:
            break

    logger.info("Job worker stopped (queue=%s, iterations=%d)", queue, iterations)
    yield f"[Job worker ({queue}) stopped]"
