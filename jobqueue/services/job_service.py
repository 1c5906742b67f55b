"""Job queries and admin operations.

``find_next_job_id`` is the worker's eligibility query; the other functions
back the admin surface (list / show / unfail / unlock).
"""

from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import Job, as_utc
from jobqueue.services.lock_service import LOCK_TIMEOUT, is_locked, unlock_job
from jobqueue.utils.clock import Clock, system_clock

MAX_ATTEMPTS = 25


class JobNotFoundError(LookupError):
    """No job exists with the given id."""

    def __init__(self, job_id: int) -> None:
        self.job_id = job_id
        super().__init__(f"Job {job_id} does not exist.")


async def find_next_job_id(
    db: AsyncSession,
    queue: str = "all",
    *,
    clock: Clock = system_clock,
    lock_timeout: timedelta = LOCK_TIMEOUT,
    max_attempts: int = MAX_ATTEMPTS,
) -> int | None:
    """Return the id of the most overdue eligible job in *queue*, or None.

    Eligible means: due, not locked (or locked for longer than
    *lock_timeout*), either recurring or failed at most *max_attempts*
    times, and not parked by a failure that left ``perform_at`` in the past
    (a frequency that cannot reschedule the job).  ``"all"`` selects across
    every queue.
    """
    now = clock.now()
    stmt = select(Job.id).where(
        Job.perform_at <= now,
        or_(Job.locked_at.is_(None), Job.locked_at <= now - lock_timeout),
        or_(Job.number_attempts <= max_attempts, Job.frequency.is_not(None)),
        or_(Job.failed_at.is_(None), Job.perform_at > Job.failed_at),
    )
    if queue != "all":
        stmt = stmt.where(Job.queue == queue)
    stmt = stmt.order_by(Job.perform_at.asc(), Job.id.asc()).limit(1)

    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def is_due(job: Job, now: datetime, max_attempts: int = MAX_ATTEMPTS) -> bool:
    """In-memory counterpart of the selection predicate, lock excluded."""
    perform_at = as_utc(job.perform_at)
    failed_at = as_utc(job.failed_at)
    if perform_at > now:
        return False
    if job.frequency is None and job.number_attempts > max_attempts:
        return False
    return failed_at is None or perform_at > failed_at


async def get_job(db: AsyncSession, job_id: int) -> Job:
    job = await db.get(Job, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


async def list_jobs(db: AsyncSession, queue: str | None = None) -> list[Job]:
    stmt = select(Job)
    if queue:
        stmt = stmt.where(Job.queue == queue)
    result = await db.execute(stmt.order_by(Job.id.asc()))
    return list(result.scalars().all())


def job_statuses(
    job: Job,
    *,
    clock: Clock = system_clock,
    lock_timeout: timedelta = LOCK_TIMEOUT,
) -> list[str]:
    statuses = []
    if is_locked(job, clock=clock, timeout=lock_timeout):
        statuses.append("locked")
    if job.failed_at is not None:
        statuses.append("failed")
    if as_utc(job.perform_at) > clock.now():
        statuses.append("scheduled")
    return statuses


def format_datetime(value: datetime | None) -> str:
    value = as_utc(value)
    if value is None:
        return ""
    return value.isoformat(sep=" ", timespec="seconds")


def summarize_job(job: Job) -> str:
    """One-line listing entry, e.g. ``job#3 app.jobs.digest at ..., 2 attempts (failed)``."""
    text = f"job#{job.id} {job.name}"
    perform_at = format_datetime(job.perform_at)
    if job.frequency:
        text += f" scheduled each {job.frequency}, next at {perform_at}"
    else:
        text += f" at {perform_at}, {job.number_attempts} attempts"
    if job.locked_at is not None:
        text += " (locked)"
    if job.failed_at is not None:
        text += " (failed)"
    return text


def describe_job(job: Job) -> str:
    """Multi-line description of every field of *job*."""
    lines = [f"id: {job.id}", f"name: {job.name}"]
    args = job.args
    lines.append(f"args: {', '.join(repr(arg) for arg in args)}" if args else "args: none")
    lines.append(f"perform: {format_datetime(job.perform_at)}")
    lines.append(f"attempts: {job.number_attempts}")
    lines.append(f"queue: {job.queue}")
    lines.append(f"repeat: {job.frequency}" if job.frequency else "repeat: once")
    lines.append(f"created: {format_datetime(job.created_at)}")
    lines.append(f"updated: {format_datetime(job.updated_at)}")
    if job.locked_at is not None:
        lines.append(f"locked: {format_datetime(job.locked_at)}")
    if job.failed_at is not None:
        lines.append(f"failed: {format_datetime(job.failed_at)}")
        lines.append(job.last_error)
    else:
        lines.append("failed: never")
    return "\n".join(lines)


async def unfail_job(db: AsyncSession, job: Job) -> str | None:
    """Discard the error of *job*; return the previous error or None.

    ``perform_at`` and ``number_attempts`` are left as they are, so a job
    that hit the attempts cap stays out of the worker's selection, while a
    job parked by a bad frequency becomes eligible again.
    """
    if job.failed_at is None:
        return None
    error = job.last_error
    job.last_error = ""
    job.failed_at = None
    await db.commit()
    return error


async def release_job_lock(
    db: AsyncSession,
    job: Job,
    *,
    clock: Clock = system_clock,
    lock_timeout: timedelta = LOCK_TIMEOUT,
) -> bool:
    """Unlock *job* if it is currently locked; True iff a lock was released."""
    if not is_locked(job, clock=clock, timeout=lock_timeout):
        return False
    return await unlock_job(db, job)
