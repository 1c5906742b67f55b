"""Job lock service — timeout-based mutual exclusion over a single job row.

The lock is a single conditional UPDATE evaluated by the database:

    UPDATE jobs SET locked_at = :now
    WHERE id = :id AND (locked_at IS NULL OR locked_at <= :now - timeout)

Two workers racing for the same job both send this statement; the database
serialises them and exactly one sees ``rowcount == 1``.  A lock older than
*timeout* is considered abandoned (its worker died) and can be taken over.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobqueue.db.models import Job, as_utc
from jobqueue.utils.clock import Clock, system_clock

logger = logging.getLogger("jobqueue.lock")

LOCK_TIMEOUT = timedelta(hours=1)


class JobLockedError(RuntimeError):
    """Another worker currently holds the lock on the job."""

    def __init__(self, job_id: int, name: str | None = None) -> None:
        self.job_id = job_id
        self.name = name
        label = f"job#{job_id}" + (f" ({name})" if name else "")
        super().__init__(f"{label} is locked by another worker")


async def lock_job(
    db: AsyncSession,
    job: Job,
    *,
    clock: Clock = system_clock,
    timeout: timedelta = LOCK_TIMEOUT,
) -> bool:
    """Take the lock on *job*; return True iff this caller won it.

    The update is committed immediately so the lock is visible to every other
    worker.  On success ``job.locked_at`` reflects the stored value.
    """
    now = clock.now()
    result = await db.execute(
        update(Job)
        .where(
            Job.id == job.id,
            or_(Job.locked_at.is_(None), Job.locked_at <= now - timeout),
        )
        .values(locked_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    won = result.rowcount == 1
    if won:
        job.locked_at = now
        logger.debug("Locked job %s", job.id)
    else:
        logger.debug("Lock on job %s is held by another worker", job.id)
    return won


async def unlock_job(db: AsyncSession, job: Job) -> bool:
    """Release the lock on *job* unconditionally; True iff a row changed."""
    result = await db.execute(
        update(Job)
        .where(Job.id == job.id)
        .values(locked_at=None)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    released = result.rowcount == 1
    if released:
        job.locked_at = None
    return released


def is_locked(
    job: Job,
    *,
    clock: Clock = system_clock,
    timeout: timedelta = LOCK_TIMEOUT,
) -> bool:
    """Pure read: True iff *job* holds a lock younger than *timeout*."""
    locked_at = as_utc(job.locked_at)
    if locked_at is None:
        return False
    return locked_at > clock.now() - timeout
