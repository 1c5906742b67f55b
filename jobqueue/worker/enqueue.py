"""Helpers for enqueuing a Job.

Two entry points:
  perform_asap(db, target, *args)              — eligible on the next poll.
  perform_later(db, target, perform_at, *args) — eligible from *perform_at*.

Both add the Job to the session without committing: the caller commits, so
the job lands in the same transaction as the work that produced it.

*target* is either a registered job function or its stored name.  Passing
``frequency="+1 day"`` makes the job recurring; the frequency is validated
here so a misconfigured job is refused at creation time rather than when
the worker first tries to reschedule it.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

from jobqueue.config import settings
from jobqueue.db.models import Job
from jobqueue.registry.job_registry import JobRegistry, job_registry
from jobqueue.services.schedule_service import validate_frequency
from jobqueue.utils.clock import Clock, system_clock


def perform_later(
    db_session,
    target: str | Callable[..., Any],
    perform_at: datetime,
    *args: Any,
    queue: str | None = None,
    frequency: str | None = None,
    registry: JobRegistry = job_registry,
) -> Job:
    """Add a Job to *db_session* that becomes eligible at *perform_at*.

    The job is NOT committed here — the caller must ``await db.commit()``.

    Args:
        db_session: Active AsyncSession.
        target:     Job function or stored job name.
        perform_at: Earliest execution instant; naive values are taken as UTC.
        *args:      JSON-serialisable positional arguments.
        queue:      Logical lane (default: JOBS_DEFAULT_QUEUE).
        frequency:  Duration expression making the job recurring.

    Raises:
        FrequencyError: *frequency* is invalid or does not move forward.
    """
    name = registry.name_for(target)
    frequency = frequency or None
    if frequency is not None:
        validate_frequency(name, frequency)

    if perform_at.tzinfo is None:
        perform_at = perform_at.replace(tzinfo=timezone.utc)

    job = Job(
        name=name,
        queue=queue or settings.JOBS_DEFAULT_QUEUE,
        perform_at=perform_at.astimezone(timezone.utc),
        number_attempts=0,
        frequency=frequency,
        last_error="",
    )
    job.args = args
    db_session.add(job)
    return job


def perform_asap(
    db_session,
    target: str | Callable[..., Any],
    *args: Any,
    queue: str | None = None,
    frequency: str | None = None,
    clock: Clock = system_clock,
    registry: JobRegistry = job_registry,
) -> Job:
    """Add a Job to *db_session* that is eligible immediately."""
    return perform_later(
        db_session,
        target,
        clock.now(),
        *args,
        queue=queue,
        frequency=frequency,
        registry=registry,
    )
