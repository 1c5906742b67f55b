"""Backoff & recurrence — computes a job's next ``perform_at``.

These functions only mutate the in-memory ``Job``; the caller owns the
session and commits.

Recurring jobs (``frequency`` set) always move to the next slot of their
cadence strictly after "now", skipping the slots that were missed while no
worker was running.  One-shot jobs that fail are retried after
``number_attempts ** 4 + 5`` seconds: 6 s, 21 s, 86 s, 261 s, … 10005 s at
the tenth attempt.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone, tzinfo

from jobqueue.db.models import Job, as_utc
from jobqueue.utils.frequency import FrequencyError, parse_frequency

logger = logging.getLogger("jobqueue.schedule")

# Upper bound on calendar steps taken to catch up with "now" (one step per
# missed day is 273 years).
MAX_CATCHUP_STEPS = 100_000


def retry_delay(number_attempts: int) -> timedelta:
    """Delay before retrying a one-shot job that has failed *number_attempts* times."""
    return timedelta(seconds=number_attempts**4 + 5)


def validate_frequency(name: str, frequency: str) -> None:
    """Raise :class:`FrequencyError` unless *frequency* moves forward in time."""
    try:
        parsed = parse_frequency(frequency)
    except FrequencyError as exc:
        raise FrequencyError(f"{name} has an invalid frequency: {exc}") from None
    if not parsed.is_forward:
        raise FrequencyError(f"{name} has a frequency going backward ({frequency!r})")


def next_perform_at(job: Job, now: datetime, tz: tzinfo = timezone.utc) -> datetime:
    """Return the first slot of *job*'s cadence strictly after *now*.

    Slots are counted from the current ``perform_at``: the k-th slot is
    ``perform_at + k * frequency``.  Computing each slot from the same base
    keeps month arithmetic stable (Jan 31 → Feb 28 → Mar 31, not Mar 28).
    """
    if not job.frequency:
        raise FrequencyError(f"{job.name} cannot be rescheduled as it has no frequency")

    validate_frequency(job.name, job.frequency)
    frequency = parse_frequency(job.frequency)

    base = as_utc(job.perform_at)
    now = as_utc(now)

    if frequency.is_fixed:
        if base > now:
            return base
        step = frequency.step()
        missed = (now - base) // step + 1
        return base + step * missed

    date = base
    for k in range(1, MAX_CATCHUP_STEPS + 1):
        if date > now:
            return date
        candidate = frequency.apply(base, tz, times=k)
        if candidate <= date:
            raise FrequencyError(f"{job.name} has a frequency going backward ({job.frequency!r})")
        date = candidate
    raise FrequencyError(
        f"{job.name} could not catch up with {now.isoformat()} "
        f"in {MAX_CATCHUP_STEPS} steps of {job.frequency!r}"
    )


def reschedule(job: Job, now: datetime, tz: tzinfo = timezone.utc) -> None:
    """Move a recurring job to its next slot; no-op for one-shot jobs.

    Raises :class:`FrequencyError` (without touching ``perform_at``) when the
    frequency is invalid or does not move forward.
    """
    if not job.frequency:
        return
    job.perform_at = next_perform_at(job, now, tz)
    logger.debug("Job %s rescheduled at %s", job.id, job.perform_at.isoformat())


def fail(job: Job, error: str, now: datetime, tz: tzinfo = timezone.utc) -> None:
    """Record a failure and plan the next attempt.

    ``number_attempts`` must already count this failure; the runner
    increments it before calling.
    """
    now = as_utc(now)
    if job.frequency:
        perform_at = next_perform_at(job, now, tz)
    else:
        perform_at = now + retry_delay(job.number_attempts)

    job.last_error = error
    job.failed_at = now
    job.perform_at = perform_at
    logger.debug(
        "Job %s failed (attempt %d), next attempt at %s",
        job.id, job.number_attempts, perform_at.isoformat(),
    )
