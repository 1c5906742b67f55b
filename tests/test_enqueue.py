"""Tests for perform_asap / perform_later."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from jobqueue.db.models import Job, as_utc
from jobqueue.utils.frequency import FrequencyError
from jobqueue.worker.enqueue import perform_asap, perform_later


@pytest.mark.asyncio
async def test_perform_asap_defaults(session_factory, clock, registry, load_job):
    async with session_factory() as db:
        job = perform_asap(db, "app.jobs.digest", 42, "foo", clock=clock, registry=registry)
        assert job.id is None  # not flushed: the caller commits
        await db.commit()
        job_id = job.id

    stored = await load_job(job_id)
    assert stored.name == "app.jobs.digest"
    assert stored.args == [42, "foo"]
    assert stored.queue == "default"
    assert stored.number_attempts == 0
    assert stored.frequency is None
    assert stored.locked_at is None
    assert stored.failed_at is None
    assert stored.last_error == ""
    assert as_utc(stored.perform_at) == clock.now()


@pytest.mark.asyncio
async def test_perform_later_with_function_target(session_factory, clock, registry, load_job):
    @registry.register(name="mailers.send")
    async def send(user_id):
        pass

    perform_at = clock.now() + timedelta(days=1)
    async with session_factory() as db:
        job = perform_later(db, send, perform_at, 7, queue="mailers", frequency="+1 day", registry=registry)
        await db.commit()

    stored = await load_job(job.id)
    assert stored.name == "mailers.send"
    assert stored.queue == "mailers"
    assert stored.frequency == "+1 day"
    assert as_utc(stored.perform_at) == perform_at


def test_naive_perform_at_is_utc(registry):
    class _Session:
        added = []

        def add(self, obj):
            self.added.append(obj)

    session = _Session()
    job = perform_later(session, "x", datetime(2026, 1, 1, 9, 0), registry=registry)
    assert job.perform_at == datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert session.added == [job]


def test_aware_perform_at_is_converted_to_utc(registry):
    class _Session:
        def add(self, obj):
            pass

    paris_time = datetime(2026, 7, 1, 9, 0, tzinfo=timezone(timedelta(hours=2)))
    job = perform_later(_Session(), "x", paris_time, registry=registry)
    assert job.perform_at == datetime(2026, 7, 1, 7, 0, tzinfo=timezone.utc)
    assert job.perform_at.tzinfo is timezone.utc


def test_empty_frequency_means_one_shot(clock, registry):
    class _Session:
        def add(self, obj):
            pass

    job = perform_asap(_Session(), "x", frequency="", clock=clock, registry=registry)
    assert job.frequency is None
    assert isinstance(job, Job)


@pytest.mark.parametrize("frequency", ["-1 hour", "+0 day", "daily"])
def test_invalid_frequency_is_refused(clock, registry, frequency):
    class _Session:
        added = []

        def add(self, obj):
            self.added.append(obj)

    session = _Session()
    with pytest.raises(FrequencyError, match="^x has"):
        perform_asap(session, "x", frequency=frequency, clock=clock, registry=registry)
    assert session.added == []
