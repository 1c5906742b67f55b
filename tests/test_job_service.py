"""Tests for the eligibility query and the admin operations."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from jobqueue.db.models import Job, as_utc
from jobqueue.services import job_service
from jobqueue.services.job_service import JobNotFoundError, find_next_job_id

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)


# ─────────────────────────────────────────────────────────────────────────────
# Eligibility
# ─────────────────────────────────────────────────────────────────────────────


class TestFindNextJobId:
    @pytest.mark.asyncio
    async def test_empty_table(self, session_factory, clock):
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) is None

    @pytest.mark.asyncio
    async def test_future_job_is_not_eligible(self, session_factory, clock, add_job):
        await add_job(perform_at=clock.now() + timedelta(seconds=1))
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) is None

    @pytest.mark.asyncio
    async def test_due_now_is_eligible(self, session_factory, clock, add_job):
        job_id = await add_job(perform_at=clock.now())
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == job_id

    @pytest.mark.asyncio
    async def test_most_overdue_first(self, session_factory, clock, add_job):
        await add_job(perform_at=clock.now() - timedelta(hours=1))
        oldest = await add_job(perform_at=clock.now() - timedelta(hours=2))
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == oldest

    @pytest.mark.asyncio
    async def test_ties_broken_by_id(self, session_factory, clock, add_job):
        first = await add_job(perform_at=clock.now())
        await add_job(perform_at=clock.now())
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == first

    @pytest.mark.asyncio
    async def test_locked_job_is_skipped(self, session_factory, clock, add_job):
        await add_job(perform_at=clock.now() - timedelta(hours=2), locked_at=clock.now())
        free = await add_job(perform_at=clock.now() - timedelta(hours=1))
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == free

    @pytest.mark.asyncio
    async def test_stale_lock_is_ignored(self, session_factory, clock, add_job):
        job_id = await add_job(locked_at=clock.now() - timedelta(hours=1, seconds=1))
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == job_id

    @pytest.mark.asyncio
    async def test_attempts_cap(self, session_factory, clock, add_job):
        await add_job(number_attempts=26)
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) is None

    @pytest.mark.asyncio
    async def test_attempts_cap_is_inclusive(self, session_factory, clock, add_job):
        job_id = await add_job(number_attempts=25)
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == job_id

    @pytest.mark.asyncio
    async def test_recurring_jobs_ignore_the_cap(self, session_factory, clock, add_job):
        job_id = await add_job(number_attempts=100, frequency="+1 hour")
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == job_id

    @pytest.mark.asyncio
    async def test_queue_filter(self, session_factory, clock, add_job):
        await add_job(queue="mailers", perform_at=clock.now() - timedelta(hours=1))
        fetch = await add_job(queue="fetchers")
        async with session_factory() as db:
            assert await find_next_job_id(db, "fetchers", clock=clock) == fetch
            assert await find_next_job_id(db, "other", clock=clock) is None

    @pytest.mark.asyncio
    async def test_all_spans_queues(self, session_factory, clock, add_job):
        mailers = await add_job(queue="mailers", perform_at=clock.now() - timedelta(hours=1))
        await add_job(queue="fetchers")
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == mailers

    @pytest.mark.asyncio
    async def test_job_failed_without_reschedule_is_parked(self, session_factory, clock, add_job):
        await add_job(frequency="-1 hour", perform_at=clock.now() - timedelta(hours=1), failed_at=clock.now())
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) is None

    @pytest.mark.asyncio
    async def test_failed_job_awaiting_retry_is_eligible(self, session_factory, clock, add_job):
        job_id = await add_job(
            perform_at=clock.now() - timedelta(seconds=1),
            failed_at=clock.now() - timedelta(seconds=7),
            number_attempts=1,
        )
        async with session_factory() as db:
            assert await find_next_job_id(db, "all", clock=clock) == job_id

    @pytest.mark.asyncio
    async def test_unfail_releases_a_parked_job(self, session_factory, clock, add_job):
        job_id = await add_job(frequency="-1 hour", perform_at=clock.now() - timedelta(hours=1), failed_at=clock.now())
        async with session_factory() as db:
            assert await job_service.unfail_job(db, await db.get(Job, job_id)) == ""
            assert await find_next_job_id(db, "all", clock=clock) == job_id


@pytest.mark.parametrize(
    "overrides, expected",
    [
        ({}, True),
        ({"perform_at": NOW + timedelta(seconds=1)}, False),
        ({"number_attempts": 26}, False),
        ({"number_attempts": 26, "frequency": "+1 hour"}, True),
        ({"failed_at": NOW}, False),
        ({"failed_at": NOW - timedelta(seconds=6)}, True),
    ],
)
def test_is_due(overrides, expected):
    fields = {"perform_at": NOW, "number_attempts": 0, "frequency": None, "failed_at": None}
    fields.update(overrides)
    assert job_service.is_due(Job(**fields), NOW) is expected


# ─────────────────────────────────────────────────────────────────────────────
# Admin operations
# ─────────────────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_get_job_not_found(session_factory):
    async with session_factory() as db:
        with pytest.raises(JobNotFoundError, match="Job 42 does not exist."):
            await job_service.get_job(db, 42)


@pytest.mark.asyncio
async def test_list_jobs_ordered_by_id(session_factory, clock, add_job):
    a = await add_job(queue="b", perform_at=clock.now() + timedelta(hours=1))
    b = await add_job(queue="a")
    async with session_factory() as db:
        assert [job.id for job in await job_service.list_jobs(db)] == [a, b]
        assert [job.id for job in await job_service.list_jobs(db, queue="a")] == [b]


class TestStatuses:
    def test_none(self, clock):
        job = Job(perform_at=clock.now(), locked_at=None, failed_at=None)
        assert job_service.job_statuses(job, clock=clock) == []

    def test_all(self, clock):
        job = Job(
            perform_at=clock.now() + timedelta(minutes=1),
            locked_at=clock.now(),
            failed_at=clock.now(),
        )
        assert job_service.job_statuses(job, clock=clock) == ["locked", "failed", "scheduled"]

    def test_stale_lock_is_not_reported(self, clock):
        job = Job(perform_at=clock.now(), locked_at=clock.now() - timedelta(hours=3), failed_at=None)
        assert job_service.job_statuses(job, clock=clock) == []


class TestFormatting:
    def _job(self, **overrides) -> Job:
        fields = dict(
            id=1,
            name="app.jobs.digest",
            queue="default",
            perform_at=NOW,
            number_attempts=2,
            frequency=None,
            locked_at=None,
            failed_at=None,
            last_error="",
            created_at=NOW - timedelta(days=1),
            updated_at=NOW,
        )
        fields.update(overrides)
        job = Job(**fields)
        job.args = []
        return job

    def test_summary_one_shot(self):
        assert job_service.summarize_job(self._job()) == (
            "job#1 app.jobs.digest at 2026-03-20 12:00:00+00:00, 2 attempts"
        )

    def test_summary_recurring_locked_failed(self):
        job = self._job(frequency="+1 hour", locked_at=NOW, failed_at=NOW)
        assert job_service.summarize_job(job) == (
            "job#1 app.jobs.digest scheduled each +1 hour, next at 2026-03-20 12:00:00+00:00"
            " (locked) (failed)"
        )

    def test_describe_never_failed(self):
        text = job_service.describe_job(self._job())
        assert text.splitlines() == [
            "id: 1",
            "name: app.jobs.digest",
            "args: none",
            "perform: 2026-03-20 12:00:00+00:00",
            "attempts: 2",
            "queue: default",
            "repeat: once",
            "created: 2026-03-19 12:00:00+00:00",
            "updated: 2026-03-20 12:00:00+00:00",
            "failed: never",
        ]

    def test_describe_failed_recurring_with_args(self):
        job = self._job(frequency="+1 day", failed_at=NOW, locked_at=NOW, last_error="ValueError: boom")
        job.args = [42, "foo"]
        lines = job_service.describe_job(job).splitlines()
        assert "args: 42, 'foo'" in lines
        assert "repeat: +1 day" in lines
        assert "locked: 2026-03-20 12:00:00+00:00" in lines
        assert lines[-2:] == ["failed: 2026-03-20 12:00:00+00:00", "ValueError: boom"]


@pytest.mark.asyncio
async def test_unfail_clears_error_keeps_schedule(session_factory, clock, add_job, load_job):
    perform_at = clock.now() + timedelta(seconds=6)
    job_id = await add_job(
        perform_at=perform_at, number_attempts=3, failed_at=clock.now(), last_error="ValueError: boom"
    )
    async with session_factory() as db:
        job = await db.get(Job, job_id)
        assert await job_service.unfail_job(db, job) == "ValueError: boom"

    stored = await load_job(job_id)
    assert stored.failed_at is None
    assert stored.last_error == ""
    assert stored.number_attempts == 3
    assert as_utc(stored.perform_at) == perform_at


@pytest.mark.asyncio
async def test_unfail_job_that_never_failed(session_factory, add_job):
    job_id = await add_job()
    async with session_factory() as db:
        job = await db.get(Job, job_id)
        assert await job_service.unfail_job(db, job) is None


@pytest.mark.asyncio
async def test_release_lock(session_factory, clock, add_job, load_job):
    job_id = await add_job(locked_at=clock.now())
    async with session_factory() as db:
        job = await db.get(Job, job_id)
        assert await job_service.release_job_lock(db, job, clock=clock) is True
        assert await job_service.release_job_lock(db, job, clock=clock) is False
    assert (await load_job(job_id)).locked_at is None


@pytest.mark.asyncio
async def test_release_stale_lock_reports_not_locked(session_factory, clock, add_job):
    job_id = await add_job(locked_at=clock.now() - timedelta(hours=2))
    async with session_factory() as db:
        job = await db.get(Job, job_id)
        assert await job_service.release_job_lock(db, job, clock=clock) is False
