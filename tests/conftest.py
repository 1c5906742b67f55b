"""Shared fixtures for jobqueue tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobqueue.config import Settings
from jobqueue.db.models import Base, Job
from jobqueue.registry.job_registry import JobRegistry
from jobqueue.utils.clock import FrozenClock
from jobqueue.utils.metrics import metrics

NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)


# ── Database ────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """A fresh SQLite database file per test, with the jobs table created."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}", echo=False, future=True)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    factory = async_sessionmaker(eng, class_=AsyncSession, expire_on_commit=False)
    yield factory
    await eng.dispose()


@pytest.fixture
def add_job(session_factory, clock):
    """Insert a job row directly (bypassing enqueue validation); returns its id."""

    async def _add(
        name: str = "tests.noop",
        *,
        args=(),
        queue: str = "default",
        perform_at: datetime | None = None,
        frequency: str | None = None,
        number_attempts: int = 0,
        locked_at: datetime | None = None,
        failed_at: datetime | None = None,
        last_error: str = "",
    ) -> int:
        async with session_factory() as db:
            job = Job(
                name=name,
                queue=queue,
                perform_at=perform_at or clock.now(),
                frequency=frequency,
                number_attempts=number_attempts,
                locked_at=locked_at,
                failed_at=failed_at,
                last_error=last_error,
            )
            job.args = args
            db.add(job)
            await db.commit()
            return job.id

    return _add


@pytest.fixture
def load_job(session_factory):
    async def _load(job_id: int) -> Job | None:
        async with session_factory() as db:
            return await db.get(Job, job_id)

    return _load


# ── Time, registry, settings ────────────────────────────────────


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(NOW)


@pytest.fixture
def registry() -> JobRegistry:
    return JobRegistry()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        JOBS_DB_URL="sqlite+aiosqlite:///./unused.db",
        WORKER_EMBEDDED=False,
        WORKER_SLEEP_SECONDS=2.0,
    )


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
