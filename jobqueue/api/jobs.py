"""Jobs API router."""

from __future__ import annotations

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobqueue.config import settings
from jobqueue.db.engine import get_db, get_session_factory
from jobqueue.registry.job_registry import JobRegistry, job_registry
from jobqueue.schemas.jobs import JobCreate, JobDetail, JobOut, MessageOut, RunResultOut
from jobqueue.services import job_service
from jobqueue.services.lock_service import JobLockedError
from jobqueue.utils.clock import Clock, system_clock
from jobqueue.utils.frequency import FrequencyError
from jobqueue.worker.enqueue import perform_later
from jobqueue.worker.loop import run_job

logger = logging.getLogger("jobqueue.api.jobs")

router = APIRouter()


def get_clock() -> Clock:
    return system_clock


def get_registry() -> JobRegistry:
    return job_registry


def _lock_timeout() -> timedelta:
    return timedelta(seconds=settings.JOBS_LOCK_TIMEOUT_SECONDS)


async def _get_job_or_404(db: AsyncSession, job_id: int):
    try:
        return await job_service.get_job(db, job_id)
    except job_service.JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.get("", response_model=list[JobOut])
async def list_jobs(
    queue: str | None = None,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    jobs = await job_service.list_jobs(db, queue=queue)
    return [
        JobOut.from_job(
            job,
            job_service.job_statuses(job, clock=clock, lock_timeout=_lock_timeout()),
            job_service.summarize_job(job),
        )
        for job in jobs
    ]


@router.post("", response_model=JobDetail, status_code=201)
async def create_job(
    body: JobCreate,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    registry: JobRegistry = Depends(get_registry),
):
    try:
        job = perform_later(
            db,
            body.name,
            body.perform_at or clock.now(),
            *body.args,
            queue=body.queue,
            frequency=body.frequency,
            registry=registry,
        )
    except FrequencyError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    await db.flush()
    await db.refresh(job)
    logger.info("Enqueued job %s (%s) on queue %s", job.id, job.name, job.queue)
    return JobDetail.from_job(
        job,
        job_service.job_statuses(job, clock=clock, lock_timeout=_lock_timeout()),
        job_service.summarize_job(job),
        job_service.describe_job(job),
    )


@router.get("/{job_id}", response_model=JobDetail)
async def get_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    job = await _get_job_or_404(db, job_id)
    return JobDetail.from_job(
        job,
        job_service.job_statuses(job, clock=clock, lock_timeout=_lock_timeout()),
        job_service.summarize_job(job),
        job_service.describe_job(job),
    )


@router.post("/{job_id}/unlock", response_model=MessageOut)
async def unlock_job(
    job_id: int,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    job = await _get_job_or_404(db, job_id)
    released = await job_service.release_job_lock(db, job, clock=clock, lock_timeout=_lock_timeout())
    if not released:
        return MessageOut(message=f"Job {job.id} was not locked.")
    return MessageOut(message=f"Job {job.id} lock has been released.")


@router.post("/{job_id}/unfail", response_model=MessageOut)
async def unfail_job(job_id: int, db: AsyncSession = Depends(get_db)):
    job = await _get_job_or_404(db, job_id)
    error = await job_service.unfail_job(db, job)
    if error is None:
        return MessageOut(message=f"Job {job.id} has not failed.")
    return MessageOut(message=f"Job {job.id} is no longer failing, was:\n{error}")


@router.post("/{job_id}/run", response_model=RunResultOut)
async def run_job_now(
    job_id: int,
    session_factory: async_sessionmaker = Depends(get_session_factory),
    clock: Clock = Depends(get_clock),
    registry: JobRegistry = Depends(get_registry),
):
    """Execute a job immediately, even if its ``perform_at`` is in the future."""
    try:
        result = await run_job(job_id, session_factory=session_factory, clock=clock, registry=registry)
    except job_service.JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except JobLockedError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    except FrequencyError as exc:
        raise HTTPException(status_code=500, detail=str(exc))
    return RunResultOut(
        job_id=result.job_id,
        name=result.name,
        status=result.status,
        duration=result.duration,
        error=result.error,
        line=result.line,
    )
