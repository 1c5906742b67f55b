"""Pydantic models for jobs."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from jobqueue.db.models import Job, as_utc


class JobCreate(BaseModel):
    name: str = Field(min_length=1, max_length=512)
    args: list[Any] = Field(default_factory=list)
    queue: str | None = None
    perform_at: datetime | None = None
    frequency: str | None = None


class JobOut(BaseModel):
    id: int
    name: str
    queue: str
    perform_at: datetime
    number_attempts: int
    frequency: str | None = None
    locked_at: datetime | None = None
    failed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    statuses: list[str] = []
    summary: str = ""

    @classmethod
    def _fields(cls, job: Job) -> dict[str, Any]:
        return {
            "id": job.id,
            "name": job.name,
            "queue": job.queue,
            "perform_at": as_utc(job.perform_at),
            "number_attempts": job.number_attempts,
            "frequency": job.frequency,
            "locked_at": as_utc(job.locked_at),
            "failed_at": as_utc(job.failed_at),
            "created_at": as_utc(job.created_at),
            "updated_at": as_utc(job.updated_at),
        }

    @classmethod
    def from_job(cls, job: Job, statuses: list[str], summary: str) -> "JobOut":
        return cls(**cls._fields(job), statuses=statuses, summary=summary)


class JobDetail(JobOut):
    args: list[Any] = []
    last_error: str = ""
    description: str = ""

    @classmethod
    def from_job(cls, job: Job, statuses: list[str], summary: str, description: str = "") -> "JobDetail":
        return cls(
            **cls._fields(job),
            statuses=statuses,
            summary=summary,
            args=job.args,
            last_error=job.last_error or "",
            description=description,
        )


class MessageOut(BaseModel):
    message: str


class RunResultOut(BaseModel):
    job_id: int
    name: str
    status: str
    duration: float
    error: str | None = None
    line: str
