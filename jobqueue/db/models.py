"""ORM models — the ``jobs`` table."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Return *value* as an aware UTC datetime.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns;
    everything is written in UTC, so naive values are UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


# ── Jobs ────────────────────────────────────────────────────────


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        # Supports the worker poll: WHERE perform_at <= now [AND queue = ?]
        # ORDER BY perform_at
        Index("ix_jobs_queue_perform_at", "queue", "perform_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(512), nullable=False)
    args_json: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    queue: Mapped[str] = mapped_column(String(256), nullable=False, default="default")
    perform_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    number_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    frequency: Mapped[str | None] = mapped_column(String(64), nullable=True)  # NULL → one-shot
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @property
    def args(self) -> list[Any]:
        return json.loads(self.args_json) if self.args_json else []

    @args.setter
    def args(self, value: list[Any] | tuple[Any, ...]) -> None:
        self.args_json = json.dumps(list(value))

    @property
    def is_recurring(self) -> bool:
        return bool(self.frequency)

    def __repr__(self) -> str:
        return f"<Job #{self.id} {self.name} queue={self.queue!r}>"
