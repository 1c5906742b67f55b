"""SQLAlchemy async engine and session factory.

Every worker opens short sessions: one for the eligibility query, one per
executed job.  The lock is a committed UPDATE, so no session ever holds a
transaction open while a job handler runs.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from jobqueue.config import settings


def _build_engine_kwargs() -> dict:
    """Return engine kwargs appropriate for the configured dialect."""
    if settings.is_postgres:
        return {
            "echo": settings.DEBUG,
            "future": True,
            # one worker needs at most two connections (runner + a handler's own session)
            "pool_size": settings.JOBS_DB_POOL_SIZE,
            "max_overflow": settings.JOBS_DB_MAX_OVERFLOW,
            "pool_timeout": settings.JOBS_DB_POOL_TIMEOUT,
            "pool_pre_ping": True,   # idle workers poll rarely; drop dead connections first
            "pool_recycle": 1800,
        }
    # SQLite: one file shared by the API and any local worker processes
    return {
        "echo": settings.DEBUG,
        "future": True,
        # aiosqlite runs the connection in its own thread
        "connect_args": {"check_same_thread": False},
    }


engine = create_async_engine(settings.JOBS_DB_URL, **_build_engine_kwargs())


if settings.is_sqlite:
    # WAL keeps the eligibility SELECT of one worker from blocking on another
    # worker's lock UPDATE.  busy_timeout turns a contended write into a wait
    # of up to 5 s instead of an immediate "database is locked".
    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, _conn_rec):  # type: ignore[misc]
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA busy_timeout=5000")
        cursor.execute("PRAGMA synchronous=NORMAL")   # durable enough with WAL
        cursor.close()


# expire_on_commit=False: the runner keeps using the Job it locked after each commit
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """FastAPI dependency: yields a session, commits on success, rolls back on error."""
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """FastAPI dependency: the factory ``run_job`` opens its own sessions from.

    Overridden in tests to point at a temporary database.
    """
    return async_session
