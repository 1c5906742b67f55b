"""Alembic migration environment for the ``jobs`` table (SQLite or PostgreSQL).

Run migrations from the repository root (next to alembic.ini):

    alembic upgrade head          # create or update the jobs table
    alembic upgrade head --sql    # print the DDL instead of applying it
    alembic downgrade -1          # roll back one revision

The target database is the one the API and workers use: ``JOBS_DB_URL``, or
the PostgreSQL URL built from ``JOBS_DB_HOST``/``JOBS_DB_NAME``/... when a
password is set.  A worker started before ``upgrade`` finishes waits for the
table (see ``worker_main._wait_for_db``).

Migrations run synchronously through ``settings.sync_db_url()``, which swaps
the async driver (aiosqlite/asyncpg) for its blocking counterpart.
"""

from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from jobqueue.config import settings
from jobqueue.db.models import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Autogenerate compares against the Job model, including its perform_at indexes
target_metadata = Base.metadata

# alembic.ini carries no URL; the application settings (and .env) win
config.set_main_option("sqlalchemy.url", settings.sync_db_url())


def run_migrations_offline() -> None:
    """Emit the DDL as SQL text without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=settings.is_sqlite,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a single throwaway connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite has no ALTER COLUMN; batch mode copies the jobs table instead
            render_as_batch=settings.is_sqlite,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
