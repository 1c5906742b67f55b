"""Durable worker package.

The worker processes jobs from the ``jobs`` table.

Single-process (SQLite dev):
    Worker runs as an asyncio.Task inside the API process.
    Enabled automatically when WORKER_EMBEDDED=true (default for SQLite).

Multi-process (PostgreSQL production):
    Start the worker separately:
        python -m jobqueue.worker                 # polls every queue
        WORKER_QUEUE=mailers1 python -m jobqueue.worker

Workers coordinate through a single conditional UPDATE on ``locked_at``;
a lock older than one hour is treated as abandoned and can be taken over.
"""
