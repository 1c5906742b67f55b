import contextvars
import logging
import sys
from contextlib import contextmanager

from pythonjsonlogger import jsonlogger

# Context variables for correlation
ctx_worker_id = contextvars.ContextVar("worker_id", default=None)
ctx_job_id = contextvars.ContextVar("job_id", default=None)
ctx_job_name = contextvars.ContextVar("job_name", default=None)
ctx_queue = contextvars.ContextVar("queue", default=None)

_CONTEXT_FIELDS = (
    ("worker_id", ctx_worker_id),
    ("job_id", ctx_job_id),
    ("job_name", ctx_job_name),
    ("queue", ctx_queue),
)


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        # Inject context variables if present
        for field, var in _CONTEXT_FIELDS:
            value = var.get()
            if value is not None:
                log_record[field] = value


@contextmanager
def job_context(job_id, job_name, queue):
    """Tag every log record emitted inside the block with the job identity."""
    tokens = [
        (ctx_job_id, ctx_job_id.set(job_id)),
        (ctx_job_name, ctx_job_name.set(job_name)),
        (ctx_queue, ctx_queue.set(queue)),
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def setup_logger(log_format: str = "text", log_level: str = "INFO"):
    """Configure the root logger."""
    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format.lower() == "json":
        formatter = CorrelationJsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"levelname": "level", "asctime": "timestamp"},
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    # Silence third-party noise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("alembic").setLevel(logging.WARNING)

    return root_logger
