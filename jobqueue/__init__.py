"""jobqueue — durable database-backed job queue."""

__version__ = "0.1.0"
