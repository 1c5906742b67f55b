"""Job registry — maps a job's stored ``name`` to the callable that performs it.

Jobs are plain functions (sync or async) registered with the ``@job``
decorator.  The stored name is the function's qualified name
(``module.qualname``), so a worker only needs to import the module to be
able to run it:

    from jobqueue.registry.job_registry import job

    @job
    async def send_digest(user_id: int) -> None:
        ...

    @job(name="cleanup", pass_context=True)
    async def cleanup(ctx: JobContext, days: int) -> None:
        async with ctx.session_factory() as db:
            ...

Names that were never registered in this process are resolved by import as
a fallback: ``"pkg.module:func"`` or ``"pkg.module.func"``.
"""

from __future__ import annotations

import asyncio
import importlib
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from sqlalchemy.ext.asyncio import async_sessionmaker

from jobqueue.utils.clock import Clock

logger = logging.getLogger("jobqueue.registry.job")


class UnknownJobError(LookupError):
    """No callable can be found for a job name."""


@dataclass
class JobContext:
    """Execution handle passed to handlers registered with ``pass_context=True``."""

    job_id: int
    name: str
    queue: str
    number_attempts: int
    frequency: str | None
    session_factory: async_sessionmaker
    clock: Clock
    extra: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class JobHandler:
    name: str
    func: Callable[..., Any]
    pass_context: bool = False

    async def invoke(self, args: list[Any], ctx: JobContext) -> Any:
        """Call the handler with the stored arguments.

        Coroutine functions run on the event loop; plain functions run in a
        worker thread so a blocking job cannot stall the poll loop.
        """
        call_args = [ctx, *args] if self.pass_context else list(args)
        if inspect.iscoroutinefunction(self.func):
            return await self.func(*call_args)
        result = await asyncio.to_thread(self.func, *call_args)
        if inspect.isawaitable(result):
            result = await result
        return result


def qualified_name(func: Callable[..., Any]) -> str:
    return f"{func.__module__}.{func.__qualname__}"


def _import_callable(name: str) -> Callable[..., Any]:
    if ":" in name:
        module_name, _, attr_path = name.partition(":")
        candidates = [(module_name, attr_path)]
    else:
        # Try the longest importable module prefix first:
        # "a.b.C.method" → ("a.b.C", "method"), ("a.b", "C.method"), ...
        parts = name.split(".")
        candidates = [
            (".".join(parts[:i]), ".".join(parts[i:]))
            for i in range(len(parts) - 1, 0, -1)
        ]

    for module_name, attr_path in candidates:
        try:
            target: Any = importlib.import_module(module_name)
        except ImportError:
            continue
        try:
            for attr in attr_path.split("."):
                target = getattr(target, attr)
        except AttributeError:
            continue
        if callable(target):
            return target
    raise UnknownJobError(f"No job registered or importable with name: {name!r}")


class JobRegistry:
    """Registry of job handlers keyed by name."""

    def __init__(self) -> None:
        self._handlers: dict[str, JobHandler] = {}

    def register(
        self,
        func: Callable[..., Any] | None = None,
        *,
        name: str | None = None,
        pass_context: bool = False,
    ):
        """Register *func*; usable as ``@job`` or ``@job(name=..., pass_context=True)``."""

        def decorator(f: Callable[..., Any]) -> Callable[..., Any]:
            job_name = name or qualified_name(f)
            existing = self._handlers.get(job_name)
            if existing is not None and existing.func is not f:
                logger.warning("Job name %s re-registered with a different callable", job_name)
            self._handlers[job_name] = JobHandler(job_name, f, pass_context)
            f.job_name = job_name  # type: ignore[attr-defined]
            return f

        if func is not None:
            return decorator(func)
        return decorator

    def unregister(self, name: str) -> None:
        self._handlers.pop(name, None)

    def name_for(self, target: str | Callable[..., Any]) -> str:
        """Return the name to store for *target* (a name or a job function)."""
        if isinstance(target, str):
            return target
        return getattr(target, "job_name", None) or qualified_name(target)

    def resolve(self, name: str) -> JobHandler:
        handler = self._handlers.get(name)
        if handler is not None:
            return handler
        func = _import_callable(name)
        # The import may have run the module's @job decorators.
        handler = self._handlers.get(name)
        if handler is not None:
            return handler
        return JobHandler(name, func)

    def list(self) -> list[str]:
        return sorted(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers


job_registry = JobRegistry()
job = job_registry.register
