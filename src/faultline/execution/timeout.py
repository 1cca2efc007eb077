"""Timeout guard for single operation attempts.

Bounds how long a caller waits for one invocation of an operation.

Manifesto:
    Operations without timeouts are a reliability anti-pattern:
    - **Resource exhaustion:** Slow calls pin callers and connections
    - **Cascading failures:** Slow dependencies hang everything upstream
    - **Silent stalls:** Nobody learns the dependency is degraded

    The guard is deliberately small:
    - Function form: ``await with_timeout(op, 500)``
    - Value-object form: ``TimeoutGuard(500, "submit_query").wrap(op)``
    - Decorator form: ``@timeout(500)``

Architecture:
    ::

        with_timeout(op, timeout_ms)
              │
              ├── coroutine function ──► asyncio task
              └── plain callable ──────► asyncio.to_thread (worker thread)
              │
              ▼
        asyncio.wait({task}, timeout=timeout_ms / 1000)
              │
              ├── done     ──► result (or the operation's own exception)
              └── expired  ──► cancel request sent, task abandoned,
                               OperationTimeoutError raised immediately

Cooperative timeout:
    The guard stops *waiting*; it does not guarantee the operation stops.
    An expired coroutine receives a cancellation request that it may
    ignore or take time to honour, and a plain callable running in a
    worker thread always runs to completion because Python threads cannot
    be killed.  Work that must not outlive its caller needs its own
    cancellation checks.  Every OperationTimeoutError carries
    ``context["abandoned"] = True`` to make this visible.

Examples:
    >>> result = await with_timeout(fetch_rows, 5_000, "fetch_rows")

    >>> guard = TimeoutGuard(timeout_ms=50, name="probe")
    >>> await guard.wrap(slow_probe)()
    Traceback (most recent call last):
    ...
    OperationTimeoutError: Operation 'probe' timed out after 50ms

Guardrails:
    - Timeouts should be generous enough for normal operation
    - Sync callables occupy a worker thread until they finish
    - Don't rely on the timeout to release locks held by the operation

Tags:
    timeout, deadline, resilience, execution, faultline

Doc-Types:
    api-reference
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from faultline.core.errors import OperationTimeoutError, configuration_error
from faultline.core.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)

Operation = Callable[[], Any]


def operation_name(op: Callable[..., Any]) -> str:
    """Best-effort display name for an operation."""
    name = getattr(op, "__name__", None)
    if name is None and isinstance(op, functools.partial):
        name = getattr(op.func, "__name__", None)
    return name or "operation"


async def invoke(op: Operation) -> Any:
    """Call ``op`` and await its result if it is awaitable."""
    result = op()
    if inspect.isawaitable(result):
        result = await result
    return result


async def _invoke_off_loop(op: Operation) -> Any:
    if inspect.iscoroutinefunction(op):
        return await op()
    result = await asyncio.to_thread(op)
    if inspect.isawaitable(result):
        result = await result
    return result


def _abandon(task: asyncio.Task[Any]) -> None:
    task.cancel()
    # Retrieve the eventual outcome so the loop does not warn about it.
    task.add_done_callback(lambda t: t.cancelled() or t.exception())


async def with_timeout(
    op: Operation,
    timeout_ms: float,
    operation: str | None = None,
) -> Any:
    """Run ``op`` and stop waiting for it after ``timeout_ms``.

    Args:
        op: Zero-argument callable returning a value or an awaitable
        timeout_ms: Maximum wait in milliseconds (> 0)
        operation: Name for error messages (defaults to ``op.__name__``)

    Returns:
        The operation's result

    Raises:
        OperationTimeoutError: If the timer fires first
        ManagedError: CONFIGURATION kind if timeout_ms <= 0
        Exception: Anything the operation itself raises
    """
    if timeout_ms <= 0:
        raise configuration_error("timeout_ms", timeout_ms, "must be positive")

    name = operation or operation_name(op)
    start = time.monotonic()
    task = asyncio.ensure_future(_invoke_off_loop(op))

    try:
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
    except asyncio.CancelledError:
        task.cancel()
        raise

    if task in done:
        return task.result()

    _abandon(task)
    elapsed_ms = (time.monotonic() - start) * 1000
    logger.warning(
        "timeout.expired",
        operation=name,
        timeout_ms=timeout_ms,
        elapsed_ms=round(elapsed_ms, 2),
    )
    raise OperationTimeoutError(timeout_ms, operation_name=name, elapsed_ms=elapsed_ms)


@dataclass(frozen=True)
class TimeoutGuard:
    """Immutable timeout configuration for one kind of operation.

    Attributes:
        timeout_ms: Maximum wait in milliseconds
        name: Operation name for error messages (defaults to op.__name__)
    """

    timeout_ms: float
    name: str | None = None

    def __post_init__(self) -> None:
        if self.timeout_ms <= 0:
            raise configuration_error("timeout_ms", self.timeout_ms, "must be positive")

    async def run(self, op: Operation) -> Any:
        return await with_timeout(op, self.timeout_ms, self.name)

    def wrap(self, op: Operation) -> Callable[[], Awaitable[Any]]:
        """Return a zero-argument coroutine function bounded by this guard."""

        async def guarded() -> Any:
            return await with_timeout(op, self.timeout_ms, self.name or operation_name(op))

        guarded.__name__ = operation_name(op)
        return guarded


def timeout(
    timeout_ms: float, operation: str | None = None
) -> Callable[[Callable[..., Any]], Callable[..., Awaitable[Any]]]:
    """Decorator to bound a function's calls with a timeout.

    The decorated function always becomes a coroutine function.

    Example:
        >>> @timeout(30_000)
        ... async def fetch_data(url):
        ...     return await http_get(url)
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
        op_name = operation or func.__name__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await with_timeout(
                functools.partial(func, *args, **kwargs), timeout_ms, op_name
            )

        return wrapper

    return decorator


__all__ = [
    "TimeoutGuard",
    "with_timeout",
    "timeout",
    "invoke",
    "operation_name",
]
