"""Error handler: the single place failures are logged and remembered.

Call sites hand any exception to ``ErrorHandler.handle()``; it is wrapped
into a ManagedError, logged at the level its severity calls for, and kept
in a bounded history that ``summary()`` aggregates for health endpoints.
Callbacks registered with ``on_error(kind, callback)`` run for every
handled error of that kind.

Handlers are plain objects.  Construct one where the application is wired
together and pass it to the components that need it (``Resilient`` takes
one as ``handler=``).

Example:
    >>> handler = ErrorHandler(history_size=50)
    >>> safe_lookup = handler.wrap_safe(lookup_customer, fallback=None)
    >>> await safe_lookup()          # failures are logged, None returned
    >>> handler.summary()["total_errors"]
    1
"""

from __future__ import annotations

import functools
import inspect
from collections import Counter, deque
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from faultline.core.errors import ErrorKind, ManagedError, Severity, configuration_error, wrap
from faultline.core.logging import get_logger

_LOG_METHODS = {
    Severity.INFO: "info",
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
    Severity.CRITICAL: "critical",
}

RECENT_ERRORS = 5

ErrorCallback = Callable[[ManagedError, Mapping[str, Any]], None]


class ErrorHandler:
    """Logs ManagedErrors and keeps a bounded history of them."""

    def __init__(self, logger: Any | None = None, history_size: int = 100):
        if history_size < 1:
            raise configuration_error("history_size", history_size, "must be >= 1")
        self._logger = logger or get_logger(__name__)
        self._history: deque[ManagedError] = deque(maxlen=history_size)
        self._callbacks: dict[ErrorKind, list[ErrorCallback]] = {}

    @property
    def history(self) -> list[ManagedError]:
        """Handled errors, oldest first."""
        return list(self._history)

    def handle(
        self,
        error: BaseException,
        context: Mapping[str, Any] | None = None,
    ) -> ManagedError:
        """Wrap, log, and record ``error``; returns the ManagedError."""
        managed = wrap(error, context)
        method = getattr(self._logger, _LOG_METHODS[managed.severity])
        method(
            "error.handled",
            kind=managed.kind.value,
            code=managed.code,
            component=managed.component,
            error_message=managed.message,
            retryable=managed.retryable,
            context=dict(managed.context),
        )
        self._history.append(managed)
        self._notify(managed, context or {})
        return managed

    def on_error(self, kind: ErrorKind | str, callback: ErrorCallback) -> None:
        """Call ``callback(error, context)`` for every handled error of ``kind``."""
        callbacks = self._callbacks.setdefault(ErrorKind(kind), [])
        if callback not in callbacks:
            callbacks.append(callback)

    def off_error(self, kind: ErrorKind | str, callback: ErrorCallback) -> None:
        callbacks = self._callbacks.get(ErrorKind(kind), [])
        if callback in callbacks:
            callbacks.remove(callback)

    def _notify(self, managed: ManagedError, context: Mapping[str, Any]) -> None:
        for callback in list(self._callbacks.get(managed.kind, ())):
            try:
                callback(managed, context)
            except Exception:
                self._logger.exception(
                    "error.callback_failed",
                    kind=managed.kind.value,
                    callback=getattr(callback, "__name__", repr(callback)),
                )

    def summary(self) -> dict[str, Any]:
        """Totals by kind and severity plus the most recent records."""
        by_kind = Counter(e.kind.value for e in self._history)
        by_severity = Counter(e.severity.value for e in self._history)
        return {
            "total_errors": len(self._history),
            "by_kind": dict(by_kind),
            "by_severity": dict(by_severity),
            "recent_errors": [e.to_record() for e in list(self._history)[-RECENT_ERRORS:]],
        }

    def wrap_safe(
        self,
        op: Callable[..., Any],
        fallback: Any = None,
    ) -> Callable[..., Awaitable[Any]]:
        """Return an async callable that handles failures and returns ``fallback``.

        SYSTEM errors are handled (logged and recorded) and then re-raised.
        """

        @functools.wraps(op)
        async def safe(*args: Any, **kwargs: Any) -> Any:
            try:
                result = op(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
                return result
            except Exception as exc:
                managed = self.handle(exc, {"operation": getattr(op, "__name__", "operation")})
                if managed.kind is ErrorKind.SYSTEM:
                    if managed is exc:
                        raise
                    raise managed from exc
                return fallback

        return safe

    def clear(self) -> None:
        self._history.clear()


__all__ = ["ErrorHandler"]
