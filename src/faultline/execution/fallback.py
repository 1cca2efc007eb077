"""Fallback helpers: alternative results when an operation fails.

The circuit breaker's ``fallback`` covers one case, a rejected call.  These
helpers cover failed calls: substitute another callable, walk a chain of
alternatives, return a default, or serve a cached value.

Every predicate and callback receives the classified ManagedError.  SYSTEM
errors never fall back; they propagate unchanged like any error the
predicate declines.

Examples:
    >>> lookup = with_fallback(fetch_from_primary, fetch_from_replica)
    >>> row = await lookup(customer_id)

    >>> rate = await fallback_chain([live_rate, cached_rate, lambda: 1.0])

    >>> flags = await with_default(load_flags, {}, should_use_default=lambda e: e.retryable)

    >>> rows = await with_cache(fetch_rows, lambda: cache.get("rows"))

Tags:
    fallback, degradation, resilience, execution, faultline
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from faultline.core.errors import ErrorKind, ManagedError, configuration_error, wrap
from faultline.core.logging import get_logger
from faultline.execution.timeout import invoke, operation_name

logger = get_logger(__name__)

ErrorPredicate = Callable[[ManagedError], bool]


def _always(error: ManagedError) -> bool:
    return True


def _falls_back(error: ManagedError, predicate: ErrorPredicate | None) -> bool:
    if error.kind is ErrorKind.SYSTEM:
        return False
    return bool((predicate or _always)(error))


def with_fallback(
    func: Callable[..., Any],
    fallback: Callable[..., Any],
    *,
    pass_error: bool = False,
    should_fallback: ErrorPredicate | None = None,
    on_error: Callable[[ManagedError], None] | None = None,
) -> Callable[..., Awaitable[Any]]:
    """Wrap ``func`` so failures are answered by ``fallback``.

    Args:
        func: Sync or async callable
        fallback: Called with the same arguments, or with the error first
            when ``pass_error`` is set
        pass_error: Pass the ManagedError as the first fallback argument
        should_fallback: Decides whether an error falls back
        on_error: Called with the error before the fallback runs
    """

    @functools.wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return await invoke(functools.partial(func, *args, **kwargs))
        except Exception as exc:
            error = wrap(exc)
            if not _falls_back(error, should_fallback):
                raise
            if on_error is not None:
                on_error(error)
            logger.info(
                "fallback.used",
                operation=operation_name(func),
                kind=error.kind.value,
            )
            if pass_error:
                return await invoke(functools.partial(fallback, error, *args, **kwargs))
            return await invoke(functools.partial(fallback, *args, **kwargs))

    return wrapper


async def fallback_chain(
    ops: Sequence[Callable[[], Any]],
    *,
    on_fallback: Callable[[ManagedError, int], None] | None = None,
) -> Any:
    """Return the result of the first operation in ``ops`` that succeeds.

    ``on_fallback(error, index)`` is called after operation ``index`` fails.

    Raises:
        Exception: The last operation's error when every operation fails
        ManagedError: CONFIGURATION kind if ``ops`` is empty
    """
    if not ops:
        raise configuration_error("ops", ops, "at least one operation is required")

    last = len(ops) - 1
    for index, op in enumerate(ops):
        try:
            return await invoke(op)
        except Exception as exc:
            error = wrap(exc, {"fallback_index": index})
            if error.kind is ErrorKind.SYSTEM or index == last:
                raise
            if on_fallback is not None:
                on_fallback(error, index)
            logger.debug(
                "fallback.next",
                operation=operation_name(op),
                index=index,
                kind=error.kind.value,
            )

    raise AssertionError("unreachable: chain exits via return or raise")


async def with_default(
    op: Callable[[], Any],
    default: Any,
    *,
    should_use_default: ErrorPredicate | None = None,
) -> Any:
    """Run ``op``, returning ``default`` when it fails."""
    try:
        return await invoke(op)
    except Exception as exc:
        if not _falls_back(wrap(exc), should_use_default):
            raise
        return default


async def with_cache(
    op: Callable[[], Any],
    get_cached: Callable[[], Any],
    *,
    should_use_cache: ErrorPredicate | None = None,
    on_cache_used: Callable[[ManagedError, Any], None] | None = None,
) -> Any:
    """Run ``op``, serving ``get_cached()`` when it fails.

    ``get_cached`` may be sync or async.  ``on_cache_used(error, value)`` is
    called with the value served.
    """
    try:
        return await invoke(op)
    except Exception as exc:
        error = wrap(exc)
        if not _falls_back(error, should_use_cache):
            raise
        value = await invoke(get_cached)
        if on_cache_used is not None:
            on_cache_used(error, value)
        logger.info("fallback.cache_used", operation=operation_name(op), kind=error.kind.value)
        return value


__all__ = [
    "with_fallback",
    "fallback_chain",
    "with_default",
    "with_cache",
]
