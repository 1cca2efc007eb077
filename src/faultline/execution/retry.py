"""Retry executor with exponential, linear, or fixed backoff and jitter.

Example:
    >>> from faultline.execution.retry import RetryPolicy, BackoffStrategy, retry
    >>>
    >>> policy = RetryPolicy(max_attempts=5, initial_delay_ms=100, max_delay_ms=10_000)
    >>> for attempt in range(4):
    ...     print(f"Attempt {attempt}: wait {policy.base_delay_ms(attempt):.0f}ms")
    Attempt 0: wait 100ms
    Attempt 1: wait 200ms
    Attempt 2: wait 400ms
    Attempt 3: wait 800ms
    >>>
    >>> result = await retry(submit_query, policy)
"""

from __future__ import annotations

import asyncio
import functools
import random
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from faultline.core.errors import (
    NETWORK_ERRNO_CODES,
    ErrorKind,
    ManagedError,
    configuration_error,
    wrap,
)
from faultline.core.logging import get_logger
from faultline.execution.timeout import invoke, operation_name, with_timeout

logger = get_logger(__name__)

ShouldRetry = Callable[[ManagedError, int], bool]
OnRetry = Callable[[ManagedError, int, float], None]
Sleep = Callable[[float], Awaitable[Any]]


class BackoffStrategy(str, Enum):
    """Delay growth between attempts."""

    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    FIXED = "fixed"


def default_should_retry(error: ManagedError, attempt: int) -> bool:
    """Retry whatever the taxonomy marks as retryable."""
    return error.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """Immutable retry configuration.

    ``max_attempts`` counts retries after the first invocation, so a policy
    allows at most ``max_attempts + 1`` calls.

    Attributes:
        max_attempts: Retries after the first attempt (>= 0)
        initial_delay_ms: Delay before the first retry
        max_delay_ms: Cap for EXPONENTIAL and LINEAR delays
        backoff: Delay growth strategy
        jitter_factor: Relative jitter in [0, 1]
        should_retry: Predicate (error, attempt) -> bool
        timeout_ms: Optional timeout applied to each attempt
        retry_on_circuit_open: Let should_retry see CIRCUIT_OPEN errors
    """

    max_attempts: int = 3
    initial_delay_ms: float = 1_000.0
    max_delay_ms: float = 30_000.0
    backoff: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    jitter_factor: float = 0.1
    should_retry: ShouldRetry = field(default=default_should_retry, compare=False)
    timeout_ms: float | None = None
    retry_on_circuit_open: bool = False

    def __post_init__(self) -> None:
        if self.max_attempts < 0:
            raise configuration_error("max_attempts", self.max_attempts, "must be >= 0")
        if self.initial_delay_ms < 0:
            raise configuration_error("initial_delay_ms", self.initial_delay_ms, "must be >= 0")
        if self.max_delay_ms < 0:
            raise configuration_error("max_delay_ms", self.max_delay_ms, "must be >= 0")
        if not 0.0 <= self.jitter_factor <= 1.0:
            raise configuration_error("jitter_factor", self.jitter_factor, "must be within [0, 1]")
        if self.timeout_ms is not None and self.timeout_ms <= 0:
            raise configuration_error("timeout_ms", self.timeout_ms, "must be positive")
        if not isinstance(self.backoff, BackoffStrategy):
            object.__setattr__(self, "backoff", BackoffStrategy(self.backoff))

    def base_delay_ms(self, attempt: int) -> float:
        """Delay before the retry that follows ``attempt`` (zero-based), without jitter."""
        if self.backoff is BackoffStrategy.EXPONENTIAL:
            return min(self.initial_delay_ms * (2 ** attempt), self.max_delay_ms)
        if self.backoff is BackoffStrategy.LINEAR:
            return min(self.initial_delay_ms * (attempt + 1), self.max_delay_ms)
        return self.initial_delay_ms

    def compute_delay(self, attempt: int, rng: random.Random | None = None) -> float:
        """Jittered delay in milliseconds, never negative."""
        delay = self.base_delay_ms(attempt)
        if self.jitter_factor:
            uniform = (rng or random).uniform(-self.jitter_factor, self.jitter_factor)
            delay = delay * (1 + uniform)
        return max(0.0, delay)

    def allows_retry(self, error: ManagedError, attempt: int) -> bool:
        """Decide whether ``error`` observed on ``attempt`` earns another attempt."""
        if attempt >= self.max_attempts:
            return False
        if error.kind is ErrorKind.SYSTEM:
            return False
        if error.kind is ErrorKind.CIRCUIT_OPEN and not self.retry_on_circuit_open:
            return False
        return bool(self.should_retry(error, attempt))


NO_RETRY = RetryPolicy(max_attempts=0, jitter_factor=0.0)


@dataclass
class RetryContext:
    """State of one retry run.

    Each ``RetryExecutor.run()`` call owns its context, so one executor can
    serve concurrent runs.  Pass a context in to inspect the run afterwards.
    """

    attempt: int = field(default=0, init=False)
    errors: list[ManagedError] = field(default_factory=list, init=False)
    started_at: float = field(default_factory=time.monotonic, init=False)

    def record_failure(self, error: ManagedError) -> None:
        """Record a failed attempt."""
        self.errors.append(error)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    @property
    def last_error(self) -> ManagedError | None:
        return self.errors[-1] if self.errors else None

    @property
    def elapsed_ms(self) -> float:
        """Time since the run started."""
        return (time.monotonic() - self.started_at) * 1000


@dataclass
class RetryExecutor:
    """Runs operations under a RetryPolicy.

    The executor holds configuration only; per-run state lives in a
    RetryContext.

    Example:
        >>> executor = RetryExecutor(RetryPolicy(max_attempts=3, initial_delay_ms=50))
        >>> ctx = RetryContext()
        >>> rows = await executor.run(fetch_rows, ctx)
        >>> ctx.attempts
        2
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    on_retry: OnRetry | None = None
    sleep: Sleep = asyncio.sleep
    rng: random.Random | None = None

    async def _attempt(self, op: Callable[[], Any]) -> Any:
        if self.policy.timeout_ms is not None:
            return await with_timeout(op, self.policy.timeout_ms, operation_name(op))
        return await invoke(op)

    async def run(self, op: Callable[[], Any], context: RetryContext | None = None) -> Any:
        """Execute ``op`` until success, exhaustion, or a non-retryable error.

        Raises:
            ManagedError: The classified last error
            asyncio.CancelledError: If the caller cancels between attempts
        """
        ctx = context if context is not None else RetryContext()
        name = operation_name(op)

        for attempt in range(self.policy.max_attempts + 1):
            ctx.attempt = attempt + 1
            try:
                return await self._attempt(op)
            except Exception as exc:
                error = wrap(exc, {"attempt": attempt + 1})
                ctx.record_failure(error)

                if not self.policy.allows_retry(error, attempt):
                    logger.info(
                        "retry.stopped",
                        operation=name,
                        attempts=attempt + 1,
                        kind=error.kind.value,
                        exhausted=attempt >= self.policy.max_attempts,
                    )
                    if error is exc:
                        raise
                    raise error from exc

                delay_ms = self.policy.compute_delay(attempt, self.rng)
                logger.debug(
                    "retry.scheduled",
                    operation=name,
                    attempt=attempt + 1,
                    kind=error.kind.value,
                    delay_ms=round(delay_ms, 2),
                )
                if self.on_retry is not None:
                    self.on_retry(error, attempt, delay_ms)
                await self.sleep(delay_ms / 1000)

        raise AssertionError("unreachable: retry loop exits via return or raise")


async def retry(
    op: Callable[[], Any],
    policy: RetryPolicy | None = None,
    *,
    on_retry: OnRetry | None = None,
    sleep: Sleep = asyncio.sleep,
    rng: random.Random | None = None,
) -> Any:
    """Run ``op`` under ``policy`` (see RetryExecutor.run)."""
    executor = RetryExecutor(policy or RetryPolicy(), on_retry=on_retry, sleep=sleep, rng=rng)
    return await executor.run(op)


def retryable(
    policy: RetryPolicy | None = None,
    on_retry: OnRetry | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Awaitable[Any]]]:
    """Decorator factory adding retry logic to a function.

    Example:
        >>> @retryable(RetryPolicy(max_attempts=3))
        ... async def submit(sql):
        ...     return await client.query(sql)
    """
    resolved = policy or RetryPolicy()

    def decorator(func: Callable[..., Any]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await retry(functools.partial(func, *args, **kwargs), resolved, on_retry=on_retry)

        return wrapper

    return decorator


# =============================================================================
# PREDICATE BUILDERS
# =============================================================================


def retry_on_kinds(*kinds: ErrorKind) -> ShouldRetry:
    """Retry only errors whose kind is listed."""
    allowed = frozenset(kinds)

    def should_retry(error: ManagedError, attempt: int) -> bool:
        return error.kind in allowed

    return should_retry


def retry_on_errors(*matchers: type[BaseException] | str) -> ShouldRetry:
    """Retry errors matching an exception type, a class name, or a code.

    Matching is done against the ManagedError and its root cause.
    """
    types = tuple(m for m in matchers if isinstance(m, type))
    names = {m for m in matchers if isinstance(m, str)}

    def should_retry(error: ManagedError, attempt: int) -> bool:
        for candidate in _chain(error):
            if types and isinstance(candidate, types):
                return True
            if type(candidate).__name__ in names:
                return True
            code = getattr(candidate, "code", None)
            if isinstance(code, str) and code in names:
                return True
        return False

    return should_retry


def retry_on_network_errors() -> ShouldRetry:
    """Retry NETWORK errors, including raw errors carrying a network errno code."""

    def should_retry(error: ManagedError, attempt: int) -> bool:
        if error.kind is ErrorKind.NETWORK:
            return True
        root = error.root_cause()
        code = getattr(root, "code", None)
        return isinstance(code, str) and code.upper() in NETWORK_ERRNO_CODES

    return should_retry


def _chain(error: ManagedError) -> Iterable[BaseException]:
    current: BaseException | None = error
    while current is not None:
        yield current
        current = current.cause if isinstance(current, ManagedError) else None


__all__ = [
    "BackoffStrategy",
    "RetryPolicy",
    "RetryContext",
    "RetryExecutor",
    "NO_RETRY",
    "default_should_retry",
    "retry",
    "retryable",
    "retry_on_kinds",
    "retry_on_errors",
    "retry_on_network_errors",
]
