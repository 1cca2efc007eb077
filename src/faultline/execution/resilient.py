"""Resilient — retry, circuit breaker, and timeout composed around one call.

WHY
───
Each guard is useful alone, but the order they wrap an operation in decides
what gets counted.  ``Resilient`` fixes that order once so call sites only
say *which* breaker, policy, and timeout apply.

ARCHITECTURE
────────────
::

    Resilient.execute(op)
      │
      ▼
    RetryExecutor (policy)                 ─ classifies, backs off, retries
      └─► CircuitBreaker.execute           ─ admits / rejects / falls back
            └─► with_timeout(op, timeout_ms) ─ bounds one attempt
                  └─► op()

    * every attempt is counted by the breaker, a timed-out attempt
      counts as a breaker failure
    * a rejection (CIRCUIT_OPEN) stops the retry loop unless the policy
      sets ``retry_on_circuit_open``
    * the final ManagedError goes to the ErrorHandler, then to the caller

Example:
    >>> registry = CircuitBreakerRegistry()
    >>> resilient = Resilient(
    ...     registry.get_or_create("warehouse", failure_threshold=5),
    ...     RetryPolicy(max_attempts=3, initial_delay_ms=200),
    ...     timeout_ms=2_000,
    ...     handler=ErrorHandler(),
    ... )
    >>> rows = await resilient.execute(lambda: client.query(sql))
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import random
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from faultline.core.errors import ManagedError, configuration_error
from faultline.core.handler import ErrorHandler
from faultline.core.logging import get_logger
from faultline.execution.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from faultline.execution.retry import OnRetry, RetryContext, RetryExecutor, RetryPolicy, Sleep
from faultline.execution.timeout import operation_name, with_timeout

if TYPE_CHECKING:
    from faultline.core.settings import ResilienceSettings

logger = get_logger(__name__)


class Resilient:
    """Runs operations as ``Retry(CircuitBreaker(Timeout(op)))``.

    Args:
        breaker: Circuit breaker counting every attempt
        policy: Retry policy; its ``timeout_ms`` is used when ``timeout_ms``
            is not given
        timeout_ms: Per-attempt timeout (None = policy.timeout_ms)
        handler: Receives the final error before it is re-raised
        on_retry: Called with (error, attempt, delay_ms) before each delay
        sleep: Awaitable sleep in seconds, injectable for tests
        rng: Random source for jitter
    """

    def __init__(
        self,
        breaker: CircuitBreaker,
        policy: RetryPolicy | None = None,
        timeout_ms: float | None = None,
        handler: ErrorHandler | None = None,
        on_retry: OnRetry | None = None,
        sleep: Sleep = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        if timeout_ms is not None and timeout_ms <= 0:
            raise configuration_error("timeout_ms", timeout_ms, "must be positive")
        self.breaker = breaker
        self.policy = policy or RetryPolicy()
        self.timeout_ms = timeout_ms if timeout_ms is not None else self.policy.timeout_ms
        self.handler = handler
        self.on_retry = on_retry
        self.sleep = sleep
        self.rng = rng
        # The attempt timeout sits inside the breaker, so the retry loop
        # itself must not apply the policy timeout a second time.
        self._loop_policy = dataclasses.replace(self.policy, timeout_ms=None)

    @classmethod
    def from_settings(
        cls,
        settings: ResilienceSettings,
        registry: CircuitBreakerRegistry,
        name: str,
        **kwargs: Any,
    ) -> Resilient:
        """Build a facade whose breaker ``name`` lives in ``registry``."""
        breaker = registry.get_or_create(name, **settings.breaker_options())
        return cls(
            breaker,
            settings.retry_policy(),
            timeout_ms=settings.timeout_ms,
            **kwargs,
        )

    def _bounded(self, op: Callable[[], Any], name: str) -> Callable[[], Any]:
        if self.timeout_ms is None:
            return op
        return functools.partial(with_timeout, op, self.timeout_ms, name)

    async def execute(self, op: Callable[[], Any]) -> Any:
        """Run ``op`` with retry, circuit breaking, and the attempt timeout.

        Returns:
            The operation's result, or the breaker fallback's result

        Raises:
            ManagedError: The classified final error, cause chain intact
        """
        name = operation_name(op)
        bounded = self._bounded(op, name)

        async def attempt() -> Any:
            return await self.breaker.execute(bounded)

        attempt.__name__ = name
        executor = RetryExecutor(
            self._loop_policy,
            on_retry=self.on_retry,
            sleep=self.sleep,
            rng=self.rng,
        )
        ctx = RetryContext()

        try:
            return await executor.run(attempt, ctx)
        except ManagedError as error:
            error.with_context(
                operation=name,
                breaker=self.breaker.name,
                attempts=ctx.attempts,
            )
            if self.handler is not None:
                self.handler.handle(error)
            else:
                logger.debug(
                    "resilient.failed",
                    operation=name,
                    breaker=self.breaker.name,
                    kind=error.kind.value,
                    attempts=ctx.attempts,
                )
            raise

    def wrap(self, op: Callable[[], Any]) -> Callable[[], Awaitable[Any]]:
        """Return a zero-argument coroutine function running ``op`` resiliently."""

        async def guarded() -> Any:
            return await self.execute(op)

        guarded.__name__ = operation_name(op)
        return guarded

    def __repr__(self) -> str:
        return (
            f"Resilient(breaker={self.breaker.name!r}, "
            f"max_attempts={self.policy.max_attempts}, timeout_ms={self.timeout_ms})"
        )


__all__ = ["Resilient"]
