"""Faultline Execution — guards that wrap a single operation.

WHY
───
Remote calls fail in three ways that need three different answers: they
fail transiently (retry them), they fail persistently (stop calling for a
while), or they hang (stop waiting).  Each guard handles one of these, and
``Resilient`` composes them in a fixed order.

ARCHITECTURE
────────────
::

    Resilient.execute(op)
      │
      ▼
    RetryExecutor        ─ exponential / linear / fixed backoff + jitter
      └─► CircuitBreaker ─ CLOSED → OPEN → HALF_OPEN → CLOSED
            └─► with_timeout ─ cooperative per-attempt timeout
                  └─► op()

    CircuitBreaker ──► CircuitEvent ──► listeners (breaker_event_logger, ...)

MODULE MAP
──────────
  1. events.py           ─ CircuitEvent, CircuitEventType
  2. timeout.py          ─ with_timeout, TimeoutGuard, @timeout
  3. retry.py            ─ RetryPolicy, RetryExecutor, @retryable
  4. circuit_breaker.py  ─ CircuitBreaker, CircuitBreakerRegistry
  5. fallback.py         ─ with_fallback, fallback_chain, with_default, with_cache
  6. resilient.py        ─ Resilient facade
"""

from faultline.execution.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
)
from faultline.execution.events import CircuitEvent, CircuitEventType
from faultline.execution.fallback import fallback_chain, with_cache, with_default, with_fallback
from faultline.execution.resilient import Resilient
from faultline.execution.retry import (
    NO_RETRY,
    BackoffStrategy,
    RetryContext,
    RetryExecutor,
    RetryPolicy,
    retry,
    retry_on_errors,
    retry_on_kinds,
    retry_on_network_errors,
    retryable,
)
from faultline.execution.timeout import TimeoutGuard, timeout, with_timeout

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "CircuitEvent",
    "CircuitEventType",
    "Resilient",
    "with_fallback",
    "fallback_chain",
    "with_default",
    "with_cache",
    "BackoffStrategy",
    "RetryPolicy",
    "RetryContext",
    "RetryExecutor",
    "NO_RETRY",
    "retry",
    "retryable",
    "retry_on_kinds",
    "retry_on_errors",
    "retry_on_network_errors",
    "TimeoutGuard",
    "with_timeout",
    "timeout",
]
