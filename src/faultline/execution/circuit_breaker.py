"""Circuit breaker pattern for fault tolerance.

Prevents cascading failures by failing fast when a protected resource
keeps failing, and probes for recovery after a cool-down window.

States:
    CLOSED: Normal operation, calls pass through
    OPEN: Failing fast, calls rejected (or served by the fallback)
    HALF_OPEN: Probing whether the resource recovered

Transitions:
    CLOSED    → OPEN       failure_count reaches failure_threshold
    OPEN      → HALF_OPEN  lazily, on the first call or state read once
                           reset_timeout_ms has elapsed since the last failure
    HALF_OPEN → CLOSED     success_threshold consecutive successes
    HALF_OPEN → OPEN       any failure; the reset window restarts

All state lives behind one re-entrant lock that is never held across an
await, so a breaker can be shared by asyncio tasks and threads alike and
every caller observes the same sequence of transitions.  Listeners are
notified after the lock is released.

Example:
    >>> from faultline.execution.circuit_breaker import CircuitBreaker
    >>>
    >>> breaker = CircuitBreaker(
    ...     name="warehouse",
    ...     failure_threshold=5,
    ...     reset_timeout_ms=30_000,
    ... )
    >>> rows = await breaker.execute(submit_query)

    Manual accounting, when the call site cannot be wrapped:

    >>> if breaker.allow_request():
    ...     try:
    ...         result = call_external_service()
    ...         breaker.record_success()
    ...     except Exception as e:
    ...         breaker.record_failure(e)
    ...         raise
"""

from __future__ import annotations

import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from faultline.core.errors import CircuitOpenError, configuration_error
from faultline.core.logging import get_logger
from faultline.execution.events import CircuitEvent, CircuitEventType, CircuitListener
from faultline.execution.timeout import invoke

logger = get_logger(__name__)


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _always_failure(error: BaseException) -> bool:
    return True


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"        # Normal operation
    OPEN = "OPEN"            # Rejecting calls
    HALF_OPEN = "HALF_OPEN"  # Testing recovery


_TRANSITION_EVENTS = {
    CircuitState.OPEN: CircuitEventType.OPEN,
    CircuitState.HALF_OPEN: CircuitEventType.HALF_OPEN,
    CircuitState.CLOSED: CircuitEventType.CLOSE,
}


@dataclass
class CircuitStats:
    """Statistics for circuit breaker monitoring."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    ignored_failures: int = 0
    rejected_requests: int = 0
    fallback_calls: int = 0
    state_changes: int = 0
    consecutive_failures: int = 0
    last_failure_time: datetime | None = None
    last_success_time: datetime | None = None
    last_state_change: datetime | None = None

    @property
    def failure_rate(self) -> float:
        """Calculate failure rate as percentage."""
        total = self.successful_requests + self.failed_requests
        if total == 0:
            return 0.0
        return (self.failed_requests / total) * 100


@dataclass(eq=False)
class CircuitBreaker:
    """Circuit breaker protecting one resource.

    Attributes:
        name: Identifier for this circuit (usually the resource name)
        failure_threshold: Failures in CLOSED before opening (> 0)
        reset_timeout_ms: Open window before a probe is allowed (>= 0)
        success_threshold: Half-open successes needed to close (>= 1)
        half_open_max_calls: Concurrent half-open probes (None = no limit)
        fallback: Called instead of the operation while the circuit rejects
        is_failure: Decides whether an error counts against the circuit
        clock: Monotonic clock in seconds
    """

    name: str = "default"
    failure_threshold: int = 3
    reset_timeout_ms: float = 30_000
    success_threshold: int = 1
    half_open_max_calls: int | None = None
    fallback: Callable[[], Any] | None = None
    is_failure: Callable[[BaseException], bool] = _always_failure
    clock: Callable[[], float] = time.monotonic

    # Internal state
    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _last_state_change_time: float | None = field(default=None, init=False)
    _half_open_calls: int = field(default=0, init=False)
    _generation: int = field(default=0, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _stats: CircuitStats = field(default_factory=CircuitStats, init=False, repr=False)
    _listeners: list[CircuitListener] = field(default_factory=list, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.failure_threshold <= 0:
            raise configuration_error("failure_threshold", self.failure_threshold, "must be > 0")
        if self.reset_timeout_ms < 0:
            raise configuration_error("reset_timeout_ms", self.reset_timeout_ms, "must be >= 0")
        if self.success_threshold < 1:
            raise configuration_error("success_threshold", self.success_threshold, "must be >= 1")
        if self.half_open_max_calls is not None and self.half_open_max_calls < 1:
            raise configuration_error(
                "half_open_max_calls", self.half_open_max_calls, "must be >= 1 or None"
            )
        self._last_state_change_time = self.clock()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current state, after the lazy OPEN → HALF_OPEN check."""
        pending: list[CircuitEvent] = []
        with self._lock:
            state = self._refresh_locked(pending)
        self._dispatch(pending)
        return state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def success_count(self) -> int:
        return self._success_count

    @property
    def last_failure_time(self) -> float | None:
        """Monotonic time of the last counted failure."""
        return self._last_failure_time

    @property
    def last_state_change_time(self) -> float | None:
        return self._last_state_change_time

    @property
    def stats(self) -> CircuitStats:
        """Get circuit statistics."""
        return self._stats

    def time_until_reset_ms(self) -> float:
        """Milliseconds until an OPEN circuit admits a probe (0 otherwise)."""
        with self._lock:
            return self._time_until_reset_locked()

    def snapshot(self) -> dict[str, Any]:
        """Counters for monitoring and event payloads."""
        with self._lock:
            return self._counters_locked()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, listener: CircuitListener) -> None:
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove_listener(self, listener: CircuitListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, op: Callable[[], Any]) -> Any:
        """Run ``op`` through the circuit.

        Returns:
            The operation's result, or the fallback's result when the
            circuit rejects the call and a fallback is configured

        Raises:
            CircuitOpenError: If the circuit rejects the call and there is
                no fallback; ``op`` is not invoked
            Exception: Whatever ``op`` raises, after it has been counted
        """
        pending: list[CircuitEvent] = []
        with self._lock:
            token = self._admit_locked(pending)
            if token is None:
                rejection = self._rejection_locked()
                if self.fallback is not None:
                    self._stats.fallback_calls += 1
        self._dispatch(pending)

        if token is None:
            if self.fallback is not None:
                logger.info("circuit.fallback", breaker=self.name, state=rejection.state)
                return await invoke(self.fallback)
            logger.debug(
                "circuit.rejected",
                breaker=self.name,
                state=rejection.state,
                time_until_reset_ms=round(rejection.time_until_reset_ms, 2),
            )
            raise rejection

        try:
            result = await invoke(op)
        except Exception as exc:
            self._record_failure(exc, token)
            raise
        except BaseException:
            # Cancellation: the outcome is unknown, only free the probe slot.
            self._release(token)
            raise
        self._record_success(token)
        return result

    def wrap(self, op: Callable[[], Any]) -> Callable[[], Awaitable[Any]]:
        """Return a zero-argument coroutine function guarded by this circuit."""

        async def guarded() -> Any:
            return await self.execute(op)

        guarded.__name__ = getattr(op, "__name__", "operation")
        return guarded

    def allow_request(self) -> bool:
        """Check if a request should be allowed (manual accounting).

        Every True answer must be followed by record_success() or
        record_failure().
        """
        pending: list[CircuitEvent] = []
        with self._lock:
            token = self._admit_locked(pending)
        self._dispatch(pending)
        return token is not None

    def record_success(self) -> None:
        """Record a successful request (manual accounting)."""
        self._record_success(self._generation)

    def record_failure(self, error: BaseException | None = None) -> None:
        """Record a failed request (manual accounting)."""
        self._record_failure(error, self._generation)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def force_open(self) -> None:
        """Force circuit to open state (for maintenance)."""
        pending: list[CircuitEvent] = []
        with self._lock:
            self._transition_locked(CircuitState.OPEN, pending, force=True)
            self._last_failure_time = self.clock()
        self._dispatch(pending)

    def force_close(self) -> None:
        """Force circuit to closed state, clearing the counters."""
        pending: list[CircuitEvent] = []
        with self._lock:
            self._transition_locked(CircuitState.CLOSED, pending, force=True)
        self._dispatch(pending)

    def reset(self) -> None:
        """Reset circuit to its initial CLOSED state (idempotent)."""
        pending: list[CircuitEvent] = []
        with self._lock:
            if self._state is not CircuitState.CLOSED:
                self._stats.state_changes += 1
                self._stats.last_state_change = utcnow()
                self._last_state_change_time = self.clock()
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._half_open_calls = 0
            self._last_failure_time = None
            self._stats.consecutive_failures = 0
            self._generation += 1
            pending.append(self._event_locked(CircuitEventType.RESET))
        logger.info("circuit.reset", breaker=self.name)
        self._dispatch(pending)

    # ------------------------------------------------------------------
    # Internals (callers hold self._lock for *_locked methods)
    # ------------------------------------------------------------------

    def _refresh_locked(self, pending: list[CircuitEvent]) -> CircuitState:
        if self._state is CircuitState.OPEN and self._last_failure_time is not None:
            elapsed_ms = (self.clock() - self._last_failure_time) * 1000
            if elapsed_ms >= self.reset_timeout_ms:
                self._transition_locked(CircuitState.HALF_OPEN, pending)
        return self._state

    def _admit_locked(self, pending: list[CircuitEvent]) -> int | None:
        """Admit a call, returning its generation token, or None if rejected."""
        state = self._refresh_locked(pending)
        self._stats.total_requests += 1

        if state is CircuitState.CLOSED:
            return self._generation

        if state is CircuitState.HALF_OPEN and (
            self.half_open_max_calls is None
            or self._half_open_calls < self.half_open_max_calls
        ):
            self._half_open_calls += 1
            return self._generation

        self._stats.rejected_requests += 1
        return None

    def _rejection_locked(self) -> CircuitOpenError:
        return CircuitOpenError(
            self.name,
            state=self._state.value,
            failure_count=self._failure_count,
            time_until_reset_ms=self._time_until_reset_locked(),
        )

    def _time_until_reset_locked(self) -> float:
        if self._state is not CircuitState.OPEN or self._last_failure_time is None:
            return 0.0
        elapsed_ms = (self.clock() - self._last_failure_time) * 1000
        return max(0.0, self.reset_timeout_ms - elapsed_ms)

    def _release_locked(self, token: int) -> None:
        if (
            token == self._generation
            and self._state is CircuitState.HALF_OPEN
            and self._half_open_calls > 0
        ):
            self._half_open_calls -= 1

    def _release(self, token: int) -> None:
        with self._lock:
            self._release_locked(token)

    def _record_success(self, token: int) -> None:
        pending: list[CircuitEvent] = []
        with self._lock:
            self._release_locked(token)
            self._stats.successful_requests += 1
            self._stats.consecutive_failures = 0
            self._stats.last_success_time = utcnow()
            if token != self._generation:
                # Admitted before the last transition: stats only.
                return

            if self._state is CircuitState.CLOSED:
                self._failure_count = 0
            elif self._state is CircuitState.HALF_OPEN:
                self._success_count += 1

            pending.append(self._event_locked(CircuitEventType.SUCCESS))

            if (
                self._state is CircuitState.HALF_OPEN
                and self._success_count >= self.success_threshold
            ):
                self._transition_locked(CircuitState.CLOSED, pending)
        self._dispatch(pending)

    def _record_failure(self, error: BaseException | None, token: int) -> None:
        counts = error is None or self.is_failure(error)
        pending: list[CircuitEvent] = []
        with self._lock:
            self._release_locked(token)
            if not counts:
                self._stats.ignored_failures += 1
                return

            self._stats.failed_requests += 1
            self._stats.consecutive_failures += 1
            self._stats.last_failure_time = utcnow()
            if token != self._generation:
                return

            if self._state is not CircuitState.OPEN:
                self._failure_count += 1
                self._last_failure_time = self.clock()

            pending.append(self._event_locked(CircuitEventType.FAILURE))

            if self._state is CircuitState.CLOSED:
                if self._failure_count >= self.failure_threshold:
                    self._transition_locked(CircuitState.OPEN, pending)
            elif self._state is CircuitState.HALF_OPEN:
                # Any failure in half-open reopens the circuit
                self._transition_locked(CircuitState.OPEN, pending)
        self._dispatch(pending)

    def _transition_locked(
        self,
        new_state: CircuitState,
        pending: list[CircuitEvent],
        *,
        force: bool = False,
    ) -> None:
        old_state = self._state
        if old_state is new_state and not force:
            return

        self._state = new_state
        self._generation += 1
        self._half_open_calls = 0
        self._last_state_change_time = self.clock()
        if old_state is not new_state:
            self._stats.state_changes += 1
            self._stats.last_state_change = utcnow()

        if new_state is CircuitState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        else:
            self._success_count = 0

        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            "circuit.transition",
            breaker=self.name,
            previous_state=old_state.value,
            next_state=new_state.value,
            failure_count=self._failure_count,
            forced=force,
        )
        pending.append(self._event_locked(_TRANSITION_EVENTS[new_state]))

    def _counters_locked(self) -> dict[str, Any]:
        return {
            "state": self._state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
            "consecutive_failures": self._stats.consecutive_failures,
            "total_requests": self._stats.total_requests,
            "rejected_requests": self._stats.rejected_requests,
        }

    def _event_locked(self, event_type: CircuitEventType) -> CircuitEvent:
        return CircuitEvent(
            type=event_type,
            name=self.name,
            timestamp=utcnow(),
            counters=self._counters_locked(),
        )

    def _dispatch(self, events: list[CircuitEvent]) -> None:
        if not events:
            return
        with self._lock:
            listeners = list(self._listeners)
        for event in events:
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception(
                        "circuit.listener_failed",
                        breaker=self.name,
                        event=event.type.value,
                    )


class CircuitBreakerRegistry:
    """Registry of named circuit breakers, one per protected resource.

    Construct one at startup and pass it to whoever needs breakers; there
    is no process-wide default instance.
    """

    def __init__(self, **defaults: Any):
        self._defaults = defaults
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.RLock()

    def get(self, name: str) -> CircuitBreaker | None:
        """Get a circuit breaker by name, returns None if not found."""
        with self._lock:
            return self._breakers.get(name)

    def get_or_create(self, name: str, **options: Any) -> CircuitBreaker:
        """Get or create a circuit breaker by name.

        ``options`` (merged over the registry defaults) only apply when the
        breaker is created.
        """
        with self._lock:
            if name not in self._breakers:
                config = {**self._defaults, **options}
                self._breakers[name] = CircuitBreaker(name=name, **config)
            return self._breakers[name]

    def register(self, breaker: CircuitBreaker) -> CircuitBreaker:
        """Add an already-built breaker under its own name."""
        with self._lock:
            existing = self._breakers.get(breaker.name)
            if existing is not None and existing is not breaker:
                raise configuration_error("name", breaker.name, "breaker already registered")
            self._breakers[breaker.name] = breaker
            return breaker

    def names(self) -> list[str]:
        """List all registered circuit breaker names."""
        with self._lock:
            return list(self._breakers.keys())

    def remove(self, name: str) -> None:
        """Remove a circuit breaker by name."""
        with self._lock:
            self._breakers.pop(name, None)

    def clear(self) -> None:
        """Remove all circuit breakers."""
        with self._lock:
            self._breakers.clear()

    def reset_all(self) -> None:
        """Reset all circuit breakers."""
        with self._lock:
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()

    def snapshot(self) -> dict[str, dict[str, Any]]:
        """Counters of every registered breaker, keyed by name."""
        with self._lock:
            breakers = dict(self._breakers)
        return {name: breaker.snapshot() for name, breaker in breakers.items()}

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)
