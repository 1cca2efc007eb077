"""Circuit Events — structured notifications emitted by circuit breakers.

WHY
───
Breaker state lives in memory and changes under load.  Events give
external sinks (log files, metrics systems, dashboards) a record of every
transition and outcome without coupling the breaker to any of them.

ARCHITECTURE
────────────
::

    CircuitBreaker ──emit──► listener set ──► log sink / metrics / tests
                              (called after the state lock is released)

    CircuitEvent
      ├── type       ─ open / close / half-open / success / failure / reset
      ├── name       ─ which breaker
      ├── timestamp  ─ when (UTC)
      └── counters   ─ state, failure_count, success_count, ...

Related modules:
    circuit_breaker.py — emits events
    core/logging.py    — breaker_event_logger() sink
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class CircuitEventType(str, Enum):
    """Kinds of breaker events."""

    OPEN = "open"
    CLOSE = "close"
    HALF_OPEN = "half-open"
    SUCCESS = "success"
    FAILURE = "failure"
    RESET = "reset"


@dataclass(frozen=True)
class CircuitEvent:
    """One breaker notification.

    Example:
        >>> event.to_dict()
        {'type': 'open', 'name': 'warehouse', 'timestamp': '...', 'counters': {...}}
    """

    type: CircuitEventType
    """Event type"""

    name: str
    """Breaker that emitted the event"""

    timestamp: datetime
    """When the event occurred"""

    counters: dict[str, Any] = field(default_factory=dict)
    """Breaker counters at emission time"""

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/storage."""
        return {
            "type": self.type.value,
            "name": self.name,
            "timestamp": self.timestamp.isoformat(),
            "counters": dict(self.counters),
        }


CircuitListener = Callable[[CircuitEvent], None]
