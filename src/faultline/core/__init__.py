"""Faultline Core -- error taxonomy and the ambient stack.

Manifesto:
    A resilience layer is only as good as what it tells you about failures.
    ``faultline.core`` turns any exception into one classified record
    (``ManagedError``), logs it through structlog, and reads its tuning
    from the environment, so the execution layer can make retry and
    circuit decisions from ``kind`` alone.

    - **One error record:** kind-tagged, not a deep class hierarchy
    - **One classification table:** ordered rules, first match wins
    - **No singletons:** handlers and settings are constructed and injected

Architecture::

    errors.py      ErrorKind, Severity, ManagedError, classify(), wrap()
    handler.py     ErrorHandler (log by severity, bounded history, summary)
    logging.py     structlog configuration, breaker_event_logger()
    settings.py    ResilienceSettings (pydantic-settings, FAULTLINE_ prefix)
"""

from faultline.core.errors import (
    CircuitOpenError,
    ErrorKind,
    ManagedError,
    OperationTimeoutError,
    Severity,
    classify,
    is_retryable,
    wrap,
)
from faultline.core.handler import ErrorHandler
from faultline.core.logging import (
    LogContext,
    breaker_event_logger,
    configure_logging,
    get_logger,
)
from faultline.core.settings import ResilienceSettings

__all__ = [
    "ErrorKind",
    "Severity",
    "ManagedError",
    "CircuitOpenError",
    "OperationTimeoutError",
    "classify",
    "wrap",
    "is_retryable",
    "ErrorHandler",
    "configure_logging",
    "get_logger",
    "LogContext",
    "breaker_event_logger",
    "ResilienceSettings",
]
