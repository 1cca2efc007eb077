"""
Classified error records for the faultline resilience layer.

Every failure that crosses a resilience boundary is turned into a
ManagedError: one concrete exception type carrying a ``kind`` tag from a
closed taxonomy, plus the metadata retry and alerting decisions need.

Manifesto:
    - **One record type:** Behavior hangs off ``kind``, not off subclasses
    - **Explicit retry semantics:** Each kind knows if it is retryable
    - **Rich context:** Errors carry a diagnostics mapping for logging
    - **Error chaining:** The raw failure is kept as ``cause``

Architecture:
    ::

        raw exception ──► classify() ──► ErrorKind
              │                              │
              └──────────► wrap() ◄──────────┘
                             │
                             ▼
        ┌─────────────────────────────────────────────────────────────┐
        │                       ManagedError                          │
        │  kind, message, code, severity, retryable, component,       │
        │  context, timestamp, cause                                  │
        ├─────────────────────────────────────────────────────────────┤
        │  CircuitOpenError        (CIRCUIT_OPEN, synthesized)        │
        │  OperationTimeoutError   (TIMEOUT, synthesized)             │
        └─────────────────────────────────────────────────────────────┘

Examples:
    Wrapping a raw failure:

    >>> error = wrap(ConnectionResetError("peer reset"), {"resource": "warehouse"})
    >>> error.kind
    <ErrorKind.NETWORK: 'NETWORK'>
    >>> error.retryable
    True

    Wrapping is idempotent:

    >>> wrap(error) is error
    True

Guardrails:
    ❌ DON'T: Build a ManagedError around another ManagedError
    ✅ DO: Call wrap(), which merges context into the existing record

    ❌ DON'T: Swallow SYSTEM errors
    ✅ DO: Let them propagate after classification

Tags:
    error-handling, classification, retry-logic, error-context, faultline

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

import errno
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class ErrorKind(str, Enum):
    """Closed error taxonomy used for routing and retry decisions."""

    VALIDATION = "VALIDATION"        # Bad input, schema violations
    CONFIGURATION = "CONFIGURATION"  # Missing or invalid settings
    TIMEOUT = "TIMEOUT"              # Deadline exceeded
    CIRCUIT_OPEN = "CIRCUIT_OPEN"    # Rejected by an open breaker
    NETWORK = "NETWORK"              # Connection, DNS, upstream 5xx
    SYSTEM = "SYSTEM"                # Fatal: memory, interpreter state
    NOT_FOUND = "NOT_FOUND"          # Missing resource
    UNKNOWN = "UNKNOWN"              # Uncategorized


class Severity(str, Enum):
    """Severity levels, ordered from least to most severe."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class KindTraits:
    """Defaults derived from an ErrorKind."""

    severity: Severity
    retryable: bool
    code: str


KIND_TRAITS: dict[ErrorKind, KindTraits] = {
    ErrorKind.VALIDATION: KindTraits(Severity.WARNING, False, "VALIDATION_ERROR"),
    ErrorKind.CONFIGURATION: KindTraits(Severity.ERROR, False, "CONFIGURATION_ERROR"),
    ErrorKind.TIMEOUT: KindTraits(Severity.WARNING, True, "TIMEOUT_ERROR"),
    ErrorKind.CIRCUIT_OPEN: KindTraits(Severity.WARNING, False, "CIRCUIT_OPEN"),
    ErrorKind.NETWORK: KindTraits(Severity.ERROR, True, "NETWORK_ERROR"),
    ErrorKind.SYSTEM: KindTraits(Severity.CRITICAL, False, "SYSTEM_ERROR"),
    ErrorKind.NOT_FOUND: KindTraits(Severity.WARNING, False, "NOT_FOUND_ERROR"),
    ErrorKind.UNKNOWN: KindTraits(Severity.ERROR, True, "UNKNOWN_ERROR"),
}


def default_severity(kind: ErrorKind) -> Severity:
    return KIND_TRAITS[kind].severity


def default_retryable(kind: ErrorKind) -> bool:
    return KIND_TRAITS[kind].retryable


def error_code(kind: ErrorKind) -> str:
    return KIND_TRAITS[kind].code


class ManagedError(Exception):
    """
    A classified failure record.

    ManagedError is the single error type the resilience layer surfaces.
    Severity, retryability and code default from ``kind`` and may be
    overridden at construction, except that SYSTEM errors are always
    CRITICAL.  After construction the record only changes through
    ``with_context()``, which adds keys and never removes them.

    Examples:
        >>> error = ManagedError("bad row", kind=ErrorKind.VALIDATION)
        >>> error.severity
        <Severity.WARNING: 'WARNING'>
        >>> error.with_context(row=42).context
        {'row': 42}

    Attributes:
        kind: ErrorKind tag
        message: Human-readable text
        code: Machine-readable code
        severity: Severity level
        retryable: Whether retrying may succeed
        component: Component that observed the failure
        context: Diagnostics mapping
        timestamp: Creation instant (UTC)
        cause: Underlying exception, if any
    """

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind = ErrorKind.UNKNOWN,
        severity: Severity | None = None,
        retryable: bool | None = None,
        code: str | None = None,
        component: str | None = None,
        context: Mapping[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        if kind is ErrorKind.SYSTEM:
            self.severity = Severity.CRITICAL
        else:
            self.severity = severity or default_severity(kind)
        self.retryable = retryable if retryable is not None else default_retryable(kind)
        self.code = code or error_code(kind)
        self.component = component or "unknown"
        self.context: dict[str, Any] = dict(context or {})
        self.timestamp = utcnow()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **values: Any) -> ManagedError:
        """Merge diagnostics into this error (fluent API)."""
        self.context.update(values)
        return self

    def root_cause(self) -> BaseException:
        """Follow the cause chain to the original failure."""
        current: BaseException = self
        while isinstance(current, ManagedError) and current.cause is not None:
            current = current.cause
        return current

    def to_record(self) -> dict[str, Any]:
        """Convert error to a plain mapping for logging/serialization."""
        return {
            "kind": self.kind.value,
            "message": self.message,
            "code": self.code,
            "severity": self.severity.value,
            "component": self.component,
            "context": dict(self.context),
            "timestamp": self.timestamp.isoformat(),
            "cause": _cause_record(self.cause),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, kind={self.kind.value})"


def _cause_record(cause: BaseException | None) -> dict[str, Any] | None:
    if cause is None:
        return None
    if isinstance(cause, ManagedError):
        return cause.to_record()
    return {"type": type(cause).__name__, "message": str(cause)}


# =============================================================================
# FRAMEWORK-SYNTHESIZED ERRORS
# =============================================================================


class CircuitOpenError(ManagedError):
    """Raised when a breaker rejects a call without running it."""

    def __init__(
        self,
        breaker_name: str,
        *,
        state: str,
        failure_count: int,
        time_until_reset_ms: float,
        message: str | None = None,
    ):
        self.breaker_name = breaker_name
        self.state = state
        self.failure_count = failure_count
        self.time_until_reset_ms = time_until_reset_ms
        super().__init__(
            message or f"Circuit '{breaker_name}' is {state.lower()}, rejecting call",
            kind=ErrorKind.CIRCUIT_OPEN,
            component="circuit_breaker",
            context={
                "breaker": breaker_name,
                "state": state,
                "failure_count": failure_count,
                "time_until_reset_ms": time_until_reset_ms,
            },
        )


class OperationTimeoutError(ManagedError):
    """Raised when an operation outlives its timeout.

    The timeout is cooperative: the caller stops waiting, but the
    operation itself may still be running (``context["abandoned"]``).
    """

    def __init__(
        self,
        timeout_ms: float,
        *,
        operation_name: str = "operation",
        elapsed_ms: float | None = None,
    ):
        self.timeout_ms = timeout_ms
        self.operation_name = operation_name
        self.elapsed_ms = elapsed_ms
        msg = f"Operation '{operation_name}' timed out after {timeout_ms}ms"
        super().__init__(
            msg,
            kind=ErrorKind.TIMEOUT,
            component="timeout",
            context={
                "timeout_ms": timeout_ms,
                "operation": operation_name,
                "elapsed_ms": elapsed_ms,
                "abandoned": True,
            },
        )


# =============================================================================
# CLASSIFICATION
# =============================================================================

Rule = Callable[[BaseException], bool]

NETWORK_ERRNO_CODES = frozenset({
    "ECONNRESET",
    "ECONNREFUSED",
    "ECONNABORTED",
    "ETIMEDOUT",
    "ESOCKETTIMEDOUT",
    "ENOTFOUND",
    "ENETUNREACH",
    "EHOSTUNREACH",
    "EPIPE",
    "EAI_AGAIN",
})

_NETWORK_ERRNOS = frozenset(
    getattr(errno, name) for name in NETWORK_ERRNO_CODES if hasattr(errno, name)
)


def _code_of(error: BaseException) -> str | None:
    code = getattr(error, "code", None)
    if isinstance(code, str):
        return code.upper()
    number = getattr(error, "errno", None)
    if isinstance(number, int):
        return errno.errorcode.get(number)
    return None


def _status_of(error: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    value = getattr(response, "status_code", None)
    return value if isinstance(value, int) else None


def _name_in(*names: str) -> Rule:
    wanted = {n.lower() for n in names}

    def rule(error: BaseException) -> bool:
        return any(cls.__name__.lower() in wanted for cls in type(error).__mro__)

    return rule


def _message_has(*fragments: str) -> Rule:
    def rule(error: BaseException) -> bool:
        text = str(error).lower()
        return any(fragment in text for fragment in fragments)

    return rule


def _status_in(low: int, high: int, *extra: int) -> Rule:
    def rule(error: BaseException) -> bool:
        status = _status_of(error)
        return status is not None and (low <= status <= high or status in extra)

    return rule


def _status_is(*statuses: int) -> Rule:
    def rule(error: BaseException) -> bool:
        return _status_of(error) in statuses

    return rule


def _is_network_code(error: BaseException) -> bool:
    if getattr(error, "errno", None) in _NETWORK_ERRNOS:
        return True
    return _code_of(error) in NETWORK_ERRNO_CODES


# Ordered: the first matching rule wins.  Type checks come before status
# codes, which come before message heuristics.
CLASSIFICATION_RULES: list[tuple[Rule, ErrorKind]] = [
    (lambda e: isinstance(e, (MemoryError, SystemError, RecursionError)), ErrorKind.SYSTEM),
    (lambda e: isinstance(e, TimeoutError), ErrorKind.TIMEOUT),
    (_name_in("ConfigError", "ConfigurationError", "SettingsError"), ErrorKind.CONFIGURATION),
    (_is_network_code, ErrorKind.NETWORK),
    (lambda e: isinstance(e, ConnectionError), ErrorKind.NETWORK),
    (lambda e: isinstance(e, FileNotFoundError), ErrorKind.NOT_FOUND),
    (_name_in("NotFoundError", "NotFound"), ErrorKind.NOT_FOUND),
    (_name_in("ValidationError"), ErrorKind.VALIDATION),
    (_status_is(404, 410), ErrorKind.NOT_FOUND),
    (_status_is(408, 504), ErrorKind.TIMEOUT),
    (_status_in(500, 599, 429), ErrorKind.NETWORK),
    (_status_in(400, 499), ErrorKind.VALIDATION),
    (lambda e: isinstance(e, (ValueError, TypeError)), ErrorKind.VALIDATION),
    (_message_has("timed out", "timeout", "deadline exceeded"), ErrorKind.TIMEOUT),
    (_message_has("network", "connection", "unreachable"), ErrorKind.NETWORK),
    (_message_has("not found", "no such"), ErrorKind.NOT_FOUND),
    (_message_has("config"), ErrorKind.CONFIGURATION),
]


def classify(error: BaseException) -> ErrorKind:
    """Map a raw failure to an ErrorKind; UNKNOWN when nothing matches."""
    if isinstance(error, ManagedError):
        return error.kind
    for rule, kind in CLASSIFICATION_RULES:
        if rule(error):
            return kind
    return ErrorKind.UNKNOWN


def wrap(
    error: BaseException,
    context: Mapping[str, Any] | None = None,
    *,
    component: str | None = None,
) -> ManagedError:
    """
    Turn any failure into a ManagedError.

    A ManagedError is returned as the same object with ``context`` merged
    in; its kind and severity are untouched.  Anything else is classified
    and wrapped with the raw error as ``cause``.
    """
    if isinstance(error, ManagedError):
        if context:
            error.with_context(**context)
        return error
    return ManagedError(
        str(error) or type(error).__name__,
        kind=classify(error),
        component=component,
        context=context,
        cause=error,
    )


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, ManagedError):
        return error.retryable
    return default_retryable(classify(error))


def configuration_error(setting: str, value: Any, reason: str) -> ManagedError:
    """Build the CONFIGURATION error raised for invalid options."""
    return ManagedError(
        f"Invalid configuration for '{setting}': {reason} (got {value!r})",
        kind=ErrorKind.CONFIGURATION,
        component="config",
        context={"setting": setting, "value": value},
    )


__all__ = [
    "ErrorKind",
    "Severity",
    "KIND_TRAITS",
    "ManagedError",
    "CircuitOpenError",
    "OperationTimeoutError",
    "NETWORK_ERRNO_CODES",
    "CLASSIFICATION_RULES",
    "classify",
    "wrap",
    "is_retryable",
    "default_severity",
    "default_retryable",
    "error_code",
    "configuration_error",
]
