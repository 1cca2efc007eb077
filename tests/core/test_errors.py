"""Tests for faultline.core.errors module."""

import errno

import pytest

from faultline.core.errors import (
    KIND_TRAITS,
    CircuitOpenError,
    ErrorKind,
    ManagedError,
    OperationTimeoutError,
    Severity,
    classify,
    configuration_error,
    is_retryable,
    wrap,
)


class HttpError(Exception):
    def __init__(self, status_code: int):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


class CodedError(Exception):
    def __init__(self, code: str, message: str = "socket trouble"):
        super().__init__(message)
        self.code = code


class TestKindTraits:
    """Test the kind → severity / retryable / code table."""

    @pytest.mark.parametrize(
        "kind,severity,retryable,code",
        [
            (ErrorKind.VALIDATION, Severity.WARNING, False, "VALIDATION_ERROR"),
            (ErrorKind.CONFIGURATION, Severity.ERROR, False, "CONFIGURATION_ERROR"),
            (ErrorKind.TIMEOUT, Severity.WARNING, True, "TIMEOUT_ERROR"),
            (ErrorKind.CIRCUIT_OPEN, Severity.WARNING, False, "CIRCUIT_OPEN"),
            (ErrorKind.NETWORK, Severity.ERROR, True, "NETWORK_ERROR"),
            (ErrorKind.SYSTEM, Severity.CRITICAL, False, "SYSTEM_ERROR"),
            (ErrorKind.NOT_FOUND, Severity.WARNING, False, "NOT_FOUND_ERROR"),
            (ErrorKind.UNKNOWN, Severity.ERROR, True, "UNKNOWN_ERROR"),
        ],
    )
    def test_defaults_follow_kind(self, kind, severity, retryable, code):
        """Severity, retryable and code default from the kind."""
        error = ManagedError("boom", kind=kind)
        assert error.severity is severity
        assert error.retryable is retryable
        assert error.code == code

    def test_every_kind_has_traits(self):
        assert set(KIND_TRAITS) == set(ErrorKind)


class TestManagedError:
    """Test ManagedError construction and helpers."""

    def test_defaults(self):
        error = ManagedError("something odd")
        assert error.kind is ErrorKind.UNKNOWN
        assert error.component == "unknown"
        assert error.context == {}
        assert error.cause is None
        assert error.timestamp.tzinfo is not None
        assert str(error) == "something odd"

    def test_overrides_are_kept(self):
        error = ManagedError(
            "upstream flaked",
            kind=ErrorKind.VALIDATION,
            severity=Severity.INFO,
            retryable=True,
            code="ROW_REJECTED",
            component="loader",
        )
        assert error.severity is Severity.INFO
        assert error.retryable is True
        assert error.code == "ROW_REJECTED"
        assert error.component == "loader"

    def test_system_is_always_critical(self):
        """SYSTEM severity cannot be lowered."""
        error = ManagedError("oom", kind=ErrorKind.SYSTEM, severity=Severity.INFO)
        assert error.severity is Severity.CRITICAL

    def test_context_is_copied(self):
        original = {"row": 1}
        error = ManagedError("bad", context=original)
        original["row"] = 2
        assert error.context == {"row": 1}

    def test_with_context_merges(self):
        error = ManagedError("bad", context={"row": 1})
        returned = error.with_context(column="email")
        assert returned is error
        assert error.context == {"row": 1, "column": "email"}

    def test_cause_chain(self):
        root = ConnectionResetError("reset by peer")
        inner = ManagedError("fetch failed", kind=ErrorKind.NETWORK, cause=root)
        outer = ManagedError("sync failed", kind=ErrorKind.NETWORK, cause=inner)
        assert outer.__cause__ is inner
        assert outer.root_cause() is root

    def test_to_record(self):
        error = ManagedError(
            "fetch failed",
            kind=ErrorKind.NETWORK,
            component="client",
            context={"host": "db"},
            cause=ValueError("bad port"),
        )
        record = error.to_record()
        assert record["kind"] == "NETWORK"
        assert record["code"] == "NETWORK_ERROR"
        assert record["severity"] == "ERROR"
        assert record["component"] == "client"
        assert record["context"] == {"host": "db"}
        assert record["cause"] == {"type": "ValueError", "message": "bad port"}
        assert isinstance(record["timestamp"], str)

    def test_to_record_nests_managed_causes(self):
        inner = ManagedError("inner", kind=ErrorKind.TIMEOUT)
        record = ManagedError("outer", cause=inner).to_record()
        assert record["cause"]["kind"] == "TIMEOUT"
        assert record["cause"]["cause"] is None


class TestSynthesizedErrors:
    """Test framework-synthesized error types."""

    def test_circuit_open_error(self):
        error = CircuitOpenError(
            "warehouse", state="OPEN", failure_count=3, time_until_reset_ms=250.0
        )
        assert isinstance(error, ManagedError)
        assert error.kind is ErrorKind.CIRCUIT_OPEN
        assert error.retryable is False
        assert error.component == "circuit_breaker"
        assert error.context["breaker"] == "warehouse"
        assert error.context["time_until_reset_ms"] == 250.0
        assert "warehouse" in str(error)

    def test_operation_timeout_error(self):
        error = OperationTimeoutError(50, operation_name="probe", elapsed_ms=51.2)
        assert error.kind is ErrorKind.TIMEOUT
        assert error.retryable is True
        assert error.timeout_ms == 50
        assert error.context["abandoned"] is True
        assert str(error) == "Operation 'probe' timed out after 50ms"


class TestClassify:
    """Test classification of raw exceptions."""

    @pytest.mark.parametrize(
        "error,kind",
        [
            (MemoryError(), ErrorKind.SYSTEM),
            (RecursionError("too deep"), ErrorKind.SYSTEM),
            (TimeoutError("slow"), ErrorKind.TIMEOUT),
            (ConnectionRefusedError("refused"), ErrorKind.NETWORK),
            (CodedError("ECONNRESET"), ErrorKind.NETWORK),
            (CodedError("econnrefused"), ErrorKind.NETWORK),
            (OSError(errno.ECONNREFUSED, "refused"), ErrorKind.NETWORK),
            (FileNotFoundError("missing.csv"), ErrorKind.NOT_FOUND),
            (KeyError("customer"), ErrorKind.UNKNOWN),
            (IndexError("list index out of range"), ErrorKind.UNKNOWN),
            (HttpError(404), ErrorKind.NOT_FOUND),
            (HttpError(504), ErrorKind.TIMEOUT),
            (HttpError(503), ErrorKind.NETWORK),
            (HttpError(429), ErrorKind.NETWORK),
            (HttpError(400), ErrorKind.VALIDATION),
            (ValueError("bad date"), ErrorKind.VALIDATION),
            (TypeError("expected str"), ErrorKind.VALIDATION),
            (RuntimeError("request timed out"), ErrorKind.TIMEOUT),
            (RuntimeError("network is unreachable"), ErrorKind.NETWORK),
            (RuntimeError("table not found"), ErrorKind.NOT_FOUND),
            (RuntimeError("missing config key"), ErrorKind.CONFIGURATION),
            (RuntimeError("something odd"), ErrorKind.UNKNOWN),
        ],
    )
    def test_classification_table(self, error, kind):
        assert classify(error) is kind

    def test_class_name_rules(self):
        class ConfigurationError(Exception):
            pass

        class RecordNotFoundError(Exception):
            pass

        class NotFoundError(Exception):
            pass

        assert classify(ConfigurationError("x")) is ErrorKind.CONFIGURATION
        assert classify(NotFoundError("x")) is ErrorKind.NOT_FOUND
        assert classify(RecordNotFoundError("x")) is ErrorKind.UNKNOWN

    def test_lookup_errors_are_not_missing_resources(self):
        """A KeyError from a bug stays retryable UNKNOWN, not NOT_FOUND."""
        assert classify(KeyError("customer_id")) is ErrorKind.UNKNOWN
        assert is_retryable(IndexError("list index out of range"))
        assert classify(KeyError("customer not found")) is ErrorKind.NOT_FOUND

    def test_managed_error_keeps_its_kind(self):
        error = ManagedError("timeout in config", kind=ErrorKind.VALIDATION)
        assert classify(error) is ErrorKind.VALIDATION


class TestWrap:
    """Test wrap()."""

    def test_wrap_is_idempotent(self):
        error = ManagedError("bad", kind=ErrorKind.VALIDATION)
        assert wrap(error) is error
        assert wrap(error, {"row": 7}) is error
        assert error.context == {"row": 7}
        assert error.kind is ErrorKind.VALIDATION

    def test_wrap_raw_error(self):
        raw = ConnectionResetError("reset by peer")
        error = wrap(raw, {"attempt": 1}, component="client")
        assert error.kind is ErrorKind.NETWORK
        assert error.cause is raw
        assert error.__cause__ is raw
        assert error.message == "reset by peer"
        assert error.component == "client"
        assert error.context == {"attempt": 1}

    def test_wrap_uses_type_name_for_empty_message(self):
        assert wrap(RuntimeError()).message == "RuntimeError"


class TestHelpers:
    def test_is_retryable(self):
        assert is_retryable(ConnectionError("down"))
        assert not is_retryable(ValueError("bad"))
        assert not is_retryable(ManagedError("x", kind=ErrorKind.NETWORK, retryable=False))

    def test_configuration_error(self):
        error = configuration_error("failure_threshold", 0, "must be > 0")
        assert error.kind is ErrorKind.CONFIGURATION
        assert error.context == {"setting": "failure_threshold", "value": 0}
        assert "failure_threshold" in str(error)
