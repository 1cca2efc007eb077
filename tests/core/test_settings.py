"""Tests for faultline.core.settings module."""

import os

import pytest
from pydantic import ValidationError

from faultline.core.settings import ResilienceSettings
from faultline.execution.retry import BackoffStrategy, RetryPolicy


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch, tmp_path):
    """Keep host FAULTLINE_* variables and .env files out of these tests."""
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("FAULTLINE_"):
            monkeypatch.delenv(key)


class TestDefaults:
    def test_defaults(self):
        settings = ResilienceSettings()
        assert settings.failure_threshold == 3
        assert settings.success_threshold == 1
        assert settings.reset_timeout_ms == 30_000
        assert settings.half_open_max_calls is None
        assert settings.max_attempts == 3
        assert settings.initial_delay_ms == 1_000.0
        assert settings.max_delay_ms == 30_000.0
        assert settings.backoff == "exponential"
        assert settings.jitter_factor == 0.1
        assert settings.timeout_ms is None
        assert settings.log_format == "json"


class TestEnvironment:
    """Test FAULTLINE_* environment variables."""

    def test_reads_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("FAULTLINE_FAILURE_THRESHOLD", "5")
        monkeypatch.setenv("FAULTLINE_BACKOFF", "Linear")
        monkeypatch.setenv("FAULTLINE_TIMEOUT_MS", "250")

        settings = ResilienceSettings()
        assert settings.failure_threshold == 5
        assert settings.backoff == "linear"
        assert settings.timeout_ms == 250

    def test_reads_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("FAULTLINE_MAX_ATTEMPTS=7\n")
        assert ResilienceSettings().max_attempts == 7


class TestValidation:
    @pytest.mark.parametrize(
        "field,value",
        [
            ("failure_threshold", 0),
            ("success_threshold", 0),
            ("reset_timeout_ms", -1),
            ("half_open_max_calls", 0),
            ("max_attempts", -1),
            ("jitter_factor", 1.5),
            ("timeout_ms", 0),
            ("backoff", "fibonacci"),
            ("log_format", "xml"),
        ],
    )
    def test_rejects_invalid_values(self, field, value):
        with pytest.raises(ValidationError):
            ResilienceSettings(**{field: value})


class TestBuilders:
    """Test value-object builders."""

    def test_breaker_options(self):
        settings = ResilienceSettings(failure_threshold=2, reset_timeout_ms=100)
        assert settings.breaker_options() == {
            "failure_threshold": 2,
            "success_threshold": 1,
            "reset_timeout_ms": 100,
            "half_open_max_calls": None,
        }

    def test_retry_policy(self):
        settings = ResilienceSettings(
            max_attempts=4, initial_delay_ms=100, backoff="fixed", timeout_ms=500
        )
        policy = settings.retry_policy()

        assert isinstance(policy, RetryPolicy)
        assert policy.max_attempts == 4
        assert policy.initial_delay_ms == 100
        assert policy.backoff is BackoffStrategy.FIXED
        assert policy.timeout_ms == 500

    def test_retry_policy_overrides(self):
        policy = ResilienceSettings().retry_policy(jitter_factor=0.0, retry_on_circuit_open=True)
        assert policy.jitter_factor == 0.0
        assert policy.retry_on_circuit_open is True
