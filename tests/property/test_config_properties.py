"""
Property-based tests for configuration loading and validation.

These tests verify that settings are read from environment variables and
that out-of-range values are rejected.
"""

import os
import pytest
from hypothesis import given, strategies as st, settings
from pydantic import ValidationError
from orchestrator.core.config import Settings

pytestmark = pytest.mark.property

ENV_KEYS = [
    "MYSQL_HOST", "MYSQL_PORT", "SCHEDULER_CHECK_INTERVAL_SECONDS",
    "SCHEDULE_DEFAULT_TIMEZONE", "LOG_LEVEL", "K6_TIMEOUT_SECONDS",
]


def clear_env():
    for key in ENV_KEYS:
        os.environ.pop(key, None)


@given(
    mysql_host=st.text(min_size=1, max_size=100, alphabet=st.characters(whitelist_categories=("Ll", "Nd"))),
    mysql_port=st.integers(min_value=1, max_value=65535),
    interval=st.floats(min_value=0.1, max_value=3600, allow_nan=False),
    timezone=st.sampled_from(["UTC", "Europe/Berlin", "America/New_York", "Asia/Tokyo"]),
    log_level=st.sampled_from(["debug", "INFO", "Warning", "ERROR", "CRITICAL"]),
)
@settings(max_examples=100, deadline=None)
def test_environment_configuration_loading(mysql_host, mysql_port, interval, timezone, log_level):
    """Every setting given in the environment is loaded and normalized"""
    os.environ["MYSQL_HOST"] = mysql_host
    os.environ["MYSQL_PORT"] = str(mysql_port)
    os.environ["SCHEDULER_CHECK_INTERVAL_SECONDS"] = repr(interval)
    os.environ["SCHEDULE_DEFAULT_TIMEZONE"] = timezone
    os.environ["LOG_LEVEL"] = log_level

    try:
        loaded = Settings()

        assert loaded.MYSQL_HOST == mysql_host
        assert loaded.MYSQL_PORT == mysql_port
        assert loaded.SCHEDULER_CHECK_INTERVAL_SECONDS == pytest.approx(interval)
        assert loaded.SCHEDULE_DEFAULT_TIMEZONE == timezone
        assert loaded.LOG_LEVEL == log_level.upper()
    finally:
        clear_env()


@given(port=st.one_of(st.integers(max_value=0), st.integers(min_value=65536)))
@settings(max_examples=50, deadline=None)
def test_out_of_range_port_rejected(port):
    with pytest.raises(ValidationError):
        Settings(MYSQL_PORT=port)


@given(seconds=st.floats(max_value=0, allow_nan=False, allow_infinity=False))
@settings(max_examples=50, deadline=None)
def test_non_positive_timeouts_rejected(seconds):
    with pytest.raises(ValidationError):
        Settings(K6_TIMEOUT_SECONDS=seconds)
    with pytest.raises(ValidationError):
        Settings(SCHEDULER_CHECK_INTERVAL_SECONDS=seconds)


def test_unknown_default_timezone_rejected():
    with pytest.raises(ValidationError) as exc_info:
        Settings(SCHEDULE_DEFAULT_TIMEZONE="Mars/Olympus")
    assert "not a valid timezone" in str(exc_info.value)


def test_unknown_log_level_rejected():
    with pytest.raises(ValidationError):
        Settings(LOG_LEVEL="VERBOSE")


def test_defaults():
    clear_env()
    loaded = Settings(_env_file=None)

    assert loaded.SCHEDULER_ENABLED is True
    assert loaded.SCHEDULER_CHECK_INTERVAL_SECONDS == 30.0
    assert loaded.JEST_TIMEOUT_SECONDS == 30.0
    assert loaded.PLAYWRIGHT_TIMEOUT_SECONDS == 60.0
    assert loaded.K6_TIMEOUT_SECONDS == 180.0
    assert loaded.SCHEDULE_DEFAULT_TIMEZONE == "UTC"
    assert loaded.METRICS_PORT is None
