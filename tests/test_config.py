"""Tests for environment-variable configuration."""

from sqlweave.config import (
    get_application_name,
    get_connect_timeout,
    get_database_url,
    get_fetch_size,
    get_log_level,
)


def test_defaults(monkeypatch):
    for name in (
        "SQLWEAVE_DATABASE_URL",
        "SQLWEAVE_CONNECT_TIMEOUT",
        "SQLWEAVE_FETCH_SIZE",
        "SQLWEAVE_APPLICATION_NAME",
        "SQLWEAVE_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    assert get_database_url() == "sqlite::memory:"
    assert get_connect_timeout() == 10.0
    assert get_fetch_size() == 256
    assert get_application_name() == "sqlweave"
    assert get_log_level() == "WARNING"


def test_overrides(monkeypatch):
    monkeypatch.setenv("SQLWEAVE_DATABASE_URL", "postgres://localhost/app")
    monkeypatch.setenv("SQLWEAVE_CONNECT_TIMEOUT", "3")
    monkeypatch.setenv("SQLWEAVE_FETCH_SIZE", "10")
    monkeypatch.setenv("SQLWEAVE_LOG_LEVEL", "DEBUG")
    assert get_database_url() == "postgres://localhost/app"
    assert get_connect_timeout() == 3.0
    assert get_fetch_size() == 10
    assert get_log_level() == "DEBUG"
