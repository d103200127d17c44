"""Environment-variable-based configuration."""

import os


def get_database_url() -> str:
    """Return the default connection URL from SQLWEAVE_DATABASE_URL."""
    return os.environ.get("SQLWEAVE_DATABASE_URL", "sqlite::memory:")


def get_connect_timeout() -> float:
    """Return the connect/handshake timeout in seconds from SQLWEAVE_CONNECT_TIMEOUT."""
    return float(os.environ.get("SQLWEAVE_CONNECT_TIMEOUT", "10.0"))


def get_fetch_size() -> int:
    """Return the SQLite row batch size for streaming from SQLWEAVE_FETCH_SIZE."""
    return int(os.environ.get("SQLWEAVE_FETCH_SIZE", "256"))


def get_application_name() -> str:
    """Return the Postgres application_name from SQLWEAVE_APPLICATION_NAME."""
    return os.environ.get("SQLWEAVE_APPLICATION_NAME", "sqlweave")


def get_log_level() -> str:
    """Return the logging level from SQLWEAVE_LOG_LEVEL."""
    return os.environ.get("SQLWEAVE_LOG_LEVEL", "WARNING")
