"""
Unit tests for configuration, logging, database and exception helpers
"""

import logging
from unittest.mock import patch

from sqlalchemy import text

from core.config import Settings
from core.database import create_source_engine, source_connection
from core.exceptions import (
    DataMoverException,
    NonRetryableError,
    RetryableError,
    SchemaCompositionError,
    ServerUnavailableError,
    SourceError,
    StuckUploadError,
    TransmissionError,
)
from core.logging import setup_logging, truncate


class TestSettings:
    """Test environment-driven configuration"""

    def test_defaults(self):
        """Test the documented defaults"""
        settings = Settings(_env_file=None)

        assert settings.MAX_ROWS_PER_POST == 1000
        assert settings.MAX_ERROR_ROWS == 10000
        assert settings.DAYS_PER_CHUNK == 30
        assert settings.QUARANTINE_SUFFIX == ".bad"
        assert settings.MAX_RUN_TIME_SECONDS == 0

    def test_environment_override(self, monkeypatch):
        """Test settings are read from the environment"""
        monkeypatch.setenv("MAX_ROWS_PER_POST", "250")
        monkeypatch.setenv("UPLOAD_URL", "https://other.test/x")

        settings = Settings(_env_file=None)

        assert settings.MAX_ROWS_PER_POST == 250
        assert settings.UPLOAD_URL == "https://other.test/x"


class TestLogging:
    """Test logging helpers"""

    def test_setup_quiets_libraries(self):
        """Test library loggers are raised to WARNING"""
        with patch("core.logging.logging.basicConfig") as basic_config:
            setup_logging("debug")

        assert basic_config.call_args.kwargs["level"] == logging.DEBUG
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_truncate(self):
        """Test long values are cut and marked"""
        assert truncate("abcdef", 3) == "abc..."
        assert truncate("abc", 3) == "abc"
        assert truncate(None, 3) == ""


class TestDatabase:
    """Test source engine helpers"""

    def test_source_connection(self):
        """Test a connection is opened and usable"""
        engine = create_source_engine("sqlite://")

        with source_connection(engine) as conn:
            assert conn.execute(text("SELECT 1")).scalar() == 1
            assert not conn.closed

        assert conn.closed
        engine.dispose()


class TestExceptions:
    """Test the exception hierarchy"""

    def test_retry_tiers(self):
        """Test which errors the runner may retry"""
        assert issubclass(TransmissionError, RetryableError)
        assert issubclass(ServerUnavailableError, RetryableError)
        assert issubclass(StuckUploadError, NonRetryableError)
        assert issubclass(SchemaCompositionError, NonRetryableError)
        assert not issubclass(SourceError, RetryableError)

    def test_to_dict(self):
        """Test structured error context for logging"""
        cause = ValueError("bad")
        error = SourceError("Cannot read", context={"source_name": "orders"}, original_exception=cause)

        payload = error.to_dict()

        assert payload["error_type"] == "SourceError"
        assert payload["context"]["source_name"] == "orders"
        assert payload["original_error"] == "bad"
        assert error.__cause__ is cause
        assert "Caused by: ValueError: bad" in str(error)

    def test_retry_hints(self):
        """Test retryable errors carry retry hints"""
        error = TransmissionError("timed out", max_retries=5, retry_delay=2.0)

        assert isinstance(error, DataMoverException)
        assert error.max_retries == 5
        assert error.retry_delay == 2.0
