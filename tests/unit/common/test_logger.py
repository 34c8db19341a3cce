"""Tests for logging setup."""

import logging
import logging.handlers
import uuid

import pytest

from ehr.common.logger import AUDIT_FAILURE_LOGGER, configure_logging, setup_logger
from ehr.core.config import Settings


def unique_name() -> str:
    return f"ehr-test-{uuid.uuid4().hex[:8]}"


@pytest.fixture
def clean_loggers():
    """Remove handlers that configure_logging adds to the shared loggers."""
    yield
    for name in ("ehr", AUDIT_FAILURE_LOGGER):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


class TestSetupLogger:
    """Tests for setup_logger."""

    def test_console_only(self):
        logger = setup_logger(unique_name(), level="debug", file_logging=False)

        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], logging.StreamHandler)

    def test_file_handler_rotates(self, tmp_path):
        name = unique_name()
        logger = setup_logger(name, log_dir=str(tmp_path / "logs"), console_logging=False,
                              max_bytes=1024, backup_count=2)

        handler = logger.handlers[0]
        assert isinstance(handler, logging.handlers.RotatingFileHandler)
        assert handler.maxBytes == 1024
        assert handler.backupCount == 2

        logger.warning("Access denied: principal u-1")
        handler.flush()
        assert "Access denied" in (tmp_path / "logs" / f"{name}.log").read_text()

    def test_custom_filename(self, tmp_path):
        logger = setup_logger(unique_name(), log_dir=str(tmp_path), console_logging=False,
                              filename="custom.log")
        assert logger.handlers[0].baseFilename == str(tmp_path / "custom.log")

    def test_repeat_call_updates_level_only(self):
        name = unique_name()
        setup_logger(name, file_logging=False)
        logger = setup_logger(name, level="ERROR", file_logging=False)
        assert len(logger.handlers) == 1
        assert logger.level == logging.ERROR

    def test_invalid_level(self):
        with pytest.raises(ValueError, match="Invalid log level"):
            setup_logger(unique_name(), level="LOUD", file_logging=False)


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_console_only_by_default(self, clean_loggers):
        settings = Settings(_env_file=None, log_to_file=False, log_level="WARNING")
        logger = configure_logging(settings)

        assert logger.name == "ehr"
        assert logger.level == logging.WARNING
        assert logging.getLogger(AUDIT_FAILURE_LOGGER).handlers == []

    def test_audit_failures_get_their_own_file(self, tmp_path, clean_loggers):
        settings = Settings(_env_file=None, log_to_file=True, log_dir=str(tmp_path))
        configure_logging(settings)

        failures = logging.getLogger(AUDIT_FAILURE_LOGGER)
        failures.critical("Audit write failed: entry=abc")
        for handler in failures.handlers:
            handler.flush()

        assert "entry=abc" in (tmp_path / "audit-failures.log").read_text()
        assert (tmp_path / "ehr.log").exists()
