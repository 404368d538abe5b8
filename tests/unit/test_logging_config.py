"""Unit tests for logging configuration."""

import logging

from webp_lab.logging_config import (
    LOGGER_NAMESPACE,
    PlatformIndependentFormatter,
    get_logger,
    log_operation_complete,
    log_operation_error,
    log_operation_start,
    setup_logging,
)


def make_record(msg):
    return logging.LogRecord(
        name="test",
        level=logging.INFO,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


class TestPlatformIndependentFormatter:
    """Test the platform-independent formatter."""

    def test_normalizes_crlf_to_lf(self):
        """Test that CRLF line endings are normalized to LF."""
        formatted = PlatformIndependentFormatter("%(message)s").format(make_record("a\r\nb\r\nc"))

        assert "\r" not in formatted
        assert "a\nb\nc" in formatted

    def test_normalizes_cr_to_lf(self):
        """Test that CR line endings are normalized to LF."""
        formatted = PlatformIndependentFormatter("%(message)s").format(make_record("a\rb"))

        assert formatted == "a\nb"


class TestSetupLogging:
    """Test setup_logging."""

    def test_default_level(self):
        """Test the default level is INFO."""
        logger = setup_logging()

        assert logger.name == LOGGER_NAMESPACE
        assert logger.level == logging.INFO
        assert len(logger.handlers) == 1

    def test_verbose_sets_debug(self):
        """Test verbose mode."""
        assert setup_logging(verbose=True).level == logging.DEBUG

    def test_repeated_setup_does_not_duplicate_handlers(self):
        """Test handlers are replaced, not added."""
        setup_logging()
        logger = setup_logging()

        assert len(logger.handlers) == 1

    def test_log_file(self, tmp_path):
        """Test logging to a file."""
        log_file = tmp_path / "logs" / "webp-lab.log"
        logger = setup_logging(log_file=log_file)
        logger.info("written to file")
        for handler in logger.handlers:
            handler.flush()

        assert "written to file" in log_file.read_text(encoding="utf-8")
        setup_logging()

    def test_unwritable_log_file_falls_back_to_stderr(self, tmp_path, caplog):
        """Test a log file path that cannot be opened leaves only the stderr handler."""
        with caplog.at_level(logging.WARNING, logger=LOGGER_NAMESPACE):
            logger = setup_logging(log_file=tmp_path)

        assert len(logger.handlers) == 1
        assert "Cannot write log file" in caplog.text


class TestGetLogger:
    """Test get_logger."""

    def test_namespaces_names(self):
        """Test plain names are moved under the namespace."""
        assert get_logger("tests").name == "webp_lab.tests"

    def test_keeps_namespaced_names(self):
        """Test package module names are kept."""
        assert get_logger("webp_lab.packager").name == "webp_lab.packager"


class TestOperationLogging:
    """Test operation logging helpers."""

    def test_start(self, caplog):
        """Test start messages include the context."""
        logger = get_logger("tests.ops")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAMESPACE):
            log_operation_start(logger, "request", files=3)

        assert "Starting request: files=3" in caplog.text

    def test_complete_success(self, caplog):
        """Test completion with a duration."""
        logger = get_logger("tests.ops")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAMESPACE):
            log_operation_complete(logger, "request", success=True, duration=1.5, processed=2)

        assert "Request completed in 1.50s: processed=2" in caplog.text

    def test_complete_failure_logs_error(self, caplog):
        """Test failed completion is logged at ERROR."""
        logger = get_logger("tests.ops")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAMESPACE):
            log_operation_complete(logger, "packaging", success=False)

        assert caplog.records[-1].levelno == logging.ERROR
        assert "Packaging failed" in caplog.text

    def test_error(self, caplog):
        """Test error messages include the exception type."""
        logger = get_logger("tests.ops")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAMESPACE):
            log_operation_error(logger, "transform", ValueError("bad"), file="a.png")

        assert "Error during transform: ValueError: bad (file=a.png)" in caplog.text

    def test_error_without_context(self, caplog):
        """Test the context suffix is omitted when there is none."""
        logger = get_logger("tests.ops")
        with caplog.at_level(logging.INFO, logger=LOGGER_NAMESPACE):
            log_operation_error(logger, "transform", RuntimeError("boom"))

        assert caplog.records[-1].getMessage() == "Error during transform: RuntimeError: boom"
        assert caplog.records[-1].exc_info is None
