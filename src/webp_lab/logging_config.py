"""Logging for the CLI and the HTTP service.

Every module logs through ``get_logger(__name__)``, which places it under the
``webp_lab`` namespace. ``setup_logging`` owns the handlers on that namespace:
records always go to stderr, and optionally to an appended log file
(``--log-file`` on the CLI, ``WEBP_LAB_LOG_FILE`` for the service).
"""

from __future__ import annotations

import logging
import re
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pathlib import Path

LOGGER_NAMESPACE = "webp_lab"

DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(threadName)s] "
    "%(filename)s:%(lineno)d - %(message)s"
)

_LINE_BREAK = re.compile(r"\r\n?")


class PlatformIndependentFormatter(logging.Formatter):
    """Formatter whose output only ever contains LF line breaks."""

    def format(self, record: logging.LogRecord) -> str:
        return _LINE_BREAK.sub("\n", super().format(record))


def _attach(logger: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def setup_logging(
    level: int = logging.INFO,
    verbose: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure the ``webp_lab`` logger and return it.

    Calling this again replaces the handlers installed by the previous call,
    so a CLI run or a reloaded app never logs the same record twice.

    Args:
        level: Level used when ``verbose`` is off
        verbose: Log at DEBUG with thread and source location
        log_file: Append records here as well; parent directories are created.
            If the file cannot be opened a warning is logged and only stderr
            is used.

    Returns:
        The package root logger
    """
    logger = logging.getLogger(LOGGER_NAMESPACE)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    logger.setLevel(logging.DEBUG if verbose else level)
    formatter = PlatformIndependentFormatter(
        VERBOSE_FORMAT if verbose else DEFAULT_FORMAT, datefmt=DATE_FORMAT
    )
    _attach(logger, logging.StreamHandler(sys.stderr), formatter)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            _attach(logger, logging.FileHandler(log_file, mode="a", encoding="utf-8"), formatter)
        except OSError as e:
            logger.warning(f"Cannot write log file {log_file}: {e}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the logger for ``name`` inside the package namespace."""
    if name != LOGGER_NAMESPACE and not name.startswith(f"{LOGGER_NAMESPACE}."):
        name = f"{LOGGER_NAMESPACE}.{name}"
    return logging.getLogger(name)


def _describe(context: dict[str, object]) -> str:
    return ", ".join(f"{key}={value}" for key, value in context.items())


def log_operation_start(logger: logging.Logger, operation: str, **context: object) -> None:
    logger.info(f"Starting {operation}: {_describe(context)}")


def log_operation_complete(
    logger: logging.Logger,
    operation: str,
    success: bool,
    duration: float | None = None,
    **context: object,
) -> None:
    """Log the end of an operation at INFO, or at ERROR when it failed.

    Args:
        logger: Logger to write to
        operation: Short name such as "request"
        success: Whether the operation produced a result
        duration: Elapsed seconds, if measured
        **context: Key/value pairs appended to the message
    """
    outcome = "completed" if success else "failed"
    timing = f" in {duration:.2f}s" if duration is not None else ""
    logger.log(
        logging.INFO if success else logging.ERROR,
        f"{operation.capitalize()} {outcome}{timing}: {_describe(context)}",
    )


def log_operation_error(
    logger: logging.Logger, operation: str, error: BaseException, **context: object
) -> None:
    """Log ``error`` at ERROR; the traceback is attached only when DEBUG is on."""
    details = f" ({_describe(context)})" if context else ""
    logger.error(
        f"Error during {operation}: {type(error).__name__}: {error}{details}",
        exc_info=error if logger.isEnabledFor(logging.DEBUG) else None,
    )
