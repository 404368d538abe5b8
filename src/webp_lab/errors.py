"""Error definitions for the batch image transform service.

Two families of errors exist:

- ``TransformError`` subclasses describe why a single item could not be
  transformed. They never cross the transform worker boundary; the
  ``ErrorHandler`` turns them into ``TransformFailure`` outcomes.
- ``RequestError`` subclasses reject or fail a whole request. Each carries
  the HTTP status it maps to.
"""

from __future__ import annotations

import logging
import traceback
from enum import Enum
from typing import TYPE_CHECKING, Any

from .logging_config import get_logger
from .models import TransformFailure

if TYPE_CHECKING:
    from collections.abc import Sequence


class TransformError(Exception):
    """Base exception for item-level transform errors."""

    pass


class UnsupportedFileError(TransformError):
    """Raised when an item is not image-like."""

    pass


class InvalidImageError(TransformError):
    """Raised when image data cannot be decoded or has no recognizable format."""

    pass


class ProcessingError(TransformError):
    """Raised when an image operation or the encoder fails."""

    pass


class RequestError(Exception):
    """Base exception for request-level errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.message}


class InvalidRequestError(RequestError):
    """Raised when the request has no files or malformed options."""

    status_code = 400


class PayloadTooLargeError(RequestError):
    """Raised when a batch exceeds the configured runtime limits."""

    status_code = 413


class NoSuccessfulTransformsError(RequestError):
    """Raised when a batch had items but none transformed successfully."""

    status_code = 422

    def __init__(self, failures: Sequence[TransformFailure]) -> None:
        super().__init__("No images could be transformed.")
        self.failures = list(failures)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.message,
            "failures": [{"file": f.original_name, "reason": f.reason} for f in self.failures],
        }


class PackagingError(RequestError):
    """Raised when the result archive cannot be built."""

    status_code = 500


class BatchCancelledError(Exception):
    """Raised when a batch is cancelled before every item was claimed."""

    pass


class ErrorCategory(Enum):
    """Categories of item errors for classification."""

    UNSUPPORTED_FILE = "unsupported_file"
    INVALID_IMAGE = "invalid_image"
    PROCESSING = "processing"
    CONFIGURATION = "configuration"
    UNKNOWN = "unknown"


class ErrorHandler:
    """Convert item-level exceptions into failure outcomes.

    Classifies the error, builds a human-readable reason and logs the
    error with its context. ``handle_error`` never raises.
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger(__name__)

    def handle_error(self, error: Exception, context: dict[str, Any]) -> TransformFailure:
        """Handle an item error and return its failure outcome.

        Args:
            error: The exception that occurred
            context: Context information; ``index`` and ``original_name`` are
                used for the outcome, everything is logged

        Returns:
            TransformFailure for the item
        """
        category = self._classify_error(error)
        reason = self._generate_user_message(error, category, context)
        self._log_error(error, category, context)

        return TransformFailure(
            index=int(context.get("index", -1)),
            original_name=str(context.get("original_name", "unknown")),
            reason=reason,
        )

    def _classify_error(self, error: Exception) -> ErrorCategory:
        if isinstance(error, UnsupportedFileError):
            return ErrorCategory.UNSUPPORTED_FILE
        elif isinstance(error, InvalidImageError):
            return ErrorCategory.INVALID_IMAGE
        elif isinstance(error, ProcessingError):
            return ErrorCategory.PROCESSING
        elif isinstance(error, (ValueError, TypeError)):
            return ErrorCategory.CONFIGURATION
        else:
            return ErrorCategory.UNKNOWN

    def _generate_user_message(
        self, error: Exception, category: ErrorCategory, context: dict[str, Any]
    ) -> str:
        base_message = str(error) or type(error).__name__

        if category in (ErrorCategory.UNSUPPORTED_FILE, ErrorCategory.INVALID_IMAGE):
            return base_message
        elif category == ErrorCategory.PROCESSING:
            operation = context.get("operation", "transform")
            return f"Processing error during {operation}: {base_message}"
        elif category == ErrorCategory.CONFIGURATION:
            return f"Invalid transform settings: {base_message}"
        else:  # UNKNOWN
            return f"Unexpected error: {base_message}"

    def _log_error(
        self, error: Exception, category: ErrorCategory, context: dict[str, Any]
    ) -> None:
        context_str = ", ".join(f"{k}={v}" for k, v in context.items())

        self.logger.error(
            f"Error [{category.value}]: {type(error).__name__}: {error}",
            extra={"context": context_str},
        )

        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.debug(
                f"Stack trace for error in {context.get('original_name', 'unknown')}:\n"
                f"{''.join(traceback.format_exception(type(error), error, error.__traceback__))}"
            )
