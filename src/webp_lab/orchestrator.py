"""Transform orchestrator for batch image requests.

This module provides the transport-independent request flow shared by the
HTTP service and the CLI:
- Runtime limit enforcement (file count, per-file size, total size)
- Options parsing and normalization
- Parallel batch transform via BatchProcessor
- Result packaging via ResultPackager
"""

from __future__ import annotations

import json
from time import perf_counter
from typing import TYPE_CHECKING, Any

from webp_lab.batch_processor import BatchProcessor
from webp_lab.config import (
    BYTES_PER_MB,
    MAX_BATCH_FILES_ENV,
    MAX_INPUT_FILE_MB_ENV,
    MAX_TOTAL_INPUT_MB_ENV,
    resolve_limits,
)
from webp_lab.errors import InvalidRequestError, NoSuccessfulTransformsError, PayloadTooLargeError
from webp_lab.logging_config import get_logger, log_operation_complete, log_operation_start
from webp_lab.models import TransformConfiguration
from webp_lab.options import normalize_config
from webp_lab.packager import ResultPackager

if TYPE_CHECKING:
    import logging
    import threading
    from collections.abc import Callable

    from webp_lab.models import (
        BatchItem,
        BatchResults,
        PackagedResponse,
        RuntimeLimits,
    )


def _format_mb(size_bytes: int) -> str:
    return f"{size_bytes / BYTES_PER_MB:g}"


def check_limits(items: list[BatchItem], limits: RuntimeLimits) -> None:
    """Reject batches that exceed the runtime limits before any work is done.

    Raises:
        InvalidRequestError: If the batch is empty
        PayloadTooLargeError: If the file count, a file size or the total size is too large
    """
    if not items:
        raise InvalidRequestError("No images received.")

    if len(items) > limits.max_batch_files:
        raise PayloadTooLargeError(
            f"Batch too large. Max {limits.max_batch_files} files allowed ({MAX_BATCH_FILES_ENV})."
        )

    if limits.max_input_file_bytes > 0:
        too_large = next((i for i in items if i.size > limits.max_input_file_bytes), None)
        if too_large is not None:
            raise PayloadTooLargeError(
                f"File {too_large.name} exceeds {_format_mb(limits.max_input_file_bytes)} MB "
                f"({MAX_INPUT_FILE_MB_ENV})."
            )

    if limits.max_total_input_bytes > 0:
        total_input_bytes = sum(i.size for i in items)
        if total_input_bytes > limits.max_total_input_bytes:
            raise PayloadTooLargeError(
                f"Batch exceeds {_format_mb(limits.max_total_input_bytes)} MB total "
                f"({MAX_TOTAL_INPUT_MB_ENV})."
            )


def parse_options(options: str | None) -> TransformConfiguration:
    """Parse the JSON options field; blank or missing means defaults.

    Raises:
        InvalidRequestError: If the field is not valid JSON
    """
    if options is None or not options.strip():
        return normalize_config({})

    try:
        parsed: Any = json.loads(options)
    except ValueError as e:
        raise InvalidRequestError("Invalid options field. It must be JSON.") from e

    return normalize_config(parsed)


class TransformOrchestrator:
    """Run one batch request from validation to packaged response."""

    def __init__(
        self,
        logger: logging.Logger | None = None,
        limits_resolver: Callable[[], RuntimeLimits] = resolve_limits,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ):
        """Initialize the orchestrator.

        Args:
            logger: Optional logger instance
            limits_resolver: Called once per request to get the current limits
            progress_callback: Optional callback forwarded to the BatchProcessor
        """
        self.logger = logger or get_logger(__name__)
        self.limits_resolver = limits_resolver
        self.progress_callback = progress_callback
        self.packager = ResultPackager(self.logger)

    def run(
        self,
        items: list[BatchItem],
        options: str | TransformConfiguration | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PackagedResponse:
        """Validate, transform and package a batch.

        Args:
            items: Uploaded files; empty files are ignored
            options: Raw JSON options text, or an already normalized configuration
            cancel_event: Optional cancellation event for the batch

        Returns:
            PackagedResponse for the batch

        Raises:
            InvalidRequestError: No files, or malformed options
            PayloadTooLargeError: Runtime limits exceeded
            NoSuccessfulTransformsError: Every item failed
            PackagingError: The archive could not be built
            BatchCancelledError: The batch was cancelled
        """
        start_time = perf_counter()
        limits = self.limits_resolver()
        items = [item for item in items if item.size > 0]
        log_operation_start(self.logger, "request", files=len(items))

        check_limits(items, limits)
        if isinstance(options, TransformConfiguration):
            config = options
        else:
            config = parse_options(options)

        results = self.transform_batch(items, config, limits.concurrency, cancel_event)
        try:
            response = self.packager.pack(results.outcomes, config)
        except NoSuccessfulTransformsError:
            log_operation_complete(
                self.logger,
                "request",
                success=False,
                duration=perf_counter() - start_time,
                failed=results.failed,
            )
            raise

        log_operation_complete(
            self.logger,
            "request",
            success=True,
            duration=perf_counter() - start_time,
            processed=response.processed,
            failed=response.failed,
            output=response.filename,
        )
        return response

    def transform_batch(
        self,
        items: list[BatchItem],
        config: TransformConfiguration,
        concurrency: int,
        cancel_event: threading.Event | None = None,
    ) -> BatchResults:
        """Transform ``items`` without limit checks or packaging."""
        processor = BatchProcessor(
            config,
            concurrency=concurrency,
            logger=self.logger,
            progress_callback=self.progress_callback,
        )
        return processor.process_batch(items, cancel_event)
