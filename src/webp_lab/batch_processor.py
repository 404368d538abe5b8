"""Batch processor with bounded parallel execution."""

from __future__ import annotations

import logging
import threading
from time import perf_counter
from typing import TYPE_CHECKING

from webp_lab.config import default_concurrency
from webp_lab.logging_config import get_logger
from webp_lab.models import (
    BatchItem,
    BatchResults,
    TransformConfiguration,
    TransformOutcome,
    TransformSuccess,
)
from webp_lab.scheduler import run_batch
from webp_lab.transformer import ImageTransformer

if TYPE_CHECKING:
    from collections.abc import Callable


class BatchProcessor:
    """Transform a batch of uploaded images in parallel.

    This class implements parallel batch processing with:
    - A bounded number of worker threads sharing one claim cursor
    - Error isolation (one file failure doesn't stop the batch)
    - Progress tracking across workers
    - Ordered result aggregation
    """

    def __init__(
        self,
        config: TransformConfiguration,
        concurrency: int | None = None,
        logger: logging.Logger | None = None,
        progress_callback: Callable[[int, int, str], None] | None = None,
    ):
        """Initialize with configuration and determine worker count.

        Args:
            config: Normalized configuration shared by every item
            concurrency: Number of workers (None = CPU count capped at 8)
            logger: Optional logger instance
            progress_callback: Optional callback for progress updates (completed, total, filename)
        """
        self.config = config
        self.logger = logger or get_logger(__name__)
        self.progress_callback = progress_callback
        self.worker_count = concurrency if concurrency is not None else default_concurrency()
        if self.worker_count < 1:
            raise ValueError(f"concurrency must be at least 1, got {self.worker_count}")

        self.transformer = ImageTransformer(config, self.logger)
        # Completion count for log lines and progress_callback only. Which item
        # a worker takes next is decided by the scheduler's claim cursor.
        self._progress_lock = threading.Lock()
        self._completed = 0

        self.logger.debug(f"BatchProcessor initialized with {self.worker_count} workers")

    def process_batch(
        self,
        items: list[BatchItem],
        cancel_event: threading.Event | None = None,
    ) -> BatchResults:
        """Transform every item and aggregate the ordered outcomes.

        Args:
            items: Uploaded files in request order
            cancel_event: Optional event that stops new items from being started

        Returns:
            BatchResults with one outcome per item, in input order

        Raises:
            BatchCancelledError: If the batch was cancelled
        """
        if not items:
            return BatchResults(outcomes=[], total_files=0, successful=0, failed=0, total_time=0.0)

        start_time = perf_counter()
        self._completed = 0
        total = len(items)

        self.logger.info(
            f"Starting batch transform of {total} files "
            f"to {self.config.format.value} with {min(self.worker_count, total)} workers"
        )

        def worker(item: BatchItem, index: int) -> TransformOutcome:
            outcome = self.transformer.transform(item, index)
            self._report(outcome, total)
            return outcome

        outcomes = run_batch(items, self.worker_count, worker, cancel_event)

        total_time = perf_counter() - start_time
        successful = sum(1 for o in outcomes if isinstance(o, TransformSuccess))
        failed = total - successful

        self.logger.info(
            f"Batch transform complete: {successful} successful, "
            f"{failed} failed in {total_time:.2f}s"
        )

        return BatchResults(
            outcomes=outcomes,
            total_files=total,
            successful=successful,
            failed=failed,
            total_time=total_time,
        )

    def _report(self, outcome: TransformOutcome, total: int) -> None:
        with self._progress_lock:
            self._completed += 1
            completed = self._completed

        if isinstance(outcome, TransformSuccess):
            self.logger.info(
                f"Transformed {outcome.original_name} ({completed}/{total})"
            )
        else:
            self.logger.warning(
                f"Failed to transform {outcome.original_name}: {outcome.reason} "
                f"({completed}/{total})"
            )

        if self.progress_callback:
            self.progress_callback(completed, total, outcome.original_name)
