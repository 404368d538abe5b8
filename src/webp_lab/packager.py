"""Result packaging: one image, or a zip with a manifest and an error report.

All archives are built in memory; nothing is written to disk.
"""

from __future__ import annotations

import json
import logging
import zipfile
from datetime import datetime, timezone
from io import BytesIO
from typing import TYPE_CHECKING

from .errors import NoSuccessfulTransformsError, PackagingError
from .logging_config import get_logger
from .models import (
    BatchManifest,
    PackagedResponse,
    TransformConfiguration,
    TransformFailure,
    TransformSuccess,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from .models import TransformOutcome

ARCHIVE_NAME = "webp-lab-results.zip"
ARCHIVE_MEDIA_TYPE = "application/zip"
MANIFEST_NAME = "manifest.json"
ERROR_REPORT_NAME = "errors.txt"
REPORT_TITLE = "WebP Lab transform report"
COMPRESSION_LEVEL = 6


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class ResultPackager:
    """Turn batch outcomes into the response payload.

    Decision rule:
    - no successes: ``NoSuccessfulTransformsError``
    - exactly one success and no failures: the image itself
    - anything else: a zip archive
    """

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or get_logger(__name__)

    def pack(
        self, outcomes: Sequence[TransformOutcome], config: TransformConfiguration
    ) -> PackagedResponse:
        """Package ordered outcomes.

        Args:
            outcomes: One outcome per input item, ordered by index
            config: Configuration the batch was transformed with

        Returns:
            PackagedResponse holding the single image or the archive

        Raises:
            NoSuccessfulTransformsError: If no item was transformed
            PackagingError: If the archive cannot be built
        """
        successes = [o for o in outcomes if isinstance(o, TransformSuccess)]
        failures = [o for o in outcomes if isinstance(o, TransformFailure)]

        if not successes:
            raise NoSuccessfulTransformsError(failures)

        total_input_bytes = sum(s.input_bytes for s in successes)
        total_output_bytes = sum(s.output_bytes for s in successes)

        if len(successes) == 1 and not failures:
            single = successes[0]
            return PackagedResponse(
                filename=f"{single.safe_base_name}.{single.format.extension}",
                content_type=single.format.media_type,
                data=single.data,
                is_archive=False,
                processed=1,
                failed=0,
                total_input_bytes=total_input_bytes,
                total_output_bytes=total_output_bytes,
            )

        manifest = self.build_manifest(outcomes, config)
        files: dict[str, bytes] = {}
        for position, success in enumerate(successes, start=1):
            files[archive_entry_name(success, position)] = success.data
        files[MANIFEST_NAME] = json.dumps(manifest.to_dict(), indent=2).encode("utf-8")
        if failures:
            report = build_error_report(failures, successes, config)
            files[ERROR_REPORT_NAME] = report.encode("utf-8")

        try:
            archive = create_archive(files)
        except Exception as e:
            self.logger.error(f"Failed to create archive: {type(e).__name__}: {e}")
            raise PackagingError(f"Failed to create output archive: {e}") from e

        self.logger.info(
            f"Packaged {len(successes)} files ({len(failures)} failed) "
            f"into {len(archive)} byte archive"
        )

        return PackagedResponse(
            filename=ARCHIVE_NAME,
            content_type=ARCHIVE_MEDIA_TYPE,
            data=archive,
            is_archive=True,
            processed=len(successes),
            failed=len(failures),
            total_input_bytes=total_input_bytes,
            total_output_bytes=total_output_bytes,
            failures=failures,
        )

    @staticmethod
    def build_manifest(
        outcomes: Sequence[TransformOutcome], config: TransformConfiguration
    ) -> BatchManifest:
        """Summarize every outcome; byte totals only count successes."""
        successes = [o for o in outcomes if isinstance(o, TransformSuccess)]
        items = []
        for outcome in outcomes:
            if isinstance(outcome, TransformSuccess):
                items.append(
                    {
                        "status": outcome.status.value,
                        "originalName": outcome.original_name,
                        "inputBytes": outcome.input_bytes,
                        "outputBytes": outcome.output_bytes,
                        "outputExt": outcome.format.extension,
                    }
                )
            else:
                items.append(
                    {
                        "status": outcome.status.value,
                        "originalName": outcome.original_name,
                        "reason": outcome.reason,
                    }
                )

        return BatchManifest(
            generated_at=utc_timestamp(),
            options=config.to_dict(),
            processed=len(successes),
            failed=len(outcomes) - len(successes),
            input_bytes=sum(s.input_bytes for s in successes),
            output_bytes=sum(s.output_bytes for s in successes),
            items=items,
        )


def archive_entry_name(success: TransformSuccess, position: int) -> str:
    """Unique archive name ``<base>-<position>.<ext>`` (position is 1-based)."""
    return f"{success.safe_base_name}-{position}.{success.format.extension}"


def build_error_report(
    failures: Sequence[TransformFailure],
    successes: Sequence[TransformSuccess],
    config: TransformConfiguration,
) -> str:
    """Human-readable report with one numbered line per failure."""
    lines = [
        REPORT_TITLE,
        f"Generated: {utc_timestamp()}",
        f"Processed: {len(successes)}",
        f"Failed: {len(failures)}",
        "",
        f"Output format: {config.format.value}",
        f"Quality: {config.quality}",
        "",
    ]

    if failures:
        lines.append("Failures:")
        for ordinal, failure in enumerate(failures, start=1):
            lines.append(f"{ordinal}. {failure.original_name} -> {failure.reason}")

    return "\n".join(lines)


def create_archive(files: dict[str, bytes]) -> bytes:
    """Compress named blobs into one zip byte stream (DEFLATE, level 6)."""
    buffer = BytesIO()
    with zipfile.ZipFile(
        buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=COMPRESSION_LEVEL
    ) as zf:
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()
