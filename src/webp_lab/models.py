"""Core data models for the batch image transform service."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class OutputFormat(Enum):
    """Target codec for transformed images."""

    WEBP = "webp"
    AVIF = "avif"
    JPEG = "jpeg"
    PNG = "png"

    @property
    def extension(self) -> str:
        """File extension used for output names (without the dot)."""
        return "jpg" if self is OutputFormat.JPEG else self.value

    @property
    def media_type(self) -> str:
        """HTTP media type of the encoded output."""
        return f"image/{self.value}"


class FitMode(Enum):
    """How an image is resized relative to the requested dimensions."""

    COVER = "cover"
    CONTAIN = "contain"
    FILL = "fill"
    INSIDE = "inside"
    OUTSIDE = "outside"


class OutcomeStatus(Enum):
    """Status of a single item transform."""

    SUCCESS = "ok"
    FAILED = "error"


@dataclass(frozen=True)
class TransformConfiguration:
    """Shared transformation applied to every image of a batch.

    Instances are only built by ``webp_lab.options.normalize_config`` and are
    never mutated afterwards, so a single instance is shared by all workers.

    Attributes:
        format: Output codec
        quality: Encoder quality (1-100)
        width: Target width in pixels, None for unconstrained
        height: Target height in pixels, None for unconstrained
        fit: Resize policy when width or height is set
        rotate: Explicit rotation in degrees (clockwise)
        grayscale: Convert to grayscale
        blur: Gaussian blur radius (0-20, 0 disables)
        sharpen: Apply an unsharp mask
        flip: Mirror vertically
        flop: Mirror horizontally
        strip_metadata: Drop EXIF/ICC metadata from the output
        without_enlargement: Never upscale when resizing
        background: Hex colour used for letterboxing, rotation fill and flattening
        lossless: Request lossless encoding where the codec supports it
        brightness: Brightness multiplier (0-3)
        saturation: Saturation multiplier (0-3)
        hue: Hue rotation in degrees
        contrast: Contrast slope pivoted at mid-grey (0-3)
        gamma: Gamma correction (1-3), None disables
        sepia: Apply a sepia tone
        smart_crop: Client hint for attention-based cropping
        watermark_text: Client watermark text
        watermark_opacity: Client watermark opacity (0-1)
        rename_pattern: Client download rename pattern
    """

    format: OutputFormat = OutputFormat.WEBP
    quality: int = 82
    width: int | None = None
    height: int | None = None
    fit: FitMode = FitMode.INSIDE
    rotate: float = 0
    grayscale: bool = False
    blur: float = 0
    sharpen: bool = False
    flip: bool = False
    flop: bool = False
    strip_metadata: bool = True
    without_enlargement: bool = True
    background: str | None = None
    lossless: bool = False
    brightness: float = 1
    saturation: float = 1
    hue: float = 0
    contrast: float = 1
    gamma: float | None = None
    sepia: bool = False
    smart_crop: bool = False
    watermark_text: str | None = None
    watermark_opacity: float = 0.5
    rename_pattern: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the wire (camelCase) keys accepted by the normalizer."""
        return {
            "format": self.format.value,
            "quality": self.quality,
            "width": self.width,
            "height": self.height,
            "fit": self.fit.value,
            "rotate": self.rotate,
            "grayscale": self.grayscale,
            "blur": self.blur,
            "sharpen": self.sharpen,
            "flip": self.flip,
            "flop": self.flop,
            "stripMetadata": self.strip_metadata,
            "withoutEnlargement": self.without_enlargement,
            "background": self.background,
            "lossless": self.lossless,
            "brightness": self.brightness,
            "saturation": self.saturation,
            "hue": self.hue,
            "contrast": self.contrast,
            "gamma": self.gamma,
            "sepia": self.sepia,
            "smartCrop": self.smart_crop,
            "watermarkText": self.watermark_text,
            "watermarkOpacity": self.watermark_opacity,
            "renamePattern": self.rename_pattern,
        }


@dataclass(frozen=True)
class RuntimeLimits:
    """Per-request caps derived from the environment.

    Attributes:
        max_input_file_bytes: Maximum size of one input file (0 = unlimited)
        max_total_input_bytes: Maximum size of the whole batch (0 = unlimited)
        max_batch_files: Maximum number of files per batch
        concurrency: Number of concurrent transform workers
    """

    max_input_file_bytes: int
    max_total_input_bytes: int
    max_batch_files: int
    concurrency: int


@dataclass
class BatchItem:
    """One uploaded file of a batch.

    Attributes:
        name: Declared file name
        data: Raw file bytes
        content_type: Declared media type, if any
        size: Declared size in bytes (defaults to len(data))
    """

    name: str
    data: bytes
    content_type: str | None = None
    size: int = -1

    def __post_init__(self) -> None:
        if self.size < 0:
            self.size = len(self.data)


@dataclass
class TransformSuccess:
    """Successful transform of one batch item."""

    index: int
    original_name: str
    safe_base_name: str
    format: OutputFormat
    input_bytes: int
    output_bytes: int
    data: bytes = field(repr=False)
    status: OutcomeStatus = field(default=OutcomeStatus.SUCCESS, init=False)


@dataclass
class TransformFailure:
    """Isolated failure of one batch item."""

    index: int
    original_name: str
    reason: str
    status: OutcomeStatus = field(default=OutcomeStatus.FAILED, init=False)


TransformOutcome = TransformSuccess | TransformFailure


@dataclass
class BatchResults:
    """Ordered outcomes of a batch run.

    Attributes:
        outcomes: One outcome per input item, ordered by input index
        total_files: Number of items in the batch
        successful: Number of successful transforms
        failed: Number of failed transforms
        total_time: Wall time of the batch in seconds
    """

    outcomes: list[TransformOutcome]
    total_files: int
    successful: int
    failed: int
    total_time: float

    def successes(self) -> list[TransformSuccess]:
        return [o for o in self.outcomes if isinstance(o, TransformSuccess)]

    def failures(self) -> list[TransformFailure]:
        return [o for o in self.outcomes if isinstance(o, TransformFailure)]

    def success_rate(self) -> float:
        """Calculate success rate as percentage.

        Returns:
            Success rate as a percentage (0.0 to 100.0)
        """
        if self.total_files == 0:
            return 0.0
        return (self.successful / self.total_files) * 100.0


@dataclass
class BatchManifest:
    """Summary document written into archive responses."""

    generated_at: str
    options: dict[str, Any]
    processed: int
    failed: int
    input_bytes: int
    output_bytes: int
    items: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "generatedAt": self.generated_at,
            "options": self.options,
            "totals": {
                "processed": self.processed,
                "failed": self.failed,
                "inputBytes": self.input_bytes,
                "outputBytes": self.output_bytes,
            },
            "items": self.items,
        }


@dataclass
class PackagedResponse:
    """Final payload of a batch: one image or one archive.

    Attributes:
        filename: Proposed download name
        content_type: Media type of ``data``
        data: Response body
        is_archive: Whether ``data`` is a zip archive
        processed: Number of successful items
        failed: Number of failed items
        total_input_bytes: Input bytes of successful items
        total_output_bytes: Output bytes of successful items
        failures: Failed items, in input order
    """

    filename: str
    content_type: str
    data: bytes = field(repr=False)
    is_archive: bool
    processed: int
    failed: int
    total_input_bytes: int
    total_output_bytes: int
    failures: list[TransformFailure] = field(default_factory=list)

    def headers(self) -> dict[str, str]:
        """Response headers reporting batch totals and disabling caching."""
        return {
            "Cache-Control": "no-store",
            "X-Processed-Files": str(self.processed),
            "X-Failed-Files": str(self.failed),
            "X-Total-Input-Bytes": str(self.total_input_bytes),
            "X-Total-Output-Bytes": str(self.total_output_bytes),
            "Content-Disposition": f'attachment; filename="{self.filename}"',
        }
