"""Transform worker: apply one configuration to one uploaded image."""

from __future__ import annotations

import logging
import os
import re
from io import BytesIO
from typing import TYPE_CHECKING, Any, cast

import cv2
import numpy as np
import piexif
import pillow_heif
from PIL import Image, ImageColor, ImageFile, ImageFilter, ImageOps

from webp_lab.errors import ErrorHandler, InvalidImageError, ProcessingError, UnsupportedFileError
from webp_lab.logging_config import get_logger
from webp_lab.models import (
    BatchItem,
    FitMode,
    OutputFormat,
    TransformConfiguration,
    TransformOutcome,
    TransformSuccess,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

IMAGE_EXTENSIONS = re.compile(r"\.(png|jpe?g|webp|avif|gif|tiff?|bmp|heic|heif)$", re.IGNORECASE)
UNSAFE_NAME_CHARS = re.compile(r"[^a-z0-9\-_]+")
MAX_BASE_NAME_LENGTH = 70
FALLBACK_BASE_NAME = "image"

EXIF_ORIENTATION_TAG = 0x0112

# Process-wide Pillow setup, applied once on import. No pixel limit, and
# truncated files decode as far as possible.
pillow_heif.register_heif_opener()
Image.MAX_IMAGE_PIXELS = None
ImageFile.LOAD_TRUNCATED_IMAGES = True


def sanitize_base_name(file_name: str) -> str:
    """Derive an archive-safe base name from an uploaded file name.

    The extension is dropped, the name lowercased, runs of characters outside
    ``[a-z0-9-_]`` collapsed to ``-``, leading/trailing ``-`` trimmed and the
    result truncated to 70 characters. Empty results become ``"image"``.

    Examples:
        >>> sanitize_base_name("My Photo!!.PNG")
        'my-photo'
    """
    raw_base = os.path.splitext(os.path.basename(file_name))[0] or FALLBACK_BASE_NAME
    cleaned = UNSAFE_NAME_CHARS.sub("-", raw_base.lower()).strip("-")
    return cleaned[:MAX_BASE_NAME_LENGTH] or FALLBACK_BASE_NAME


def is_image_like(item: BatchItem) -> bool:
    """Check the declared media type or the file extension allowlist."""
    if item.content_type and item.content_type.startswith("image/"):
        return True
    return bool(IMAGE_EXTENSIONS.search(item.name))


class ImageTransformer:
    """Apply a ``TransformConfiguration`` to uploaded images.

    ``transform`` is the failure isolation boundary of a batch: whatever goes
    wrong while decoding, editing or encoding one image is returned as a
    ``TransformFailure`` and never raised.

    Operations are applied in this order, each only when configured:
    1. Orientation normalization (EXIF)
    2. Resize
    3. Rotation by an explicit angle
    4. Brightness/saturation/hue modulation
    5. Contrast (linear, pivoted at 128)
    6. Gamma
    7. Grayscale
    8. Sepia
    9. Vertical flip, horizontal flop
    10. Blur
    11. Sharpen
    12. Metadata preservation
    13. Encoding
    """

    SEPIA_TINT = (112, 66, 20)
    CONTRAST_PIVOT = 128.0
    SHARPEN_AMOUNT = 1.0
    SHARPEN_KERNEL_SIZE = 5
    DEFAULT_FILL = (0, 0, 0, 255)
    JPEG_FLATTEN_COLOR = (255, 255, 255)

    def __init__(self, config: TransformConfiguration, logger: logging.Logger | None = None):
        """Initialize with the batch configuration.

        Args:
            config: Shared, read-only configuration for the whole batch
            logger: Optional logger instance
        """
        self.config = config
        self.logger = logger or get_logger(__name__)
        self.error_handler = ErrorHandler(self.logger)

    def transform(self, item: BatchItem, index: int) -> TransformOutcome:
        """Transform one batch item.

        Args:
            item: Uploaded file
            index: Position of the item in the batch

        Returns:
            TransformSuccess with the encoded bytes, or TransformFailure with a reason
        """
        try:
            if not is_image_like(item):
                raise UnsupportedFileError("Unsupported file. Only images are accepted.")

            image, exif_bytes, icc_profile = self._decode(item.data)
            image = self._apply_operations(image)
            data = self._encode(image, exif_bytes, icc_profile)

            self.logger.debug(
                f"Transformed {item.name} ({len(item.data)} -> {len(data)} bytes, "
                f"{self.config.format.value})"
            )

            return TransformSuccess(
                index=index,
                original_name=item.name,
                safe_base_name=sanitize_base_name(item.name),
                format=self.config.format,
                input_bytes=len(item.data),
                output_bytes=len(data),
                data=data,
            )

        except Exception as e:
            return self.error_handler.handle_error(
                e, {"index": index, "original_name": item.name, "operation": "transform"}
            )

    def _decode(self, data: bytes) -> tuple[Image.Image, bytes | None, bytes | None]:
        """Decode image bytes and read embedded metadata.

        Returns:
            Tuple of (oriented image in RGB/RGBA mode, raw EXIF bytes, ICC profile)

        Raises:
            InvalidImageError: If no image format is recognized
        """
        try:
            with Image.open(BytesIO(data)) as source:
                if not source.format:
                    raise InvalidImageError("The file does not look like a valid image.")
                source.load()
                exif_blob = source.info.get("exif")
                icc_profile = source.info.get("icc_profile")
                oriented = ImageOps.exif_transpose(source)
                image = self._to_working_mode(oriented)
        except InvalidImageError:
            raise
        except Exception as e:
            raise InvalidImageError("The file does not look like a valid image.") from e

        return (
            image,
            exif_blob if isinstance(exif_blob, bytes) else None,
            icc_profile if isinstance(icc_profile, bytes) else None,
        )

    @staticmethod
    def _to_working_mode(image: Image.Image) -> Image.Image:
        """Convert to RGB, or RGBA when the source carries transparency."""
        if image.mode in ("RGB", "RGBA"):
            return image.copy()
        has_alpha = "A" in image.getbands() or "transparency" in image.info
        return image.convert("RGBA" if has_alpha else "RGB")

    def _apply_operations(self, image: Image.Image) -> Image.Image:
        config = self.config

        if config.width or config.height:
            image = self._resize(image)

        if config.rotate != 0:
            image = image.rotate(
                -config.rotate,
                resample=Image.Resampling.BICUBIC,
                expand=True,
                fillcolor=self._fill_color(image),
            )

        if config.brightness != 1 or config.saturation != 1 or config.hue != 0:
            image = self._modulate(image, config.brightness, config.saturation, config.hue)

        if config.contrast != 1:
            image = self._adjust_contrast(image, config.contrast)

        if config.gamma:
            image = self._adjust_gamma(image, config.gamma)

        if config.grayscale:
            image = self._grayscale(image)

        if config.sepia:
            image = self._sepia(image)

        if config.flip:
            image = ImageOps.flip(image)

        if config.flop:
            image = ImageOps.mirror(image)

        if config.blur > 0:
            image = image.filter(ImageFilter.GaussianBlur(radius=config.blur))

        if config.sharpen:
            image = self._sharpen(image)

        return image

    def _resize(self, image: Image.Image) -> Image.Image:
        """Resize according to width/height and the fit mode.

        A missing axis is derived from the aspect ratio. With
        ``without_enlargement`` an image that already fits within the target
        box is left untouched and scale factors are capped at 1.
        """
        config = self.config
        src_w, src_h = image.size
        target_w = config.width or max(1, round(src_w * config.height / src_h))
        target_h = config.height or max(1, round(src_h * config.width / src_w))

        if config.without_enlargement and src_w <= target_w and src_h <= target_h:
            return image

        if config.fit == FitMode.FILL:
            if config.without_enlargement:
                target_w, target_h = min(target_w, src_w), min(target_h, src_h)
            return image.resize((target_w, target_h), Image.Resampling.LANCZOS)

        scale_w = target_w / src_w
        scale_h = target_h / src_h
        if config.fit in (FitMode.INSIDE, FitMode.CONTAIN):
            scale = min(scale_w, scale_h)
        else:
            scale = max(scale_w, scale_h)
        if config.without_enlargement:
            scale = min(scale, 1.0)

        scaled_size = (max(1, round(src_w * scale)), max(1, round(src_h * scale)))
        resized = image.resize(scaled_size, Image.Resampling.LANCZOS)

        if config.fit == FitMode.COVER:
            crop_w = min(target_w, scaled_size[0])
            crop_h = min(target_h, scaled_size[1])
            left = (scaled_size[0] - crop_w) // 2
            top = (scaled_size[1] - crop_h) // 2
            return resized.crop((left, top, left + crop_w, top + crop_h))

        if config.fit == FitMode.CONTAIN:
            fill = self._fill_color(resized)
            canvas = Image.new(resized.mode, (target_w, target_h), fill)
            offset = ((target_w - scaled_size[0]) // 2, (target_h - scaled_size[1]) // 2)
            canvas.paste(resized, offset)
            return canvas

        return resized

    def _fill_color(self, image: Image.Image) -> tuple[int, ...]:
        """Background colour for letterboxing and rotation, matched to the image mode."""
        rgba = self._background_rgba() or self.DEFAULT_FILL
        return rgba if image.mode == "RGBA" else rgba[:3]

    def _background_rgba(self) -> tuple[int, int, int, int] | None:
        if not self.config.background:
            return None
        color = ImageColor.getrgb(self.config.background)
        if len(color) == 3:
            return (color[0], color[1], color[2], 255)
        return cast("tuple[int, int, int, int]", color)

    @staticmethod
    def _split_alpha(image: Image.Image) -> tuple[Image.Image, Image.Image | None]:
        if image.mode == "RGBA":
            return image.convert("RGB"), image.getchannel("A")
        return image, None

    @staticmethod
    def _merge_alpha(rgb: Image.Image, alpha: Image.Image | None) -> Image.Image:
        if alpha is None:
            return rgb
        merged = rgb.convert("RGBA")
        merged.putalpha(alpha)
        return merged

    def _modulate(
        self, image: Image.Image, brightness: float, saturation: float, hue: float
    ) -> Image.Image:
        """Scale brightness and saturation and rotate hue in HSV space.

        Args:
            image: RGB or RGBA image
            brightness: Value multiplier
            saturation: Saturation multiplier
            hue: Hue rotation in degrees

        Returns:
            Adjusted image in the same mode
        """
        rgb, alpha = self._split_alpha(image)
        img_float = np.asarray(rgb, dtype=np.float32) / 255.0

        # float32 HSV: hue in [0, 360), saturation/value in [0, 1]
        hsv = cv2.cvtColor(img_float, cv2.COLOR_RGB2HSV)
        hsv[:, :, 0] = np.mod(hsv[:, :, 0] + hue, 360.0)
        hsv[:, :, 1] = np.clip(hsv[:, :, 1] * saturation, 0.0, 1.0)
        hsv[:, :, 2] = np.clip(hsv[:, :, 2] * brightness, 0.0, 1.0)

        adjusted = cv2.cvtColor(hsv, cv2.COLOR_HSV2RGB)
        return self._merge_alpha(self._from_float(adjusted), alpha)

    def _adjust_contrast(self, image: Image.Image, slope: float) -> Image.Image:
        """Apply ``y = slope * x + intercept`` with mid-grey (128) as fixed point."""
        intercept = -(self.CONTRAST_PIVOT * slope) + self.CONTRAST_PIVOT
        rgb, alpha = self._split_alpha(image)
        pixels = np.asarray(rgb, dtype=np.float32)
        adjusted = np.clip(pixels * slope + intercept, 0.0, 255.0)
        return self._merge_alpha(Image.fromarray(adjusted.astype(np.uint8)), alpha)

    def _adjust_gamma(self, image: Image.Image, gamma: float) -> Image.Image:
        """Brighten mid-tones with ``y = 255 * (x / 255) ** (1 / gamma)``."""
        lut = np.power(np.arange(256, dtype=np.float32) / 255.0, 1.0 / gamma) * 255.0
        table = np.clip(np.rint(lut), 0, 255).astype(np.uint8)
        rgb, alpha = self._split_alpha(image)
        pixels = np.asarray(rgb, dtype=np.uint8)
        return self._merge_alpha(Image.fromarray(table[pixels]), alpha)

    def _grayscale(self, image: Image.Image) -> Image.Image:
        rgb, alpha = self._split_alpha(image)
        return self._merge_alpha(ImageOps.grayscale(rgb).convert("RGB"), alpha)

    def _sepia(self, image: Image.Image) -> Image.Image:
        """Grayscale followed by a fixed warm tint that keeps black and white points."""
        rgb, alpha = self._split_alpha(image)
        tinted = ImageOps.colorize(
            ImageOps.grayscale(rgb),
            black=(0, 0, 0),
            white=(255, 255, 255),
            mid=self.SEPIA_TINT,
        )
        return self._merge_alpha(tinted, alpha)

    def _sharpen(self, image: Image.Image) -> Image.Image:
        """Apply unsharp mask sharpening."""
        rgb, alpha = self._split_alpha(image)
        img_uint8 = np.asarray(rgb, dtype=np.uint8)

        blurred = cv2.GaussianBlur(img_uint8, (self.SHARPEN_KERNEL_SIZE, self.SHARPEN_KERNEL_SIZE), 0)

        # Unsharp mask: original + amount * (original - blurred)
        sharpened = cv2.addWeighted(
            img_uint8,
            1.0 + self.SHARPEN_AMOUNT,
            blurred,
            -self.SHARPEN_AMOUNT,
            0,
        )
        return self._merge_alpha(Image.fromarray(sharpened), alpha)

    @staticmethod
    def _from_float(image: NDArray[np.float32]) -> Image.Image:
        img_float = np.clip(image, 0.0, 1.0)
        return Image.fromarray(
            cast("NDArray[np.uint8]", np.rint(img_float * 255.0).astype(np.uint8))
        )

    def _preserved_exif(self, exif_blob: bytes | None) -> bytes | None:
        """Re-serialize EXIF with the orientation reset, since pixels are already upright."""
        if not exif_blob:
            return None
        try:
            exif_dict = piexif.load(exif_blob)
            exif_dict.setdefault("0th", {})[EXIF_ORIENTATION_TAG] = 1
            # Thumbnails no longer match the transformed pixels
            exif_dict.pop("thumbnail", None)
            exif_dict["1st"] = {}
            return cast("bytes", piexif.dump(exif_dict))
        except Exception as e:
            self.logger.warning(f"Could not preserve EXIF metadata: {type(e).__name__}: {e}")
            return None

    def _encode(
        self, image: Image.Image, exif_blob: bytes | None, icc_profile: bytes | None
    ) -> bytes:
        """Encode to the configured format.

        Raises:
            ProcessingError: If encoding fails
        """
        config = self.config
        save_kwargs: dict[str, Any] = {}

        if config.format == OutputFormat.WEBP:
            save_kwargs.update(
                format="WEBP",
                quality=config.quality,
                method=6 if config.lossless else 4,
                lossless=config.lossless,
            )
        elif config.format == OutputFormat.AVIF:
            effort = 8 if config.lossless else 4
            save_kwargs.update(
                format="AVIF",
                # libavif treats quality 100 with 4:4:4 chroma as lossless
                quality=100 if config.lossless else config.quality,
                speed=10 - effort,
            )
            if config.lossless:
                save_kwargs["subsampling"] = "4:4:4"
        elif config.format == OutputFormat.JPEG:
            image = self._flatten(image)
            save_kwargs.update(
                format="JPEG",
                quality=config.quality,
                optimize=True,
                progressive=True,
            )
        else:
            save_kwargs.update(format="PNG", compress_level=9)

        if not config.strip_metadata:
            exif_bytes = self._preserved_exif(exif_blob)
            if exif_bytes:
                save_kwargs["exif"] = exif_bytes
            if icc_profile:
                save_kwargs["icc_profile"] = icc_profile

        try:
            buffer = BytesIO()
            image.save(buffer, **save_kwargs)
            return buffer.getvalue()
        except Exception as e:
            raise ProcessingError(f"Failed to encode {config.format.value}: {str(e)}") from e

    def _flatten(self, image: Image.Image) -> Image.Image:
        """Composite transparency onto the background colour (white by default)."""
        if image.mode != "RGBA":
            return image
        background = self._background_rgba()
        color = background[:3] if background else self.JPEG_FLATTEN_COLOR
        canvas = Image.new("RGB", image.size, color)
        canvas.paste(image, mask=image.getchannel("A"))
        return canvas
