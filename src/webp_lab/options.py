"""Normalization of untrusted transform options.

``normalize_config`` is the only way a ``TransformConfiguration`` is built
from client input. It never raises: malformed, missing or out-of-range
fields are replaced by defaults or clamped into range. It is idempotent,
because options are round-tripped between the client, storage and the
server many times.
"""

from __future__ import annotations

import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .models import FitMode, OutputFormat, TransformConfiguration

DEFAULT_CONFIG = TransformConfiguration()

COLOR_HEX = re.compile(r"#(?:[0-9a-fA-F]{3,4}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})")

QUALITY_RANGE = (1, 100)
BLUR_RANGE = (0.0, 20.0)
MODULATE_RANGE = (0.0, 3.0)
GAMMA_RANGE = (1.0, 3.0)
OPACITY_RANGE = (0.0, 1.0)


def clamp(value: float, minimum: float, maximum: float) -> float:
    return max(minimum, min(maximum, value))


def js_round(value: float) -> int:
    """Round half up, so 2.5 becomes 3 as the web client does."""
    return math.floor(value + 0.5)


def to_number(value: Any) -> float | None:
    """Coerce a JSON-ish value to a finite float.

    Numbers and numeric strings are accepted. Booleans, containers, None
    and anything that parses to NaN or infinity are not. Integers too large
    for a float are rejected the same way.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_bool(value: Any, fallback: bool) -> bool:
    if isinstance(value, bool):
        return value
    if value == "true":
        return True
    if value == "false":
        return False
    return fallback


def to_positive_int_or_none(value: Any) -> int | None:
    number = to_number(value)
    if number is None or number <= 0:
        return None
    rounded = js_round(number)
    return rounded if rounded >= 1 else None


def to_background_color(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed if COLOR_HEX.fullmatch(trimmed) else None


def to_enum(enum_type: type[Enum], value: Any, fallback: Enum) -> Any:
    if isinstance(value, enum_type):
        return value
    for member in enum_type:
        if member.value == value:
            return member
    return fallback


def to_bounded(value: Any, bounds: tuple[float, float], fallback: float) -> float:
    number = to_number(value)
    return clamp(number, *bounds) if number is not None else fallback


def to_optional_str(value: Any) -> str | None:
    return value if isinstance(value, str) else None


def _source_mapping(raw: Any) -> Mapping[str, Any]:
    if isinstance(raw, TransformConfiguration):
        return raw.to_dict()
    if isinstance(raw, Mapping):
        return raw
    return {}


def _pick(source: Mapping[str, Any], key: str, alias: str | None = None) -> Any:
    if key in source:
        return source[key]
    if alias is not None:
        return source.get(alias)
    return None


def normalize_config(raw: Any = None) -> TransformConfiguration:
    """Build a fully populated, in-bounds configuration from any value.

    Args:
        raw: Untrusted options, usually a dict decoded from JSON. Keys use the
            client's camelCase names; snake_case attribute names are accepted
            as aliases. Non-mapping values are treated as an empty mapping.

    Returns:
        TransformConfiguration with every field valid
    """
    source = _source_mapping(raw)
    defaults = DEFAULT_CONFIG

    quality = to_number(source.get("quality"))
    rotate = to_number(source.get("rotate"))
    hue = to_number(source.get("hue"))
    gamma = to_number(source.get("gamma"))

    return TransformConfiguration(
        format=to_enum(OutputFormat, source.get("format"), defaults.format),
        quality=(
            js_round(clamp(quality, *QUALITY_RANGE)) if quality is not None else defaults.quality
        ),
        width=to_positive_int_or_none(source.get("width")),
        height=to_positive_int_or_none(source.get("height")),
        fit=to_enum(FitMode, source.get("fit"), defaults.fit),
        rotate=rotate if rotate is not None else defaults.rotate,
        grayscale=to_bool(source.get("grayscale"), defaults.grayscale),
        blur=to_bounded(source.get("blur"), BLUR_RANGE, defaults.blur),
        sharpen=to_bool(source.get("sharpen"), defaults.sharpen),
        flip=to_bool(source.get("flip"), defaults.flip),
        flop=to_bool(source.get("flop"), defaults.flop),
        strip_metadata=to_bool(
            _pick(source, "stripMetadata", "strip_metadata"), defaults.strip_metadata
        ),
        without_enlargement=to_bool(
            _pick(source, "withoutEnlargement", "without_enlargement"),
            defaults.without_enlargement,
        ),
        background=to_background_color(source.get("background")),
        lossless=to_bool(source.get("lossless"), defaults.lossless),
        brightness=to_bounded(source.get("brightness"), MODULATE_RANGE, defaults.brightness),
        saturation=to_bounded(source.get("saturation"), MODULATE_RANGE, defaults.saturation),
        hue=hue if hue is not None else defaults.hue,
        contrast=to_bounded(source.get("contrast"), MODULATE_RANGE, defaults.contrast),
        gamma=clamp(gamma, *GAMMA_RANGE) if gamma is not None else None,
        sepia=to_bool(source.get("sepia"), defaults.sepia),
        smart_crop=to_bool(_pick(source, "smartCrop", "smart_crop"), defaults.smart_crop),
        watermark_text=to_optional_str(_pick(source, "watermarkText", "watermark_text")),
        watermark_opacity=to_bounded(
            _pick(source, "watermarkOpacity", "watermark_opacity"),
            OPACITY_RANGE,
            defaults.watermark_opacity,
        ),
        rename_pattern=to_optional_str(_pick(source, "renamePattern", "rename_pattern")),
    )


@dataclass(frozen=True)
class TransformPreset:
    """Named partial options merged over a base configuration."""

    id: str
    label: str
    description: str
    options: dict[str, Any] = field(default_factory=dict)


PRESETS: tuple[TransformPreset, ...] = (
    TransformPreset(
        id="webp-web",
        label="WebP Web",
        description="Good balance for web delivery.",
        options={
            "format": "webp",
            "quality": 82,
            "withoutEnlargement": True,
            "stripMetadata": True,
        },
    ),
    TransformPreset(
        id="avif-ultra",
        label="AVIF Ultra",
        description="Maximum compression, slower encode.",
        options={
            "format": "avif",
            "quality": 62,
            "stripMetadata": True,
            "withoutEnlargement": True,
        },
    ),
    TransformPreset(
        id="social-1200",
        label="Social 1200",
        description="Best fit for social cards and previews.",
        options={
            "format": "webp",
            "quality": 80,
            "width": 1200,
            "height": 630,
            "fit": "cover",
            "stripMetadata": True,
        },
    ),
    TransformPreset(
        id="archive-lossless",
        label="Archive",
        description="Lossless conversion for quality-critical files.",
        options={
            "format": "png",
            "lossless": True,
            "quality": 100,
            "stripMetadata": False,
        },
    ),
)


def get_preset(preset_id: str) -> TransformPreset:
    """Look up a preset by id.

    Raises:
        KeyError: If no preset has this id
    """
    for preset in PRESETS:
        if preset.id == preset_id:
            return preset
    raise KeyError(f"Unknown preset: {preset_id}")


def apply_preset(base: Any, preset_id: str) -> TransformConfiguration:
    """Merge a preset's options over ``base`` and renormalize the result."""
    preset = get_preset(preset_id)
    merged = {**normalize_config(base).to_dict(), **preset.options}
    return normalize_config(merged)
