"""Pytest configuration and shared fixtures."""

from io import BytesIO

import pytest
from PIL import Image


def encode_image(
    size: tuple[int, int] = (64, 48),
    color: tuple[int, ...] = (200, 120, 40),
    fmt: str = "PNG",
    mode: str = "RGB",
) -> bytes:
    """Encode a solid-colour test image to bytes."""
    image = Image.new(mode, size, color)
    buffer = BytesIO()
    image.save(buffer, format=fmt)
    return buffer.getvalue()


@pytest.fixture
def image_bytes():
    """Provide a factory for encoded test images."""
    return encode_image


@pytest.fixture
def png_item():
    """Provide a small PNG batch item."""
    from webp_lab.models import BatchItem

    return BatchItem(name="photo.png", data=encode_image(), content_type="image/png")


@pytest.fixture
def default_config():
    """Provide the default transform configuration."""
    from webp_lab.options import normalize_config

    return normalize_config({})


@pytest.fixture
def unlimited_limits():
    """Provide runtime limits with no byte caps and two workers."""
    from webp_lab.models import RuntimeLimits

    return RuntimeLimits(
        max_input_file_bytes=0,
        max_total_input_bytes=0,
        max_batch_files=250,
        concurrency=2,
    )


@pytest.fixture
def limits_resolver(unlimited_limits):
    """Provide a limits resolver that ignores the environment."""
    return lambda: unlimited_limits
