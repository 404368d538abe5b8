"""Runtime configuration from environment variables.

Limits are re-read on every request, so operators can tune them without a
restart. Each variable is validated on its own and falls back to a fixed
default when it is missing or not a finite positive number.
"""

from __future__ import annotations

import logging
import math
import os
from pathlib import Path
from typing import TYPE_CHECKING

from .models import RuntimeLimits

if TYPE_CHECKING:
    from collections.abc import Mapping

MAX_INPUT_FILE_MB_ENV = "MAX_INPUT_FILE_MB"
MAX_TOTAL_INPUT_MB_ENV = "MAX_TOTAL_INPUT_MB"
MAX_BATCH_FILES_ENV = "MAX_BATCH_FILES"
TRANSFORM_CONCURRENCY_ENV = "TRANSFORM_CONCURRENCY"
LOG_LEVEL_ENV = "WEBP_LAB_LOG_LEVEL"
LOG_FILE_ENV = "WEBP_LAB_LOG_FILE"

DEFAULT_MAX_BATCH_FILES = 250
MAX_DEFAULT_CONCURRENCY = 8
BYTES_PER_MB = 1024 * 1024


def read_positive_number(environ: Mapping[str, str], name: str, fallback: float) -> float:
    """Read a finite positive number from ``environ``.

    Returns:
        The parsed value, or ``fallback`` if missing or invalid
    """
    raw = environ.get(name)
    if raw is None:
        return fallback

    try:
        value = float(raw)
    except ValueError:
        return fallback

    if not math.isfinite(value) or value <= 0:
        return fallback
    return value


def read_positive_int(environ: Mapping[str, str], name: str, fallback: int) -> int:
    """Read a finite positive number from ``environ`` and floor it."""
    value = read_positive_number(environ, name, 0)
    if value <= 0:
        return fallback
    # Values in (0, 1) floor to zero, which is not a usable count
    return math.floor(value) or fallback


def default_concurrency() -> int:
    """Available CPUs clamped to [1, 8]."""
    cpu_count = os.cpu_count() or 1
    return max(1, min(cpu_count, MAX_DEFAULT_CONCURRENCY))


def resolve_limits(environ: Mapping[str, str] | None = None) -> RuntimeLimits:
    """Compute the effective runtime limits.

    Args:
        environ: Environment mapping, defaults to ``os.environ``

    Returns:
        RuntimeLimits with byte limits converted from MiB (0 = unlimited)
    """
    env = os.environ if environ is None else environ

    max_input_file_mb = read_positive_number(env, MAX_INPUT_FILE_MB_ENV, 0)
    max_total_input_mb = read_positive_number(env, MAX_TOTAL_INPUT_MB_ENV, 0)

    return RuntimeLimits(
        max_input_file_bytes=int(max_input_file_mb * BYTES_PER_MB),
        max_total_input_bytes=int(max_total_input_mb * BYTES_PER_MB),
        max_batch_files=read_positive_int(env, MAX_BATCH_FILES_ENV, DEFAULT_MAX_BATCH_FILES),
        concurrency=read_positive_int(env, TRANSFORM_CONCURRENCY_ENV, default_concurrency()),
    )


def get_log_level_from_env(environ: Mapping[str, str] | None = None) -> int | None:
    """Get the log level from WEBP_LAB_LOG_LEVEL.

    Returns:
        Numeric logging level if the variable names a valid level, None otherwise
    """
    env = os.environ if environ is None else environ
    level_name = env.get(LOG_LEVEL_ENV)
    if not level_name:
        return None

    level = getattr(logging, level_name.strip().upper(), None)
    return level if isinstance(level, int) else None


def get_log_file_from_env(environ: Mapping[str, str] | None = None) -> Path | None:
    """Get the log file path from WEBP_LAB_LOG_FILE, None when unset or blank."""
    env = os.environ if environ is None else environ
    raw = env.get(LOG_FILE_ENV, "").strip()
    return Path(raw) if raw else None
