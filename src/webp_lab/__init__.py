"""WebP Lab batch image transformer.

Applies one shared transformation to a batch of uploaded images and returns
either the single transformed image or a zip archive with a manifest.
"""

__version__ = "0.1.0"

from webp_lab.batch_processor import BatchProcessor
from webp_lab.config import get_log_file_from_env, get_log_level_from_env, resolve_limits
from webp_lab.logging_config import (
    get_logger,
    log_operation_complete,
    log_operation_error,
    log_operation_start,
    setup_logging,
)
from webp_lab.models import (
    BatchItem,
    BatchManifest,
    BatchResults,
    FitMode,
    OutcomeStatus,
    OutputFormat,
    PackagedResponse,
    RuntimeLimits,
    TransformConfiguration,
    TransformFailure,
    TransformOutcome,
    TransformSuccess,
)
from webp_lab.options import PRESETS, apply_preset, normalize_config
from webp_lab.orchestrator import TransformOrchestrator
from webp_lab.packager import ResultPackager
from webp_lab.scheduler import run_batch
from webp_lab.transformer import ImageTransformer, sanitize_base_name

__all__ = [
    "PRESETS",
    "BatchItem",
    "BatchManifest",
    "BatchProcessor",
    "BatchResults",
    "FitMode",
    "ImageTransformer",
    "OutcomeStatus",
    "OutputFormat",
    "PackagedResponse",
    "ResultPackager",
    "RuntimeLimits",
    "TransformConfiguration",
    "TransformFailure",
    "TransformOrchestrator",
    "TransformOutcome",
    "TransformSuccess",
    "apply_preset",
    "get_log_file_from_env",
    "get_log_level_from_env",
    "get_logger",
    "log_operation_complete",
    "log_operation_error",
    "log_operation_start",
    "normalize_config",
    "resolve_limits",
    "run_batch",
    "sanitize_base_name",
    "setup_logging",
]
