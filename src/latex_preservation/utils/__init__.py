"""Utility modules for the preservation pipeline."""

from .config import Config
from .logging_utils import setup_logger, PipelineLogger
from .file_utils import ensure_dir, safe_json_dump, safe_json_load, compute_content_hash

__all__ = [
    "Config",
    "setup_logger",
    "PipelineLogger",
    "ensure_dir",
    "safe_json_dump",
    "safe_json_load",
    "compute_content_hash",
]
