"""LaTeX expression preservation: extraction, registry, reconstruction and cleanup."""

from .pipeline import PreservationPipeline, PipelineStats, discover_pairs

__version__ = "1.0.0"

__all__ = ["PreservationPipeline", "PipelineStats", "discover_pairs"]
