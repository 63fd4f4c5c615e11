"""Exception and warning types raised across the preservation pipeline."""

from dataclasses import dataclass
from typing import Any, Dict


class PreservationError(Exception):
    """Base class for pipeline errors."""


class EnhancedExecutionError(PreservationError):
    """The registry-backed reconstruction raised while running."""


class LegacyProcessingError(PreservationError):
    """The annotation-based reconstruction could not produce output."""


class CombinedProcessingError(PreservationError):
    """No reconstruction strategy produced output."""

    def __init__(self, message: str = "Both enhanced and legacy processing failed"):
        super().__init__(message)


class ExtractionIntegrityWarning(UserWarning):
    """Extraction produced records that break an ordering guarantee."""


@dataclass
class IntegrityIssue:
    """A non-fatal data-integrity finding recorded during extraction."""
    code: str
    message: str
    source_offset: int
    category: type = ExtractionIntegrityWarning

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "source_offset": self.source_offset,
            "category": self.category.__name__,
        }
