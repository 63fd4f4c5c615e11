# Reconstruction strategies and coordinator
from .coordinator import (
    Availability,
    ModuleCapabilityProvider,
    ProcessingMode,
    ProcessingOptions,
    ProcessingResult,
    ProcessorCoordinator,
    StaticCapabilityProvider,
)
from .enhanced_processor import EnhancedProcessor, EnhancedResult, create_processor
from .legacy_processor import LegacyProcessor, LegacyResult, wrap_in_environment

__all__ = [
    "Availability",
    "ModuleCapabilityProvider",
    "ProcessingMode",
    "ProcessingOptions",
    "ProcessingResult",
    "ProcessorCoordinator",
    "StaticCapabilityProvider",
    "EnhancedProcessor",
    "EnhancedResult",
    "create_processor",
    "LegacyProcessor",
    "LegacyResult",
    "wrap_in_environment",
]
