"""
Processor Coordinator

Chooses between the two reconstruction strategies and guarantees a result:

  - ENHANCED: registry-backed, exact source delimiters (may be unavailable)
  - LEGACY:   annotation-based, always available

Mode selection:
  LEGACY   -> legacy
  ENHANCED -> enhanced if available, otherwise legacy (logged downgrade)
  AUTO     -> enhanced if available, otherwise legacy

Enhanced returning None or raising falls back to legacy inside the same
call. Only a legacy failure is fatal (CombinedProcessingError).
"""

import importlib
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple, Union

from ..exceptions import CombinedProcessingError, EnhancedExecutionError
from ..parsers.expression_extractor import ExpressionExtractor
from ..storage.expression_registry import ExpressionRegistry
from ..utils.config import CoordinatorConfig
from .legacy_processor import LegacyProcessor

logger = logging.getLogger(__name__)


class ProcessingMode(Enum):
    AUTO = "auto"
    ENHANCED = "enhanced"
    LEGACY = "legacy"


@dataclass
class ProcessingOptions:
    """Input to one reconstruction."""
    content: str
    source_fingerprint: Optional[str] = None

    @classmethod
    def coerce(cls, options: Union["ProcessingOptions", Mapping[str, Any], str]) -> "ProcessingOptions":
        if isinstance(options, cls):
            return options
        if isinstance(options, Mapping):
            return cls(
                content=options.get("content"),
                source_fingerprint=options.get("source_fingerprint"),
            )
        return cls(content=options)


@dataclass
class ProcessingResult:
    """Uniform result of either strategy."""
    content: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def method(self) -> str:
        return self.metadata.get("method", "")

    def to_dict(self) -> Dict[str, Any]:
        return {"content": self.content, "metadata": dict(self.metadata)}


@dataclass
class Availability:
    """Whether the enhanced strategy can be trusted right now."""
    enhanced_present: bool = False
    entry_point_callable: bool = False
    registry_initialised: bool = False
    registry_consistent: bool = False
    registry_stale: bool = False
    fingerprint_match: bool = True
    registry_generation: int = 0

    @property
    def enhanced_ready(self) -> bool:
        return (
            self.enhanced_present
            and self.entry_point_callable
            and self.registry_initialised
            and self.registry_consistent
            and not self.registry_stale
            and self.fingerprint_match
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "enhanced_present": self.enhanced_present,
            "entry_point_callable": self.entry_point_callable,
            "registry_initialised": self.registry_initialised,
            "registry_consistent": self.registry_consistent,
            "registry_stale": self.registry_stale,
            "fingerprint_match": self.fingerprint_match,
            "registry_generation": self.registry_generation,
            "enhanced_ready": self.enhanced_ready,
        }


# ===========================================================================
# Capability providers
# ===========================================================================

class CapabilityProvider(Protocol):
    def resolve(self) -> Optional[Any]: ...


class StaticCapabilityProvider:
    """Provider that always returns the processor it was given (or None)."""

    def __init__(self, processor: Optional[Any] = None):
        self.processor = processor

    def resolve(self) -> Optional[Any]:
        return self.processor


class ModuleCapabilityProvider:
    """Import a module and build the enhanced processor from its factory."""

    def __init__(
        self,
        module_name: str,
        factory_name: str,
        registry: ExpressionRegistry,
        **factory_kwargs: Any,
    ):
        self.module_name = module_name
        self.factory_name = factory_name
        self.registry = registry
        self.factory_kwargs = factory_kwargs

    def resolve(self) -> Optional[Any]:
        try:
            module = importlib.import_module(self.module_name)
        except ImportError as e:
            logger.debug(f"Enhanced module {self.module_name} not importable: {e}")
            return None
        except Exception as e:
            logger.warning(f"Enhanced module {self.module_name} failed to load: {e}")
            return None
        factory = getattr(module, self.factory_name, None)
        if not callable(factory):
            logger.debug(f"{self.module_name}.{self.factory_name} is not callable")
            return None
        try:
            return factory(self.registry, **self.factory_kwargs)
        except Exception as e:
            logger.warning(f"Enhanced factory {self.module_name}.{self.factory_name} failed: {e}")
            return None


# ===========================================================================
# Coordinator
# ===========================================================================

class ProcessorCoordinator:
    """Route reconstruction requests to the enhanced or legacy strategy."""

    def __init__(
        self,
        registry: ExpressionRegistry,
        legacy: Optional[LegacyProcessor] = None,
        enhanced_provider: Optional[CapabilityProvider] = None,
        config: Optional[CoordinatorConfig] = None,
    ):
        self.registry = registry
        self.legacy = legacy or LegacyProcessor()
        self.enhanced_provider = enhanced_provider or StaticCapabilityProvider(None)
        self.config = config or CoordinatorConfig()
        self.mode = ProcessingMode.AUTO
        if not self.set_mode(self.config.mode):
            self.mode = ProcessingMode.AUTO

    # -----------------------------------------------------------------------
    # Mode
    # -----------------------------------------------------------------------

    def set_mode(self, mode: Union[ProcessingMode, str]) -> bool:
        if isinstance(mode, ProcessingMode):
            self.mode = mode
        else:
            try:
                self.mode = ProcessingMode(str(mode).lower())
            except ValueError:
                logger.error(f"Invalid processing mode: {mode}")
                return False
        logger.info(f"Processing mode set to: {self.mode.value}")
        return True

    def get_mode(self) -> ProcessingMode:
        return self.mode

    # -----------------------------------------------------------------------
    # Availability
    # -----------------------------------------------------------------------

    def _probe(self, source_fingerprint: Optional[str] = None) -> Tuple[Availability, Optional[Any]]:
        """Query the provider once and combine it with registry status."""
        try:
            processor = self.enhanced_provider.resolve()
        except Exception as e:
            logger.warning(f"Enhanced provider failed, treating enhanced as unavailable: {e}")
            processor = None
        status = self.registry.status()
        fingerprint_match = (
            source_fingerprint is None
            or status.source_fingerprint is None
            or source_fingerprint == status.source_fingerprint
        )
        availability = Availability(
            enhanced_present=processor is not None,
            entry_point_callable=callable(getattr(processor, "process", None)),
            registry_initialised=status.initialised,
            registry_consistent=status.consistent,
            registry_stale=status.stale,
            fingerprint_match=fingerprint_match,
            registry_generation=status.generation,
        )
        return availability, processor

    def availability(self, source_fingerprint: Optional[str] = None) -> Availability:
        return self._probe(source_fingerprint)[0]

    def select_method(self, availability: Availability) -> str:
        if self.mode == ProcessingMode.LEGACY:
            return "legacy"
        if availability.enhanced_ready:
            return "enhanced"
        if self.mode == ProcessingMode.ENHANCED:
            logger.warning(
                "Enhanced mode requested but unavailable (%s), using legacy",
                availability.to_dict()
            )
        return "legacy"

    # -----------------------------------------------------------------------
    # Processing
    # -----------------------------------------------------------------------

    async def process(self, options: Union[ProcessingOptions, Mapping[str, Any], str]) -> ProcessingResult:
        """Reconstruct content, falling back to legacy whenever enhanced cannot deliver."""
        opts = ProcessingOptions.coerce(options)
        availability, processor = self._probe(opts.source_fingerprint)
        method = self.select_method(availability)

        fallback_reason = None
        if method == "enhanced":
            try:
                result = self._run_enhanced(processor, opts)
            except EnhancedExecutionError as e:
                logger.error(f"Enhanced processing failed, falling back to legacy: {e}")
                result = None
                fallback_reason = "enhanced_error"
            else:
                if result is None:
                    logger.warning("Enhanced processing returned no result, falling back to legacy")
                    fallback_reason = "registry_unavailable"
            if result is not None:
                return result

        result = await self._run_legacy(opts)
        if fallback_reason:
            result.metadata["fallback_reason"] = fallback_reason
        return result

    def _run_enhanced(self, processor: Any, opts: ProcessingOptions) -> Optional[ProcessingResult]:
        try:
            enhanced = processor.process(opts.content)
        except Exception as e:
            raise EnhancedExecutionError(str(e)) from e
        if enhanced is None:
            return None
        metadata = {"method": "enhanced", "custom_macros": dict(enhanced.custom_macros)}
        metadata.update(enhanced.metadata)
        return ProcessingResult(content=enhanced.processed_content, metadata=metadata)

    async def _run_legacy(self, opts: ProcessingOptions) -> ProcessingResult:
        try:
            legacy = await self.legacy.process(opts)
        except Exception as e:
            logger.error(f"Legacy processing failed: {e}")
            raise CombinedProcessingError() from e
        metadata = {"method": "legacy"}
        metadata.update(legacy.to_metadata())
        return ProcessingResult(content=legacy.content, metadata=metadata)

    # -----------------------------------------------------------------------
    # Comparison and diagnostics
    # -----------------------------------------------------------------------

    async def process_comparison(self, options: Union[ProcessingOptions, Mapping[str, Any], str]) -> Dict[str, Any]:
        """Run both strategies side by side without touching the mode."""
        opts = ProcessingOptions.coerce(options)
        availability, processor = self._probe(opts.source_fingerprint)

        outcome: Dict[str, Any] = {"legacy": None, "enhanced": None}

        try:
            outcome["legacy"] = (await self._run_legacy(opts)).to_dict()
        except CombinedProcessingError as e:
            outcome["legacy"] = {"error": str(e.__cause__ or e)}

        if processor is None:
            outcome["enhanced"] = {"error": "Enhanced processor not available"}
        else:
            try:
                enhanced = self._run_enhanced(processor, opts)
                outcome["enhanced"] = (
                    enhanced.to_dict() if enhanced is not None
                    else {"error": "Registry unavailable for this content"}
                )
            except EnhancedExecutionError as e:
                outcome["enhanced"] = {"error": str(e)}

        outcome["meta"] = {
            "timestamp": datetime.now().isoformat(),
            "mode": self.mode.value,
            "availability": availability.to_dict(),
            "equivalence": compare_outputs(outcome["legacy"], outcome["enhanced"]),
        }
        return outcome

    def get_diagnostics(self) -> Dict[str, Any]:
        availability = self.availability()
        status = self.registry.status()

        recommendations = []
        if not availability.enhanced_present:
            recommendations.append("Enhanced processor not loaded; only legacy reconstruction is possible")
        if not status.initialised:
            recommendations.append("Registry is empty; extract the source document before reconstruction")
        elif not status.consistent:
            recommendations.append("Registry views disagree; re-run extraction")
        elif status.stale:
            recommendations.append("Registry generation is stale; re-run extraction for the current document")
        if self.mode == ProcessingMode.LEGACY and availability.enhanced_ready:
            recommendations.append("Enhanced reconstruction is available; consider AUTO mode")
        if not recommendations:
            recommendations.append("System is properly configured")

        return {
            "mode": self.mode.value,
            "config": {
                "enhanced_module": self.config.enhanced_module,
                "enhanced_factory": self.config.enhanced_factory,
                "footnote_selectors": list(self.config.footnote_selectors),
            },
            "availability": availability.to_dict(),
            "registry": status.to_dict(),
            "selected_method": self.select_method(availability),
            "recommendations": recommendations,
        }


def compare_outputs(legacy: Optional[Dict[str, Any]], enhanced: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Content equality plus expression-level overlap between two outcomes."""
    legacy_content = (legacy or {}).get("content")
    enhanced_content = (enhanced or {}).get("content")
    if legacy_content is None or enhanced_content is None:
        return {"comparable": False}

    extractor = ExpressionExtractor()
    legacy_exprs = Counter(extractor.extract(legacy_content).position_sequence())
    enhanced_exprs = Counter(extractor.extract(enhanced_content).position_sequence())
    shared = legacy_exprs & enhanced_exprs

    return {
        "comparable": True,
        "identical": legacy_content == enhanced_content,
        "legacy_expressions": sum(legacy_exprs.values()),
        "enhanced_expressions": sum(enhanced_exprs.values()),
        "shared_expressions": sum(shared.values()),
        "only_legacy": sum((legacy_exprs - enhanced_exprs).values()),
        "only_enhanced": sum((enhanced_exprs - legacy_exprs).values()),
    }
