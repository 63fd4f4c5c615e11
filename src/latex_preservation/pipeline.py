"""
Main Pipeline for LaTeX Expression Preservation

Orchestrates the workflow around an external renderer:
1. Source Extraction -> 2. Registry Install -> [renderer runs] ->
3. Reconstruction (enhanced / legacy) -> 4. Render-tree Cleanup -> 5. Reports
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from tqdm import tqdm

from .cleanup.expression_cleanup import CleanupReport, ExpressionCleanup
from .cleanup.render_tree import RenderTree
from .exceptions import PreservationError
from .parsers.expression_extractor import ExpressionExtractor, ExtractionResult
from .processors.coordinator import (
    ModuleCapabilityProvider,
    ProcessingOptions,
    ProcessingResult,
    ProcessorCoordinator,
)
from .processors.legacy_processor import LegacyProcessor
from .storage.expression_registry import ExpressionRegistry
from .utils.config import Config
from .utils.file_utils import (
    ensure_dir, get_source_files, read_text_file, safe_json_dump, write_text_file
)
from .utils.logging_utils import PipelineLogger

RENDERED_SUFFIXES = (".html", ".htm")


@dataclass
class PipelineStats:
    """Statistics for one batch run."""
    start_time: datetime
    end_time: Optional[datetime] = None
    total_docs: int = 0
    reconstructed_docs: int = 0
    failed_docs: int = 0
    total_expressions: int = 0
    method_distribution: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": (self.end_time - self.start_time).total_seconds() if self.end_time else None,
            "total_docs": self.total_docs,
            "reconstructed_docs": self.reconstructed_docs,
            "failed_docs": self.failed_docs,
            "success_rate": self.reconstructed_docs / max(1, self.total_docs),
            "total_expressions": self.total_expressions,
            "method_distribution": dict(self.method_distribution),
        }


def discover_pairs(
    source_dir: Union[str, Path],
    rendered_dir: Optional[Union[str, Path]] = None,
) -> List[Tuple[Path, Path]]:
    """
    Match each source file with its rendered HTML by stem.

    Sources without a rendered counterpart are skipped.
    """
    rendered_root = Path(rendered_dir) if rendered_dir else Path(source_dir)
    pairs = []
    for source in get_source_files(source_dir):
        for suffix in RENDERED_SUFFIXES:
            candidate = rendered_root / f"{source.stem}{suffix}"
            if candidate.exists():
                pairs.append((source, candidate))
                break
    return pairs


class PreservationPipeline:
    """
    Ties extractor, registry, coordinator and cleanup together.

    One registry generation is live at a time, so documents are processed
    one after another: prepare() then reconstruct() for the same source.
    """

    def __init__(
        self,
        config: Union[Config, str, None] = "configs/config.yaml",
        registry: Optional[ExpressionRegistry] = None,
        coordinator: Optional[ProcessorCoordinator] = None,
        logger: Optional[PipelineLogger] = None,
    ):
        self.config = config if isinstance(config, Config) else Config(config)

        log_cfg = self.config.log_settings
        self.logger = logger or PipelineLogger(
            name="latex_preservation",
            log_dir=self.config.paths["log_dir"] if log_cfg.get("to_file") else None,
            level=log_cfg.get("level", "INFO"),
            console=log_cfg.get("console", True),
        )

        self.registry = registry or ExpressionRegistry.instance(
            max_age_seconds=self.config.registry.max_age_seconds
        )
        self.extractor = ExpressionExtractor(self.config.extraction)

        coord_cfg = self.config.coordinator
        self.coordinator = coordinator or ProcessorCoordinator(
            registry=self.registry,
            legacy=LegacyProcessor(self.config.cleanup.expression_selector),
            enhanced_provider=ModuleCapabilityProvider(
                coord_cfg.enhanced_module,
                coord_cfg.enhanced_factory,
                self.registry,
                footnote_selectors=coord_cfg.footnote_selectors,
                expression_selector=self.config.cleanup.expression_selector,
            ),
            config=coord_cfg,
        )

    # =========================================================================
    # Stage 1-2: Extraction and registry install
    # =========================================================================

    def prepare(self, source_text: str) -> ExtractionResult:
        """Extract expressions from source and install them as a new generation."""
        generation = self.registry.begin_generation()
        result = self.extractor.extract(source_text)

        installed = self.registry.replace(
            result.index_map(),
            result.position_sequence(),
            source_fingerprint=result.source_fingerprint,
            context={
                "preamble_commands": list(result.preamble_commands),
                "footnote_records": list(result.footnote_records),
            },
            generation=generation,
        )
        if not installed:
            self.logger.warning(f"Registry rejected generation {generation}")

        self.logger.update_metric("expressions_extracted", len(result.records))
        self.logger.update_metric("footnote_expressions", len(result.footnote_records))
        self.logger.update_metric("integrity_issues", len(result.integrity_issues))
        for issue in result.integrity_issues:
            self.logger.warning(f"Integrity issue: {issue.message}")
        return result

    # =========================================================================
    # Stage 3: Reconstruction
    # =========================================================================

    async def reconstruct(
        self,
        rendered_html: str,
        source_fingerprint: Optional[str] = None,
    ) -> ProcessingResult:
        result = await self.coordinator.process(
            ProcessingOptions(content=rendered_html, source_fingerprint=source_fingerprint)
        )
        self.logger.update_metric(f"{result.method}_results")
        if "fallback_reason" in result.metadata:
            self.logger.update_metric("fallbacks")
        return result

    async def compare(
        self,
        rendered_html: str,
        source_fingerprint: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self.coordinator.process_comparison(
            ProcessingOptions(content=rendered_html, source_fingerprint=source_fingerprint)
        )

    # =========================================================================
    # Stage 4: Cleanup
    # =========================================================================

    def build_cleanup(self, tree: RenderTree, **kwargs: Any) -> ExpressionCleanup:
        return ExpressionCleanup(tree, self.config.cleanup, **kwargs)

    async def cleanup_until_settled(
        self,
        tree: Union[RenderTree, ExpressionCleanup],
        attempts: Optional[int] = None,
        delay: Optional[float] = None,
    ) -> CleanupReport:
        """
        Re-run cleanup while it is deferred for missing annotations.

        Returns the first performed report, or the last deferred one.
        """
        cleanup = tree if isinstance(tree, ExpressionCleanup) else self.build_cleanup(tree)
        attempts = attempts if attempts is not None else self.config.cleanup.retry_attempts
        delay = delay if delay is not None else self.config.cleanup.retry_delay

        report = cleanup.perform_comprehensive_cleanup()
        for attempt in range(1, max(1, attempts)):
            if report.performed:
                break
            self.logger.update_metric("cleanups_deferred")
            self.logger.debug(f"Cleanup deferred ({report.reason}), retry {attempt} in {delay}s")
            await asyncio.sleep(delay)
            report = cleanup.perform_comprehensive_cleanup()

        if report.performed:
            self.logger.update_metric("cleanups_performed")
        else:
            self.logger.update_metric("cleanups_deferred")
            self.logger.warning(f"Cleanup still deferred after {attempts} attempt(s): {report.reason}")
        return report

    # =========================================================================
    # Batch driver
    # =========================================================================

    async def process_document(self, source_text: str, rendered_html: str) -> Dict[str, Any]:
        """prepare() + reconstruct() for one document."""
        extraction = self.prepare(source_text)
        result = await self.reconstruct(rendered_html, extraction.source_fingerprint)
        return {
            "extraction": extraction,
            "result": result,
        }

    async def run_batch(
        self,
        pairs: Sequence[Tuple[Union[str, Path], Union[str, Path]]],
        output_dir: Optional[Union[str, Path]] = None,
        report_path: Optional[Union[str, Path]] = None,
    ) -> PipelineStats:
        """
        Reconstruct a batch of (source, rendered HTML) file pairs.

        Args:
            pairs: Source and rendered file paths
            output_dir: Where reconstructed HTML is written
            report_path: JSON report location

        Returns:
            Batch statistics
        """
        stats = PipelineStats(start_time=datetime.now(), total_docs=len(pairs))
        output_root = ensure_dir(output_dir or self.config.paths["output_dir"])
        report_path = Path(report_path) if report_path else (
            Path(self.config.paths["report_dir"]) / "reconstruction_report.json"
        )

        self.logger.info("=" * 60)
        self.logger.info("Starting LaTeX Preservation Batch")
        self.logger.info(f"Documents: {len(pairs)}")
        self.logger.info("=" * 60)

        documents = []
        for source_path, rendered_path in tqdm(pairs, desc="Reconstructing documents"):
            source_path = Path(source_path)
            entry: Dict[str, Any] = {"source": str(source_path), "rendered": str(rendered_path)}
            try:
                outcome = await self.process_document(
                    read_text_file(source_path), read_text_file(rendered_path)
                )
            except (PreservationError, OSError) as e:
                stats.failed_docs += 1
                self.logger.update_metric("docs_failed")
                self.logger.error(f"Reconstruction failed for {source_path.name}: {e}", exc=e)
                entry["error"] = str(e)
                documents.append(entry)
                continue

            extraction: ExtractionResult = outcome["extraction"]
            result: ProcessingResult = outcome["result"]
            output_path = write_text_file(result.content, output_root / f"{source_path.stem}.html")

            stats.reconstructed_docs += 1
            stats.total_expressions += len(extraction.records)
            stats.method_distribution[result.method] = stats.method_distribution.get(result.method, 0) + 1
            self.logger.update_metric("docs_processed")

            entry.update({
                "output": str(output_path),
                "source_fingerprint": extraction.source_fingerprint,
                "statistics": extraction.statistics(),
                "integrity_issues": [i.to_dict() for i in extraction.integrity_issues],
                "metadata": result.metadata,
            })
            documents.append(entry)

        stats.end_time = datetime.now()
        safe_json_dump({"stats": stats.to_dict(), "documents": documents}, report_path)
        self.logger.log_summary()
        return stats
