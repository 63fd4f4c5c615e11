"""
Liveness-aware cleanup of the render tree.

Removes temporary markers, orphaned expression nodes and empty wrappers left
behind by the renderer, without ever deleting a node that still carries an
annotation (the only source the legacy reconstruction can recover from).

Two guards:
  1. Global: expression nodes present but no annotations anywhere means the
     renderer has not attached them yet; the pass is deferred untouched.
  2. Per node: the annotation count is re-read right before each removal,
     since earlier removals in the same pass can change the tree.

Cleanup does not retry. Callers that want to wait for annotations re-invoke
perform_comprehensive_cleanup() (see PreservationPipeline.cleanup_until_settled).
"""

import gc
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..utils.config import CleanupConfig
from .render_tree import RenderTree

logger = logging.getLogger(__name__)

ANNOTATION_PROTECTION = "Annotation protection"
CATEGORIES = ("temporary", "orphaned", "empty")


@dataclass
class LivenessReport:
    """Annotation coverage of the rendered expressions."""
    expression_node_count: int
    annotation_count: int

    @property
    def safe(self) -> bool:
        return self.expression_node_count == 0 or self.annotation_count > 0

    @property
    def annotation_ratio(self) -> float:
        if self.expression_node_count == 0:
            return 1.0
        return self.annotation_count / self.expression_node_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expression_node_count": self.expression_node_count,
            "annotation_count": self.annotation_count,
            "safe": self.safe,
            "annotation_ratio": round(self.annotation_ratio, 4),
        }


@dataclass
class HealthAssessment:
    healthy: bool
    warnings: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "healthy": self.healthy,
            "warnings": list(self.warnings),
            "recommendations": list(self.recommendations),
            "stats": dict(self.stats),
        }


@dataclass
class CleanupReport:
    """Outcome of one cleanup pass."""
    performed: bool
    reason: Optional[str] = None
    counts_by_category: Dict[str, int] = field(
        default_factory=lambda: {c: 0 for c in CATEGORIES}
    )
    preserved: int = 0
    renderer_cache_cleared: bool = False
    memory_hint_applied: bool = False
    health: Optional[HealthAssessment] = None
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    @property
    def total_removed(self) -> int:
        return sum(self.counts_by_category.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "performed": self.performed,
            "reason": self.reason,
            "counts_by_category": dict(self.counts_by_category),
            "total_removed": self.total_removed,
            "preserved": self.preserved,
            "renderer_cache_cleared": self.renderer_cache_cleared,
            "memory_hint_applied": self.memory_hint_applied,
            "health": self.health.to_dict() if self.health else None,
            "timestamp": self.timestamp,
        }


class ExpressionCleanup:
    """Cleanup pass over a RenderTree."""

    def __init__(
        self,
        tree: RenderTree,
        config: Optional[CleanupConfig] = None,
        memory_hint: Optional[Callable[[], Any]] = gc.collect,
        renderer_cache_reset: Optional[Callable[[], Any]] = None,
    ):
        self.tree = tree
        self.config = config or CleanupConfig()
        self.memory_hint = memory_hint
        self.renderer_cache_reset = renderer_cache_reset
        self._passes = 0
        self._deferred = 0
        self._last_report: Optional[CleanupReport] = None

    def check_liveness(self) -> LivenessReport:
        return LivenessReport(
            expression_node_count=len(self.tree.expression_nodes()),
            annotation_count=self.tree.annotation_count(),
        )

    def perform_comprehensive_cleanup(self) -> CleanupReport:
        """Run one pass; returns a deferred report if annotations are missing."""
        liveness = self.check_liveness()
        if not liveness.safe:
            self._deferred += 1
            logger.warning(
                "Cleanup deferred: %d expression node(s) but no annotations",
                liveness.expression_node_count
            )
            report = CleanupReport(performed=False, reason=ANNOTATION_PROTECTION)
            self._last_report = report
            return report

        report = CleanupReport(performed=True)
        candidates = (
            ("temporary", self.tree.temporary_nodes()),
            ("orphaned", self.tree.orphaned_expression_nodes()),
            ("empty", self.tree.empty_nodes()),
        )
        for category, nodes in candidates:
            removed, preserved = self._remove_unless_live(category, nodes)
            report.counts_by_category[category] = removed
            report.preserved += preserved

        if self.renderer_cache_reset is not None and self.tree.output_expression_count() == 0:
            try:
                self.renderer_cache_reset()
                report.renderer_cache_cleared = True
            except Exception as e:
                logger.warning(f"Renderer cache reset failed: {e}")

        report.memory_hint_applied = self._apply_memory_hint()
        report.health = self.assess_health()

        self._passes += 1
        self._last_report = report
        logger.info(
            "Cleanup removed %d node(s) (%s), preserved %d",
            report.total_removed,
            ", ".join(f"{k}={v}" for k, v in report.counts_by_category.items()),
            report.preserved,
        )
        return report

    def _remove_unless_live(self, category: str, nodes: Iterable[Any]) -> Tuple[int, int]:
        removed = 0
        preserved = 0
        for node in nodes:
            if not self.tree.is_attached(node):
                continue
            if self.tree.annotation_count(node) > 0:
                preserved += 1
                logger.debug("Preserved %s node carrying annotations", category)
                continue
            self.tree.remove(node)
            removed += 1
        return removed, preserved

    def _apply_memory_hint(self) -> bool:
        if self.memory_hint is None:
            return False
        try:
            self.memory_hint()
            return True
        except Exception as e:
            logger.debug(f"Memory hint ignored: {e}")
            return False

    def assess_health(self) -> HealthAssessment:
        """Compare the tree against configured thresholds."""
        cfg = self.config
        liveness = self.check_liveness()
        stats = {
            "total_nodes": self.tree.total_node_count(),
            "temporary_nodes": len(self.tree.temporary_nodes()),
            "empty_nodes": len(self.tree.empty_nodes()),
            "expression_nodes": liveness.expression_node_count,
            "annotations": liveness.annotation_count,
            "annotation_ratio": round(liveness.annotation_ratio, 4),
        }

        warnings = []
        recommendations = []
        if stats["total_nodes"] > cfg.max_total_nodes:
            warnings.append(f"High node count: {stats['total_nodes']}")
            recommendations.append("Consider running cleanup more frequently")
        if stats["temporary_nodes"] > cfg.max_temp_nodes:
            warnings.append(f"Temporary nodes accumulating: {stats['temporary_nodes']}")
            recommendations.append("Run comprehensive cleanup")
        if stats["empty_nodes"] > cfg.max_empty_nodes:
            warnings.append(f"Many empty nodes: {stats['empty_nodes']}")
            recommendations.append("Review renderer output for empty wrappers")
        if liveness.expression_node_count and liveness.annotation_ratio < cfg.min_annotation_ratio:
            warnings.append(
                f"Low annotation coverage: {stats['annotations']}/{stats['expression_nodes']}"
            )
            recommendations.append("Check that the renderer emits assistive MathML annotations")

        return HealthAssessment(
            healthy=not warnings,
            warnings=warnings,
            recommendations=recommendations,
            stats=stats,
        )

    def get_statistics(self) -> Dict[str, Any]:
        liveness = self.check_liveness()
        return {
            "passes": self._passes,
            "deferred": self._deferred,
            "liveness": liveness.to_dict(),
            "total_nodes": self.tree.total_node_count(),
            "output_expressions": self.tree.output_expression_count(),
            "last_report": self._last_report.to_dict() if self._last_report else None,
        }
