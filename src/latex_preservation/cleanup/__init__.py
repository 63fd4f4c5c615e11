# Render-tree cleanup modules
from .expression_cleanup import (
    ANNOTATION_PROTECTION,
    CleanupReport,
    ExpressionCleanup,
    HealthAssessment,
    LivenessReport,
)
from .render_tree import RenderTree, SoupRenderTree

__all__ = [
    "ANNOTATION_PROTECTION",
    "CleanupReport",
    "ExpressionCleanup",
    "HealthAssessment",
    "LivenessReport",
    "RenderTree",
    "SoupRenderTree",
]
