"""Parser modules for source documents."""

from .expression_extractor import (
    ExpressionExtractor,
    ExpressionKind,
    ExpressionRecord,
    ExtractionResult,
    FootnoteRegion,
    extract_expressions,
)
from .preamble_commands import PreambleCommand, commands_to_macros, extract_preamble_commands

__all__ = [
    "ExpressionExtractor",
    "ExpressionKind",
    "ExpressionRecord",
    "ExtractionResult",
    "FootnoteRegion",
    "extract_expressions",
    "PreambleCommand",
    "commands_to_macros",
    "extract_preamble_commands",
]
