"""
Enhanced (registry-backed) reconstruction.

Instead of trusting renderer annotations, each main-flow expression node is
replaced with the record extracted from the source at the same position,
wrapped in its original delimiters. Footnote content renders out of source
order, so nodes inside footnote regions are recovered from their annotations
instead.

process() returns None whenever the registry cannot be trusted for this
content; callers treat that as a signal to fall back.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from bs4 import BeautifulSoup, NavigableString, Tag

from ..parsers.preamble_commands import commands_to_macros
from ..storage.expression_registry import ExpressionRegistry
from ..utils.config import DEFAULT_FOOTNOTE_SELECTORS
from .legacy_processor import recover_container, should_skip

logger = logging.getLogger(__name__)


@dataclass
class EnhancedResult:
    processed_content: str
    custom_macros: Dict[str, list] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)


class EnhancedProcessor:
    """Registry-backed reconstruction strategy."""

    def __init__(
        self,
        registry: ExpressionRegistry,
        footnote_selectors: Optional[Sequence[str]] = None,
        expression_selector: str = "mjx-container",
    ):
        self.registry = registry
        self.footnote_selectors = list(footnote_selectors or DEFAULT_FOOTNOTE_SELECTORS)
        self.expression_selector = expression_selector

    def _partition(self, soup: BeautifulSoup):
        footnote_roots = set()
        for selector in self.footnote_selectors:
            footnote_roots.update(id(n) for n in soup.select(selector))

        main: List[Tag] = []
        notes: List[Tag] = []
        for node in soup.select(self.expression_selector):
            if should_skip(node):
                continue
            if any(id(p) in footnote_roots for p in node.parents):
                notes.append(node)
            else:
                main.append(node)
        return main, notes

    def process(self, content: str) -> Optional[EnhancedResult]:
        status = self.registry.status()
        snapshot = self.registry.snapshot()

        if not status.initialised:
            logger.info("Registry not initialised, enhanced reconstruction unavailable")
            return None
        if not status.consistent:
            logger.warning(
                "Registry inconsistent (%d vs %d), enhanced reconstruction unavailable",
                status.size, status.position_size
            )
            return None
        if status.stale:
            logger.warning("Registry generation %d is stale", status.generation)
            return None

        soup = BeautifulSoup(content, "html.parser")
        main_nodes, footnote_nodes = self._partition(soup)

        if len(main_nodes) != snapshot.size:
            logger.warning(
                "Rendered content has %d main-flow expression(s), registry holds %d",
                len(main_nodes), snapshot.size
            )
            return None

        for index, node in enumerate(main_nodes):
            record = snapshot.get_by_index(index)
            if record is None:
                logger.warning(f"Registry has no record at index {index}")
                return None
            node.replace_with(NavigableString(record.as_delimited()))

        footnote_restored = 0
        for node in footnote_nodes:
            latex, _ = recover_container(node)
            if latex is None:
                continue
            node.replace_with(NavigableString(latex))
            footnote_restored += 1

        commands = list(snapshot.context.get("preamble_commands", []))
        macros = commands_to_macros(commands)

        result = EnhancedResult(
            processed_content=str(soup),
            custom_macros=macros,
            metadata={
                "command_count": len(commands),
                "macro_count": len(macros),
                "restored_count": len(main_nodes),
                "footnote_restored_count": footnote_restored,
                "registry_generation": snapshot.generation,
            },
        )
        logger.info(
            "Enhanced reconstruction restored %d expression(s) and %d footnote expression(s)",
            len(main_nodes), footnote_restored
        )
        return result


def create_processor(registry: ExpressionRegistry, **kwargs: Any) -> EnhancedProcessor:
    """Factory used by ModuleCapabilityProvider."""
    return EnhancedProcessor(registry, **kwargs)
