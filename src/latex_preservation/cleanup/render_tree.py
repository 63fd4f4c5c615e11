"""
Render tree access for cleanup.

ExpressionCleanup only talks to the tree through the RenderTree protocol, so
tests can drive it with an in-memory fake and production code can point it at
a parsed HTML document (SoupRenderTree).
"""

from typing import Any, Dict, List, Optional, Protocol, Union

from bs4 import BeautifulSoup, Tag

from ..utils.config import CleanupConfig

EMPTY_CANDIDATE_TAGS = ["span", "div"]


class RenderTree(Protocol):
    """Read-only queries over a live render tree, plus node removal."""

    def expression_nodes(self) -> List[Any]: ...

    def annotation_count(self, node: Any = None) -> int: ...

    def temporary_nodes(self) -> List[Any]: ...

    def orphaned_expression_nodes(self) -> List[Any]: ...

    def empty_nodes(self) -> List[Any]: ...

    def output_expression_count(self) -> int: ...

    def total_node_count(self) -> int: ...

    def is_attached(self, node: Any) -> bool: ...

    def remove(self, node: Any) -> None: ...


class SoupRenderTree:
    """RenderTree over a BeautifulSoup document."""

    def __init__(self, markup: Union[str, BeautifulSoup], config: Optional[CleanupConfig] = None):
        self.config = config or CleanupConfig()
        if isinstance(markup, BeautifulSoup):
            self.soup = markup
        else:
            self.soup = BeautifulSoup(markup or "", "html.parser")

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def expression_nodes(self) -> List[Tag]:
        return self.soup.select(self.config.expression_selector)

    def annotation_count(self, node: Optional[Tag] = None) -> int:
        root = self.soup if node is None else node
        if not isinstance(root, Tag):
            return 0
        return len(root.select(self.config.annotation_selector))

    def temporary_nodes(self) -> List[Tag]:
        seen: Dict[int, Tag] = {}
        for selector in self.config.temp_selectors:
            for node in self.soup.select(selector):
                seen.setdefault(id(node), node)
        return list(seen.values())

    def orphaned_expression_nodes(self) -> List[Tag]:
        """Expression nodes without an id that sit outside the output region."""
        output_ids = {id(n) for n in self.soup.select(self.config.output_selector)}
        orphans = []
        for node in self.expression_nodes():
            if node.get("id"):
                continue
            if any(id(parent) in output_ids for parent in node.parents):
                continue
            orphans.append(node)
        return orphans

    def empty_nodes(self) -> List[Tag]:
        """Childless span/div nodes with no id or class, outside expressions."""
        empties = []
        for node in self.soup.find_all(EMPTY_CANDIDATE_TAGS):
            if node.contents or node.get("id") or node.get("class"):
                continue
            if self._inside_expression(node):
                continue
            empties.append(node)
        return empties

    def output_expression_count(self) -> int:
        count = 0
        for region in self.soup.select(self.config.output_selector):
            count += len(region.select(self.config.expression_selector))
        return count

    def total_node_count(self) -> int:
        return len(self.soup.find_all(True))

    def is_attached(self, node: Any) -> bool:
        if not isinstance(node, Tag):
            return False
        return any(parent is self.soup for parent in node.parents)

    # -----------------------------------------------------------------------
    # Mutation
    # -----------------------------------------------------------------------

    def remove(self, node: Any) -> None:
        # extract() keeps the detached subtree intact so is_attached() stays answerable
        node.extract()

    def to_html(self) -> str:
        return str(self.soup)

    def _inside_expression(self, node: Tag) -> bool:
        expression_tag = self.config.expression_selector.lower()
        for parent in node.parents:
            if parent.name in (expression_tag, "annotation"):
                return True
        return False
