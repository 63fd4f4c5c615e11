"""
Legacy (annotation-based) reconstruction.

Turns rendered HTML back into LaTeX by reading the TeX annotation that the
renderer stores inside each ``mjx-container``'s assistive MathML. When no
annotation is present, a best-effort reading of the semantic MathML is used
instead.

Annotations only keep the inner body of an environment, so the wrapper is
rebuilt:
  1. ``data-math-env`` / ``data-latex-env`` on the node or its parent
  2. heuristics: ``&`` plus line breaks -> align*, line breaks -> gather*,
     display -> \\[...\\], inline -> \\(...\\)
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from bs4 import BeautifulSoup, NavigableString, Tag

from ..exceptions import LegacyProcessingError

logger = logging.getLogger(__name__)

ANNOTATION_ENCODINGS = ("application/x-tex", "TeX", "LaTeX")
ENV_ATTRIBUTES = ("data-math-env", "data-latex-env")
SKIP_EXPORT_SELECTOR = '[data-skip-latex-export="true"]'

RE_HAS_ENVIRONMENT = re.compile(r'^\s*\\begin\{[^}]+\}')

# \begin{equation} wrapped around a multi-line environment is invalid LaTeX
RE_INVALID_NESTING = re.compile(
    r'\\begin\{equation\}\s*(\\begin\{(align\*?|gather\*?)\}[\s\S]*?\\end\{\2\})\s*\\end\{equation\}',
    re.IGNORECASE
)

# Operators with a direct LaTeX command; anything else passes through as text
MO_COMMANDS = {
    "\u2062": "",
    "\u2061": "",
    "\u2205": "\\varnothing",
    "\u2211": "\\sum",
    "\u220f": "\\prod",
    "\u222b": "\\int",
    "\u2264": "\\leq",
    "\u2265": "\\geq",
    "\u2260": "\\neq",
    "\u00d7": "\\times",
    "\u22c5": "\\cdot",
    "\u00b1": "\\pm",
    "\u2192": "\\to",
    "\u221e": "\\infty",
    "\u2208": "\\in",
}


@dataclass
class LegacyResult:
    """Reconstructed HTML and conversion counts."""
    content: str
    converted_count: int = 0
    semantic_count: int = 0
    skipped_count: int = 0
    unrecovered_count: int = 0

    def to_metadata(self) -> Dict[str, Any]:
        return {
            "converted_count": self.converted_count,
            "semantic_count": self.semantic_count,
            "skipped_count": self.skipped_count,
            "unrecovered_count": self.unrecovered_count,
        }


# ===========================================================================
# Annotation reader
# ===========================================================================

def find_math_element(container: Tag) -> Optional[Tag]:
    """The assistive MathML <math> element inside a rendered expression."""
    math = container.select_one("mjx-assistive-mml math")
    if math is None:
        math = container.find("math")
    return math


def read_annotation(container: Tag) -> Optional[str]:
    """LaTeX stored in the container's annotation, trying each encoding in turn."""
    math = find_math_element(container)
    if math is None:
        return None
    for encoding in ANNOTATION_ENCODINGS:
        annotation = math.find("annotation", attrs={"encoding": encoding})
        if annotation is None:
            continue
        latex = annotation.get_text().strip()
        if latex and "undefined" not in latex:
            return latex
    return None


def _children(element: Tag):
    return [c for c in element.children if isinstance(c, Tag)]


def semantic_mathml_to_latex(element: Tag) -> str:
    """Best-effort LaTeX from presentation MathML."""
    name = (element.name or "").lower()
    text = element.get_text().strip()
    kids = _children(element)

    def child(i: int) -> str:
        return semantic_mathml_to_latex(kids[i]) if len(kids) > i else ""

    if name in ("math", "mrow", "mstyle", "mpadded", "mphantom"):
        return "".join(semantic_mathml_to_latex(k) for k in kids)
    if name == "semantics":
        return child(0)
    if name in ("annotation", "annotation-xml"):
        return ""
    if name in ("mi", "mn"):
        return text
    if name == "mo":
        return MO_COMMANDS.get(text, text)
    if name == "mtext":
        return f"\\text{{{text}}}"
    if name == "mspace":
        return " "
    if name == "msup":
        return f"{child(0)}^{{{child(1)}}}"
    if name == "msub":
        return f"{child(0)}_{{{child(1)}}}"
    if name == "msubsup":
        return f"{child(0)}_{{{child(1)}}}^{{{child(2)}}}"
    if name == "mfrac":
        return f"\\frac{{{child(0)}}}{{{child(1)}}}"
    if name == "msqrt":
        return "\\sqrt{" + "".join(semantic_mathml_to_latex(k) for k in kids) + "}"
    if name == "mroot":
        return f"\\sqrt[{child(1)}]{{{child(0)}}}"

    logger.debug(f"Unhandled MathML element: {name}")
    return text


def read_semantic(container: Tag) -> Optional[str]:
    math = find_math_element(container)
    if math is None:
        return None
    latex = semantic_mathml_to_latex(math).strip()
    return latex or None


def is_display(container: Tag) -> bool:
    if container.get("display") == "true":
        return True
    parent = container.parent
    return isinstance(parent, Tag) and "display" in (parent.get("class") or [])


def stored_environment(container: Optional[Tag]) -> Optional[str]:
    """Environment name recorded on the node or its parent, if any."""
    if container is None:
        return None
    for element in (container, container.parent):
        if not isinstance(element, Tag):
            continue
        for attr in ENV_ATTRIBUTES:
            value = element.get(attr)
            if not value:
                continue
            if value.startswith("{") or value.startswith("["):
                logger.warning(f"Invalid environment attribute value: {value!r}")
                continue
            return value
    return None


def wrap_in_environment(latex: str, display: bool, container: Optional[Tag] = None) -> str:
    """Rebuild delimiters around an annotation body."""
    env = stored_environment(container)
    if env:
        return f"\\begin{{{env}}}\n{latex}\n\\end{{{env}}}"

    if RE_HAS_ENVIRONMENT.match(latex):
        return latex

    has_alignment = "&" in latex
    has_line_breaks = "\\\\" in latex or "\\\n" in latex

    if has_alignment and has_line_breaks:
        logger.debug("No environment data, defaulting to align*")
        return f"\\begin{{align*}}\n{latex}\n\\end{{align*}}"
    if has_line_breaks:
        logger.debug("No environment data, defaulting to gather*")
        return f"\\begin{{gather*}}\n{latex}\n\\end{{gather*}}"
    if display:
        return f"\\[{latex}\\]"
    return f"\\({latex}\\)"


def recover_container(container: Tag) -> Tuple[Optional[str], bool]:
    """
    Delimited LaTeX for one rendered expression.

    Returns (latex, from_semantic); latex is None when nothing is recoverable.
    """
    latex = read_annotation(container)
    from_semantic = False
    if latex is None:
        latex = read_semantic(container)
        from_semantic = latex is not None
    if latex is None:
        return None, False
    return wrap_in_environment(latex, is_display(container), container), from_semantic


def should_skip(container: Tag) -> bool:
    if container.has_attr("data-tikz-math"):
        return True
    for parent in [container] + list(container.parents):
        if isinstance(parent, Tag) and parent.get("data-skip-latex-export") == "true":
            return True
    return False


def clean_invalid_nesting(content: str) -> str:
    cleaned = RE_INVALID_NESTING.sub(r"\1", content)
    if cleaned != content:
        logger.info("Removed equation wrappers around multi-line environments")
    return cleaned


# ===========================================================================
# Processor
# ===========================================================================

class LegacyProcessor:
    """Annotation-based reconstruction strategy."""

    def __init__(self, expression_selector: str = "mjx-container", clean_nesting: bool = True):
        self.expression_selector = expression_selector
        self.clean_nesting = clean_nesting

    def convert(self, content: str) -> LegacyResult:
        """Replace every recoverable expression node with delimited LaTeX."""
        if not isinstance(content, str):
            raise LegacyProcessingError(
                f"Legacy processing expects HTML text, got {type(content).__name__}"
            )

        soup = BeautifulSoup(content, "html.parser")
        result = LegacyResult(content=content)

        for container in soup.select(self.expression_selector):
            if should_skip(container):
                result.skipped_count += 1
                continue
            latex, from_semantic = recover_container(container)
            if latex is None:
                result.unrecovered_count += 1
                logger.debug("No annotation or MathML found, leaving node untouched")
                continue
            container.replace_with(NavigableString(latex))
            result.converted_count += 1
            if from_semantic:
                result.semantic_count += 1

        output = str(soup)
        if self.clean_nesting:
            output = clean_invalid_nesting(output)
        result.content = output

        logger.info(
            "Legacy reconstruction converted %d expression(s), %d skipped, %d unrecovered",
            result.converted_count, result.skipped_count, result.unrecovered_count
        )
        return result

    async def process(self, options: Union[Mapping[str, Any], Any]) -> LegacyResult:
        content = options.get("content") if isinstance(options, Mapping) else getattr(options, "content", None)
        return self.convert(content)
