"""
LaTeX Expression Extractor

Captures embedded math notation from a source document before it is handed
to the renderer, so the original LaTeX can be matched back against the
rendered output later.

Extraction is two-phase:
  1. every pattern family scans the full text on its own and reports
     absolute offsets into the original string;
  2. the provisional matches are de-overlapped by family precedence,
     partitioned into main-flow / footnote-scoped, sorted into document
     order and numbered.

Key outputs per document:
  - records:           main-flow ExpressionRecords, sequence_index 0..n-1
  - footnote_records:  expressions inside \\footnote{...} / ^[...] bodies
  - footnote_regions:  [start, end) spans of footnote bodies
  - preamble_commands: \\newcommand-style definitions (see preamble_commands)
"""

from __future__ import annotations

import bisect
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Pattern, Sequence, Tuple

from ..exceptions import IntegrityIssue
from ..utils.config import DEFAULT_ENVIRONMENTS, ExtractionConfig
from ..utils.file_utils import compute_content_hash
from .preamble_commands import PreambleCommand, extract_preamble_commands

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class ExpressionKind(Enum):
    """How the renderer will lay out an expression."""
    INLINE = "inline"
    DISPLAY = "display"
    ENVIRONMENT = "environment"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ExpressionRecord:
    """One captured expression and where it came from."""
    raw_notation: str            # trimmed body, delimiters removed
    kind: ExpressionKind
    delimiter_tag: str           # "$", "$$", "\\[\\]", "\\(\\)" or environment name
    source_offset: int           # absolute offset of the opening delimiter
    end_offset: int              # absolute offset just past the closing delimiter
    sequence_index: Optional[int] = None  # None for footnote-scoped records
    footnote_scoped: bool = False

    def as_delimited(self) -> str:
        """Re-wrap the notation in the delimiters it had in the source."""
        if self.kind == ExpressionKind.ENVIRONMENT:
            return f"\\begin{{{self.delimiter_tag}}}\n{self.raw_notation}\n\\end{{{self.delimiter_tag}}}"
        if self.delimiter_tag in ("$", "$$"):
            return f"{self.delimiter_tag}{self.raw_notation}{self.delimiter_tag}"
        if self.delimiter_tag == "\\(\\)":
            return f"\\({self.raw_notation}\\)"
        return f"\\[{self.raw_notation}\\]"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw_notation": self.raw_notation,
            "kind": self.kind.value,
            "delimiter_tag": self.delimiter_tag,
            "source_offset": self.source_offset,
            "end_offset": self.end_offset,
            "sequence_index": self.sequence_index,
            "footnote_scoped": self.footnote_scoped,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExpressionRecord":
        """Create from dictionary."""
        return cls(
            raw_notation=data["raw_notation"],
            kind=ExpressionKind(data["kind"]),
            delimiter_tag=data["delimiter_tag"],
            source_offset=int(data["source_offset"]),
            end_offset=int(data.get("end_offset", data["source_offset"])),
            sequence_index=data.get("sequence_index"),
            footnote_scoped=bool(data.get("footnote_scoped", False)),
        )


@dataclass(frozen=True)
class FootnoteRegion:
    """Half-open [start_offset, end_offset) span of one footnote."""
    start_offset: int
    end_offset: int
    token: str

    def contains(self, offset: int) -> bool:
        return self.start_offset <= offset < self.end_offset

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_offset": self.start_offset,
            "end_offset": self.end_offset,
            "token": self.token,
        }


@dataclass
class ExtractionResult:
    """Everything one extraction pass produced for a document."""
    records: List[ExpressionRecord] = field(default_factory=list)
    footnote_records: List[ExpressionRecord] = field(default_factory=list)
    footnote_regions: List[FootnoteRegion] = field(default_factory=list)
    preamble_commands: List[PreambleCommand] = field(default_factory=list)
    integrity_issues: List[IntegrityIssue] = field(default_factory=list)
    source_fingerprint: Optional[str] = None

    def index_map(self) -> Dict[int, ExpressionRecord]:
        """sequence_index -> record, main flow only."""
        return {r.sequence_index: r for r in self.records}

    def position_sequence(self) -> List[str]:
        """Raw notations in sequence order."""
        return [r.raw_notation for r in self.records]

    def statistics(self) -> Dict[str, Any]:
        return get_extraction_statistics(self.records + self.footnote_records)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_fingerprint": self.source_fingerprint,
            "num_records": len(self.records),
            "num_footnote_records": len(self.footnote_records),
            "records": [r.to_dict() for r in self.records],
            "footnote_records": [r.to_dict() for r in self.footnote_records],
            "footnote_regions": [r.to_dict() for r in self.footnote_regions],
            "preamble_commands": [c.to_dict() for c in self.preamble_commands],
            "integrity_issues": [i.to_dict() for i in self.integrity_issues],
            "statistics": self.statistics(),
        }


# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

# $$ ... $$
RE_DOUBLE_DOLLAR = re.compile(r'(?<!\\)\$\$(?P<body>[\s\S]+?)\$\$')

# \[ ... \]   (a preceding backslash makes it the \\[len] line break)
RE_BRACKET_DISPLAY = re.compile(r'(?<!\\)\\\[(?P<body>[\s\S]+?)\\\]')

# $ ... $   (not an escaped \$). A $$...$$ block is consumed without a body
# so scanning resumes after it, the way TeX reads "$$a$$$b$" or "$a$$b$".
RE_SINGLE_DOLLAR = re.compile(
    r'(?<!\\)(?:\$\$(?:\\[\s\S]|[^$\\])*?\$\$'
    r'|\$(?P<body>(?:\\[\s\S]|[^$\\])+?)\$)'
)

# \( ... \)
RE_PAREN_INLINE = re.compile(r'(?<!\\)\\\((?P<body>[\s\S]+?)\\\)')


def build_environment_pattern(environments: Iterable[str]) -> Pattern[str]:
    """\\begin{env}...\\end{env} for the given names, starred or not."""
    names = sorted({e.rstrip("*") for e in environments}, key=len, reverse=True)
    alternation = "|".join(re.escape(n) for n in names)
    return re.compile(
        r'\\begin\{(?P<env>' + alternation + r')(?P<star>\*?)\}'
        r'(?P<body>[\s\S]*?)'
        r'\\end\{(?P=env)(?P=star)\}'
    )


@dataclass(frozen=True)
class PatternFamily:
    """One independently scanned delimiter family."""
    name: str
    kind: ExpressionKind
    pattern: Pattern[str]
    delimiter_tag: Optional[str] = None  # None: taken from the env group

    def tag_for(self, match: "re.Match[str]") -> str:
        if self.delimiter_tag is not None:
            return self.delimiter_tag
        return match.group("env") + match.group("star")


def default_families(environments: Sequence[str] = DEFAULT_ENVIRONMENTS) -> List[PatternFamily]:
    """Families in precedence order: earlier families claim text first."""
    return [
        PatternFamily("environment", ExpressionKind.ENVIRONMENT,
                      build_environment_pattern(environments)),
        PatternFamily("double_dollar", ExpressionKind.DISPLAY, RE_DOUBLE_DOLLAR, "$$"),
        PatternFamily("bracket_display", ExpressionKind.DISPLAY, RE_BRACKET_DISPLAY, "\\[\\]"),
        PatternFamily("single_dollar", ExpressionKind.INLINE, RE_SINGLE_DOLLAR, "$"),
        PatternFamily("paren_inline", ExpressionKind.INLINE, RE_PAREN_INLINE, "\\(\\)"),
    ]


# Delimiters accepted for each non-environment kind, used by validate_record
_TYPE_PATTERN_MAP = {
    ExpressionKind.DISPLAY: {"$$", "\\[\\]"},
    ExpressionKind.INLINE: {"$", "\\(\\)"},
}


# ---------------------------------------------------------------------------
# Phase 1: per-family scanning
# ---------------------------------------------------------------------------

def scan_family(text: str, family: PatternFamily) -> List[ExpressionRecord]:
    """Scan the whole text with one family; offsets are absolute."""
    found: List[ExpressionRecord] = []
    for m in family.pattern.finditer(text):
        body = (m.group("body") or "").strip()
        if not body:
            continue
        found.append(ExpressionRecord(
            raw_notation=body,
            kind=family.kind,
            delimiter_tag=family.tag_for(m),
            source_offset=m.start(),
            end_offset=m.end(),
        ))
    return found


# ---------------------------------------------------------------------------
# Footnote regions
# ---------------------------------------------------------------------------

def _find_balanced_close(text: str, open_pos: int, opener: str, closer: str) -> Optional[int]:
    """
    Index of the closer matching the opener at open_pos, or None.

    Backslash escapes (\\{, \\}, \\[, \\]) are skipped so they never count
    towards the depth.
    """
    depth = 0
    i = open_pos
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return None


def _token_pattern(token: str) -> Tuple[Pattern[str], str, str]:
    """Regex locating the token plus its opening delimiter."""
    if token.endswith("["):
        # Pandoc inline note: ^[ ... ]
        return re.compile(re.escape(token)), "[", "]"
    # \footnote, \footnotetext: optional [mark] argument, then {
    return (
        re.compile(re.escape(token) + r'(?![A-Za-z])\s*(?:\[[^\]]*\])?\s*\{'),
        "{",
        "}",
    )


def find_footnote_regions(
    text: str,
    tokens: Sequence[str] = ("\\footnote", "\\footnotetext", "^["),
    math_spans: Sequence[Tuple[int, int]] = (),
) -> List[FootnoteRegion]:
    """
    Bound every footnote body by depth-balanced scanning.

    Tokens starting inside one of math_spans (start, end) are ignored, so
    a superscript like $x^[0]$ never opens a note. An unterminated footnote
    is dropped with a warning; it never shifts or swallows the offsets of
    later content.
    """
    spans = sorted(math_spans)
    span_starts = [s for s, _ in spans]

    def inside_math(offset: int) -> bool:
        pos = bisect.bisect_right(span_starts, offset)
        return pos > 0 and spans[pos - 1][0] < offset < spans[pos - 1][1]

    regions: List[FootnoteRegion] = []
    for token in tokens:
        pattern, opener, closer = _token_pattern(token)
        for m in pattern.finditer(text):
            # \^[ is a literal caret-bracket, not a note
            if opener == "[" and m.start() > 0 and text[m.start() - 1] == "\\":
                continue
            if inside_math(m.start()):
                continue
            open_pos = m.end() - 1
            close_pos = _find_balanced_close(text, open_pos, opener, closer)
            if close_pos is None:
                logger.warning(
                    "Unterminated footnote %r at offset %d dropped",
                    token, m.start()
                )
                continue
            regions.append(FootnoteRegion(m.start(), close_pos + 1, token))
    regions.sort(key=lambda r: (r.start_offset, r.end_offset))
    return regions


def in_footnote(offset: int, regions: Sequence[FootnoteRegion]) -> bool:
    return any(r.contains(offset) for r in regions)


# ---------------------------------------------------------------------------
# Phase 2: resolution, ordering, validation
# ---------------------------------------------------------------------------

def resolve_overlaps(per_family: Sequence[List[ExpressionRecord]]) -> List[ExpressionRecord]:
    """
    Merge family results in precedence order.

    A match overlapping a span already claimed by an earlier family is
    discarded. The result keeps arrival order (family, then scan order).

    Environments claim first, so $$\\begin{equation}y\\end{equation}$$
    yields only the inner environment record, offset at \\begin. Restoring
    it drops the outer $$, which LaTeX rejects around a display
    environment anyway.
    """
    starts: List[int] = []
    ends: List[int] = []
    kept: List[ExpressionRecord] = []

    for records in per_family:
        for rec in records:
            pos = bisect.bisect_right(starts, rec.source_offset)
            overlaps = (
                (pos > 0 and ends[pos - 1] > rec.source_offset)
                or (pos < len(starts) and starts[pos] < rec.end_offset)
            )
            if overlaps:
                logger.debug(
                    "Discarding %s match at %d: overlaps a claimed span",
                    rec.delimiter_tag, rec.source_offset
                )
                continue
            starts.insert(pos, rec.source_offset)
            ends.insert(pos, rec.end_offset)
            kept.append(rec)
    return kept


def validate_unique_offsets(records: Sequence[ExpressionRecord]) -> List[IntegrityIssue]:
    """Report every record whose source_offset was already seen."""
    issues: List[IntegrityIssue] = []
    seen = set()
    for rec in records:
        if rec.source_offset in seen:
            issue = IntegrityIssue(
                code="duplicate_offset",
                message=(
                    f"Duplicate source offset {rec.source_offset} "
                    f"({rec.delimiter_tag}); arrival order kept"
                ),
                source_offset=rec.source_offset,
            )
            logger.warning("%s: %s", issue.category.__name__, issue.message)
            issues.append(issue)
        seen.add(rec.source_offset)
    return issues


def assign_sequence(records: List[ExpressionRecord]) -> List[ExpressionRecord]:
    """Stable sort by offset, then number 0..n-1."""
    ordered = sorted(records, key=lambda r: r.source_offset)
    for idx, rec in enumerate(ordered):
        rec.sequence_index = idx
    return ordered


# ---------------------------------------------------------------------------
# Core extractor
# ---------------------------------------------------------------------------

class ExpressionExtractor:
    """
    Extract math expressions and footnote regions from source text.

    The extractor is stateless between calls; every call returns a fresh
    ExtractionResult.
    """

    def __init__(self, config: Optional[ExtractionConfig] = None):
        self.config = config or ExtractionConfig()
        self.families = default_families(self.config.environments)

    def extract(self, text: Any) -> ExtractionResult:
        """Run the full two-phase extraction over one document."""
        if not isinstance(text, str) or not text.strip():
            logger.debug("Empty or non-text input; nothing to extract")
            return ExtractionResult()

        result = ExtractionResult(source_fingerprint=compute_content_hash(text))

        # 1) Independent family scans
        per_family = [scan_family(text, family) for family in self.families]
        provisional = resolve_overlaps(per_family)

        # 2) Footnote regions, skipping tokens that sit inside math
        result.footnote_regions = find_footnote_regions(
            text,
            self.config.footnote_tokens,
            [(rec.source_offset, rec.end_offset) for rec in provisional],
        )

        # 3) Partition
        main_flow: List[ExpressionRecord] = []
        for rec in provisional:
            if in_footnote(rec.source_offset, result.footnote_regions):
                rec.footnote_scoped = True
                result.footnote_records.append(rec)
            else:
                main_flow.append(rec)
        result.footnote_records.sort(key=lambda r: r.source_offset)

        # 4) Document order + numbering, 5) uniqueness check
        result.integrity_issues = validate_unique_offsets(main_flow)
        result.records = assign_sequence(main_flow)

        if self.config.extract_preamble:
            result.preamble_commands = extract_preamble_commands(text)

        logger.info(
            "Extracted %d expressions (%d in footnotes, %d footnote regions)",
            len(result.records), len(result.footnote_records), len(result.footnote_regions)
        )
        logger.debug("Expression types: %s", result.statistics()["by_kind"])
        return result


def extract_expressions(text: Any, config: Optional[ExtractionConfig] = None) -> ExtractionResult:
    """Convenience wrapper around ExpressionExtractor.extract."""
    return ExpressionExtractor(config).extract(text)


# ---------------------------------------------------------------------------
# Record helpers
# ---------------------------------------------------------------------------

def normalise_notation(latex: Any) -> str:
    """Collapse runs of whitespace; non-strings become ''."""
    if not isinstance(latex, str):
        return ""
    return re.sub(r'\s+', ' ', latex.strip())


def filter_by_kind(records: Iterable[ExpressionRecord], kind: ExpressionKind) -> List[ExpressionRecord]:
    return [r for r in records if r.kind == kind]


def filter_by_delimiter(records: Iterable[ExpressionRecord], delimiter_tag: str) -> List[ExpressionRecord]:
    return [r for r in records if r.delimiter_tag == delimiter_tag]


def validate_record(record: ExpressionRecord, environments: Sequence[str] = DEFAULT_ENVIRONMENTS) -> bool:
    """Check that the record's kind and delimiter agree."""
    if not record.raw_notation:
        return False
    if record.kind == ExpressionKind.ENVIRONMENT:
        valid = record.delimiter_tag.rstrip("*") in {e.rstrip("*") for e in environments}
    else:
        valid = record.delimiter_tag in _TYPE_PATTERN_MAP[record.kind]
    if not valid:
        logger.warning(
            "Inconsistent kind/delimiter combination: %s with %s",
            record.kind.value, record.delimiter_tag
        )
    return valid


def get_extraction_statistics(records: Iterable[ExpressionRecord]) -> Dict[str, Any]:
    """Totals by kind and by delimiter."""
    by_kind: Dict[str, int] = {}
    by_delimiter: Dict[str, int] = {}
    total = 0
    for rec in records:
        total += 1
        by_kind[rec.kind.value] = by_kind.get(rec.kind.value, 0) + 1
        by_delimiter[rec.delimiter_tag] = by_delimiter.get(rec.delimiter_tag, 0) + 1
    return {
        "total_expressions": total,
        "by_kind": by_kind,
        "by_delimiter": by_delimiter,
    }
