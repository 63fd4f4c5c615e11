"""Tests for latex_preservation.parsers.expression_extractor."""

from latex_preservation.parsers.expression_extractor import (
    ExpressionExtractor,
    ExpressionKind,
    ExpressionRecord,
    default_families,
    extract_expressions,
    filter_by_delimiter,
    filter_by_kind,
    find_footnote_regions,
    get_extraction_statistics,
    normalise_notation,
    resolve_overlaps,
    scan_family,
    validate_record,
    validate_unique_offsets,
)
from latex_preservation.exceptions import ExtractionIntegrityWarning
from latex_preservation.utils.config import ExtractionConfig


def _family(name):
    return next(f for f in default_families() if f.name == name)


# ----------------------------------------------------------
# DOCUMENT ORDER AND NUMBERING
# ----------------------------------------------------------

def test_mixed_delimiters_numbered_in_document_order():
    result = extract_expressions(r"Text $a=1$ and $$b=2$$ and \[c=3\]")

    assert [r.raw_notation for r in result.records] == ["a=1", "b=2", "c=3"]
    assert [r.sequence_index for r in result.records] == [0, 1, 2]
    assert [r.kind for r in result.records] == [
        ExpressionKind.INLINE, ExpressionKind.DISPLAY, ExpressionKind.DISPLAY
    ]
    assert [r.delimiter_tag for r in result.records] == ["$", "$$", "\\[\\]"]


def test_offsets_strictly_increasing_across_families():
    text = (
        "\\begin{align}x &= 1\\\\ y &= 2\\end{align} then \\(p\\) "
        "and $q$ then $$r$$ and \\[s\\] and \\begin{equation*}t\\end{equation*}"
    )
    result = extract_expressions(text)

    offsets = [r.source_offset for r in result.records]
    assert offsets == sorted(offsets)
    assert len(set(offsets)) == len(offsets)
    assert [r.raw_notation for r in result.records] == [
        "x &= 1\\\\ y &= 2", "p", "q", "r", "s", "t"
    ]
    assert result.records[0].delimiter_tag == "align"
    assert result.records[-1].delimiter_tag == "equation*"


def test_index_map_and_position_sequence_agree():
    result = extract_expressions(r"$a$ $b$ \(c\)")

    index_map = result.index_map()
    positions = result.position_sequence()
    assert sorted(index_map) == [0, 1, 2]
    assert [index_map[i].raw_notation for i in range(3)] == positions


def test_environment_names_must_match():
    result = extract_expressions(r"\begin{align}x\end{gather} and $y$")
    assert [r.raw_notation for r in result.records] == ["y"]


def test_line_break_spacing_is_not_a_display_delimiter():
    result = extract_expressions(r"\begin{gather}a \\[2pt] b\end{gather}")
    assert len(result.records) == 1
    assert result.records[0].kind == ExpressionKind.ENVIRONMENT


def test_inline_math_directly_after_closing_dollar():
    result = extract_expressions("$$a$$$b$")
    assert [(r.raw_notation, r.delimiter_tag, r.source_offset) for r in result.records] == [
        ("a", "$$", 0), ("b", "$", 5)
    ]

    result = extract_expressions("$a$$b$")
    assert [(r.raw_notation, r.source_offset) for r in result.records] == [("a", 0), ("b", 3)]


def test_display_block_does_not_hide_following_inline():
    result = extract_expressions("$$a$$ $b$ and $c$")
    assert [r.raw_notation for r in result.records] == ["a", "b", "c"]
    assert [r.delimiter_tag for r in result.records] == ["$$", "$", "$"]


def test_escaped_dollar_is_not_math():
    result = extract_expressions(r"costs \$5 and \$6 but $x$ is math")
    assert [r.raw_notation for r in result.records] == ["x"]


def test_empty_bodies_are_skipped():
    result = extract_expressions("$$   $$ and $y$")
    assert [r.raw_notation for r in result.records] == ["y"]


def test_empty_and_non_string_input():
    extractor = ExpressionExtractor()
    for value in ("", "   ", None, 42):
        result = extractor.extract(value)
        assert result.records == []
        assert result.footnote_records == []
        assert result.footnote_regions == []


def test_extraction_is_deterministic():
    text = r"$a$ \footnote{$b$} $$c$$"
    first = extract_expressions(text).to_dict()
    second = extract_expressions(text).to_dict()
    assert first == second


# ----------------------------------------------------------
# FOOTNOTES
# ----------------------------------------------------------

def test_footnote_display_math_has_no_sequence_index():
    result = extract_expressions(r"\footnote{$$x=1$$}")

    assert result.records == []
    assert len(result.footnote_records) == 1
    note = result.footnote_records[0]
    assert note.raw_notation == "x=1"
    assert note.footnote_scoped is True
    assert note.sequence_index is None


def test_footnote_records_do_not_shift_main_flow():
    text = r"$a$ text\footnote{see $b$ and $c$} more $d$"
    result = extract_expressions(text)

    assert [r.raw_notation for r in result.records] == ["a", "d"]
    assert [r.sequence_index for r in result.records] == [0, 1]
    assert [r.raw_notation for r in result.footnote_records] == ["b", "c"]


def test_footnote_with_mark_and_nested_braces():
    text = r"\footnote[3]{a {nested $x$} b} $y$"
    regions = find_footnote_regions(text)

    assert len(regions) == 1
    assert regions[0].start_offset == 0
    assert text[regions[0].end_offset - 1] == "}"
    result = extract_expressions(text)
    assert [r.raw_notation for r in result.records] == ["y"]


def test_footnotetext_and_pandoc_inline_notes():
    text = r"\footnotetext{$a$} body $b$ and ^[note with $c$] end"
    result = extract_expressions(text)

    assert [r.raw_notation for r in result.records] == ["b"]
    assert [r.raw_notation for r in result.footnote_records] == ["a", "c"]
    assert {r.token for r in result.footnote_regions} == {"\\footnotetext", "^["}


def test_caret_bracket_inside_math_is_not_a_note():
    result = extract_expressions("$x^[0]$ then $y$")

    assert result.footnote_regions == []
    assert [r.raw_notation for r in result.records] == ["x^[0]", "y"]
    assert [r.sequence_index for r in result.records] == [0, 1]


def test_find_footnote_regions_skips_math_spans():
    text = "$x^[0]$ and ^[real note]"
    regions = find_footnote_regions(text, ("^[",), [(0, 7)])
    assert [(r.start_offset, r.token) for r in regions] == [(12, "^[")]


def test_escaped_braces_do_not_close_footnote():
    text = r"\footnote{set \} still inside $x$} $y$"
    result = extract_expressions(text)
    assert [r.raw_notation for r in result.footnote_records] == ["x"]
    assert [r.raw_notation for r in result.records] == ["y"]


def test_unterminated_footnote_is_dropped(caplog):
    text = r"$a$ \footnote{never closed $b$"
    with caplog.at_level("WARNING"):
        result = extract_expressions(text)

    assert result.footnote_regions == []
    assert [r.raw_notation for r in result.records] == ["a", "b"]
    assert "Unterminated footnote" in caplog.text


def test_footnote_tokens_are_configurable():
    config = ExtractionConfig(footnote_tokens=["\\footnote"])
    result = ExpressionExtractor(config).extract(r"^[note $a$] and $b$")
    assert [r.raw_notation for r in result.records] == ["a", "b"]


def test_no_footnote_record_gets_main_index():
    text = r"$a$\footnote{$b$ $$c$$ \(d\)}$e$"
    result = extract_expressions(text)
    for rec in result.footnote_records:
        assert any(region.contains(rec.source_offset) for region in result.footnote_regions)
        assert rec.sequence_index is None


# ----------------------------------------------------------
# TWO-PHASE RESOLUTION
# ----------------------------------------------------------

def test_scan_family_reports_absolute_offsets():
    text = "abc $x$ def $y$"
    found = scan_family(text, _family("single_dollar"))
    assert [r.source_offset for r in found] == [4, 12]
    assert all(text[r.source_offset] == "$" for r in found)


def test_environment_claims_inner_delimiters():
    text = r"\begin{equation}a = \text{$b$}\end{equation}"
    result = extract_expressions(text)
    assert len(result.records) == 1
    assert result.records[0].kind == ExpressionKind.ENVIRONMENT


def test_environment_inside_double_dollar_keeps_inner_record():
    text = r"Before it: $$\begin{equation}y\end{equation}$$"
    result = extract_expressions(text)

    assert len(result.records) == 1
    rec = result.records[0]
    assert rec.delimiter_tag == "equation"
    assert rec.source_offset == text.index("\\begin")
    assert rec.as_delimited() == "\\begin{equation}\ny\n\\end{equation}"


def test_resolve_overlaps_prefers_earlier_family():
    high = [ExpressionRecord("x", ExpressionKind.DISPLAY, "$$", 0, 10)]
    low = [
        ExpressionRecord("y", ExpressionKind.INLINE, "$", 5, 8),
        ExpressionRecord("z", ExpressionKind.INLINE, "$", 12, 15),
    ]
    kept = resolve_overlaps([high, low])
    assert [r.raw_notation for r in kept] == ["x", "z"]


def test_duplicate_offsets_are_reported_not_fatal(caplog):
    records = [
        ExpressionRecord("a", ExpressionKind.INLINE, "$", 3, 6),
        ExpressionRecord("b", ExpressionKind.INLINE, "\\(\\)", 3, 9),
    ]
    with caplog.at_level("WARNING"):
        issues = validate_unique_offsets(records)

    assert len(issues) == 1
    assert issues[0].code == "duplicate_offset"
    assert issues[0].source_offset == 3
    assert issues[0].category is ExtractionIntegrityWarning
    assert "ExtractionIntegrityWarning" in caplog.text


def test_clean_document_has_no_integrity_issues():
    result = extract_expressions(r"$a$ and $b$")
    assert result.integrity_issues == []


# ----------------------------------------------------------
# PREAMBLE AND HELPERS
# ----------------------------------------------------------

def test_preamble_commands_collected_with_result():
    text = r"\newcommand{\R}{\mathbb{R}} Let $x \in \R$."
    result = extract_expressions(text)
    assert [c.name for c in result.preamble_commands] == ["R"]


def test_preamble_extraction_can_be_disabled():
    config = ExtractionConfig(extract_preamble=False)
    result = ExpressionExtractor(config).extract(r"\newcommand{\R}{\mathbb{R}} $x$")
    assert result.preamble_commands == []


def test_source_fingerprint_tracks_content():
    a = extract_expressions("$a$")
    b = extract_expressions("$b$")
    assert a.source_fingerprint and b.source_fingerprint
    assert a.source_fingerprint != b.source_fingerprint


def test_record_dict_round_trip_and_delimiters():
    rec = ExpressionRecord("x^2", ExpressionKind.DISPLAY, "$$", 4, 11, sequence_index=0)
    assert ExpressionRecord.from_dict(rec.to_dict()) == rec
    assert rec.as_delimited() == "$$x^2$$"
    env = ExpressionRecord("a &= b", ExpressionKind.ENVIRONMENT, "align*", 0, 30)
    assert env.as_delimited() == "\\begin{align*}\na &= b\n\\end{align*}"


def test_filters_statistics_and_validation():
    result = extract_expressions(r"$a$ $$b$$ \(c\) \begin{gather}d\end{gather}")

    assert len(filter_by_kind(result.records, ExpressionKind.INLINE)) == 2
    assert len(filter_by_delimiter(result.records, "$$")) == 1
    stats = get_extraction_statistics(result.records)
    assert stats["total_expressions"] == 4
    assert stats["by_kind"] == {"inline": 2, "display": 1, "environment": 1}
    assert all(validate_record(r) for r in result.records)
    assert not validate_record(ExpressionRecord("x", ExpressionKind.INLINE, "$$", 0, 5))


def test_normalise_notation():
    assert normalise_notation("  a  +\n b ") == "a + b"
    assert normalise_notation(None) == ""
