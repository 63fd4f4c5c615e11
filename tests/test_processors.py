"""Tests for the legacy and enhanced reconstruction strategies."""

import asyncio

import pytest
from bs4 import BeautifulSoup

from latex_preservation.exceptions import LegacyProcessingError
from latex_preservation.parsers.expression_extractor import extract_expressions
from latex_preservation.processors.enhanced_processor import EnhancedProcessor, create_processor
from latex_preservation.processors.legacy_processor import (
    LegacyProcessor,
    clean_invalid_nesting,
    semantic_mathml_to_latex,
    wrap_in_environment,
)


def _install(registry, source):
    result = extract_expressions(source)
    registry.replace(
        result.index_map(),
        result.position_sequence(),
        source_fingerprint=result.source_fingerprint,
        context={"preamble_commands": result.preamble_commands},
    )
    return result


# ----------------------------------------------------------
# ENVIRONMENT WRAPPING
# ----------------------------------------------------------

def test_wrap_heuristics():
    assert wrap_in_environment("x", display=False) == "\\(x\\)"
    assert wrap_in_environment("x", display=True) == "\\[x\\]"
    assert wrap_in_environment("a &= b \\\\ c &= d", display=True) == (
        "\\begin{align*}\na &= b \\\\ c &= d\n\\end{align*}"
    )
    assert wrap_in_environment("a \\\\ b", display=True) == "\\begin{gather*}\na \\\\ b\n\\end{gather*}"


def test_wrap_keeps_existing_environment():
    latex = "\\begin{cases} a \\end{cases}"
    assert wrap_in_environment(latex, display=True) == latex


def test_wrap_uses_stored_environment_on_node_or_parent():
    soup = BeautifulSoup(
        '<span data-latex-env="align"><mjx-container></mjx-container></span>'
        '<mjx-container data-math-env="multline"></mjx-container>',
        "html.parser",
    )
    first, second = soup.select("mjx-container")
    assert wrap_in_environment("a", True, first) == "\\begin{align}\na\n\\end{align}"
    assert wrap_in_environment("b", True, second) == "\\begin{multline}\nb\n\\end{multline}"


def test_wrap_ignores_serialised_object_attributes():
    soup = BeautifulSoup('<mjx-container data-math-env="{&quot;a&quot;:1}"></mjx-container>', "html.parser")
    assert wrap_in_environment("x", False, soup.find("mjx-container")) == "\\(x\\)"


# ----------------------------------------------------------
# SEMANTIC MATHML
# ----------------------------------------------------------

def test_semantic_mathml_reading():
    soup = BeautifulSoup(
        "<math><mrow><mfrac><mi>a</mi><mn>2</mn></mfrac><mo>+</mo>"
        "<msup><mi>x</mi><mn>3</mn></msup><mo>&#x2264;</mo>"
        "<msqrt><mi>y</mi></msqrt><mroot><mi>z</mi><mn>3</mn></mroot>"
        "<msubsup><mi>s</mi><mi>i</mi><mn>2</mn></msubsup></mrow></math>",
        "html.parser",
    )
    assert semantic_mathml_to_latex(soup.find("math")) == (
        "\\frac{a}{2}+x^{3}\\leq\\sqrt{y}\\sqrt[3]{z}s_{i}^{2}"
    )


def test_clean_invalid_nesting():
    content = "\\begin{equation}\\begin{align*}a\\end{align*}\\end{equation}"
    assert clean_invalid_nesting(content) == "\\begin{align*}a\\end{align*}"


# ----------------------------------------------------------
# LEGACY
# ----------------------------------------------------------

def test_legacy_converts_annotations(legacy, make_rendered):
    html = f"<p>Inline {make_rendered('a+b')} and</p>{make_rendered('c', display=True)}"

    result = legacy.convert(html)

    assert "\\(a+b\\)" in result.content
    assert "\\[c\\]" in result.content
    assert "mjx-container" not in result.content
    assert result.converted_count == 2


def test_legacy_tries_alternate_encodings(legacy, make_rendered):
    result = legacy.convert(make_rendered("q", encoding="TeX"))
    assert "\\(q\\)" in result.content


def test_legacy_falls_back_to_semantic_mathml(legacy):
    html = ("<mjx-container><mjx-assistive-mml><math><mrow><mi>x</mi><mo>=</mo><mn>1</mn>"
            "</mrow></math></mjx-assistive-mml></mjx-container>")
    result = legacy.convert(html)
    assert "\\(x=1\\)" in result.content
    assert result.semantic_count == 1


def test_legacy_leaves_unrecoverable_and_skipped_nodes(legacy, make_rendered):
    tikz_node = make_rendered("t", attrs=' data-tikz-math="1"')
    html = (
        "<mjx-container><mjx-math>no mathml</mjx-math></mjx-container>"
        f'<div data-skip-latex-export="true">{make_rendered("tikz")}</div>'
        f"{tikz_node}"
    )
    result = legacy.convert(html)

    assert result.unrecovered_count == 1
    assert result.skipped_count == 2
    assert result.converted_count == 0
    assert result.content.count("<mjx-container") == 3


def test_legacy_rejects_invalid_input(legacy):
    with pytest.raises(LegacyProcessingError):
        legacy.convert(None)
    with pytest.raises(LegacyProcessingError):
        asyncio.run(legacy.process({"content": 12}))


def test_legacy_process_accepts_mapping(legacy, make_rendered):
    result = asyncio.run(legacy.process({"content": make_rendered("k")}))
    assert "\\(k\\)" in result.content


# ----------------------------------------------------------
# ENHANCED
# ----------------------------------------------------------

def test_enhanced_restores_original_delimiters(registry, make_rendered):
    _install(registry, r"Let $a$ and $$b$$ and \begin{align*}c &= d\end{align*}")
    html = (
        f"<p>Let {make_rendered('a')} and</p>"
        f"{make_rendered('b', display=True)}"
        f"{make_rendered('c &amp;= d', display=True)}"
    )

    result = EnhancedProcessor(registry).process(html)

    assert result is not None
    assert "$a$" in result.processed_content
    assert "$$b$$" in result.processed_content
    assert "\\begin{align*}" in result.processed_content
    assert result.metadata["restored_count"] == 3
    assert result.metadata["registry_generation"] == registry.status().generation


def test_enhanced_returns_none_on_count_mismatch(registry, make_rendered):
    _install(registry, r"$a$ $b$")
    assert EnhancedProcessor(registry).process(make_rendered("a")) is None


def test_enhanced_returns_none_when_registry_untrusted(registry, clock, make_rendered):
    processor = EnhancedProcessor(registry)
    assert processor.process(make_rendered("a")) is None  # never initialised

    _install(registry, r"$a$")
    registry.begin_generation()
    assert processor.process(make_rendered("a")) is None  # superseded

    _install(registry, r"$a$")
    clock.advance(1000)
    assert processor.process(make_rendered("a")) is None  # expired


def test_enhanced_recovers_footnotes_from_annotations(registry, make_rendered):
    _install(registry, r"Body $a$.\footnote{Note $n$.}")
    html = (
        f"<p>Body {make_rendered('a')}.</p>"
        f'<section class="footnotes"><ol><li>Note {make_rendered("n")}.</li></ol></section>'
    )

    result = EnhancedProcessor(registry).process(html)

    assert result is not None
    assert "$a$" in result.processed_content
    assert "\\(n\\)" in result.processed_content
    assert result.metadata["footnote_restored_count"] == 1


def test_enhanced_converts_preamble_to_macros(registry, make_rendered):
    _install(registry, r"\newcommand{\R}{\mathbb{R}} $x \in \R$")
    result = create_processor(registry).process(make_rendered("x \\in \\R"))

    assert result.custom_macros == {"R": ["\\mathbb{R}"]}
    assert result.metadata["command_count"] == 1
    assert result.metadata["macro_count"] == 1
