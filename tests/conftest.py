"""Pytest configuration for tests."""
from __future__ import annotations

import sys
from pathlib import Path

# Make the src/ layout importable without installing
project_root = Path(__file__).parent.parent
if str(project_root / "src") not in sys.path:
    sys.path.insert(0, str(project_root / "src"))

import pytest

from latex_preservation.processors.coordinator import (
    ProcessorCoordinator,
    StaticCapabilityProvider,
)
from latex_preservation.processors.enhanced_processor import EnhancedProcessor
from latex_preservation.processors.legacy_processor import LegacyProcessor
from latex_preservation.storage.expression_registry import ExpressionRegistry


class FakeClock:
    """Manually advanced clock for registry age checks."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def rendered_expression(latex: str, display: bool = False, encoding: str = "application/x-tex",
                        attrs: str = "") -> str:
    """Markup shaped like a MathJax CHTML node with assistive MathML."""
    display_attr = ' display="true"' if display else ""
    return (
        f'<mjx-container class="MathJax"{display_attr}{attrs}>'
        f'<mjx-math>rendered</mjx-math>'
        f'<mjx-assistive-mml><math><semantics><mrow><mi>x</mi></mrow>'
        f'<annotation encoding="{encoding}">{latex}</annotation>'
        f'</semantics></math></mjx-assistive-mml>'
        f'</mjx-container>'
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def registry(clock):
    return ExpressionRegistry(max_age_seconds=300.0, clock=clock)


@pytest.fixture
def legacy():
    return LegacyProcessor()


@pytest.fixture
def enhanced(registry):
    return EnhancedProcessor(registry)


@pytest.fixture
def coordinator(registry, legacy, enhanced):
    return ProcessorCoordinator(
        registry=registry,
        legacy=legacy,
        enhanced_provider=StaticCapabilityProvider(enhanced),
    )


@pytest.fixture(autouse=True)
def reset_shared_registry():
    yield
    ExpressionRegistry.reset_instance()


@pytest.fixture
def make_rendered():
    return rendered_expression
