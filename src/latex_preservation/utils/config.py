"""Configuration management module."""

import logging
import yaml
from pathlib import Path
from typing import Any, Dict, List, Optional
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_ENVIRONMENTS = [
    "equation",
    "align",
    "gather",
    "multline",
    "eqnarray",
    "alignat",
    "flalign",
    "displaymath",
]

DEFAULT_TEMP_SELECTORS = [
    ".temp-math-processing",
    ".processing-marker",
    ".mathjax-temp",
    "[data-temp='true']",
    ".conversion-temp",
]

DEFAULT_FOOTNOTE_SELECTORS = [
    "section.footnotes",
    "aside.footnotes",
    "[role='doc-endnotes']",
    ".footnote",
]


@dataclass
class ExtractionConfig:
    """Expression extraction configuration."""
    environments: List[str] = field(default_factory=lambda: list(DEFAULT_ENVIRONMENTS))
    footnote_tokens: List[str] = field(default_factory=lambda: ["\\footnote", "\\footnotetext", "^["])
    extract_preamble: bool = True


@dataclass
class RegistryConfig:
    """Expression registry configuration."""
    max_age_seconds: float = 300.0


@dataclass
class CleanupConfig:
    """Render-tree cleanup configuration."""
    expression_selector: str = "mjx-container"
    annotation_selector: str = 'annotation[encoding="application/x-tex"]'
    output_selector: str = "#output"
    temp_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_TEMP_SELECTORS))
    max_total_nodes: int = 5000
    max_temp_nodes: int = 10
    max_empty_nodes: int = 50
    min_annotation_ratio: float = 0.5
    retry_attempts: int = 3
    retry_delay: float = 2.0


@dataclass
class CoordinatorConfig:
    """Reconstruction coordinator configuration."""
    mode: str = "auto"
    enhanced_module: str = "latex_preservation.processors.enhanced_processor"
    enhanced_factory: str = "create_processor"
    footnote_selectors: List[str] = field(default_factory=lambda: list(DEFAULT_FOOTNOTE_SELECTORS))


class Config:
    """Main configuration class."""

    def __init__(self, config_path: Optional[str] = "configs/config.yaml"):
        self.config_path = Path(config_path) if config_path else None
        self._raw_config: Dict[str, Any] = {}
        self._load_config()

    def _load_config(self) -> None:
        """Load configuration from YAML file."""
        if self.config_path is not None and self.config_path.exists():
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f) or {}
        else:
            if self.config_path is not None:
                logger.warning("Config file %s not found, using defaults", self.config_path)
            self._raw_config = {}

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Config":
        """Build a configuration from an in-memory mapping."""
        config = cls(config_path=None)
        config._raw_config = dict(raw)
        return config

    def reload(self) -> None:
        """Reload configuration from file."""
        self._load_config()

    @property
    def extraction(self) -> ExtractionConfig:
        """Get extraction configuration."""
        cfg = self._raw_config.get("extraction", {})
        defaults = ExtractionConfig()
        return ExtractionConfig(
            environments=cfg.get("environments", defaults.environments),
            footnote_tokens=cfg.get("footnote_tokens", defaults.footnote_tokens),
            extract_preamble=cfg.get("extract_preamble", True)
        )

    @property
    def registry(self) -> RegistryConfig:
        """Get registry configuration."""
        cfg = self._raw_config.get("registry", {})
        return RegistryConfig(
            max_age_seconds=float(cfg.get("max_age_seconds", 300.0))
        )

    @property
    def cleanup(self) -> CleanupConfig:
        """Get cleanup configuration."""
        cfg = self._raw_config.get("cleanup", {})
        defaults = CleanupConfig()
        return CleanupConfig(
            expression_selector=cfg.get("expression_selector", defaults.expression_selector),
            annotation_selector=cfg.get("annotation_selector", defaults.annotation_selector),
            output_selector=cfg.get("output_selector", defaults.output_selector),
            temp_selectors=cfg.get("temp_selectors", defaults.temp_selectors),
            max_total_nodes=cfg.get("max_total_nodes", 5000),
            max_temp_nodes=cfg.get("max_temp_nodes", 10),
            max_empty_nodes=cfg.get("max_empty_nodes", 50),
            min_annotation_ratio=cfg.get("min_annotation_ratio", 0.5),
            retry_attempts=cfg.get("retry_attempts", 3),
            retry_delay=cfg.get("retry_delay", 2.0)
        )

    @property
    def coordinator(self) -> CoordinatorConfig:
        """Get coordinator configuration."""
        cfg = self._raw_config.get("coordinator", {})
        defaults = CoordinatorConfig()
        return CoordinatorConfig(
            mode=cfg.get("mode", "auto"),
            enhanced_module=cfg.get("enhanced_module", defaults.enhanced_module),
            enhanced_factory=cfg.get("enhanced_factory", defaults.enhanced_factory),
            footnote_selectors=cfg.get("footnote_selectors", defaults.footnote_selectors)
        )

    @property
    def paths(self) -> Dict[str, str]:
        """Get path configuration."""
        defaults = {
            "output_dir": "./data/reconstructed",
            "report_dir": "./data/reports",
            "log_dir": "./logs"
        }
        return {**defaults, **self._raw_config.get("paths", {})}

    @property
    def log_settings(self) -> Dict[str, Any]:
        """Get logging configuration."""
        defaults = {
            "level": "INFO",
            "console": True,
            "to_file": False
        }
        return {**defaults, **self._raw_config.get("logging", {})}

    def get(self, key: str, default: Any = None) -> Any:
        """Get raw configuration value."""
        return self._raw_config.get(key, default)

    def __getitem__(self, key: str) -> Any:
        """Dictionary-style access to configuration."""
        return self._raw_config[key]
