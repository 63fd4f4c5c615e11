"""Tests for latex_preservation.utils file and logging helpers."""

from latex_preservation.utils.file_utils import (
    compute_content_hash,
    get_source_files,
    safe_json_dump,
    safe_json_load,
    write_text_file,
)
from latex_preservation.utils.logging_utils import PipelineLogger


def test_safe_json_round_trip(tmp_path):
    path = tmp_path / "nested" / "report.json"
    assert safe_json_dump({"a": [1, 2]}, path)
    assert safe_json_load(path) == {"a": [1, 2]}
    assert not path.with_suffix(".tmp").exists()


def test_safe_json_load_default(tmp_path):
    assert safe_json_load(tmp_path / "absent.json", default={}) == {}


def test_content_hash_is_stable():
    assert compute_content_hash("$a$") == compute_content_hash("$a$")
    assert len(compute_content_hash("$a$")) == 16
    assert compute_content_hash("$a$") != compute_content_hash("$b$")


def test_get_source_files_filters_suffixes(tmp_path):
    write_text_file("x", tmp_path / "a.tex")
    write_text_file("x", tmp_path / "sub" / "b.md")
    write_text_file("x", tmp_path / "c.html")
    names = [p.name for p in get_source_files(tmp_path)]
    assert names == ["a.tex", "b.md"]


def test_pipeline_logger_metrics(tmp_path):
    logger = PipelineLogger(name="test_metrics", log_dir=str(tmp_path), console=False)
    logger.update_metric("docs_processed", 3)
    logger.update_metric("docs_failed")
    logger.update_metric("enhanced_results", 2)
    logger.update_metric("legacy_results")
    logger.update_metric("unknown_metric")
    logger.error("something broke", exc=ValueError("bad"))

    summary = logger.get_summary()
    assert summary["success_rate"] == 0.75
    assert summary["enhanced_rate"] == 2 / 3
    assert summary["errors"][0]["exception"] == "bad"
    assert "unknown_metric" not in summary
    assert list(tmp_path.glob("test_metrics_*.log"))
