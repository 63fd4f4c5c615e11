#!/usr/bin/env python3
"""
Run enhanced and legacy reconstruction side by side and report differences.

Usage:
    python scripts/compare_strategies.py --source paper.tex --rendered paper.html
    python scripts/compare_strategies.py --source paper.tex --rendered paper.html --output report.json
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from latex_preservation.pipeline import PreservationPipeline
from latex_preservation.utils.file_utils import read_text_file, safe_json_dump


async def compare(pipeline, source_text, rendered_html):
    extraction = pipeline.prepare(source_text)
    return await pipeline.compare(rendered_html, extraction.source_fingerprint)


def main():
    parser = argparse.ArgumentParser(description="Compare enhanced and legacy reconstruction")

    parser.add_argument("--source", type=str, required=True, help="Source document")
    parser.add_argument("--rendered", type=str, required=True, help="Rendered HTML")
    parser.add_argument("--output", type=str, default=None, help="Write the full comparison as JSON")
    parser.add_argument(
        "--config",
        type=str,
        default="configs/config.yaml",
        help="Path to configuration file"
    )

    args = parser.parse_args()

    pipeline = PreservationPipeline(args.config)
    outcome = asyncio.run(compare(
        pipeline, read_text_file(args.source), read_text_file(args.rendered)
    ))

    meta = outcome["meta"]
    equivalence = meta["equivalence"]

    print(f"\n{'='*60}")
    print("Strategy Comparison")
    print(f"{'='*60}")
    print(f"Enhanced ready: {meta['availability']['enhanced_ready']}")
    for method in ("legacy", "enhanced"):
        result = outcome[method] or {}
        if "error" in result:
            print(f"{method}: error - {result['error']}")
        else:
            print(f"{method}: {len(result['content'])} chars")

    if equivalence.get("comparable"):
        print(f"Identical output: {equivalence['identical']}")
        print(f"Shared expressions: {equivalence['shared_expressions']}")
        print(f"Only legacy: {equivalence['only_legacy']}")
        print(f"Only enhanced: {equivalence['only_enhanced']}")
    else:
        print("Outputs not comparable (one strategy failed)")
    print(f"{'='*60}")

    if args.output:
        safe_json_dump(outcome, args.output)
        print(f"Report: {args.output}")


if __name__ == "__main__":
    main()
