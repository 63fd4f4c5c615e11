#!/usr/bin/env python3
"""
Extract math expressions from source documents into JSON records.

Usage:
    # Single file
    python scripts/extract_expressions.py --input paper.tex

    # Directory of .tex / .md sources
    python scripts/extract_expressions.py --input sources/ --output data/expressions
"""

import argparse
import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from latex_preservation.parsers.expression_extractor import ExpressionExtractor
from latex_preservation.utils.config import Config
from latex_preservation.utils.file_utils import get_source_files, read_text_file, safe_json_dump
from latex_preservation.utils.logging_utils import setup_logger


def main():
    parser = argparse.ArgumentParser(description="Extract LaTeX expressions from source documents")

    parser.add_argument(
        "--input",
        type=str,
        required=True,
        help="Source file or directory"
    )

    parser.add_argument(
        "--output",
        type=str,
        default="data/expressions",
        help="Output directory for JSON records"
    )

    parser.add_argument(
        "--config",
        type=str,
        default="configs/config.yaml",
        help="Path to configuration file"
    )

    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    args = parser.parse_args()
    setup_logger("latex_preservation", level="DEBUG" if args.verbose else "INFO")

    config = Config(args.config)
    extractor = ExpressionExtractor(config.extraction)

    input_path = Path(args.input)
    sources = [input_path] if input_path.is_file() else get_source_files(input_path)
    print(f"Found {len(sources)} source file(s)")

    if not sources:
        print("No source files found!")
        return

    output_dir = Path(args.output)
    total = 0
    total_footnote = 0
    total_issues = 0

    for source in sources:
        result = extractor.extract(read_text_file(source))
        safe_json_dump(result.to_dict(), output_dir / f"{source.stem}.json")
        total += len(result.records)
        total_footnote += len(result.footnote_records)
        total_issues += len(result.integrity_issues)
        print(f"  {source.name}: {len(result.records)} expressions, "
              f"{len(result.footnote_records)} in footnotes")

    print(f"\n{'='*60}")
    print("Extraction complete!")
    print(f"Expressions: {total}")
    print(f"Footnote expressions: {total_footnote}")
    print(f"Integrity issues: {total_issues}")
    print(f"Output: {output_dir}")
    print(f"{'='*60}")


if __name__ == "__main__":
    main()
