#!/usr/bin/env python3
"""
Reconstruct LaTeX from rendered HTML for a batch of source documents.

Each source (``paper.tex``) is paired with its rendered HTML (``paper.html``)
by file stem.

Usage:
    # Sources and rendered HTML side by side
    python scripts/reconstruct_documents.py --sources docs/

    # Rendered HTML in a separate directory, legacy strategy only
    python scripts/reconstruct_documents.py --sources docs/ --rendered rendered/ --mode legacy
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))

from latex_preservation.pipeline import PreservationPipeline, discover_pairs


def parse_args():
    parser = argparse.ArgumentParser(
        description="Reconstruct LaTeX from rendered documents",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python scripts/reconstruct_documents.py --sources docs/
    python scripts/reconstruct_documents.py --sources docs/ --rendered out/ --mode enhanced
        """
    )

    parser.add_argument(
        "--sources",
        type=str,
        required=True,
        help="Directory of source documents"
    )

    parser.add_argument(
        "--rendered",
        type=str,
        default=None,
        help="Directory of rendered HTML (defaults to --sources)"
    )

    parser.add_argument(
        "--output",
        type=str,
        default=None,
        help="Output directory (defaults to paths.output_dir)"
    )

    parser.add_argument(
        "--report",
        type=str,
        default=None,
        help="JSON report path (defaults to paths.report_dir)"
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=["auto", "enhanced", "legacy"],
        default=None,
        help="Reconstruction strategy"
    )

    parser.add_argument(
        "--config",
        type=str,
        default="configs/config.yaml",
        help="Path to configuration file"
    )

    return parser.parse_args()


def main():
    args = parse_args()

    pairs = discover_pairs(args.sources, args.rendered)

    print("=" * 60)
    print("LaTeX Reconstruction")
    print("=" * 60)
    print(f"Config: {args.config}")
    print(f"Document pairs: {len(pairs)}")
    print("=" * 60)

    if not pairs:
        print("No source/rendered pairs found!")
        return

    pipeline = PreservationPipeline(args.config)
    if args.mode:
        pipeline.coordinator.set_mode(args.mode)

    stats = asyncio.run(pipeline.run_batch(pairs, output_dir=args.output, report_path=args.report))

    print("\n" + "=" * 60)
    print("Reconstruction Completed!")
    print("=" * 60)
    print(f"Documents reconstructed: {stats.reconstructed_docs}/{stats.total_docs}")
    print(f"Expressions extracted: {stats.total_expressions}")

    if stats.method_distribution:
        print("\nMethod Distribution:")
        for method, count in stats.method_distribution.items():
            print(f"  {method}: {count}")

    if stats.end_time and stats.start_time:
        duration = (stats.end_time - stats.start_time).total_seconds()
        print(f"\nTotal time: {duration:.1f} seconds")

    print("=" * 60)


if __name__ == "__main__":
    main()
