"""Command line entry point.

Usage:
segmerge fov_1/segmentation.csv fov_2/segmentation.csv \
    --threshold 0.2 \
    --additional-columns x y z gene \
    --outfile merged.csv
"""

import argparse
import sys
from typing import Optional, Sequence

from .config import (
    DEFAULT_ADDITIONAL_COLUMNS,
    DEFAULT_OUTFILE,
    DEFAULT_THRESHOLD,
    MergeConfig,
    read_config_file,
)
from .core import run_merge
from .errors import SegmergeError


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="segmerge",
        description=(
            "Merge segmentation results from different runs (e.g. FOVs) into a "
            "single segmentation. Cells from different files are combined if the "
            "intersection over union of their points is greater than a threshold."
        ),
    )
    parser.add_argument(
        "files",
        nargs="+",
        help="Segmentation output files. Must include the point id and cell columns.",
    )
    # None means "not given" so config file values are not overridden
    parser.add_argument(
        "--threshold",
        default=None,
        help=f"Merge cells whose IOU is greater than this (default: {DEFAULT_THRESHOLD})",
    )
    parser.add_argument(
        "--additional-columns",
        nargs="*",
        default=None,
        help=(
            "Columns copied into the output "
            f"(default: {' '.join(DEFAULT_ADDITIONAL_COLUMNS)})"
        ),
    )
    parser.add_argument(
        "--outfile",
        default=None,
        help=f"Output file (default: {DEFAULT_OUTFILE})",
    )
    parser.add_argument("--point-column", default=None, help="Point id column (default: transcript_id)")
    parser.add_argument("--cell-column", default=None, help="Cell label column (default: cell)")
    parser.add_argument(
        "--unassigned-label",
        action="append",
        default=None,
        dest="unassigned_labels",
        help="Cell label meaning 'no cell'; repeatable (default: 0)",
    )
    parser.add_argument("--workers", type=int, default=None, help="Worker threads (default: 1)")
    parser.add_argument("--config", default=None, help="YAML file with merge parameters")
    parser.add_argument("--summary", default=None, dest="summary_file", help="Write a YAML run summary")
    parser.add_argument("--quiet", action="store_true", help="Only print errors")
    return parser


def config_from_args(args: argparse.Namespace) -> MergeConfig:
    """Combine defaults, the optional config file and explicit flags."""
    settings = read_config_file(args.config) if args.config else {}

    for key in (
        "threshold",
        "additional_columns",
        "outfile",
        "point_column",
        "cell_column",
        "unassigned_labels",
        "workers",
        "summary_file",
    ):
        value = getattr(args, key)
        if value is not None:
            settings[key] = value
    if args.quiet:
        settings["verbose"] = False

    return MergeConfig.from_dict(settings)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = config_from_args(args)
        run_merge(args.files, config)
    except (SegmergeError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if config.verbose:
        print("All done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
