"""Merging of independently segmented point tables.

This package provides tools for:
- Loading per-FOV segmentation outputs (e.g. Baysor) with passthrough columns
- Indexing the points of every cell per source file
- Finding overlapping cells across files via shared point ids (IOU)
- Unifying overlapping cells into merged cells with reproducible ids
- Writing the combined segmentation table
"""

from .errors import (
    SegmergeError,
    MalformedInputError,
    ConfigurationError,
)
from .config import (
    DEFAULT_ADDITIONAL_COLUMNS,
    MergeConfig,
    load_config,
    save_config,
)
from .io import SegmentationTable, load_segmentation, write_merged_table
from .index import CellIndex, build_cell_index, index_table
from .overlap import (
    OverlapEdge,
    build_point_index,
    compute_cell_iou,
    compute_overlaps,
    find_candidate_pairs,
)
from .unify import DisjointSet, MergeGroups, unify_cells
from .assemble import UNASSIGNED_ID, assemble_output
from .core import MergeRun, merge_tables, run_merge, summarize_merge, save_summary

__version__ = "0.1.0"

__all__ = [
    # errors
    "SegmergeError",
    "MalformedInputError",
    "ConfigurationError",
    # config
    "DEFAULT_ADDITIONAL_COLUMNS",
    "MergeConfig",
    "load_config",
    "save_config",
    # io
    "SegmentationTable",
    "load_segmentation",
    "write_merged_table",
    # cell index
    "CellIndex",
    "build_cell_index",
    "index_table",
    # overlap
    "OverlapEdge",
    "build_point_index",
    "compute_cell_iou",
    "compute_overlaps",
    "find_candidate_pairs",
    # unification
    "DisjointSet",
    "MergeGroups",
    "unify_cells",
    # output
    "UNASSIGNED_ID",
    "assemble_output",
    # pipeline
    "MergeRun",
    "merge_tables",
    "run_merge",
    "summarize_merge",
    "save_summary",
]
