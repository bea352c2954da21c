"""Merge run: load, index, detect overlaps, unify and assemble."""

import warnings
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Sequence, Union

import numpy as np
import pandas as pd
import yaml
from tqdm import tqdm

from .assemble import UNASSIGNED_ID, assemble_output
from .config import MergeConfig
from .errors import ConfigurationError
from .index import CellIndex, index_table
from .io import SegmentationTable, load_segmentation, write_merged_table
from .overlap import OverlapEdge, compute_overlaps
from .unify import MergeGroups, unify_cells


@dataclass
class MergeRun:
    """All state of one merge, built fresh per invocation.

    Attributes:
        tables: Loaded source tables, in the order supplied
        indexes: Source name -> CellIndex
        edges: Overlap graph between cells of different sources
        groups: Merged cells with their global ids
        output: One row per distinct point with its merged cell id
        threshold: IOU threshold the groups were computed with
    """

    tables: list[SegmentationTable]
    indexes: dict[str, CellIndex]
    edges: list[OverlapEdge]
    groups: MergeGroups
    output: pd.DataFrame
    threshold: float
    output_path: Optional[Path] = field(default=None)

    @property
    def merged_edges(self) -> list[OverlapEdge]:
        return [edge for edge in self.edges if edge.iou > self.threshold]


def _check_sources(tables: Sequence[SegmentationTable]) -> None:
    if not tables:
        raise ConfigurationError("No input files to merge")

    sources = [t.source for t in tables]
    duplicates = sorted({s for s in sources if sources.count(s) > 1})
    if duplicates:
        raise ConfigurationError(f"Input file given more than once: {duplicates}")

    if len(tables) == 1:
        warnings.warn(
            f"Only one input file ({sources[0]}); cells are relabeled but not merged"
        )


def index_tables(
    tables: Sequence[SegmentationTable],
    workers: int = 1,
) -> dict[str, CellIndex]:
    """Build the cell index of every table, concurrently if workers > 1."""
    if workers > 1 and len(tables) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            indexes = list(executor.map(index_table, tables))
    else:
        indexes = [index_table(t) for t in tables]
    return {index.source: index for index in indexes}


def merge_tables(
    tables: Sequence[SegmentationTable],
    threshold: float = 0.2,
    additional_columns: Optional[Sequence[str]] = None,
    workers: int = 1,
    verbose: bool = False,
) -> MergeRun:
    """Merge already loaded segmentation tables.

    Args:
        tables: One table per source file
        threshold: Cells are merged if their IOU is greater than this value
        additional_columns: Passthrough columns for the output. If None,
            uses those of the first table.
        workers: Threads for indexing and candidate generation
        verbose: Print progress

    Returns:
        MergeRun holding every intermediate result and the output table

    Raises:
        ConfigurationError: If no tables are given or a source repeats
        MalformedInputError: If a point is assigned to two cells in one source
    """
    tables = list(tables)
    _check_sources(tables)

    if verbose:
        print(f"Indexing cells of {len(tables)} files")
    indexes = index_tables(tables, workers=workers)

    if verbose:
        n_cells = sum(index.n_cells for index in indexes.values())
        print(f"Computing overlaps between {n_cells} cells")
    edges = compute_overlaps(list(indexes.values()), workers=workers)

    if verbose:
        print(f"Merging cells ({len(edges)} overlapping pairs, threshold {threshold})")
    groups = unify_cells(list(indexes.values()), edges, threshold)

    output = assemble_output(tables, indexes, groups, additional_columns)

    if verbose:
        print(f"  {groups.n_groups} merged cells from {len(groups.cell_ids)} input cells")

    return MergeRun(
        tables=tables,
        indexes=indexes,
        edges=edges,
        groups=groups,
        output=output,
        threshold=threshold,
    )


def load_tables(
    files: Sequence[Union[str, Path]],
    config: MergeConfig,
) -> list[SegmentationTable]:
    """Load every input file with the columns the config asks for."""

    def load(path):
        return load_segmentation(
            path,
            point_column=config.point_column,
            cell_column=config.cell_column,
            additional_columns=config.additional_columns,
            unassigned_labels=config.unassigned_labels,
        )

    tables = []
    # the bar must be closed before a load error reaches the caller
    with tqdm(total=len(files), desc="Reading", disable=not config.verbose) as bar:
        if config.workers > 1 and len(files) > 1:
            with ThreadPoolExecutor(max_workers=config.workers) as executor:
                for table in executor.map(load, files):
                    tables.append(table)
                    bar.update()
        else:
            for path in files:
                tables.append(load(path))
                bar.update()

    return tables


def run_merge(
    files: Sequence[Union[str, Path]],
    config: Optional[MergeConfig] = None,
) -> MergeRun:
    """Merge segmentation files and save the combined table.

    Args:
        files: Segmentation outputs, one per source (e.g. FOV)
        config: Merge parameters. If None, uses defaults.

    Returns:
        MergeRun with ``output_path`` set to the saved table

    Raises:
        ConfigurationError: If parameters are invalid or no files are given
        MalformedInputError: If an input table is malformed
        OSError: If an input can't be read or the output can't be written
    """
    config = (config or MergeConfig()).validate()
    files = [str(f) for f in files]

    if not files:
        raise ConfigurationError("No input files to merge")

    if config.verbose:
        print(f"Reading {len(files)} files")
    tables = load_tables(files, config)

    run = merge_tables(
        tables,
        threshold=config.threshold,
        additional_columns=config.additional_columns,
        workers=config.workers,
        verbose=config.verbose,
    )

    if config.verbose:
        print(f'Saving to "{config.outfile}"')
    run.output_path = write_merged_table(run.output, config.outfile)

    if config.summary_file:
        save_summary(summarize_merge(run), config.summary_file)
        if config.verbose:
            print(f'Summary written to "{config.summary_file}"')

    return run


def summarize_merge(run: MergeRun) -> dict:
    """Summarize a merge run.

    Returns:
        Dictionary containing:
        - 'threshold': IOU threshold used
        - 'n_sources': Number of input files
        - 'n_points': Distinct points in the output
        - 'n_assigned_points': Output points with a merged cell
        - 'n_unassigned_points': Output points without a cell
        - 'n_input_cells': Cells over all sources before merging
        - 'n_merged_cells': Cells after merging
        - 'n_candidate_pairs': Overlapping cell pairs across sources
        - 'n_merged_pairs': Pairs with IOU above threshold
        - 'mean_iou': Mean IOU of merged pairs
        - 'median_iou': Median IOU of merged pairs
        - 'sources': Per source, number of points and cells
    """
    cell_column = run.tables[0].cell_column if run.tables else "cell"
    merged_ious = [edge.iou for edge in run.merged_edges]
    n_assigned = int((run.output[cell_column] != UNASSIGNED_ID).sum()) if len(run.output) else 0

    return {
        "threshold": float(run.threshold),
        "n_sources": len(run.tables),
        "n_points": len(run.output),
        "n_assigned_points": n_assigned,
        "n_unassigned_points": len(run.output) - n_assigned,
        "n_input_cells": len(run.groups.cell_ids),
        "n_merged_cells": run.groups.n_groups,
        "n_candidate_pairs": len(run.edges),
        "n_merged_pairs": len(merged_ious),
        "mean_iou": float(np.mean(merged_ious)) if merged_ious else 0.0,
        "median_iou": float(np.median(merged_ious)) if merged_ious else 0.0,
        "sources": {
            source: {"points": index.n_points, "cells": index.n_cells}
            for source, index in sorted(run.indexes.items())
        },
    }


def save_summary(
    summary: dict,
    output_path: Union[str, Path],
) -> Path:
    """Save a run summary to YAML file.

    Args:
        summary: Dictionary from summarize_merge
        output_path: Path for output YAML file

    Returns:
        Path to saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w") as f:
        yaml.dump(summary, f, default_flow_style=False, sort_keys=False)

    return output_path
