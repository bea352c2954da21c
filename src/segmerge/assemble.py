"""Relabeling points with merged cell ids and building the output table."""

from typing import Mapping, Optional, Sequence

import numpy as np
import pandas as pd

from .index import CellIndex
from .io import SegmentationTable
from .unify import MergeGroups

UNASSIGNED_ID = 0


def relabel_table(
    table: SegmentationTable,
    index: CellIndex,
    groups: MergeGroups,
) -> pd.DataFrame:
    """Replace local cell labels of one source with merged global ids.

    Args:
        table: Loaded source table
        index: Cell index of the same source
        groups: Result of unify_cells

    Returns:
        Copy of ``table.frame`` (exact duplicate rows dropped) where the cell
        column holds global ids, UNASSIGNED_ID for unassigned points
    """
    frame = table.frame.drop_duplicates(subset=[table.point_column]).copy()
    labels = frame[table.cell_column]

    global_ids = labels.map(groups.source_ids(table.source))
    frame[table.cell_column] = global_ids.fillna(UNASSIGNED_ID).astype(np.int64)
    frame["_cell_size"] = labels.map(index.cell_sizes()).fillna(0).astype(np.int64)

    return frame


def assemble_output(
    tables: Sequence[SegmentationTable],
    indexes: Mapping[str, CellIndex],
    groups: MergeGroups,
    additional_columns: Optional[Sequence[str]] = None,
) -> pd.DataFrame:
    """Combine all sources into one row per distinct point.

    A point present in several sources keeps one assignment, preferring in
    order: an assigned cell over none, the larger local cell, the smaller
    global id, the source that sorts first. Passthrough values come from the
    chosen row. Rows are ordered by first appearance with sources scanned
    in sorted order, so the output does not depend on input file order.

    Args:
        tables: Loaded tables of all sources
        indexes: Source name -> CellIndex
        groups: Result of unify_cells
        additional_columns: Passthrough columns in output order. If None,
            uses the passthrough columns of the first table.

    Returns:
        DataFrame with the point column, the cell column (global id) and the
        passthrough columns
    """
    ordered = sorted(tables, key=lambda t: t.source)
    point_column = ordered[0].point_column
    cell_column = ordered[0].cell_column
    if additional_columns is None:
        additional_columns = ordered[0].additional_columns
    extras = [c for c in additional_columns if c not in (point_column, cell_column)]
    output_columns = [point_column, cell_column] + extras

    frames = []
    for rank, table in enumerate(ordered):
        frame = relabel_table(table, indexes[table.source], groups)
        frame["_rank"] = rank
        frame["_row"] = np.arange(len(frame))
        frames.append(frame)

    combined = pd.concat(frames, ignore_index=True)
    if combined.empty:
        return pd.DataFrame(columns=output_columns)

    first_seen = combined[point_column].drop_duplicates()

    combined["_assigned"] = combined[cell_column] != UNASSIGNED_ID
    chosen = combined.sort_values(
        ["_assigned", "_cell_size", cell_column, "_rank", "_row"],
        ascending=[False, False, True, True, True],
        kind="mergesort",
    ).drop_duplicates(subset=[point_column], keep="first")

    chosen = chosen.set_index(point_column).loc[first_seen.to_numpy()].reset_index()

    return chosen[output_columns].reset_index(drop=True)
