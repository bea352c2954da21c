"""Overlap detection between cells of different source files.

Cells are compared only when they share at least one point. An inverted
index from point id to the cells owning it yields the candidate pairs, so
the work scales with the number of actually overlapping pairs instead of
all pairs of cells.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import AbstractSet, Sequence

import pandas as pd

from .index import CellIndex

# (source, local_label)
CellKey = tuple[str, str]

PAIR_COLUMNS = ["source_a", "cell_a", "source_b", "cell_b"]


@dataclass(frozen=True)
class OverlapEdge:
    """Two cells from different sources sharing at least one point.

    ``cell_a`` always comes from the source that sorts first.
    """

    cell_a: CellKey
    cell_b: CellKey
    intersection: int
    union: int

    @property
    def iou(self) -> float:
        return self.intersection / self.union


def overlap_counts(
    points_a: AbstractSet[str],
    points_b: AbstractSet[str],
) -> tuple[int, int]:
    """Intersection and union sizes of two point sets."""
    if len(points_a) > len(points_b):
        points_a, points_b = points_b, points_a
    intersection = sum(1 for p in points_a if p in points_b)
    return intersection, len(points_a) + len(points_b) - intersection


def compute_cell_iou(
    points_a: AbstractSet[str],
    points_b: AbstractSet[str],
) -> float:
    """Compute Intersection over Union between two cells.

    Args:
        points_a: Point ids of the first cell
        points_b: Point ids of the second cell

    Returns:
        IoU value between 0 and 1 (0 if both cells are empty)
    """
    intersection, union = overlap_counts(points_a, points_b)

    if union == 0:
        return 0.0

    return intersection / union


def build_point_index(indexes: Sequence[CellIndex]) -> pd.DataFrame:
    """Inverted index of points owned by cells in two or more sources.

    Args:
        indexes: Cell indexes of all sources

    Returns:
        DataFrame with columns point_id, source, cell; one row per
        (point, owning cell), restricted to points assigned in at least two
        sources
    """
    frames = [
        index.assigned_points().assign(source=index.source)
        for index in indexes
        if index.cells
    ]
    if not frames:
        return pd.DataFrame(columns=["point_id", "source", "cell"], dtype=object)

    points = pd.concat(frames, ignore_index=True)[["point_id", "source", "cell"]]
    n_sources = points.groupby("point_id", sort=False)["source"].transform("nunique")

    return points[n_sources > 1].reset_index(drop=True)


def _pairs_in_shard(shard: pd.DataFrame) -> pd.DataFrame:
    """Unique cross-source cell pairs sharing a point within one shard."""
    pairs = shard.merge(shard, on="point_id", suffixes=("_a", "_b"))
    # same-source pairs are never compared; ordering also drops mirrored pairs
    pairs = pairs[pairs["source_a"] < pairs["source_b"]]
    return pairs[PAIR_COLUMNS].drop_duplicates()


def find_candidate_pairs(
    point_index: pd.DataFrame,
    workers: int = 1,
) -> pd.DataFrame:
    """Find unique cell pairs from different sources that share a point.

    Points are sharded by a hash of their id so shards can be processed
    concurrently; pairs from different shards are combined and
    deduplicated afterwards.

    Args:
        point_index: Output of build_point_index
        workers: Number of shards / threads

    Returns:
        DataFrame with columns source_a, cell_a, source_b, cell_b, sorted
    """
    if point_index.empty:
        return pd.DataFrame(columns=PAIR_COLUMNS, dtype=object)

    if workers > 1:
        shard_ids = pd.util.hash_pandas_object(point_index["point_id"], index=False) % workers
        shards = [shard for _, shard in point_index.groupby(shard_ids.to_numpy(), sort=True)]
        with ThreadPoolExecutor(max_workers=workers) as executor:
            parts = list(executor.map(_pairs_in_shard, shards))
    else:
        parts = [_pairs_in_shard(point_index)]

    pairs = pd.concat(parts, ignore_index=True).drop_duplicates()

    return pairs.sort_values(PAIR_COLUMNS, kind="mergesort").reset_index(drop=True)


def compute_overlaps(
    indexes: Sequence[CellIndex],
    workers: int = 1,
) -> list[OverlapEdge]:
    """Compute the sparse overlap graph between cells of different sources.

    Args:
        indexes: Cell indexes of all sources (source names must be unique)
        workers: Threads used for candidate generation

    Returns:
        One OverlapEdge per pair of cells with a non-empty intersection, in
        a deterministic order
    """
    by_source = {index.source: index for index in indexes}
    candidates = find_candidate_pairs(build_point_index(indexes), workers=workers)

    edges = []
    for source_a, cell_a, source_b, cell_b in candidates.itertuples(index=False, name=None):
        intersection, union = overlap_counts(
            by_source[source_a].cell_points(cell_a),
            by_source[source_b].cell_points(cell_b),
        )
        if intersection == 0:
            continue
        edges.append(
            OverlapEdge(
                cell_a=(source_a, cell_a),
                cell_b=(source_b, cell_b),
                intersection=intersection,
                union=union,
            )
        )

    return edges
