"""Grouping overlapping cells into merged cells with stable global ids."""

from collections import defaultdict
from dataclasses import dataclass, field
from typing import Iterable, Sequence

import numpy as np

from .index import CellIndex
from .overlap import CellKey, OverlapEdge


class DisjointSet:
    """
    Union-Find (Disjoint Set) over the integers 0..n-1.
    Parents and ranks live in flat arrays indexed by element.
    """

    def __init__(self, n: int):
        self.parent = np.arange(n, dtype=np.int64)
        self.rank = np.zeros(n, dtype=np.int32)

    def __len__(self) -> int:
        return len(self.parent)

    def find(self, x: int) -> int:
        """Find the root of the set containing x with path halving."""
        parent = self.parent
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return int(x)

    def union(self, x: int, y: int) -> bool:
        """
        Merge the sets containing x and y (union by rank).
        Returns False if they were already in the same set.
        """
        root_x, root_y = self.find(x), self.find(y)
        if root_x == root_y:
            return False

        if self.rank[root_x] < self.rank[root_y]:
            root_x, root_y = root_y, root_x
        self.parent[root_y] = root_x
        if self.rank[root_x] == self.rank[root_y]:
            self.rank[root_x] += 1
        return True

    def components(self) -> dict[int, list[int]]:
        """Get all connected components as {root: [members]}, members ascending."""
        components = defaultdict(list)
        for x in range(len(self.parent)):
            components[self.find(x)].append(x)
        return dict(components)


def label_sort_key(label: str) -> tuple:
    """Order labels numerically when they are integers, else as text."""
    try:
        return (0, int(label), label)
    except ValueError:
        return (1, 0, label)


def cell_sort_key(cell: CellKey) -> tuple:
    """Total order on (source, local_label) used for canonical ids."""
    source, label = cell
    return (source, label_sort_key(label))


@dataclass
class MergeGroups:
    """Partition of all cells into merged cells.

    Attributes:
        cell_ids: (source, local_label) -> global id (1..n_groups)
        members: Global id -> member cells in canonical order; the first
            member is the group's canonical cell
        n_unions: Number of edges that joined two previously separate groups
        source_cell_ids: Source -> local label -> global id
    """

    cell_ids: dict[CellKey, int]
    members: dict[int, list[CellKey]]
    n_unions: int = 0
    source_cell_ids: dict[str, dict[str, int]] = field(default_factory=dict)

    @property
    def n_groups(self) -> int:
        return len(self.members)

    def canonical_cell(self, group_id: int) -> CellKey:
        return self.members[group_id][0]

    def source_ids(self, source: str) -> dict[str, int]:
        """Local label -> global id for the cells of one source."""
        return self.source_cell_ids.get(source, {})


def unify_cells(
    indexes: Sequence[CellIndex],
    edges: Iterable[OverlapEdge],
    threshold: float,
) -> MergeGroups:
    """Merge cells connected by edges with IOU strictly above threshold.

    Every cell starts as its own group; qualifying edges union their
    endpoints, so merging is transitive. Global ids are assigned after all
    unions from group content alone: groups are numbered by their smallest
    member under cell_sort_key, which makes the result independent of
    union order and of the order the sources were supplied in.

    Args:
        indexes: Cell indexes of all sources
        edges: Overlap graph from compute_overlaps
        threshold: IOU threshold (merge if iou > threshold)

    Returns:
        MergeGroups covering every cell of every source
    """
    cells = sorted(
        ((index.source, label) for index in indexes for label in index.cells),
        key=cell_sort_key,
    )
    position = {cell: i for i, cell in enumerate(cells)}

    dsu = DisjointSet(len(cells))
    n_unions = 0
    for edge in edges:
        if edge.iou > threshold:
            if dsu.union(position[edge.cell_a], position[edge.cell_b]):
                n_unions += 1

    # members are ascending positions, so member lists are in canonical order
    groups = sorted(dsu.components().values(), key=lambda m: m[0])

    cell_ids = {}
    members = {}
    source_cell_ids = defaultdict(dict)
    for group_id, group in enumerate(groups, start=1):
        members[group_id] = [cells[i] for i in group]
        for i in group:
            source, label = cells[i]
            cell_ids[cells[i]] = group_id
            source_cell_ids[source][label] = group_id

    return MergeGroups(
        cell_ids=cell_ids,
        members=members,
        n_unions=n_unions,
        source_cell_ids=dict(source_cell_ids),
    )
