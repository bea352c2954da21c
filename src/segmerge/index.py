"""Per-source cell index: which points belong to which local cell."""

from dataclasses import dataclass, field
from typing import Iterable, Optional

import pandas as pd

from .errors import MalformedInputError
from .io import SegmentationTable


@dataclass
class CellIndex:
    """Cells of one source file, keyed by local label.

    Attributes:
        source: Source file the labels belong to
        cells: Local label -> point ids in order of first appearance.
            Unassigned points are not part of any cell.
        point_labels: Point id -> local label (None if unassigned)
    """

    source: str
    cells: dict[str, tuple[str, ...]]
    point_labels: dict[str, Optional[str]]
    _point_sets: dict[str, frozenset[str]] = field(
        default_factory=dict, init=False, repr=False, compare=False
    )

    @property
    def n_cells(self) -> int:
        return len(self.cells)

    @property
    def n_points(self) -> int:
        return len(self.point_labels)

    @property
    def n_unassigned(self) -> int:
        return sum(1 for label in self.point_labels.values() if label is None)

    def cell_points(self, label: str) -> frozenset[str]:
        """Point ids of a cell as a set (cached)."""
        points = self._point_sets.get(label)
        if points is None:
            points = frozenset(self.cells[label])
            self._point_sets[label] = points
        return points

    def cell_sizes(self) -> dict[str, int]:
        """Number of points per local label."""
        return {label: len(points) for label, points in self.cells.items()}

    def assigned_points(self) -> pd.DataFrame:
        """Long table of (point_id, cell) for all assigned points."""
        labels = []
        points = []
        for label, cell_points in self.cells.items():
            labels.extend([label] * len(cell_points))
            points.extend(cell_points)
        return pd.DataFrame({"point_id": points, "cell": labels}, dtype=object)


def build_cell_index(
    source: str,
    records: Iterable[tuple],
) -> CellIndex:
    """Build the cell index of one source from loader records.

    Exact duplicate rows are ignored. A point listed again with a different
    label (including assigned vs unassigned) is an ambiguous assignment.

    Args:
        source: Source file name
        records: ``(source, point_id, local_label, extra_fields)`` tuples,
            with ``local_label`` None for unassigned points

    Returns:
        CellIndex for the source

    Raises:
        MalformedInputError: If a record belongs to another source or a point
            is assigned to more than one label
    """
    point_labels: dict[str, Optional[str]] = {}
    cells: dict[str, list[str]] = {}

    for row, (record_source, point_id, label, _extra) in enumerate(records, start=1):
        if record_source != source:
            raise MalformedInputError(
                f"Record for '{record_source}' passed to index of '{source}'"
            )

        if point_id in point_labels:
            previous = point_labels[point_id]
            if previous != label:
                raise MalformedInputError(
                    f"{source}, row {row}: point '{point_id}' assigned to "
                    f"{_describe(label)} but earlier to {_describe(previous)}"
                )
            continue

        point_labels[point_id] = label
        if label is not None:
            cells.setdefault(label, []).append(point_id)

    return CellIndex(
        source=source,
        cells={label: tuple(points) for label, points in cells.items()},
        point_labels=point_labels,
    )


def index_table(table: SegmentationTable) -> CellIndex:
    """Build the cell index of a loaded segmentation table."""
    return build_cell_index(table.source, table.records())


def _describe(label: Optional[str]) -> str:
    return "no cell" if label is None else f"cell '{label}'"
