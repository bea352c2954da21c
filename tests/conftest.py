from typing import Optional

import pandas as pd
import pytest

from segmerge.index import CellIndex
from segmerge.io import SegmentationTable


def _table(
    source: str,
    assignments: list[tuple[str, Optional[str]]],
    extras: Optional[dict[str, list]] = None,
) -> SegmentationTable:
    frame = pd.DataFrame(
        {
            "transcript_id": pd.Series([p for p, _ in assignments], dtype=object),
            "cell": pd.Series([c for _, c in assignments], dtype=object),
        }
    )
    extras = extras or {}
    for column, values in extras.items():
        frame[column] = values
    return SegmentationTable(
        source=source,
        frame=frame,
        additional_columns=tuple(extras),
    )


def _cell_index(source: str, cells: dict[str, list[str]]) -> CellIndex:
    point_labels = {p: label for label, points in cells.items() for p in points}
    return CellIndex(
        source=source,
        cells={label: tuple(points) for label, points in cells.items()},
        point_labels=point_labels,
    )


@pytest.fixture
def make_table():
    """Build an in-memory SegmentationTable from (point, label) pairs."""
    return _table


@pytest.fixture
def make_index():
    """Build a CellIndex directly from label -> points."""
    return _cell_index


@pytest.fixture
def write_csv(tmp_path):
    """Write a DataFrame-like dict to a CSV file under tmp_path."""

    def write(name: str, data: dict, sep: str = ",") -> str:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        pd.DataFrame(data).to_csv(path, sep=sep, index=False)
        return str(path)

    return write
