"""Reading segmentation tables and writing the merged result."""

from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Union

import pandas as pd

from .config import (
    DEFAULT_ADDITIONAL_COLUMNS,
    DEFAULT_CELL_COLUMN,
    DEFAULT_POINT_COLUMN,
    DEFAULT_UNASSIGNED_LABELS,
)
from .errors import MalformedInputError

TAB_SUFFIXES = {".tsv", ".txt", ".tab"}


@dataclass
class SegmentationTable:
    """Points of one source file with their local cell labels.

    Attributes:
        source: Name of the source file; cell labels are only unique within it
        frame: Point column, cell column and passthrough columns. Unassigned
            points carry a missing value in the cell column.
        point_column: Name of the point identifier column
        cell_column: Name of the cell label column
        additional_columns: Passthrough columns present in ``frame``
    """

    source: str
    frame: pd.DataFrame
    point_column: str = DEFAULT_POINT_COLUMN
    cell_column: str = DEFAULT_CELL_COLUMN
    additional_columns: tuple[str, ...] = ()

    def __len__(self) -> int:
        return len(self.frame)

    def records(self) -> Iterator[tuple[str, str, Optional[str], dict]]:
        """Yield ``(source, point_id, local_label, extra_fields)`` per row.

        ``local_label`` is None for unassigned points.
        """
        frame = self.frame
        extras = list(self.additional_columns)
        extra_values = [frame[c].tolist() for c in extras]
        points = frame[self.point_column].tolist()
        labels = frame[self.cell_column].tolist()
        for i, (point_id, label) in enumerate(zip(points, labels)):
            yield (
                self.source,
                point_id,
                None if pd.isna(label) else label,
                {c: values[i] for c, values in zip(extras, extra_values)},
            )


def _separator_for(path: Path) -> str:
    """Pick the field separator from the file suffix (ignoring .gz)."""
    suffixes = [s.lower() for s in path.suffixes if s.lower() != ".gz"]
    if suffixes and suffixes[-1] in TAB_SUFFIXES:
        return "\t"
    return ","


def load_segmentation(
    path: Union[str, Path],
    point_column: str = DEFAULT_POINT_COLUMN,
    cell_column: str = DEFAULT_CELL_COLUMN,
    additional_columns: Optional[list[str]] = None,
    unassigned_labels: Optional[list[str]] = None,
) -> SegmentationTable:
    """Load one segmentation output (e.g. Baysor's per-FOV table).

    Args:
        path: CSV or TSV file, optionally gzipped
        point_column: Column holding the point identifier
        cell_column: Column holding the local cell label
        additional_columns: Passthrough columns to keep. If None, uses
            DEFAULT_ADDITIONAL_COLUMNS.
        unassigned_labels: Cell labels meaning "no cell". If None, uses
            DEFAULT_UNASSIGNED_LABELS. Empty values are always unassigned.

    Returns:
        SegmentationTable whose source is ``str(path)``

    Raises:
        FileNotFoundError: If the file doesn't exist
        MalformedInputError: If the file can't be parsed, lacks required or
            requested columns, or has rows without a point identifier
    """
    path = Path(path)
    source = str(path)

    if additional_columns is None:
        additional_columns = list(DEFAULT_ADDITIONAL_COLUMNS)
    if unassigned_labels is None:
        unassigned_labels = list(DEFAULT_UNASSIGNED_LABELS)

    if not path.exists():
        raise FileNotFoundError(f"Segmentation file not found: {path}")
    if not path.is_file():
        raise MalformedInputError(f"Path is not a file: {path}")

    sep = _separator_for(path)
    extras = [
        c for c in dict.fromkeys(additional_columns) if c not in (point_column, cell_column)
    ]
    usecols = [point_column, cell_column] + extras

    try:
        header = pd.read_csv(path, sep=sep, nrows=0).columns
    except pd.errors.EmptyDataError:
        raise MalformedInputError(f"{path}: file is empty") from None
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        raise MalformedInputError(f"{path}: cannot parse header: {e}") from e

    missing_required = [c for c in (point_column, cell_column) if c not in header]
    if missing_required:
        raise MalformedInputError(
            f"{path}: missing required column(s) {missing_required}"
        )
    missing_extra = [c for c in extras if c not in header]
    if missing_extra:
        raise MalformedInputError(
            f"{path}: missing requested column(s) {missing_extra}"
        )

    try:
        frame = pd.read_csv(
            path,
            sep=sep,
            usecols=usecols,
            dtype={point_column: str, cell_column: str},
            # ids such as "NA" or "nan" are data; only empty fields are missing
            keep_default_na=False,
            na_values={c: [""] for c in usecols},
        )
    except (pd.errors.ParserError, UnicodeDecodeError, ValueError) as e:
        raise MalformedInputError(f"{path}: cannot parse table: {e}") from e

    frame = frame[usecols].copy()
    frame[point_column] = frame[point_column].str.strip()
    frame[cell_column] = frame[cell_column].str.strip()

    bad_points = frame[point_column].isna() | (frame[point_column] == "")
    if bad_points.any():
        row = int(bad_points.to_numpy().nonzero()[0][0]) + 1
        raise MalformedInputError(
            f"{path}, row {row}: missing value in '{point_column}'"
        )

    unassigned = frame[cell_column].isin(unassigned_labels) | (frame[cell_column] == "")
    frame[cell_column] = frame[cell_column].mask(unassigned)

    return SegmentationTable(
        source=source,
        frame=frame.reset_index(drop=True),
        point_column=point_column,
        cell_column=cell_column,
        additional_columns=tuple(extras),
    )


def write_merged_table(
    frame: pd.DataFrame,
    output_path: Union[str, Path],
) -> Path:
    """Save the merged point table.

    Args:
        frame: Merged table from assemble_output
        output_path: Output file path; ``.tsv`` writes tab-separated

    Returns:
        Path to saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    frame.to_csv(output_path, sep=_separator_for(output_path), index=False)

    return output_path
