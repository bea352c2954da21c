"""Merge parameters and their YAML persistence."""

import math
import warnings
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Optional, Union

import yaml

from .errors import ConfigurationError

# Baysor columns carried into the merged table unless told otherwise
DEFAULT_ADDITIONAL_COLUMNS = ("x", "y", "z", "qv", "overlaps_nucleus", "gene")

DEFAULT_THRESHOLD = 0.2
DEFAULT_OUTFILE = "out.csv"
DEFAULT_POINT_COLUMN = "transcript_id"
DEFAULT_CELL_COLUMN = "cell"
DEFAULT_UNASSIGNED_LABELS = ("0",)


@dataclass
class MergeConfig:
    """Parameters for a single merge run.

    Attributes:
        threshold: Cells from different files are merged when their IOU is
            strictly greater than this value
        additional_columns: Passthrough columns copied into the output
        outfile: Path of the merged table
        point_column: Column holding the point (transcript) identifier
        cell_column: Column holding the local cell label
        unassigned_labels: Cell labels meaning "no cell" (empty values
            always mean unassigned)
        workers: Threads used for loading and candidate generation
        summary_file: Optional YAML file receiving the run summary
        verbose: Print progress while running
    """

    threshold: float = DEFAULT_THRESHOLD
    additional_columns: list[str] = field(
        default_factory=lambda: list(DEFAULT_ADDITIONAL_COLUMNS)
    )
    outfile: str = DEFAULT_OUTFILE
    point_column: str = DEFAULT_POINT_COLUMN
    cell_column: str = DEFAULT_CELL_COLUMN
    unassigned_labels: list[str] = field(
        default_factory=lambda: list(DEFAULT_UNASSIGNED_LABELS)
    )
    workers: int = 1
    summary_file: Optional[str] = None
    verbose: bool = True

    def validate(self) -> "MergeConfig":
        """Normalize values in place and reject invalid settings.

        Returns:
            The same config, for chaining

        Raises:
            ConfigurationError: If any parameter is invalid
        """
        self.threshold = parse_threshold(self.threshold)
        if not 0.0 <= self.threshold <= 1.0:
            warnings.warn(
                f"Threshold {self.threshold} is outside [0, 1]; "
                "IOU values always lie in [0, 1]"
            )

        self.point_column = _check_column_name(self.point_column, "point_column")
        self.cell_column = _check_column_name(self.cell_column, "cell_column")
        if self.point_column == self.cell_column:
            raise ConfigurationError(
                f"point_column and cell_column must differ, both are '{self.point_column}'"
            )

        if not isinstance(self.additional_columns, (list, tuple)):
            raise ConfigurationError(
                f"additional_columns must be a list of column names, got {self.additional_columns!r}"
            )
        columns = [
            _check_column_name(c, "additional_columns") for c in self.additional_columns
        ]
        duplicates = sorted({c for c in columns if columns.count(c) > 1})
        if duplicates:
            raise ConfigurationError(f"Duplicate additional columns: {duplicates}")
        self.additional_columns = columns

        if isinstance(self.unassigned_labels, str):
            self.unassigned_labels = [self.unassigned_labels]
        if not isinstance(self.unassigned_labels, (list, tuple)):
            raise ConfigurationError(
                f"unassigned_labels must be a list of labels, got {self.unassigned_labels!r}"
            )
        self.unassigned_labels = [str(label).strip() for label in self.unassigned_labels]

        if isinstance(self.workers, bool) or not isinstance(self.workers, int):
            raise ConfigurationError(f"workers must be an integer, got {self.workers!r}")
        if self.workers < 1:
            raise ConfigurationError(f"workers must be at least 1, got {self.workers}")

        if not isinstance(self.outfile, str) or not self.outfile:
            raise ConfigurationError(f"outfile must be a non-empty path, got {self.outfile!r}")
        if self.summary_file is not None and (
            not isinstance(self.summary_file, str) or not self.summary_file
        ):
            raise ConfigurationError(
                f"summary_file must be a non-empty path, got {self.summary_file!r}"
            )

        if not isinstance(self.verbose, bool):
            raise ConfigurationError(f"verbose must be true or false, got {self.verbose!r}")

        return self

    def to_dict(self) -> dict:
        """Convert to dictionary for YAML serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "MergeConfig":
        """Create a validated MergeConfig from a dictionary.

        Raises:
            ConfigurationError: If the dict has unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(d) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {unknown}")
        return cls(**d).validate()


def parse_threshold(value) -> float:
    """Convert a threshold given as number or string to float.

    Raises:
        ConfigurationError: If the value is not a finite number
    """
    if isinstance(value, bool):
        raise ConfigurationError(f"Threshold must be numeric, got {value!r}")
    try:
        threshold = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"Threshold must be numeric, got {value!r}") from None
    if math.isnan(threshold):
        raise ConfigurationError("Threshold must not be NaN")
    return threshold


def _check_column_name(name, setting: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ConfigurationError(f"Invalid column name in {setting}: {name!r}")
    return name.strip()


def save_config(
    config: MergeConfig,
    output_path: Union[str, Path],
) -> Path:
    """Save merge configuration to YAML file.

    Args:
        config: Configuration to save
        output_path: Path for output YAML file

    Returns:
        Path to saved config file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, "w") as f:
        yaml.dump(config.to_dict(), f, default_flow_style=False, sort_keys=False)

    return output_path


def read_config_file(config_path: Union[str, Path]) -> dict:
    """Read the raw settings mapping from a YAML config file.

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If the file is not a YAML mapping
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Invalid config format in {config_path}")

    return data


def load_config(config_path: Union[str, Path]) -> MergeConfig:
    """Load merge configuration from YAML file.

    Keys missing from the file keep their defaults.

    Args:
        config_path: Path to YAML config file

    Returns:
        Validated MergeConfig

    Raises:
        FileNotFoundError: If config file doesn't exist
        ConfigurationError: If config is invalid
    """
    return MergeConfig.from_dict(read_config_file(config_path))
