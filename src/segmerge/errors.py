"""Exception types raised while merging segmentation outputs."""


class SegmergeError(Exception):
    """Base class for all merge failures."""


class MalformedInputError(SegmergeError, ValueError):
    """An input table cannot be used as a segmentation.

    Raised for missing required columns, unparsable identifiers and points
    assigned to more than one cell within the same source file.
    """


class ConfigurationError(SegmergeError, ValueError):
    """Invalid merge parameters (threshold, column names, worker count)."""
