"""Exceptions raised by the lipidomics workflow."""


class LipidomicsError(ValueError):
    """Base class for workflow errors."""


class DataValidationError(LipidomicsError):
    """Input table is malformed: missing columns, unknown group codes, bad values."""


class StatisticalTestError(LipidomicsError):
    """A statistic is undefined for an analyte (too few values, non-positive input, ...)."""

    def __init__(self, message: str, analyte: str = None):
        super().__init__(message)
        self.analyte = analyte


class ClusteringError(LipidomicsError):
    """Clustering cannot be performed on the given matrix."""
