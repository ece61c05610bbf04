# partition_advisor/errors.py
from typing import Optional


class PartitionAdvisorError(Exception):
    """Base class for all analysis errors."""


class CatalogAccessError(PartitionAdvisorError):
    """Table or column metadata is missing or not readable. Fatal for the task."""

    def __init__(self, message: str, table: Optional[str] = None, column: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.column = column


class SamplingError(PartitionAdvisorError):
    """A probe against live rows failed. Only the affected column is dropped."""

    def __init__(self, message: str, column: Optional[str] = None, error_class: Optional[str] = None):
        super().__init__(message)
        self.column = column
        self.error_class = error_class or type(self).__name__


class ProbeTimeoutError(SamplingError):
    pass


class AnalysisError(PartitionAdvisorError):
    """Unexpected failure while orchestrating an analysis."""


class AnalysisCancelled(AnalysisError):
    pass


class TaskClaimError(AnalysisError):
    """The task does not exist or is already being analyzed."""
