# partition_advisor/schemas.py
import dataclasses
import datetime
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

from partition_advisor.catalog import TableDescriptor

UNIX_EPOCH = datetime.datetime(1970, 1, 1)


class Archetype(str, Enum):
    VERSIONED_RECORD = "versioned-record"
    EVENT_LOG = "event-log"
    STAGING_AREA = "staging-area"
    HISTORICAL_SNAPSHOT = "historical-snapshot"
    NONE = "none"


class PartitionScheme(str, Enum):
    RANGE = "RANGE"
    HASH = "HASH"
    LIST = "LIST"
    NONE = "NONE"


class Granularity(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    NONE = "NONE"


class ConfidenceSource(str, Enum):
    STEREOTYPE = "stereotype"
    GENERAL = "general"
    USER = "user"


class MigrationMethod(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    CTAS = "CTAS"
    EXCHANGE = "EXCHANGE"

    @property
    def downtime_multiplier(self) -> float:
        return {
            MigrationMethod.ONLINE: 1.0,
            MigrationMethod.OFFLINE: 0.5,
            MigrationMethod.CTAS: 0.5,
            MigrationMethod.EXCHANGE: 0.1,
        }[self]


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    ANALYZING = "ANALYZING"
    ANALYZED = "ANALYZED"
    FAILED = "FAILED"


class Readiness(str, Enum):
    READY = "READY"
    BLOCKED = "BLOCKED"


class Severity(str, Enum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


@dataclass(frozen=True)
class ColumnProfile:
    """Observed shape of one temporal column.

    `range_days` is computed from the year-filtered bounds when the column carries a
    data-quality flag and filtered bounds exist, otherwise from the raw bounds.
    """
    column_name: str
    data_type: str
    ordinal: int
    min_value: Optional[datetime.datetime]
    max_value: Optional[datetime.datetime]
    range_days: int
    total_count: int
    non_null_count: int
    null_count: int
    null_percentage: float
    has_time_component: bool = False
    distinct_days: Optional[int] = None
    usage_score: int = 0
    has_quality_issue: bool = False
    filtered_min: Optional[datetime.datetime] = None
    filtered_max: Optional[datetime.datetime] = None

    @property
    def effective_min(self) -> Optional[datetime.datetime]:
        return self.filtered_min if self.has_quality_issue and self.filtered_min else self.min_value

    @property
    def effective_max(self) -> Optional[datetime.datetime]:
        return self.filtered_max if self.has_quality_issue and self.filtered_max else self.max_value

    @property
    def range_years(self) -> float:
        return round(self.range_days / 365.25, 1)


@dataclass(frozen=True)
class StereotypeMatch:
    archetype: Archetype
    column_name: Optional[str]
    rationale: str
    granularity: Granularity
    scheme: PartitionScheme = PartitionScheme.RANGE


NO_STEREOTYPE = StereotypeMatch(Archetype.NONE, None, "No stereotype detected", Granularity.NONE, PartitionScheme.NONE)


@dataclass(frozen=True)
class NonStandardDateCandidate:
    """A numeric or textual column carrying dates in an encoded form.

    `expression` is the SQL conversion of the raw column into a date; `convert` is the
    same conversion in Python, for validating sampled values.
    """
    column_name: str
    data_type: str
    date_format: str
    expression: str
    is_numeric: bool
    strptime: Optional[str] = None
    sample_min: Optional[Any] = None
    sample_max: Optional[Any] = None
    sample_count: int = 0

    def convert(self, value: Any) -> Optional[datetime.datetime]:
        if value is None:
            return None
        if self.date_format == "UNIX_TIMESTAMP":
            return UNIX_EPOCH + datetime.timedelta(seconds=float(value))
        text = str(int(value)) if self.is_numeric else str(value).strip()
        if self.date_format == "YYMMDD":
            text = text.zfill(6)
        return datetime.datetime.strptime(text, self.strptime)


@dataclass(frozen=True)
class Recommendation:
    scheme: PartitionScheme
    partition_key: Optional[str]
    granularity: Granularity
    rationale: str
    source: ConfidenceSource
    key_column: Optional[str] = None
    partition_count: Optional[int] = None
    requires_conversion: bool = False

    @property
    def is_partitioned(self) -> bool:
        return self.scheme != PartitionScheme.NONE


@dataclass(frozen=True)
class DataQualityWarning:
    severity: Severity
    description: str
    remedy: Optional[str] = None
    column_name: Optional[str] = None
    critical: bool = False


@dataclass(frozen=True)
class BlockingIssue:
    severity: Severity
    description: str
    remedy: str

    @property
    def is_blocking(self) -> bool:
        return self.severity == Severity.ERROR


@dataclass(frozen=True)
class ColumnDependencies:
    column_name: str
    indexes: Tuple[str, ...] = ()
    constraints: Tuple[str, ...] = ()
    foreign_keys: Tuple[str, ...] = ()
    views: Tuple[str, ...] = ()
    routines: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DependencySummary:
    index_count: int
    constraint_count: int
    trigger_count: int
    referencing_table_count: int
    foreign_key_count: int = 0
    columns: Tuple[ColumnDependencies, ...] = ()


@dataclass(frozen=True)
class AnalysisResult:
    table: TableDescriptor
    recommendation: Recommendation
    complexity_score: int
    downtime_minutes: float
    migration_method: MigrationMethod
    readiness: Readiness
    parallel_degree: int = 1
    stereotype: StereotypeMatch = NO_STEREOTYPE
    column_profiles: Tuple[ColumnProfile, ...] = ()
    selected_column: Optional[str] = None
    nonstandard_date: Optional[NonStandardDateCandidate] = None
    dependencies: Optional[DependencySummary] = None
    blocking_issues: Tuple[BlockingIssue, ...] = ()
    warnings: Tuple[DataQualityWarning, ...] = ()
    estimated_partitions: Optional[int] = None
    avg_partition_size_mb: Optional[float] = None
    has_lob_columns: bool = False
    # (column, originating error class) pairs
    excluded_columns: Tuple[Tuple[str, str], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data = safe_json_serialize(self)
        for profile in data["column_profiles"]:
            profile["is_selected"] = profile["column_name"] == self.selected_column
        data["excluded_columns"] = dict(self.excluded_columns)
        return data


def convert_numpy_types(obj):
    """Converts numpy/pandas/temporal/enum values into plain JSON-compatible types"""
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, (pd.Timestamp, datetime.datetime, datetime.date)):
        return obj.isoformat()
    if obj is not None and not isinstance(obj, (str, bool, int, float)) and pd.isna(obj):
        return None
    return obj


def safe_json_serialize(data: Any) -> Any:
    """Recursively serializes dataclasses, dicts and sequences, converting leaf values"""
    if dataclasses.is_dataclass(data) and not isinstance(data, type):
        return {f.name: safe_json_serialize(getattr(data, f.name)) for f in dataclasses.fields(data)}
    if isinstance(data, dict):
        return {k: safe_json_serialize(v) for k, v in data.items()}
    if isinstance(data, (list, tuple)):
        return [safe_json_serialize(item) for item in data]
    return convert_numpy_types(data)
