# partition_advisor/config.py
import os
from typing import Optional

from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel, Field

load_dotenv(find_dotenv())


class AnalyzerConfig(BaseModel):
    """Thresholds used by the analysis engine. Passed in explicitly, never read from globals."""

    # Data quality
    min_sane_year: int = Field(1900, description="Years before this mark a temporal column as implausible")
    max_sane_year: int = Field(2100, description="Years after this mark a temporal column as implausible")
    null_warning_pct: float = Field(0.0, description="Selected key NULL percentage above which a warning is raised")
    null_critical_pct: float = Field(25.0, description="Selected key NULL percentage treated as critical")

    # Candidate selection
    null_pct_margin: float = Field(10.0, description="NULL percentage difference (points) that decides between candidates")
    usage_similarity_ratio: float = Field(0.8, description="Usage scores within this ratio are considered similar")

    # Usage scoring weights
    usage_index_weight: int = Field(15, description="Weight of an index containing the column")
    usage_where_weight: int = Field(3, description="Weight of a filtering reference in a view or routine")
    usage_join_weight: int = Field(2, description="Weight of a join reference in a view or routine")

    # Strategy recommendation
    multi_year_range_days: int = Field(1095, description="Range above which the rationale speaks in years")
    monthly_range_days: int = Field(365, description="Range above which monthly interval partitioning is used")
    static_range_days: int = Field(90, description="Range above which static range partitioning is used")
    large_table_rows: int = Field(10_000_000, description="Row count above which HASH partitioning is considered")
    hash_partition_count: int = Field(16, description="Number of HASH partitions")
    list_partition_cap: int = Field(100, description="Maximum number of LIST partitions in estimates")

    # Probing
    numeric_sample_rows: int = Field(1000, description="Rows sampled when testing numeric date encodings")
    format_sample_rows: int = Field(100, description="Rows sampled when testing textual date formats")
    time_sample_rows: int = Field(1000, description="Rows sampled when looking for a time-of-day component")
    probe_timeout_seconds: Optional[float] = Field(60.0, description="Timeout for one probe; None disables it")

    # Parallelism hint for the sampler
    parallel_small_rows: int = Field(1_000_000, description="Tables below this row count get no parallel fan-out")
    parallel_small_mb: float = Field(1024.0, description="Tables below this size (MB) get no parallel fan-out")
    parallel_medium_rows: int = Field(10_000_000, description="Upper row bound for medium fan-out")
    parallel_large_rows: int = Field(100_000_000, description="Upper row bound for large fan-out")
    max_parallel_degree: int = Field(16, description="Cap for the parallelism hint")

    # Task store
    stale_claim_minutes: int = Field(20, description="An ANALYZING claim older than this may be taken over")


class Settings(BaseModel):
    database_url: str = Field("sqlite:///./partition_advisor.db", description="Task store connection URL")
    target_url: Optional[str] = Field(None, description="Connection URL of the warehouse being analyzed")
    probe_timeout_seconds: float = Field(60.0, description="Default probe timeout")
    log_file: str = Field("logs/app.log", description="Rotating application log file")
    host: str = Field("127.0.0.1", description="Address the API server binds to")
    port: int = Field(8000, description="Port the API server listens on")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            database_url=os.getenv("PARTITION_ADVISOR_DB_URL", "sqlite:///./partition_advisor.db"),
            target_url=os.getenv("PARTITION_ADVISOR_TARGET_URL") or None,
            probe_timeout_seconds=float(os.getenv("PARTITION_ADVISOR_PROBE_TIMEOUT", "60")),
            log_file=os.getenv("PARTITION_ADVISOR_LOG_FILE", "logs/app.log"),
            host=os.getenv("PARTITION_ADVISOR_HOST", "127.0.0.1"),
            port=int(os.getenv("PARTITION_ADVISOR_PORT", "8000")),
        )

    def analyzer_config(self) -> AnalyzerConfig:
        return AnalyzerConfig(probe_timeout_seconds=self.probe_timeout_seconds)
