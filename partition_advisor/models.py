# partition_advisor/models.py
import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from partition_advisor.database import Base
from partition_advisor.schemas import Granularity, MigrationMethod, PartitionScheme


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# Database Models

class MigrationTask(Base):
    __tablename__ = "migration_tasks"

    id = Column(String, primary_key=True, index=True)
    task_name = Column(String, nullable=False)
    project_name = Column(String, nullable=True, index=True)
    source_owner = Column(String, nullable=True)
    source_table = Column(String, nullable=False)

    # Optional strategy chosen by the user; overrides the recommendation
    partition_type = Column(String, nullable=True)
    partition_key = Column(String, nullable=True)
    interval_granularity = Column(String, nullable=True)
    migration_method = Column(String, nullable=True)

    status = Column(String, index=True, default="PENDING")
    readiness = Column(String, nullable=True)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    # Set when a run claims the task; used to detect stale claims
    analysis_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    source_rows = Column(Integer, nullable=True)
    source_size_mb = Column(Float, nullable=True)

    analysis = relationship("MigrationAnalysis", back_populates="task", uselist=False,
                            cascade="all, delete-orphan")
    logs = relationship("LogEntry", back_populates="task", cascade="all, delete-orphan")


class MigrationAnalysis(Base):
    """Latest analysis of a task. Re-analysis replaces the row."""
    __tablename__ = "migration_analysis"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(String, ForeignKey("migration_tasks.id"), unique=True, nullable=False)

    recommended_strategy = Column(String, nullable=True)
    partition_scheme = Column(String)
    partition_key = Column(String, nullable=True)
    granularity = Column(String, nullable=True)
    recommendation_reason = Column(Text, nullable=True)
    recommendation_source = Column(String)
    selected_column = Column(String, nullable=True)
    requires_conversion = Column(Boolean, default=False)

    complexity_score = Column(Integer)
    estimated_downtime_minutes = Column(Float)
    estimated_partitions = Column(Integer, nullable=True)
    avg_partition_size_mb = Column(Float, nullable=True)
    migration_method = Column(String)
    readiness = Column(String)

    # Full serialized AnalysisResult
    result = Column(JSON)
    analysis_date = Column(DateTime, default=utcnow)

    task = relationship("MigrationTask", back_populates="analysis")


class LogEntry(Base):
    __tablename__ = "log_entries"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(String, ForeignKey("migration_tasks.id"))
    timestamp = Column(DateTime, server_default=func.now())
    level = Column(String)
    message = Column(Text)
    task = relationship("MigrationTask", back_populates="logs")


# Request Models

class NewTaskRequest(BaseModel):
    task_name: str = Field(..., description="Human readable task name")
    project_name: Optional[str] = Field(None, description="Optional project grouping for batch analysis")
    source_owner: Optional[str] = Field(None, description="Schema/owner of the table to analyze")
    source_table: str = Field(..., description="Name of the table to analyze")
    partition_type: Optional[PartitionScheme] = Field(None, description="User-specified partition scheme; skips the recommendation")
    partition_key: Optional[str] = Field(None, description="User-specified partition key")
    interval: Optional[Granularity] = Field(None, description="User-specified interval for RANGE partitioning")
    migration_method: Optional[MigrationMethod] = Field(None, description="Force a migration method instead of the recommended one")


class AnalyzePendingRequest(BaseModel):
    project_name: Optional[str] = Field(None, description="Only analyze tasks of this project")


# Response Models

class NewTaskResponse(BaseModel):
    taskid: str


class TaskSummary(BaseModel):
    taskid: str
    task_name: str
    source_table: str
    status: str
    readiness: Optional[str] = None
    created_at: datetime.datetime


class TaskInfo(BaseModel):
    """All task fields except logs and the analysis payload"""
    id: str
    task_name: str
    project_name: Optional[str] = None
    source_owner: Optional[str] = None
    source_table: str
    partition_type: Optional[str] = None
    partition_key: Optional[str] = None
    interval_granularity: Optional[str] = None
    migration_method: Optional[str] = None
    status: str
    readiness: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime.datetime
    analysis_date: Optional[datetime.datetime] = None
    completed_at: Optional[datetime.datetime] = None
    source_rows: Optional[int] = None
    source_size_mb: Optional[float] = None

    model_config = {"from_attributes": True}


class AnalysisScheduledResponse(BaseModel):
    scheduled: List[str]


class AnalysisResponse(BaseModel):
    task_id: str
    recommended_strategy: Optional[str] = None
    recommendation_reason: Optional[str] = None
    complexity_score: int
    estimated_downtime_minutes: float
    estimated_partitions: Optional[int] = None
    migration_method: str
    readiness: str
    analysis_date: Optional[datetime.datetime] = None
    result: Dict[str, Any]


class LogEntryResponse(BaseModel):
    timestamp: datetime.datetime
    level: str
    message: str
