# partition_advisor/crud.py
import datetime
from typing import List, Optional

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from partition_advisor import models
from partition_advisor.errors import TaskClaimError
from partition_advisor.recommender import describe
from partition_advisor.schemas import AnalysisResult, Readiness, TaskStatus


def _as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands back naive datetimes; they were written as UTC
    return value.replace(tzinfo=datetime.timezone.utc) if value.tzinfo is None else value


def get_task(db: Session, task_id: str):
    return db.query(models.MigrationTask).filter(models.MigrationTask.id == task_id).first()


def get_tasks(db: Session, skip: int = 0, limit: int = 50, status: str = None):
    query = db.query(models.MigrationTask)
    if status:
        query = query.filter(models.MigrationTask.status == status)
    return query.order_by(models.MigrationTask.created_at).offset(skip).limit(limit).all()


def get_tasks_with_newest_first(db: Session, skip: int = 0, limit: int = 50, status: str = None):
    query = db.query(models.MigrationTask)
    if status:
        query = query.filter(models.MigrationTask.status == status)
    return query.order_by(models.MigrationTask.created_at.desc()).offset(skip).limit(limit).all()


def create_task(db: Session, task_id: str, request_data: models.NewTaskRequest):
    db_task = models.MigrationTask(
        id=task_id,
        task_name=request_data.task_name,
        project_name=request_data.project_name,
        source_owner=request_data.source_owner,
        source_table=request_data.source_table,
        partition_type=request_data.partition_type.value if request_data.partition_type else None,
        partition_key=request_data.partition_key,
        interval_granularity=request_data.interval.value if request_data.interval else None,
        migration_method=request_data.migration_method.value if request_data.migration_method else None,
        status=TaskStatus.PENDING.value,
    )
    db.add(db_task)
    db.commit()
    db.refresh(db_task)
    return db_task


def claim_task(db: Session, task_id: str, stale_claim_minutes: int = 20):
    """Locks the task row and moves it to ANALYZING.

    A task already ANALYZING is refused unless its claim is older than `stale_claim_minutes`.
    """
    db_task = (
        db.query(models.MigrationTask)
        .filter(models.MigrationTask.id == task_id)
        .with_for_update()
        .first()
    )
    if db_task is None:
        raise TaskClaimError(f"Task {task_id} not found")

    now = models.utcnow()
    if db_task.status == TaskStatus.ANALYZING.value and db_task.analysis_date is not None:
        claimed_for = now - _as_utc(db_task.analysis_date)
        if claimed_for < datetime.timedelta(minutes=stale_claim_minutes):
            db.rollback()
            raise TaskClaimError(f"Task {task_id} is already being analyzed")

    db_task.status = TaskStatus.ANALYZING.value
    db_task.analysis_date = now
    db_task.error_message = None
    db.commit()
    db.refresh(db_task)
    return db_task


def complete_analysis(db: Session, task_id: str, result: AnalysisResult):
    """Upserts the analysis row and marks the task ANALYZED in a single commit."""
    db_task = get_task(db, task_id)
    if db_task is None:
        raise TaskClaimError(f"Task {task_id} not found")

    db_analysis = db_task.analysis or models.MigrationAnalysis(task_id=task_id)
    recommendation = result.recommendation
    db_analysis.recommended_strategy = describe(recommendation) if recommendation.is_partitioned else None
    db_analysis.partition_scheme = recommendation.scheme.value
    db_analysis.partition_key = recommendation.partition_key
    db_analysis.granularity = recommendation.granularity.value
    db_analysis.recommendation_reason = recommendation.rationale
    db_analysis.recommendation_source = recommendation.source.value
    db_analysis.selected_column = result.selected_column
    db_analysis.requires_conversion = recommendation.requires_conversion
    db_analysis.complexity_score = result.complexity_score
    db_analysis.estimated_downtime_minutes = result.downtime_minutes
    db_analysis.estimated_partitions = result.estimated_partitions
    db_analysis.avg_partition_size_mb = result.avg_partition_size_mb
    db_analysis.migration_method = result.migration_method.value
    db_analysis.readiness = result.readiness.value
    db_analysis.result = result.to_dict()
    db_analysis.analysis_date = models.utcnow()
    db_task.analysis = db_analysis

    db_task.status = TaskStatus.ANALYZED.value
    db_task.readiness = result.readiness.value
    db_task.error_message = None
    db_task.completed_at = models.utcnow()
    db_task.source_rows = result.table.row_count
    db_task.source_size_mb = result.table.size_mb
    db.commit()
    db.refresh(db_task)
    return db_task


def update_task_status(db: Session, task_id: str, status: str, error_message: Optional[str] = None):
    db_task = get_task(db, task_id)
    if db_task:
        db_task.status = status
        db_task.completed_at = models.utcnow()
        if error_message:
            db_task.error_message = error_message
        db.commit()


def mark_task_failed(db: Session, task_id: str, message: str):
    update_task_status(db, task_id, TaskStatus.FAILED.value, f"Analysis failed: {message}")


def get_analysis(db: Session, task_id: str):
    return db.query(models.MigrationAnalysis).filter(models.MigrationAnalysis.task_id == task_id).first()


def get_analyzable_task_ids(db: Session, project_name: Optional[str] = None) -> List[str]:
    """Tasks waiting for analysis plus READY ones eligible for re-analysis."""
    query = db.query(models.MigrationTask.id).filter(or_(
        models.MigrationTask.status == TaskStatus.PENDING.value,
        and_(
            models.MigrationTask.status == TaskStatus.ANALYZED.value,
            models.MigrationTask.readiness == Readiness.READY.value,
        ),
    ))
    if project_name:
        query = query.filter(models.MigrationTask.project_name == project_name)
    return [row.id for row in query.order_by(models.MigrationTask.created_at).all()]


def delete_task(db: Session, task_id: str):
    db_task = get_task(db, task_id)
    if db_task:
        db.delete(db_task)
        db.commit()
        return True
    return False


def create_log_entry(db: Session, task_id: str, level: str, message: str):
    db_log = models.LogEntry(task_id=task_id, level=level, message=message)
    db.add(db_log)
    db.commit()


def get_logs_for_task(db: Session, task_id: str):
    return db.query(models.LogEntry).filter(models.LogEntry.task_id == task_id).order_by(models.LogEntry.id).all()
