# partition_advisor/main.py
import uuid
from contextlib import asynccontextmanager
from typing import List, Optional, Tuple

import uvicorn
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query
from loguru import logger
from sqlalchemy.orm import Session

from partition_advisor import crud, models
from partition_advisor.catalog import CatalogAdapter, SqlAlchemyCatalog
from partition_advisor.config import AnalyzerConfig
from partition_advisor.database import SessionLocal, create_db_and_tables, make_engine, settings
from partition_advisor.pipeline import (
    SessionFactory, analyze_all_pending_tasks, enable_task_log_sink, request_cancellation, run_analysis_pipeline,
)
from partition_advisor.sampler import Sampler, SqlAlchemySampler
from partition_advisor.schemas import TaskStatus

# Define tags metadata for grouping endpoints
tags_metadata = [
    {
        "name": "Tasks",
        "description": "Create and manage table analysis tasks. "
                       "Analyses run in the background against the configured warehouse.",
    },
    {
        "name": "Details",
        "description": "Retrieve stored analysis results: recommended strategy, scores, dependencies and blockers.",
    },
    {
        "name": "Utilities",
        "description": "Task logs and housekeeping.",
    },
]


@asynccontextmanager
async def lifespan(app: FastAPI):
    file_sink_id = logger.add(settings.log_file, level="INFO", rotation="1 week", serialize=True)
    create_db_and_tables()
    sink_id = enable_task_log_sink(SessionLocal)
    yield
    logger.remove(sink_id)
    logger.remove(file_sink_id)


app = FastAPI(
    title="Partition Advisor",
    description="""
Analyzes large warehouse tables and recommends a partitioning strategy.

### Workflow

1. **Submit** a task naming the table to analyze
2. **Trigger** the analysis (single task or all pending tasks)
3. **Retrieve** the recommendation, complexity score, downtime estimate and blocking issues

### Task Lifecycle

- `PENDING`: Task created, not analyzed yet
- `ANALYZING`: Analysis in progress
- `ANALYZED`: Result stored; readiness is `READY` or `BLOCKED`
- `FAILED`: Analysis failed, see `error_message`
    """,
    version="1.0.0",
    openapi_tags=tags_metadata,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

_backend: Optional[Tuple[CatalogAdapter, Sampler]] = None


# Dependency for getting a DB session
def get_db():
    """
    Database session dependency.

    Yields a SQLAlchemy session and ensures proper cleanup after request completion.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_analyzer_config() -> AnalyzerConfig:
    return settings.analyzer_config()


def get_analysis_backend() -> Tuple[CatalogAdapter, Sampler]:
    """Catalog and sampler bound to the warehouse named by PARTITION_ADVISOR_TARGET_URL."""
    global _backend
    if _backend is None:
        if not settings.target_url:
            raise HTTPException(status_code=503, detail="No target warehouse configured")
        target = make_engine(settings.target_url)
        _backend = (SqlAlchemyCatalog(target), SqlAlchemySampler(target))
    return _backend


def _task_or_404(db: Session, task_id: str):
    task = crud.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


@app.post(
    "/tasks",
    response_model=models.NewTaskResponse,
    status_code=201,
    tags=["Tasks"],
    summary="Create a new analysis task",
)
def create_new_task(request_data: models.NewTaskRequest, db: Session = Depends(get_db)):
    """
    Register a table for analysis. The task starts in `PENDING`.

    Setting `partition_type` (and `partition_key`) makes the task use that strategy
    instead of the recommended one; the rest of the analysis still runs.
    """
    task_id = str(uuid.uuid4())
    crud.create_task(db=db, task_id=task_id, request_data=request_data)
    logger.success(f"Received new task for {request_data.source_table}. Assigned task_id: {task_id}")
    return models.NewTaskResponse(taskid=task_id)


@app.get(
    "/tasks",
    response_model=List[models.TaskSummary],
    tags=["Tasks"],
    summary="List tasks",
)
def list_tasks(
        status: Optional[TaskStatus] = Query(None, description="Filter tasks by status"),
        skip: int = Query(0, ge=0, description="Number of tasks to skip for pagination"),
        limit: int = Query(20, ge=1, le=100, description="Maximum number of tasks to return"),
        db: Session = Depends(get_db)
):
    tasks = crud.get_tasks_with_newest_first(db, skip=skip, limit=limit, status=status.value if status else None)
    return [
        models.TaskSummary(
            taskid=t.id,
            task_name=t.task_name,
            source_table=t.source_table,
            status=t.status,
            readiness=t.readiness,
            created_at=t.created_at,
        )
        for t in tasks
    ]


@app.get("/tasks/{task_id}", response_model=models.TaskInfo, tags=["Tasks"], summary="Get task information")
def get_task_info(task_id: str, db: Session = Depends(get_db)):
    return models.TaskInfo.model_validate(_task_or_404(db, task_id))


@app.delete(
    "/tasks/{task_id}",
    status_code=204,
    tags=["Tasks"],
    summary="Delete a task",
    responses={404: {"description": "Task not found"}},
)
def delete_task(task_id: str, db: Session = Depends(get_db)):
    """Deletes the task together with its analysis and logs."""
    if not crud.delete_task(db, task_id=task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    logger.success(f"Task ID {task_id} deleted successfully.")
    return None


@app.post(
    "/tasks/{task_id}/analyze",
    response_model=models.AnalysisScheduledResponse,
    status_code=202,
    tags=["Tasks"],
    summary="Analyze one task",
    responses={404: {"description": "Task not found"}, 409: {"description": "Task is already being analyzed"}},
)
def analyze_task(
        task_id: str,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        session_factory: SessionFactory = Depends(get_session_factory),
        config: AnalyzerConfig = Depends(get_analyzer_config),
        backend: Tuple[CatalogAdapter, Sampler] = Depends(get_analysis_backend),
):
    task = _task_or_404(db, task_id)
    if task.status == TaskStatus.ANALYZING.value:
        raise HTTPException(status_code=409, detail="Task is already being analyzed")
    catalog, sampler = backend
    background_tasks.add_task(run_analysis_pipeline, task_id, catalog, sampler, config, session_factory)
    logger.info(f"Scheduled analysis of task {task_id}")
    return models.AnalysisScheduledResponse(scheduled=[task_id])


@app.post(
    "/tasks/analyze-pending",
    response_model=models.AnalysisScheduledResponse,
    status_code=202,
    tags=["Tasks"],
    summary="Analyze all pending tasks",
)
def analyze_pending_tasks(
        background_tasks: BackgroundTasks,
        request: Optional[models.AnalyzePendingRequest] = None,
        db: Session = Depends(get_db),
        session_factory: SessionFactory = Depends(get_session_factory),
        config: AnalyzerConfig = Depends(get_analyzer_config),
        backend: Tuple[CatalogAdapter, Sampler] = Depends(get_analysis_backend),
):
    """Schedules `PENDING` tasks and `READY` tasks (re-analysis), optionally for one project."""
    request = request or models.AnalyzePendingRequest()
    task_ids = crud.get_analyzable_task_ids(db, request.project_name)
    catalog, sampler = backend
    background_tasks.add_task(analyze_all_pending_tasks, catalog, sampler, config, session_factory,
                              request.project_name)
    return models.AnalysisScheduledResponse(scheduled=task_ids)


@app.post(
    "/tasks/{task_id}/cancel",
    status_code=202,
    tags=["Tasks"],
    summary="Cancel a running analysis",
    responses={404: {"description": "Task not found"}, 409: {"description": "Task is not being analyzed"}},
)
def cancel_analysis(task_id: str, db: Session = Depends(get_db)):
    _task_or_404(db, task_id)
    if not request_cancellation(task_id):
        raise HTTPException(status_code=409, detail="Task is not being analyzed")
    logger.warning(f"Cancellation requested for task {task_id}")
    return {"cancelled": task_id}


@app.get(
    "/tasks/{task_id}/analysis",
    response_model=models.AnalysisResponse,
    tags=["Details"],
    summary="Get the stored analysis",
    responses={404: {"description": "Task or analysis not found"}},
)
def get_task_analysis(task_id: str, db: Session = Depends(get_db)):
    _task_or_404(db, task_id)
    analysis = crud.get_analysis(db, task_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Task has not been analyzed")
    return models.AnalysisResponse(
        task_id=task_id,
        recommended_strategy=analysis.recommended_strategy,
        recommendation_reason=analysis.recommendation_reason,
        complexity_score=analysis.complexity_score,
        estimated_downtime_minutes=analysis.estimated_downtime_minutes,
        estimated_partitions=analysis.estimated_partitions,
        migration_method=analysis.migration_method,
        readiness=analysis.readiness,
        analysis_date=analysis.analysis_date,
        result=analysis.result,
    )


@app.get(
    "/tasks/{task_id}/logs",
    response_model=List[models.LogEntryResponse],
    tags=["Utilities"],
    summary="Get task logs",
)
def get_task_log(task_id: str, db: Session = Depends(get_db)):
    """Log records written while the task was analyzed."""
    _task_or_404(db, task_id)
    return [
        models.LogEntryResponse(timestamp=entry.timestamp, level=entry.level, message=entry.message)
        for entry in crud.get_logs_for_task(db, task_id)
    ]


def run():
    """Console entry point: serves the API on the configured host and port."""
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
