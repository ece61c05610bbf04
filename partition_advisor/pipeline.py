# partition_advisor/pipeline.py
import threading
from time import time
from typing import Callable, Dict, Optional

from loguru import logger
from sqlalchemy.orm import Session

from partition_advisor import crud
from partition_advisor.analyzer import TableAnalyzer
from partition_advisor.catalog import CatalogAdapter, TableRef
from partition_advisor.config import AnalyzerConfig
from partition_advisor.database import SessionLocal
from partition_advisor.errors import AnalysisCancelled, TaskClaimError
from partition_advisor.recommender import UserStrategy
from partition_advisor.sampler import BoundedSampler, Sampler
from partition_advisor.schemas import Granularity, MigrationMethod, PartitionScheme

SessionFactory = Callable[[], Session]

_running: Dict[str, threading.Event] = {}
_running_lock = threading.Lock()


# DB Logger Sink
def make_db_log_sink(session_factory: SessionFactory = SessionLocal):
    def db_log_sink(msg):
        record = msg.record
        # Only records bound to a task are persisted
        task_id = record["extra"].get("task_id")
        if task_id:
            db: Session = session_factory()
            try:
                crud.create_log_entry(
                    db=db,
                    task_id=task_id,
                    level=record["level"].name,
                    message=record["message"]
                )
            finally:
                db.close()
    return db_log_sink


def enable_task_log_sink(session_factory: SessionFactory = SessionLocal) -> int:
    """Installs the per-task DB sink; returns the loguru handler id."""
    return logger.add(make_db_log_sink(session_factory), format="{message}", level="INFO",
                      filter=lambda record: "task_id" in record["extra"])


def request_cancellation(task_id: str) -> bool:
    """Signals a running analysis to stop; False if the task is not running in this process."""
    with _running_lock:
        event = _running.get(task_id)
    if event is None:
        return False
    event.set()
    return True


def _user_strategy(task) -> Optional[UserStrategy]:
    if not task.partition_type:
        return None
    return UserStrategy(
        scheme=PartitionScheme(task.partition_type),
        partition_key=task.partition_key,
        granularity=Granularity(task.interval_granularity) if task.interval_granularity else Granularity.NONE,
    )


def run_analysis_pipeline(task_id: str, catalog: CatalogAdapter, sampler: Sampler,
                          config: Optional[AnalyzerConfig] = None,
                          session_factory: SessionFactory = SessionLocal,
                          cancel_event: Optional[threading.Event] = None) -> bool:
    """
    Analyzes one task end to end: claim, analyze, persist.

    Any failure after the claim leaves the task FAILED with a readable error message and
    nothing persisted for the run. Returns True when a result was stored.
    """
    config = config or AnalyzerConfig()
    cancel_event = cancel_event or threading.Event()
    log = logger.bind(task_id=task_id)
    db: Session = session_factory()

    with logger.contextualize(task_id=task_id):
        try:
            task = crud.claim_task(db, task_id, config.stale_claim_minutes)
        except TaskClaimError as e:
            log.warning(f"Task {task_id} not claimed: {e}")
            db.close()
            return False

        with _running_lock:
            _running[task_id] = cancel_event

        try:
            log.info(f"Starting analysis for task_id: {task_id} ({task.task_name})")
            start_time = time()
            analyzer = TableAnalyzer(
                catalog,
                BoundedSampler(sampler, config.probe_timeout_seconds, cancel_event),
                config,
            )
            result = analyzer.analyze(
                TableRef(task.source_owner, task.source_table),
                user_strategy=_user_strategy(task),
                requested_method=MigrationMethod(task.migration_method) if task.migration_method else None,
            )
            if cancel_event.is_set():
                raise AnalysisCancelled("Analysis was cancelled")

            crud.complete_analysis(db, task_id, result)
            log.success(f"✅ Task {task_id} analyzed in {time() - start_time:.2f}s: {result.readiness.value}")
            return True
        except Exception as e:
            db.rollback()
            log.error(f"Task {task_id} failed: {type(e).__name__}: {e}")
            crud.mark_task_failed(db, task_id, str(e))
            return False
        finally:
            with _running_lock:
                _running.pop(task_id, None)
            db.close()
            log.info(f"Pipeline finished for task {task_id} and database session closed.")


def analyze_all_pending_tasks(catalog: CatalogAdapter, sampler: Sampler,
                              config: Optional[AnalyzerConfig] = None,
                              session_factory: SessionFactory = SessionLocal,
                              project_name: Optional[str] = None) -> Dict[str, bool]:
    """Analyzes PENDING and READY tasks one by one; a failing task does not stop the batch."""
    db: Session = session_factory()
    try:
        task_ids = crud.get_analyzable_task_ids(db, project_name)
    finally:
        db.close()

    logger.info(f"Batch analysis of {len(task_ids)} task(s)" + (f" in project {project_name}" if project_name else ""))
    outcomes = {task_id: run_analysis_pipeline(task_id, catalog, sampler, config, session_factory)
                for task_id in task_ids}
    succeeded = sum(outcomes.values())
    logger.success(f"Batch analysis finished: {succeeded} succeeded, {len(outcomes) - succeeded} failed")
    return outcomes
