"""Durable storage of workflow run records."""

import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Collection, Dict, List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..storage.database import SessionLocal
from ..storage.models import WorkflowRunModel
from ..models.core import RunStatus, RunSummary, WorkflowRun
from .exceptions import NotFoundError, RunStateError, StorageError
from .logging import get_logger, set_logging_context, clear_logging_context
from .error_recovery import with_retry, RetryConfig

logger = get_logger(__name__)

STORE_RETRY = RetryConfig(max_attempts=3, base_delay=0.2, max_delay=3.0)


def _to_run(run_model: WorkflowRunModel) -> WorkflowRun:
    return WorkflowRun(
        id=run_model.id,
        workflow_id=run_model.workflow_id or "",
        status=RunStatus(run_model.status),
        input=run_model.input or {},
        nodes_snapshot=run_model.nodes_snapshot or [],
        results=run_model.results or [],
        summary=RunSummary(**(run_model.summary or {})),
        started_at=run_model.started_at,
        last_progress_at=run_model.last_progress_at,
        completed_at=run_model.completed_at,
        execution_time=run_model.execution_time,
        error=run_model.error,
    )


class RunStore:
    """Creates, finalizes and reads run records.

    Each run only ever writes its own row, so no locking beyond the
    per-row update is needed.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or SessionLocal

    @with_retry(STORE_RETRY)
    def create_run(
        self,
        workflow_id: Optional[str],
        nodes_snapshot: List[Dict[str, Any]],
        run_input: Optional[Dict[str, Any]] = None,
        run_id: Optional[str] = None,
    ) -> WorkflowRun:
        """
        Create a run record in the ``running`` state.

        Args:
            workflow_id: Workflow the run belongs to
            nodes_snapshot: Node list as it is about to be executed
            run_input: Trigger payload supplied by the caller
            run_id: Identifier to use; generated when omitted

        Returns:
            WorkflowRun: The stored record

        Raises:
            StorageError: If the record cannot be written
        """
        run_id = run_id or str(uuid.uuid4())
        started_at = datetime.utcnow()
        db = self._session_factory()
        try:
            run_model = WorkflowRunModel(
                id=run_id,
                workflow_id=workflow_id,
                status=RunStatus.RUNNING.value,
                input=run_input or {},
                nodes_snapshot=nodes_snapshot,
                results=[],
                summary=RunSummary().model_dump(),
                started_at=started_at,
                last_progress_at=started_at,
            )
            db.add(run_model)
            db.commit()
            db.refresh(run_model)
            logger.info(f"Created workflow run {run_id} for workflow {workflow_id}")
            return _to_run(run_model)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to create run: {str(e)}", operation="create_run", table="workflow_runs")
        finally:
            db.close()

    @with_retry(STORE_RETRY)
    def update(
        self,
        run_id: str,
        status: RunStatus,
        results: List[Dict[str, Any]],
        summary: RunSummary,
        completed_at: datetime,
        execution_time: float,
        error: Optional[str] = None,
    ) -> None:
        """
        Write the terminal outcome of a run.

        Raises:
            NotFoundError: If the run does not exist
            RunStateError: If the status is not terminal or the run already finished
            StorageError: If the write fails
        """
        if not status.is_terminal:
            raise RunStateError(
                f"Cannot finalize run {run_id} with non-terminal status {status.value}",
                run_id=run_id,
                operation="update",
            )

        db = self._session_factory()
        context_token = set_logging_context(run_id=run_id, operation="update_run")
        try:
            run_model = db.query(WorkflowRunModel).filter(WorkflowRunModel.id == run_id).first()
            if not run_model:
                raise NotFoundError(f"Run {run_id} not found", resource="run", resource_id=run_id)
            if run_model.status != RunStatus.RUNNING.value:
                raise RunStateError(
                    f"Run {run_id} is already {run_model.status}",
                    run_id=run_id,
                    operation="update",
                )

            run_model.status = status.value
            run_model.results = results
            run_model.summary = summary.model_dump()
            run_model.completed_at = completed_at
            run_model.last_progress_at = completed_at
            run_model.execution_time = execution_time
            run_model.error = error
            db.commit()
            logger.info(f"Run {run_id} stored as {status.value}")
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update run: {str(e)}", operation="update", table="workflow_runs")
        finally:
            db.close()
            clear_logging_context(context_token)

    @with_retry(STORE_RETRY)
    def record_progress(self, run_id: str, results: List[Dict[str, Any]], summary: RunSummary) -> None:
        """
        Store the results gathered so far while the run is still executing.

        Also refreshes the run's progress timestamp, which reconciliation
        uses to tell stuck runs from slow ones.

        Raises:
            NotFoundError: If the run does not exist
            RunStateError: If the run is no longer running
            StorageError: If the write fails
        """
        db = self._session_factory()
        try:
            run_model = db.query(WorkflowRunModel).filter(WorkflowRunModel.id == run_id).first()
            if not run_model:
                raise NotFoundError(f"Run {run_id} not found", resource="run", resource_id=run_id)
            if run_model.status != RunStatus.RUNNING.value:
                raise RunStateError(
                    f"Run {run_id} is already {run_model.status}",
                    run_id=run_id,
                    operation="record_progress",
                )

            run_model.results = results
            run_model.summary = summary.model_dump()
            run_model.last_progress_at = datetime.utcnow()
            db.commit()
            logger.debug(f"Run {run_id} progress: {len(results)} node result(s) stored")
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record run progress: {str(e)}", operation="record_progress", table="workflow_runs")
        finally:
            db.close()

    def get_run(self, run_id: str) -> WorkflowRun:
        """Return a run record.

        Raises:
            NotFoundError: If the run does not exist
        """
        db = self._session_factory()
        try:
            run_model = db.query(WorkflowRunModel).filter(WorkflowRunModel.id == run_id).first()
            if not run_model:
                raise NotFoundError(f"Run {run_id} not found", resource="run", resource_id=run_id)
            return _to_run(run_model)
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to retrieve run: {str(e)}", operation="get_run", table="workflow_runs")
        finally:
            db.close()

    def list_runs(self, workflow_id: Optional[str] = None, limit: int = 50) -> List[WorkflowRun]:
        """List runs newest first, optionally for one workflow."""
        db = self._session_factory()
        try:
            query = db.query(WorkflowRunModel)
            if workflow_id:
                query = query.filter(WorkflowRunModel.workflow_id == workflow_id)
            run_models = query.order_by(WorkflowRunModel.started_at.desc()).limit(limit).all()
            return [_to_run(run_model) for run_model in run_models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list runs: {str(e)}", operation="list_runs", table="workflow_runs")
        finally:
            db.close()

    @with_retry(STORE_RETRY)
    def reconcile_stale_runs(self, max_age_seconds: float, active_run_ids: Collection[str] = ()) -> List[str]:
        """
        Mark runs that made no progress for `max_age_seconds` as failed.

        A run stays ``running`` when its process died or its final write
        never succeeded; this gives such records a terminal state and an
        explanation. Age is measured from the last progress write, falling
        back to the start time, so a long run whose nodes keep finishing is
        left alone. Runs in `active_run_ids` are executing in this process
        and are never touched.

        Returns:
            List[str]: Ids of the runs that were marked failed
        """
        cutoff = datetime.utcnow() - timedelta(seconds=max_age_seconds)
        db = self._session_factory()
        try:
            query = (
                db.query(WorkflowRunModel)
                .filter(WorkflowRunModel.status == RunStatus.RUNNING.value)
                .filter(func.coalesce(WorkflowRunModel.last_progress_at, WorkflowRunModel.started_at) < cutoff)
            )
            if active_run_ids:
                query = query.filter(WorkflowRunModel.id.notin_(list(active_run_ids)))
            stale_runs = query.all()

            now = datetime.utcnow()
            for run_model in stale_runs:
                run_model.status = RunStatus.FAILED.value
                run_model.completed_at = now
                run_model.error = (
                    f"Run made no progress for {int(max_age_seconds)} seconds "
                    f"and was marked failed by reconciliation"
                )
            db.commit()

            reconciled = [run_model.id for run_model in stale_runs]
            if reconciled:
                logger.warning(f"Marked {len(reconciled)} stale run(s) as failed: {', '.join(reconciled)}")
            return reconciled
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to reconcile runs: {str(e)}", operation="reconcile", table="workflow_runs")
        finally:
            db.close()
