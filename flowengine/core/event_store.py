"""Durable storage of events ingested for workflows."""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import WorkflowEvent
from ..storage.database import SessionLocal
from ..storage.models import WorkflowEventModel
from .exceptions import NotFoundError, StorageError
from .logging import get_logger
from .error_recovery import with_retry
from .run_store import STORE_RETRY

logger = get_logger(__name__)


def _to_event(event_model: WorkflowEventModel) -> WorkflowEvent:
    return WorkflowEvent(
        id=event_model.id,
        workflow_id=event_model.workflow_id,
        event_data=event_model.event_data or {},
        received_at=event_model.received_at,
        processed=bool(event_model.processed),
        run_id=event_model.run_id,
    )


class EventStore:
    """Records received events and links them to the runs they started."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or SessionLocal

    @with_retry(STORE_RETRY)
    def record_event(self, workflow_id: str, event_data: Dict[str, Any]) -> WorkflowEvent:
        """Store an event as received, not yet processed."""
        db = self._session_factory()
        try:
            event_model = WorkflowEventModel(
                id=str(uuid.uuid4()),
                workflow_id=workflow_id,
                event_data=event_data,
                received_at=datetime.utcnow(),
                processed=False,
            )
            db.add(event_model)
            db.commit()
            db.refresh(event_model)
            logger.info(f"Recorded event {event_model.id} for workflow {workflow_id}")
            return _to_event(event_model)
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to record event: {str(e)}", operation="record_event", table="workflow_events")
        finally:
            db.close()

    @with_retry(STORE_RETRY)
    def link_run(self, event_id: str, run_id: str) -> None:
        """Mark an event processed by the run it started.

        Raises:
            NotFoundError: If the event does not exist
        """
        db = self._session_factory()
        try:
            event_model = db.query(WorkflowEventModel).filter(WorkflowEventModel.id == event_id).first()
            if not event_model:
                raise NotFoundError(f"Event {event_id} not found", resource="event", resource_id=event_id)
            event_model.run_id = run_id
            event_model.processed = True
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to link event: {str(e)}", operation="link_run", table="workflow_events")
        finally:
            db.close()

    def list_events(self, workflow_id: str, limit: int = 100) -> List[WorkflowEvent]:
        """List a workflow's events, most recently received first."""
        db = self._session_factory()
        try:
            event_models = (
                db.query(WorkflowEventModel)
                .filter(WorkflowEventModel.workflow_id == workflow_id)
                .order_by(WorkflowEventModel.received_at.desc())
                .limit(limit)
                .all()
            )
            return [_to_event(event_model) for event_model in event_models]
        except SQLAlchemyError as e:
            raise StorageError(f"Failed to list events: {str(e)}", operation="list_events", table="workflow_events")
        finally:
            db.close()
