"""Workflow Manager for workflow definition handling."""

import uuid
from datetime import datetime
from typing import Callable, List, Optional
from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from ..models.core import WorkflowDefinition, WorkflowStatus, WorkflowSummary, validate_node_list
from ..storage.database import SessionLocal
from ..storage.models import WorkflowModel
from .exceptions import NotFoundError, StorageError, WorkflowValidationError
from .logging import get_logger

logger = get_logger(__name__)


class WorkflowManager:
    """Manages workflow definitions, validation, and storage."""

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        self._session_factory = session_factory or SessionLocal

    def create_workflow(self, definition: WorkflowDefinition) -> str:
        """
        Store a new workflow and return its unique identifier.

        Raises:
            WorkflowValidationError: If the node list breaks a structural rule
            StorageError: If storage operation fails
        """
        logger.info(f"Creating new workflow: {definition.name}")

        errors = validate_node_list(definition.nodes)
        if errors:
            error_msg = f"Workflow validation failed: {'; '.join(errors)}"
            logger.error(error_msg)
            raise WorkflowValidationError(error_msg, validation_errors=errors, workflow_name=definition.name)

        workflow_id = str(uuid.uuid4())
        db = self._session_factory()
        try:
            workflow_model = WorkflowModel(
                id=workflow_id,
                name=definition.name,
                nodes=[node.model_dump(mode="json", by_alias=True, exclude_none=True) for node in definition.nodes],
                status=definition.status.value,
                created_at=datetime.utcnow(),
            )
            db.add(workflow_model)
            db.commit()

            logger.info(f"Successfully created workflow '{definition.name}' with ID: {workflow_id}")
            return workflow_id
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Database error while creating workflow: {str(e)}")
            raise StorageError(f"Failed to store workflow: {str(e)}", operation="create_workflow", table="workflows")
        finally:
            db.close()

    def get_workflow(self, workflow_id: str) -> WorkflowDefinition:
        """
        Retrieve a workflow definition by its ID.

        Raises:
            NotFoundError: If the workflow does not exist
            StorageError: If storage operation fails
        """
        db = self._session_factory()
        try:
            workflow_model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not workflow_model:
                raise NotFoundError(
                    f"Workflow with ID '{workflow_id}' not found", resource="workflow", resource_id=workflow_id
                )
            return WorkflowDefinition(
                name=workflow_model.name,
                nodes=workflow_model.nodes,
                status=WorkflowStatus(workflow_model.status or WorkflowStatus.INACTIVE.value),
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error while retrieving workflow: {str(e)}")
            raise StorageError(f"Failed to retrieve workflow: {str(e)}", operation="get_workflow", table="workflows")
        finally:
            db.close()

    def list_workflows(self) -> List[WorkflowSummary]:
        """List stored workflows, newest first."""
        db = self._session_factory()
        try:
            workflow_models = db.query(WorkflowModel).order_by(WorkflowModel.created_at.desc()).all()
            return [
                WorkflowSummary(
                    id=workflow_model.id,
                    name=workflow_model.name,
                    status=WorkflowStatus(workflow_model.status or WorkflowStatus.INACTIVE.value),
                    node_count=len(workflow_model.nodes or []),
                    created_at=workflow_model.created_at,
                    last_run_at=workflow_model.last_run_at,
                )
                for workflow_model in workflow_models
            ]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing workflows: {str(e)}")
            raise StorageError(f"Failed to list workflows: {str(e)}", operation="list_workflows", table="workflows")
        finally:
            db.close()

    def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow and its runs. Returns False if it did not exist."""
        db = self._session_factory()
        try:
            workflow_model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not workflow_model:
                return False
            db.delete(workflow_model)
            db.commit()
            logger.info(f"Deleted workflow {workflow_id}")
            return True
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to delete workflow: {str(e)}", operation="delete_workflow", table="workflows")
        finally:
            db.close()

    def mark_run(self, workflow_id: str) -> None:
        """Stamp the workflow's last run time."""
        db = self._session_factory()
        try:
            workflow_model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not workflow_model:
                raise NotFoundError(
                    f"Workflow with ID '{workflow_id}' not found", resource="workflow", resource_id=workflow_id
                )
            workflow_model.last_run_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update workflow: {str(e)}", operation="mark_run", table="workflows")
        finally:
            db.close()

    def set_status(self, workflow_id: str, status: WorkflowStatus) -> None:
        """Activate or deactivate a workflow.

        Raises:
            NotFoundError: If the workflow does not exist
        """
        db = self._session_factory()
        try:
            workflow_model = db.query(WorkflowModel).filter(WorkflowModel.id == workflow_id).first()
            if not workflow_model:
                raise NotFoundError(
                    f"Workflow with ID '{workflow_id}' not found", resource="workflow", resource_id=workflow_id
                )
            workflow_model.status = status.value
            db.commit()
            logger.info(f"Workflow {workflow_id} is now {status.value}")
        except SQLAlchemyError as e:
            db.rollback()
            raise StorageError(f"Failed to update workflow: {str(e)}", operation="set_status", table="workflows")
        finally:
            db.close()
