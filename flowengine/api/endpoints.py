"""FastAPI REST endpoints for the workflow node engine."""

from datetime import datetime
from typing import Dict, List, Any, Optional
from fastapi import APIRouter, BackgroundTasks, Body, HTTPException, Depends, Header, Query, status
from pydantic import BaseModel, Field, ValidationError

from ..config import AppConfig
from ..core.event_store import EventStore
from ..core.event_verification import EVENT_VERIFICATION_HEADER, verify_event_verification_hash
from ..core.orchestrator import WorkflowOrchestrator
from ..core.run_store import RunStore
from ..core.workflow_manager import WorkflowManager
from ..core.exceptions import (
    ConfigurationError,
    EventVerificationError,
    NotFoundError,
    RunStateError,
    StorageError,
    WorkflowEngineError,
    WorkflowInactiveError,
    WorkflowValidationError,
    create_error_response
)
from ..models.core import (
    WorkflowDefinition,
    WorkflowEvent,
    WorkflowNode,
    WorkflowRun,
    WorkflowStatus,
    WorkflowSummary,
    validate_node_list,
)
from ..core.logging import get_logger

logger = get_logger(__name__)

# Create router
router = APIRouter(prefix="/api/v1", tags=["workflow"])

# Header carrying the platform token for runs started by an event
PLATFORM_TOKEN_HEADER = "x-membrane-token"

# Global instances (initialized by the application factory)
_workflow_manager: Optional[WorkflowManager] = None
_run_store: Optional[RunStore] = None
_event_store: Optional[EventStore] = None
_orchestrator: Optional[WorkflowOrchestrator] = None
_config: Optional[AppConfig] = None


def init_dependencies(
    workflow_manager: WorkflowManager,
    run_store: RunStore,
    event_store: EventStore,
    orchestrator: WorkflowOrchestrator,
    config: AppConfig,
):
    """Initialize the global dependencies."""
    global _workflow_manager, _run_store, _event_store, _orchestrator, _config
    _workflow_manager = workflow_manager
    _run_store = run_store
    _event_store = event_store
    _orchestrator = orchestrator
    _config = config


def get_workflow_manager() -> WorkflowManager:
    """Dependency to get workflow manager."""
    if _workflow_manager is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Workflow manager not initialized"
        )
    return _workflow_manager


def get_run_store() -> RunStore:
    """Dependency to get run store."""
    if _run_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Run store not initialized"
        )
    return _run_store


def get_event_store() -> EventStore:
    """Dependency to get event store."""
    if _event_store is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Event store not initialized"
        )
    return _event_store


def get_orchestrator() -> WorkflowOrchestrator:
    """Dependency to get run orchestrator."""
    if _orchestrator is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Orchestrator not initialized"
        )
    return _orchestrator


def get_app_config() -> AppConfig:
    """Dependency to get application configuration."""
    if _config is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Configuration not initialized"
        )
    return _config


# Request/Response models
class CreateWorkflowRequest(BaseModel):
    """Request model for creating a workflow; structure is checked by the handler."""
    name: str = Field(..., description="Name of the workflow")
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Nodes in execution order")
    status: WorkflowStatus = Field(default=WorkflowStatus.INACTIVE, description="Initial workflow status")


class CreateWorkflowResponse(BaseModel):
    """Response model for workflow creation."""
    workflow_id: str = Field(..., description="Unique identifier of the created workflow")
    message: str = Field(..., description="Success message")


class RunWorkflowRequest(BaseModel):
    """Request model for running a workflow."""
    input: Dict[str, Any] = Field(default_factory=dict, description="Trigger payload")
    platform_token: str = Field(default="", description="Token used by platform action nodes")


class RunWorkflowResponse(BaseModel):
    """Response model for workflow execution."""
    run_id: str = Field(..., description="Unique identifier for the execution run")
    workflow_id: str = Field(..., description="Workflow being executed")
    message: str = Field(..., description="Success message")


class IngestEventResponse(BaseModel):
    """Response model for event ingestion."""
    run_id: str = Field(..., description="Run started by the event")
    workflow_id: str = Field(..., description="Workflow being executed")
    event_id: str = Field(..., description="Identifier of the stored event")
    message: str = Field(..., description="Success message")


class WorkflowStatusResponse(BaseModel):
    """Response model for activation changes."""
    workflow_id: str
    status: WorkflowStatus
    message: str


class ReconcileResponse(BaseModel):
    """Response model for stale run reconciliation."""
    reconciled_run_ids: List[str] = Field(default_factory=list)
    message: str


def _status_code_for(error: WorkflowEngineError) -> int:
    if isinstance(error, WorkflowValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, WorkflowInactiveError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(error, EventVerificationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(error, RunStateError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, StorageError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def _http_error(error: Exception, action: str) -> HTTPException:
    """Translate an exception raised while handling a request."""
    if isinstance(error, WorkflowEngineError):
        logger.warning(f"Workflow engine error while {action}: {str(error)}")
        return HTTPException(status_code=_status_code_for(error), detail=create_error_response(error))

    logger.error(f"Unexpected error while {action}: {str(error)}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={
            "error": "InternalError",
            "message": f"An unexpected error occurred while {action}",
            "details": {"original_error": str(error)},
            "timestamp": datetime.utcnow().isoformat()
        }
    )


# Endpoints

@router.post(
    "/workflows",
    response_model=CreateWorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new workflow",
    description="Validate and store an ordered node list"
)
async def create_workflow(
    request: CreateWorkflowRequest,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> CreateWorkflowResponse:
    try:
        errors = validate_node_list(request.nodes)
        if not errors:
            try:
                definition = WorkflowDefinition(name=request.name, nodes=request.nodes, status=request.status)
            except ValidationError as e:
                errors = [str(error.get("ctx", {}).get("error", error["msg"])) for error in e.errors()]
        if errors:
            raise WorkflowValidationError(
                f"Workflow validation failed: {'; '.join(errors)}",
                validation_errors=errors,
                workflow_name=request.name,
            )
        workflow_id = workflow_manager.create_workflow(definition)
        return CreateWorkflowResponse(
            workflow_id=workflow_id,
            message=f"Workflow '{definition.name}' created successfully"
        )
    except Exception as e:
        raise _http_error(e, "creating the workflow")


@router.get(
    "/workflows",
    response_model=List[WorkflowSummary],
    summary="List workflows"
)
async def list_workflows(
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> List[WorkflowSummary]:
    try:
        return workflow_manager.list_workflows()
    except Exception as e:
        raise _http_error(e, "listing workflows")


@router.get(
    "/workflows/{workflow_id}",
    response_model=WorkflowDefinition,
    summary="Get a workflow definition"
)
async def get_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowDefinition:
    try:
        return workflow_manager.get_workflow(workflow_id)
    except Exception as e:
        raise _http_error(e, "retrieving the workflow")


@router.delete(
    "/workflows/{workflow_id}",
    summary="Delete a workflow and its runs"
)
async def delete_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> Dict[str, str]:
    try:
        deleted = workflow_manager.delete_workflow(workflow_id)
    except Exception as e:
        raise _http_error(e, "deleting the workflow")

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "error": "WorkflowNotFound",
                "message": f"Workflow with ID '{workflow_id}' not found",
                "details": {"workflow_id": workflow_id}
            }
        )
    return {"message": f"Workflow '{workflow_id}' deleted successfully"}


@router.post(
    "/workflows/{workflow_id}/run",
    response_model=RunWorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Execute a workflow",
    description="Create a run record and execute the workflow's nodes in the background"
)
async def run_workflow(
    workflow_id: str,
    request: RunWorkflowRequest,
    background_tasks: BackgroundTasks,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager),
    run_store: RunStore = Depends(get_run_store),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)
) -> RunWorkflowResponse:
    try:
        definition = workflow_manager.get_workflow(workflow_id)
        nodes_snapshot = [node.model_dump(mode="json", by_alias=True, exclude_none=True) for node in definition.nodes]
        run = run_store.create_run(workflow_id, nodes_snapshot, request.input)
        workflow_manager.mark_run(workflow_id)
    except Exception as e:
        raise _http_error(e, "starting workflow execution")

    background_tasks.add_task(
        orchestrator.execute_workflow_nodes,
        definition.nodes,
        request.platform_token,
        request.input,
        run.id,
    )
    logger.info(f"Scheduled run {run.id} for workflow {workflow_id}")

    return RunWorkflowResponse(
        run_id=run.id,
        workflow_id=workflow_id,
        message="Workflow execution started successfully"
    )


def _set_workflow_status(
    workflow_manager: WorkflowManager,
    workflow_id: str,
    workflow_status: WorkflowStatus,
) -> WorkflowStatusResponse:
    try:
        workflow_manager.set_status(workflow_id, workflow_status)
    except Exception as e:
        raise _http_error(e, "changing the workflow status")
    return WorkflowStatusResponse(
        workflow_id=workflow_id,
        status=workflow_status,
        message=f"Workflow '{workflow_id}' is now {workflow_status.value}"
    )


@router.post(
    "/workflows/{workflow_id}/activate",
    response_model=WorkflowStatusResponse,
    summary="Activate a workflow so it accepts events"
)
async def activate_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowStatusResponse:
    return _set_workflow_status(workflow_manager, workflow_id, WorkflowStatus.ACTIVE)


@router.post(
    "/workflows/{workflow_id}/deactivate",
    response_model=WorkflowStatusResponse,
    summary="Deactivate a workflow"
)
async def deactivate_workflow(
    workflow_id: str,
    workflow_manager: WorkflowManager = Depends(get_workflow_manager)
) -> WorkflowStatusResponse:
    return _set_workflow_status(workflow_manager, workflow_id, WorkflowStatus.INACTIVE)


def _verify_event(
    workflow_id: str,
    event: Dict[str, Any],
    verification_hash: Optional[str],
    platform_token: Optional[str],
    config: AppConfig,
) -> None:
    """Check the credentials an event delivery must carry.

    The verification hash is read from the request header, or from a
    ``headers`` object inside the event body for relayed deliveries.
    """
    if not platform_token:
        raise EventVerificationError(
            f"Missing {PLATFORM_TOKEN_HEADER} header", workflow_id=workflow_id
        )
    if not config.event_verification_secret:
        raise ConfigurationError(
            "Event verification secret is not configured", config_key="event_verification_secret"
        )

    relayed_headers = event.get("headers")
    if not verification_hash and isinstance(relayed_headers, dict):
        verification_hash = relayed_headers.get(EVENT_VERIFICATION_HEADER)
    if not verification_hash:
        raise EventVerificationError("Missing event verification hash", workflow_id=workflow_id)
    if not verify_event_verification_hash(workflow_id, str(verification_hash), config.event_verification_secret):
        raise EventVerificationError("Invalid event verification hash", workflow_id=workflow_id)


@router.post(
    "/workflows/{workflow_id}/events",
    response_model=IngestEventResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Ingest an event for an active workflow",
    description="Verify and store the event, then run the workflow with the event payload in the background"
)
async def ingest_event(
    workflow_id: str,
    background_tasks: BackgroundTasks,
    event: Dict[str, Any] = Body(...),
    verification_hash: Optional[str] = Header(None, alias=EVENT_VERIFICATION_HEADER),
    platform_token: Optional[str] = Header(None, alias=PLATFORM_TOKEN_HEADER),
    workflow_manager: WorkflowManager = Depends(get_workflow_manager),
    run_store: RunStore = Depends(get_run_store),
    event_store: EventStore = Depends(get_event_store),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
    config: AppConfig = Depends(get_app_config)
) -> IngestEventResponse:
    try:
        _verify_event(workflow_id, event, verification_hash, platform_token, config)
        definition = workflow_manager.get_workflow(workflow_id)
        if definition.status != WorkflowStatus.ACTIVE:
            raise WorkflowInactiveError(f"Workflow '{workflow_id}' is not active", workflow_id=workflow_id)

        event_body = event["data"] if isinstance(event.get("data"), dict) else event
        recorded = event_store.record_event(workflow_id, event)
        nodes_snapshot = [node.model_dump(mode="json", by_alias=True, exclude_none=True) for node in definition.nodes]
        run = run_store.create_run(workflow_id, nodes_snapshot, event_body)
        event_store.link_run(recorded.id, run.id)
        workflow_manager.mark_run(workflow_id)
    except Exception as e:
        raise _http_error(e, "ingesting the event")

    background_tasks.add_task(
        orchestrator.execute_workflow_nodes,
        definition.nodes,
        platform_token,
        event_body,
        run.id,
    )
    logger.info(f"Event {recorded.id} started run {run.id} for workflow {workflow_id}")

    return IngestEventResponse(
        run_id=run.id,
        workflow_id=workflow_id,
        event_id=recorded.id,
        message="Event ingested and workflow started"
    )


@router.get(
    "/workflows/{workflow_id}/events",
    response_model=List[WorkflowEvent],
    summary="List events received for a workflow"
)
async def list_workflow_events(
    workflow_id: str,
    limit: int = Query(100, ge=1, le=500),
    event_store: EventStore = Depends(get_event_store)
) -> List[WorkflowEvent]:
    try:
        return event_store.list_events(workflow_id, limit=limit)
    except Exception as e:
        raise _http_error(e, "listing events")


@router.get(
    "/workflows/{workflow_id}/runs",
    response_model=List[WorkflowRun],
    summary="List runs of a workflow"
)
async def list_workflow_runs(
    workflow_id: str,
    limit: int = Query(50, ge=1, le=500),
    run_store: RunStore = Depends(get_run_store)
) -> List[WorkflowRun]:
    try:
        return run_store.list_runs(workflow_id=workflow_id, limit=limit)
    except Exception as e:
        raise _http_error(e, "listing runs")


@router.get(
    "/runs/{run_id}",
    response_model=WorkflowRun,
    summary="Get a workflow run",
    description="Retrieve the stored status, results and summary of a run"
)
async def get_run(
    run_id: str,
    run_store: RunStore = Depends(get_run_store)
) -> WorkflowRun:
    try:
        return run_store.get_run(run_id)
    except Exception as e:
        raise _http_error(e, "retrieving the run")


@router.post(
    "/runs/reconcile",
    response_model=ReconcileResponse,
    summary="Fail runs stuck in running"
)
async def reconcile_runs(
    run_store: RunStore = Depends(get_run_store),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
    config: AppConfig = Depends(get_app_config)
) -> ReconcileResponse:
    try:
        reconciled = run_store.reconcile_stale_runs(config.stale_run_timeout, orchestrator.active_run_ids)
    except Exception as e:
        raise _http_error(e, "reconciling runs")
    return ReconcileResponse(
        reconciled_run_ids=reconciled,
        message=f"Marked {len(reconciled)} stale run(s) as failed"
    )


@router.get("/health", summary="Health check")
async def health_check(
    workflow_manager: WorkflowManager = Depends(get_workflow_manager),
    config: AppConfig = Depends(get_app_config)
) -> Dict[str, Any]:
    try:
        workflow_manager.list_workflows()
        database_status = "healthy"
    except StorageError as e:
        logger.error(f"Health check database query failed: {str(e)}")
        database_status = "unhealthy"

    return {
        "status": "healthy" if database_status == "healthy" else "degraded",
        "version": config.app_version,
        "database": database_status,
        "timestamp": datetime.utcnow().isoformat()
    }
