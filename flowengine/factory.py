"""Application factory for creating FastAPI instances."""

from datetime import datetime
from typing import Optional
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from .config import AppConfig, get_config
from .core.exceptions import WorkflowEngineError, create_error_response
from .core.logging import setup_logging, get_logger
from .core.event_store import EventStore
from .core.orchestrator import WorkflowOrchestrator
from .core.run_store import RunStore
from .core.workflow_manager import WorkflowManager
from .executors.registry import ExecutorRegistry, create_executor_registry
from .storage.database import init_database
from .api.endpoints import router, init_dependencies


class ApplicationState:
    """Container for application state and components."""

    def __init__(self):
        self.config: Optional[AppConfig] = None
        self.workflow_manager: Optional[WorkflowManager] = None
        self.run_store: Optional[RunStore] = None
        self.event_store: Optional[EventStore] = None
        self.orchestrator: Optional[WorkflowOrchestrator] = None


# Global application state
app_state = ApplicationState()


def initialize_core_components(config: AppConfig, registry: Optional[ExecutorRegistry], logger) -> tuple:
    """Initialize the workflow, run and event stores and the run orchestrator."""
    workflow_manager = WorkflowManager()
    run_store = RunStore()
    event_store = EventStore()
    orchestrator = WorkflowOrchestrator(
        registry or create_executor_registry(config),
        run_store=run_store,
        node_timeout=config.node_timeout,
    )
    logger.info("Core components initialized")
    return workflow_manager, run_store, event_store, orchestrator


def reconcile_on_startup(run_store: RunStore, orchestrator: WorkflowOrchestrator, config: AppConfig, logger) -> None:
    """Fail runs left ``running`` by a previous process."""
    try:
        reconciled = run_store.reconcile_stale_runs(config.stale_run_timeout, orchestrator.active_run_ids)
        if reconciled:
            logger.info(f"Reconciled {len(reconciled)} stale run(s) at startup")
    except WorkflowEngineError as e:
        logger.warning(f"Startup reconciliation failed: {str(e)}")


def create_app(config: Optional[AppConfig] = None, registry: Optional[ExecutorRegistry] = None) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        config: Configuration to use; the global configuration when omitted
        registry: Executor registry to run nodes with; built from `config` when omitted

    Returns:
        Configured FastAPI application
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(
            level=config.log_level.value,
            log_file=config.log_file,
            log_format=config.log_format,
            structured=config.structured_logging,
            max_size=config.log_max_size,
            backup_count=config.log_backup_count,
        )
        logger = get_logger(__name__)
        logger.info(f"Starting {config.app_name} v{config.app_version}")

        init_database(config.database_url, echo=config.database_echo)
        logger.info("Database tables created")

        workflow_manager, run_store, event_store, orchestrator = initialize_core_components(config, registry, logger)
        reconcile_on_startup(run_store, orchestrator, config, logger)

        init_dependencies(
            workflow_manager=workflow_manager,
            run_store=run_store,
            event_store=event_store,
            orchestrator=orchestrator,
            config=config,
        )
        app_state.config = config
        app_state.workflow_manager = workflow_manager
        app_state.run_store = run_store
        app_state.event_store = event_store
        app_state.orchestrator = orchestrator

        yield

        logger.info(f"Shutting down {config.app_name}")

    app = FastAPI(
        title=config.app_name,
        description="Executes linear workflows of trigger and action nodes",
        version=config.app_version,
        debug=config.debug,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    @app.exception_handler(WorkflowEngineError)
    async def workflow_engine_error_handler(request: Request, exc: WorkflowEngineError):
        get_logger(__name__).warning(f"Unhandled workflow engine error on {request.url.path}: {exc.message}")
        return JSONResponse(status_code=500, content=create_error_response(exc))

    app.include_router(router)

    @app.get("/")
    async def root():
        return {
            "message": f"{config.app_name} is running",
            "version": config.app_version,
            "timestamp": datetime.utcnow().isoformat(),
        }

    return app
