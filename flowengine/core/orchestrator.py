"""Run Orchestrator: executes a workflow's nodes in order and records the outcome."""

import asyncio
import time
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Set, Union

from pydantic import ValidationError

from ..executors.base import RunContext, failure_result, result_from_exception
from ..executors.registry import ExecutorRegistry, create_executor_registry
from ..models.core import ErrorKind, HaltReason, NodeError, NodeExecutionResult, RunStatus, RunSummary, WorkflowNode
from .exceptions import ReferenceResolutionError, UnsupportedNodeTypeError
from .logging import get_logger, set_logging_context, clear_logging_context
from .run_store import RunStore
from .variable_resolver import resolve_variables

logger = get_logger(__name__)


def invalid_node_result(raw_node: Any, position: int, error: ValidationError) -> NodeExecutionResult:
    """Failed result for a stored node that no longer parses as a `WorkflowNode`."""
    fields = raw_node if isinstance(raw_node, dict) else {}
    node_id = str(fields.get("id") or f"node-{position}")
    problems = [
        f"{'.'.join(str(part) for part in problem['loc']) or 'node'}: {problem['msg']}"
        for problem in error.errors()
    ]
    return NodeExecutionResult(
        id=f"{node_id}-{uuid.uuid4().hex[:12]}",
        node_id=node_id,
        node_name=fields.get("name") if isinstance(fields.get("name"), str) else None,
        success=False,
        input=fields.get("inputMapping") or {},
        error=NodeError(
            kind=ErrorKind.NODE_EXECUTION_ERROR,
            message=f"Invalid node definition at position {position}: {'; '.join(problems)}",
            details={"type": "ValidationError", "errors": problems},
        ),
        halt_reason=HaltReason.ERROR,
        started_at=datetime.utcnow(),
        duration_ms=0.0,
    )


class WorkflowOrchestrator:
    """
    Executes nodes strictly one after another within a run.

    The first failed result stops the run. Nothing escapes from a node: a
    node that does not parse, an exception leaking out of an executor, or an
    executor exceeding `node_timeout` is recorded as a failed result like any
    other failure. Node executions are never retried.

    `active_run_ids` holds the runs currently executing in this process so
    reconciliation can leave them alone.
    """

    def __init__(
        self,
        registry: ExecutorRegistry,
        run_store: Optional[RunStore] = None,
        node_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.run_store = run_store
        self.node_timeout = node_timeout
        self.active_run_ids: Set[str] = set()

    async def execute_workflow_nodes(
        self,
        nodes: Sequence[Union[WorkflowNode, Dict[str, Any]]],
        platform_token: str,
        trigger_input: Optional[Dict[str, Any]],
        run_id: str,
    ) -> List[NodeExecutionResult]:
        """
        Execute `nodes` in order and persist the run's terminal state.

        Results gathered so far are written to the run record after every
        node that lets the run continue.

        Args:
            nodes: Ordered node list (models or their stored dict form)
            platform_token: Credential for platform action nodes
            trigger_input: Payload the run was started with
            run_id: Run record to finalize

        Returns:
            List[NodeExecutionResult]: One result per executed node; the last
            one is the failure when the run stopped early
        """
        context_token = set_logging_context(run_id=run_id)
        self.active_run_ids.add(run_id)
        started_at = datetime.utcnow()
        start_time = time.perf_counter()
        results: List[NodeExecutionResult] = []

        try:
            logger.info(f"Starting run {run_id} with {len(nodes)} node(s)")

            for position, raw_node in enumerate(nodes):
                try:
                    node = raw_node if isinstance(raw_node, WorkflowNode) else WorkflowNode.model_validate(raw_node)
                except ValidationError as e:
                    result = invalid_node_result(raw_node, position, e)
                else:
                    context = RunContext(
                        run_id=run_id,
                        platform_token=platform_token or "",
                        trigger_input=dict(trigger_input or {}),
                        previous_results=tuple(results),
                        started_at=started_at,
                    )
                    result = await self._execute_node(node, context)
                results.append(result)

                if not result.success:
                    logger.warning(
                        f"Node '{result.node_name}' ({result.node_id}) failed with {result.error.kind.value}: "
                        f"{result.message}; stopping run"
                    )
                    break
                logger.info(f"Node '{result.node_name}' ({result.node_id}) completed in {result.duration_ms:.1f}ms")
                if position < len(nodes) - 1:
                    await self._record_progress(run_id, results)

            status = RunStatus.COMPLETED if all(result.success for result in results) else RunStatus.FAILED
            execution_time = (time.perf_counter() - start_time) * 1000
            logger.info(f"Run {run_id} finished as {status.value} after {len(results)} node(s)")

            await self._persist(run_id, status, results, execution_time)
            return results
        finally:
            self.active_run_ids.discard(run_id)
            clear_logging_context(context_token)

    async def _execute_node(self, node: WorkflowNode, context: RunContext) -> NodeExecutionResult:
        node_context = set_logging_context(node_id=node.id)
        node_started_at = datetime.utcnow()
        node_start = time.perf_counter()
        try:
            logger.debug(f"Executing node '{node.name}' ({node.kind.value}/{node.subtype})")
            result = await self._dispatch(node, context)
        finally:
            clear_logging_context(node_context)

        return result.model_copy(update={
            "started_at": node_started_at,
            "duration_ms": (time.perf_counter() - node_start) * 1000,
        })

    async def _dispatch(self, node: WorkflowNode, context: RunContext) -> NodeExecutionResult:
        try:
            resolved_input = resolve_variables(node.input_mapping, context.previous_results)
        except ReferenceResolutionError as e:
            return result_from_exception(node, node.input_mapping, e, ErrorKind.REFERENCE_ERROR)

        try:
            executor = self.registry.get_executor(node)
        except UnsupportedNodeTypeError as e:
            return result_from_exception(node, resolved_input, e, ErrorKind.UNSUPPORTED_ACTION_TYPE)

        try:
            return await asyncio.wait_for(
                executor.execute(node, resolved_input, context),
                timeout=self.node_timeout,
            )
        except asyncio.TimeoutError:
            return failure_result(
                node,
                resolved_input,
                ErrorKind.EXECUTION_TIMEOUT,
                f"Node '{node.name}' did not finish within {self.node_timeout} seconds",
                details={"timeout": self.node_timeout},
            )
        except Exception as e:
            logger.error(f"Executor for node {node.id} raised: {str(e)}", exc_info=True)
            return failure_result(
                node,
                resolved_input,
                ErrorKind.NODE_EXECUTION_ERROR,
                str(e) or type(e).__name__,
                details={"type": type(e).__name__},
            )

    async def _record_progress(self, run_id: str, results: List[NodeExecutionResult]) -> None:
        if self.run_store is None:
            return

        try:
            await asyncio.to_thread(
                self.run_store.record_progress,
                run_id,
                [result.to_record() for result in results],
                RunSummary.from_results(results),
            )
        except Exception as e:
            # The terminal write still carries every result
            logger.warning(f"Failed to record progress of run {run_id}: {str(e)}")

    async def _persist(
        self,
        run_id: str,
        status: RunStatus,
        results: List[NodeExecutionResult],
        execution_time: float,
    ) -> None:
        if self.run_store is None:
            return

        failed = next((result for result in results if not result.success), None)
        try:
            await asyncio.to_thread(
                self.run_store.update,
                run_id,
                status,
                [result.to_record() for result in results],
                RunSummary.from_results(results),
                datetime.utcnow(),
                execution_time,
                failed.message if failed else None,
            )
        except Exception as e:
            # The caller still gets the results; the record may stay "running"
            logger.error(f"Failed to persist outcome of run {run_id}: {str(e)}", exc_info=True)


_default_orchestrator: Optional[WorkflowOrchestrator] = None


def get_default_orchestrator() -> WorkflowOrchestrator:
    """Orchestrator built from the global configuration, created on first use."""
    global _default_orchestrator
    if _default_orchestrator is None:
        from ..config import get_config

        config = get_config()
        _default_orchestrator = WorkflowOrchestrator(
            create_executor_registry(config),
            run_store=RunStore(),
            node_timeout=config.node_timeout,
        )
    return _default_orchestrator


def reset_default_orchestrator() -> None:
    global _default_orchestrator
    _default_orchestrator = None


async def execute_workflow_nodes(
    nodes: Sequence[Union[WorkflowNode, Dict[str, Any]]],
    platform_token: str,
    trigger_input: Optional[Dict[str, Any]],
    run_id: str,
) -> List[NodeExecutionResult]:
    """Execute a node list with the default orchestrator."""
    return await get_default_orchestrator().execute_workflow_nodes(nodes, platform_token, trigger_input, run_id)
