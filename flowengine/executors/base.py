"""Common contract and helpers shared by all node executors."""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from ..core.exceptions import (
    MissingFieldError,
    ReferenceResolutionError,
    UnsupportedNodeTypeError,
    WorkflowEngineError,
)
from ..models.core import (
    ErrorKind,
    HaltReason,
    NodeError,
    NodeExecutionResult,
    NodeKind,
    WorkflowNode,
)


@dataclass(frozen=True)
class RunContext:
    """Per-run data handed to every executor.

    Credentials travel here rather than through globals so executors can be
    exercised with fake collaborators.
    """
    run_id: str
    platform_token: str = ""
    trigger_input: Dict[str, Any] = field(default_factory=dict)
    previous_results: Tuple[NodeExecutionResult, ...] = ()
    started_at: datetime = field(default_factory=datetime.utcnow)


def new_result_id(node: WorkflowNode) -> str:
    return f"{node.id}-{uuid.uuid4().hex[:12]}"


def error_kind_for(error: Exception, default: ErrorKind) -> ErrorKind:
    """Map an internal exception onto the error kind reported on a node result."""
    if isinstance(error, MissingFieldError):
        return ErrorKind.MISSING_FIELD
    if isinstance(error, ReferenceResolutionError):
        return ErrorKind.REFERENCE_ERROR
    if isinstance(error, UnsupportedNodeTypeError):
        if error.kind == NodeKind.TRIGGER.value:
            return ErrorKind.UNSUPPORTED_TRIGGER_TYPE
        return ErrorKind.UNSUPPORTED_ACTION_TYPE
    return default


def error_details(error: Exception) -> Dict[str, Any]:
    if isinstance(error, WorkflowEngineError):
        return {"type": error.error_code, **error.details}
    return {"type": type(error).__name__}


def success_result(node: WorkflowNode, node_input: Any, output: Any) -> NodeExecutionResult:
    return NodeExecutionResult(
        id=new_result_id(node),
        node_id=node.id,
        node_name=node.name,
        success=True,
        input=node_input,
        output=output,
    )


def failure_result(
    node: WorkflowNode,
    node_input: Any,
    kind: ErrorKind,
    message: str,
    details: Optional[Dict[str, Any]] = None,
    output: Any = None,
    halt_reason: HaltReason = HaltReason.ERROR,
) -> NodeExecutionResult:
    return NodeExecutionResult(
        id=new_result_id(node),
        node_id=node.id,
        node_name=node.name,
        success=False,
        input=node_input,
        output=output,
        error=NodeError(kind=kind, message=message, details=details),
        halt_reason=halt_reason,
    )


def result_from_exception(
    node: WorkflowNode,
    node_input: Any,
    error: Exception,
    default_kind: ErrorKind,
) -> NodeExecutionResult:
    return failure_result(
        node,
        node_input,
        error_kind_for(error, default_kind),
        str(error) or type(error).__name__,
        details=error_details(error),
    )


class NodeExecutor(ABC):
    """Executes one kind of node.

    Implementations report their own failures as failed results instead of
    raising.
    """

    @abstractmethod
    async def execute(
        self,
        node: WorkflowNode,
        resolved_input: Dict[str, Any],
        context: RunContext,
    ) -> NodeExecutionResult:
        ...
