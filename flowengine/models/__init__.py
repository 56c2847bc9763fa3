"""Data models for the workflow node engine."""

from .core import (
    NodeKind,
    TriggerType,
    ActionType,
    RunStatus,
    WorkflowStatus,
    ErrorKind,
    HaltReason,
    NodeConfig,
    TriggerNodeConfig,
    HttpNodeConfig,
    PlatformActionNodeConfig,
    AiNodeConfig,
    McpServerConfig,
    GateCondition,
    GateNodeConfig,
    WorkflowNode,
    WorkflowDefinition,
    NodeError,
    NodeExecutionResult,
    RunSummary,
    WorkflowRun,
    WorkflowSummary,
    WorkflowEvent,
    validate_node_list,
)

__all__ = [
    "NodeKind",
    "TriggerType",
    "ActionType",
    "RunStatus",
    "WorkflowStatus",
    "ErrorKind",
    "HaltReason",
    "NodeConfig",
    "TriggerNodeConfig",
    "HttpNodeConfig",
    "PlatformActionNodeConfig",
    "AiNodeConfig",
    "McpServerConfig",
    "GateCondition",
    "GateNodeConfig",
    "WorkflowNode",
    "WorkflowDefinition",
    "NodeError",
    "NodeExecutionResult",
    "RunSummary",
    "WorkflowRun",
    "WorkflowSummary",
    "WorkflowEvent",
    "validate_node_list",
]
