"""Core Pydantic models for the workflow node engine."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Type, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from ..core.exceptions import MissingFieldError, UnsupportedNodeTypeError


class NodeKind(str, Enum):
    """Kinds of workflow nodes."""
    TRIGGER = "trigger"
    ACTION = "action"


class TriggerType(str, Enum):
    """Ways a workflow can be started."""
    MANUAL = "manual"
    EVENT = "event"


class ActionType(str, Enum):
    """Executable action node variants."""
    HTTP = "http"
    PLATFORM_ACTION = "platform-action"
    AI = "ai"
    GATE = "gate"


class WorkflowStatus(str, Enum):
    """Whether a workflow accepts ingested events."""
    ACTIVE = "active"
    INACTIVE = "inactive"


class RunStatus(str, Enum):
    """Enumeration of workflow run statuses."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


class ErrorKind(str, Enum):
    """Classification attached to every failed node result."""
    MISSING_FIELD = "MissingField"
    REFERENCE_ERROR = "ReferenceError"
    HTTP_ERROR = "HttpError"
    HTTP_EXECUTION_ERROR = "HttpExecutionError"
    ACTION_EXECUTION_ERROR = "ActionExecutionError"
    AI_EXECUTION_ERROR = "AiExecutionError"
    GATE_CONDITION_FAILED = "GateConditionFailed"
    UNSUPPORTED_TRIGGER_TYPE = "UnsupportedTriggerType"
    UNSUPPORTED_ACTION_TYPE = "UnsupportedActionType"
    NODE_EXECUTION_ERROR = "NodeExecutionError"
    EXECUTION_TIMEOUT = "ExecutionTimeout"


class HaltReason(str, Enum):
    """Why a run stopped at a node: an intentional gate block or a fault."""
    GATE_BLOCKED = "gate_blocked"
    ERROR = "error"


class CamelModel(BaseModel):
    """Base model accepting and emitting the camelCase keys used by stored workflows."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Node configuration variants
# ---------------------------------------------------------------------------

class NodeConfig(CamelModel):
    """Settings shared by every node variant."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    input_mapping: Dict[str, Any] = Field(default_factory=dict, description="Literal values and $var references")
    input_schema: Optional[Dict[str, Any]] = Field(None, description="Schema describing the node input")
    output_schema: Optional[Dict[str, Any]] = Field(None, description="Schema describing the node output")


class TriggerNodeConfig(NodeConfig):
    has_input: bool = False
    data_collection: Optional[str] = None


class HttpNodeConfig(NodeConfig):
    pass


class PlatformActionNodeConfig(NodeConfig):
    action_id: Optional[str] = None
    connection_id: Optional[str] = None
    integration_key: Optional[str] = None
    action_key: Optional[str] = None


class McpServerConfig(CamelModel):
    """Location of an external tool server used by an AI node."""
    url: Optional[str] = None
    type: Optional[Literal["sse", "http"]] = None
    headers: Dict[str, str] = Field(default_factory=dict)

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.type)


class AiNodeConfig(NodeConfig):
    structured_output: bool = True
    mcp: Optional[McpServerConfig] = None


class GateCondition(CamelModel):
    field: Optional[Union[str, Dict[str, Any]]] = None
    operator: Optional[str] = None
    value: Any = None

    @property
    def has_value(self) -> bool:
        return "value" in self.model_fields_set


class GateNodeConfig(NodeConfig):
    condition: Optional[GateCondition] = None


NODE_CONFIG_TYPES: Dict[Tuple[NodeKind, str], Type[NodeConfig]] = {
    (NodeKind.TRIGGER, TriggerType.MANUAL.value): TriggerNodeConfig,
    (NodeKind.TRIGGER, TriggerType.EVENT.value): TriggerNodeConfig,
    (NodeKind.ACTION, ActionType.HTTP.value): HttpNodeConfig,
    (NodeKind.ACTION, ActionType.PLATFORM_ACTION.value): PlatformActionNodeConfig,
    (NodeKind.ACTION, ActionType.AI.value): AiNodeConfig,
    (NodeKind.ACTION, ActionType.GATE.value): GateNodeConfig,
}


# ---------------------------------------------------------------------------
# Workflow definition
# ---------------------------------------------------------------------------

class WorkflowNode(CamelModel):
    """A single step of a workflow."""
    id: str = Field(..., description="Identifier unique within the workflow")
    name: str = Field(..., description="Display name, also usable in variable paths")
    kind: NodeKind = Field(..., validation_alias=AliasChoices("kind", "type"))
    trigger_type: Optional[str] = Field(None, description="Trigger variant when kind is trigger")
    action_type: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("action_type", "actionType", "nodeType"),
        serialization_alias="actionType",
        description="Action variant when kind is action",
    )
    config: Dict[str, Any] = Field(default_factory=dict, description="Variant specific settings")

    @field_validator('id', 'name')
    @classmethod
    def validate_not_blank(cls, value):
        if not value or not value.strip():
            raise ValueError("Node id and name cannot be empty")
        return value.strip()

    @field_validator('action_type')
    @classmethod
    def normalize_action_type(cls, action_type):
        # Older workflows stored platform actions as plain "action"
        if action_type == "action":
            return ActionType.PLATFORM_ACTION.value
        return action_type

    @field_validator('config', mode='before')
    @classmethod
    def default_config(cls, config):
        return config or {}

    @property
    def subtype(self) -> Optional[str]:
        """Trigger or action variant used to pick an executor."""
        if self.kind == NodeKind.TRIGGER:
            return self.trigger_type or TriggerType.MANUAL.value
        return self.action_type

    @property
    def input_mapping(self) -> Dict[str, Any]:
        mapping = self.config.get("inputMapping", self.config.get("input_mapping"))
        return mapping if isinstance(mapping, dict) else {}

    def typed_config(self) -> NodeConfig:
        """Parse the raw config into the payload type for this node's variant."""
        config_type = NODE_CONFIG_TYPES.get((self.kind, self.subtype))
        if config_type is None:
            noun = "trigger" if self.kind == NodeKind.TRIGGER else "action node"
            raise UnsupportedNodeTypeError(
                f"Unsupported {noun} type: {self.subtype}",
                kind=self.kind.value,
                subtype=self.subtype,
            )
        try:
            return config_type.model_validate(self.config)
        except ValidationError as e:
            raise MissingFieldError(
                f"Invalid configuration for node '{self.name}': {e.errors()[0]['msg']}",
                node_id=self.id,
            )


def validate_node_list(nodes: List[WorkflowNode]) -> List[str]:
    """Return every structural problem with an ordered node list."""
    errors = []
    node_ids = [node.id for node in nodes]
    if len(node_ids) != len(set(node_ids)):
        errors.append("All node IDs must be unique")

    trigger_positions = [index for index, node in enumerate(nodes) if node.kind == NodeKind.TRIGGER]
    if len(trigger_positions) > 1:
        errors.append("A workflow can contain at most one trigger node")
    if trigger_positions and trigger_positions[0] != 0:
        errors.append("The trigger node must be the first node")

    for node in nodes:
        if node.kind == NodeKind.TRIGGER and node.action_type:
            errors.append(f"Trigger node '{node.name}' cannot declare an action type")
        if node.kind == NodeKind.ACTION and node.trigger_type:
            errors.append(f"Action node '{node.name}' cannot declare a trigger type")
    return errors


class WorkflowDefinition(CamelModel):
    """An ordered, linear list of nodes: an optional trigger followed by actions."""
    name: str = Field(..., description="Name of the workflow")
    nodes: List[WorkflowNode] = Field(default_factory=list, description="Nodes in execution order")
    status: WorkflowStatus = Field(WorkflowStatus.INACTIVE, description="Active workflows accept ingested events")

    @field_validator('name')
    @classmethod
    def validate_name_not_empty(cls, name):
        if not name.strip():
            raise ValueError("Workflow name cannot be empty")
        return name.strip()

    @model_validator(mode='after')
    def validate_structure(self):
        errors = validate_node_list(self.nodes)
        if errors:
            raise ValueError("; ".join(errors))
        return self


# ---------------------------------------------------------------------------
# Execution results
# ---------------------------------------------------------------------------

class NodeError(CamelModel):
    kind: ErrorKind
    message: str
    details: Optional[Dict[str, Any]] = None


class NodeExecutionResult(CamelModel):
    """Immutable outcome of executing one node in one run."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Identifier unique per run and node")
    node_id: str
    node_name: Optional[str] = None
    success: bool
    input: Any = Field(default_factory=dict, description="Resolved input handed to the executor")
    output: Any = None
    error: Optional[NodeError] = None
    halt_reason: Optional[HaltReason] = None
    started_at: Optional[datetime] = None
    duration_ms: Optional[float] = None

    @property
    def message(self) -> str:
        if self.success:
            return f"{self.node_name} completed successfully" if self.node_name else "Success"
        return self.error.message if self.error else "Failed"

    def to_record(self) -> Dict[str, Any]:
        """JSON-ready form stored on the run record."""
        record = self.model_dump(mode="json", by_alias=True)
        record["message"] = self.message
        return record


class RunSummary(CamelModel):
    total_nodes: int = 0
    successful_nodes: int = 0
    failed_nodes: int = 0
    success_rate: float = 0.0

    @classmethod
    def from_results(cls, results: List[NodeExecutionResult]) -> "RunSummary":
        total = len(results)
        successful = sum(1 for result in results if result.success)
        return cls(
            total_nodes=total,
            successful_nodes=successful,
            failed_nodes=total - successful,
            success_rate=(successful / total) * 100 if total > 0 else 0.0,
        )


class WorkflowRun(CamelModel):
    """Durable record of one workflow execution."""
    id: str
    workflow_id: str
    status: RunStatus
    input: Dict[str, Any] = Field(default_factory=dict)
    nodes_snapshot: List[Dict[str, Any]] = Field(default_factory=list)
    results: List[Dict[str, Any]] = Field(default_factory=list)
    summary: RunSummary = Field(default_factory=RunSummary)
    started_at: datetime
    last_progress_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    execution_time: Optional[float] = Field(None, description="Wall time in milliseconds")
    error: Optional[str] = None


class WorkflowSummary(CamelModel):
    id: str
    name: str
    status: WorkflowStatus = WorkflowStatus.INACTIVE
    node_count: int
    created_at: datetime
    last_run_at: Optional[datetime] = None


class WorkflowEvent(CamelModel):
    """An event received for a workflow and the run it started, if any."""
    id: str
    workflow_id: str
    event_data: Dict[str, Any] = Field(default_factory=dict)
    received_at: datetime
    processed: bool = False
    run_id: Optional[str] = None
