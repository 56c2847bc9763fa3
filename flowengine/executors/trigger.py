"""Trigger node executor."""

from datetime import datetime, timezone
from typing import Any, Dict

from ..models.core import ErrorKind, NodeExecutionResult, TriggerType, WorkflowNode
from .base import NodeExecutor, RunContext, failure_result, success_result

DEFAULT_EVENTS = {
    TriggerType.MANUAL.value: "manual.trigger",
    TriggerType.EVENT.value: "workflow.triggered",
}


class TriggerExecutor(NodeExecutor):
    """Stamps the run's trigger payload as the first node's output."""

    async def execute(
        self,
        node: WorkflowNode,
        resolved_input: Dict[str, Any],
        context: RunContext,
    ) -> NodeExecutionResult:
        trigger_type = node.subtype
        node_input = {**resolved_input, **context.trigger_input}

        if trigger_type not in DEFAULT_EVENTS:
            return failure_result(
                node,
                node_input,
                ErrorKind.UNSUPPORTED_TRIGGER_TYPE,
                f"Unsupported trigger type: {trigger_type}",
                details={"triggerType": trigger_type},
            )

        output = {
            "triggerType": trigger_type,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": resolved_input.get("event") or DEFAULT_EVENTS[trigger_type],
            **context.trigger_input,
        }
        return success_result(node, node_input, output)
