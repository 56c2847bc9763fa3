"""AI node executor."""

import json
from contextlib import AsyncExitStack
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..core.exceptions import MissingFieldError
from ..core.logging import get_logger
from ..core.schema import validate_structured_output
from ..integrations.model import ModelClient
from ..integrations.tool_server import ToolServerConnector, ToolSet
from ..models.core import AiNodeConfig, ErrorKind, NodeExecutionResult, WorkflowNode
from .base import NodeExecutor, RunContext, error_details, failure_result, success_result

logger = get_logger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"


def build_prompt(prompt: str, context: RunContext, structured: bool) -> str:
    """Append the outputs of every earlier node to the user's prompt."""
    previous_steps = [
        {"node": result.node_name or result.node_id, "output": result.output}
        for result in context.previous_results
    ]
    parts = [
        prompt,
        "Available data from previous steps:",
        json.dumps(previous_steps, indent=2, default=str),
    ]
    if structured:
        parts.append("Please provide the response according to the specified schema.")
    return "\n".join(parts)


class AiExecutor(NodeExecutor):
    """
    Calls the AI model with the node's prompt.

    In structured mode the model's answer is validated against the node's
    ``outputSchema``; otherwise the output is ``{"text": ...}``. When the node
    names a tool server, a connection is held open for the model call only.
    """

    def __init__(
        self,
        model_client: ModelClient,
        tool_connector: Optional[ToolServerConnector] = None,
        model: str = DEFAULT_MODEL,
    ):
        self.model_client = model_client
        self.tool_connector = tool_connector
        self.model = model

    async def _open_tools(self, stack: AsyncExitStack, config: AiNodeConfig, node: WorkflowNode) -> Optional[ToolSet]:
        if config.mcp is None or not config.mcp.is_configured or self.tool_connector is None:
            return None
        try:
            return await stack.enter_async_context(
                self.tool_connector.open(config.mcp.url, config.mcp.type, config.mcp.headers)
            )
        except Exception as e:
            logger.error(f"Failed to connect to tool server {config.mcp.url} for node {node.id}: {str(e)}")
            return None

    async def execute(
        self,
        node: WorkflowNode,
        resolved_input: Dict[str, Any],
        context: RunContext,
    ) -> NodeExecutionResult:
        try:
            config = node.typed_config()
            prompt = resolved_input.get("prompt")
            if not prompt or not isinstance(prompt, str):
                raise MissingFieldError("AI node requires prompt in inputMapping", field="prompt", node_id=node.id)
            if config.structured_output and not config.output_schema:
                raise MissingFieldError(
                    "AI node with structured output requires outputSchema in config",
                    field="outputSchema",
                    node_id=node.id,
                )
        except MissingFieldError as e:
            return failure_result(node, resolved_input, ErrorKind.AI_EXECUTION_ERROR, e.message, details=error_details(e))

        output_schema = config.output_schema if config.structured_output else None
        full_prompt = build_prompt(prompt, context, structured=output_schema is not None)

        try:
            async with AsyncExitStack() as stack:
                tools = await self._open_tools(stack, config, node)
                value = await self.model_client.generate(
                    self.model,
                    full_prompt,
                    output_schema=output_schema,
                    tools=tools,
                )
                if output_schema is not None:
                    output = validate_structured_output(output_schema, value)
                else:
                    output = {"text": value if isinstance(value, str) else str(value)}
        except ValidationError as e:
            return failure_result(
                node,
                resolved_input,
                ErrorKind.AI_EXECUTION_ERROR,
                f"Model output does not match outputSchema: {e.errors()[0]['msg']}",
                details={"type": "ValidationError", "errors": _error_locations(e)},
            )
        except Exception as e:
            logger.warning(f"AI call failed for node {node.id}: {str(e)}")
            return failure_result(
                node,
                resolved_input,
                ErrorKind.AI_EXECUTION_ERROR,
                str(e) or type(e).__name__,
                details=error_details(e),
            )

        return success_result(node, resolved_input, output)


def _error_locations(error: ValidationError) -> List[str]:
    return [".".join(str(part) for part in item["loc"]) for item in error.errors()]
