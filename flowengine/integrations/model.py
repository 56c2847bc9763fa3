"""AI model collaborator used by AI nodes."""

from typing import Any, Dict, List, Optional, Protocol

import anthropic

from ..core.exceptions import ConfigurationError, IntegrationError
from ..core.logging import get_logger
from .tool_server import ToolSet

logger = get_logger(__name__)

STRUCTURED_OUTPUT_TOOL = "structured_output"


class ModelClient(Protocol):
    """Generates text, or a value matching `output_schema` when one is given."""

    async def generate(
        self,
        model: str,
        prompt: str,
        output_schema: Optional[Dict[str, Any]] = None,
        tools: Optional[ToolSet] = None,
    ) -> Any:
        ...


class AnthropicModelClient:
    """`ModelClient` backed by the Anthropic messages API.

    Structured output is requested by forcing the model to call a
    ``structured_output`` tool whose input schema is the node's output schema.
    Tool-server tools are offered alongside it and their calls are answered
    in a loop bounded by `max_tool_rounds`.
    """

    def __init__(
        self,
        api_key: Optional[str],
        max_tokens: int = 4096,
        max_tool_rounds: int = 8,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ):
        self.api_key = api_key
        self.max_tokens = max_tokens
        self.max_tool_rounds = max_tool_rounds
        self._client = client

    def _get_client(self) -> anthropic.AsyncAnthropic:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("ANTHROPIC_API_KEY is not set", config_key="anthropic_api_key")
            self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
        return self._client

    async def generate(
        self,
        model: str,
        prompt: str,
        output_schema: Optional[Dict[str, Any]] = None,
        tools: Optional[ToolSet] = None,
    ) -> Any:
        client = self._get_client()

        tool_definitions: List[Dict[str, Any]] = list(tools.definitions) if tools else []
        wrapped = False
        if output_schema is not None:
            if output_schema.get("type") == "object":
                input_schema = output_schema
            else:
                # Tool inputs must be objects
                input_schema = {"type": "object", "properties": {"value": output_schema}, "required": ["value"]}
                wrapped = True
            tool_definitions.append({
                "name": STRUCTURED_OUTPUT_TOOL,
                "description": "Return the final answer in the required structure.",
                "input_schema": input_schema,
            })

        messages: List[Dict[str, Any]] = [{"role": "user", "content": prompt}]

        for round_number in range(1, self.max_tool_rounds + 1):
            request: Dict[str, Any] = {
                "model": model,
                "max_tokens": self.max_tokens,
                "messages": messages,
            }
            if tool_definitions:
                request["tools"] = tool_definitions
            if output_schema is not None:
                request["tool_choice"] = {"type": "any"}

            response = await client.messages.create(**request)
            tool_uses = [block for block in response.content if block.type == "tool_use"]

            for block in tool_uses:
                if block.name == STRUCTURED_OUTPUT_TOOL:
                    return block.input.get("value") if wrapped else block.input

            if not tool_uses:
                if output_schema is not None:
                    raise IntegrationError("Model did not return structured output", service="model")
                return "".join(block.text for block in response.content if block.type == "text")

            if tools is None:
                raise IntegrationError(
                    f"Model requested unknown tool {tool_uses[0].name}", service="model"
                )

            logger.debug(f"Model round {round_number} requested {len(tool_uses)} tool call(s)")
            messages.append({"role": "assistant", "content": response.content})
            messages.append({"role": "user", "content": [
                await self._call_tool(tools, block) for block in tool_uses
            ]})

        raise IntegrationError(
            f"Model did not finish within {self.max_tool_rounds} tool rounds", service="model"
        )

    async def _call_tool(self, tools: ToolSet, block: Any) -> Dict[str, Any]:
        try:
            content = await tools.call(block.name, block.input)
            is_error = False
        except Exception as e:
            # The failure goes back to the model as the tool's answer
            logger.warning(f"Tool {block.name} failed: {str(e)}")
            content = str(e)
            is_error = True
        return {
            "type": "tool_result",
            "tool_use_id": block.id,
            "content": content,
            "is_error": is_error,
        }
