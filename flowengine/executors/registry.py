"""Executor Registry mapping node variants to their executors."""

from typing import Dict, Optional

import httpx

from ..core.exceptions import UnsupportedNodeTypeError
from ..core.logging import get_logger
from ..integrations.model import AnthropicModelClient, ModelClient
from ..integrations.platform import MembranePlatformClient
from ..integrations.tool_server import McpToolServerConnector, ToolServerConnector
from ..models.core import ActionType, NodeKind, WorkflowNode
from .ai import AiExecutor
from .base import NodeExecutor
from .gate import GateExecutor
from .http import HttpExecutor
from .platform_action import PlatformActionExecutor, PlatformClientFactory
from .trigger import TriggerExecutor

logger = get_logger(__name__)


class ExecutorRegistry:
    """Registry of executors keyed by action type, plus one trigger executor."""

    def __init__(self):
        self._trigger_executor: Optional[NodeExecutor] = None
        self._action_executors: Dict[str, NodeExecutor] = {}

    def register_trigger(self, executor: NodeExecutor) -> None:
        """Register the executor used for every trigger node.

        The trigger executor reports unknown trigger types itself.
        """
        self._trigger_executor = executor

    def register_action(self, action_type: str, executor: NodeExecutor) -> None:
        """Register the executor for one action type, replacing any previous one."""
        if not action_type or not action_type.strip():
            raise ValueError("Action type cannot be empty")
        action_type = action_type.strip()
        if action_type in self._action_executors:
            logger.warning(f"Replacing executor registered for action type '{action_type}'")
        self._action_executors[action_type] = executor

    def get_executor(self, node: WorkflowNode) -> NodeExecutor:
        """Return the executor for a node.

        Raises:
            UnsupportedNodeTypeError: If nothing is registered for the node's variant
        """
        if node.kind == NodeKind.TRIGGER:
            if self._trigger_executor is None:
                raise UnsupportedNodeTypeError(
                    f"Unsupported trigger type: {node.subtype}",
                    kind=node.kind.value,
                    subtype=node.subtype,
                )
            return self._trigger_executor

        executor = self._action_executors.get(node.subtype or "")
        if executor is None:
            raise UnsupportedNodeTypeError(
                f"Unsupported action node type: {node.subtype}",
                kind=node.kind.value,
                subtype=node.subtype,
            )
        return executor

    def list_action_types(self) -> list:
        return sorted(self._action_executors)


def create_executor_registry(
    config,
    platform_client_factory: Optional[PlatformClientFactory] = None,
    model_client: Optional[ModelClient] = None,
    tool_connector: Optional[ToolServerConnector] = None,
    http_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExecutorRegistry:
    """
    Build a registry with the built-in executors.

    Args:
        config: Application configuration supplying timeouts, endpoints and keys
        platform_client_factory: Builds a platform client from a platform token
        model_client: AI model collaborator
        tool_connector: Tool server connector for AI nodes
        http_transport: Transport for HTTP nodes, mainly for tests

    Returns:
        Registry with trigger, http, platform-action, ai and gate executors
    """
    if platform_client_factory is None:
        def platform_client_factory(token: str) -> MembranePlatformClient:
            return MembranePlatformClient(token, api_uri=config.platform_api_uri, timeout=config.http_timeout)

    if model_client is None:
        model_client = AnthropicModelClient(
            config.anthropic_api_key,
            max_tokens=config.ai_max_tokens,
            max_tool_rounds=config.ai_max_tool_rounds,
        )

    if tool_connector is None:
        tool_connector = McpToolServerConnector()

    registry = ExecutorRegistry()
    registry.register_trigger(TriggerExecutor())
    registry.register_action(ActionType.HTTP.value, HttpExecutor(timeout=config.http_timeout, transport=http_transport))
    registry.register_action(ActionType.PLATFORM_ACTION.value, PlatformActionExecutor(platform_client_factory))
    registry.register_action(ActionType.AI.value, AiExecutor(model_client, tool_connector, model=config.ai_model))
    registry.register_action(ActionType.GATE.value, GateExecutor())
    return registry
