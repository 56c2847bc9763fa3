"""Platform action node executor."""

from typing import Any, Callable, Dict

from ..core.exceptions import MissingFieldError
from ..core.logging import get_logger
from ..integrations.platform import PlatformClient
from ..models.core import ErrorKind, NodeExecutionResult, PlatformActionNodeConfig, WorkflowNode
from .base import NodeExecutor, RunContext, error_details, failure_result, result_from_exception, success_result

logger = get_logger(__name__)

PlatformClientFactory = Callable[[str], PlatformClient]


class PlatformActionExecutor(NodeExecutor):
    """Runs an action on the integration platform using the run's platform token."""

    def __init__(self, client_factory: PlatformClientFactory):
        self.client_factory = client_factory

    async def execute(
        self,
        node: WorkflowNode,
        resolved_input: Dict[str, Any],
        context: RunContext,
    ) -> NodeExecutionResult:
        try:
            config = node.typed_config()
            if not isinstance(config, PlatformActionNodeConfig) or not config.action_id:
                raise MissingFieldError(
                    "Action node requires actionId in config", field="actionId", node_id=node.id
                )
        except MissingFieldError as e:
            return failure_result(node, resolved_input, ErrorKind.MISSING_FIELD, e.message, details=error_details(e))

        try:
            client = self.client_factory(context.platform_token)
            output = await client.run_action(
                config.action_id,
                resolved_input,
                connection_id=config.connection_id,
            )
        except Exception as e:
            logger.warning(f"Platform action {config.action_id} failed for node {node.id}: {str(e)}")
            return result_from_exception(node, resolved_input, e, ErrorKind.ACTION_EXECUTION_ERROR)

        return success_result(node, resolved_input, output)
