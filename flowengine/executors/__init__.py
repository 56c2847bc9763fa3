"""Node executors, one per trigger or action variant."""

from .base import RunContext, NodeExecutor, success_result, failure_result
from .trigger import TriggerExecutor
from .http import HttpExecutor, build_request_url
from .platform_action import PlatformActionExecutor
from .ai import AiExecutor, build_prompt
from .gate import GateExecutor, values_equal
from .registry import ExecutorRegistry, create_executor_registry

__all__ = [
    "RunContext",
    "NodeExecutor",
    "success_result",
    "failure_result",
    "TriggerExecutor",
    "HttpExecutor",
    "build_request_url",
    "PlatformActionExecutor",
    "AiExecutor",
    "build_prompt",
    "GateExecutor",
    "values_equal",
    "ExecutorRegistry",
    "create_executor_registry",
]
