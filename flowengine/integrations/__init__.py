"""Remote collaborators the engine calls into."""

from .platform import PlatformClient, MembranePlatformClient, DEFAULT_PLATFORM_API_URI
from .model import ModelClient, AnthropicModelClient, STRUCTURED_OUTPUT_TOOL
from .tool_server import ToolSet, ToolServerConnector, McpToolSet, McpToolServerConnector

__all__ = [
    "PlatformClient",
    "MembranePlatformClient",
    "DEFAULT_PLATFORM_API_URI",
    "ModelClient",
    "AnthropicModelClient",
    "STRUCTURED_OUTPUT_TOOL",
    "ToolSet",
    "ToolServerConnector",
    "McpToolSet",
    "McpToolServerConnector",
]
