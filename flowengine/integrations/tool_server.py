"""Scoped connections to external MCP tool servers."""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.streamable_http import streamablehttp_client

from ..core.exceptions import IntegrationError
from ..core.logging import get_logger

logger = get_logger(__name__)


class ToolSet(Protocol):
    """Tools exposed by a connected tool server."""

    @property
    def definitions(self) -> List[Dict[str, Any]]:
        """Tool definitions as `{name, description, input_schema}` dicts."""
        ...

    async def call(self, name: str, arguments: Dict[str, Any]) -> str:
        ...


class ToolServerConnector(Protocol):
    """Opens a tool server connection for the duration of an `async with` block."""

    def open(self, url: str, transport: str, headers: Optional[Dict[str, str]] = None):
        ...


class McpToolSet:
    """Tool set backed by an initialized MCP client session."""

    def __init__(self, session: ClientSession, tools: List[Any]):
        self._session = session
        self._tools = tools

    @property
    def definitions(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": tool.name,
                "description": tool.description or "",
                "input_schema": tool.inputSchema or {"type": "object", "properties": {}},
            }
            for tool in self._tools
        ]

    async def call(self, name: str, arguments: Dict[str, Any]) -> str:
        result = await self._session.call_tool(name, arguments)
        text = "\n".join(
            getattr(item, "text", "") for item in result.content if getattr(item, "type", None) == "text"
        )
        if result.isError:
            raise IntegrationError(f"Tool {name} failed: {text}", service="tool_server")
        return text


class McpToolServerConnector:
    """`ToolServerConnector` speaking MCP over SSE or streamable HTTP."""

    @asynccontextmanager
    async def open(
        self,
        url: str,
        transport: str,
        headers: Optional[Dict[str, str]] = None,
    ) -> AsyncIterator[McpToolSet]:
        if transport == "sse":
            client = sse_client(url, headers=headers or None)
        elif transport == "http":
            client = streamablehttp_client(url, headers=headers or None)
        else:
            raise IntegrationError(f"Unsupported tool server transport: {transport}", service="tool_server")

        async with client as streams:
            read_stream, write_stream = streams[0], streams[1]
            async with ClientSession(read_stream, write_stream) as session:
                await session.initialize()
                listing = await session.list_tools()
                logger.info(f"Loaded {len(listing.tools)} tools from {url}")
                yield McpToolSet(session, listing.tools)
