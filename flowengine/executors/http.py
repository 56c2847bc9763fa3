"""HTTP request node executor."""

import json
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from ..core.exceptions import MissingFieldError
from ..core.logging import get_logger
from ..models.core import ErrorKind, NodeExecutionResult, WorkflowNode
from .base import NodeExecutor, RunContext, error_details, failure_result, success_result

logger = get_logger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}


def build_request_url(uri: str, query_parameters: Any) -> str:
    """Append `[{key, value}, ...]` query parameters to `uri`, keeping any existing query."""
    if not isinstance(query_parameters, list):
        return uri

    pairs = []
    for param in query_parameters:
        if isinstance(param, dict) and param.get("key") and param.get("value") is not None:
            pairs.append((str(param["key"]), str(param["value"])))

    query_string = urlencode(pairs)
    if not query_string:
        return uri
    return f"{uri}{'&' if '?' in uri else '?'}{query_string}"


def _parse_body(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class HttpExecutor(NodeExecutor):
    """Sends the request described by the node's resolved input.

    Non-2xx responses are captured as data; only transport failures are
    reported as execution errors.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self._transport = transport

    def _build_request(self, resolved_input: Dict[str, Any]) -> Dict[str, Any]:
        uri = resolved_input.get("uri")
        method = resolved_input.get("method")
        if not uri or not isinstance(uri, str):
            raise MissingFieldError("HTTP node requires uri in inputMapping", field="uri")
        if not method or not isinstance(method, str):
            raise MissingFieldError("HTTP node requires method in inputMapping", field="method")

        method = method.upper()
        headers = {"Content-Type": "application/json"}
        caller_headers = resolved_input.get("headers")
        if isinstance(caller_headers, dict):
            headers.update({str(key): str(value) for key, value in caller_headers.items()})

        body = resolved_input.get("body")
        content = None
        if method in BODY_METHODS and body is not None and body != "":
            payload = json.loads(body) if isinstance(body, str) else body
            content = json.dumps(payload)

        return {
            "method": method,
            "url": build_request_url(uri, resolved_input.get("queryParameters")),
            "headers": headers,
            "content": content,
        }

    async def execute(
        self,
        node: WorkflowNode,
        resolved_input: Dict[str, Any],
        context: RunContext,
    ) -> NodeExecutionResult:
        try:
            node.typed_config()
            request = self._build_request(resolved_input)
        except MissingFieldError as e:
            return failure_result(node, resolved_input, ErrorKind.MISSING_FIELD, e.message, details=error_details(e))
        except ValueError as e:
            return failure_result(
                node, resolved_input, ErrorKind.HTTP_EXECUTION_ERROR,
                f"Request body is not valid JSON: {str(e)}",
            )

        logger.info(f"HTTP {request['method']} {request['url']} (node {node.id}, run {context.run_id})")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                response = await client.request(**request)
        except httpx.HTTPError as e:
            logger.warning(f"HTTP request for node {node.id} failed: {str(e)}")
            return failure_result(
                node, resolved_input, ErrorKind.HTTP_EXECUTION_ERROR,
                str(e) or type(e).__name__,
                details={"type": type(e).__name__, "url": request["url"]},
            )

        output = {
            "statusCode": response.status_code,
            "headers": dict(response.headers),
            "body": _parse_body(response),
        }

        if 200 <= response.status_code < 300:
            return success_result(node, resolved_input, output)

        return failure_result(
            node,
            resolved_input,
            ErrorKind.HTTP_ERROR,
            f"HTTP {request['method']} request failed with status {response.status_code}",
            details={"status": response.status_code, "statusText": response.reason_phrase},
            output=output,
        )
