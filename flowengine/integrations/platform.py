"""Client for the hosted integration platform's "run action" RPC."""

from typing import Any, Dict, Optional, Protocol

import httpx

from ..core.exceptions import IntegrationError
from ..core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_PLATFORM_API_URI = "https://api.integration.app"


class PlatformClient(Protocol):
    """Runs a platform action on behalf of one customer token."""

    async def run_action(
        self,
        action_id: str,
        action_input: Dict[str, Any],
        connection_id: Optional[str] = None,
    ) -> Any:
        ...


class MembranePlatformClient:
    """`PlatformClient` backed by the platform's REST API."""

    def __init__(
        self,
        token: str,
        api_uri: str = DEFAULT_PLATFORM_API_URI,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token = token
        self.api_uri = api_uri.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def run_action(
        self,
        action_id: str,
        action_input: Dict[str, Any],
        connection_id: Optional[str] = None,
    ) -> Any:
        """
        Run an action and return the platform's response payload.

        Args:
            action_id: Platform action identifier
            action_input: Resolved input passed to the action
            connection_id: Optional connection to run the action through

        Raises:
            IntegrationError: If the platform rejects the call
        """
        url = f"{self.api_uri}/actions/{action_id}/run"
        params = {"connectionId": connection_id} if connection_id else None

        logger.info(f"Running platform action {action_id} (connection={connection_id})")

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                url,
                json=action_input,
                params=params,
                headers={"Authorization": f"Bearer {self.token}"},
            )

        if response.is_error:
            raise IntegrationError(
                f"Platform action {action_id} failed with status {response.status_code}: {response.text}",
                service="platform",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()
