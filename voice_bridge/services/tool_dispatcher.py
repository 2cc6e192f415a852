"""
Client for the external business backend that executes model tool calls.

Every function call the speech model issues becomes one HTTP POST to the backend.
Failures never propagate: they come back as ``{"error": message}`` so the model
can tell the caller something went wrong and the call stays up.
"""

import logging
import time
from typing import Any, Dict, Optional

import httpx

from voice_bridge.config.constants import DEFAULT_BACKEND_TIMEOUT_S, LOGGER_NAME
from voice_bridge.exceptions import BackendError

logger = logging.getLogger(LOGGER_NAME)


class ToolDispatcher:
    """
    Routes model function calls to the business backend.

    One instance is shared by all sessions. It holds no per-call state, only the
    pooled HTTP client.
    """

    def __init__(
        self,
        url: Optional[str],
        token: str = "",
        timeout: float = DEFAULT_BACKEND_TIMEOUT_S,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the dispatcher.

        Args:
            url: Backend endpoint; None disables dispatch
            token: Bearer credential sent with every request
            timeout: Total request timeout in seconds
            client: Optional preconfigured client (used by tests)
        """
        self.url = url
        self.token = token
        self.timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.url)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def dispatch(self, action: str, context_id: str, args: Dict[str, Any]) -> Dict[str, Any]:
        """
        Execute one tool call on the backend.

        Args:
            action: Function name issued by the model
            context_id: Identifier of the business context for this call
            args: Function arguments issued by the model

        Returns:
            The backend's result mapping, or ``{"error": message}`` on any failure
        """
        if not self.configured:
            logger.warning(f"Tool call '{action}' received but no backend is configured")
            return {"error": "Tool backend is not configured"}

        start_time = time.time()
        try:
            result = await self._post(action, context_id, args)
        except BackendError as e:
            logger.error(f"Tool call '{action}' failed: {e}")
            return {"error": str(e)}

        elapsed = (time.time() - start_time) * 1000
        logger.info(f"Tool call '{action}' completed in {elapsed:.0f}ms")
        return result

    async def _post(self, action: str, context_id: str, args: Dict[str, Any]) -> Dict[str, Any]:
        body = {"action": action, "contextId": context_id, "data": args or {}}
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            response = await self._get_client().post(self.url, json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise BackendError(f"Backend timeout after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Backend request failed: {e}") from e

        if not response.is_success:
            raise BackendError(f"Backend returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError("Backend returned a malformed response") from e

        if not isinstance(data, dict):
            return {"result": data}
        return data

    async def aclose(self) -> None:
        """Release the pooled HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
