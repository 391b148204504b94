"""REST client for the WhatsApp bridge HTTP API."""

import logging
from typing import Any, Dict, Optional
import aiohttp

from ..exceptions import TransportError

logger = logging.getLogger(__name__)


class RestClient:
    """Async REST API client."""

    def __init__(self, server_url: str, token: Optional[str] = None) -> None:
        """
        Initialize REST client.

        Args:
            server_url: Base URL of the bridge (e.g., http://localhost:3001)
            token: Optional bearer token the bridge expects
        """
        self.server_url = server_url.rstrip("/")
        self._session: Optional[aiohttp.ClientSession] = None
        self._token = token

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for requests."""
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Send a request and decode the JSON response.

        Args:
            method: HTTP method
            path: API path (e.g., /messages)
            data: JSON request body
            params: Query parameters

        Returns:
            Response JSON data ({} for empty bodies)

        Raises:
            TransportError: If the request fails or the bridge answers with an error
        """
        url = f"{self.server_url}{path}"
        logger.debug(f"{method} {url}")

        try:
            session = await self._ensure_session()
            async with session.request(
                method, url, json=data, params=params, headers=self._get_headers()
            ) as response:
                if response.content_type == "application/json":
                    response_data = await response.json()
                else:
                    response_data = {}
                logger.debug(f"Response status: {response.status}")

                if response.status >= 400:
                    error = response_data.get("error") or response.reason
                    raise TransportError(f"Bridge returned {response.status}: {error}")
                return response_data

        except aiohttp.ClientError as e:
            logger.error(f"{method} request failed: {e}")
            raise TransportError(f"Request failed: {e}") from e

    async def post(self, path: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send POST request."""
        return await self.request("POST", path, data=data)

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send GET request."""
        return await self.request("GET", path, params=params)

    async def delete(self, path: str) -> Dict[str, Any]:
        """Send DELETE request."""
        return await self.request("DELETE", path)

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("REST client session closed")
