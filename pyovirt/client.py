import abc
import asyncio
import json
import logging
import ssl
from typing import Any, Dict, Optional

import aiohttp

from .exceptions import OvirtConnectionError, OvirtError, error_for_status

logger = logging.getLogger("pyovirt")


class Transport(abc.ABC):
    """Request/response access to the engine's REST API.

    Paths are relative to the API root. Bodies and results are JSON-shaped
    dicts. Failures are raised as classified OvirtErrors.
    """

    @abc.abstractmethod
    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        ...

    @abc.abstractmethod
    async def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        ...

    @abc.abstractmethod
    async def put(self, path: str, data: Dict[str, Any]) -> Any:
        ...

    @abc.abstractmethod
    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> None:
        ...

    async def close(self) -> None:
        """Close the transport resources."""


class OvirtClient(Transport):
    """aiohttp transport. Each request runs in its own session."""

    def __init__(
        self,
        base_url: str,
        username: str,
        password: Optional[str],
        timeout: aiohttp.ClientTimeout,
        verify_ssl: bool = True,
        ca_file: Optional[str] = None,
        debug: bool = False,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth = aiohttp.BasicAuth(username, password or "")
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.ca_file = ca_file
        self.debug = debug

    def _create_connector(self) -> aiohttp.TCPConnector:
        """Create a new connector for each session."""
        if not self.verify_ssl:
            ssl_context: Any = False
        elif self.ca_file:
            ssl_context = ssl.create_default_context(cafile=self.ca_file)
        else:
            ssl_context = True
        return aiohttp.TCPConnector(
            force_close=True,
            enable_cleanup_closed=True,
            limit=10,
            ssl=ssl_context,
        )

    def _headers(self, with_body: bool) -> Dict[str, str]:
        headers = {
            "Accept": "application/json",
            "Version": "4",
            "Connection": "close",
        }
        if with_body:
            headers["Content-Type"] = "application/json"
        return headers

    def _log_debug(self, message: str, **kwargs) -> None:
        """Log debug information if debug mode is enabled."""
        if self.debug:
            logger.debug(message)
            if kwargs:
                logger.debug(json.dumps(kwargs, indent=2, default=str))

    async def _request(
        self,
        method: str,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        operation = f"{method} {path}"
        if self.debug:
            self.print_curl(method, path, data)
        connector = self._create_connector()
        try:
            async with aiohttp.ClientSession(
                timeout=self.timeout,
                connector=connector,
                auth=self.auth,
                headers=self._headers(data is not None),
            ) as session:
                async with session.request(method, url, json=data, params=params) as response:
                    text = await response.text()
                    if response.status >= 400:
                        self._log_debug(
                            f"{operation} request failed",
                            status_code=response.status,
                            response_text=text,
                        )
                        reason, detail = _parse_fault(text)
                        raise error_for_status(
                            response.status,
                            reason or response.reason,
                            detail,
                            operation=operation,
                        )
                    if not text.strip():
                        return None
                    try:
                        return json.loads(text)
                    except ValueError as e:
                        raise OvirtError(
                            f"Invalid JSON in response to {operation}",
                            cause=e,
                        ) from e
        except OvirtError:
            raise
        except aiohttp.ClientConnectionError as e:
            raise OvirtConnectionError(f"Failed to connect to engine during {operation}", cause=e) from e
        except asyncio.TimeoutError as e:
            raise OvirtConnectionError(f"Request timed out during {operation}", cause=e) from e
        except aiohttp.ClientError as e:
            raise OvirtConnectionError(f"HTTP client error during {operation}", cause=e) from e
        finally:
            await connector.close()

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Make a GET request."""
        return await self._request("GET", path, params=params)

    async def post(
        self,
        path: str,
        data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Make a POST request. Actions without a body still send an empty object."""
        return await self._request("POST", path, data=data if data is not None else {}, params=params)

    async def put(self, path: str, data: Dict[str, Any]) -> Any:
        """Make a PUT request."""
        return await self._request("PUT", path, data=data)

    async def delete(self, path: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Make a DELETE request."""
        await self._request("DELETE", path, params=params)

    def print_curl(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log the equivalent curl command for debugging; the password is masked."""
        curl_cmd = f"""curl -X {method} \\
  -u '{self.auth.login}:****' \\
  -H 'Accept: application/json' \\
  '{self.base_url}{path}'"""

        if data:
            curl_cmd += f" \\\n  -H 'Content-Type: application/json' \\\n  -d '{json.dumps(data, default=str)}'"

        logger.debug(f"Equivalent curl command:\n{curl_cmd}")


def _parse_fault(text: str):
    """Extract reason and detail from an engine fault body, if it is one."""
    try:
        body = json.loads(text)
    except ValueError:
        return None, text.strip() or None
    if not isinstance(body, dict):
        return None, None
    fault = body.get("fault", body)
    if not isinstance(fault, dict):
        return None, None
    return fault.get("reason"), fault.get("detail")
