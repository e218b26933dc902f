#!/usr/bin/env python3
"""REST Client for the deCONZ gateway API.

This module provides the HTTP client that handles the common concerns of
talking to a deCONZ gateway:

    - API key handling (``/api`` versus ``/api/<key>``)
    - Projection of attribute paths onto the enclosing resource
    - Throttling of PUT requests to protect the Zigbee radio, optionally
      merging changes to one resource while the throttle is closed
    - Fixed-delay resend on connection resets, HTTP 503 and error 901
    - Classification of the response envelope into success and errors
    - Observations for every request, response and error

Design Philosophy:
    This client knows HOW to talk to the gateway, but not WHAT the
    resources mean. Turning lights and sensors into devices belongs to
    the sync package that composes this client.

Usage:
    config = await fetch_gateway_config("192.168.1.10")
    async with ApiClient("192.168.1.10", api_key=key, config=config) as client:
        lights = await client.get("/lights")
        on = await client.get("/lights/1/state/on")
        await client.put("/lights/1/state", {"on": True, "bri": 200})

Author: deCONZ Sync Team
"""
import asyncio
import errno
import logging
import socket
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from .exceptions import (
    APIError,
    ConfigurationError,
    ConnectionError,
    GatewayApiError,
    InvalidArgumentError,
    NetworkError,
    NotFoundError,
    ProtocolError,
    ServiceUnavailableError,
    TimeoutError,
)
from .models import GatewayConfig
from .observers import (
    ErrorObservation,
    Observable,
    RequestObservation,
    ResponseObservation,
)
from .resilience import PendingWrite, WriteThrottle, count_radio_messages, retry_fixed
from .response import ApiResponse, project

logger = logging.getLogger(__name__)

# HTTP statuses whose body is a gateway envelope
ENVELOPE_STATUSES = (200, 400, 403)

# Resources whose sub-paths are projected from /<type>/<id>
COLLECTION_RESOURCES = frozenset(
    {"lights", "groups", "schedules", "sensors", "rules", "resourcelinks"}
)

# Resources whose sub-paths are projected from /<type>
SINGLETON_RESOURCES = frozenset({"config", "capabilities"})

MAX_RETRIES = 5


# ============================================
# Client Options
# ============================================

@dataclass
class ClientOptions:
    """Tunables for ApiClient.

    Attributes:
        timeout: Request timeout in seconds (1..60)
        parallel_requests: Maximum concurrent connections (1..20)
        wait_time_put: Milliseconds per radio message for unicast PUTs (0..50)
        wait_time_put_group: Milliseconds per radio message for group PUTs (0..1000)
        wait_time_resend: Milliseconds before resending a request (0..1000)
    """

    timeout: float = 5
    parallel_requests: int = 10
    wait_time_put: int = 50
    wait_time_put_group: int = 1000
    wait_time_resend: int = 300

    def __post_init__(self):
        self.timeout = min(max(self.timeout, 1), 60)
        self.parallel_requests = min(max(self.parallel_requests, 1), 20)
        self.wait_time_put = min(max(self.wait_time_put, 0), 50)
        self.wait_time_put_group = min(max(self.wait_time_put_group, 0), 1000)
        self.wait_time_resend = min(max(self.wait_time_resend, 0), 1000)


def split_resource(path: str) -> tuple[str, list[str]]:
    """Split a GET path into the resource to fetch and the keys to project.

    Examples:
        /lights/1/state/on       -> ("/lights/1", ["state", "on"])
        /groups/1/scenes/2/name  -> ("/groups/1/scenes/2", ["name"])
        /config/bridgeid         -> ("/config", ["bridgeid"])
        /lights/1                -> ("/lights/1", [])

    Raises:
        InvalidArgumentError: If path is not a string starting with "/"
    """
    if not isinstance(path, str) or not path.startswith("/"):
        raise InvalidArgumentError(f"{path!r}: invalid resource", argument="resource")

    segments = path[1:].split("/")
    rtype = segments[0]

    if rtype == "lights" and len(segments) == 3 and segments[2] == "connectivity2":
        return path, []

    if rtype in ("lights", "groups") and len(segments) >= 3 and segments[2] == "scenes":
        head = 4 if len(segments) >= 4 else 3
        return "/" + "/".join(segments[:head]), segments[head:]

    if rtype in COLLECTION_RESOURCES and len(segments) > 2:
        return "/" + "/".join(segments[:2]), segments[2:]

    if rtype in SINGLETON_RESOURCES and len(segments) > 1:
        return "/" + rtype, segments[1:]

    return path, []


class ApiClient(Observable):
    """Async REST client for a single deCONZ gateway.

    This client is designed to be used as an async context manager to ensure
    proper session lifecycle management:

        async with ApiClient(host, api_key=key) as client:
            data = await client.get("/config")

    Subscribers receive RequestObservation, ResponseObservation and
    ErrorObservation instances.

    Attributes:
        host: Gateway host, optionally with ":port"
        api_key: API key, or None before one is created
        config: Public gateway configuration, if known
        options: ClientOptions in effect
    """

    def __init__(
        self,
        host: str,
        api_key: Optional[str] = None,
        config: Optional[GatewayConfig] = None,
        options: Optional[ClientOptions] = None,
    ):
        super().__init__()
        if not host:
            raise ConfigurationError(
                "Gateway host is required", missing_keys=["DECONZ_HOST"]
            )
        self.host = host
        self.api_key = api_key
        self.config = config
        self.options = options or ClientOptions()
        self.throttle = WriteThrottle()
        self._request_id = 0
        self._pending: dict[str, PendingWrite] = {}

        # Session is created in __aenter__, closed in __aexit__
        self._session: Optional[aiohttp.ClientSession] = None

    # ----------------------------------------
    # Context Manager Protocol
    # ----------------------------------------

    async def __aenter__(self) -> "ApiClient":
        """Enter async context: create the HTTP session."""
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(
                limit=self.options.parallel_requests,
                limit_per_host=self.options.parallel_requests,
            ),
            timeout=aiohttp.ClientTimeout(total=self.options.timeout),
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit async context: close the HTTP session."""
        if self._session:
            await self._session.close()
            self._session = None

    @property
    def session(self) -> Optional[aiohttp.ClientSession]:
        return self._session

    @property
    def base_url(self) -> str:
        return f"http://{self.host}"

    @property
    def api_path(self) -> str:
        return f"/api/{self.api_key}" if self.api_key else "/api"

    # ----------------------------------------
    # Low-Level Request Methods
    # ----------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        body: Optional[Any] = None,
    ) -> ApiResponse:
        """Send a request, resending it on transient failures.

        Args:
            method: HTTP method (GET, PUT, POST, DELETE)
            path: Path below ``/api/<key>``, e.g. "/lights/1/state"
            body: JSON request body

        Returns:
            ApiResponse with the decoded body, success object and
            non-critical errors

        Raises:
            GatewayApiError: For critical gateway error fragments
            APIError: For HTTP statuses outside the envelope
            NetworkError: For transport failures
        """
        if not isinstance(path, str) or not path.startswith("/"):
            raise InvalidArgumentError(f"{path!r}: invalid resource", argument="resource")

        self._request_id += 1
        request_id = self._request_id

        async def on_retry(error: Exception, attempt: int) -> None:
            await self._emit(ErrorObservation(error, request_id, will_retry=True))

        try:
            return await retry_fixed(
                self._request,
                request_id,
                method,
                path,
                body,
                max_retries=MAX_RETRIES,
                delay=self.options.wait_time_resend / 1000,
                on_retry=on_retry,
            )
        except (APIError, GatewayApiError, NetworkError) as e:
            await self._emit(ErrorObservation(e, request_id))
            raise

    async def _request(
        self,
        request_id: int,
        method: str,
        path: str,
        body: Optional[Any] = None,
    ) -> ApiResponse:
        """Make a single HTTP request (no retry logic)."""
        if not self._session:
            raise RuntimeError(
                "ApiClient must be used as async context manager: "
                "async with ApiClient(...) as client:"
            )

        endpoint = self.api_path if path == "/" else f"{self.api_path}{path}"
        url = f"{self.base_url}{endpoint}"

        await self._emit(RequestObservation(request_id, method, path, body))
        logger.debug(f"request {request_id}: {method} {endpoint}")

        try:
            async with self._session.request(
                method=method,
                url=url,
                json=body,
            ) as response:
                if response.status not in ENVELOPE_STATUSES:
                    error_text = await response.text()
                    raise self._create_api_error(
                        status=response.status,
                        method=method,
                        endpoint=path,
                        response_body=error_text,
                    )
                try:
                    data = await response.json(content_type=None)
                except ValueError as e:
                    raise ProtocolError(
                        f"{method} {path}: invalid JSON in response", cause=e
                    )
                status = response.status

        # ServerTimeoutError is also a ClientConnectionError
        except asyncio.TimeoutError as e:
            raise TimeoutError(
                f"{method} {path} timed out",
                timeout_seconds=self.options.timeout,
                cause=e,
            )

        except (ConnectionResetError, aiohttp.ServerDisconnectedError) as e:
            raise ConnectionError(
                f"Connection to {self.host} reset", host=self.host, reset=True, cause=e
            )

        except aiohttp.ClientOSError as e:
            raise ConnectionError(
                f"Failed to connect to {self.host}: {e}",
                host=self.host,
                reset=e.errno == errno.ECONNRESET,
                cause=e,
            )

        except aiohttp.ClientConnectionError as e:
            raise ConnectionError(
                f"Failed to connect to {self.host}", host=self.host, cause=e
            )

        except aiohttp.ClientError as e:
            raise NetworkError(
                f"Network error during {method} {path}: {e}",
                cause=e,
            )

        await self._emit(ResponseObservation(request_id, status, data))
        logger.debug(f"request {request_id}: {status} OK")

        result = ApiResponse.from_body(data, status=status, endpoint=path, method=method)
        # The first critical error fails the call and is observed by request()
        critical = None
        for error in result.errors:
            if critical is None and not error.non_critical:
                critical = error
                continue
            await self._emit(ErrorObservation(error, request_id))
            logger.debug(f"request {request_id}: {error}")
        if critical is not None:
            raise critical
        return result

    def _create_api_error(
        self,
        status: int,
        method: str,
        endpoint: str,
        response_body: str,
    ) -> APIError:
        """Create appropriate APIError subclass based on status code."""
        if status == 404:
            return NotFoundError(
                f"{endpoint}: not found",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        if status == 503:
            return ServiceUnavailableError(
                f"{method} {endpoint}: gateway service unavailable",
                endpoint=endpoint,
                method=method,
                response_body=response_body,
            )

        return APIError(
            f"{method} {endpoint}: HTTP status {status}",
            status_code=status,
            endpoint=endpoint,
            method=method,
            response_body=response_body,
        )

    # ----------------------------------------
    # Convenience Methods
    # ----------------------------------------

    async def get(self, path: str) -> Any:
        """GET a resource or an attribute of a resource.

        The gateway only serves whole resources, so ``/lights/1/state/on``
        is fetched as ``/lights/1`` and ``state.on`` is read from the body.

        Raises:
            InvalidArgumentError: If path does not start with "/"
            NotFoundError: If the projected attribute does not exist
        """
        resource, keys = split_resource(path)
        response = await self.request("GET", resource)
        if not keys:
            return response.body
        value = project(response.body, keys)
        if value is None:
            raise NotFoundError(
                f"/{'/'.join(keys)}: not found in resource {resource}",
                endpoint=path,
            )
        return value

    def _put_delay(self, path: str) -> int:
        # Group writes are broadcast by the gateway
        if path.startswith("/groups"):
            return self.options.wait_time_put_group
        return self.options.wait_time_put

    async def put(self, path: str, body: dict[str, Any]) -> ApiResponse:
        """PUT a body, waiting for the write throttle first.

        Group writes use the group delay, all others the unicast delay.
        """
        messages = count_radio_messages(body)
        await self.throttle.acquire(messages * self._put_delay(path) / 1000)
        return await self.request("PUT", path, body)

    async def put_coalesced(self, path: str, body: dict[str, Any]) -> ApiResponse:
        """PUT a body, merged with other changes to ``path`` that are
        still waiting for the write throttle.

        All callers whose changes were merged receive the response of the
        single request that carried them.
        """
        pending = self._pending.get(path)
        if pending is not None:
            pending.merge(body)
            logger.debug(f"{path}: merged into pending write ({pending.merged} changes)")
            return await pending.wait()

        pending = PendingWrite(path, body)
        self._pending[path] = pending

        def close_window() -> float:
            # Later changes start a new pending write
            if self._pending.get(path) is pending:
                del self._pending[path]
            return count_radio_messages(pending.body) * self._put_delay(path) / 1000

        try:
            await self.throttle.acquire(close_window)
            response = await self.request("PUT", path, pending.body)
        except BaseException as e:
            if self._pending.get(path) is pending:
                del self._pending[path]
            pending.fail(e)
            raise
        pending.resolve(response)
        return response

    async def post(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.request("POST", path, body)

    async def delete(self, path: str, body: Optional[Any] = None) -> ApiResponse:
        return await self.request("DELETE", path, body)

    # ----------------------------------------
    # API Key Management
    # ----------------------------------------

    async def create_api_key(self, application: str) -> str:
        """Obtain a new API key from the gateway.

        The gateway must be unlocked first, either from its web app or
        by ``unlock()`` with a key that is still valid.

        Raises:
            GatewayLockedError: If the gateway is not unlocked (error 101)
        """
        previous = self.api_key
        self.api_key = None
        devicetype = f"{application}#{socket.gethostname().split('.')[0]}"
        try:
            response = await self.post("/", {"devicetype": devicetype})
            username = response.success_at("/username")
            if not username:
                raise ProtocolError("gateway did not return an API key")
        except Exception:
            self.api_key = previous
            raise
        self.api_key = username
        logger.info(f"{self.host}: created API key for {devicetype}")
        return username

    async def delete_api_key(self) -> None:
        """Revoke the current API key and forget it."""
        if not self.api_key:
            return
        try:
            await self.delete(f"/config/whitelist/{self.api_key}")
        except NotFoundError:
            logger.debug(f"{self.host}: API key already removed")
        except GatewayApiError as e:
            # type 3: resource not available
            if e.type != 3:
                raise
            logger.debug(f"{self.host}: API key already removed")
        self.api_key = None

    # ----------------------------------------
    # Gateway Operations
    # ----------------------------------------

    async def unlock(self) -> ApiResponse:
        """Unlock the gateway for 60 seconds so a new key can be created."""
        return await self.put("/config", {"unlock": 60})

    async def search(self) -> ApiResponse:
        """Allow new Zigbee devices to join for 120 seconds."""
        return await self.put("/config", {"permitjoin": 120})

    async def restart(self) -> ApiResponse:
        return await self.post("/config/restartapp")


async def fetch_gateway_config(
    host: str,
    timeout: float = 5,
    session: Optional[aiohttp.ClientSession] = None,
) -> GatewayConfig:
    """Fetch the unauthenticated gateway configuration.

    Args:
        host: Gateway host, optionally with ":port"
        timeout: Request timeout in seconds
        session: Existing session to use instead of a temporary one

    Raises:
        ConnectionError: If the gateway cannot be reached
        ProtocolError: If the response is not a gateway configuration
    """
    own_session = session is None
    if own_session:
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=timeout))
    try:
        async with session.get(f"http://{host}/api/config") as response:
            if response.status != 200:
                raise APIError(
                    f"GET /api/config: HTTP status {response.status}",
                    status_code=response.status,
                    endpoint="/api/config",
                )
            data = await response.json(content_type=None)
    except aiohttp.ClientError as e:
        raise ConnectionError(f"Failed to connect to {host}", host=host, cause=e)
    except asyncio.TimeoutError as e:
        raise TimeoutError(
            f"GET http://{host}/api/config timed out", timeout_seconds=timeout, cause=e
        )
    except ValueError as e:
        raise ProtocolError(f"{host}: invalid JSON in /api/config", cause=e)
    finally:
        if own_session:
            await session.close()

    try:
        return GatewayConfig.model_validate(data)
    except ValueError as e:
        raise ProtocolError(f"{host}: not a deCONZ gateway", cause=e)


__all__ = [
    "ApiClient",
    "ClientOptions",
    "fetch_gateway_config",
    "split_resource",
]
