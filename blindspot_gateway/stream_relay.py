"""
Camera stream relay.

Proxies the ESP32-CAM MJPEG stream to one browser client per request:
- Opens an upstream GET to the camera's stream endpoint
- Forwards upstream status and headers, then the raw body as it arrives
- Answers 502 if the camera cannot be reached before headers are sent
- Closes the upstream connection as soon as the downstream side goes away
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Dict, Optional

import httpx
from fastapi.responses import PlainTextResponse, Response, StreamingResponse

logger = logging.getLogger(__name__)

BAD_GATEWAY_MESSAGE = "Bad Gateway: Could not connect to camera stream."

# Regenerated by the downstream server, never forwarded.
HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})


def forwardable_headers(headers: httpx.Headers) -> Dict[str, str]:
    return {
        name: value
        for name, value in headers.items()
        if name.lower() not in HOP_BY_HOP_HEADERS
    }


class StreamRelayTask:
    """
    One in-flight relay. Owns the upstream client and response.

    ``aclose`` is idempotent and is called on every exit path.
    """

    def __init__(
        self,
        task_id: int,
        client: httpx.AsyncClient,
        response: httpx.Response,
        on_close: Optional[Callable[["StreamRelayTask"], None]] = None,
    ):
        self.task_id = task_id
        self._client = client
        self._response = response
        self._on_close = on_close
        self._closed = False
        self.bytes_relayed = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> Dict[str, str]:
        return forwardable_headers(self._response.headers)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        """Yield upstream body chunks until the camera closes or fails."""
        try:
            async for chunk in self._response.aiter_raw():
                self.bytes_relayed += len(chunk)
                yield chunk
        except httpx.HTTPError as e:
            logger.error(f"Relay {self.task_id}: upstream stream error: {e}")

    async def aclose(self) -> None:
        """Release the upstream connection."""
        if self._closed:
            return
        self._closed = True
        try:
            await self._response.aclose()
        finally:
            await self._client.aclose()
            if self._on_close:
                self._on_close(self)
        logger.info(f"Relay {self.task_id}: upstream closed after {self.bytes_relayed} bytes")


class RelayResponse(StreamingResponse):
    """Streaming response that always releases its relay task when it ends."""

    def __init__(self, task: StreamRelayTask):
        super().__init__(
            task.iter_bytes(),
            status_code=task.status_code,
            headers=task.headers,
        )
        self.relay_task = task

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await self.relay_task.aclose()


class StreamRelay:
    """
    Per-request proxy to a fixed upstream stream URL.

    No retry, reconnect or caching: each request is an independent pipe.
    """

    def __init__(
        self,
        upstream_url: str,
        connect_timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize stream relay.

        Args:
            upstream_url: Camera stream URL, e.g. http://10.246.144.3:80/stream
            connect_timeout: Seconds allowed to connect and receive headers
            transport: Optional httpx transport (used by tests)
        """
        self.upstream_url = upstream_url
        self.connect_timeout = connect_timeout
        self._transport = transport

        self._task_counter = 0
        self._active: Dict[int, StreamRelayTask] = {}
        self._failed_connects = 0

    @property
    def active_count(self) -> int:
        return len(self._active)

    def _make_client(self) -> httpx.AsyncClient:
        # Reads never time out once streaming, the stream is unbounded.
        timeout = httpx.Timeout(self.connect_timeout, read=None)
        return httpx.AsyncClient(timeout=timeout, transport=self._transport)

    async def open(self) -> StreamRelayTask:
        """
        Connect upstream and wait for the response headers.

        Raises:
            httpx.HTTPError: If the camera cannot be reached
        """
        self._task_counter += 1
        task_id = self._task_counter

        client = self._make_client()
        try:
            request = client.build_request("GET", self.upstream_url)
            response = await asyncio.wait_for(
                client.send(request, stream=True),
                timeout=self.connect_timeout,
            )
        except asyncio.TimeoutError:
            await client.aclose()
            raise httpx.ConnectTimeout(
                f"No response headers from {self.upstream_url} within {self.connect_timeout}s",
                request=request,
            ) from None
        except BaseException:
            await client.aclose()
            raise

        task = StreamRelayTask(task_id, client, response, on_close=self._release)
        self._active[task_id] = task
        logger.info(f"Relay {task_id}: upstream answered {response.status_code}")
        return task

    async def relay(self) -> Response:
        """Build the downstream response for one stream request."""
        try:
            task = await self.open()
        except httpx.HTTPError as e:
            self._failed_connects += 1
            logger.error(f"Proxy request error: {e!r}")
            return PlainTextResponse(BAD_GATEWAY_MESSAGE, status_code=502)

        return RelayResponse(task)

    def _release(self, task: StreamRelayTask) -> None:
        self._active.pop(task.task_id, None)

    async def aclose(self) -> None:
        """Close every relay still in flight (shutdown)."""
        for task in list(self._active.values()):
            await task.aclose()

    def get_stats(self) -> dict:
        return {
            "active_relays": len(self._active),
            "total_relays": self._task_counter,
            "failed_connects": self._failed_connects,
        }
