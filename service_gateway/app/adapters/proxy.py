"""
Transparent reverse proxy from the Gateway to adapter backends.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Tuple

import httpx
from fastapi import Request, Response

from shared.errors import BackendUnavailableError, InternalProxyError
from shared.logging import get_logger
from shared.metrics import MetricsCollector

from .disconnect import cancel_on_disconnect

HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
})

# The outbound Host always names the backend.
_REWRITTEN_REQUEST_HEADERS = frozenset({"host"})

HeaderList = Tuple[Tuple[str, str], ...]


def is_hop_by_hop_header(name: str) -> bool:
    return name.lower() in HOP_BY_HOP_HEADERS


def filter_hop_by_hop(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Drop hop-by-hop headers, keeping order and repeated values."""
    return [(name, value) for name, value in headers if not is_hop_by_hop_header(name)]


def wildcard_remainder(request: Request, prefix: str) -> str:
    """Return the request path after ``prefix`` with its original percent-encoding.

    ``scope["path"]`` is already decoded, so an escaped ``?``, ``#`` or ``/``
    would change meaning if it were re-parsed. The raw path is used instead.
    """
    raw_path = request.scope.get("raw_path")
    if raw_path:
        path = raw_path.decode("latin-1").split("?", 1)[0]
        if path.startswith(prefix + "/"):
            return path[len(prefix):]
    return request.path_params.get("path", "")


@dataclass(frozen=True)
class ForwardRequest:
    """Snapshot of an inbound request, ready to be replayed against a backend."""

    method: str
    path: str
    query: str
    headers: HeaderList
    body: Optional[bytes]

    @classmethod
    async def from_request(cls, request: Request, path: str) -> "ForwardRequest":
        body = await request.body()
        headers = tuple(
            (name.decode("latin-1"), value.decode("latin-1"))
            for name, value in request.headers.raw
        )
        return cls(
            method=request.method,
            path=path,
            query=request.scope.get("query_string", b"").decode("latin-1"),
            headers=headers,
            body=body or None,
        )

    def url_for(self, target_base_url: str) -> str:
        """Join the wildcard remainder onto the backend base URL."""
        path = self.path[1:] if self.path.startswith("/") else self.path
        url = target_base_url.rstrip("/") + "/" + path
        if self.query:
            url += "?" + self.query
        return url

    def outbound_headers(self) -> List[Tuple[bytes, bytes]]:
        return [
            (name.encode("latin-1"), value.encode("latin-1"))
            for name, value in filter_hop_by_hop(self.headers)
            if name.lower() not in _REWRITTEN_REQUEST_HEADERS
        ]


@dataclass(frozen=True)
class ForwardResponse:
    """Backend answer copied verbatim onto the outbound response."""

    status_code: int
    headers: HeaderList
    body: bytes

    def to_response(self) -> Response:
        response = Response(content=self.body, status_code=self.status_code)
        raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in filter_hop_by_hop(self.headers)
        ]
        if not any(name == b"content-length" for name, _ in raw_headers):
            raw_headers.extend(
                (name, value) for name, value in response.raw_headers if name == b"content-length"
            )
        response.raw_headers = raw_headers
        return response


class ReverseProxyForwarder:
    """Forward any method and path to an adapter backend in a single attempt.

    Retries are deliberately absent here; they belong to the completion client.
    """

    def __init__(self,
                 timeout: float = 30.0,
                 client: Optional[httpx.AsyncClient] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("gateway.proxy")
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def forward(self, forward_request: ForwardRequest, target_base_url: str,
                      adapter: str = "adapter") -> ForwardResponse:
        """Replay ``forward_request`` against ``target_base_url``.

        Raises ``InternalProxyError`` if the outbound request cannot be built
        and ``BackendUnavailableError`` on transport failure or timeout.
        """
        url = forward_request.url_for(target_base_url)
        try:
            outbound = httpx.Request(
                forward_request.method,
                url,
                headers=forward_request.outbound_headers(),
                content=forward_request.body,
            )
        except (httpx.InvalidURL, ValueError, TypeError) as e:
            self.logger.error("Failed to build proxy request", adapter=adapter, url=url, error=str(e))
            self._record(adapter, "build_error")
            raise InternalProxyError(details={"adapter": adapter})

        try:
            response = await asyncio.wait_for(self._send(outbound), timeout=self.timeout)
        except asyncio.TimeoutError:
            self.logger.warning("Adapter call timed out", adapter=adapter, url=url, timeout=self.timeout)
            self._record(adapter, "timeout")
            raise BackendUnavailableError(details={"adapter": adapter, "reason": "timeout"})
        except httpx.HTTPError as e:
            self.logger.warning("Adapter unavailable", adapter=adapter, url=url, error=str(e) or repr(e))
            self._record(adapter, "unavailable")
            raise BackendUnavailableError(details={"adapter": adapter, "reason": e.__class__.__name__})

        self._record(adapter, str(response.status_code))
        self.logger.debug(
            "Proxied request",
            adapter=adapter,
            method=forward_request.method,
            url=url,
            status_code=response.status_code
        )
        return response

    async def proxy(self, request: Request, target_base_url: str, path: str,
                    adapter: str = "adapter") -> Response:
        """Forward the inbound ``request`` and build the outbound response."""
        forward_request = await ForwardRequest.from_request(request, path)
        forwarded = await cancel_on_disconnect(
            request, self.forward(forward_request, target_base_url, adapter=adapter)
        )
        return forwarded.to_response()

    async def _send(self, outbound: httpx.Request) -> ForwardResponse:
        response = await self._client.send(outbound, stream=True)
        try:
            # Raw bytes keep Content-Encoding and Content-Length consistent
            body = b"".join([chunk async for chunk in response.aiter_raw()])
        finally:
            await response.aclose()
        return ForwardResponse(
            status_code=response.status_code,
            headers=tuple(
                (name.decode("latin-1"), value.decode("latin-1"))
                for name, value in response.headers.raw
            ),
            body=body,
        )

    def _record(self, adapter: str, status: str) -> None:
        if self.metrics is not None:
            self.metrics.record_proxy_request(adapter, status)


class AnyMethodEndpoint:
    """ASGI endpoint that accepts every HTTP method, non-standard ones included.

    Starlette pins plain function endpoints to ``GET`` when no method list is
    given; a callable object is routed for any method.
    """

    def __init__(self, handler: Callable[[Request], Awaitable[Response]]):
        self.handler = handler

    async def __call__(self, scope, receive, send) -> None:
        request = Request(scope, receive, send)
        response = await self.handler(request)
        await response(scope, receive, send)
