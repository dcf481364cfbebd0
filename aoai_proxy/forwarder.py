"""
Streaming forwarder.

Performs exactly one outbound POST per inbound request:

    client --(body stream)--> Forwarder --(body stream)--> Azure OpenAI
    client <--(body stream)-- Forwarder <--(body stream)-- Azure OpenAI

Neither body is materialised in memory. A client disconnect while waiting
for the upstream turns into a 499; a disconnect while relaying stops the
relay and closes the upstream response.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional

import anyio
import httpx
from fastapi import Request
from fastapi.responses import Response, StreamingResponse
from starlette.requests import ClientDisconnect
from starlette.types import Receive, Scope, Send

from .config import AzureConfig
from .errors import (
    ClientCancellation,
    ConfigurationError,
    ProxyError,
    UnexpectedHandlerFailure,
    UpstreamTransportError,
    error_response,
)
from .translator import build_upstream_url

logger = logging.getLogger("aoai-proxy.forwarder")


UPSTREAM_TIMEOUT = httpx.Timeout(600.0)  # slow generations take minutes
RELAY_CHUNK_SIZE = 81920
DISCONNECT_POLL_INTERVAL = 0.1
KEY_HEADER = "api-key"
ORIGINAL_PATH_KEY = "aoai.original_path"


def incoming_path(request: Request) -> str:
    """Path as the client sent it, before routing lowercased it."""
    return request.scope.get(ORIGINAL_PATH_KEY, request.url.path)


def create_http_client() -> httpx.AsyncClient:
    """Create the process-wide outbound connection pool."""
    return httpx.AsyncClient(
        timeout=UPSTREAM_TIMEOUT,
        # Bodies are relayed raw, so never ask the upstream to compress
        headers={"Accept-Encoding": "identity"},
    )


class InboundBody:
    """Async byte stream over the inbound request body.

    Sets `consumed` once the last chunk has been handed to the transport,
    after which the request's receive channel is free for disconnect polling.
    """

    def __init__(self, request: Request):
        self._request = request
        self.consumed = asyncio.Event()

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._request.stream():
            if chunk:
                yield chunk
        self.consumed.set()


class Forwarder:
    """Relays inbound OpenAI-style requests to one Azure OpenAI deployment."""

    def __init__(self, azure: AzureConfig, client: httpx.AsyncClient):
        self.azure = azure
        self.client = client

    async def forward(self, request: Request) -> Response:
        """Forward `request` upstream and return the (streaming) response."""
        if not self.azure.key or not self.azure.key.strip():
            e = ConfigurationError(
                "Azure key not configured (azure.key / AZURE__KEY).",
                code="azure_key_missing",
            )
            logger.warning(f"Cannot forward request: {e.details}")
            return error_response(e)

        try:
            url = build_upstream_url(incoming_path(request), request.url.query, self.azure)
        except ConfigurationError as e:
            logger.warning(f"Cannot build upstream URL: {e.details}")
            return error_response(e)

        body = InboundBody(request)
        outbound = self.build_outbound_request(request, url, body)

        try:
            upstream = await self.send(request, outbound, body)
        except ClientCancellation as e:
            logger.info("Request cancelled by caller.")
            return error_response(e)
        except UpstreamTransportError as e:
            logger.error(f"Error forwarding request to Azure: {e.details}")
            return error_response(e)

        return self.relay(request, upstream)

    def build_outbound_request(self, request: Request, url: str, body: InboundBody) -> httpx.Request:
        """Build the POST sent upstream from the inbound request."""
        headers = httpx.Headers()

        content_type = request.headers.get("content-type")
        if content_type:
            headers["Content-Type"] = content_type

        accept = request.headers.get("accept")
        if accept:
            headers["Accept"] = accept

        # Overwrite, never append
        headers[KEY_HEADER] = self.azure.key

        return self.client.build_request("POST", url, headers=headers, content=body)

    async def send(
        self,
        request: Request,
        outbound: httpx.Request,
        body: Optional[InboundBody] = None,
    ) -> httpx.Response:
        """Send `outbound`, returning as soon as the upstream headers arrive.

        Raises:
            ClientCancellation: the client disconnected first.
            UpstreamTransportError: the upstream could not be reached.
        """
        send_task = asyncio.ensure_future(self.client.send(outbound, stream=True))
        watch_task = asyncio.ensure_future(self._wait_for_disconnect(request, body))

        try:
            done, _ = await asyncio.wait(
                {send_task, watch_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not send_task.done():
                send_task.cancel()
            if not watch_task.done():
                watch_task.cancel()

        if send_task not in done:
            results = await asyncio.gather(send_task, return_exceptions=True)
            if isinstance(results[0], httpx.Response):
                # Headers arrived while the task was being cancelled
                await results[0].aclose()
            if watch_task.exception() is not None:
                raise watch_task.exception()
            raise ClientCancellation("Client disconnected before the upstream responded.")

        try:
            return send_task.result()
        except ClientDisconnect as e:
            raise ClientCancellation("Client disconnected while sending the request body.") from e
        except httpx.HTTPError as e:
            raise UpstreamTransportError(str(e) or e.__class__.__name__) from e

    async def _wait_for_disconnect(self, request: Request, body: Optional[InboundBody]) -> None:
        # The receive channel carries body chunks until the body is consumed
        if body is not None:
            await body.consumed.wait()
        while not await request.is_disconnected():
            await asyncio.sleep(DISCONNECT_POLL_INTERVAL)

    def relay(self, request: Request, upstream: httpx.Response) -> StreamingResponse:
        """Wrap the upstream response into a streaming client response."""
        return UpstreamResponse(self.relay_body(request, upstream), upstream)

    async def relay_body(self, request: Request, upstream: httpx.Response) -> AsyncIterator[bytes]:
        """Yield upstream body bytes as they arrive, closing upstream when done."""
        try:
            async for chunk in upstream.aiter_raw():
                for start in range(0, len(chunk), RELAY_CHUNK_SIZE):
                    yield chunk[start:start + RELAY_CHUNK_SIZE]
        except httpx.HTTPError as e:
            # Status line already sent: the only thing left is to abort
            logger.error(f"Upstream stream failed for {request.url.path}: {e}")
            raise
        finally:
            await upstream.aclose()


class UpstreamResponse(StreamingResponse):
    """Streams an upstream `httpx.Response` and always releases it.

    The body iterator may never start (client gone before the first chunk),
    so the upstream is closed here as well as in the iterator.
    """

    def __init__(self, content: AsyncIterator[bytes], upstream: httpx.Response):
        super().__init__(content, status_code=upstream.status_code)
        self.upstream = upstream
        # Every value of repeated headers is kept
        self.raw_headers = [
            (name.lower(), value)
            for name, value in upstream.headers.raw
            if name.lower() != b"transfer-encoding"
        ]

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            with anyio.CancelScope(shield=True):
                await self.upstream.aclose()


async def forward_or_fail(forwarder: Forwarder, request: Request) -> Response:
    """Run the forwarder, degrading unclassified failures to a 500."""
    try:
        return await forwarder.forward(request)
    except ProxyError as e:
        return error_response(e)
    except Exception as e:
        logger.exception(f"Unexpected proxy failure for {request.url.path}")
        return error_response(UnexpectedHandlerFailure(str(e) or e.__class__.__name__))
