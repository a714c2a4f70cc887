"""
Orchestrates a single proxied exchange.

Order of operations:
    access gate -> OPTIONS preflight -> destination resolution
    -> request header transform -> upstream send (streamed)
    -> CORS augmentation + response header deletions -> streamed body

Request and response bodies are streamed through untouched; nothing is
buffered or rewritten.
"""

import logging
from typing import AsyncIterator

import httpx
from fastapi.responses import JSONResponse, Response, StreamingResponse
from opentelemetry import trace
from starlette.background import BackgroundTask

from cors_proxy.access.gate import authorize
from cors_proxy.cors.responder import preflight_response
from cors_proxy.destination.resolver import (
    Destination,
    ResolutionFailure,
    resolve_destination,
)
from cors_proxy.errors import UpstreamUnavailable
from cors_proxy.headers.transform import (
    compute_request_headers,
    compute_response_headers,
)
from cors_proxy.models import IncomingRequest
from cors_proxy.settings import ProxySettings
from cors_proxy.utils.exception_logging import (
    format_exception_message,
    log_exception_with_details,
)
from cors_proxy.utils.traced_requests import traced_request

tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")


async def stream_body(
    upstream: httpx.Response, destination: str
) -> AsyncIterator[bytes]:
    """
    Relay the raw upstream body, closing the upstream response however the
    stream ends (completion, transport error or client disconnect).
    """
    try:
        async for chunk in upstream.aiter_raw():
            yield chunk
    except httpx.HTTPError as e:
        log_exception_with_details(
            logger, f"[Proxy] Stream from {destination} interrupted:", e
        )
        raise
    finally:
        await upstream.aclose()


class ProxyDispatcher:
    def __init__(self, settings: ProxySettings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client

    async def dispatch(self, request: IncomingRequest) -> Response:
        decision = authorize(request, self.settings)
        if not decision.allowed:
            return Response(status_code=401)
        request = decision.request

        if request.method == "OPTIONS":
            return preflight_response(request)

        resolution = resolve_destination(request)
        if isinstance(resolution, ResolutionFailure):
            logger.error(
                f"[Proxy] {resolution.kind.value} for {request.method} "
                f"{request.path}: {resolution.message}"
            )
            return JSONResponse(status_code=500, content={"detail": resolution.message})

        return await self.proxy(request, resolution)

    async def proxy(self, request: IncomingRequest, destination: Destination) -> Response:
        headers = compute_request_headers(request, self.settings)

        with traced_request(
            tracer,
            "proxy_request",
            request.method,
            destination.url,
            f"Proxying {request.method} {request.path} -> {destination.url}",
            secret=self.settings.access_token,
        ) as span:
            try:
                upstream = await self.forward(request, destination, headers)
            except UpstreamUnavailable as e:
                log_exception_with_details(
                    logger, f"[Proxy] Upstream {e.destination} failed:", e.cause
                )
                span.set_attribute("proxy.error", type(e.cause).__name__)
                detail = (
                    "Gateway timeout"
                    if e.timed_out
                    else f"Bad gateway: {format_exception_message(e.cause)}"
                )
                return JSONResponse(status_code=e.status_code, content={"detail": detail})

            span.set_attribute("proxy.status_code", upstream.status_code)
            logger.debug(
                f"Received response with status {upstream.status_code} from {destination.url}"
            )

            response_headers = compute_response_headers(
                upstream.headers, request, self.settings
            )
            response = StreamingResponse(
                stream_body(upstream, destination.url),
                status_code=upstream.status_code,
                # Runs even when the body iterator never started
                background=BackgroundTask(upstream.aclose),
            )
            for name, value in response_headers.multi_items():
                response.headers.append(name, value)
            return response

    async def forward(
        self,
        request: IncomingRequest,
        destination: Destination,
        headers: httpx.Headers,
    ) -> httpx.Response:
        try:
            upstream_request = self.client.build_request(
                method=request.method,
                url=destination.url,
                headers=headers,
                content=request.body,
            )
            return await self.client.send(upstream_request, stream=True)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise UpstreamUnavailable(destination.url, e) from e
