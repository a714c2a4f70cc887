"""
CORS handling for the proxy entry path.

Preflight requests are answered locally. Proxied responses get the same
``Access-Control-Allow-*`` values, echoing what the browser asked for and
falling back to permissive defaults.
"""

import logging
from typing import Dict

import httpx
from fastapi.responses import Response

from cors_proxy.models import IncomingRequest

logger = logging.getLogger("uvicorn.error")

DEFAULT_ALLOW_METHODS = "GET,POST,PUT,PATCH,DELETE,OPTIONS"
DEFAULT_ALLOW_HEADERS = "Origin, Content-Type, Accept, Authorization"
PREFLIGHT_MAX_AGE = "86400"  # 24 hours


def cors_headers(request: IncomingRequest) -> Dict[str, str]:
    return {
        "Access-Control-Allow-Origin": request.header("origin") or "*",
        "Access-Control-Allow-Methods": request.header(
            "access-control-request-method"
        )
        or DEFAULT_ALLOW_METHODS,
        "Access-Control-Allow-Headers": request.header(
            "access-control-request-headers"
        )
        or DEFAULT_ALLOW_HEADERS,
    }


def apply_cors_headers(
    headers: httpx.Headers, request: IncomingRequest
) -> httpx.Headers:
    """Set the CORS headers on a copy of ``headers``, replacing any existing values."""
    result = httpx.Headers(headers)
    for name, value in cors_headers(request).items():
        # __setitem__ collapses duplicates, so repeated application is stable
        result[name] = value
    return result


def preflight_response(request: IncomingRequest) -> Response:
    logger.info(f"Answering CORS preflight for {request.path}")
    headers = cors_headers(request)
    headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
    return Response(status_code=200, headers=headers)
