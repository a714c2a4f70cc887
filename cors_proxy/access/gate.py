"""
Optional shared-secret gate in front of the proxy.

When a token is configured, every request must carry it in the ``token``
query parameter (checked first) or the ``X-Proxy-Token`` header. Accepted
requests continue with both carriers removed so the secret never reaches an
upstream.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Optional

from cors_proxy.models import TOKEN_HEADER, TOKEN_QUERY_PARAM, IncomingRequest
from cors_proxy.settings import ProxySettings
from cors_proxy.utils import token_fingerprint

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    request: IncomingRequest


def candidate_token(request: IncomingRequest) -> Optional[str]:
    token = request.query.get(TOKEN_QUERY_PARAM)
    if token is None:
        token = request.header(TOKEN_HEADER)
    return token


def authorize(request: IncomingRequest, settings: ProxySettings) -> GateDecision:
    if not settings.gate_enabled:
        return GateDecision(allowed=True, request=request)

    token = candidate_token(request)
    if token is None or not hmac.compare_digest(
        token.encode("utf-8"), settings.access_token.encode("utf-8")
    ):
        # Denials are expected traffic, not errors
        logger.info(
            f"Access denied for {request.method} {request.path}: "
            f"token {token_fingerprint(token)}"
        )
        return GateDecision(allowed=False, request=request)

    stripped = request.without(query_params=(TOKEN_QUERY_PARAM,), headers=(TOKEN_HEADER,))
    return GateDecision(allowed=True, request=stripped)
