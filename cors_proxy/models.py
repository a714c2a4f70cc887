from dataclasses import dataclass, field, replace
from typing import AsyncIterator, Dict, Optional

import httpx
from starlette.requests import Request

# Per-request control signals. Tuples are ordered by precedence.
DESTINATION_QUERY_PARAM = "url"
DESTINATION_HEADER = "x-url-destination"

TOKEN_QUERY_PARAM = "token"
TOKEN_HEADER = "x-proxy-token"

REQUEST_DELETE_HEADERS = ("headers-to-delete", "x-headers-delete")
REQUEST_DELETE_QUERY_PARAM = "headers-to-delete"

RESPONSE_DELETE_HEADERS = ("response-headers-to-delete", "x-response-headers-delete")
RESPONSE_DELETE_QUERY_PARAM = "response-headers-to-delete"

RESERVED_QUERY_PARAMS = frozenset(
    {
        DESTINATION_QUERY_PARAM,
        TOKEN_QUERY_PARAM,
        REQUEST_DELETE_QUERY_PARAM,
        RESPONSE_DELETE_QUERY_PARAM,
    }
)


@dataclass(frozen=True)
class IncomingRequest:
    """Read-only view of an inbound request as seen by the proxy pipeline."""

    method: str
    path: str
    query: Dict[str, str] = field(default_factory=dict)
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: Optional[AsyncIterator[bytes]] = None
    # Remainder of the path below the entry path, without a leading slash
    subpath: str = ""

    @classmethod
    def from_starlette(cls, request: Request) -> "IncomingRequest":
        # dict() over QueryParams keeps the last value of a repeated key
        query = dict(request.query_params)
        headers = httpx.Headers(list(request.headers.items()))
        body = request.stream() if _has_body(headers) else None
        return cls(
            method=request.method.upper(),
            path=request.url.path,
            query=query,
            headers=headers,
            body=body,
            subpath=request.path_params.get("rest", ""),
        )

    def header(self, name: str) -> Optional[str]:
        """Comma-joined value of ``name`` or None when absent."""
        return self.headers.get(name)

    def without(self, query_params=(), headers=()) -> "IncomingRequest":
        """Copy of this request with the given query params and headers removed."""
        drop = set(query_params)
        query = {k: v for k, v in self.query.items() if k not in drop}
        new_headers = httpx.Headers(self.headers)
        for name in headers:
            if name in new_headers:
                del new_headers[name]
        return replace(self, query=query, headers=new_headers)


def _has_body(headers: httpx.Headers) -> bool:
    if "transfer-encoding" in headers:
        return True
    length = headers.get("content-length", "").strip()
    return bool(length) and length != "0"
