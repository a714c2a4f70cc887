"""
Header transform engine.

Computes the headers sent upstream and the headers returned to the client.
Both sides run a fixed pipeline of small steps; every step takes an
``httpx.Headers`` and returns a new one, so the input is never mutated and
the order of additions and deletions is explicit.

Request side, in order:
    fold_query_headers -> drop_hop_by_hop -> drop_topology_headers
    -> drop_control_headers -> drop_named(request delete-set)

Response side, in order:
    drop_hop_by_hop -> apply_cors_headers -> drop_control_headers
    -> drop_named(response delete-set)

Delete-sets are unions of several sources. Earlier sources keep their
position when a name repeats:
    request:  headers-to-delete / x-headers-delete header,
              headers-to-delete query param, HEADERS_TO_DELETE
    response: response-headers-to-delete / x-response-headers-delete header,
              response-headers-to-delete query param, the same carrier
              headers on the upstream response, RESPONSE_HEADERS_TO_DELETE

Header names are compared case-insensitively throughout. Nothing here
raises; missing signals simply produce empty delete-sets.
"""

import logging
from typing import Iterable, Mapping, Optional, Tuple

import httpx

from cors_proxy.cors.responder import apply_cors_headers
from cors_proxy.models import (
    DESTINATION_HEADER,
    RESERVED_QUERY_PARAMS,
    REQUEST_DELETE_HEADERS,
    REQUEST_DELETE_QUERY_PARAM,
    RESPONSE_DELETE_HEADERS,
    RESPONSE_DELETE_QUERY_PARAM,
    TOKEN_HEADER,
    IncomingRequest,
)
from cors_proxy.settings import ProxySettings

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 7230 6.1)
HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailer",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# Headers that would reveal the proxy's own network position to the upstream
TOPOLOGY_HEADERS = frozenset(
    {
        "forwarded",
        "x-forwarded-for",
        "x-forwarded-host",
        "x-forwarded-port",
        "x-forwarded-prefix",
        "x-forwarded-proto",
        "x-real-ip",
    }
)

REQUEST_CONTROL_HEADERS = frozenset(
    {DESTINATION_HEADER, TOKEN_HEADER, *REQUEST_DELETE_HEADERS, *RESPONSE_DELETE_HEADERS}
)
RESPONSE_CONTROL_HEADERS = frozenset(RESPONSE_DELETE_HEADERS)


class HeaderRuleSet:
    """Ordered, de-duplicated, lower-cased collection of header names."""

    def __init__(self, names: Iterable[str] = ()):
        self._names: Tuple[str, ...] = ()
        self.extend(names)

    def extend(self, names: Iterable[str]) -> "HeaderRuleSet":
        seen = set(self._names)
        ordered = list(self._names)
        for name in names:
            key = (name or "").strip().lower()
            if key and key not in seen:
                seen.add(key)
                ordered.append(key)
        self._names = tuple(ordered)
        return self

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def __contains__(self, name: str) -> bool:
        return name.lower() in self._names

    def __iter__(self):
        return iter(self._names)

    def __len__(self) -> int:
        return len(self._names)

    def __bool__(self) -> bool:
        return bool(self._names)

    def __repr__(self) -> str:
        return f"HeaderRuleSet({list(self._names)!r})"


def split_header_list(raw: Optional[str]) -> Tuple[str, ...]:
    """Split a comma-separated header list, dropping blanks."""
    if not raw:
        return ()
    return tuple(h.strip().lower() for h in raw.split(",") if h.strip())


def _build_delete_set(
    request: IncomingRequest,
    header_carriers: Iterable[str],
    query_carrier: str,
    configured: Iterable[str],
) -> HeaderRuleSet:
    rules = HeaderRuleSet()
    for carrier in header_carriers:
        rules.extend(split_header_list(request.header(carrier)))
    rules.extend(split_header_list(request.query.get(query_carrier)))
    rules.extend(configured)
    return rules


def request_delete_set(
    request: IncomingRequest, settings: ProxySettings
) -> HeaderRuleSet:
    return _build_delete_set(
        request,
        REQUEST_DELETE_HEADERS,
        REQUEST_DELETE_QUERY_PARAM,
        settings.headers_to_delete,
    )


def response_delete_set(
    request: IncomingRequest,
    settings: ProxySettings,
    upstream_headers: Optional[httpx.Headers] = None,
) -> HeaderRuleSet:
    rules = _build_delete_set(
        request, RESPONSE_DELETE_HEADERS, RESPONSE_DELETE_QUERY_PARAM, ()
    )
    # The upstream may name headers of its own response to withhold
    if upstream_headers is not None:
        for carrier in RESPONSE_DELETE_HEADERS:
            for value in upstream_headers.get_list(carrier):
                rules.extend(split_header_list(value))
    return rules.extend(settings.response_headers_to_delete)


# ---------------------------------------------------------------------------
# Pipeline steps
# ---------------------------------------------------------------------------


def drop_named(headers: httpx.Headers, names: Iterable[str]) -> httpx.Headers:
    result = httpx.Headers(headers)
    for name in names:
        if name in result:
            del result[name]
    return result


def drop_hop_by_hop(headers: httpx.Headers, include_host: bool = False) -> httpx.Headers:
    # Headers listed in Connection are hop-by-hop as well
    names = set(HOP_BY_HOP_HEADERS)
    names.update(split_header_list(headers.get("connection")))
    if include_host:
        names.add("host")
    return drop_named(headers, names)


def drop_topology_headers(headers: httpx.Headers) -> httpx.Headers:
    return drop_named(headers, TOPOLOGY_HEADERS)


def drop_control_headers(
    headers: httpx.Headers, control=REQUEST_CONTROL_HEADERS
) -> httpx.Headers:
    return drop_named(headers, control)


def fold_query_headers(
    headers: httpx.Headers, query: Mapping[str, str]
) -> httpx.Headers:
    """Copy non-reserved query parameters into the headers (overwriting)."""
    result = httpx.Headers(headers)
    for name, value in query.items():
        if name.lower() in RESERVED_QUERY_PARAMS or not name.strip():
            continue
        try:
            result[name] = value
        except (UnicodeEncodeError, ValueError):
            logger.debug(f"Skipping query parameter not usable as header: {name!r}")
    return result


# ---------------------------------------------------------------------------
# Public entry points
# ---------------------------------------------------------------------------


def compute_request_headers(
    request: IncomingRequest, settings: ProxySettings
) -> httpx.Headers:
    """Headers to send upstream for ``request``."""
    headers = httpx.Headers(request.headers)
    if settings.forward_query_as_headers:
        headers = fold_query_headers(headers, request.query)
    headers = drop_hop_by_hop(headers, include_host=True)
    headers = drop_topology_headers(headers)
    headers = drop_control_headers(headers, REQUEST_CONTROL_HEADERS)

    delete_set = request_delete_set(request, settings)
    headers = drop_named(headers, delete_set)

    logger.debug(f"Original request headers: {list(request.headers.keys())}")
    logger.debug(
        f"Modified request headers: {list(headers.keys())} (deleted: {list(delete_set)})"
    )
    return headers


def compute_response_headers(
    upstream_headers: httpx.Headers,
    request: IncomingRequest,
    settings: ProxySettings,
) -> httpx.Headers:
    """Headers to return to the client for an upstream response."""
    # Read the upstream carriers before drop_control_headers removes them
    delete_set = response_delete_set(request, settings, upstream_headers)

    headers = drop_hop_by_hop(httpx.Headers(upstream_headers))
    headers = apply_cors_headers(headers, request)
    headers = drop_control_headers(headers, RESPONSE_CONTROL_HEADERS)
    headers = drop_named(headers, delete_set)

    logger.debug(f"Original response headers: {list(upstream_headers.keys())}")
    logger.debug(
        f"Modified response headers: {list(headers.keys())} (deleted: {list(delete_set)})"
    )
    return headers
