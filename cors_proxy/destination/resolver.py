"""
Destination resolution for proxied requests.

Every request must name the upstream it wants to reach. The signals are
checked in ``DESTINATION_SIGNALS`` order and the first non-empty one wins:

1. query parameter ``url``
2. header ``x-url-destination`` (fallback only)

There is no default destination. Resolution returns either a ``Destination``
or a ``ResolutionFailure``; it never raises, so the dispatcher can branch on
the outcome directly.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional, Tuple, Union
from urllib.parse import urlencode, urlsplit

from cors_proxy.models import (
    DESTINATION_HEADER,
    DESTINATION_QUERY_PARAM,
    RESERVED_QUERY_PARAMS,
    IncomingRequest,
)

logger = logging.getLogger("uvicorn.error")

ALLOWED_SCHEMES = ("http", "https")

# (kind, name) pairs evaluated in order
DESTINATION_SIGNALS: Tuple[Tuple[str, str], ...] = (
    ("query", DESTINATION_QUERY_PARAM),
    ("header", DESTINATION_HEADER),
)


class FailureKind(Enum):
    MISSING_DESTINATION = "missing_destination"
    INVALID_DESTINATION_URL = "invalid_destination_url"


@dataclass(frozen=True)
class Destination:
    origin: str
    path_and_query: str

    @property
    def url(self) -> str:
        return f"{self.origin}{self.path_and_query}"


@dataclass(frozen=True)
class ResolutionFailure:
    kind: FailureKind
    message: str


Resolution = Union[Destination, ResolutionFailure]


def _read_signal(request: IncomingRequest) -> Tuple[Optional[str], Optional[str]]:
    for kind, name in DESTINATION_SIGNALS:
        if kind == "query":
            value = request.query.get(name)
        else:
            value = request.header(name)
        if value and value.strip():
            return value.strip(), kind
    return None, None


def parse_destination(
    raw: str, subpath: str = "", extra_query: Optional[Mapping[str, str]] = None
) -> Resolution:
    """
    Split an absolute URL into origin and path+query.

    ``subpath`` is joined onto the URL path (requests under the entry path,
    e.g. /proxy/v1/users). ``extra_query`` is appended after the URL's own
    query string.
    """
    try:
        parts = urlsplit(raw)
        # Accessing .port validates it (raises ValueError when out of range)
        parts.port
    except ValueError as e:
        return ResolutionFailure(
            FailureKind.INVALID_DESTINATION_URL,
            f"Invalid destination URL: {raw!r} ({e})",
        )

    scheme = parts.scheme.lower()
    if scheme not in ALLOWED_SCHEMES or not parts.hostname:
        return ResolutionFailure(
            FailureKind.INVALID_DESTINATION_URL,
            f"Invalid destination URL: {raw!r} is not an absolute http(s) URL",
        )

    # netloc keeps userinfo and explicit port exactly as given
    origin = f"{scheme}://{parts.netloc}"
    path = parts.path or "/"
    if subpath:
        path = f"{path.rstrip('/')}/{subpath.lstrip('/')}"
    query = "&".join(
        q for q in (parts.query, urlencode(list((extra_query or {}).items()))) if q
    )
    path_and_query = f"{path}?{query}" if query else path
    return Destination(origin=origin, path_and_query=path_and_query)


def resolve_destination(request: IncomingRequest) -> Resolution:
    raw, source = _read_signal(request)
    if raw is None:
        return ResolutionFailure(
            FailureKind.MISSING_DESTINATION,
            "Missing destination: set the 'url' query parameter "
            "or the X-Url-Destination header",
        )
    # Inbound params that are not control signals travel on to the upstream
    extra_query = {
        k: v for k, v in request.query.items() if k not in RESERVED_QUERY_PARAMS
    }
    resolution = parse_destination(raw, request.subpath, extra_query)
    if isinstance(resolution, Destination):
        logger.debug(f"Resolved destination from {source}: {resolution.url}")
    return resolution
