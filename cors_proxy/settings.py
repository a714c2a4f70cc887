"""
Immutable runtime configuration for the proxy.

The environment is read once by ``cors_proxy.vars`` at import time;
``ProxySettings.from_env`` freezes those values into an object that is handed
to the dispatcher and the app factory, so request handling never looks at
process state directly.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from cors_proxy import vars as env


@dataclass(frozen=True)
class ProxySettings:
    proxy_path: str = "/proxy"
    access_token: Optional[str] = None
    headers_to_delete: Tuple[str, ...] = field(default_factory=tuple)
    response_headers_to_delete: Tuple[str, ...] = field(default_factory=tuple)
    forward_query_as_headers: bool = False
    timeout: float = 300.0

    def __post_init__(self):
        # Normalise here so tests and callers may pass any casing or a list
        object.__setattr__(
            self,
            "headers_to_delete",
            tuple(h.strip().lower() for h in self.headers_to_delete if h.strip()),
        )
        object.__setattr__(
            self,
            "response_headers_to_delete",
            tuple(
                h.strip().lower()
                for h in self.response_headers_to_delete
                if h.strip()
            ),
        )
        if not self.access_token:
            object.__setattr__(self, "access_token", None)

    @property
    def gate_enabled(self) -> bool:
        return self.access_token is not None

    @classmethod
    def from_env(cls) -> "ProxySettings":
        return cls(
            proxy_path=env.PROXY_PATH,
            access_token=env.PROXY_TOKEN,
            headers_to_delete=tuple(env.HEADERS_TO_DELETE),
            response_headers_to_delete=tuple(env.RESPONSE_HEADERS_TO_DELETE),
            forward_query_as_headers=env.FORWARD_QUERY_AS_HEADERS,
            timeout=float(env.PROXY_TIMEOUT),
        )
