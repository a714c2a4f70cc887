# Ensure tests import the package from this checkout first, whether or not
# it has been installed.
import os
import sys
from typing import List, Optional

import httpx
import pytest
from fastapi.testclient import TestClient

SERVICE_ROOT = os.path.dirname(__file__)
if SERVICE_ROOT not in sys.path:
    sys.path.insert(0, SERVICE_ROOT)


class RecordingUpstream:
    """
    Fake upstream server backed by ``httpx.MockTransport``.

    Every outbound request is recorded, so tests can assert both what was
    forwarded and that nothing was forwarded at all.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.status_code = 200
        self.headers = {}
        self.content = b"upstream body"
        self.error: Optional[Exception] = None

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        # Unread stream so the proxy can relay it with aiter_raw()
        return httpx.Response(
            self.status_code,
            headers=self.headers,
            stream=httpx.ByteStream(self.content),
        )

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last(self) -> httpx.Request:
        assert self.requests, "no request reached the upstream"
        return self.requests[-1]


@pytest.fixture
def upstream():
    return RecordingUpstream()


@pytest.fixture
def proxy_client(upstream):
    """Factory building a TestClient for a proxy app with the given settings."""
    from cors_proxy.server import create_app
    from cors_proxy.settings import ProxySettings

    clients = []

    def _make(**settings_kwargs) -> TestClient:
        app = create_app(ProxySettings(**settings_kwargs), transport=upstream.transport)
        client = TestClient(app)
        client.__enter__()
        clients.append(client)
        return client

    yield _make

    for client in clients:
        client.__exit__(None, None, None)
