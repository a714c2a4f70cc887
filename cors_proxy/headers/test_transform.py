import httpx
import pytest

from cors_proxy.headers.transform import (
    HeaderRuleSet,
    compute_request_headers,
    compute_response_headers,
    drop_hop_by_hop,
    fold_query_headers,
    request_delete_set,
    response_delete_set,
    split_header_list,
)
from cors_proxy.models import IncomingRequest
from cors_proxy.settings import ProxySettings


def _request(query=None, headers=None, method="GET"):
    return IncomingRequest(
        method=method,
        path="/proxy",
        query=query or {},
        headers=httpx.Headers(headers or {}),
    )


class TestHeaderRuleSet:
    def test_deduplicates_case_insensitively_keeping_first_position(self):
        rules = HeaderRuleSet(["Authorization", "cookie"]).extend(
            ["COOKIE", "x-extra", "authorization"]
        )

        assert rules.names == ("authorization", "cookie", "x-extra")

    def test_ignores_blank_names(self):
        rules = HeaderRuleSet(["", "  ", None, "accept"])

        assert list(rules) == ["accept"]
        assert len(rules) == 1

    def test_membership_is_case_insensitive(self):
        rules = HeaderRuleSet(["x-api-key"])

        assert "X-API-Key" in rules
        assert "x-other" not in rules

    def test_empty_is_falsy(self):
        assert not HeaderRuleSet()


def test_split_header_list():
    assert split_header_list(" Cookie, ,X-Api-Key ,") == ("cookie", "x-api-key")
    assert split_header_list(None) == ()
    assert split_header_list("") == ()


class TestDeleteSets:
    def test_request_sources_in_precedence_order(self):
        request = _request(
            query={"headers-to-delete": "x-from-query, cookie"},
            headers={
                "headers-to-delete": "x-from-header",
                "x-headers-delete": "x-from-alias, COOKIE",
            },
        )
        settings = ProxySettings(headers_to_delete=("x-from-env", "x-from-header"))

        rules = request_delete_set(request, settings)

        assert rules.names == (
            "x-from-header",
            "x-from-alias",
            "cookie",
            "x-from-query",
            "x-from-env",
        )

    def test_request_delete_set_empty_without_signals(self):
        assert not request_delete_set(_request(), ProxySettings())

    def test_response_sources(self):
        request = _request(
            query={"response-headers-to-delete": "set-cookie"},
            headers={"x-response-headers-delete": "server"},
        )
        settings = ProxySettings(response_headers_to_delete=("x-powered-by",))

        rules = response_delete_set(request, settings)

        assert rules.names == ("server", "set-cookie", "x-powered-by")


class TestComputeRequestHeaders:
    def test_unlisted_headers_pass_through(self):
        request = _request(headers={"accept": "application/json", "x-custom": "1"})

        headers = compute_request_headers(request, ProxySettings())

        assert headers["accept"] == "application/json"
        assert headers["x-custom"] == "1"

    def test_control_and_topology_headers_always_removed(self):
        request = _request(
            headers={
                "x-url-destination": "https://api.example.com",
                "x-proxy-token": "secret",
                "headers-to-delete": "",
                "x-headers-delete": "",
                "response-headers-to-delete": "server",
                "x-forwarded-for": "10.0.0.1",
                "x-forwarded-host": "proxy.internal",
                "x-forwarded-proto": "http",
                "forwarded": "for=10.0.0.1",
                "x-real-ip": "10.0.0.1",
                "host": "proxy.internal:8080",
                "connection": "keep-alive, x-hop",
                "x-hop": "1",
                "transfer-encoding": "chunked",
                "user-agent": "pytest",
            }
        )

        headers = compute_request_headers(request, ProxySettings())

        assert list(headers.keys()) == ["user-agent"]

    @pytest.mark.parametrize(
        "request_kwargs,settings",
        [
            ({"headers": {"x-headers-delete": "Authorization"}}, ProxySettings()),
            ({"headers": {"headers-to-delete": "authorization"}}, ProxySettings()),
            ({"query": {"headers-to-delete": "AUTHORIZATION"}}, ProxySettings()),
            ({}, ProxySettings(headers_to_delete=("Authorization",))),
        ],
    )
    def test_each_source_deletes(self, request_kwargs, settings):
        request_kwargs = dict(request_kwargs)
        headers = dict(request_kwargs.pop("headers", {}))
        headers.update({"Authorization": "Bearer abc", "accept": "*/*"})
        request = _request(headers=headers, **request_kwargs)

        result = compute_request_headers(request, settings)

        assert "authorization" not in result
        assert result["accept"] == "*/*"

    def test_does_not_mutate_input(self):
        request = _request(headers={"x-headers-delete": "cookie", "cookie": "a=b"})

        compute_request_headers(request, ProxySettings())

        assert request.headers["cookie"] == "a=b"

    def test_query_folding_disabled_by_default(self):
        request = _request(query={"x-api-key": "k"})

        headers = compute_request_headers(request, ProxySettings())

        assert "x-api-key" not in headers

    def test_query_folding_excludes_reserved_and_allows_deletion(self):
        request = _request(
            query={
                "url": "https://api.example.com",
                "token": "secret",
                "x-api-key": "k",
                "x-debug": "1",
                "headers-to-delete": "x-debug",
            }
        )

        headers = compute_request_headers(
            request, ProxySettings(forward_query_as_headers=True)
        )

        assert headers["x-api-key"] == "k"
        assert "x-debug" not in headers
        assert "url" not in headers
        assert "token" not in headers
        assert "headers-to-delete" not in headers


def test_fold_query_headers_overwrites_existing():
    headers = fold_query_headers(httpx.Headers({"x-mode": "a"}), {"X-Mode": "b"})

    assert headers.get_list("x-mode") == ["b"]


def test_drop_hop_by_hop_keeps_host_unless_asked():
    headers = httpx.Headers({"host": "example.com", "te": "trailers"})

    assert list(drop_hop_by_hop(headers).keys()) == ["host"]
    assert list(drop_hop_by_hop(headers, include_host=True).keys()) == []


class TestComputeResponseHeaders:
    def test_adds_cors_headers(self):
        upstream = httpx.Headers({"content-type": "application/json"})

        headers = compute_response_headers(upstream, _request(), ProxySettings())

        assert headers["content-type"] == "application/json"
        assert headers["access-control-allow-origin"] == "*"
        assert headers["access-control-allow-methods"] == "GET,POST,PUT,PATCH,DELETE,OPTIONS"

    def test_cors_overwrites_upstream_values(self):
        upstream = httpx.Headers(
            [
                ("Access-Control-Allow-Origin", "https://elsewhere.test"),
                ("Access-Control-Allow-Origin", "https://other.test"),
            ]
        )
        request = _request(headers={"origin": "https://app.test"})

        headers = compute_response_headers(upstream, request, ProxySettings())

        assert headers.get_list("access-control-allow-origin") == ["https://app.test"]

    def test_client_can_delete_cors_header(self):
        request = _request(
            headers={"response-headers-to-delete": "Access-Control-Allow-Headers"}
        )

        headers = compute_response_headers(httpx.Headers(), request, ProxySettings())

        assert "access-control-allow-headers" not in headers
        assert "access-control-allow-origin" in headers

    def test_configured_and_requested_deletions(self):
        upstream = httpx.Headers(
            {
                "server": "nginx",
                "x-powered-by": "php",
                "set-cookie": "a=b",
                "content-type": "text/plain",
                "transfer-encoding": "chunked",
                "x-response-headers-delete": "echoed",
            }
        )
        request = _request(query={"response-headers-to-delete": "set-cookie"})
        settings = ProxySettings(response_headers_to_delete=("Server", "X-Powered-By"))

        headers = compute_response_headers(upstream, request, settings)

        for name in (
            "server",
            "x-powered-by",
            "set-cookie",
            "transfer-encoding",
            "x-response-headers-delete",
        ):
            assert name not in headers
        assert headers["content-type"] == "text/plain"

    def test_multi_value_headers_survive(self):
        upstream = httpx.Headers([("set-cookie", "a=1"), ("set-cookie", "b=2")])

        headers = compute_response_headers(upstream, _request(), ProxySettings())

        assert headers.get_list("set-cookie") == ["a=1", "b=2"]


def test_upstream_response_can_name_headers_to_withhold():
    upstream = httpx.Headers(
        [
            ("response-headers-to-delete", "X-Internal"),
            ("x-response-headers-delete", "x-debug-id, server"),
            ("x-internal", "leak"),
            ("x-debug-id", "42"),
            ("server", "nginx"),
            ("content-type", "text/plain"),
        ]
    )

    headers = compute_response_headers(upstream, _request(), ProxySettings())

    for name in (
        "x-internal",
        "x-debug-id",
        "server",
        "response-headers-to-delete",
        "x-response-headers-delete",
    ):
        assert name not in headers
    assert headers["content-type"] == "text/plain"
    assert headers["access-control-allow-origin"] == "*"


def test_response_delete_set_includes_upstream_carriers_after_request_sources():
    request = _request(headers={"response-headers-to-delete": "via"})
    upstream = httpx.Headers({"response-headers-to-delete": "x-internal, VIA"})
    settings = ProxySettings(response_headers_to_delete=("server",))

    rules = response_delete_set(request, settings, upstream)

    assert rules.names == ("via", "x-internal", "server")
