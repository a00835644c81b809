"""Tests for the HTTP health probe adapter, using httpx.MockTransport."""

from __future__ import annotations

import httpx
import pytest

from inferencemesh.adapters.outbound.probe import USER_AGENT, HttpHealthProbe, parse_registry
from inferencemesh.domain.entities import AuthConfig, ProviderEndpoint
from inferencemesh.domain.enums import AuthType


def _endpoint(**kwargs) -> ProviderEndpoint:
    kwargs.setdefault("base_url", "https://api.example.test/v1")
    return ProviderEndpoint(**kwargs)


class Recording:
    """MockTransport handler that records requests and replies from a table."""

    def __init__(self, responses: dict[str, httpx.Response] | None = None) -> None:
        self.responses = responses or {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.get(request.url.path, httpx.Response(404))


def _probe(handler) -> HttpHealthProbe:
    return HttpHealthProbe(transport=httpx.MockTransport(handler))


# ═══════════════════════════════════════════════════════════════
#  Health probes
# ═══════════════════════════════════════════════════════════════
class TestProbe:
    @pytest.mark.asyncio
    async def test_healthy_json_payload(self):
        handler = Recording({"/v1/health": httpx.Response(200, json={"status": "ok", "successRate": 0.99})})
        probe = _probe(handler)
        result = await probe.probe(_endpoint(), timeout_s=1)
        await probe.close()

        assert result.ok
        assert result.status_code == 200
        assert result.payload == {"status": "ok", "successRate": 0.99}
        assert result.response_time_ms >= 0
        assert handler.requests[0].headers["User-Agent"] == USER_AGENT

    @pytest.mark.asyncio
    async def test_bearer_token_header(self):
        handler = Recording({"/v1/health": httpx.Response(200, json={})})
        probe = _probe(handler)
        endpoint = _endpoint(authentication=AuthConfig(type=AuthType.BEARER, token="sk-test"))
        await probe.probe(endpoint, timeout_s=1)
        await probe.close()
        assert handler.requests[0].headers["Authorization"] == "Bearer sk-test"

    @pytest.mark.asyncio
    async def test_api_key_header(self):
        handler = Recording({"/v1/health": httpx.Response(200, json={})})
        probe = _probe(handler)
        endpoint = _endpoint(authentication=AuthConfig(type=AuthType.API_KEY, token="key-123"))
        await probe.probe(endpoint, timeout_s=1)
        await probe.close()
        assert handler.requests[0].headers["X-API-Key"] == "key-123"
        assert "Authorization" not in handler.requests[0].headers

    @pytest.mark.asyncio
    async def test_explicit_health_endpoint(self):
        handler = Recording({"/status": httpx.Response(200, json={})})
        probe = _probe(handler)
        result = await probe.probe(
            _endpoint(health_endpoint="https://status.example.test/status"), timeout_s=1
        )
        await probe.close()
        assert result.ok
        assert handler.requests[0].url.host == "status.example.test"

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self):
        handler = Recording({"/v1/health": httpx.Response(503)})
        probe = _probe(handler)
        result = await probe.probe(_endpoint(), timeout_s=1)
        await probe.close()

        assert not result.ok
        assert result.status_code == 503
        assert result.error == "HTTP 503: Service Unavailable"
        assert isinstance(result.exception, httpx.HTTPStatusError)

    @pytest.mark.asyncio
    async def test_unparsable_body_still_healthy(self):
        handler = Recording({"/v1/health": httpx.Response(200, text="OK")})
        probe = _probe(handler)
        result = await probe.probe(_endpoint(), timeout_s=1)
        await probe.close()
        assert result.ok
        assert result.payload is None

    @pytest.mark.asyncio
    async def test_transport_error_is_failure(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        probe = _probe(refuse)
        result = await probe.probe(_endpoint(), timeout_s=1)
        await probe.close()
        assert not result.ok
        assert result.status_code is None
        assert isinstance(result.exception, httpx.ConnectError)
        assert "connection refused" in result.error


# ═══════════════════════════════════════════════════════════════
#  Metadata reads
# ═══════════════════════════════════════════════════════════════
class TestMetadata:
    @pytest.mark.asyncio
    async def test_fetch_models(self):
        handler = Recording({"/v1/models": httpx.Response(200, json={"data": [{"id": "gpt-4o"}]})})
        probe = _probe(handler)
        payload = await probe.fetch_models(_endpoint(), timeout_s=1)
        await probe.close()
        assert payload == {"data": [{"id": "gpt-4o"}]}

    @pytest.mark.asyncio
    async def test_fetch_models_raises_on_error_status(self):
        handler = Recording({"/v1/models": httpx.Response(500)})
        probe = _probe(handler)
        with pytest.raises(httpx.HTTPStatusError):
            await probe.fetch_models(_endpoint(), timeout_s=1)
        await probe.close()
        assert len(handler.requests) == 1

    @pytest.mark.asyncio
    async def test_fetch_models_retries_network_errors(self):
        calls = []

        def flaky(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ReadError("reset", request=request)
            return httpx.Response(200, json={"data": []})

        probe = _probe(flaky)
        assert await probe.fetch_models(_endpoint(), timeout_s=1) == {"data": []}
        await probe.close()
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_fetch_registry(self):
        handler = Recording(
            {
                "/registry": httpx.Response(
                    200,
                    json={"providers": {"mistral": {"baseUrl": "https://mistral.example.test/v1/"}}},
                )
            }
        )
        probe = _probe(handler)
        table = await probe.fetch_registry("https://mesh.example.test/registry", timeout_s=1)
        await probe.close()
        assert table["mistral"].base_url == "https://mistral.example.test/v1"


class TestParseRegistry:
    def test_mapping(self):
        table = parse_registry(
            {
                "cohere": {
                    "base_url": "https://cohere.example.test",
                    "authentication": {"type": "api-key", "apiKey": "c-1"},
                }
            }
        )
        endpoint = table["cohere"]
        assert endpoint.authentication.type == AuthType.API_KEY
        assert endpoint.authentication.token == "c-1"
        assert endpoint.health_url == "https://cohere.example.test/health"

    def test_list(self):
        table = parse_registry([{"id": "a", "baseUrl": "http://a.test"}, {"baseUrl": "http://no-id.test"}])
        assert list(table) == ["a"]

    def test_invalid_entries_skipped(self):
        table = parse_registry({"good": {"base_url": "http://ok.test"}, "bad": {"base_url": "ftp://nope"}})
        assert list(table) == ["good"]

    def test_garbage(self):
        assert parse_registry("not a registry") == {}
