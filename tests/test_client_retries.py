from __future__ import annotations

from unittest.mock import AsyncMock

import httpx
import pytest

respx = pytest.importorskip("respx")

from meta_ads_mcp.config import get_settings
from meta_ads_mcp.errors import McpErrorCode, MCPException
from meta_ads_mcp.meta_client.client import MetaGraphApiClient


@pytest.mark.asyncio
@respx.mock
async def test_request_retries_on_500(monkeypatch) -> None:
    monkeypatch.setenv("META_ADS_MCP_MAX_RETRIES", "1")
    monkeypatch.setenv("META_ADS_MCP_GRAPH_API_VERSION", "v1.0")
    get_settings.cache_clear()

    route = respx.get("https://example.com/v1.0/test").mock(
        side_effect=[
            httpx.Response(500, json={"error": {"message": "fail"}}),
            httpx.Response(200, json={"success": True}),
        ]
    )

    client = MetaGraphApiClient()
    client._backoff.sleep = AsyncMock()
    response = await client.request(access_token="token", method="GET", path="/v1.0/test")
    await client.aclose()

    assert response.json()["success"] is True
    assert route.call_count == 2
    client._backoff.sleep.assert_awaited_once_with(0)


@pytest.mark.asyncio
@respx.mock
async def test_request_maps_expired_token_to_auth(monkeypatch) -> None:
    monkeypatch.setenv("META_ADS_MCP_MAX_RETRIES", "0")
    monkeypatch.setenv("META_ADS_MCP_GRAPH_API_VERSION", "v1.0")
    get_settings.cache_clear()

    respx.get("https://example.com/v1.0/test").mock(
        return_value=httpx.Response(
            400,
            json={"error": {"message": "Session has expired", "code": 190, "error_subcode": 463}},
        )
    )

    client = MetaGraphApiClient()
    with pytest.raises(MCPException) as exc:
        await client.request(access_token="token", method="GET", path="/v1.0/test")
    await client.aclose()

    assert exc.value.error.code == McpErrorCode.AUTH
    assert exc.value.error.details["error_subcode"] == 463


@pytest.mark.asyncio
@respx.mock
async def test_throttle_code_blocks_ad_account_without_retry(monkeypatch) -> None:
    monkeypatch.setenv("META_ADS_MCP_GRAPH_API_VERSION", "v1.0")
    get_settings.cache_clear()

    route = respx.get("https://example.com/v1.0/act_42/campaigns").mock(
        return_value=httpx.Response(400, json={"error": {"message": "User request limit reached", "code": 17}})
    )

    client = MetaGraphApiClient()
    client._backoff.sleep = AsyncMock()
    with pytest.raises(MCPException) as exc:
        await client.request(access_token="token", method="GET", path="/v1.0/act_42/campaigns", account_id="42")

    assert route.call_count == 1
    assert exc.value.error.code == McpErrorCode.RATE_LIMIT
    assert exc.value.error.retry_after == get_settings().standard_block_seconds

    # The next call for the same account fails fast without touching the network
    with pytest.raises(MCPException) as blocked:
        await client.request(access_token="token", method="GET", path="/v1.0/act_42/campaigns", account_id="act_42")
    await client.aclose()

    assert route.call_count == 1
    assert blocked.value.error.code == McpErrorCode.RATE_LIMIT
    assert blocked.value.error.details["account_id"] == "act_42"


@pytest.mark.asyncio
@respx.mock
async def test_transport_errors_exhaust_into_remote_error(monkeypatch) -> None:
    monkeypatch.setenv("META_ADS_MCP_MAX_RETRIES", "2")
    get_settings.cache_clear()

    route = respx.get("https://example.com/v23.0/me").mock(side_effect=httpx.ConnectError("boom"))

    client = MetaGraphApiClient()
    client._backoff.sleep = AsyncMock()
    with pytest.raises(MCPException) as exc:
        await client.request(access_token="token", method="GET", path="/v23.0/me")
    await client.aclose()

    assert route.call_count == 3
    assert exc.value.error.code == McpErrorCode.REMOTE_5XX
    assert client._backoff.sleep.await_count == 2
