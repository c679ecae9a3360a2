import json
from unittest.mock import AsyncMock

import httpx
import pytest

from meta_ads_mcp.errors import McpErrorCode, MCPException
from meta_ads_mcp.meta_client.client import MetaGraphApiClient, encode_graph_params, normalize_account_id


@pytest.fixture
async def client():
    c = MetaGraphApiClient()
    c._backoff.sleep = AsyncMock()
    yield c
    await c.aclose()


def test_normalize_account_id():
    assert normalize_account_id("123") == "act_123"
    assert normalize_account_id("act_123") == "act_123"


def test_encode_graph_params():
    encoded = encode_graph_params(
        {
            "fields": "id,name",
            "limit": 25,
            "effective_status": ["ACTIVE"],
            "targeting_spec": {"geo_locations": {"countries": ["US"]}},
            "is_enabled": True,
            "after": None,
        }
    )
    assert encoded["fields"] == "id,name"
    assert encoded["limit"] == 25
    assert encoded["effective_status"] == '["ACTIVE"]'
    assert json.loads(encoded["targeting_spec"]) == {"geo_locations": {"countries": ["US"]}}
    assert encoded["is_enabled"] == "true"
    assert "after" not in encoded


@pytest.mark.asyncio
async def test_request_success(client, respx_mock):
    route = respx_mock.get("https://example.com/me").mock(
        return_value=httpx.Response(200, json={"id": "123"}, headers={"x-app-usage": "10%"})
    )

    resp = await client.request(access_token="tok", method="get", path="me")
    assert resp.status_code == 200
    assert resp.json()["id"] == "123"
    assert route.calls.last.request.headers["Authorization"] == "Bearer tok"


@pytest.mark.asyncio
async def test_request_retry_on_500(client, respx_mock):
    route = respx_mock.get("https://example.com/me")
    route.side_effect = [
        httpx.Response(500),
        httpx.Response(500),
        httpx.Response(200, json={"ok": True}),
    ]

    resp = await client.request(access_token="tok", method="GET", path="/me")
    assert resp.status_code == 200
    assert route.call_count == 3


@pytest.mark.asyncio
async def test_request_retry_exhausted(client, respx_mock):
    respx_mock.get("https://example.com/me").mock(return_value=httpx.Response(500))

    with pytest.raises(MCPException) as exc:
        await client.request(access_token="tok", method="GET", path="/me")

    assert exc.value.error.code == McpErrorCode.REMOTE_5XX


@pytest.mark.asyncio
async def test_request_rate_limit_then_success(client, respx_mock):
    route = respx_mock.get("https://example.com/me")
    route.side_effect = [
        httpx.Response(429, headers={"Retry-After": "0"}),
        httpx.Response(200, json={"ok": True}),
    ]

    resp = await client.request(access_token="tok", method="GET", path="/me")
    assert resp.status_code == 200
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_error_mapping_auth(client, respx_mock):
    respx_mock.get("https://example.com/me").mock(
        return_value=httpx.Response(401, json={"error": {"message": "Bad token", "code": 190}})
    )

    with pytest.raises(MCPException) as exc:
        await client.request(access_token="tok", method="GET", path="/me")

    assert exc.value.error.code == McpErrorCode.AUTH
    assert exc.value.error.message == "Bad token"


@pytest.mark.asyncio
async def test_error_mapping_permission(client, respx_mock):
    respx_mock.get("https://example.com/me").mock(
        return_value=httpx.Response(403, json={"error": {"message": "No perm", "code": 200}})
    )

    with pytest.raises(MCPException) as exc:
        await client.request(access_token="tok", method="GET", path="/me")

    assert exc.value.error.code == McpErrorCode.PERMISSION


@pytest.mark.asyncio
async def test_error_mapping_keeps_user_message_and_trace(client, respx_mock):
    respx_mock.post("https://example.com/v23.0/act_1/campaigns").mock(
        return_value=httpx.Response(
            400,
            json={
                "error": {
                    "message": "Invalid parameter",
                    "code": 100,
                    "error_user_title": "Budget too low",
                    "error_user_msg": "Raise the daily budget",
                    "fbtrace_id": "trace-1",
                }
            },
        )
    )

    with pytest.raises(MCPException) as exc:
        await client.request(access_token="tok", method="POST", path="/v23.0/act_1/campaigns", json_body={"name": "x"})

    error = exc.value.error
    assert error.code == McpErrorCode.VALIDATION
    assert error.details["user_message"] == "Raise the daily budget"
    assert error.details["meta"]["fbtrace_id"] == "trace-1"


@pytest.mark.asyncio
async def test_get_responses_are_cached_until_a_write(client, respx_mock):
    read = respx_mock.get("https://example.com/v23.0/act_1/campaigns").mock(
        return_value=httpx.Response(200, json={"data": []})
    )
    respx_mock.post("https://example.com/v23.0/act_1/campaigns").mock(
        return_value=httpx.Response(200, json={"id": "c1"})
    )

    await client.request(access_token="tok", method="GET", path="/v23.0/act_1/campaigns", use_cache=True)
    await client.request(access_token="tok", method="GET", path="/v23.0/act_1/campaigns", use_cache=True)
    assert read.call_count == 1

    await client.request(access_token="tok", method="POST", path="/v23.0/act_1/campaigns", json_body={"name": "c"})
    await client.request(access_token="tok", method="GET", path="/v23.0/act_1/campaigns", use_cache=True)
    assert read.call_count == 2


@pytest.mark.asyncio
async def test_cached_responses_are_not_shared_between_tokens(client, respx_mock):
    def by_token(request: httpx.Request) -> httpx.Response:
        if request.headers["Authorization"] == "Bearer token_a":
            return httpx.Response(200, json={"data": [{"id": "campaign_of_a"}]})
        return httpx.Response(403, json={"error": {"message": "No access", "code": 200}})

    read = respx_mock.get("https://example.com/v23.0/act_1/campaigns").mock(side_effect=by_token)

    response = await client.request(access_token="token_a", method="GET", path="/v23.0/act_1/campaigns", use_cache=True)
    assert response.json()["data"][0]["id"] == "campaign_of_a"

    with pytest.raises(MCPException) as exc:
        await client.request(access_token="token_b", method="GET", path="/v23.0/act_1/campaigns", use_cache=True)
    assert exc.value.error.code == McpErrorCode.PERMISSION
    assert read.call_count == 2


@pytest.mark.asyncio
async def test_batch_request(client, respx_mock):
    route = respx_mock.post("https://example.com/v23.0/").mock(
        return_value=httpx.Response(200, json=[{"code": 200, "body": "{}"}])
    )

    results = await client.batch(access_token="tok", operations=[{"method": "GET", "relative_url": "me"}])
    assert len(results) == 1
    assert results[0]["code"] == 200
    assert b"batch=" in route.calls.last.request.content


@pytest.mark.asyncio
async def test_batch_rejects_more_than_fifty(client):
    with pytest.raises(MCPException) as exc:
        await client.batch(access_token="tok", operations=[{"method": "GET", "relative_url": "me"}] * 51)
    assert exc.value.error.code == McpErrorCode.VALIDATION


@pytest.mark.asyncio
async def test_paginate(client, respx_mock):
    respx_mock.get("https://example.com/me/adaccounts").mock(
        side_effect=[
            httpx.Response(200, json={"data": [{"id": "1"}], "paging": {"cursors": {"after": "abc"}}}),
            httpx.Response(200, json={"data": [{"id": "2"}], "paging": {}}),
        ]
    )

    items = []
    async for page in client.paginate(access_token="tok", method="GET", path="/me/adaccounts"):
        items.extend(page["data"])

    assert [item["id"] for item in items] == ["1", "2"]


@pytest.mark.asyncio
async def test_paginate_stops_on_repeated_cursor(client, respx_mock):
    route = respx_mock.get("https://example.com/me/adaccounts").mock(
        return_value=httpx.Response(200, json={"data": [{"id": "1"}], "paging": {"cursors": {"after": "same"}}})
    )

    pages = [page async for page in client.paginate(access_token="tok", method="GET", path="/me/adaccounts")]

    assert len(pages) == 2
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_paginate_respects_max_pages(client, respx_mock):
    route = respx_mock.get("https://example.com/me/adaccounts").mock(
        side_effect=[
            httpx.Response(200, json={"data": [{"id": str(i)}], "paging": {"cursors": {"after": f"c{i}"}}})
            for i in range(5)
        ]
    )

    pages = [
        page async for page in client.paginate(access_token="tok", method="GET", path="/me/adaccounts", max_pages=2)
    ]

    assert len(pages) == 2
    assert route.call_count == 2


@pytest.mark.asyncio
async def test_debug_token(client, respx_mock):
    route = respx_mock.get("https://example.com/v23.0/debug_token").mock(
        return_value=httpx.Response(
            200,
            json={"data": {"is_valid": True, "app_id": "123", "expires_at": 1893456000, "scopes": ["ads_read"]}},
        )
    )

    result = await client.debug_token(access_token="tok")
    assert result["is_valid"] is True
    assert result["app_id"] == "123"
    assert result["expires_at"].year == 2030
    request = route.calls.last.request
    assert request.url.params["input_token"] == "tok"
    assert request.headers["Authorization"] == "Bearer app|secret"
