from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from meta_ads_mcp.auth import MetaOAuthClient, OAuthStateStore
from meta_ads_mcp.auth.oauth import DEFAULT_LONG_LIVED_SECONDS
from meta_ads_mcp.config import get_settings
from meta_ads_mcp.errors import McpErrorCode, MCPException
from meta_ads_mcp.storage import DatabaseKeyValueStore, MemoryKeyValueStore


@pytest.fixture
def oauth_client() -> MetaOAuthClient:
    return MetaOAuthClient(get_settings())


def test_build_authorization_url(oauth_client):
    url = httpx.URL(
        oauth_client.build_authorization_url(
            scopes=["ads_read", "ads_management", "ads_read"],
            redirect_uri="https://client.example.com/callback",
            state="abc",
        )
    )
    assert url.path == "/v23.0/dialog/oauth"
    assert url.params["client_id"] == "app"
    assert url.params["scope"] == "ads_management,ads_read"
    assert url.params["state"] == "abc"
    assert url.params["response_type"] == "code"


@pytest.mark.asyncio
async def test_state_is_single_use():
    states = OAuthStateStore(MemoryKeyValueStore(), ttl_seconds=60)
    state = await states.issue({"redirect_uri": "https://client.example.com/callback"})

    record = await states.consume(state)
    assert record["redirect_uri"] == "https://client.example.com/callback"
    assert "issued_at" in record

    with pytest.raises(MCPException) as exc:
        await states.consume(state)
    assert exc.value.error.code == McpErrorCode.VALIDATION


@pytest.mark.asyncio
@pytest.mark.parametrize("store_factory", [MemoryKeyValueStore, DatabaseKeyValueStore])
async def test_concurrent_consumers_accept_a_state_once(store_factory):
    states = OAuthStateStore(store_factory(), ttl_seconds=60)
    state = await states.issue({"redirect_uri": "https://client.example.com/callback"})

    results = await asyncio.gather(*(states.consume(state) for _ in range(5)), return_exceptions=True)

    accepted = [result for result in results if isinstance(result, dict)]
    rejected = [result for result in results if isinstance(result, MCPException)]
    assert len(accepted) == 1
    assert len(rejected) == 4
    assert all(error.error.code == McpErrorCode.VALIDATION for error in rejected)


@pytest.mark.asyncio
async def test_state_missing_is_rejected():
    states = OAuthStateStore(MemoryKeyValueStore(), ttl_seconds=60)
    with pytest.raises(MCPException):
        await states.consume(None)
    with pytest.raises(MCPException):
        await states.consume("never-issued")


@pytest.mark.asyncio
async def test_exchange_code(oauth_client, respx_mock, graph_url):
    route = respx_mock.get(graph_url("oauth/access_token")).mock(
        return_value=httpx.Response(200, json={"access_token": "short", "token_type": "bearer", "expires_in": 3600})
    )

    result = await oauth_client.exchange_code(code="the-code", redirect_uri="https://client.example.com/callback")

    assert result["access_token"] == "short"
    assert result["expires_at"] is not None
    assert "access_token" not in result["raw"]
    params = route.calls.last.request.url.params
    assert params["code"] == "the-code"
    assert params["client_secret"] == "secret"


@pytest.mark.asyncio
async def test_long_lived_exchange_defaults_expiry(oauth_client, respx_mock, graph_url):
    respx_mock.get(graph_url("oauth/access_token")).mock(
        return_value=httpx.Response(200, json={"access_token": "long"})
    )

    result = await oauth_client.exchange_long_lived_token(access_token="short")

    expires_at = datetime.fromisoformat(result["expires_at"])
    remaining = (expires_at - datetime.now(timezone.utc)).total_seconds()
    assert DEFAULT_LONG_LIVED_SECONDS - 60 < remaining <= DEFAULT_LONG_LIVED_SECONDS


@pytest.mark.asyncio
async def test_exchange_failure_maps_to_auth(oauth_client, respx_mock, graph_url):
    respx_mock.get(graph_url("oauth/access_token")).mock(
        return_value=httpx.Response(400, json={"error": {"message": "Invalid verification code"}})
    )

    with pytest.raises(MCPException) as exc:
        await oauth_client.exchange_code(code="bad", redirect_uri="https://client.example.com/callback")

    assert exc.value.error.code == McpErrorCode.AUTH
    assert exc.value.error.message == "Invalid verification code"


@pytest.mark.asyncio
async def test_exchange_server_error_maps_to_remote(oauth_client, respx_mock, graph_url):
    respx_mock.get(graph_url("oauth/access_token")).mock(return_value=httpx.Response(503))

    with pytest.raises(MCPException) as exc:
        await oauth_client.exchange_code(code="c", redirect_uri="https://client.example.com/callback")

    assert exc.value.error.code == McpErrorCode.REMOTE_5XX


@pytest.mark.asyncio
async def test_missing_access_token_in_response(oauth_client, respx_mock, graph_url):
    respx_mock.get(graph_url("oauth/access_token")).mock(return_value=httpx.Response(200, json={}))

    with pytest.raises(MCPException) as exc:
        await oauth_client.exchange_code(code="c", redirect_uri="https://client.example.com/callback")

    assert exc.value.error.code == McpErrorCode.AUTH


def test_appsecret_proof_is_hmac(oauth_client):
    proof = oauth_client.appsecret_proof("token")
    assert len(proof) == 64
    assert proof == oauth_client.appsecret_proof("token")
    assert proof != oauth_client.appsecret_proof("other")
