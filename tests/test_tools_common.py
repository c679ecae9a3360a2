from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, Mock

import httpx
import pytest
from pydantic import SecretStr

from meta_ads_mcp.errors import McpErrorCode, MCPException
from meta_ads_mcp.mcp_tools.common import (
    ToolEnvironment,
    compute_idempotency_key,
    datetime_to_timestamp,
    ensure_scopes,
    extract_meta,
    find_access_token,
    find_session_id,
    paging_summary,
    perform_graph_call,
    resolve_access_token,
    resolve_account_id,
)


def test_compute_idempotency_key():
    key1 = compute_idempotency_key(method="POST", path="/act_1/campaigns", payload={"name": "hello"})
    key2 = compute_idempotency_key(method="POST", path="/act_1/campaigns", payload={"name": "hello"})
    key3 = compute_idempotency_key(method="POST", path="/act_1/campaigns", payload={"name": "world"})

    assert key1 == key2
    assert key1 != key3


def test_datetime_to_timestamp():
    assert datetime_to_timestamp(None) is None
    dt = datetime(2023, 1, 1, 12, 0, 0)
    assert datetime_to_timestamp(dt) == int(dt.timestamp())


def test_extract_meta():
    headers = {
        "x-app-usage": "10%",
        "other-header": "value",
        "x-fb-trace-id": "trace123",
    }
    meta = extract_meta(headers)
    assert meta["x-app-usage"] == "10%"
    assert meta["x-fb-trace-id"] == "trace123"
    assert "other-header" not in meta


def test_paging_summary():
    assert paging_summary({"data": []}) is None
    summary = paging_summary({"data": [], "paging": {"cursors": {"after": "a", "before": "b"}, "next": "url"}})
    assert summary == {"has_next_page": True, "next_cursor": "a", "previous_cursor": "b"}


def test_find_access_token_provided(anonymous_ctx):
    assert find_access_token(anonymous_ctx, provided="token123") == "token123"


def test_find_access_token_from_meta():
    ctx = MagicMock()
    ctx.request_context.meta = {"access_token": "meta_token"}
    assert find_access_token(ctx) == "meta_token"


def test_find_access_token_from_meta_model():
    ctx = MagicMock()
    meta_mock = MagicMock()
    meta_mock.model_dump.return_value = {"accessToken": "model_token"}
    ctx.request_context.meta = meta_mock
    assert find_access_token(ctx) == "model_token"


def test_find_access_token_from_headers():
    ctx = MagicMock()
    ctx.request_context.meta = None
    ctx.request_context.request.headers = {"authorization": "Bearer header_token"}
    assert find_access_token(ctx) == "header_token"

    ctx.request_context.request.headers = {"x-meta-access-token": "custom_token"}
    assert find_access_token(ctx) == "custom_token"


def test_find_session_id_from_header():
    ctx = MagicMock()
    ctx.request_context.meta = {}
    ctx.request_context.request.headers = {"x-session-id": "sess"}
    assert find_session_id(ctx) == "sess"
    assert find_session_id(ctx, provided="explicit") == "explicit"


@pytest.mark.asyncio
async def test_resolve_access_token_prefers_request(tool_env, ctx):
    assert await resolve_access_token(tool_env, ctx) == "token123"


@pytest.mark.asyncio
async def test_resolve_access_token_from_session(tool_env, respx_mock, graph_url):
    respx_mock.get(graph_url("me/adaccounts")).mock(return_value=httpx.Response(200, json={"data": []}))
    session = await tool_env.sessions.create_user_session(profile={"id": "42"}, access_token="session_token")

    ctx = MagicMock()
    ctx.request_context.meta = {"session_id": session.session_id}
    ctx.request_context.request = None
    assert await resolve_access_token(tool_env, ctx) == "session_token"


@pytest.mark.asyncio
async def test_resolve_access_token_configured(tool_env, anonymous_ctx):
    tool_env.settings.access_token = SecretStr("system_token")
    try:
        assert await resolve_access_token(tool_env, anonymous_ctx) == "system_token"
    finally:
        tool_env.settings.access_token = None


@pytest.mark.asyncio
async def test_resolve_access_token_missing_returns_login_url(tool_env, anonymous_ctx):
    with pytest.raises(MCPException) as exc:
        await resolve_access_token(tool_env, anonymous_ctx, required_scopes=["ads_read"])

    error = exc.value.error
    assert error.code == McpErrorCode.AUTH
    assert "Please login at:" in error.message
    url = httpx.URL(error.details["authorization_url"])
    assert url.params["state"] == error.details["state"]
    assert "ads_read" in url.params["scope"]
    # The issued state is redeemable exactly once
    record = await tool_env.oauth_states.consume(error.details["state"])
    assert record["redirect_uri"] == "https://client.example.com/callback"


@pytest.mark.asyncio
async def test_resolve_account_id(tool_env, anonymous_ctx):
    assert await resolve_account_id(tool_env, anonymous_ctx, "123") == "act_123"

    with pytest.raises(MCPException) as exc:
        await resolve_account_id(tool_env, anonymous_ctx)
    assert exc.value.error.code == McpErrorCode.VALIDATION

    tool_env.settings.default_ad_account_id = "999"
    try:
        assert await resolve_account_id(tool_env, anonymous_ctx) == "act_999"
    finally:
        tool_env.settings.default_ad_account_id = None


@pytest.fixture
async def broker_session(tool_env, respx_mock, graph_url):
    respx_mock.get(graph_url("me/adaccounts")).mock(
        return_value=httpx.Response(200, json={"data": [{"id": "act_1"}, {"id": "act_2"}]})
    )
    return await tool_env.sessions.create_user_session(profile={"id": "42"}, access_token="session_token")


def session_header_ctx(session_id: str) -> MagicMock:
    ctx = MagicMock()
    ctx.request_context.meta = None
    ctx.request_context.request.headers = {"x-session-id": session_id}
    return ctx


@pytest.mark.asyncio
async def test_resolve_account_id_rejects_accounts_outside_the_session(tool_env, broker_session):
    ctx = session_header_ctx(broker_session.session_id)

    assert await resolve_account_id(tool_env, ctx, "2") == "act_2"
    with pytest.raises(MCPException) as exc:
        await resolve_account_id(tool_env, ctx, "act_999")
    assert exc.value.error.code == McpErrorCode.PERMISSION
    assert exc.value.error.details["account_id"] == "act_999"


@pytest.mark.asyncio
async def test_resolve_account_id_rejects_foreign_default_under_session(tool_env, broker_session):
    tool_env.settings.default_ad_account_id = "999"
    try:
        with pytest.raises(MCPException) as exc:
            await resolve_account_id(tool_env, session_header_ctx(broker_session.session_id))
    finally:
        tool_env.settings.default_ad_account_id = None
    assert exc.value.error.code == McpErrorCode.PERMISSION


@pytest.mark.asyncio
async def test_resolve_account_id_keeps_the_scope_alive(tool_env, broker_session):
    session_id = broker_session.session_id
    await tool_env.sessions.select_account(session_id, "act_1")
    scope = await tool_env.sessions.get_or_create_scope(session_id, "act_1")
    scope.last_used -= timedelta(seconds=tool_env.settings.scope_idle_seconds + 1)

    assert await resolve_account_id(tool_env, session_header_ctx(session_id)) == "act_1"

    assert await tool_env.sessions.cleanup_idle_scopes() == 0
    assert tool_env.sessions.get_scope(session_id, "act_1") is scope


@pytest.mark.asyncio
async def test_ensure_scopes(ctx):
    env = MagicMock(spec=ToolEnvironment)
    env.settings = MagicMock()
    env.token_service = AsyncMock()
    env.token_service.ensure_permissions.return_value = Mock(subject_id="123", type=Mock(value="user"))

    token, metadata = await ensure_scopes(env=env, ctx=ctx, required_scopes=["ads_read"])

    assert token == "token123"
    assert metadata.subject_id == "123"
    env.token_service.ensure_permissions.assert_awaited_once()


@pytest.mark.asyncio
async def test_perform_graph_call_success(ctx):
    env = MagicMock(spec=ToolEnvironment)
    env.settings = MagicMock()
    env.token_service = AsyncMock()
    metadata_mock = Mock(subject_id="123", type=Mock(value="user"))
    env.token_service.ensure_permissions.return_value = metadata_mock

    env.client = AsyncMock()
    response_mock = MagicMock()
    response_mock.status_code = 200
    response_mock.headers = {"x-app-usage": "5%"}
    response_mock.json.return_value = {"id": "456"}
    env.client.request.return_value = response_mock

    result = await perform_graph_call(
        env=env,
        ctx=ctx,
        method="POST",
        path="/v23.0/act_1/campaigns",
        query=None,
        body={"name": "hello", "special_ad_categories": None},
        required_scopes=["ads_management"],
        account_id="act_1",
    )

    assert result["ok"] is True
    assert result["data"]["data"] == {"id": "456"}
    assert result["meta"]["x-app-usage"] == "5%"
    assert result["meta"]["token_subject_id"] == "123"

    env.client.request.assert_awaited_once()
    call_args = env.client.request.await_args
    assert call_args.kwargs["json_body"] == {"name": "hello"}
    assert call_args.kwargs["method"] == "POST"
    assert call_args.kwargs["account_id"] == "act_1"


@pytest.mark.asyncio
async def test_perform_graph_call_idempotency(ctx):
    env = MagicMock(spec=ToolEnvironment)
    env.settings = MagicMock()
    env.token_service = AsyncMock()
    env.token_service.ensure_permissions.return_value = Mock(subject_id="123", type=Mock(value="user"))

    env.client = AsyncMock()
    response_mock = MagicMock()
    response_mock.status_code = 200
    response_mock.headers = {}
    response_mock.json.return_value = {}
    env.client.request.return_value = response_mock

    await perform_graph_call(
        env=env,
        ctx=ctx,
        method="POST",
        path="/v23.0/act_1/campaigns",
        query=None,
        body={"name": "hello"},
        required_scopes=["ads_management"],
        idempotency=True,
    )

    call_args = env.client.request.await_args
    assert call_args.kwargs["idempotency_key"] is not None
