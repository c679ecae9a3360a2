from __future__ import annotations

from datetime import timedelta

import httpx
import pytest

from meta_ads_mcp.errors import McpErrorCode, MCPException

ACCOUNTS_PAGE = {
    "data": [
        {"id": "act_1", "name": "Main", "currency": "USD", "account_status": 1, "business": {"id": "b1", "name": "Biz"}},
        {"id": "act_2", "name": "Second", "currency": "EUR", "account_status": 2},
    ]
}


@pytest.fixture
def accounts_route(respx_mock, graph_url):
    return respx_mock.get(graph_url("me/adaccounts")).mock(return_value=httpx.Response(200, json=ACCOUNTS_PAGE))


@pytest.fixture
async def user_session(tool_env, accounts_route):
    return await tool_env.sessions.create_user_session(
        profile={"id": "42", "name": "Ada", "email": "ada@example.com"},
        access_token="user_token",
    )


@pytest.mark.asyncio
async def test_create_user_session_loads_accounts(tool_env, user_session, accounts_route):
    assert len(user_session.session_id) == 64
    assert user_session.meta_user_id == "42"
    assert [account.id for account in user_session.available_accounts] == ["act_1", "act_2"]
    assert user_session.available_accounts[0].business.name == "Biz"
    assert user_session.available_accounts[1].status == "2"

    request = accounts_route.calls.last.request
    assert request.headers["Authorization"] == "Bearer user_token"

    again = await tool_env.sessions.get_session_for_user("42")
    assert again is not None
    assert again.session_id == user_session.session_id


@pytest.mark.asyncio
async def test_public_view_hides_token(user_session):
    view = user_session.public_view()
    assert "access_token" not in view
    assert view["email"] == "ada@example.com"


@pytest.mark.asyncio
async def test_select_account_requires_access(tool_env, user_session):
    with pytest.raises(MCPException) as exc:
        await tool_env.sessions.select_account(user_session.session_id, "act_999")
    assert exc.value.error.code == McpErrorCode.PERMISSION

    account_session = await tool_env.sessions.select_account(user_session.session_id, "1")
    assert account_session.account_id == "act_1"
    assert account_session.access_token == "user_token"

    refreshed = await tool_env.sessions.require_user_session(user_session.session_id)
    assert refreshed.selected_account_id == "act_1"


@pytest.mark.asyncio
async def test_unknown_session_is_not_found(tool_env):
    with pytest.raises(MCPException) as exc:
        await tool_env.sessions.select_account("missing", "act_1")
    assert exc.value.error.code == McpErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_scope_requires_selected_account(tool_env, user_session):
    with pytest.raises(MCPException) as exc:
        await tool_env.sessions.get_or_create_scope(user_session.session_id, "act_2")
    assert exc.value.error.code == McpErrorCode.NOT_FOUND

    await tool_env.sessions.select_account(user_session.session_id, "act_2")
    scope = await tool_env.sessions.get_or_create_scope(user_session.session_id, "act_2")
    assert scope.server_name == "meta-ads-mcp-act_2"
    assert await tool_env.sessions.get_or_create_scope(user_session.session_id, "2") is scope
    assert tool_env.sessions.get_scope(user_session.session_id, "act_2") is scope


@pytest.mark.asyncio
async def test_cleanup_idle_scopes(tool_env, user_session):
    await tool_env.sessions.select_account(user_session.session_id, "act_1")
    scope = await tool_env.sessions.get_or_create_scope(user_session.session_id, "act_1")

    assert await tool_env.sessions.cleanup_idle_scopes() == 0
    scope.last_used -= timedelta(seconds=tool_env.settings.scope_idle_seconds + 1)
    assert await tool_env.sessions.cleanup_idle_scopes() == 1
    assert tool_env.sessions.get_scope(user_session.session_id, "act_1") is None


@pytest.mark.asyncio
async def test_revoke_session_drops_everything(tool_env, user_session):
    await tool_env.sessions.select_account(user_session.session_id, "act_1")
    await tool_env.sessions.get_or_create_scope(user_session.session_id, "act_1")

    assert await tool_env.sessions.revoke_session(user_session.session_id) is True
    assert await tool_env.sessions.get_user_session(user_session.session_id) is None
    assert await tool_env.sessions.get_account_session(user_session.session_id, "act_1") is None
    assert await tool_env.sessions.get_session_for_user("42") is None
    assert tool_env.sessions.get_scope(user_session.session_id, "act_1") is None
    assert await tool_env.sessions.revoke_session(user_session.session_id) is False


@pytest.mark.asyncio
async def test_revoking_an_older_login_keeps_the_newer_one_indexed(tool_env, user_session):
    newer = await tool_env.sessions.create_user_session(profile={"id": "42"}, access_token="second_token")

    assert await tool_env.sessions.revoke_session(user_session.session_id) is True

    current = await tool_env.sessions.get_session_for_user("42")
    assert current is not None
    assert current.session_id == newer.session_id


@pytest.mark.asyncio
async def test_user_index_slides_with_its_session(tool_env, accounts_route, monkeypatch):
    clock = [0.0]
    monkeypatch.setattr("meta_ads_mcp.storage.kv.time.monotonic", lambda: clock[0])
    ttl = tool_env.sessions.ttl_seconds
    session = await tool_env.sessions.create_user_session(profile={"id": "7"}, access_token="user_token")

    clock[0] = ttl - 10
    assert await tool_env.sessions.get_user_session(session.session_id) is not None

    clock[0] = ttl + 10
    found = await tool_env.sessions.get_session_for_user("7")
    assert found is not None
    assert found.session_id == session.session_id
