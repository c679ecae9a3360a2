import httpx
import pytest
from unittest.mock import MagicMock

from meta_ads_mcp.mcp_tools.sessions import register
from meta_ads_mcp.meta_client import SessionRequest, SessionSelectAccount


@pytest.fixture
def registered_tools(tool_env, collect):
    return collect(register, tool_env)


@pytest.fixture
async def session_id(tool_env, respx_mock, graph_url):
    respx_mock.get(graph_url("me/adaccounts")).mock(
        return_value=httpx.Response(200, json={"data": [{"id": "act_1", "name": "Main"}, {"id": "act_2"}]})
    )
    session = await tool_env.sessions.create_user_session(
        profile={"id": "42", "email": "ada@example.com"}, access_token="user_token"
    )
    return session.session_id


@pytest.fixture
def session_ctx(session_id):
    c = MagicMock()
    c.request_context.meta = None
    c.request_context.request.headers = {"x-session-id": session_id}
    return c


@pytest.mark.asyncio
async def test_sessions_get_from_header(registered_tools, session_ctx, session_id):
    result = await registered_tools["sessions.get"](SessionRequest(), session_ctx)

    assert result["ok"] is True
    assert result["data"]["session_id"] == session_id
    assert "access_token" not in result["data"]


@pytest.mark.asyncio
async def test_sessions_get_requires_id(registered_tools, anonymous_ctx):
    result = await registered_tools["sessions.get"](SessionRequest(), anonymous_ctx)

    assert result["ok"] is False
    assert result["error"]["code"] == "VALIDATION"


@pytest.mark.asyncio
async def test_sessions_get_unknown(registered_tools, anonymous_ctx):
    result = await registered_tools["sessions.get"](SessionRequest(session_id="nope"), anonymous_ctx)

    assert result["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_sessions_accounts_list(registered_tools, session_ctx):
    result = await registered_tools["sessions.accounts.list"](SessionRequest(), session_ctx)

    assert [account["id"] for account in result["data"]["accounts"]] == ["act_1", "act_2"]
    assert result["data"]["selected_account_id"] is None
    assert result["meta"] == {"count": 2}


@pytest.mark.asyncio
async def test_sessions_account_select(registered_tools, session_ctx, session_id):
    result = await registered_tools["sessions.account.select"](SessionSelectAccount(ad_account_id="2"), session_ctx)

    assert result["ok"] is True
    assert result["data"] == {"session_id": session_id, "account_id": "act_2", "server_name": "meta-ads-mcp-act_2"}

    listed = await registered_tools["sessions.accounts.list"](SessionRequest(), session_ctx)
    assert listed["data"]["selected_account_id"] == "act_2"


@pytest.mark.asyncio
async def test_sessions_account_select_unknown_account(registered_tools, session_ctx):
    result = await registered_tools["sessions.account.select"](SessionSelectAccount(ad_account_id="act_9"), session_ctx)

    assert result["error"]["code"] == "PERMISSION"


@pytest.mark.asyncio
async def test_sessions_revoke(registered_tools, session_ctx, session_id):
    result = await registered_tools["sessions.revoke"](SessionRequest(), session_ctx)
    assert result["data"] == {"session_id": session_id, "revoked": True}

    again = await registered_tools["sessions.revoke"](SessionRequest(), session_ctx)
    assert again["data"]["revoked"] is False
