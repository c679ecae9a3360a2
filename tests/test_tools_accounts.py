import httpx
import pytest

from meta_ads_mcp.mcp_tools.accounts import register
from meta_ads_mcp.meta_client import AdAccountGet, AdAccountsList


@pytest.fixture
def registered_tools(tool_env, collect):
    return collect(register, tool_env)


@pytest.mark.asyncio
async def test_accounts_list(registered_tools, ctx, respx_mock, graph_url):
    route = respx_mock.get(graph_url("me/adaccounts")).mock(
        return_value=httpx.Response(200, json={"data": [{"id": "act_1", "name": "Main"}]})
    )

    result = await registered_tools["ads.accounts.list"](AdAccountsList(), ctx)

    assert result["ok"] is True
    assert result["data"]["data"]["data"][0]["id"] == "act_1"
    assert "currency" in route.calls.last.request.url.params["fields"]


@pytest.mark.asyncio
async def test_accounts_list_for_business(registered_tools, ctx, respx_mock, graph_url):
    route = respx_mock.get(graph_url("biz_1/owned_ad_accounts")).mock(
        return_value=httpx.Response(200, json={"data": []})
    )

    result = await registered_tools["ads.accounts.list"](AdAccountsList(business_id="biz_1", fields=["id"]), ctx)

    assert result["ok"] is True
    assert route.calls.last.request.url.params["fields"] == "id"


@pytest.mark.asyncio
async def test_accounts_get_uses_default_account(registered_tools, tool_env, ctx, respx_mock, graph_url):
    tool_env.settings.default_ad_account_id = "777"
    respx_mock.get(graph_url("act_777")).mock(return_value=httpx.Response(200, json={"id": "act_777"}))

    result = await registered_tools["ads.accounts.get"](AdAccountGet(), ctx)

    assert result["ok"] is True
    assert result["data"]["data"]["id"] == "act_777"


@pytest.mark.asyncio
async def test_accounts_get_permission_error(registered_tools, ctx, respx_mock, graph_url):
    respx_mock.get(graph_url("act_1")).mock(
        return_value=httpx.Response(403, json={"error": {"message": "No permission", "code": 200}})
    )

    result = await registered_tools["ads.accounts.get"](AdAccountGet(ad_account_id="1"), ctx)

    assert result["ok"] is False
    assert result["error"]["code"] == "PERMISSION"
