"""Example: log a user in through the broker, pick an account and run tools on it."""

from __future__ import annotations

import asyncio
import os

from meta_ads_mcp.meta_client import CampaignList
from meta_ads_sdk import BrokerClient, MetaAdsSdk


async def main() -> None:
    base_url = os.getenv("META_ADS_MCP_BASE_URL", "http://localhost:8000")

    async with BrokerClient(base_url=base_url) as broker:
        started = await broker.start_auth(redirect_uri=os.getenv("META_ADS_MCP_REDIRECT_URI"))
        print("Send the user to:", started["auth_url"])
        code = os.environ.get("META_ADS_MCP_LOGIN_CODE")
        if not code:
            print("Set META_ADS_MCP_LOGIN_CODE and META_ADS_MCP_LOGIN_STATE from the callback to continue.")
            return

        state = os.environ.get("META_ADS_MCP_LOGIN_STATE", started["state"])
        login = await broker.handle_auth_callback(code=code, state=state)
        session_id = login["session"]["session_id"]
        accounts = login["session"]["available_accounts"]
        if not accounts:
            print("The user has no ad accounts.")
            return

        account_id = accounts[0]["id"]
        await broker.select_account(session_id, account_id)
        connection = await broker.create_mcp_connection(session_id, account_id)
        print("Scoped server:", connection["server_name"])

    async with MetaAdsSdk(base_url=base_url, session_id=session_id) as sdk:
        campaigns = await sdk.campaigns_list(CampaignList(status="ACTIVE"))
        print(campaigns.data)


if __name__ == "__main__":
    asyncio.run(main())
