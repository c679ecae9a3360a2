"""Example: generate a login URL and exchange a code using the SDK."""

from __future__ import annotations

import asyncio
import os

from meta_ads_mcp.meta_client import AuthLoginBeginRequest, AuthLoginCompleteRequest
from meta_ads_sdk import MetaAdsSdk


async def main() -> None:
    base_url = os.getenv("META_ADS_MCP_BASE_URL", "http://localhost:8000")
    scope_env = os.getenv("META_ADS_MCP_LOGIN_SCOPES", "ads_read,ads_management")
    scopes = [scope.strip() for scope in scope_env.split(",") if scope.strip()]

    async with MetaAdsSdk(base_url=base_url) as sdk:
        begin = await sdk.auth_login_begin(AuthLoginBeginRequest(scopes=scopes))
        print("Login URL:", begin.authorization_url)
        print("State:", begin.state)
        code = os.environ.get("META_ADS_MCP_LOGIN_CODE")
        if not code:
            print("Set META_ADS_MCP_LOGIN_CODE with the authorization code to complete the flow.")
            return
        state = os.environ.get("META_ADS_MCP_LOGIN_STATE", begin.state)
        complete = await sdk.auth_login_complete(AuthLoginCompleteRequest(code=code, state=state, create_session=True))
        print("Scopes:", complete.scopes)
        print("Session:", complete.session_id)


if __name__ == "__main__":
    asyncio.run(main())
