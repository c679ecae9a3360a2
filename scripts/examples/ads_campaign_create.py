"""Example: create a Campaign → AdSet → Creative → Ad stack."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any

from meta_ads_mcp.meta_client import AdCreate, AdSetCreate, CampaignCreate, CreativeCreate
from meta_ads_sdk import MetaAdsSdk


def _loads_env(key: str, default: str) -> dict[str, Any]:
    return json.loads(os.environ.get(key, default))


async def main() -> None:
    base_url = os.getenv("META_ADS_MCP_BASE_URL", "http://localhost:8000")
    access_token = os.environ["META_ADS_MCP_ACCESS_TOKEN"]
    ad_account_id = os.environ["META_ADS_MCP_AD_ACCOUNT_ID"]

    campaign = CampaignCreate(
        ad_account_id=ad_account_id,
        name=os.environ.get("META_ADS_MCP_CAMPAIGN_NAME", "MCP Campaign"),
        objective=os.environ.get("META_ADS_MCP_CAMPAIGN_OBJECTIVE", "OUTCOME_TRAFFIC"),
    )

    # campaign_id is filled in once the campaign exists
    adset = AdSetCreate(
        campaign_id="pending",
        name="MCP Ad Set",
        daily_budget=1000,
        optimization_goal="LINK_CLICKS",
        targeting=_loads_env("META_ADS_MCP_TARGETING", '{"geo_locations": {"countries": ["US"]}}'),
    )

    creative = CreativeCreate(
        ad_account_id=ad_account_id,
        name="MCP Creative",
        object_story_spec={
            "page_id": os.environ.get("META_ADS_MCP_PAGE_ID", ""),
            "link_data": {
                "message": "Check out our offer",
                "link": os.environ.get("META_ADS_MCP_CREATIVE_LINK", "https://www.meta.com"),
            },
        },
    )

    ad = AdCreate(ad_account_id=ad_account_id, adset_id="pending", name="MCP Ad", creative_id="pending")

    async with MetaAdsSdk(base_url=base_url, access_token=access_token) as sdk:
        result = await sdk.create_campaign_stack(campaign=campaign, adset=adset, creative=creative, ad=ad)
        print(json.dumps(result, indent=2))


if __name__ == "__main__":
    asyncio.run(main())
