"""Example: export ad-level insights with breakdowns as CSV."""

from __future__ import annotations

import asyncio
import json
import os

from meta_ads_mcp.meta_client import InsightsExportRequest
from meta_ads_sdk import MetaAdsSdk


async def main() -> None:
    base_url = os.getenv("META_ADS_MCP_BASE_URL", "http://localhost:8000")
    access_token = os.environ["META_ADS_MCP_ACCESS_TOKEN"]
    ad_account_id = os.environ["META_ADS_MCP_AD_ACCOUNT_ID"]

    fields = json.loads(os.environ.get("META_ADS_MCP_INSIGHTS_FIELDS", '["impressions", "clicks", "spend"]'))
    breakdowns = json.loads(os.environ.get("META_ADS_MCP_INSIGHTS_BREAKDOWNS", '["age", "gender"]'))
    time_range = json.loads(
        os.environ.get("META_ADS_MCP_INSIGHTS_RANGE", '{"since": "2024-01-01", "until": "2024-01-31"}')
    )

    request = InsightsExportRequest(
        object_id=ad_account_id,
        fields=fields,
        level=os.environ.get("META_ADS_MCP_INSIGHTS_LEVEL", "ad"),
        time_range=time_range,
        breakdowns=breakdowns,
        format="csv",
    )

    async with MetaAdsSdk(base_url=base_url, access_token=access_token) as sdk:
        report = await sdk.insights_export(request)
        print(report.data["content"])


if __name__ == "__main__":
    asyncio.run(main())
