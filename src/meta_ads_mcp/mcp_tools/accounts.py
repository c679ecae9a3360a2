"""Ad account discovery tools."""

from __future__ import annotations

from typing import Mapping

from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException
from ..meta_client import AdAccountGet, AdAccountsList
from .common import READ_SCOPES, ToolEnvironment, failure, fields_param, perform_graph_call, resolve_account_id

ACCOUNT_LIST_FIELDS = (
    "id",
    "name",
    "account_status",
    "currency",
    "timezone_name",
    "balance",
    "business",
)
ACCOUNT_DETAIL_FIELDS = ACCOUNT_LIST_FIELDS + ("amount_spent", "spend_cap", "disable_reason", "funding_source_details")


def register(server: FastMCP, env: ToolEnvironment) -> None:
    version = env.version

    @server.tool(name="ads.accounts.list", structured_output=True, description="List ad accounts the token can reach.")
    async def accounts_list(args: AdAccountsList, ctx: Context) -> Mapping[str, object]:
        try:
            if args.business_id:
                path = f"/{version}/{args.business_id}/owned_ad_accounts"
            else:
                path = f"/{version}/me/adaccounts"
            query = {
                "fields": fields_param(args.fields, ACCOUNT_LIST_FIELDS),
                "limit": args.limit,
                "after": args.after,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=path,
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.accounts.get", structured_output=True, description="Get details of one ad account.")
    async def accounts_get(args: AdAccountGet, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{account_id}",
                query={"fields": fields_param(args.fields, ACCOUNT_DETAIL_FIELDS)},
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)


__all__ = ["ACCOUNT_DETAIL_FIELDS", "ACCOUNT_LIST_FIELDS", "register"]
