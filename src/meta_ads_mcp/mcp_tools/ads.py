"""Marketing API tools for campaigns, ad sets and ads."""

from __future__ import annotations

from typing import Any, Mapping

from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException, McpError, McpErrorCode
from ..meta_client import (
    AdCreate,
    AdGet,
    AdList,
    AdSetCreate,
    AdSetGet,
    AdSetList,
    AdSetUpdate,
    AdUpdate,
    CampaignCreate,
    CampaignGet,
    CampaignList,
    CampaignRef,
    CampaignUpdate,
    normalize_account_id,
)
from .common import (
    READ_SCOPES,
    WRITE_SCOPES,
    ToolEnvironment,
    execute_graph_call,
    failure,
    fields_param,
    isoformat_or_none,
    perform_graph_call,
    resolve_account_id,
    status_filter,
)

CAMPAIGN_FIELDS = (
    "id",
    "name",
    "objective",
    "status",
    "effective_status",
    "created_time",
    "updated_time",
    "start_time",
    "stop_time",
    "budget_remaining",
    "daily_budget",
    "lifetime_budget",
)
CAMPAIGN_DETAIL_FIELDS = CAMPAIGN_FIELDS + ("account_id", "bid_strategy", "spend_cap", "special_ad_categories")
ADSET_FIELDS = (
    "id",
    "name",
    "campaign_id",
    "status",
    "effective_status",
    "created_time",
    "updated_time",
    "start_time",
    "end_time",
    "daily_budget",
    "lifetime_budget",
    "bid_amount",
    "billing_event",
    "optimization_goal",
)
ADSET_DETAIL_FIELDS = ADSET_FIELDS + ("account_id", "targeting", "promoted_object")
AD_FIELDS = (
    "id",
    "name",
    "adset_id",
    "campaign_id",
    "status",
    "effective_status",
    "created_time",
    "updated_time",
    "creative",
)
AD_DETAIL_FIELDS = AD_FIELDS + ("account_id", "tracking_specs", "preview_shareable_link")


def _patch_or_fail(body: dict[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    merged = {key: value for key, value in body.items() if value is not None}
    merged.update(patch)
    if not merged:
        raise MCPException(
            McpError(
                code=McpErrorCode.VALIDATION,
                message="No fields to update",
            )
        )
    return merged


def _require_single_budget(body: Mapping[str, Any]) -> None:
    if body.get("daily_budget") is not None and body.get("lifetime_budget") is not None:
        raise MCPException(
            McpError(
                code=McpErrorCode.VALIDATION,
                message="daily_budget and lifetime_budget are mutually exclusive",
                details={"daily_budget": body["daily_budget"], "lifetime_budget": body["lifetime_budget"]},
            )
        )


def register(server: FastMCP, env: ToolEnvironment) -> None:
    version = env.version

    async def update_object(ctx: Context, object_id: str, body: dict[str, Any]) -> Mapping[str, object]:
        return await perform_graph_call(
            env=env,
            ctx=ctx,
            method="POST",
            path=f"/{version}/{object_id}",
            query=None,
            body=body,
            required_scopes=WRITE_SCOPES,
            idempotency=True,
        )

    async def get_object(ctx: Context, object_id: str, fields: str) -> Mapping[str, object]:
        return await perform_graph_call(
            env=env,
            ctx=ctx,
            method="GET",
            path=f"/{version}/{object_id}",
            query={"fields": fields},
            body=None,
            required_scopes=READ_SCOPES,
            use_cache=True,
        )

    @server.tool(name="ads.campaigns.list", structured_output=True, description="List campaigns of an ad account.")
    async def campaigns_list(args: CampaignList, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            query = {
                "fields": fields_param(args.fields, CAMPAIGN_FIELDS),
                "effective_status": status_filter(args.status),
                "limit": args.limit,
                "after": args.after,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{account_id}/campaigns",
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.campaigns.get", structured_output=True, description="Get one campaign.")
    async def campaigns_get(args: CampaignGet, ctx: Context) -> Mapping[str, object]:
        try:
            return await get_object(ctx, args.campaign_id, fields_param(args.fields, CAMPAIGN_DETAIL_FIELDS))
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.campaigns.create", structured_output=True, description="Create a new ad campaign.")
    async def campaigns_create(args: CampaignCreate, ctx: Context) -> Mapping[str, object]:
        try:
            _require_single_budget(args.model_dump(include={"daily_budget", "lifetime_budget"}))
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            body = {
                "name": args.name,
                "objective": args.objective,
                "status": args.status,
                "special_ad_categories": list(args.special_ad_categories),
                "daily_budget": args.daily_budget,
                "lifetime_budget": args.lifetime_budget,
                "bid_strategy": args.bid_strategy,
                "bid_cap": args.bid_cap,
                "spend_cap": args.spend_cap,
                "is_budget_optimization_enabled": args.budget_optimization,
                "start_time": isoformat_or_none(args.start_time),
                "stop_time": isoformat_or_none(args.stop_time),
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/campaigns",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.campaigns.update", structured_output=True, description="Update an existing ad campaign.")
    async def campaigns_update(args: CampaignUpdate, ctx: Context) -> Mapping[str, object]:
        try:
            body = _patch_or_fail(
                {
                    "name": args.name,
                    "status": args.status,
                    "daily_budget": args.daily_budget,
                    "lifetime_budget": args.lifetime_budget,
                    "bid_strategy": args.bid_strategy,
                    "spend_cap": args.spend_cap,
                    "start_time": isoformat_or_none(args.start_time),
                    "stop_time": isoformat_or_none(args.stop_time),
                },
                args.patch,
            )
            _require_single_budget(body)
            return await update_object(ctx, args.campaign_id, body)
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.campaigns.delete", structured_output=True, description="Delete a campaign.")
    async def campaigns_delete(args: CampaignRef, ctx: Context) -> Mapping[str, object]:
        try:
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="DELETE",
                path=f"/{version}/{args.campaign_id}",
                query=None,
                body=None,
                required_scopes=WRITE_SCOPES,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.campaigns.pause", structured_output=True, description="Pause a campaign.")
    async def campaigns_pause(args: CampaignRef, ctx: Context) -> Mapping[str, object]:
        try:
            return await update_object(ctx, args.campaign_id, {"status": "PAUSED"})
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.campaigns.resume", structured_output=True, description="Resume (activate) a campaign.")
    async def campaigns_resume(args: CampaignRef, ctx: Context) -> Mapping[str, object]:
        try:
            return await update_object(ctx, args.campaign_id, {"status": "ACTIVE"})
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.adsets.list", structured_output=True, description="List ad sets of a campaign or account.")
    async def adsets_list(args: AdSetList, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = None
            if args.campaign_id:
                path = f"/{version}/{args.campaign_id}/adsets"
            else:
                account_id = await resolve_account_id(env, ctx, args.ad_account_id)
                path = f"/{version}/{account_id}/adsets"
            query = {
                "fields": fields_param(args.fields, ADSET_FIELDS),
                "effective_status": status_filter(args.status),
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
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.adsets.get", structured_output=True, description="Get one ad set.")
    async def adsets_get(args: AdSetGet, ctx: Context) -> Mapping[str, object]:
        try:
            return await get_object(ctx, args.adset_id, fields_param(args.fields, ADSET_DETAIL_FIELDS))
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.adsets.create", structured_output=True, description="Create an ad set inside a campaign.")
    async def adsets_create(args: AdSetCreate, ctx: Context) -> Mapping[str, object]:
        try:
            _require_single_budget(args.model_dump(include={"daily_budget", "lifetime_budget"}))
            response, _ = await execute_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{args.campaign_id}",
                query={"fields": "account_id"},
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
            )
            owner = response.json().get("account_id")
            if not owner:
                raise MCPException(
                    McpError(
                        code=McpErrorCode.NOT_FOUND,
                        message="Could not resolve the campaign's ad account",
                        details={"campaign_id": args.campaign_id},
                    )
                )
            account_id = normalize_account_id(str(owner))
            body = {
                **args.extra,
                "name": args.name,
                "campaign_id": args.campaign_id,
                "optimization_goal": args.optimization_goal,
                "billing_event": args.billing_event,
                "targeting": args.targeting,
                "status": args.status,
                "daily_budget": args.daily_budget,
                "lifetime_budget": args.lifetime_budget,
                "bid_amount": args.bid_amount,
                "bid_strategy": args.bid_strategy,
                "start_time": isoformat_or_none(args.start_time),
                "end_time": isoformat_or_none(args.end_time),
                "promoted_object": args.promoted_object,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/adsets",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.adsets.update", structured_output=True, description="Update an existing ad set.")
    async def adsets_update(args: AdSetUpdate, ctx: Context) -> Mapping[str, object]:
        try:
            body = _patch_or_fail(
                {
                    "name": args.name,
                    "status": args.status,
                    "daily_budget": args.daily_budget,
                    "lifetime_budget": args.lifetime_budget,
                    "bid_amount": args.bid_amount,
                    "targeting": args.targeting,
                    "end_time": isoformat_or_none(args.end_time),
                },
                args.patch,
            )
            _require_single_budget(body)
            return await update_object(ctx, args.adset_id, body)
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.ads.list", structured_output=True, description="List ads of an ad set, campaign or account.")
    async def ads_list(args: AdList, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = None
            if args.adset_id:
                path = f"/{version}/{args.adset_id}/ads"
            elif args.campaign_id:
                path = f"/{version}/{args.campaign_id}/ads"
            else:
                account_id = await resolve_account_id(env, ctx, args.ad_account_id)
                path = f"/{version}/{account_id}/ads"
            query = {
                "fields": fields_param(args.fields, AD_FIELDS),
                "effective_status": status_filter(args.status),
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
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.ads.get", structured_output=True, description="Get one ad.")
    async def ads_get(args: AdGet, ctx: Context) -> Mapping[str, object]:
        try:
            return await get_object(ctx, args.ad_id, fields_param(args.fields, AD_DETAIL_FIELDS))
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.ads.create", structured_output=True, description="Create a new ad.")
    async def ads_create(args: AdCreate, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            body = {
                "name": args.name,
                "adset_id": args.adset_id,
                "creative": {"creative_id": args.creative_id},
                "status": args.status,
                "tracking_specs": args.tracking_specs,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/ads",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="ads.ads.update", structured_output=True, description="Update an existing ad.")
    async def ads_update(args: AdUpdate, ctx: Context) -> Mapping[str, object]:
        try:
            body = _patch_or_fail(
                {
                    "name": args.name,
                    "status": args.status,
                    "creative": {"creative_id": args.creative_id} if args.creative_id else None,
                },
                args.patch,
            )
            return await update_object(ctx, args.ad_id, body)
        except MCPException as exc:
            return failure(exc.error)


__all__ = [
    "AD_FIELDS",
    "ADSET_FIELDS",
    "CAMPAIGN_FIELDS",
    "register",
]
