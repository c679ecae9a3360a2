"""Core MCP tools: raw Graph requests, permission checks and server self-description."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping

from mcp.server.fastmcp import Context, FastMCP

from .. import __version__
from ..errors import MCPException
from ..logging import get_logger
from ..meta_client import (
    CapabilitiesRequest,
    GraphRequestInput,
    GuidanceRequest,
    HealthCheckRequest,
    PermissionsCheckRequest,
    PermissionsCheckResponse,
)
from .common import ToolEnvironment, ensure_scopes, failure, perform_graph_call, success

logger = get_logger(__name__)

TOOL_GROUPS: Mapping[str, tuple[str, ...]] = {
    "accounts": ("ads.accounts.list", "ads.accounts.get"),
    "campaigns": (
        "ads.campaigns.list",
        "ads.campaigns.get",
        "ads.campaigns.create",
        "ads.campaigns.update",
        "ads.campaigns.delete",
        "ads.campaigns.pause",
        "ads.campaigns.resume",
    ),
    "ad_sets": ("ads.adsets.list", "ads.adsets.get", "ads.adsets.create", "ads.adsets.update"),
    "ads": ("ads.ads.list", "ads.ads.get", "ads.ads.create", "ads.ads.update"),
    "insights": ("insights.get", "insights.compare", "insights.attribution", "insights.export"),
    "audiences": (
        "audiences.list",
        "audiences.get",
        "audiences.create",
        "audiences.update",
        "audiences.delete",
        "audiences.lookalike.create",
        "audiences.delivery_estimate",
        "audiences.targeting.validate",
    ),
    "creatives": (
        "creatives.list",
        "creatives.get",
        "creatives.create",
        "creatives.update",
        "creatives.delete",
        "creatives.preview",
        "creatives.image.upload",
        "creatives.best_practices",
    ),
    "auth": (
        "auth.login.begin",
        "auth.login.complete",
        "auth.permissions.check",
        "auth.token.info",
        "auth.token.validate",
        "auth.token.exchange_long_lived",
        "auth.token.revoke",
        "auth.system_user_token.create",
    ),
    "sessions": ("sessions.get", "sessions.accounts.list", "sessions.account.select", "sessions.revoke"),
    "system": ("graph.request", "system.health", "system.capabilities", "system.guidance"),
}

GUIDANCE: Mapping[str, Mapping[str, Any]] = {
    "overview": {
        "purpose": "Manage Meta ad accounts, campaigns, audiences and creatives and read their performance.",
        "first_steps": [
            "Call system.health to confirm the server is reachable.",
            "Call ads.accounts.list to see which ad accounts the token can reach.",
            "Explore existing campaigns with ads.campaigns.list.",
            "Check performance with insights.get.",
        ],
        "workflows": {
            "campaign_analysis": ["ads.accounts.list", "ads.campaigns.list", "insights.get", "insights.compare"],
            "new_campaign_setup": [
                "ads.campaigns.create",
                "ads.adsets.create",
                "creatives.create",
                "ads.ads.create",
            ],
            "audience_research": ["audiences.list", "audiences.create", "audiences.lookalike.create"],
        },
    },
    "campaigns": {
        "tips": [
            "New campaigns start PAUSED; resume them once ad sets and ads are in place.",
            "Set either daily_budget or lifetime_budget, never both. Budgets are in minor currency units.",
            "Leave both budgets empty to budget at the ad set level.",
        ],
    },
    "insights": {
        "tips": [
            "Use date_preset for rolling windows and time_range for fixed reporting periods.",
            "insights.compare fetches several objects concurrently with the same window.",
            "insights.export returns CSV text when format is csv.",
        ],
    },
    "audiences": {
        "tips": [
            "Lookalike ratio ranges from 0.01 to 0.20 of the country population.",
            "Check reach with audiences.delivery_estimate before launching.",
        ],
    },
    "creatives": {
        "tips": [
            "Upload images with creatives.image.upload and reuse the returned hash.",
            "Preview a creative with creatives.preview before attaching it to an ad.",
        ],
    },
    "auth": {
        "tips": [
            "auth.login.begin returns a login URL and a one-time state.",
            "Pass the code and state to auth.login.complete; the state expires after a few minutes.",
            "Send X-Session-Id to act through a broker session and its selected ad account.",
        ],
    },
}


def register(server: FastMCP, env: ToolEnvironment) -> None:
    """Register core tool handlers."""

    @server.tool(name="graph.request", structured_output=True, description="Send a raw Graph API request.")
    async def graph_request(args: GraphRequestInput, ctx: Context) -> Mapping[str, object]:
        try:
            use_cache = args.method.upper() == "GET"
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method=args.method,
                path=args.path,
                query=args.query,
                body=args.body,
                required_scopes=[],
                use_cache=use_cache,
                account_id=args.ad_account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="auth.permissions.check", structured_output=True, description="Inspect a token and enforce scopes.")
    async def permissions_check(args: PermissionsCheckRequest, ctx: Context) -> Mapping[str, object]:
        try:
            _, metadata = await ensure_scopes(
                env=env,
                ctx=ctx,
                required_scopes=list(args.required_scopes),
                provided_token=args.access_token,
            )
            response = PermissionsCheckResponse(
                app_id=metadata.app_id,
                type=metadata.type.value,
                scopes=metadata.scopes,
                expires_at=metadata.expires_at,
                valid=not metadata.is_expired,
            )
            meta = {
                "token_hash": metadata.token_hash,
                "subject_id": metadata.subject_id,
            }
            return success(response.model_dump(mode="json"), meta=meta)
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="system.health", structured_output=True, description="Report server health and configuration.")
    async def health(args: HealthCheckRequest, ctx: Context) -> Mapping[str, object]:
        data: dict[str, Any] = {
            "status": "healthy",
            "server_name": env.settings.server_name,
            "version": __version__,
            "api_version": env.settings.graph_api_version,
            "api_tier": env.settings.api_tier,
            "session_backend": env.settings.session_backend,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if args.check_token:
            try:
                _, metadata = await ensure_scopes(env=env, ctx=ctx, required_scopes=[])
            except MCPException as exc:
                data["status"] = "degraded"
                data["token"] = {"valid": False, "error": exc.error.to_dict()}
            else:
                data["token"] = {
                    "valid": not metadata.is_expired,
                    "subject_id": metadata.subject_id,
                    "scopes": metadata.scopes,
                }
        return success(data)

    @server.tool(name="system.capabilities", structured_output=True, description="Describe available tools and limits.")
    async def capabilities(args: CapabilitiesRequest, ctx: Context) -> Mapping[str, object]:
        del args, ctx
        settings = env.settings
        data = {
            "server": {"name": settings.server_name, "version": __version__},
            "api_version": settings.graph_api_version,
            "tools": {group: list(names) for group, names in TOOL_GROUPS.items()},
            "rate_limits": {
                "tier": settings.api_tier,
                "max_score": settings.account_max_score,
                "decay_seconds": settings.score_decay_seconds,
                "block_seconds": settings.account_block_seconds,
                "scoring": {"read_calls": settings.read_call_score, "write_calls": settings.write_call_score},
                "per_app_per_minute": settings.rate_limit_per_app,
                "per_token_per_minute": settings.rate_limit_per_token,
            },
            "authentication": {
                "oauth": True,
                "long_lived_tokens": True,
                "system_user_tokens": bool(settings.business_id),
                "default_token_configured": settings.access_token is not None,
                "session_backend": settings.session_backend,
            },
        }
        return success(data)

    @server.tool(name="system.guidance", structured_output=True, description="Workflow guidance for assistants.")
    async def guidance(args: GuidanceRequest, ctx: Context) -> Mapping[str, object]:
        del ctx
        return success({"topic": args.topic, **GUIDANCE[args.topic]})


__all__ = ["GUIDANCE", "TOOL_GROUPS", "register"]
