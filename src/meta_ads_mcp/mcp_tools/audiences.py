"""Custom and lookalike audience tools."""

from __future__ import annotations

from typing import Mapping

from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException, McpError, McpErrorCode
from ..meta_client import (
    AudienceCreate,
    AudienceGet,
    AudienceList,
    AudienceRef,
    AudienceUpdate,
    DeliveryEstimateRequest,
    LookalikeCreate,
)
from .common import (
    READ_SCOPES,
    WRITE_SCOPES,
    ToolEnvironment,
    execute_graph_call,
    failure,
    fields_param,
    perform_graph_call,
    resolve_account_id,
    success,
)

AUDIENCE_FIELDS = (
    "id",
    "name",
    "description",
    "subtype",
    "approximate_count_lower_bound",
    "approximate_count_upper_bound",
    "data_source",
    "retention_days",
    "time_created",
    "operation_status",
)
AUDIENCE_DETAIL_FIELDS = AUDIENCE_FIELDS + ("delivery_status", "lookalike_spec", "rule")


def register(server: FastMCP, env: ToolEnvironment) -> None:
    version = env.version

    @server.tool(name="audiences.list", structured_output=True, description="List custom audiences of an ad account.")
    async def audiences_list(args: AudienceList, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            query = {
                "fields": fields_param(args.fields, AUDIENCE_FIELDS),
                "limit": args.limit,
                "after": args.after,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{account_id}/customaudiences",
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="audiences.get", structured_output=True, description="Get one custom audience.")
    async def audiences_get(args: AudienceGet, ctx: Context) -> Mapping[str, object]:
        try:
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{args.audience_id}",
                query={"fields": fields_param(args.fields, AUDIENCE_DETAIL_FIELDS)},
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="audiences.create", structured_output=True, description="Create a custom audience.")
    async def audiences_create(args: AudienceCreate, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            body = {
                "name": args.name,
                "subtype": args.subtype,
                "description": args.description,
                "customer_file_source": args.customer_file_source,
                "rule": args.rule,
                "retention_days": args.retention_days,
                "prefill": args.prefill,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/customaudiences",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(
        name="audiences.lookalike.create",
        structured_output=True,
        description="Create a lookalike audience from a source audience.",
    )
    async def lookalike_create(args: LookalikeCreate, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            body = {
                "name": args.name,
                "subtype": "LOOKALIKE",
                "origin_audience_id": args.origin_audience_id,
                "lookalike_spec": {
                    "ratio": args.ratio,
                    "country": args.country.upper(),
                    "type": "similarity",
                },
                "description": args.description,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/customaudiences",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="audiences.update", structured_output=True, description="Update a custom audience.")
    async def audiences_update(args: AudienceUpdate, ctx: Context) -> Mapping[str, object]:
        try:
            body = {
                key: value
                for key, value in {
                    "name": args.name,
                    "description": args.description,
                    "rule": args.rule,
                    "retention_days": args.retention_days,
                }.items()
                if value is not None
            }
            if not body:
                return failure(McpError(code=McpErrorCode.VALIDATION, message="No fields to update"))
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{args.audience_id}",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="audiences.delete", structured_output=True, description="Delete a custom audience.")
    async def audiences_delete(args: AudienceRef, ctx: Context) -> Mapping[str, object]:
        try:
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="DELETE",
                path=f"/{version}/{args.audience_id}",
                query=None,
                body=None,
                required_scopes=WRITE_SCOPES,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(
        name="audiences.delivery_estimate",
        structured_output=True,
        description="Estimate the reach of a targeting spec.",
    )
    async def delivery_estimate(args: DeliveryEstimateRequest, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{account_id}/delivery_estimate",
                query={
                    "targeting_spec": args.targeting_spec,
                    "optimization_goal": args.optimization_goal,
                },
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(
        name="audiences.targeting.validate",
        structured_output=True,
        description="Check a targeting spec by requesting a delivery estimate.",
    )
    async def targeting_validate(args: DeliveryEstimateRequest, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            response, _ = await execute_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{account_id}/delivery_estimate",
                query={
                    "targeting_spec": args.targeting_spec,
                    "optimization_goal": args.optimization_goal,
                },
                body=None,
                required_scopes=READ_SCOPES,
                account_id=account_id,
            )
        except MCPException as exc:
            if exc.error.code != McpErrorCode.VALIDATION:
                return failure(exc.error)
            details = exc.error.details or {}
            issues = [exc.error.message]
            if details.get("user_message"):
                issues.append(details["user_message"])
            return success({"is_valid": False, "issues": issues})

        estimate = (response.json().get("data") or [{}])[0]
        return success({"is_valid": True, "estimate": estimate})


__all__ = ["AUDIENCE_FIELDS", "register"]
