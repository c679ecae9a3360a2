"""Insights and reporting tools."""

from __future__ import annotations

import asyncio
import csv
import io
import json
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException, McpError
from ..meta_client import (
    InsightsAttributionRequest,
    InsightsCompareRequest,
    InsightsExportRequest,
    InsightsRequest,
)
from .common import (
    READ_SCOPES,
    ToolEnvironment,
    ensure_scopes,
    execute_graph_call,
    failure,
    fields_param,
    perform_graph_call,
    resolve_account_id,
    success,
)

DEFAULT_METRICS = (
    "impressions",
    "clicks",
    "spend",
    "reach",
    "frequency",
    "ctr",
    "cpc",
    "cpm",
    "actions",
    "cost_per_action_type",
)
ATTRIBUTION_METRICS = ("spend", "actions", "action_values", "cost_per_action_type")
RANKED_METRICS = ("spend", "impressions", "clicks", "reach", "ctr")


def _join(values: Sequence[str] | None) -> str | None:
    return ",".join(values) if values else None


def _as_number(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def rank_objects(rows: Mapping[str, Mapping[str, Any]], metrics: Sequence[str] = RANKED_METRICS) -> dict[str, list[str]]:
    """Object IDs ordered by each numeric metric, highest first."""

    rankings: dict[str, list[str]] = {}
    for metric in metrics:
        scored = [(object_id, _as_number(row.get(metric))) for object_id, row in rows.items()]
        scored = [(object_id, score) for object_id, score in scored if score is not None]
        if scored:
            rankings[metric] = [object_id for object_id, _ in sorted(scored, key=lambda item: item[1], reverse=True)]
    return rankings


def rows_to_csv(rows: Sequence[Mapping[str, Any]]) -> str:
    """Render rows as CSV using the union of their keys as header."""

    header: list[str] = []
    for row in rows:
        for key in row:
            if key not in header:
                header.append(key)
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=header, extrasaction="ignore", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow(
            {
                key: json.dumps(value, separators=(",", ":")) if isinstance(value, (dict, list)) else value
                for key, value in row.items()
            }
        )
    return buffer.getvalue()


def register(server: FastMCP, env: ToolEnvironment) -> None:
    version = env.version

    async def target(ctx: Context, object_id: str | None) -> tuple[str, str | None]:
        """Object to report on, and the ad account to charge when it is one."""

        if object_id is None:
            account_id = await resolve_account_id(env, ctx)
            return account_id, account_id
        return object_id, object_id if object_id.startswith("act_") else None

    @server.tool(name="insights.get", structured_output=True, description="Get performance insights for an object.")
    async def insights_get(args: InsightsRequest, ctx: Context) -> Mapping[str, object]:
        try:
            object_id, account_id = await target(ctx, args.object_id)
            query = {
                "fields": fields_param(args.fields, DEFAULT_METRICS),
                "level": args.level,
                "breakdowns": _join(args.breakdowns),
                "action_breakdowns": _join(args.action_breakdowns),
                "action_attribution_windows": list(args.action_attribution_windows)
                if args.action_attribution_windows
                else None,
                "time_increment": args.time_increment,
                "filtering": args.filtering,
                "limit": args.limit,
                "after": args.after,
                **args.window_params(),
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{object_id}/insights",
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="insights.compare", structured_output=True, description="Compare insights across objects.")
    async def insights_compare(args: InsightsCompareRequest, ctx: Context) -> Mapping[str, object]:
        query = {
            "fields": fields_param(args.fields, DEFAULT_METRICS),
            "level": args.level,
            **args.window_params(),
        }

        async def fetch(object_id: str) -> dict[str, Any]:
            try:
                response, _ = await execute_graph_call(
                    env=env,
                    ctx=ctx,
                    method="GET",
                    path=f"/{version}/{object_id}/insights",
                    query=query,
                    body=None,
                    required_scopes=READ_SCOPES,
                    use_cache=True,
                    account_id=object_id if object_id.startswith("act_") else None,
                )
            except MCPException as exc:
                return {"object_id": object_id, "ok": False, "error": exc.error.to_dict()}
            rows = response.json().get("data") or []
            return {"object_id": object_id, "ok": True, "metrics": rows[0] if rows else {}}

        results = await asyncio.gather(*(fetch(object_id) for object_id in args.object_ids))
        if not any(result["ok"] for result in results):
            return failure(McpError(**_first_error(results)))
        metrics = {result["object_id"]: result["metrics"] for result in results if result["ok"]}
        data = {
            "window": args.window_params(),
            "results": results,
            "rankings": rank_objects(metrics),
        }
        return success(data, meta={"compared": len(results), "failed": sum(not r["ok"] for r in results)})

    @server.tool(
        name="insights.attribution",
        structured_output=True,
        description="Get insights broken down by attribution window.",
    )
    async def insights_attribution(args: InsightsAttributionRequest, ctx: Context) -> Mapping[str, object]:
        try:
            object_id, account_id = await target(ctx, args.object_id)
            query = {
                "fields": fields_param(args.fields, ATTRIBUTION_METRICS),
                "level": args.level,
                "action_attribution_windows": list(args.attribution_windows),
                **args.window_params(),
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{object_id}/insights",
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="insights.export", structured_output=True, description="Export insights rows as JSON or CSV.")
    async def insights_export(args: InsightsExportRequest, ctx: Context) -> Mapping[str, object]:
        try:
            object_id, account_id = await target(ctx, args.object_id)
            access_token, _ = await ensure_scopes(env=env, ctx=ctx, required_scopes=READ_SCOPES)
            query = {
                "fields": fields_param(args.fields, DEFAULT_METRICS),
                "level": args.level,
                "breakdowns": _join(args.breakdowns),
                "time_increment": args.time_increment,
                **args.window_params(),
            }
            rows: list[dict[str, Any]] = []
            async for page in env.client.paginate(
                access_token=access_token,
                method="GET",
                path=f"/{version}/{object_id}/insights",
                query=query,
                max_pages=args.max_pages,
                account_id=account_id,
            ):
                rows.extend(page.get("data") or [])
        except MCPException as exc:
            return failure(exc.error)

        data: dict[str, Any] = {
            "format": args.format,
            "object_id": object_id,
            "record_count": len(rows),
            "exported_at": datetime.now(timezone.utc).isoformat(),
        }
        if args.format == "csv":
            data["content"] = rows_to_csv(rows)
        else:
            data["rows"] = rows
        return success(data)


def _first_error(results: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
    error = next(result["error"] for result in results if not result["ok"])
    return {
        "code": error["code"],
        "message": error["message"],
        "details": {"results": list(results)},
        "retry_after": error.get("retry_after"),
    }


__all__ = ["DEFAULT_METRICS", "rank_objects", "register", "rows_to_csv"]
