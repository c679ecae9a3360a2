"""Ad creative tools."""

from __future__ import annotations

import time
from typing import Any, Mapping

import httpx
from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException, McpError, McpErrorCode
from ..logging import get_logger
from ..meta_client import (
    BestPracticesRequest,
    CreativeCreate,
    CreativeGet,
    CreativeList,
    CreativePreview,
    CreativeRef,
    CreativeUpdate,
    ImageUploadRequest,
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

logger = get_logger(__name__)

CREATIVE_FIELDS = (
    "id",
    "name",
    "status",
    "title",
    "body",
    "thumbnail_url",
    "object_type",
)
CREATIVE_DETAIL_FIELDS = CREATIVE_FIELDS + (
    "image_url",
    "image_hash",
    "video_id",
    "call_to_action_type",
    "object_story_spec",
    "asset_feed_spec",
    "url_tags",
)

BEST_PRACTICES: dict[str, dict[str, Any]] = {
    "single_image": {
        "image": {
            "recommended_ratio": "1:1 or 4:5",
            "min_resolution": "1080x1080",
            "file_types": ["JPG", "PNG"],
            "max_file_size_mb": 30,
        },
        "text": {
            "primary_text_chars": 125,
            "headline_chars": 40,
            "description_chars": 30,
        },
        "tips": [
            "Keep overlaid text small; images with less text tend to deliver better.",
            "Show the product or brand in the first glance.",
            "Use a single clear call to action.",
        ],
    },
    "video": {
        "video": {
            "recommended_ratio": "4:5 for feeds, 9:16 for stories and reels",
            "length_seconds": "15 or less",
            "file_types": ["MP4", "MOV"],
            "max_file_size_gb": 4,
        },
        "text": {
            "primary_text_chars": 125,
            "headline_chars": 40,
        },
        "tips": [
            "Hook viewers in the first three seconds.",
            "Design for sound off and add captions.",
            "Place the brand early in the video.",
        ],
    },
    "carousel": {
        "cards": {"min": 2, "max": 10, "recommended_ratio": "1:1"},
        "text": {"headline_chars": 40, "description_chars": 20},
        "tips": [
            "Tell a sequential story or show distinct products per card.",
            "Put the strongest card first.",
        ],
    },
}
GENERAL_TIPS = [
    "Test several creatives per ad set and let delivery pick the winner.",
    "Refresh creatives when frequency climbs and click-through drops.",
]


def register(server: FastMCP, env: ToolEnvironment) -> None:
    version = env.version

    @server.tool(name="creatives.list", structured_output=True, description="List ad creatives of an ad account.")
    async def creatives_list(args: CreativeList, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            query = {
                "fields": fields_param(args.fields, CREATIVE_FIELDS),
                "limit": args.limit,
                "after": args.after,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{account_id}/adcreatives",
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="creatives.get", structured_output=True, description="Get one ad creative.")
    async def creatives_get(args: CreativeGet, ctx: Context) -> Mapping[str, object]:
        try:
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{args.creative_id}",
                query={"fields": fields_param(args.fields, CREATIVE_DETAIL_FIELDS)},
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="creatives.create", structured_output=True, description="Create an ad creative.")
    async def creatives_create(args: CreativeCreate, ctx: Context) -> Mapping[str, object]:
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            body = {
                "name": args.name,
                "object_story_spec": args.object_story_spec,
                "asset_feed_spec": args.asset_feed_spec,
                "degrees_of_freedom_spec": args.degrees_of_freedom_spec,
                "url_tags": args.url_tags,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/adcreatives",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="creatives.update", structured_output=True, description="Rename or archive an ad creative.")
    async def creatives_update(args: CreativeUpdate, ctx: Context) -> Mapping[str, object]:
        body = {
            key: value
            for key, value in {"name": args.name, "status": args.status, "url_tags": args.url_tags}.items()
            if value is not None
        }
        if not body:
            return failure(McpError(code=McpErrorCode.VALIDATION, message="No fields to update"))
        try:
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{args.creative_id}",
                query=None,
                body=body,
                required_scopes=WRITE_SCOPES,
                idempotency=True,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="creatives.delete", structured_output=True, description="Delete an ad creative.")
    async def creatives_delete(args: CreativeRef, ctx: Context) -> Mapping[str, object]:
        try:
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="DELETE",
                path=f"/{version}/{args.creative_id}",
                query=None,
                body=None,
                required_scopes=WRITE_SCOPES,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(name="creatives.preview", structured_output=True, description="Render an ad preview for a placement.")
    async def creatives_preview(args: CreativePreview, ctx: Context) -> Mapping[str, object]:
        try:
            query = {
                "ad_format": args.ad_format,
                "product_item_ids": list(args.product_item_ids) if args.product_item_ids else None,
            }
            return await perform_graph_call(
                env=env,
                ctx=ctx,
                method="GET",
                path=f"/{version}/{args.creative_id}/previews",
                query=query,
                body=None,
                required_scopes=READ_SCOPES,
                use_cache=True,
            )
        except MCPException as exc:
            return failure(exc.error)

    @server.tool(
        name="creatives.image.upload",
        structured_output=True,
        description="Upload an image from a URL to the ad account image library.",
    )
    async def image_upload(args: ImageUploadRequest, ctx: Context) -> Mapping[str, object]:
        image_url = str(args.image_url)
        name = args.name or f"uploaded_image_{int(time.time())}.jpg"
        try:
            account_id = await resolve_account_id(env, ctx, args.ad_account_id)
            content, content_type = await _download(image_url, timeout=env.settings.default_timeout_seconds)
            response, _ = await execute_graph_call(
                env=env,
                ctx=ctx,
                method="POST",
                path=f"/{version}/{account_id}/adimages",
                query=None,
                body=None,
                files={"filename": (name, content, content_type)},
                required_scopes=WRITE_SCOPES,
                account_id=account_id,
            )
        except MCPException as exc:
            return failure(exc.error)

        images = response.json().get("images") or {}
        image = next(iter(images.values()), {}) if isinstance(images, Mapping) else {}
        image_hash = image.get("hash")
        if not image_hash:
            return failure(
                McpError(
                    code=McpErrorCode.REMOTE_5XX,
                    message="Upload response did not include an image hash",
                    details={"response": response.json()},
                )
            )
        logger.info("image_uploaded", account_id=account_id, image_hash=image_hash)
        return success(
            {"hash": image_hash, "url": image.get("url") or image_url, "name": name},
            meta={"ad_account_id": account_id, "bytes": len(content)},
        )

    @server.tool(
        name="creatives.best_practices",
        structured_output=True,
        description="Creative specs and tips per ad format.",
    )
    async def best_practices(args: BestPracticesRequest, ctx: Context) -> Mapping[str, object]:
        del ctx
        fmt = args.format if args.format in BEST_PRACTICES else "single_image"
        return success(
            {"format": fmt, **BEST_PRACTICES[fmt], "general": GENERAL_TIPS},
            meta={"requested_format": args.format, "available_formats": sorted(BEST_PRACTICES)},
        )


async def _download(url: str, *, timeout: float) -> tuple[bytes, str]:
    try:
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as http:
            response = await http.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise MCPException(
            McpError(
                code=McpErrorCode.VALIDATION,
                message=f"Could not download image (HTTP {exc.response.status_code})",
                details={"image_url": url},
            )
        ) from exc
    except httpx.HTTPError as exc:
        raise MCPException(
            McpError(
                code=McpErrorCode.REMOTE_5XX,
                message="Could not download image",
                details={"image_url": url, "error": str(exc)},
            )
        ) from exc
    content_type = response.headers.get("content-type", "image/jpeg").split(";")[0]
    return response.content, content_type


__all__ = ["BEST_PRACTICES", "CREATIVE_FIELDS", "register"]
