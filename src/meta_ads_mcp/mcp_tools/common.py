"""Shared helpers for MCP tools."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Sequence

import httpx
from mcp.server.fastmcp import Context

from ..auth import MetaOAuthClient, OAuthStateStore
from ..config import MetaAdsSettings
from ..errors import MCPException, McpError, McpErrorCode, error_response
from ..logging import get_logger
from ..meta_client import MetaGraphApiClient, TokenMetadata, TokenService, normalize_account_id
from ..sessions import SessionManager, UserSession
from ..storage import TokenType

logger = get_logger(__name__)

USAGE_HEADER_KEYS = [
    "x-app-usage",
    "x-business-use-case-usage",
    "x-ad-account-usage",
    "x-fb-trace-id",
]

READ_SCOPES = ("ads_read",)
WRITE_SCOPES = ("ads_management",)

TOKEN_META_KEYS = ("access_token", "accessToken", "authorization")
TOKEN_HEADERS = ("x-meta-access-token", "x-access-token")
SESSION_META_KEYS = ("session_id", "sessionId")
SESSION_HEADER = "x-session-id"


@dataclass(slots=True)
class ToolEnvironment:
    settings: MetaAdsSettings
    client: MetaGraphApiClient
    token_service: TokenService
    sessions: SessionManager
    oauth_states: OAuthStateStore
    oauth_client: MetaOAuthClient

    @property
    def version(self) -> str:
        return self.settings.graph_api_version


def success(data: Any, *, meta: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    return {
        "ok": True,
        "data": data,
        "meta": dict(meta or {}),
    }


def failure(error: McpError, *, meta: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    return error_response(error, meta=meta)


def extract_meta(response_headers: Mapping[str, Any]) -> dict[str, Any]:
    meta: dict[str, Any] = {}
    for key in USAGE_HEADER_KEYS:
        value = response_headers.get(key)
        if value:
            meta[key] = value
    return meta


def paging_summary(payload: Any) -> dict[str, Any] | None:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("paging"), Mapping):
        return None
    paging = payload["paging"]
    cursors = paging.get("cursors") or {}
    return {
        "has_next_page": "next" in paging,
        "next_cursor": cursors.get("after"),
        "previous_cursor": cursors.get("before"),
    }


def datetime_to_timestamp(value: datetime | None) -> int | None:
    if value is None:
        return None
    return int(value.timestamp())


def isoformat_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def fields_param(fields: Sequence[str] | None, default: Sequence[str]) -> str:
    return ",".join(fields or default)


def status_filter(status: str | None) -> list[str] | None:
    """Graph filters delivery state through ``effective_status``."""

    return [status] if status else None


def compute_idempotency_key(*, method: str, path: str, payload: Mapping[str, Any] | None) -> str:
    raw = json.dumps(
        {
            "method": method,
            "path": path,
            "payload": payload or {},
        },
        sort_keys=True,
        default=str,
    )
    return hashlib.sha256(raw.encode()).hexdigest()


def _meta_payload(ctx: Context) -> dict[str, Any]:
    meta = ctx.request_context.meta if ctx.request_context else None  # type: ignore[truthy-function]
    if meta is None:
        return {}
    dump = getattr(meta, "model_dump", None)
    if callable(dump):
        payload = dump(mode="json")
        return payload if isinstance(payload, dict) else {}
    return dict(meta) if isinstance(meta, Mapping) else {}


def _request_headers(ctx: Context) -> Mapping[str, str]:
    request = ctx.request_context.request if ctx.request_context else None  # type: ignore[truthy-function]
    headers = getattr(request, "headers", None)
    if isinstance(headers, Mapping):
        return headers
    return {}


def _bearer(value: str) -> str:
    if value.lower().startswith("bearer "):
        return value[7:].strip()
    return value.strip()


def find_access_token(ctx: Context, *, provided: str | None = None) -> str | None:
    """Token named explicitly, in request meta, or in HTTP headers."""

    if provided:
        return provided

    meta_payload = _meta_payload(ctx)
    for key in TOKEN_META_KEYS:
        token = meta_payload.get(key)
        if isinstance(token, str) and token:
            return _bearer(token)

    headers = _request_headers(ctx)
    authorization = headers.get("authorization")
    if isinstance(authorization, str) and authorization.lower().startswith("bearer "):
        return _bearer(authorization)
    for header in TOKEN_HEADERS:
        token = headers.get(header)
        if isinstance(token, str) and token:
            return token.strip()
    return None


def find_session_id(ctx: Context, *, provided: str | None = None) -> str | None:
    if provided:
        return provided
    meta_payload = _meta_payload(ctx)
    for key in SESSION_META_KEYS:
        value = meta_payload.get(key)
        if isinstance(value, str) and value:
            return value
    value = _request_headers(ctx).get(SESSION_HEADER)
    return value if isinstance(value, str) and value else None


async def current_session(env: ToolEnvironment, ctx: Context, *, session_id: str | None = None) -> UserSession | None:
    session_id = find_session_id(ctx, provided=session_id)
    if not session_id:
        return None
    return await env.sessions.get_user_session(session_id)


async def login_required(env: ToolEnvironment, scopes: Sequence[str]) -> MCPException:
    redirect_uri = str(env.settings.oauth_redirect_uri)
    wanted = sorted(set(scopes) | set(env.settings.oauth_scopes))
    state = await env.oauth_states.issue({"redirect_uri": redirect_uri, "scopes": wanted})
    url = env.oauth_client.build_authorization_url(scopes=wanted, redirect_uri=redirect_uri, state=state)
    return MCPException(
        McpError(
            code=McpErrorCode.AUTH,
            message=f"Authentication required. Please login at: {url}",
            details={
                "authorization_url": url,
                "state": state,
                "instructions": "Open the URL, authorize the app, then call auth.login.complete with the code and state.",
            },
        )
    )


async def resolve_access_token(
    env: ToolEnvironment,
    ctx: Context,
    *,
    provided: str | None = None,
    required_scopes: Sequence[str] = (),
) -> str:
    token = find_access_token(ctx, provided=provided)
    if token:
        return token

    session = await current_session(env, ctx)
    if session is not None:
        return session.access_token

    if env.settings.access_token:
        return env.settings.access_token.get_secret_value()

    raise await login_required(env, required_scopes)


async def resolve_account_id(env: ToolEnvironment, ctx: Context, provided: str | None = None) -> str:
    """Return the ad account for a call in ``act_<id>`` form.

    Under a broker session the account must be one the session holds, and the
    matching account scope is marked as used.
    """

    session = await current_session(env, ctx)
    if provided:
        account_id = normalize_account_id(provided)
    elif session is not None and session.selected_account_id:
        account_id = session.selected_account_id
    elif env.settings.default_ad_account_id:
        account_id = normalize_account_id(env.settings.default_ad_account_id)
    else:
        raise MCPException(
            McpError(
                code=McpErrorCode.VALIDATION,
                message="ad_account_id is required; no session account or default account configured",
            )
        )

    if session is not None:
        if not session.has_account(account_id):
            raise MCPException(
                McpError(
                    code=McpErrorCode.PERMISSION,
                    message="Account not accessible to this session",
                    details={"session_id": session.session_id, "account_id": account_id},
                )
            )
        env.sessions.touch_scope(session.session_id, account_id)
    return account_id


async def ensure_scopes(
    *,
    env: ToolEnvironment,
    ctx: Context,
    required_scopes: Sequence[str],
    token_hint: TokenType | None = None,
    provided_token: str | None = None,
) -> tuple[str, TokenMetadata]:
    access_token = await resolve_access_token(
        env,
        ctx,
        provided=provided_token,
        required_scopes=required_scopes,
    )
    metadata = await env.token_service.ensure_permissions(
        access_token=access_token,
        required_scopes=list(required_scopes),
        token_hint=token_hint,
    )
    return access_token, metadata


async def execute_graph_call(
    *,
    env: ToolEnvironment,
    ctx: Context,
    method: str,
    path: str,
    query: dict[str, Any] | None,
    body: dict[str, Any] | None,
    form: dict[str, Any] | None = None,
    files: dict[str, Any] | None = None,
    required_scopes: Sequence[str],
    use_cache: bool = False,
    idempotency: bool = False,
    provided_token: str | None = None,
    account_id: str | None = None,
) -> tuple[httpx.Response, TokenMetadata]:
    access_token, metadata = await ensure_scopes(
        env=env,
        ctx=ctx,
        required_scopes=required_scopes,
        provided_token=provided_token,
    )
    if body is not None:
        body = {k: v for k, v in body.items() if v is not None}
    if form is not None:
        form = {k: v for k, v in form.items() if v is not None}
    idempotency_key = None
    if idempotency:
        idempotency_key = compute_idempotency_key(method=method, path=path, payload=body or form or {})

    response = await env.client.request(
        access_token=access_token,
        method=method,
        path=path,
        query=query,
        json_body=body,
        form_body=form,
        files=files,
        idempotency_key=idempotency_key,
        use_cache=use_cache,
        account_id=account_id,
    )
    return response, metadata


def response_envelope(response: httpx.Response, metadata: TokenMetadata) -> Mapping[str, Any]:
    response_meta = extract_meta(response.headers)
    response_meta["token_subject_id"] = metadata.subject_id
    response_meta["token_type"] = metadata.type.value

    payload: dict[str, Any] = {
        "status": response.status_code,
        "headers": dict(response.headers),
    }
    try:
        payload["data"] = response.json()
    except ValueError:
        payload["data"] = response.content.decode(errors="ignore")
    if paging := paging_summary(payload["data"]):
        response_meta["paging"] = paging
    return success(payload, meta=response_meta)


async def perform_graph_call(
    *,
    env: ToolEnvironment,
    ctx: Context,
    method: str,
    path: str,
    query: dict[str, Any] | None,
    body: dict[str, Any] | None,
    form: dict[str, Any] | None = None,
    files: dict[str, Any] | None = None,
    required_scopes: Sequence[str],
    use_cache: bool = False,
    idempotency: bool = False,
    provided_token: str | None = None,
    account_id: str | None = None,
) -> Mapping[str, Any]:
    response, metadata = await execute_graph_call(
        env=env,
        ctx=ctx,
        method=method,
        path=path,
        query=query,
        body=body,
        form=form,
        files=files,
        required_scopes=required_scopes,
        use_cache=use_cache,
        idempotency=idempotency,
        provided_token=provided_token,
        account_id=account_id,
    )
    return response_envelope(response, metadata)


__all__ = [
    "READ_SCOPES",
    "WRITE_SCOPES",
    "ToolEnvironment",
    "compute_idempotency_key",
    "current_session",
    "datetime_to_timestamp",
    "ensure_scopes",
    "execute_graph_call",
    "extract_meta",
    "failure",
    "fields_param",
    "find_access_token",
    "find_session_id",
    "isoformat_or_none",
    "login_required",
    "paging_summary",
    "perform_graph_call",
    "resolve_access_token",
    "resolve_account_id",
    "response_envelope",
    "status_filter",
    "success",
]
