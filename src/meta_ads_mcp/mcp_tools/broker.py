"""HTTP routes that let an external app log users in and pick ad accounts."""

from __future__ import annotations

import html
import json
from datetime import datetime, timezone
from typing import Any, Mapping

from mcp.server.fastmcp import FastMCP
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response

from .. import __version__
from ..errors import MCPException, McpError, McpErrorCode, error_response
from ..logging import get_logger
from .common import ToolEnvironment, success

logger = get_logger(__name__)

CALLBACK_PAGE = """<!doctype html>
<html>
<head><title>{title}</title></head>
<body>
<h1>{title}</h1>
<p>{message}</p>
{details}
</body>
</html>
"""


def _error(error: McpError) -> JSONResponse:
    return JSONResponse(dict(error_response(error)), status_code=error.http_status)


def _missing(*names: str) -> JSONResponse:
    return _error(
        McpError(
            code=McpErrorCode.VALIDATION,
            message=f"{' and '.join(names)} {'is' if len(names) == 1 else 'are'} required",
        )
    )


def _pick(payload: Mapping[str, Any], snake: str, camel: str) -> str | None:
    value = payload.get(snake) or payload.get(camel)
    return str(value) if value else None


async def _json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw:
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MCPException(McpError(code=McpErrorCode.VALIDATION, message="Request body must be JSON")) from exc
    if not isinstance(payload, dict):
        raise MCPException(McpError(code=McpErrorCode.VALIDATION, message="Request body must be a JSON object"))
    return payload


def register(server: FastMCP, env: ToolEnvironment) -> None:
    sessions = env.sessions
    oauth_client = env.oauth_client

    @server.custom_route("/health", methods=["GET"], name="broker_health")
    async def health(request: Request) -> Response:
        del request
        return JSONResponse(
            dict(
                success(
                    {
                        "status": "ok",
                        "server_name": env.settings.server_name,
                        "version": __version__,
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                    }
                )
            )
        )

    @server.custom_route("/oauth/callback", methods=["GET"], name="oauth_callback")
    async def oauth_callback(request: Request) -> Response:
        params = request.query_params
        if params.get("error"):
            reason = params.get("error_description") or params["error"]
            logger.warning("oauth_callback_denied", reason=reason)
            page = CALLBACK_PAGE.format(
                title="Authorization failed",
                message=html.escape(reason),
                details="",
            )
            return HTMLResponse(page, status_code=400)

        code = params.get("code")
        state = params.get("state")
        if not code or not state:
            page = CALLBACK_PAGE.format(
                title="Authorization failed",
                message="The callback is missing the code or state parameter.",
                details="",
            )
            return HTMLResponse(page, status_code=400)

        details = (
            f"<p>Code: <code>{html.escape(code)}</code></p>\n"
            f"<p>State: <code>{html.escape(state)}</code></p>\n"
            "<p>Pass both values to auth.login.complete.</p>"
        )
        page = CALLBACK_PAGE.format(
            title="Authorization received",
            message="You can return to your assistant.",
            details=details,
        )
        return HTMLResponse(page)

    @server.custom_route("/api/external/auth", methods=["POST"], name="external_auth_start")
    async def auth_start(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            redirect_uri = _pick(payload, "redirect_uri", "redirectUri") or str(env.settings.oauth_redirect_uri)
            external_state = payload.get("state")
            scopes = sorted(set(env.settings.oauth_scopes))
            state = await env.oauth_states.issue(
                {"redirect_uri": redirect_uri, "scopes": scopes, "external_state": external_state}
            )
        except MCPException as exc:
            return _error(exc.error)
        auth_url = oauth_client.build_authorization_url(scopes=scopes, redirect_uri=redirect_uri, state=state)
        logger.info("external_auth_started", has_external_state=external_state is not None)
        return JSONResponse(
            dict(
                success(
                    {
                        "auth_url": auth_url,
                        "state": state,
                        "message": "Direct the user to auth_url to begin the OAuth flow",
                    }
                )
            )
        )

    @server.custom_route("/api/external/auth", methods=["GET"], name="external_auth_callback")
    async def auth_callback(request: Request) -> Response:
        code = request.query_params.get("code")
        state = request.query_params.get("state")
        if not code or not state:
            return _missing("code", "state")
        try:
            stored = await env.oauth_states.consume(state)
            redirect_uri = str(stored.get("redirect_uri") or env.settings.oauth_redirect_uri)
            token_info = await oauth_client.exchange_code(code=code, redirect_uri=redirect_uri)
            token_info = await oauth_client.exchange_long_lived_token(access_token=token_info["access_token"])
            access_token = token_info["access_token"]
            profile = await oauth_client.fetch_profile(access_token=access_token)
            expires_at = token_info.get("expires_at")
            session = await sessions.create_user_session(
                profile=profile,
                access_token=access_token,
                token_expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            )
        except MCPException as exc:
            logger.warning("external_auth_failed", error_code=exc.error.code.value)
            return _error(exc.error)
        data = {
            "session": session.public_view(),
            "external_state": stored.get("external_state"),
            "message": "Authentication successful",
        }
        return JSONResponse(dict(success(data)))

    @server.custom_route("/api/external/accounts", methods=["GET"], name="external_accounts_list")
    async def accounts_list(request: Request) -> Response:
        session_id = _pick(request.query_params, "session_id", "sessionId")
        if not session_id:
            return _missing("session_id")
        try:
            session = await sessions.require_user_session(session_id)
        except MCPException as exc:
            return _error(exc.error)
        data = {
            "user_id": session.user_id,
            "email": session.email,
            "selected_account_id": session.selected_account_id,
            "available_accounts": [account.model_dump(mode="json") for account in session.available_accounts],
        }
        return JSONResponse(dict(success(data)))

    @server.custom_route("/api/external/accounts", methods=["POST"], name="external_accounts_select")
    async def accounts_select(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            session_id = _pick(payload, "session_id", "sessionId")
            account_id = _pick(payload, "account_id", "accountId")
            if not session_id or not account_id:
                return _missing("session_id", "account_id")
            account_session = await sessions.select_account(session_id, account_id)
        except MCPException as exc:
            return _error(exc.error)
        data = {
            "session_id": account_session.session_id,
            "account_id": account_session.account_id,
            "user_id": account_session.user_id,
            "message": "Account selected",
        }
        return JSONResponse(dict(success(data)))

    @server.custom_route("/api/external/mcp", methods=["POST"], name="external_mcp_create")
    async def mcp_create(request: Request) -> Response:
        try:
            payload = await _json_body(request)
            session_id = _pick(payload, "session_id", "sessionId")
            account_id = _pick(payload, "account_id", "accountId")
            if not session_id or not account_id:
                return _missing("session_id", "account_id")
            scope = await sessions.get_or_create_scope(session_id, account_id)
        except MCPException as exc:
            return _error(exc.error)
        data = {
            "session_id": scope.session_id,
            "account_id": scope.account_id,
            "server_name": scope.server_name,
            "connection": {
                "transport": "streamable-http",
                "headers": {"X-Session-Id": scope.session_id},
                "instructions": "Send the session header with each MCP request; tools act on the selected account.",
            },
            "created_at": scope.created_at.isoformat(),
            "last_used": scope.last_used.isoformat(),
        }
        return JSONResponse(dict(success(data)))

    @server.custom_route("/api/external/mcp", methods=["GET"], name="external_mcp_get")
    async def mcp_get(request: Request) -> Response:
        session_id = _pick(request.query_params, "session_id", "sessionId")
        account_id = _pick(request.query_params, "account_id", "accountId")
        if not session_id or not account_id:
            return _missing("session_id", "account_id")
        scope = sessions.get_scope(session_id, account_id)
        data: dict[str, Any] = {"session_id": session_id, "account_id": account_id, "exists": scope is not None}
        if scope is not None:
            data["server_name"] = scope.server_name
            data["created_at"] = scope.created_at.isoformat()
            data["last_used"] = scope.last_used.isoformat()
        return JSONResponse(dict(success(data)))

    @server.custom_route("/api/external/mcp", methods=["DELETE"], name="external_mcp_revoke")
    async def mcp_revoke(request: Request) -> Response:
        try:
            payload = await _json_body(request)
        except MCPException as exc:
            return _error(exc.error)
        session_id = _pick(payload, "session_id", "sessionId")
        if not session_id:
            return _missing("session_id")
        revoked = await sessions.revoke_session(session_id)
        return JSONResponse(dict(success({"session_id": session_id, "revoked": revoked})))

    @server.custom_route("/api/external/sessions/{session_id}", methods=["GET"], name="external_session_get")
    async def session_get(request: Request) -> Response:
        try:
            session = await sessions.require_user_session(request.path_params["session_id"])
        except MCPException as exc:
            return _error(exc.error)
        return JSONResponse(dict(success(session.public_view())))

    @server.custom_route("/api/external/sessions/{session_id}", methods=["DELETE"], name="external_session_revoke")
    async def session_revoke(request: Request) -> Response:
        session_id = request.path_params["session_id"]
        revoked = await sessions.revoke_session(session_id)
        if not revoked:
            return _error(
                McpError(code=McpErrorCode.NOT_FOUND, message="Session not found", details={"session_id": session_id})
            )
        return JSONResponse(dict(success({"session_id": session_id, "revoked": True})))


__all__ = ["register"]
