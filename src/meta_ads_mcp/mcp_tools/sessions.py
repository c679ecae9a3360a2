"""Broker session tools."""

from __future__ import annotations

from typing import Mapping

from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException, McpError, McpErrorCode
from ..meta_client import SessionRequest, SessionSelectAccount
from .common import ToolEnvironment, failure, find_session_id, success


def _session_id(ctx: Context, provided: str | None) -> str:
    session_id = find_session_id(ctx, provided=provided)
    if not session_id:
        raise MCPException(
            McpError(
                code=McpErrorCode.VALIDATION,
                message="session_id is required; pass it or send the X-Session-Id header",
            )
        )
    return session_id


def register(server: FastMCP, env: ToolEnvironment) -> None:
    sessions = env.sessions

    @server.tool(name="sessions.get", structured_output=True, description="Describe the current broker session.")
    async def sessions_get(args: SessionRequest, ctx: Context) -> Mapping[str, object]:
        try:
            session = await sessions.require_user_session(_session_id(ctx, args.session_id))
        except MCPException as exc:
            return failure(exc.error)
        return success(session.public_view())

    @server.tool(
        name="sessions.accounts.list",
        structured_output=True,
        description="List the ad accounts available to the session user.",
    )
    async def sessions_accounts(args: SessionRequest, ctx: Context) -> Mapping[str, object]:
        try:
            session = await sessions.require_user_session(_session_id(ctx, args.session_id))
        except MCPException as exc:
            return failure(exc.error)
        data = {
            "accounts": [account.model_dump(mode="json") for account in session.available_accounts],
            "selected_account_id": session.selected_account_id,
        }
        return success(data, meta={"count": len(session.available_accounts)})

    @server.tool(
        name="sessions.account.select",
        structured_output=True,
        description="Select the ad account later tools act on.",
    )
    async def sessions_select(args: SessionSelectAccount, ctx: Context) -> Mapping[str, object]:
        try:
            session_id = _session_id(ctx, args.session_id)
            account_session = await sessions.select_account(session_id, args.ad_account_id)
            scope = await sessions.get_or_create_scope(session_id, account_session.account_id)
        except MCPException as exc:
            return failure(exc.error)
        return success(
            {
                "session_id": session_id,
                "account_id": account_session.account_id,
                "server_name": scope.server_name,
            }
        )

    @server.tool(name="sessions.revoke", structured_output=True, description="End a broker session.")
    async def sessions_revoke(args: SessionRequest, ctx: Context) -> Mapping[str, object]:
        try:
            session_id = _session_id(ctx, args.session_id)
        except MCPException as exc:
            return failure(exc.error)
        revoked = await sessions.revoke_session(session_id)
        return success({"session_id": session_id, "revoked": revoked})


__all__ = ["register"]
