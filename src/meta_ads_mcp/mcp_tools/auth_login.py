"""OAuth login and token lifecycle tools."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Mapping

from mcp.server.fastmcp import Context, FastMCP

from ..errors import MCPException, McpError, McpErrorCode
from ..logging import get_logger
from ..meta_client import (
    ADS_MANAGEMENT_SCOPE,
    AuthLoginBeginRequest,
    AuthLoginBeginResponse,
    AuthLoginCompleteRequest,
    AuthLoginCompleteResponse,
    SystemUserTokenRequest,
    TokenExchangeResponse,
    TokenInfoResponse,
    TokenMetadata,
    TokenRequest,
    TokenRevokeRequest,
    TokenValidateRequest,
)
from .common import ToolEnvironment, failure, resolve_access_token, success

logger = get_logger(__name__)

EXPIRY_WARNING_WINDOW = timedelta(days=7)


def _parse_expiry(value: object) -> datetime | None:
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            return None
    return None


def token_recommendations(metadata: TokenMetadata) -> list[str]:
    recommendations: list[str] = []
    if metadata.is_expired:
        recommendations.append("Token has expired; run the login flow again.")
    elif metadata.expires_within(EXPIRY_WARNING_WINDOW):
        recommendations.append("Token expires within 7 days; exchange it for a long-lived token.")
    if not metadata.scopes:
        recommendations.append("Token carries no scopes; request ads_read and ads_management.")
    elif ADS_MANAGEMENT_SCOPE not in metadata.scopes:
        recommendations.append("Token lacks ads_management; write tools will be rejected.")
    return recommendations


def register(server: FastMCP, env: ToolEnvironment) -> None:
    oauth_client = env.oauth_client

    @server.tool(name="auth.login.begin", structured_output=True, description="Start the Meta OAuth login flow.")
    async def login_begin(args: AuthLoginBeginRequest, ctx: Context) -> Mapping[str, object]:
        del ctx
        redirect_uri = str(args.redirect_uri or env.settings.oauth_redirect_uri)
        scopes = sorted(set(args.scopes or env.settings.oauth_scopes))
        state = await env.oauth_states.issue({"redirect_uri": redirect_uri, "scopes": scopes}, state=args.state)
        url = oauth_client.build_authorization_url(scopes=scopes, redirect_uri=redirect_uri, state=state)
        response = AuthLoginBeginResponse(
            authorization_url=url,
            state=state,
            redirect_uri=redirect_uri,
            scopes=scopes,
            expires_in=env.oauth_states.ttl_seconds,
        )
        logger.info("oauth_login_started", scopes=scopes)
        return success(response.model_dump(mode="json"))

    @server.tool(name="auth.login.complete", structured_output=True, description="Exchange an OAuth code for a token.")
    async def login_complete(args: AuthLoginCompleteRequest, ctx: Context) -> Mapping[str, object]:
        del ctx
        try:
            stored: dict[str, object] = {}
            if args.expected_state:
                if args.state is None or args.expected_state != args.state:
                    return failure(
                        McpError(
                            code=McpErrorCode.VALIDATION,
                            message="State mismatch during OAuth completion",
                            details={"expected_state": args.expected_state, "state": args.state},
                        )
                    )
            else:
                stored = await env.oauth_states.consume(args.state)

            redirect_uri = str(args.redirect_uri or stored.get("redirect_uri") or env.settings.oauth_redirect_uri)
            token_info = await oauth_client.exchange_code(code=args.code, redirect_uri=redirect_uri)
            if args.long_lived:
                token_info = await oauth_client.exchange_long_lived_token(access_token=token_info["access_token"])
            access_token = token_info["access_token"]

            metadata = await env.token_service.inspect_token(access_token=access_token)
            expires_at = metadata.expires_at or _parse_expiry(token_info.get("expires_at"))

            session_id = None
            if args.create_session:
                profile = await oauth_client.fetch_profile(access_token=access_token)
                session = await env.sessions.create_user_session(
                    profile=profile,
                    access_token=access_token,
                    token_expires_at=expires_at,
                )
                session_id = session.session_id
        except MCPException as exc:
            return failure(exc.error)

        response = AuthLoginCompleteResponse(
            access_token=access_token,
            token_type=str(token_info.get("token_type", "bearer")),
            expires_at=expires_at,
            app_id=metadata.app_id,
            subject_id=metadata.subject_id,
            scopes=list(metadata.scopes),
            session_id=session_id,
        )
        meta = {
            "token_subject_id": metadata.subject_id,
            "token_type": metadata.type.value,
            "long_lived": args.long_lived,
        }
        return success(response.model_dump(mode="json"), meta=meta)

    @server.tool(
        name="auth.token.exchange_long_lived",
        structured_output=True,
        description="Exchange a short-lived user token for a long-lived one.",
    )
    async def exchange_long_lived(args: TokenRequest, ctx: Context) -> Mapping[str, object]:
        try:
            access_token = await resolve_access_token(env, ctx, provided=args.access_token)
            token_info = await oauth_client.exchange_long_lived_token(access_token=access_token)
        except MCPException as exc:
            return failure(exc.error)
        response = TokenExchangeResponse(
            access_token=token_info["access_token"],
            token_type=str(token_info.get("token_type", "bearer")),
            expires_at=_parse_expiry(token_info.get("expires_at")),
        )
        return success(response.model_dump(mode="json"))

    @server.tool(name="auth.token.info", structured_output=True, description="Describe a token with recommendations.")
    async def token_info(args: TokenRequest, ctx: Context) -> Mapping[str, object]:
        try:
            access_token = await resolve_access_token(env, ctx, provided=args.access_token)
            metadata = await env.token_service.inspect_token(access_token=access_token)
        except MCPException as exc:
            return failure(exc.error)
        response = TokenInfoResponse(
            valid=not metadata.is_expired,
            app_id=metadata.app_id,
            type=metadata.type.value,
            subject_id=metadata.subject_id,
            scopes=metadata.scopes,
            expires_at=metadata.expires_at,
            recommendations=token_recommendations(metadata),
        )
        return success(response.model_dump(mode="json"), meta={"token_hash": metadata.token_hash})

    @server.tool(name="auth.token.validate", structured_output=True, description="Check whether a token is usable.")
    async def token_validate(args: TokenValidateRequest, ctx: Context) -> Mapping[str, object]:
        try:
            access_token = await resolve_access_token(env, ctx, provided=args.access_token)
        except MCPException as exc:
            return failure(exc.error)
        try:
            metadata = await env.token_service.inspect_token(access_token=access_token)
        except MCPException as exc:
            if exc.error.code != McpErrorCode.AUTH:
                return failure(exc.error)
            return success({"valid": False, "reason": exc.error.message, "missing_scopes": list(args.required_scopes)})

        missing = [scope for scope in args.required_scopes if scope not in metadata.scopes]
        valid = not metadata.is_expired and not missing
        data = {
            "valid": valid,
            "expired": metadata.is_expired,
            "missing_scopes": missing,
            "scopes": metadata.scopes,
            "expires_at": metadata.expires_at.isoformat() if metadata.expires_at else None,
        }
        return success(data)

    @server.tool(name="auth.token.revoke", structured_output=True, description="Revoke a token and its broker session.")
    async def token_revoke(args: TokenRevokeRequest, ctx: Context) -> Mapping[str, object]:
        try:
            access_token = await resolve_access_token(env, ctx, provided=args.access_token)
            revoked = await oauth_client.revoke(access_token=access_token)
            await env.token_service.forget(access_token)
            session_revoked = False
            if args.session_id:
                session_revoked = await env.sessions.revoke_session(args.session_id)
        except MCPException as exc:
            return failure(exc.error)
        logger.info("token_revoked", session_revoked=session_revoked)
        return success({"revoked": revoked, "session_revoked": session_revoked})

    @server.tool(
        name="auth.system_user_token.create",
        structured_output=True,
        description="Issue a system user token for this app.",
    )
    async def system_user_token(args: SystemUserTokenRequest, ctx: Context) -> Mapping[str, object]:
        try:
            admin_token = await resolve_access_token(env, ctx, provided=args.access_token)
            token_info = await oauth_client.create_system_user_token(
                system_user_id=args.system_user_id,
                access_token=admin_token,
                scopes=list(args.scopes) if args.scopes else None,
            )
        except MCPException as exc:
            return failure(exc.error)
        response = TokenExchangeResponse(
            access_token=token_info["access_token"],
            token_type=str(token_info.get("token_type", "bearer")),
            expires_at=_parse_expiry(token_info.get("expires_at")),
        )
        meta = {"system_user_id": args.system_user_id, "business_id": env.settings.business_id}
        return success(response.model_dump(mode="json"), meta=meta)


__all__ = ["register", "token_recommendations"]
