"""Meta OAuth login helpers."""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

import httpx

from ..config import MetaAdsSettings
from ..errors import MCPException, McpError, McpErrorCode
from ..logging import get_logger
from ..storage import KeyValueStore

logger = get_logger(__name__)

STATE_PREFIX = "oauth_state:"
# Meta omits expires_in for some long-lived tokens; they last about 60 days.
DEFAULT_LONG_LIVED_SECONDS = 60 * 24 * 60 * 60


def generate_state(length: int = 32) -> str:
    """Generate a URL-safe state token."""

    return secrets.token_urlsafe(length)


class OAuthStateStore:
    """One-shot CSRF states kept in the session key-value store."""

    def __init__(self, store: KeyValueStore, *, ttl_seconds: int) -> None:
        self._store = store
        self.ttl_seconds = ttl_seconds

    async def issue(self, payload: Mapping[str, Any] | None = None, *, state: str | None = None) -> str:
        state = state or generate_state()
        record = dict(payload or {})
        record["issued_at"] = datetime.now(timezone.utc).isoformat()
        await self._store.set(f"{STATE_PREFIX}{state}", record, ttl_seconds=self.ttl_seconds)
        return state

    async def consume(self, state: str | None) -> dict[str, Any]:
        if not state:
            raise self._invalid()
        record = await self._store.pop(f"{STATE_PREFIX}{state}")
        if record is None:
            raise self._invalid()
        return dict(record)

    @staticmethod
    def _invalid() -> MCPException:
        return MCPException(
            McpError(
                code=McpErrorCode.VALIDATION,
                message="Invalid or expired state",
            )
        )


def _expiry_from(payload: Mapping[str, Any], default_seconds: float | None = None) -> datetime | None:
    expires_in = payload.get("expires_in")
    if not isinstance(expires_in, (int, float)) or isinstance(expires_in, bool):
        expires_in = default_seconds
    if expires_in is None:
        return None
    return datetime.now(timezone.utc) + timedelta(seconds=float(expires_in))


class MetaOAuthClient:
    """Handle Meta OAuth login flows."""

    def __init__(self, settings: MetaAdsSettings) -> None:
        self._settings = settings

    @property
    def _graph_url(self) -> str:
        return f"{self._settings.graph_api_base_url.rstrip('/')}/{self._settings.graph_api_version}"

    def appsecret_proof(self, access_token: str) -> str:
        secret = self._settings.app_secret.get_secret_value().encode()
        return hmac.new(secret, access_token.encode(), hashlib.sha256).hexdigest()

    def build_authorization_url(
        self,
        *,
        scopes: Sequence[str] | None,
        redirect_uri: str,
        state: str,
    ) -> str:
        base = self._settings.facebook_oauth_base_url.rstrip("/")
        version = self._settings.graph_api_version
        scope_value = ",".join(sorted(set(scopes or self._settings.oauth_scopes)))
        params = {
            "client_id": self._settings.app_id,
            "redirect_uri": redirect_uri,
            "state": state,
            "scope": scope_value,
            "response_type": "code",
        }
        url = httpx.URL(f"{base}/{version}/dialog/oauth")
        return str(url.copy_with(params=params))

    async def exchange_code(
        self,
        *,
        code: str,
        redirect_uri: str,
    ) -> dict[str, Any]:
        payload = await self._call(
            "GET",
            "/oauth/access_token",
            params={
                "client_id": self._settings.app_id,
                "client_secret": self._settings.app_secret.get_secret_value(),
                "redirect_uri": redirect_uri,
                "code": code,
            },
            failure_message="Failed to exchange authorization code",
        )
        return self._token_result(payload)

    async def exchange_long_lived_token(self, *, access_token: str) -> dict[str, Any]:
        payload = await self._call(
            "GET",
            "/oauth/access_token",
            params={
                "grant_type": "fb_exchange_token",
                "client_id": self._settings.app_id,
                "client_secret": self._settings.app_secret.get_secret_value(),
                "fb_exchange_token": access_token,
            },
            failure_message="Failed to exchange for a long-lived token",
        )
        return self._token_result(payload, default_seconds=DEFAULT_LONG_LIVED_SECONDS)

    async def fetch_profile(self, *, access_token: str) -> dict[str, Any]:
        return await self._call(
            "GET",
            "/me",
            params={"fields": "id,name,email", "access_token": access_token},
            failure_message="Failed to fetch user profile",
        )

    async def revoke(self, *, access_token: str) -> bool:
        payload = await self._call(
            "DELETE",
            "/me/permissions",
            params={"access_token": access_token},
            failure_message="Failed to revoke token",
        )
        return bool(payload.get("success", True))

    async def create_system_user_token(
        self,
        *,
        system_user_id: str,
        access_token: str,
        scopes: Sequence[str] | None = None,
    ) -> dict[str, Any]:
        payload = await self._call(
            "POST",
            f"/{system_user_id}/access_tokens",
            data={
                "business_app": self._settings.app_id,
                "scope": ",".join(scopes or self._settings.oauth_scopes),
                "appsecret_proof": self.appsecret_proof(access_token),
                "access_token": access_token,
            },
            failure_message="Failed to create system user token",
        )
        return self._token_result(payload)

    def _token_result(self, payload: Mapping[str, Any], default_seconds: float | None = None) -> dict[str, Any]:
        access_token = payload.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise MCPException(
                McpError(
                    code=McpErrorCode.AUTH,
                    message="Token exchange response missing access_token",
                )
            )
        expires_at = _expiry_from(payload, default_seconds)
        return {
            "access_token": access_token,
            "token_type": payload.get("token_type", "bearer"),
            "expires_at": expires_at.isoformat() if expires_at else None,
            "raw": {key: value for key, value in payload.items() if key != "access_token"},
        }

    async def _call(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        data: Mapping[str, Any] | None = None,
        failure_message: str,
    ) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._settings.default_timeout_seconds) as client:
            try:
                response = await client.request(method, f"{self._graph_url}{path}", params=params, data=data)
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                status = exc.response.status_code
                try:
                    graph_error = exc.response.json().get("error") or {}
                except ValueError:
                    graph_error = {}
                logger.warning("oauth_call_failed", path=path, status=status)
                raise MCPException(
                    McpError(
                        code=McpErrorCode.REMOTE_5XX if status >= 500 else McpErrorCode.AUTH,
                        message=graph_error.get("message") or failure_message,
                        details={"status": status, "reason": failure_message},
                    )
                ) from exc
            except httpx.HTTPError as exc:
                raise MCPException(
                    McpError(
                        code=McpErrorCode.REMOTE_5XX,
                        message=f"Network error: {failure_message.lower()}",
                        details={"error": str(exc)},
                    )
                ) from exc
            payload = response.json()
        return payload if isinstance(payload, dict) else {"data": payload}


__all__ = [
    "DEFAULT_LONG_LIVED_SECONDS",
    "MetaOAuthClient",
    "OAuthStateStore",
    "generate_state",
]
