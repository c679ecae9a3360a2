"""Token inspection and scope enforcement."""

from __future__ import annotations

import asyncio
import hashlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Sequence

from sqlalchemy import delete

from ..errors import MCPException, McpError, McpErrorCode
from ..logging import get_logger
from ..storage import Token, TokenType, as_utc, session_scope
from .client import MetaGraphApiClient

logger = get_logger(__name__)

ADS_READ_SCOPE = "ads_read"
ADS_MANAGEMENT_SCOPE = "ads_management"
REFRESH_MARGIN = timedelta(minutes=5)

GRAPH_TOKEN_TYPES = {
    "USER": TokenType.USER,
    "PAGE": TokenType.PAGE,
    "APP": TokenType.APP,
    "SYSTEM_USER": TokenType.SYSTEM_USER,
    "BUSINESS": TokenType.SYSTEM_USER,
}


@dataclass(slots=True)
class TokenMetadata:
    token_hash: str
    type: TokenType
    subject_id: str
    scopes: list[str]
    app_id: str
    issued_at: datetime
    expires_at: datetime | None
    metadata: dict[str, object]

    @property
    def is_expired(self) -> bool:
        if self.expires_at is None:
            return False
        return datetime.now(timezone.utc) >= self.expires_at

    def expires_within(self, window: timedelta) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at - datetime.now(timezone.utc) <= window


class TokenService:
    """Manages token inspection and authorization checks."""

    def __init__(self, client: MetaGraphApiClient) -> None:
        self._client = client
        self._lock = asyncio.Lock()

    async def ensure_permissions(
        self,
        *,
        access_token: str,
        required_scopes: Sequence[str],
        token_hint: TokenType | None = None,
    ) -> TokenMetadata:
        metadata = await self.inspect_token(access_token=access_token, token_hint=token_hint)
        if metadata.is_expired:
            raise MCPException(
                McpError(
                    code=McpErrorCode.AUTH,
                    message="Access token expired",
                    details={"expires_at": metadata.expires_at.isoformat() if metadata.expires_at else None},
                )
            )

        missing = [scope for scope in required_scopes if scope not in metadata.scopes]
        if missing:
            raise MCPException(
                McpError(
                    code=McpErrorCode.PERMISSION,
                    message="Access token missing required scopes",
                    details={"missing_scopes": missing, "granted_scopes": metadata.scopes},
                )
            )
        return metadata

    async def inspect_token(
        self,
        *,
        access_token: str,
        token_hint: TokenType | None = None,
    ) -> TokenMetadata:
        """Return cached ``debug_token`` metadata, asking Graph when missing or about to expire."""

        token_hash = _hash_token(access_token)
        cached = await self._load(token_hash)
        if cached is not None:
            logger.debug("token_cache_hit", token_hash=token_hash, type=cached.type.value)
            return cached

        async with self._lock:
            # another caller may have refreshed while we waited
            cached = await self._load(token_hash)
            if cached is not None:
                return cached

            logger.info("debug_token_lookup", token_hash=token_hash)
            debug_info = await self._client.debug_token(access_token=access_token)
            if not debug_info.get("is_valid", False):
                raise MCPException(
                    McpError(
                        code=McpErrorCode.AUTH,
                        message="Invalid access token",
                        details={"fbtrace_id": debug_info.get("fbtrace_id")},
                    )
                )

            row = _row_from_debug_info(token_hash, debug_info, token_hint)
            async with session_scope() as session:
                await session.merge(row)
            return _to_metadata(row)

    async def forget(self, access_token: str) -> None:
        """Drop the cached inspection for a token, e.g. after revocation."""

        async with session_scope() as session:
            await session.execute(delete(Token).where(Token.id == _hash_token(access_token)))

    async def _load(self, token_hash: str) -> TokenMetadata | None:
        async with session_scope() as session:
            row = await session.get(Token, token_hash)
            if row is None:
                return None
            expires_at = as_utc(row.expires_at)
            if expires_at is not None and expires_at <= datetime.now(timezone.utc) + REFRESH_MARGIN:
                return None
            return _to_metadata(row)


def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def _parse_expiry(value: object) -> datetime | None:
    # debug_token reports 0 for tokens that never expire
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)) and value:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    return None


def _row_from_debug_info(token_hash: str, info: Mapping[str, Any], token_hint: TokenType | None) -> Token:
    raw_type = str(info.get("type") or "user").upper()
    return Token(
        id=token_hash,
        type=token_hint or GRAPH_TOKEN_TYPES.get(raw_type, TokenType.USER),
        subject_id=str(info.get("user_id") or info.get("profile_id") or "unknown"),
        scopes=sorted(set(info.get("scopes") or [])),
        app_id=str(info.get("app_id") or ""),
        issued_at=datetime.now(timezone.utc),
        expires_at=_parse_expiry(info.get("expires_at")),
        raw_metadata={
            key: value.isoformat() if isinstance(value, datetime) else value for key, value in info.items()
        },
    )


def _to_metadata(row: Token) -> TokenMetadata:
    return TokenMetadata(
        token_hash=row.id,
        type=row.type,
        subject_id=row.subject_id,
        scopes=list(row.scopes),
        app_id=row.app_id,
        issued_at=as_utc(row.issued_at) or datetime.now(timezone.utc),
        expires_at=as_utc(row.expires_at),
        metadata=dict(row.raw_metadata or {}),
    )


__all__ = [
    "ADS_MANAGEMENT_SCOPE",
    "ADS_READ_SCOPE",
    "GRAPH_TOKEN_TYPES",
    "TokenMetadata",
    "TokenService",
]
