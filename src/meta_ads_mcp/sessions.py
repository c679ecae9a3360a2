"""Multi-account session broker.

A user session is opened after OAuth and remembers the user's token and the ad
accounts they can reach. Selecting an account creates an account session, and
an account scope is the in-process handle an external app uses to drive tools
against that one account.
"""

from __future__ import annotations

import asyncio
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from pydantic import BaseModel, Field

from .config import MetaAdsSettings
from .errors import MCPException, McpError, McpErrorCode
from .logging import get_logger
from .meta_client import MetaGraphApiClient, normalize_account_id
from .storage import KeyValueStore

logger = get_logger(__name__)

ACCOUNT_FIELDS = "id,name,currency,account_status,business"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class BusinessInfo(BaseModel):
    id: str
    name: str | None = None


class AccountInfo(BaseModel):
    id: str
    name: str | None = None
    currency: str | None = None
    status: str | None = None
    business: BusinessInfo | None = None

    @classmethod
    def from_graph(cls, payload: Mapping[str, Any]) -> "AccountInfo":
        business = payload.get("business")
        return cls(
            id=normalize_account_id(str(payload["id"])),
            name=payload.get("name"),
            currency=payload.get("currency"),
            status=str(payload["account_status"]) if payload.get("account_status") is not None else None,
            business=BusinessInfo(id=str(business["id"]), name=business.get("name")) if business else None,
        )


class UserSession(BaseModel):
    session_id: str
    user_id: str
    meta_user_id: str
    email: str | None = None
    name: str | None = None
    access_token: str
    token_expires_at: datetime | None = None
    selected_account_id: str | None = None
    available_accounts: list[AccountInfo] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_now)
    last_used: datetime = Field(default_factory=_now)

    def public_view(self) -> dict[str, Any]:
        """Session details safe to hand back to callers."""

        return self.model_dump(mode="json", exclude={"access_token"})

    def has_account(self, account_id: str) -> bool:
        wanted = normalize_account_id(account_id)
        return any(account.id == wanted for account in self.available_accounts)


class AccountSession(BaseModel):
    session_id: str
    user_id: str
    account_id: str
    access_token: str
    created_at: datetime = Field(default_factory=_now)
    last_used: datetime = Field(default_factory=_now)


class AccountScope(BaseModel):
    session_id: str
    account_id: str
    server_name: str
    created_at: datetime = Field(default_factory=_now)
    last_used: datetime = Field(default_factory=_now)


class SessionManager:
    """Stores broker sessions in a key-value store with sliding TTL."""

    def __init__(self, store: KeyValueStore, client: MetaGraphApiClient, settings: MetaAdsSettings) -> None:
        self._store = store
        self._client = client
        self._settings = settings
        self._scopes: dict[tuple[str, str], AccountScope] = {}
        self._lock = asyncio.Lock()

    @property
    def ttl_seconds(self) -> int:
        return self._settings.session_ttl_seconds

    @staticmethod
    def _session_key(session_id: str) -> str:
        return f"session:{session_id}"

    @staticmethod
    def _user_key(user_id: str) -> str:
        return f"user:{user_id}:session"

    @staticmethod
    def _account_key(session_id: str, account_id: str) -> str:
        return f"account_session:{session_id}:{account_id}"

    @staticmethod
    def generate_session_id() -> str:
        return secrets.token_hex(32)

    async def fetch_accounts(self, access_token: str) -> list[AccountInfo]:
        accounts: list[AccountInfo] = []
        async for page in self._client.paginate(
            access_token=access_token,
            method="GET",
            path=f"/{self._client.version}/me/adaccounts",
            query={"fields": ACCOUNT_FIELDS, "limit": 100},
        ):
            for item in page.get("data") or []:
                accounts.append(AccountInfo.from_graph(item))
        return accounts

    async def create_user_session(
        self,
        *,
        profile: Mapping[str, Any],
        access_token: str,
        token_expires_at: datetime | None = None,
    ) -> UserSession:
        meta_user_id = str(profile["id"])
        accounts = await self.fetch_accounts(access_token)
        session = UserSession(
            session_id=self.generate_session_id(),
            user_id=str(profile.get("user_id") or meta_user_id),
            meta_user_id=meta_user_id,
            email=profile.get("email"),
            name=profile.get("name"),
            access_token=access_token,
            token_expires_at=token_expires_at,
            available_accounts=accounts,
        )
        await self._save(session)
        await self._store.set(self._user_key(session.user_id), session.session_id, ttl_seconds=self.ttl_seconds)
        logger.info(
            "session_created",
            session_id=session.session_id,
            user_id=session.user_id,
            accounts=len(accounts),
        )
        return session

    async def get_user_session(self, session_id: str) -> UserSession | None:
        raw = await self._store.get(self._session_key(session_id))
        if raw is None:
            return None
        session = UserSession.model_validate(raw)
        session.last_used = _now()
        await self._save(session)
        await self._renew_user_index(session)
        return session

    async def require_user_session(self, session_id: str) -> UserSession:
        session = await self.get_user_session(session_id)
        if session is None:
            raise MCPException(
                McpError(
                    code=McpErrorCode.NOT_FOUND,
                    message="Session not found",
                    details={"session_id": session_id},
                )
            )
        return session

    async def get_session_for_user(self, user_id: str) -> UserSession | None:
        session_id = await self._store.get(self._user_key(user_id))
        if not session_id:
            return None
        return await self.get_user_session(str(session_id))

    async def select_account(self, session_id: str, account_id: str) -> AccountSession:
        session = await self.require_user_session(session_id)
        account_id = normalize_account_id(account_id)
        if not session.has_account(account_id):
            raise MCPException(
                McpError(
                    code=McpErrorCode.PERMISSION,
                    message="Account not accessible to this user",
                    details={"account_id": account_id},
                )
            )

        session.selected_account_id = account_id
        await self._save(session)
        account_session = AccountSession(
            session_id=session_id,
            user_id=session.user_id,
            account_id=account_id,
            access_token=session.access_token,
        )
        await self._store.set(
            self._account_key(session_id, account_id),
            account_session.model_dump(mode="json"),
            ttl_seconds=self.ttl_seconds,
        )
        logger.info("account_selected", session_id=session_id, account_id=account_id)
        return account_session

    async def get_account_session(self, session_id: str, account_id: str) -> AccountSession | None:
        key = self._account_key(session_id, normalize_account_id(account_id))
        raw = await self._store.get(key)
        if raw is None:
            return None
        account_session = AccountSession.model_validate(raw)
        account_session.last_used = _now()
        await self._store.set(key, account_session.model_dump(mode="json"), ttl_seconds=self.ttl_seconds)
        return account_session

    async def get_or_create_scope(self, session_id: str, account_id: str) -> AccountScope:
        account_id = normalize_account_id(account_id)
        key = (session_id, account_id)
        async with self._lock:
            scope = self._scopes.get(key)
            if scope is not None:
                scope.last_used = _now()
                return scope

            account_session = await self.get_account_session(session_id, account_id)
            if account_session is None:
                raise MCPException(
                    McpError(
                        code=McpErrorCode.NOT_FOUND,
                        message="Account session not found; select the account first",
                        details={"session_id": session_id, "account_id": account_id},
                    )
                )
            scope = AccountScope(
                session_id=session_id,
                account_id=account_id,
                server_name=f"{self._settings.server_name}-{account_id}",
            )
            self._scopes[key] = scope
        logger.info("account_scope_created", session_id=session_id, account_id=account_id)
        return scope

    def get_scope(self, session_id: str, account_id: str) -> AccountScope | None:
        return self._scopes.get((session_id, normalize_account_id(account_id)))

    def touch_scope(self, session_id: str, account_id: str) -> AccountScope | None:
        """Mark an existing scope as used so idle cleanup keeps it."""

        scope = self.get_scope(session_id, account_id)
        if scope is not None:
            scope.last_used = _now()
        return scope

    async def cleanup_idle_scopes(self) -> int:
        cutoff = _now() - timedelta(seconds=self._settings.scope_idle_seconds)
        async with self._lock:
            stale = [key for key, scope in self._scopes.items() if scope.last_used < cutoff]
            for key in stale:
                del self._scopes[key]
        if stale:
            logger.info("account_scopes_dropped", count=len(stale))
        return len(stale)

    async def revoke_session(self, session_id: str) -> bool:
        raw = await self._store.get(self._session_key(session_id))
        if raw is None:
            return False
        session = UserSession.model_validate(raw)
        await self._store.delete(self._session_key(session_id))
        user_key = self._user_key(session.user_id)
        # a newer login may own the index by now
        if await self._store.get(user_key) == session_id:
            await self._store.delete(user_key)
        for account in session.available_accounts:
            await self._store.delete(self._account_key(session_id, account.id))
        async with self._lock:
            for key in [key for key in self._scopes if key[0] == session_id]:
                del self._scopes[key]
        logger.info("session_revoked", session_id=session_id)
        return True

    async def _save(self, session: UserSession) -> None:
        await self._store.set(
            self._session_key(session.session_id),
            session.model_dump(mode="json"),
            ttl_seconds=self.ttl_seconds,
        )

    async def _renew_user_index(self, session: UserSession) -> None:
        """Slide the user index with its session unless a newer login took it over."""

        user_key = self._user_key(session.user_id)
        current = await self._store.get(user_key)
        if current is None or current == session.session_id:
            await self._store.set(user_key, session.session_id, ttl_seconds=self.ttl_seconds)


__all__ = [
    "AccountInfo",
    "AccountScope",
    "AccountSession",
    "BusinessInfo",
    "SessionManager",
    "UserSession",
]
