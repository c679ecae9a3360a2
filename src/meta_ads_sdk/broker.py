"""HTTP client for the session broker routes."""

from __future__ import annotations

from typing import Any, Mapping

import httpx


class BrokerError(RuntimeError):
    """Raised when a broker route answers with a non-2xx status."""

    def __init__(self, status_code: int, body: Any) -> None:
        error = body.get("error") if isinstance(body, Mapping) else None
        if isinstance(error, Mapping):
            message = f"[{error.get('code', 'UNKNOWN')}] {error.get('message', 'Broker request failed')}"
        else:
            message = f"Broker request failed with HTTP {status_code}"
        super().__init__(message)
        self.status_code = status_code
        self.body = body
        self.code = error.get("code") if isinstance(error, Mapping) else None


class BrokerClient:
    """Drives the external-app login and account selection flow."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )

    async def __aenter__(self) -> "BrokerClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        json: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        response = await self._client.request(method, path, params=params, json=json)
        try:
            body = response.json()
        except ValueError:
            body = response.text
        if response.is_error:
            raise BrokerError(response.status_code, body)
        return body.get("data", {}) if isinstance(body, Mapping) else {}

    async def start_auth(self, *, redirect_uri: str | None = None, state: str | None = None) -> dict[str, Any]:
        payload = {key: value for key, value in {"redirect_uri": redirect_uri, "state": state}.items() if value}
        return await self._request("POST", "/api/external/auth", json=payload)

    async def handle_auth_callback(self, *, code: str, state: str) -> dict[str, Any]:
        return await self._request("GET", "/api/external/auth", params={"code": code, "state": state})

    async def get_accounts(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", "/api/external/accounts", params={"session_id": session_id})

    async def select_account(self, session_id: str, account_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/external/accounts",
            json={"session_id": session_id, "account_id": account_id},
        )

    async def create_mcp_connection(self, session_id: str, account_id: str) -> dict[str, Any]:
        return await self._request(
            "POST",
            "/api/external/mcp",
            json={"session_id": session_id, "account_id": account_id},
        )

    async def get_mcp_connection(self, session_id: str, account_id: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            "/api/external/mcp",
            params={"session_id": session_id, "account_id": account_id},
        )

    async def revoke_session(self, session_id: str) -> dict[str, Any]:
        return await self._request("DELETE", "/api/external/sessions/" + session_id)

    async def get_session(self, session_id: str) -> dict[str, Any]:
        return await self._request("GET", "/api/external/sessions/" + session_id)


__all__ = ["BrokerClient", "BrokerError"]
