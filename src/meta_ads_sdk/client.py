"""Async client for the Meta Ads MCP server over MCP Streamable HTTP."""

from __future__ import annotations

from contextlib import AsyncExitStack
from datetime import timedelta
from importlib import metadata as importlib_metadata
from typing import Any, Callable, Mapping, MutableMapping, TypeVar

from mcp import types
from mcp.client.session import ClientSession
from mcp.client.streamable_http import streamablehttp_client
from pydantic import BaseModel

from meta_ads_mcp.meta_client import (
    AdCreate,
    AdList,
    AdSetCreate,
    AdSetList,
    AdSetUpdate,
    AdUpdate,
    AudienceCreate,
    AudienceList,
    AuthLoginBeginRequest,
    AuthLoginBeginResponse,
    AuthLoginCompleteRequest,
    AuthLoginCompleteResponse,
    CampaignCreate,
    CampaignList,
    CampaignRef,
    CampaignUpdate,
    CreativeCreate,
    CreativeList,
    DeliveryEstimateRequest,
    GraphRequestInput,
    ImageUploadRequest,
    InsightsCompareRequest,
    InsightsExportRequest,
    InsightsRequest,
    LookalikeCreate,
    PermissionsCheckRequest,
    PermissionsCheckResponse,
    SessionRequest,
    SessionSelectAccount,
    TokenInfoResponse,
    TokenRequest,
    ToolResponse,
)

TModel = TypeVar("TModel", bound=BaseModel)


class ToolResponseError(RuntimeError):
    """Base exception for tool response errors."""

    def __init__(self, message: str, *, response: ToolResponse | None = None) -> None:
        super().__init__(message)
        self.response = response


class ToolExecutionError(ToolResponseError):
    """Raised when the server returns {"ok": false}."""

    def __init__(self, response: ToolResponse) -> None:
        error = response.error or {}
        code = error.get("code", "UNKNOWN")
        message = error.get("message", "Tool execution failed")
        super().__init__(f"[{code}] {message}", response=response)
        self.code = code
        self.details = error.get("details")
        self.retry_after = error.get("retry_after")


def _created_id(response: ToolResponse) -> str | None:
    """ID of the object a create tool made, from the Graph body envelope."""

    body = (response.data or {}).get("data")
    if isinstance(body, Mapping) and body.get("id"):
        return str(body["id"])
    return None


class MetaAdsSdk:
    """Thin async SDK wrapping MCP tool calls exposed by the Meta Ads server."""

    def __init__(
        self,
        *,
        base_url: str,
        access_token: str | None = None,
        session_id: str | None = None,
        headers: Mapping[str, str] | None = None,
        timeout_seconds: float = 30.0,
        sse_read_timeout_seconds: float = 60.0 * 5,
        mcp_path: str = "/mcp",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers: MutableMapping[str, str] = dict(headers or {})
        if access_token:
            self._headers.setdefault("Authorization", f"Bearer {access_token}")
        if session_id:
            self._headers.setdefault("X-Session-Id", session_id)
        self._timeout = timedelta(seconds=timeout_seconds)
        self._sse_timeout = timedelta(seconds=sse_read_timeout_seconds)
        self._mcp_path = mcp_path if mcp_path.startswith("/") else f"/{mcp_path}"
        self._stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None
        self._get_session_id: Callable[[], str | None] | None = None
        self._version = self._detect_version()

    async def __aenter__(self) -> "MetaAdsSdk":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def session_id(self) -> str | None:
        """MCP transport session, not the broker session."""

        if self._get_session_id is None:
            return None
        return self._get_session_id()

    def _detect_version(self) -> str:
        try:
            return importlib_metadata.version("meta-ads-mcp")
        except importlib_metadata.PackageNotFoundError:  # pragma: no cover
            return "0.0.0"

    async def connect(self) -> None:
        if self._session is not None:
            return
        stack = AsyncExitStack()
        read_stream, write_stream, get_session_id = await stack.enter_async_context(
            streamablehttp_client(
                url=f"{self._base_url}{self._mcp_path}",
                headers=dict(self._headers),
                timeout=self._timeout,
                sse_read_timeout=self._sse_timeout,
            )
        )
        client_info = types.Implementation(name="meta-ads-sdk", version=self._version)
        session = await stack.enter_async_context(ClientSession(read_stream, write_stream, client_info=client_info))
        await session.initialize()
        self._stack = stack
        self._session = session
        self._get_session_id = get_session_id

    async def close(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._session = None
        self._get_session_id = None

    def _require_session(self) -> ClientSession:
        if self._session is None:
            raise RuntimeError("SDK is not connected. Call connect() first or use async context manager.")
        return self._session

    def _normalize_arguments(self, arguments: BaseModel | Mapping[str, Any] | None) -> dict[str, Any] | None:
        if arguments is None:
            return None
        if isinstance(arguments, BaseModel):
            return arguments.model_dump(mode="json", exclude_none=True)
        if isinstance(arguments, Mapping):
            return {k: v for k, v in arguments.items() if v is not None}
        raise TypeError("Tool arguments must be a Pydantic model or mapping")

    async def call_tool_raw(
        self,
        name: str,
        arguments: BaseModel | Mapping[str, Any] | None = None,
    ) -> ToolResponse:
        session = self._require_session()
        normalized = self._normalize_arguments(arguments)
        # FastMCP tools take their model under the "args" parameter
        result = await session.call_tool(name, {"args": normalized or {}})
        if result.structuredContent is None:
            raise ToolResponseError(f"Tool '{name}' returned no structured content")
        if not isinstance(result.structuredContent, dict):
            raise ToolResponseError(f"Tool '{name}' returned invalid structured content type")
        response = ToolResponse.model_validate({"meta": {}, **result.structuredContent})
        if not response.ok:
            raise ToolExecutionError(response)
        return response

    async def call_tool_data(
        self,
        name: str,
        arguments: BaseModel | Mapping[str, Any] | None,
        response_model: type[TModel],
    ) -> TModel:
        if not issubclass(response_model, BaseModel):
            raise TypeError("response_model must be a subclass of pydantic.BaseModel")
        response = await self.call_tool_raw(name, arguments)
        return response_model.model_validate(response.data)

    # --- Typed wrappers -------------------------------------------------

    async def graph_request(self, request: GraphRequestInput) -> ToolResponse:
        return await self.call_tool_raw("graph.request", request)

    async def auth_permissions_check(self, access_token: str | None = None) -> PermissionsCheckResponse:
        return await self.call_tool_data(
            "auth.permissions.check",
            PermissionsCheckRequest(access_token=access_token),
            PermissionsCheckResponse,
        )

    async def auth_login_begin(self, request: AuthLoginBeginRequest) -> AuthLoginBeginResponse:
        return await self.call_tool_data("auth.login.begin", request, AuthLoginBeginResponse)

    async def auth_login_complete(self, request: AuthLoginCompleteRequest) -> AuthLoginCompleteResponse:
        return await self.call_tool_data("auth.login.complete", request, AuthLoginCompleteResponse)

    async def auth_token_info(self, access_token: str | None = None) -> TokenInfoResponse:
        return await self.call_tool_data("auth.token.info", TokenRequest(access_token=access_token), TokenInfoResponse)

    async def health(self) -> ToolResponse:
        return await self.call_tool_raw("system.health", {})

    async def accounts_list(self) -> ToolResponse:
        return await self.call_tool_raw("ads.accounts.list", {})

    async def campaigns_list(self, request: CampaignList) -> ToolResponse:
        return await self.call_tool_raw("ads.campaigns.list", request)

    async def campaigns_create(self, request: CampaignCreate) -> ToolResponse:
        return await self.call_tool_raw("ads.campaigns.create", request)

    async def campaigns_update(self, request: CampaignUpdate) -> ToolResponse:
        return await self.call_tool_raw("ads.campaigns.update", request)

    async def campaigns_pause(self, campaign_id: str) -> ToolResponse:
        return await self.call_tool_raw("ads.campaigns.pause", CampaignRef(campaign_id=campaign_id))

    async def campaigns_resume(self, campaign_id: str) -> ToolResponse:
        return await self.call_tool_raw("ads.campaigns.resume", CampaignRef(campaign_id=campaign_id))

    async def adsets_list(self, request: AdSetList) -> ToolResponse:
        return await self.call_tool_raw("ads.adsets.list", request)

    async def adsets_create(self, request: AdSetCreate) -> ToolResponse:
        return await self.call_tool_raw("ads.adsets.create", request)

    async def adsets_update(self, request: AdSetUpdate) -> ToolResponse:
        return await self.call_tool_raw("ads.adsets.update", request)

    async def ads_list(self, request: AdList) -> ToolResponse:
        return await self.call_tool_raw("ads.ads.list", request)

    async def ads_create(self, request: AdCreate) -> ToolResponse:
        return await self.call_tool_raw("ads.ads.create", request)

    async def ads_update(self, request: AdUpdate) -> ToolResponse:
        return await self.call_tool_raw("ads.ads.update", request)

    async def insights_get(self, request: InsightsRequest) -> ToolResponse:
        return await self.call_tool_raw("insights.get", request)

    async def insights_compare(self, request: InsightsCompareRequest) -> ToolResponse:
        return await self.call_tool_raw("insights.compare", request)

    async def insights_export(self, request: InsightsExportRequest) -> ToolResponse:
        return await self.call_tool_raw("insights.export", request)

    async def audiences_list(self, request: AudienceList) -> ToolResponse:
        return await self.call_tool_raw("audiences.list", request)

    async def audiences_create(self, request: AudienceCreate) -> ToolResponse:
        return await self.call_tool_raw("audiences.create", request)

    async def lookalike_create(self, request: LookalikeCreate) -> ToolResponse:
        return await self.call_tool_raw("audiences.lookalike.create", request)

    async def delivery_estimate(self, request: DeliveryEstimateRequest) -> ToolResponse:
        return await self.call_tool_raw("audiences.delivery_estimate", request)

    async def creatives_list(self, request: CreativeList) -> ToolResponse:
        return await self.call_tool_raw("creatives.list", request)

    async def creatives_create(self, request: CreativeCreate) -> ToolResponse:
        return await self.call_tool_raw("creatives.create", request)

    async def image_upload(self, request: ImageUploadRequest) -> ToolResponse:
        return await self.call_tool_raw("creatives.image.upload", request)

    async def session_get(self, session_id: str | None = None) -> ToolResponse:
        return await self.call_tool_raw("sessions.get", SessionRequest(session_id=session_id))

    async def session_select_account(self, ad_account_id: str, session_id: str | None = None) -> ToolResponse:
        return await self.call_tool_raw(
            "sessions.account.select",
            SessionSelectAccount(session_id=session_id, ad_account_id=ad_account_id),
        )

    # --- High-level helpers --------------------------------------------

    async def create_campaign_stack(
        self,
        *,
        campaign: CampaignCreate,
        adset: AdSetCreate,
        creative: CreativeCreate,
        ad: AdCreate,
    ) -> dict[str, Any]:
        """Create campaign, ad set, creative and ad, wiring each ID into the next."""

        campaign_resp = await self.campaigns_create(campaign)
        campaign_id = _created_id(campaign_resp)
        if not campaign_id:
            raise ToolResponseError("Campaign creation missing id", response=campaign_resp)

        adset_resp = await self.adsets_create(adset.model_copy(update={"campaign_id": campaign_id}))
        adset_id = _created_id(adset_resp)
        if not adset_id:
            raise ToolResponseError("Ad set creation missing id", response=adset_resp)

        creative_resp = await self.creatives_create(creative)
        creative_id = _created_id(creative_resp)
        if not creative_id:
            raise ToolResponseError("Creative creation missing id", response=creative_resp)

        ad_resp = await self.ads_create(ad.model_copy(update={"adset_id": adset_id, "creative_id": creative_id}))

        return {
            "campaign_id": campaign_id,
            "adset_id": adset_id,
            "creative_id": creative_id,
            "ad_id": _created_id(ad_resp),
            "campaign": campaign_resp.data,
            "adset": adset_resp.data,
            "creative": creative_resp.data,
            "ad": ad_resp.data,
        }


__all__ = ["MetaAdsSdk", "ToolExecutionError", "ToolResponseError"]
