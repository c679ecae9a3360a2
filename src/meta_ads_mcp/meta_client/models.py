"""Pydantic models describing tool inputs and outputs."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Literal, Sequence

from pydantic import BaseModel, Field, HttpUrl, RootModel, model_validator

CampaignObjective = Literal[
    "OUTCOME_APP_PROMOTION",
    "OUTCOME_AWARENESS",
    "OUTCOME_ENGAGEMENT",
    "OUTCOME_LEADS",
    "OUTCOME_SALES",
    "OUTCOME_TRAFFIC",
]
DeliveryStatus = Literal["ACTIVE", "PAUSED", "DELETED", "ARCHIVED"]
InitialStatus = Literal["ACTIVE", "PAUSED"]
BidStrategy = Literal["LOWEST_COST_WITHOUT_CAP", "LOWEST_COST_WITH_BID_CAP", "COST_CAP"]
InsightsLevel = Literal["account", "campaign", "adset", "ad"]
DatePreset = Literal[
    "today",
    "yesterday",
    "this_month",
    "last_month",
    "this_quarter",
    "last_3d",
    "last_7d",
    "last_14d",
    "last_28d",
    "last_30d",
    "last_90d",
    "last_quarter",
    "last_year",
    "this_year",
    "maximum",
]


class GraphRequestInput(BaseModel):
    method: Literal["GET", "POST", "DELETE"]
    path: str = Field(..., description="Graph API path including version prefix")
    query: dict[str, Any] | None = None
    body: dict[str, Any] | None = None
    ad_account_id: str | None = Field(default=None, description="Ad account charged for rate limiting")


class GraphRequestOutput(BaseModel):
    status: int
    headers: dict[str, Any]
    data: Any


class PermissionsCheckRequest(BaseModel):
    access_token: str | None = None
    required_scopes: Sequence[str] = Field(default_factory=list)


class PermissionsCheckResponse(BaseModel):
    app_id: str
    type: str
    scopes: list[str]
    expires_at: datetime | None
    valid: bool


class HealthCheckRequest(BaseModel):
    check_token: bool = Field(default=False, description="Also inspect the resolved access token")


class CapabilitiesRequest(BaseModel):
    pass


class GuidanceRequest(BaseModel):
    topic: Literal["overview", "campaigns", "insights", "audiences", "creatives", "auth"] = "overview"


class AuthLoginBeginRequest(BaseModel):
    scopes: Sequence[str] | None = None
    redirect_uri: HttpUrl | None = None
    state: str | None = None


class AuthLoginBeginResponse(BaseModel):
    authorization_url: HttpUrl
    state: str
    redirect_uri: HttpUrl
    scopes: list[str]
    expires_in: int


class AuthLoginCompleteRequest(BaseModel):
    code: str
    redirect_uri: HttpUrl | None = None
    expected_state: str | None = None
    state: str | None = None
    long_lived: bool = Field(default=True, description="Upgrade to a long-lived token")
    create_session: bool = Field(default=False, description="Open a broker session for the user")


class AuthLoginCompleteResponse(BaseModel):
    access_token: str
    token_type: str
    expires_at: datetime | None = None
    app_id: str | None = None
    subject_id: str | None = None
    scopes: list[str] = Field(default_factory=list)
    session_id: str | None = None


class TokenRequest(BaseModel):
    access_token: str | None = None


class TokenExchangeResponse(BaseModel):
    access_token: str
    token_type: str
    expires_at: datetime | None = None


class TokenInfoResponse(BaseModel):
    valid: bool
    app_id: str
    type: str
    subject_id: str
    scopes: list[str]
    expires_at: datetime | None
    recommendations: list[str] = Field(default_factory=list)


class TokenValidateRequest(BaseModel):
    access_token: str | None = None
    required_scopes: Sequence[str] = ("ads_read",)


class TokenRevokeRequest(BaseModel):
    access_token: str | None = None
    session_id: str | None = Field(default=None, description="Broker session to revoke as well")


class SystemUserTokenRequest(BaseModel):
    system_user_id: str
    scopes: Sequence[str] | None = None
    access_token: str | None = Field(default=None, description="Admin token of the business")


class TimeRange(BaseModel):
    since: date
    until: date

    @model_validator(mode="after")
    def _ordered(self) -> "TimeRange":
        if self.since > self.until:
            raise ValueError("time_range.since must not be after time_range.until")
        return self

    def to_graph(self) -> dict[str, str]:
        return {"since": self.since.isoformat(), "until": self.until.isoformat()}


class ListParams(BaseModel):
    fields: Sequence[str] | None = None
    limit: int = Field(default=25, ge=1, le=100)
    after: str | None = None


class AdAccountsList(ListParams):
    business_id: str | None = Field(default=None, description="List accounts owned by a business instead of the user")


class AdAccountGet(BaseModel):
    ad_account_id: str | None = None
    fields: Sequence[str] | None = None


class CampaignList(ListParams):
    ad_account_id: str | None = None
    status: DeliveryStatus | None = None


class CampaignGet(BaseModel):
    campaign_id: str
    fields: Sequence[str] | None = None


class _BudgetMixin(BaseModel):
    daily_budget: int | None = Field(default=None, ge=1, description="Minor currency units")
    lifetime_budget: int | None = Field(default=None, ge=1, description="Minor currency units")


class CampaignCreate(_BudgetMixin):
    ad_account_id: str | None = None
    name: str = Field(..., min_length=1)
    objective: CampaignObjective
    status: InitialStatus = "PAUSED"
    special_ad_categories: Sequence[str] = Field(default_factory=list)
    bid_strategy: BidStrategy | None = None
    bid_cap: int | None = Field(default=None, ge=1)
    spend_cap: int | None = Field(default=None, ge=1)
    budget_optimization: bool | None = None
    start_time: datetime | None = None
    stop_time: datetime | None = None


class CampaignUpdate(_BudgetMixin):
    campaign_id: str
    name: str | None = None
    status: DeliveryStatus | None = None
    bid_strategy: BidStrategy | None = None
    spend_cap: int | None = Field(default=None, ge=1)
    start_time: datetime | None = None
    stop_time: datetime | None = None
    patch: dict[str, Any] = Field(default_factory=dict, description="Extra Graph fields to set")


class CampaignRef(BaseModel):
    campaign_id: str


class AdSetList(ListParams):
    ad_account_id: str | None = None
    campaign_id: str | None = None
    status: DeliveryStatus | None = None


class AdSetGet(BaseModel):
    adset_id: str
    fields: Sequence[str] | None = None


class AdSetCreate(_BudgetMixin):
    campaign_id: str
    name: str = Field(..., min_length=1)
    optimization_goal: str
    billing_event: str = "IMPRESSIONS"
    targeting: dict[str, Any]
    status: InitialStatus = "PAUSED"
    bid_amount: int | None = Field(default=None, ge=1)
    bid_strategy: BidStrategy | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    promoted_object: dict[str, Any] | None = None
    extra: dict[str, Any] = Field(default_factory=dict)


class AdSetUpdate(_BudgetMixin):
    adset_id: str
    name: str | None = None
    status: DeliveryStatus | None = None
    bid_amount: int | None = Field(default=None, ge=1)
    targeting: dict[str, Any] | None = None
    end_time: datetime | None = None
    patch: dict[str, Any] = Field(default_factory=dict)


class AdList(ListParams):
    ad_account_id: str | None = None
    campaign_id: str | None = None
    adset_id: str | None = None
    status: DeliveryStatus | None = None


class AdGet(BaseModel):
    ad_id: str
    fields: Sequence[str] | None = None


class AdCreate(BaseModel):
    ad_account_id: str | None = None
    adset_id: str
    name: str = Field(..., min_length=1)
    creative_id: str
    status: InitialStatus = "PAUSED"
    tracking_specs: list[dict[str, Any]] | None = None


class AdUpdate(BaseModel):
    ad_id: str
    name: str | None = None
    status: DeliveryStatus | None = None
    creative_id: str | None = None
    patch: dict[str, Any] = Field(default_factory=dict)


class _DateWindowMixin(BaseModel):
    date_preset: DatePreset | None = None
    time_range: TimeRange | None = None

    @model_validator(mode="after")
    def _one_window(self):
        if self.date_preset and self.time_range:
            raise ValueError("Use either date_preset or time_range, not both")
        return self

    def window_params(self) -> dict[str, Any]:
        if self.time_range:
            return {"time_range": self.time_range.to_graph()}
        return {"date_preset": self.date_preset or "last_7d"}


class InsightsRequest(_DateWindowMixin):
    object_id: str | None = Field(default=None, description="Account, campaign, ad set or ad ID; defaults to the ad account")
    level: InsightsLevel | None = None
    fields: Sequence[str] | None = None
    breakdowns: Sequence[str] | None = None
    action_breakdowns: Sequence[str] | None = None
    action_attribution_windows: Sequence[str] | None = None
    time_increment: int | Literal["monthly", "all_days"] | None = None
    filtering: list[dict[str, Any]] | None = None
    limit: int | None = Field(default=None, ge=1, le=500)
    after: str | None = None


class InsightsCompareRequest(_DateWindowMixin):
    object_ids: list[str] = Field(..., min_length=2, max_length=10)
    fields: Sequence[str] | None = None
    level: InsightsLevel | None = None


class InsightsAttributionRequest(_DateWindowMixin):
    object_id: str | None = None
    attribution_windows: Sequence[str] = ("1d_click", "7d_click", "1d_view")
    fields: Sequence[str] | None = None
    level: InsightsLevel | None = None


class InsightsExportRequest(_DateWindowMixin):
    object_id: str | None = None
    format: Literal["json", "csv"] = "json"
    level: InsightsLevel | None = None
    fields: Sequence[str] | None = None
    breakdowns: Sequence[str] | None = None
    time_increment: int | Literal["monthly", "all_days"] | None = None
    max_pages: int = Field(default=10, ge=1, le=100)


class AudienceList(ListParams):
    ad_account_id: str | None = None


class AudienceGet(BaseModel):
    audience_id: str
    fields: Sequence[str] | None = None


class AudienceCreate(BaseModel):
    ad_account_id: str | None = None
    name: str = Field(..., min_length=1)
    subtype: Literal["CUSTOM", "WEBSITE", "ENGAGEMENT", "APP", "OFFLINE_CONVERSION"] = "CUSTOM"
    description: str | None = None
    customer_file_source: Literal[
        "USER_PROVIDED_ONLY", "PARTNER_PROVIDED_ONLY", "BOTH_USER_AND_PARTNER_PROVIDED"
    ] | None = None
    rule: dict[str, Any] | None = None
    retention_days: int | None = Field(default=None, ge=1, le=180)
    prefill: bool | None = None


class LookalikeCreate(BaseModel):
    ad_account_id: str | None = None
    name: str = Field(..., min_length=1)
    origin_audience_id: str
    country: str = Field(..., min_length=2, max_length=2, description="ISO 3166 alpha-2 country")
    ratio: float = Field(default=0.01, ge=0.01, le=0.2)
    description: str | None = None


class AudienceUpdate(BaseModel):
    audience_id: str
    name: str | None = None
    description: str | None = None
    rule: dict[str, Any] | None = None
    retention_days: int | None = Field(default=None, ge=1, le=180)


class AudienceRef(BaseModel):
    audience_id: str


class DeliveryEstimateRequest(BaseModel):
    ad_account_id: str | None = None
    targeting_spec: dict[str, Any]
    optimization_goal: str = "REACH"


class CreativeList(ListParams):
    ad_account_id: str | None = None


class CreativeGet(BaseModel):
    creative_id: str
    fields: Sequence[str] | None = None


class CreativeCreate(BaseModel):
    ad_account_id: str | None = None
    name: str = Field(..., min_length=1)
    object_story_spec: dict[str, Any] | None = None
    asset_feed_spec: dict[str, Any] | None = None
    degrees_of_freedom_spec: dict[str, Any] | None = None
    url_tags: str | None = None

    @model_validator(mode="after")
    def _has_content(self) -> "CreativeCreate":
        if not self.object_story_spec and not self.asset_feed_spec:
            raise ValueError("object_story_spec or asset_feed_spec is required")
        return self


class CreativeUpdate(BaseModel):
    creative_id: str
    name: str | None = None
    status: Literal["ACTIVE", "DELETED"] | None = None
    url_tags: str | None = None


class CreativeRef(BaseModel):
    creative_id: str


class CreativePreview(BaseModel):
    creative_id: str
    ad_format: str = "DESKTOP_FEED_STANDARD"
    product_item_ids: Sequence[str] | None = None


class ImageUploadRequest(BaseModel):
    ad_account_id: str | None = None
    image_url: HttpUrl
    name: str | None = None


class BestPracticesRequest(BaseModel):
    format: str = "single_image"


class SessionRequest(BaseModel):
    session_id: str | None = Field(default=None, description="Defaults to the caller's session header or meta")


class SessionSelectAccount(BaseModel):
    session_id: str | None = None
    ad_account_id: str


class ToolResponse(BaseModel):
    ok: bool
    data: Any = None
    meta: dict[str, Any]
    error: dict[str, Any] | None = None


class ToolResponseRoot(RootModel[ToolResponse]):
    root: ToolResponse


__all__ = (
    "BidStrategy",
    "CampaignObjective",
    "DatePreset",
    "DeliveryStatus",
    "InitialStatus",
    "InsightsLevel",
) + tuple(
    name
    for name, value in list(globals().items())
    if isinstance(value, type) and value.__module__ == __name__ and not name.startswith("_")
)
