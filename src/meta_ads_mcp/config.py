"""Application configuration loaded from environment variables."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Sequence

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class MetaAdsSettings(BaseSettings):
    """Configuration for the Meta Ads MCP server."""

    model_config = SettingsConfigDict(env_prefix="META_ADS_MCP_", extra="ignore")

    graph_api_base_url: str = Field(
        default="https://graph.facebook.com",
        description="Base URL of the Meta Graph API",
    )
    facebook_oauth_base_url: str = Field(
        default="https://www.facebook.com",
        description="Base URL for Meta OAuth dialog",
    )
    graph_api_version: str = Field(
        default="v23.0",
        description="Marketing API version to target",
    )
    app_id: str = Field(..., description="Meta App ID")
    app_secret: SecretStr = Field(..., description="Meta App secret")
    access_token: SecretStr | None = Field(
        default=None,
        description="Token used when a caller provides none (system user or long-lived user token)",
    )
    business_id: str | None = Field(default=None, description="Business Manager ID")
    default_ad_account_id: str | None = Field(
        default=None,
        description="Ad account used when a tool call does not name one",
    )
    oauth_redirect_uri: str = Field(
        default="http://localhost:8000/oauth/callback",
        description="Default OAuth redirect URI used during login flow",
    )
    oauth_scopes: Sequence[str] = Field(
        default=("ads_management", "ads_read", "business_management"),
        description="Scopes requested when a login flow does not specify any",
    )
    oauth_state_ttl_seconds: int = Field(default=600, ge=1, description="OAuth state lifetime")
    default_timeout_seconds: float = Field(default=30.0, ge=1.0, description="HTTP request timeout")
    max_retries: int = Field(default=5, ge=0, le=10, description="Maximum HTTP retry attempts")
    retry_backoff_factor: float = Field(default=0.5, description="Base backoff factor in seconds")
    retry_backoff_max: float = Field(default=30.0, description="Maximum backoff in seconds")
    rate_limit_per_app: int = Field(default=90, ge=1, description="Requests per minute allowance")
    rate_limit_per_token: int = Field(default=30, ge=1, description="Per-token requests per minute")
    api_tier: Literal["development", "standard"] = Field(
        default="standard",
        description="Marketing API access tier, selects the ad account score limits",
    )
    development_max_score: int = Field(default=60, ge=1)
    standard_max_score: int = Field(default=9000, ge=1)
    score_decay_seconds: float = Field(default=300.0, gt=0, description="Ad account score window")
    development_block_seconds: float = Field(default=300.0, ge=0)
    standard_block_seconds: float = Field(default=60.0, ge=0)
    read_call_score: int = Field(default=1, ge=0)
    write_call_score: int = Field(default=3, ge=0)
    database_url: str = Field(
        default="sqlite+aiosqlite:///./meta_ads_mcp.db",
        description="SQLAlchemy database URL",
    )
    cache_maxsize: int = Field(default=256, ge=0, description="Maximum entries for in-memory caches")
    session_backend: Literal["memory", "database", "redis"] = Field(
        default="memory",
        description="Where broker sessions and OAuth states are kept",
    )
    redis_url: str | None = Field(default=None, description="Redis URL for the redis session backend")
    session_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, ge=60, description="Session lifetime")
    scope_idle_seconds: int = Field(
        default=3600,
        ge=1,
        description="Idle time after which account scopes are dropped",
    )
    server_name: str = Field(default="meta-ads-mcp", description="Name advertised to MCP clients")
    log_level: str = Field(default="INFO", description="Root log level")
    enable_request_logging: bool = Field(default=False, description="Emit request/response logs")
    pii_redaction_keys: Sequence[str] = Field(
        default=("access_token", "authorization", "client_secret", "password", "code"),
        description="Keys that should be redacted in logs",
    )

    @field_validator("graph_api_version")
    def _validate_version(cls, value: str) -> str:
        if not value.startswith("v"):
            msg = "Graph API versions must be prefixed with 'v'"
            raise ValueError(msg)
        return value

    @model_validator(mode="after")
    def _validate_backend(self) -> "MetaAdsSettings":
        if self.session_backend == "redis" and not self.redis_url:
            msg = "redis_url is required when session_backend is 'redis'"
            raise ValueError(msg)
        return self

    @property
    def account_max_score(self) -> int:
        if self.api_tier == "development":
            return self.development_max_score
        return self.standard_max_score

    @property
    def account_block_seconds(self) -> float:
        if self.api_tier == "development":
            return self.development_block_seconds
        return self.standard_block_seconds


@lru_cache(maxsize=1)
def get_settings() -> MetaAdsSettings:
    """Return cached settings instance."""

    return MetaAdsSettings()  # type: ignore[call-arg]


__all__ = ["MetaAdsSettings", "get_settings"]
