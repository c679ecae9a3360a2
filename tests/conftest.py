from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from meta_ads_mcp.auth import MetaOAuthClient, OAuthStateStore
from meta_ads_mcp.config import get_settings
from meta_ads_mcp.mcp_tools.common import ToolEnvironment
from meta_ads_mcp.meta_client import MetaGraphApiClient, TokenService
from meta_ads_mcp.sessions import SessionManager
from meta_ads_mcp.storage import MemoryKeyValueStore, TokenType, dispose_engine, init_models

TEST_ENV = {
    "META_ADS_MCP_GRAPH_API_BASE_URL": "https://example.com",
    "META_ADS_MCP_FACEBOOK_OAUTH_BASE_URL": "https://example.com",
    "META_ADS_MCP_APP_ID": "app",
    "META_ADS_MCP_APP_SECRET": "secret",
    "META_ADS_MCP_OAUTH_REDIRECT_URI": "https://client.example.com/callback",
    "META_ADS_MCP_SESSION_BACKEND": "memory",
}


@pytest.fixture(autouse=True)
async def configure_settings(tmp_path, monkeypatch) -> AsyncIterator[None]:
    """Configure a throwaway database and reset cached settings."""

    db_path = tmp_path / "test.db"
    monkeypatch.setenv("META_ADS_MCP_DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    for key, value in TEST_ENV.items():
        monkeypatch.setenv(key, value)
    for key in ("META_ADS_MCP_ACCESS_TOKEN", "META_ADS_MCP_DEFAULT_AD_ACCOUNT_ID", "META_ADS_MCP_GRAPH_API_VERSION"):
        monkeypatch.delenv(key, raising=False)

    get_settings.cache_clear()
    await dispose_engine()
    await init_models()
    yield
    await dispose_engine()
    get_settings.cache_clear()


@pytest.fixture
def graph_url() -> Callable[[str], str]:
    """Absolute Graph URL for a path under the configured version."""

    def build(path: str) -> str:
        return f"https://example.com/{get_settings().graph_api_version}/{path.lstrip('/')}"

    return build


@pytest.fixture
def token_metadata() -> MagicMock:
    metadata = MagicMock()
    metadata.subject_id = "user_1"
    metadata.type = TokenType.USER
    metadata.scopes = ["ads_read", "ads_management"]
    metadata.app_id = "app_1"
    metadata.expires_at = None
    metadata.is_expired = False
    metadata.token_hash = "hash"
    return metadata


@pytest.fixture
async def tool_env(token_metadata) -> AsyncIterator[ToolEnvironment]:
    settings = get_settings()
    client = MetaGraphApiClient(settings)
    client._backoff.sleep = AsyncMock()  # type: ignore[method-assign]
    token_service = AsyncMock(spec=TokenService)
    token_service.ensure_permissions.return_value = token_metadata
    token_service.inspect_token.return_value = token_metadata
    store = MemoryKeyValueStore()
    env = ToolEnvironment(
        settings=settings,
        client=client,
        token_service=token_service,
        sessions=SessionManager(store, client, settings),
        oauth_states=OAuthStateStore(store, ttl_seconds=settings.oauth_state_ttl_seconds),
        oauth_client=MetaOAuthClient(settings),
    )
    yield env
    await client.aclose()


@pytest.fixture
def ctx() -> MagicMock:
    c = MagicMock()
    c.request_context.meta = {"access_token": "token123"}
    c.request_context.request = None
    return c


@pytest.fixture
def anonymous_ctx() -> MagicMock:
    c = MagicMock()
    c.request_context.meta = None
    c.request_context.request = None
    return c


def collect_tools(register: Callable[[Any, ToolEnvironment], None], env: ToolEnvironment) -> dict[str, Any]:
    """Run a module's ``register`` against a stub server and return the handlers by name."""

    server = MagicMock()
    tools: dict[str, Any] = {}
    routes: dict[tuple[str, str], Any] = {}

    def tool_decorator(name=None, **kwargs):
        def wrapper(func):
            tools[name] = func
            return func

        return wrapper

    def route_decorator(path, methods, name=None, **kwargs):
        def wrapper(func):
            for method in methods:
                routes[(method, path)] = func
            return func

        return wrapper

    server.tool.side_effect = tool_decorator
    server.custom_route.side_effect = route_decorator
    register(server, env)
    tools.update({f"{method} {path}": func for (method, path), func in routes.items()})
    return tools


@pytest.fixture
def collect() -> Callable[..., dict[str, Any]]:
    return collect_tools
