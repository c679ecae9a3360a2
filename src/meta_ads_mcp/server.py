"""MCP server bootstrap for the Meta Marketing API."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from mcp.server.fastmcp import FastMCP

from .auth import MetaOAuthClient, OAuthStateStore
from .config import MetaAdsSettings, get_settings
from .logging import configure_logging, get_logger
from .meta_client import MetaGraphApiClient
from .meta_client.auth import TokenService
from .mcp_tools import accounts, ads, audiences, auth_login, broker, core, creatives, insights, sessions
from .mcp_tools.common import ToolEnvironment
from .sessions import SessionManager
from .storage import KeyValueStore, RedisKeyValueStore, build_kv_store, init_models

DEFAULT_TRANSPORT = "stdio"
SWEEP_SECONDS = 300

logger = get_logger(__name__)


async def sweep_once(manager: SessionManager, store: KeyValueStore) -> None:
    """Drop idle account scopes and expired store entries."""

    await manager.cleanup_idle_scopes()
    # redis expires keys on its own
    purge = getattr(store, "purge_expired", None)
    if purge is not None:
        purged = await purge()
        if purged:
            logger.info("kv_entries_purged", count=purged)


async def _sweep(manager: SessionManager, store: KeyValueStore, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await sweep_once(manager, store)
        except Exception:
            logger.exception("sweep_failed")


def create_server(settings: MetaAdsSettings | None = None) -> FastMCP:
    settings = settings or get_settings()
    configure_logging(settings)

    client = MetaGraphApiClient(settings)
    token_service = TokenService(client)
    store = build_kv_store(settings)
    session_manager = SessionManager(store, client, settings)
    environment = ToolEnvironment(
        settings=settings,
        client=client,
        token_service=token_service,
        sessions=session_manager,
        oauth_states=OAuthStateStore(store, ttl_seconds=settings.oauth_state_ttl_seconds),
        oauth_client=MetaOAuthClient(settings),
    )

    # HTTP transports enter the lifespan once per MCP session, so shared
    # resources are opened by the first session and closed by the last; the
    # Graph client reopens its connection pool on the next request.
    state: dict[str, Any] = {"active": 0, "sweeper": None}
    lock = asyncio.Lock()

    @asynccontextmanager
    async def lifespan(app: FastMCP) -> AsyncIterator[None]:
        async with lock:
            if state["active"] == 0:
                await init_models()
                state["sweeper"] = asyncio.create_task(
                    _sweep(session_manager, store, min(SWEEP_SECONDS, settings.scope_idle_seconds))
                )
                logger.info("server_started", name=settings.server_name, session_backend=settings.session_backend)
            state["active"] += 1
        try:
            yield
        finally:
            async with lock:
                state["active"] -= 1
                if state["active"] == 0:
                    sweeper = state["sweeper"]
                    sweeper.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await sweeper
                    await client.aclose()
                    if isinstance(store, RedisKeyValueStore):
                        await store.aclose()

    server = FastMCP(name=settings.server_name, lifespan=lambda _app: lifespan(_app))

    core.register(server, environment)
    auth_login.register(server, environment)
    accounts.register(server, environment)
    ads.register(server, environment)
    insights.register(server, environment)
    audiences.register(server, environment)
    creatives.register(server, environment)
    sessions.register(server, environment)
    broker.register(server, environment)

    return server


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the Meta Ads MCP server")
    parser.add_argument(
        "--transport",
        choices=["stdio", "sse", "streamable-http"],
        default=DEFAULT_TRANSPORT,
        help="Transport protocol to use",
    )
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args(argv)

    server = create_server()

    if args.transport == "streamable-http":
        import uvicorn

        uvicorn.run(server.streamable_http_app(), host=args.host, port=args.port)
    elif args.transport == "sse":
        import uvicorn

        uvicorn.run(server.sse_app(), host=args.host, port=args.port)
    else:
        server.run(transport="stdio")


if __name__ == "__main__":
    main()


__all__ = ["create_server", "main", "sweep_once"]
