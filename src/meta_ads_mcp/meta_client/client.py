"""Async client for the Meta Marketing API with retry, rate limiting, and batching."""

from __future__ import annotations

import asyncio
import hashlib
import json
import random
import time
from collections import defaultdict, deque
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Mapping, MutableMapping

import httpx
from cachetools import LRUCache

from ..config import MetaAdsSettings, get_settings
from ..errors import MCPException, McpError, McpErrorCode
from ..logging import get_logger

logger = get_logger(__name__)

# Graph error codes signalling throttling, whatever the HTTP status.
THROTTLE_ERROR_CODES = frozenset({4, 17, 32, 613, *range(80000, 80015)})


def normalize_account_id(account_id: str) -> str:
    """Return ``account_id`` in ``act_<id>`` form."""

    account_id = str(account_id).strip()
    if account_id.startswith("act_"):
        return account_id
    return f"act_{account_id}"


def encode_graph_params(params: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Encode query/form values the way the Graph API expects them.

    ``None`` values are dropped, booleans become ``true``/``false`` and lists or
    mappings are sent as JSON strings.
    """

    if params is None:
        return None
    encoded: dict[str, Any] = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        elif isinstance(value, (list, tuple, dict)):
            encoded[key] = json.dumps(value, separators=(",", ":"))
        elif isinstance(value, (str, int, float)):
            encoded[key] = value
        else:
            encoded[key] = str(value)
    return encoded


class SlidingWindowRateLimiter:
    """Simple sliding-window limiter per key."""

    def __init__(self, capacity: int, window_seconds: float = 60.0) -> None:
        self.capacity = capacity
        self.window_seconds = window_seconds
        self._events: dict[str, deque[float]] = defaultdict(deque)
        self._lock = asyncio.Lock()

    async def acquire(self, key: str = "global") -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                queue = self._events[key]
                while queue and now - queue[0] >= self.window_seconds:
                    queue.popleft()
                if len(queue) < self.capacity:
                    queue.append(now)
                    return
                wait_time = self.window_seconds - (now - queue[0])
            await asyncio.sleep(max(wait_time, 0))


class AccountScoreLimiter:
    """Per ad account call scoring mirroring Marketing API throttling.

    Reads and writes add to a score that decays over ``decay_seconds``. Once a
    call would push the score past ``max_score`` the account is blocked for
    ``block_seconds`` and calls fail fast with ``RATE_LIMIT``.
    """

    def __init__(self, max_score: int, decay_seconds: float, block_seconds: float) -> None:
        self.max_score = max_score
        self.decay_seconds = decay_seconds
        self.block_seconds = block_seconds
        self._events: dict[str, deque[tuple[float, int]]] = defaultdict(deque)
        self._blocked_until: dict[str, float] = {}
        self._lock = asyncio.Lock()

    def _prune(self, account_id: str, now: float) -> deque[tuple[float, int]]:
        queue = self._events[account_id]
        while queue and now - queue[0][0] >= self.decay_seconds:
            queue.popleft()
        return queue

    def score(self, account_id: str) -> int:
        queue = self._prune(account_id, time.monotonic())
        return sum(cost for _, cost in queue)

    def blocked_for(self, account_id: str) -> float:
        until = self._blocked_until.get(account_id)
        if until is None:
            return 0.0
        remaining = until - time.monotonic()
        if remaining <= 0:
            self._blocked_until.pop(account_id, None)
            return 0.0
        return remaining

    def block(self, account_id: str, seconds: float | None = None) -> None:
        duration = self.block_seconds if seconds is None else seconds
        self._blocked_until[account_id] = time.monotonic() + duration
        logger.warning("ad_account_blocked", account_id=account_id, seconds=duration)

    async def acquire(self, account_id: str, cost: int) -> None:
        async with self._lock:
            remaining = self.blocked_for(account_id)
            if remaining:
                raise self._limited(account_id, remaining)
            now = time.monotonic()
            queue = self._prune(account_id, now)
            current = sum(item for _, item in queue)
            if current + cost > self.max_score:
                self.block(account_id)
                raise self._limited(account_id, self.block_seconds, score=current)
            queue.append((now, cost))

    def _limited(self, account_id: str, retry_after: float, score: int | None = None) -> MCPException:
        details: dict[str, Any] = {"account_id": account_id, "max_score": self.max_score}
        if score is not None:
            details["score"] = score
        return MCPException(
            McpError(
                code=McpErrorCode.RATE_LIMIT,
                message="Ad account rate limit reached",
                details=details,
                retry_after=round(retry_after, 3),
            )
        )


class BackoffStrategy:
    def __init__(self, factor: float, maximum: float) -> None:
        self.factor = factor
        self.maximum = maximum

    def delay(self, attempt: int) -> float:
        return min(self.maximum, (2**attempt) * self.factor)

    async def sleep(self, attempt: int) -> None:
        delay = self.delay(attempt)
        jitter = random.random() * 0.1 * delay
        await asyncio.sleep(delay + jitter)


class MetaGraphApiClient:
    """HTTP client with resiliency decorators for the Marketing API."""

    def __init__(self, settings: MetaAdsSettings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client = self._build_http_client()
        self._backoff = BackoffStrategy(
            factor=self.settings.retry_backoff_factor,
            maximum=self.settings.retry_backoff_max,
        )
        self._global_limiter = SlidingWindowRateLimiter(self.settings.rate_limit_per_app)
        self._token_limiter = SlidingWindowRateLimiter(self.settings.rate_limit_per_token)
        self._account_limiter = AccountScoreLimiter(
            max_score=self.settings.account_max_score,
            decay_seconds=self.settings.score_decay_seconds,
            block_seconds=self.settings.account_block_seconds,
        )
        self._cache: LRUCache[str, Any] | None = None
        if self.settings.cache_maxsize:
            self._cache = LRUCache(maxsize=self.settings.cache_maxsize)

    def _build_http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.graph_api_base_url,
            timeout=httpx.Timeout(self.settings.default_timeout_seconds),
            headers={"Accept": "application/json"},
        )

    @property
    def version(self) -> str:
        return self.settings.graph_api_version

    @property
    def account_limiter(self) -> AccountScoreLimiter:
        return self._account_limiter

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "MetaGraphApiClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def request(
        self,
        *,
        access_token: str,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        json_body: dict[str, Any] | None = None,
        form_body: dict[str, Any] | None = None,
        files: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
        use_cache: bool = False,
        account_id: str | None = None,
    ) -> httpx.Response:
        method = method.upper()
        if not path.startswith("/"):
            path = f"/{path}"
        if json_body is not None and (form_body is not None or files is not None):
            raise ValueError("Cannot send both JSON and form data in the same request")

        query = encode_graph_params(query)
        form_body = encode_graph_params(form_body)
        cache_key = self._cache_key(access_token, method, path, query, json_body)

        if use_cache and self._cache and cache_key in self._cache:
            logger.debug("cache_hit", path=path)
            return self._build_cached_response(method=method, path=path, query=query, cached=self._cache[cache_key])

        headers = {
            "Authorization": f"Bearer {access_token}",
        }
        if idempotency_key:
            headers["Idempotency-Key"] = idempotency_key

        if self._client.is_closed:
            self._client = self._build_http_client()
        account_key = normalize_account_id(account_id) if account_id else None
        cost = self.settings.read_call_score if method == "GET" else self.settings.write_call_score

        for attempt in range(self.settings.max_retries + 1):
            if account_key:
                await self._account_limiter.acquire(account_key, cost)
            await self._global_limiter.acquire()
            await self._token_limiter.acquire(self._hash_token(access_token))
            started = time.perf_counter()
            try:
                response = await self._client.request(
                    method=method,
                    url=path,
                    params=query,
                    json=json_body,
                    data=form_body,
                    files=files,
                    headers=headers,
                )
                await response.aread()
            except httpx.RequestError as exc:
                logger.warning("graph_request_failed", path=path, attempt=attempt, error=str(exc))
                if attempt == self.settings.max_retries:
                    raise MCPException(
                        McpError(
                            code=McpErrorCode.REMOTE_5XX,
                            message="HTTP request failed",
                            details={"error": str(exc)},
                        )
                    ) from exc
                await self._backoff.sleep(attempt)
                continue

            if self.settings.enable_request_logging:
                logger.info(
                    "graph_request",
                    method=method,
                    path=path,
                    status=response.status_code,
                    attempt=attempt,
                    elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                )

            if response.status_code == 429 or response.status_code >= 500:
                if attempt == self.settings.max_retries:
                    raise self._map_error(response, account_id=account_key)
                await self._respect_retry_after(response)
                await self._backoff.sleep(attempt)
                continue

            if response.is_success:
                if method != "GET" and self._cache:
                    self._cache.clear()
                elif use_cache and self._cache is not None:
                    self._cache[cache_key] = {
                        "status": response.status_code,
                        "headers": dict(response.headers),
                        "json": response.json(),
                    }
                return response

            raise self._map_error(response, account_id=account_key)

        raise MCPException(
            McpError(
                code=McpErrorCode.REMOTE_5XX,
                message="Max retries exceeded",
                details={"path": path},
            )
        )

    async def batch(
        self,
        *,
        access_token: str,
        operations: list[dict[str, Any]],
    ) -> list[dict[str, Any]]:
        if len(operations) > 50:
            raise MCPException(
                McpError(
                    code=McpErrorCode.VALIDATION,
                    message="Batch operations cannot exceed 50",
                )
            )
        response = await self.request(
            access_token=access_token,
            method="POST",
            path=f"/{self.version}/",
            form_body={"batch": operations, "include_headers": False},
        )
        return response.json()

    async def paginate(
        self,
        *,
        access_token: str,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        max_pages: int | None = None,
        account_id: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        params = dict(query or {})
        pages = 0
        while True:
            response = await self.request(
                access_token=access_token,
                method=method,
                path=path,
                query=params,
                account_id=account_id,
            )
            payload = response.json()
            yield payload
            pages += 1
            if max_pages is not None and pages >= max_pages:
                break
            paging = payload.get("paging") or {}
            cursors = paging.get("cursors") or {}
            after = cursors.get("after")
            if not after or not payload.get("data") or after == params.get("after"):
                break
            params["after"] = after

    def _build_cached_response(
        self,
        *,
        method: str,
        path: str,
        query: dict[str, Any] | None,
        cached: dict[str, Any],
    ) -> httpx.Response:
        request = httpx.Request(
            method=method,
            url=self._client.base_url.join(path),
            params=query,
        )
        return httpx.Response(
            status_code=cached["status"],
            headers=cached["headers"],
            json=cached["json"],
            request=request,
        )

    async def _respect_retry_after(self, response: httpx.Response) -> None:
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                delay = float(retry_after)
            except ValueError:
                delay = 0.0
            await asyncio.sleep(delay)

    def _cache_key(
        self,
        access_token: str,
        method: str,
        path: str,
        query: dict[str, Any] | None,
        json_body: dict[str, Any] | None,
    ) -> str:
        # cached responses are only visible to the token that fetched them
        data = json.dumps(
            {
                "token": self._hash_token(access_token),
                "method": method,
                "path": path,
                "query": query or {},
                "json": json_body or {},
            },
            sort_keys=True,
            default=str,
        )
        return hashlib.sha1(data.encode()).hexdigest()

    def _hash_token(self, token: str) -> str:
        return hashlib.sha1(token.encode()).hexdigest()

    def _map_error(self, response: httpx.Response, *, account_id: str | None = None) -> MCPException:
        meta: MutableMapping[str, Any] = {}
        for header in [
            "x-app-usage",
            "x-business-use-case-usage",
            "x-ad-account-usage",
            "x-fb-trace-id",
        ]:
            value = response.headers.get(header)
            if value:
                meta[header] = value

        retry_after = None
        if "Retry-After" in response.headers:
            try:
                retry_after = float(response.headers["Retry-After"])
            except ValueError:
                retry_after = None

        try:
            payload = response.json()
        except (json.JSONDecodeError, ValueError):
            payload = {"error": {"message": response.text}}
        if not isinstance(payload, dict):
            payload = {}

        err = payload.get("error") or {}
        message = err.get("message", "Unknown error")
        type_ = err.get("type")
        code = err.get("code")
        subcode = err.get("error_subcode")

        error_code = self._classify_error(response.status_code, int(code) if code else None)

        details: dict[str, Any] = {"status": response.status_code}
        if type_:
            details["type"] = type_
        if code is not None:
            details["code"] = code
        if subcode is not None:
            details["error_subcode"] = subcode
        if fbtrace := err.get("fbtrace_id"):
            meta["fbtrace_id"] = fbtrace
        if debug_messages := (payload.get("__debug__") or {}).get("messages"):
            details["debug_messages"] = debug_messages

        if err.get("error_user_title"):
            details["user_title"] = err["error_user_title"]
        if err.get("error_user_msg"):
            details["user_message"] = err["error_user_msg"]

        if error_code == McpErrorCode.RATE_LIMIT and account_id:
            self._account_limiter.block(account_id)
            if retry_after is None:
                retry_after = self._account_limiter.block_seconds

        logger.info(
            "graph_error",
            status=response.status_code,
            error_code=error_code.value,
            graph_code=code,
            fbtrace_id=meta.get("fbtrace_id"),
        )
        return MCPException(
            McpError(
                code=error_code,
                message=message,
                details=details | {"meta": dict(meta)},
                retry_after=retry_after,
            )
        )

    def _classify_error(self, status: int, code: int | None) -> McpErrorCode:
        if status == 401 or (code == 190):
            return McpErrorCode.AUTH
        if status == 429 or (code in THROTTLE_ERROR_CODES):
            return McpErrorCode.RATE_LIMIT
        if status == 403:
            return McpErrorCode.PERMISSION
        if status == 404:
            return McpErrorCode.NOT_FOUND
        if status == 409:
            return McpErrorCode.CONFLICT
        if 500 <= status < 600:
            return McpErrorCode.REMOTE_5XX
        return McpErrorCode.VALIDATION

    def app_access_token(self) -> str:
        return f"{self.settings.app_id}|{self.settings.app_secret.get_secret_value()}"

    async def debug_token(self, *, access_token: str) -> dict[str, Any]:
        app_token = self.app_access_token()
        response = await self.request(
            access_token=app_token,
            method="GET",
            path=f"/{self.version}/debug_token",
            query={
                "input_token": access_token,
                "access_token": app_token,
            },
        )
        data = response.json().get("data", {})
        expires_at = None
        if exp := data.get("expires_at"):
            expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        return {
            "app_id": data.get("app_id"),
            "type": data.get("type"),
            "application": data.get("application"),
            "scopes": data.get("scopes", []),
            "expires_at": expires_at,
            "is_valid": data.get("is_valid", False),
            "user_id": data.get("user_id"),
        }


__all__ = [
    "AccountScoreLimiter",
    "BackoffStrategy",
    "MetaGraphApiClient",
    "SlidingWindowRateLimiter",
    "THROTTLE_ERROR_CODES",
    "encode_graph_params",
    "normalize_account_id",
]
