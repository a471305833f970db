"""In-memory OAuth bearer token cache for the Reddit API.

One token is shared by every concurrent extraction in the process; the refresh
lock is created per running event loop. The cache is
an injectable object rather than module state so tests can swap in a fake clock
and call ``reset()`` between cases.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog

from threadsense.core.config import settings
from threadsense.core.errors import AuthError
from threadsense.core.metrics import api_calls_total

logger = structlog.get_logger(__name__)

_DEFAULT_TOKEN_TTL = 3600


@dataclass(frozen=True)
class Token:
    value: str
    expiry: float  # epoch seconds


class TokenCache:
    """Client-credentials token holder with eager invalidation on 401."""

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        user_agent: str | None = None,
        auth_url: str | None = None,
        safety_margin: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._client_id = client_id if client_id is not None else settings.REDDIT_CLIENT_ID
        self._client_secret = (
            client_secret if client_secret is not None else settings.REDDIT_CLIENT_SECRET
        )
        self._user_agent = user_agent or settings.REDDIT_USER_AGENT
        self._auth_url = auth_url or settings.REDDIT_AUTH_URL
        self._safety_margin = (
            safety_margin if safety_margin is not None else settings.REDDIT_TOKEN_SAFETY_MARGIN
        )
        self._clock = clock
        self._token: Token | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    @property
    def token(self) -> Token | None:
        return self._token

    def _refresh_lock(self) -> asyncio.Lock:
        # An asyncio.Lock binds to the first loop that waits on it; keep one per loop
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _is_valid(self, token: Token | None) -> bool:
        return token is not None and bool(token.value) and self._clock() < token.expiry

    async def get_token(self, client: httpx.AsyncClient | None = None) -> str:
        """Return the cached token, exchanging credentials when it is missing or expired.

        Double-checked locking keeps concurrent callers from all hitting the auth
        endpoint at once; the token is only ever replaced by a complete value.
        """
        cached = self._token
        if self._is_valid(cached):
            logger.debug("token_cache.hit")
            return cached.value  # type: ignore[union-attr]

        async with self._refresh_lock():
            cached = self._token
            if self._is_valid(cached):
                return cached.value  # type: ignore[union-attr]
            self._token = await self._exchange(client)
            return self._token.value

    async def _exchange(self, client: httpx.AsyncClient | None) -> Token:
        if not self._client_id or not self._client_secret:
            raise AuthError("Reddit API credentials not configured")

        logger.info("token_cache.refresh")
        owns_client = client is None
        http = client or httpx.AsyncClient(timeout=settings.REDDIT_TIMEOUT_SECONDS)
        try:
            response = await http.post(
                self._auth_url,
                data={"grant_type": "client_credentials"},
                auth=(self._client_id, self._client_secret),
                headers={"User-Agent": self._user_agent},
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            api_calls_total.labels(api_name="reddit_auth", status="error").inc()
            logger.error(
                "token_cache.exchange_failed",
                status_code=exc.response.status_code,
                response_preview=str(exc.response.text or "")[:200],
            )
            raise AuthError("Failed to authenticate with Reddit API") from exc
        except Exception as exc:
            api_calls_total.labels(api_name="reddit_auth", status="error").inc()
            logger.error(
                "token_cache.exchange_failed",
                error_type=type(exc).__name__,
                error=str(exc)[:200],
            )
            raise AuthError("Failed to authenticate with Reddit API") from exc
        finally:
            if owns_client:
                await http.aclose()

        value = payload.get("access_token") if isinstance(payload, dict) else None
        if not value:
            api_calls_total.labels(api_name="reddit_auth", status="error").inc()
            logger.error("token_cache.no_token_in_response")
            raise AuthError("Failed to get Reddit access token")

        try:
            ttl = int(payload.get("expires_in") or _DEFAULT_TOKEN_TTL)
        except (TypeError, ValueError):
            ttl = _DEFAULT_TOKEN_TTL
        api_calls_total.labels(api_name="reddit_auth", status="success").inc()
        return Token(value=str(value), expiry=self._clock() + ttl - self._safety_margin)

    def invalidate(self) -> None:
        """Drop the token so the next ``get_token`` forces a refresh (called on 401)."""
        if self._token is not None:
            logger.info("token_cache.invalidated")
        self._token = None

    def reset(self) -> None:
        self._token = None
        self._lock = None
        self._lock_loop = None


reddit_token_cache = TokenCache()
