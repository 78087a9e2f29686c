"""Access token acquisition and caching."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx

from tuya_proxy.auth import Signer, serialize_body
from tuya_proxy.config import TuyaConfig
from tuya_proxy.errors import AuthError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/v1.0/token?grant_type=1"

# Cached tokens are treated as expired this long before the server says so.
EXPIRY_MARGIN_MS = 60_000


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class TokenCache:
    """Holder for the current bearer token.

    Shared by every :class:`TokenManager` it is passed to. Writes are
    last-write-wins; concurrent refreshes only cost a redundant fetch.
    """

    token: str | None = None
    expires_at_ms: int = 0

    def get(self, now_ms: int) -> str | None:
        if self.token and now_ms < self.expires_at_ms:
            return self.token
        return None

    def store(self, token: str, expires_at_ms: int) -> None:
        self.token = token
        self.expires_at_ms = expires_at_ms

    def clear(self) -> None:
        self.token = None
        self.expires_at_ms = 0


class TokenManager:
    """Obtains a Tuya access token and keeps it cached until shortly before expiry."""

    def __init__(
        self,
        config: TuyaConfig,
        http: httpx.AsyncClient,
        *,
        cache: TokenCache | None = None,
        signer: Signer | None = None,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.config = config
        self.cache = cache if cache is not None else TokenCache()
        self._http = http
        self._signer = signer or Signer.from_config(config)
        self._clock = clock
        self._lock = asyncio.Lock() if config.token_single_flight else None

    async def get_access_token(self) -> str:
        """Return a valid access token, fetching a new one when the cache is stale."""
        token = self.cache.get(self._clock())
        if token is not None:
            logger.debug("Using cached Tuya token")
            return token

        if self._lock is None:
            return await self._fetch_token()

        async with self._lock:
            # Another task may have refreshed while we waited.
            token = self.cache.get(self._clock())
            if token is not None:
                return token
            return await self._fetch_token()

    async def _fetch_token(self) -> str:
        now = self._clock()
        if self.config.uses_password_grant:
            method = "POST"
            body = serialize_body(
                {"username": self.config.username, "password": self.config.password}
            )
        else:
            method = "GET"
            body = ""

        headers = self._signer.headers(method, TOKEN_PATH, body=body, t=str(now))
        if body:
            headers["Content-Type"] = "application/json"

        logger.info("Fetching new Tuya access token: %s %s", method, TOKEN_PATH)
        try:
            resp = await self._http.request(
                method, TOKEN_PATH, headers=headers, content=body or None
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Unable to reach Tuya token endpoint: {exc}") from exc

        logger.info("Token endpoint responded with status %d", resp.status_code)
        if not resp.is_success:
            logger.error("Tuya token fetch error: %s", resp.text)
            raise AuthError(
                f"Unable to fetch Tuya token: {resp.status_code}",
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            # Covers JSONDecodeError and undecodable bytes.
            raise AuthError(
                "Tuya token endpoint returned a non-JSON body",
                status_code=resp.status_code,
            ) from exc

        if not isinstance(data, dict) or not data.get("success", False):
            code = data.get("code") if isinstance(data, dict) else None
            msg = data.get("msg", "unknown error") if isinstance(data, dict) else "unknown error"
            raise AuthError(
                f"Tuya token request rejected ({code}): {msg}",
                status_code=resp.status_code,
                code=code,
                msg=msg,
            )

        result = data.get("result")
        if not isinstance(result, dict):
            result = {}
        access_token = result.get("access_token")
        if not access_token:
            raise AuthError(
                "Tuya token response did not contain an access_token",
                status_code=resp.status_code,
            )

        if result.get("expire_time") is None:
            raise AuthError(
                "Tuya token response did not contain an expire_time",
                status_code=resp.status_code,
            )
        try:
            expire_time = int(result["expire_time"])
        except (TypeError, ValueError) as exc:
            raise AuthError(
                "Tuya token response has an invalid expire_time",
                status_code=resp.status_code,
            ) from exc

        self.cache.store(access_token, now + expire_time * 1000 - EXPIRY_MARGIN_MS)
        logger.info("New Tuya token acquired; expires in %d s", expire_time)
        return access_token
