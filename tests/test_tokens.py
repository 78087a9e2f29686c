"""Tests for access token acquisition and caching."""

import asyncio
import json

import httpx
import pytest
import pytest_httpx

from tuya_proxy.auth import Signer
from tuya_proxy.config import TuyaConfig
from tuya_proxy.errors import AuthError, UpstreamError
from tuya_proxy.tokens import TOKEN_PATH, TokenCache, TokenManager

BASE_URL = "https://openapi.example.com"
TOKEN_URL = f"{BASE_URL}{TOKEN_PATH}"
T0 = 1_700_000_000_000


def _config(**kwargs) -> TuyaConfig:
    return TuyaConfig(
        client_id="test_id",
        secret="test_secret",
        api_host="openapi.example.com",
        **kwargs,
    )


def _token_response(access_token: str = "tok_abc", expire_time: int = 7200):
    return {
        "success": True,
        "result": {
            "access_token": access_token,
            "refresh_token": "ref_xyz",
            "expire_time": expire_time,
            "uid": "u123",
        },
    }


class FakeClock:
    def __init__(self, now: int = T0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now


class TestTokenCache:
    def test_empty_cache_has_no_token(self):
        assert TokenCache().get(T0) is None

    def test_token_valid_until_expiry(self):
        cache = TokenCache()
        cache.store("tok", T0 + 1000)
        assert cache.get(T0 + 999) == "tok"
        assert cache.get(T0 + 1000) is None

    def test_clear(self):
        cache = TokenCache(token="tok", expires_at_ms=T0 + 1000)
        cache.clear()
        assert cache.get(T0) is None


class TestTokenManager:
    @pytest.mark.asyncio
    async def test_fetch_token_signed_without_access_token(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ):
        httpx_mock.add_response(method="GET", url=TOKEN_URL, json=_token_response())
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            token = await manager.get_access_token()

        assert token == "tok_abc"
        request = httpx_mock.get_requests()[0]
        assert request.headers["client_id"] == "test_id"
        assert request.headers["t"] == str(T0)
        assert request.headers["sign_method"] == "HMAC-SHA256"
        assert "access_token" not in request.headers
        expected = Signer(client_id="test_id", secret="test_secret").sign(
            "GET", TOKEN_PATH, "", str(T0)
        )
        assert request.headers["sign"] == expected

    @pytest.mark.asyncio
    async def test_cache_expiry_uses_safety_margin(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ):
        expire = 7200
        httpx_mock.add_response(url=TOKEN_URL, json=_token_response("tok_1", expire))
        httpx_mock.add_response(url=TOKEN_URL, json=_token_response("tok_2", expire))
        clock = FakeClock()
        cache = TokenCache()
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, cache=cache, clock=clock)
            assert await manager.get_access_token() == "tok_1"
            assert cache.expires_at_ms == T0 + expire * 1000 - 60_000

            clock.now = T0 + expire * 1000 - 61_000
            assert await manager.get_access_token() == "tok_1"
            assert len(httpx_mock.get_requests()) == 1

            clock.now = T0 + expire * 1000 - 59_000
            assert await manager.get_access_token() == "tok_2"
            assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_injected_cache_skips_network(self, httpx_mock: pytest_httpx.HTTPXMock):
        cache = TokenCache(token="cached", expires_at_ms=T0 + 10_000)
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, cache=cache, clock=FakeClock())
            assert await manager.get_access_token() == "cached"
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_http_401_raises_auth_error(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(status_code=401, json={"success": False, "msg": "denied"})
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(AuthError, match="401") as excinfo:
                await manager.get_access_token()
        assert excinfo.value.status_code == 401
        assert manager.cache.token is None

    @pytest.mark.asyncio
    async def test_auth_error_is_upstream_error(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(status_code=500, text="oops")
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(UpstreamError):
                await manager.get_access_token()

    @pytest.mark.asyncio
    async def test_non_json_body_raises(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(text="<html>gateway</html>")
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(AuthError, match="non-JSON"):
                await manager.get_access_token()

    @pytest.mark.asyncio
    async def test_success_false_raises(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(
            json={"success": False, "code": 1004, "msg": "sign invalid"}
        )
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(AuthError, match="sign invalid") as excinfo:
                await manager.get_access_token()
        assert excinfo.value.code == 1004

    @pytest.mark.asyncio
    async def test_missing_access_token_raises(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(json={"success": True, "result": {"expire_time": 7200}})
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(AuthError, match="access_token"):
                await manager.get_access_token()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "result",
        [
            {"access_token": "t"},
            {"access_token": "t", "expire_time": None},
            {"access_token": "t", "expire_time": "soon"},
            {"access_token": "t", "expire_time": [7200]},
        ],
    )
    async def test_missing_or_invalid_expire_time_raises(
        self, httpx_mock: pytest_httpx.HTTPXMock, result
    ):
        httpx_mock.add_response(json={"success": True, "result": result})
        cache = TokenCache()
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, cache=cache, clock=FakeClock())
            with pytest.raises(AuthError, match="expire_time"):
                await manager.get_access_token()
        assert cache.token is None

    @pytest.mark.asyncio
    async def test_numeric_string_expire_time_accepted(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ):
        httpx_mock.add_response(
            json={"success": True, "result": {"access_token": "t", "expire_time": "7200"}}
        )
        cache = TokenCache()
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, cache=cache, clock=FakeClock())
            assert await manager.get_access_token() == "t"
        assert cache.expires_at_ms == T0 + 7200 * 1000 - 60_000

    @pytest.mark.asyncio
    async def test_undecodable_body_raises(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(content=b"\xff\xfe\xfa garbage")
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(AuthError, match="non-JSON"):
                await manager.get_access_token()

    @pytest.mark.asyncio
    async def test_network_failure_raises(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_exception(httpx.ConnectError("connection refused"))
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(_config(), http, clock=FakeClock())
            with pytest.raises(AuthError, match="connection refused"):
                await manager.get_access_token()

    @pytest.mark.asyncio
    async def test_password_grant_posts_credentials(
        self, httpx_mock: pytest_httpx.HTTPXMock
    ):
        httpx_mock.add_response(method="POST", url=TOKEN_URL, json=_token_response())
        config = _config(username="me@example.com", password="hunter2")
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(config, http, clock=FakeClock())
            assert await manager.get_access_token() == "tok_abc"

        request = httpx_mock.get_requests()[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {
            "username": "me@example.com",
            "password": "hunter2",
        }
        expected = Signer(client_id="test_id", secret="test_secret").sign(
            "POST", TOKEN_PATH, request.content.decode(), str(T0)
        )
        assert request.headers["sign"] == expected

    @pytest.mark.asyncio
    async def test_single_flight_fetches_once(self, httpx_mock: pytest_httpx.HTTPXMock):
        httpx_mock.add_response(url=TOKEN_URL, json=_token_response())
        async with httpx.AsyncClient(base_url=BASE_URL) as http:
            manager = TokenManager(
                _config(token_single_flight=True), http, clock=FakeClock()
            )
            tokens = await asyncio.gather(
                *(manager.get_access_token() for _ in range(5))
            )
        assert tokens == ["tok_abc"] * 5
        assert len(httpx_mock.get_requests()) == 1
