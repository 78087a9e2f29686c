"""FastAPI front end for the signing proxy.

Translates each HTTP request into a function-style event for
:class:`ProxyHandler` so the proxy can run as a regular web service as well
as behind a serverless trigger.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import httpx
from fastapi import FastAPI, Request, Response

from tuya_proxy.config import TuyaConfig, get_config
from tuya_proxy.handler import ProxyHandler
from tuya_proxy.tokens import TokenCache

logger = logging.getLogger(__name__)


def create_app(
    config: TuyaConfig | None = None,
    *,
    _test_state: dict[str, Any] | None = None,
) -> FastAPI:
    """Build and return a configured :class:`FastAPI` application.

    The private ``_test_state`` parameter is used by tests to inject a
    pre-built ``handler`` so that the lifespan can be skipped.
    """

    state: dict[str, Any] = dict(_test_state) if _test_state else {}

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        if _test_state:
            yield
            return

        # -- startup ---------------------------------------------------------
        cfg = config or get_config()
        http = httpx.AsyncClient(base_url=cfg.base_url, timeout=cfg.request_timeout)
        state["handler"] = ProxyHandler(cfg, http, cache=TokenCache())
        logger.info("Tuya proxy ready for %s", cfg.base_url)

        yield

        # -- shutdown --------------------------------------------------------
        await http.aclose()
        logger.info("Server resources released")

    app = FastAPI(title="Tuya Signing Proxy", lifespan=lifespan)

    def _handler() -> ProxyHandler:
        return state["handler"]

    async def _proxy(request: Request) -> Response:
        raw = await request.body()
        event = {
            "httpMethod": request.method,
            "body": raw or None,
        }
        result = await _handler().handle(event)
        return Response(
            content=result.body,
            status_code=result.status_code,
            media_type="application/json",
        )

    for route in ("/", "/proxy"):
        app.add_api_route(route, _proxy, methods=["GET", "POST"], include_in_schema=False)

    return app
