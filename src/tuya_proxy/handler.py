"""Proxy entry point: validate the caller's request, sign it and forward it to Tuya."""

from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from tuya_proxy.auth import Signer, compact_json, serialize_body, timestamp_ms
from tuya_proxy.config import TuyaConfig, get_config
from tuya_proxy.errors import BadRequest, ConfigError, UpstreamError
from tuya_proxy.tokens import TokenCache, TokenManager

logger = logging.getLogger(__name__)

HEALTH_MESSAGE = "Tuya proxy is running. POST {path, method, body} to call the Tuya API."


class ProxyRequest(BaseModel):
    """The caller's description of one Tuya API call."""

    path: str = Field(min_length=1)
    method: str = "GET"
    body: Any = None

    @field_validator("path")
    @classmethod
    def _absolute_path(cls, value: str) -> str:
        # Only paths on the configured host; never a full URL.
        if not value.startswith("/") or value.startswith("//"):
            raise ValueError("'path' must be an API path starting with '/'")
        return value

    @field_validator("method")
    @classmethod
    def _upper_method(cls, value: str) -> str:
        return (value or "GET").upper()


@dataclass
class ProxyResponse:
    status_code: int
    body: str

    @classmethod
    def with_json(cls, status_code: int, payload: Any) -> ProxyResponse:
        return cls(status_code, compact_json(payload))

    @classmethod
    def error(cls, status_code: int, message: str) -> ProxyResponse:
        return cls.with_json(status_code, {"error": message})

    def to_dict(self) -> dict[str, Any]:
        return {"statusCode": self.status_code, "body": self.body}


def parse_request(raw: str | bytes | None) -> ProxyRequest:
    """Decode and validate an inbound payload, raising :class:`BadRequest`."""
    try:
        payload = json.loads(raw) if raw else None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise BadRequest("Invalid JSON body") from exc

    if not isinstance(payload, dict):
        raise BadRequest("Invalid JSON body")
    if not payload.get("path"):
        raise BadRequest("Missing 'path' parameter")

    try:
        return ProxyRequest.model_validate(payload)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise BadRequest(f"Invalid '{field}': {first['msg']}") from exc


def _redact(headers: Mapping[str, str]) -> dict[str, str]:
    return {k: ("***" if k == "access_token" else v) for k, v in headers.items()}


class ProxyHandler:
    """Forwards caller requests to the Tuya API with authentication attached.

    The handler never raises: every outcome, including failures, becomes a
    :class:`ProxyResponse`.
    """

    def __init__(
        self,
        config: TuyaConfig,
        http: httpx.AsyncClient,
        *,
        tokens: TokenManager | None = None,
        cache: TokenCache | None = None,
        signer: Signer | None = None,
        clock: Callable[[], str] = timestamp_ms,
    ) -> None:
        self.config = config
        self.signer = signer or Signer.from_config(config)
        self.tokens = tokens or TokenManager(config, http, cache=cache, signer=self.signer)
        self._http = http
        self._clock = clock

    async def handle(self, event: Mapping[str, Any]) -> ProxyResponse:
        """Process one inbound invocation event.

        *event* follows the serverless function shape: ``body`` (string or raw bytes),
        ``httpMethod`` and optionally ``isBase64Encoded``.
        """
        logger.debug("Incoming event: %s", event.get("httpMethod"))
        raw = event.get("body")
        if not raw and str(event.get("httpMethod", "")).upper() == "GET":
            return ProxyResponse.with_json(200, {"ok": True, "message": HEALTH_MESSAGE})

        try:
            if raw and event.get("isBase64Encoded"):
                try:
                    raw = base64.b64decode(raw, validate=True)
                except (binascii.Error, ValueError) as exc:
                    raise BadRequest("Invalid base64 body") from exc
            request = parse_request(raw)
        except BadRequest as exc:
            logger.error("Rejected proxy request: %s", exc)
            return ProxyResponse.error(400, str(exc))

        logger.info("Calling Tuya API: [%s] %s", request.method, request.path)
        try:
            return await self.forward(request)
        except Exception as exc:
            logger.exception("Error in Tuya proxy handler")
            return ProxyResponse.error(502, str(exc))

    async def forward(self, request: ProxyRequest) -> ProxyResponse:
        """Sign *request*, send it upstream and translate the response."""
        access_token = await self.tokens.get_access_token()

        body = serialize_body(request.body)
        headers = self.signer.headers(
            request.method,
            request.path,
            body=body,
            access_token=access_token,
            t=self._clock(),
        )
        headers["Content-Type"] = "application/json"

        logger.info("Dispatching request to Tuya: %s%s", self.config.base_url, request.path)
        logger.debug("Request headers: %s", _redact(headers))
        if body:
            logger.debug("Request body: %s", body)

        try:
            resp = await self._http.request(
                request.method,
                request.path,
                headers=headers,
                content=body or None,
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Tuya request failed: {exc}") from exc

        logger.info("Tuya response status: %d", resp.status_code)
        text = resp.text
        logger.debug("Tuya raw response body: %s", text)

        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Response is not valid JSON, returning raw text")
            return ProxyResponse(resp.status_code, text)
        return ProxyResponse.with_json(resp.status_code, payload)


# ---------------------------------------------------------------------------
# Serverless entry point
# ---------------------------------------------------------------------------

# Survives across invocations only while the hosting process stays warm.
_process_cache = TokenCache()


async def invoke(config: TuyaConfig, event: Mapping[str, Any]) -> dict[str, Any]:
    """Handle one event with a fresh HTTP client and the process token cache."""
    async with httpx.AsyncClient(
        base_url=config.base_url, timeout=config.request_timeout
    ) as http:
        handler = ProxyHandler(config, http, cache=_process_cache)
        response = await handler.handle(event)
    return response.to_dict()


def lambda_handler(event: Mapping[str, Any], context: object = None) -> dict[str, Any]:
    """Synchronous function-runtime entry point returning ``{statusCode, body}``."""
    try:
        config = get_config()
    except ConfigError as exc:
        logger.error("%s", exc)
        return ProxyResponse.error(500, "Proxy is not configured").to_dict()
    return asyncio.run(invoke(config, event))
