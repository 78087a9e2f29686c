"""HMAC-SHA256 request signing for the Tuya Cloud API.

Two schemes are supported:

``canonical``
    ``client_id + access_token + t + nonce + stringToSign`` where
    ``stringToSign`` is ``METHOD\\nsha256(body)\\n\\npath``.

``legacy``
    Flat concatenation ``client_id + access_token + nonce + t + METHOD + path + body``.

Both produce an uppercase hex HMAC-SHA256 keyed by the project secret. The
token request is signed the same way with an empty access token.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from tuya_proxy.config import TuyaConfig

logger = logging.getLogger(__name__)

SIGN_METHOD = "HMAC-SHA256"


def _sha256(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def _hmac_sha256(key: str, msg: str) -> str:
    return hmac.new(key.encode(), msg.encode(), hashlib.sha256).hexdigest().upper()


def timestamp_ms() -> str:
    """Current epoch time in milliseconds, as sent in the ``t`` header."""
    return str(int(time.time() * 1000))


def compact_json(value: Any) -> str:
    """Compact JSON with insertion order preserved and non-ASCII left as is."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def serialize_body(body: Any) -> str:
    """Serialize *body* exactly as it is hashed and sent upstream.

    ``None`` means no body and serializes to the empty string.
    """
    if body is None:
        return ""
    return compact_json(body)


def content_hash(body: str) -> str:
    return _sha256(body)


def string_to_sign(method: str, path: str, body: str = "") -> str:
    # The canonical headers section is always empty.
    return "\n".join([method.upper(), content_hash(body), "", path])


@dataclass(frozen=True)
class Signer:
    """Computes request signatures for one set of client credentials."""

    client_id: str
    secret: str
    scheme: str = "canonical"
    sign_version: str = "2.0"

    @classmethod
    def from_config(cls, config: TuyaConfig) -> Signer:
        return cls(
            client_id=config.client_id,
            secret=config.secret,
            scheme=config.sign_scheme,
            sign_version=config.sign_version,
        )

    def sign(
        self,
        method: str,
        path: str,
        body: str,
        t: str,
        access_token: str = "",
        *,
        nonce: str = "",
    ) -> str:
        """Return the uppercase hex signature for a request.

        *body* is the already-serialized body (see :func:`serialize_body`);
        pass an empty *access_token* when signing the token request.
        """
        if self.scheme == "legacy":
            sign_str = self.client_id + access_token + nonce + t + method.upper() + path + body
        elif self.scheme == "canonical":
            canonical = string_to_sign(method, path, body)
            sign_str = self.client_id + access_token + t + nonce + canonical
        else:
            raise ValueError(f"Unknown signing scheme '{self.scheme}'")

        signature = _hmac_sha256(self.secret, sign_str)
        logger.debug("String to sign (%s): %r", self.scheme, sign_str)
        logger.debug("Generated %s sign: %s", SIGN_METHOD, signature)
        return signature

    def headers(
        self,
        method: str,
        path: str,
        *,
        body: str = "",
        access_token: str = "",
        t: str | None = None,
        nonce: str | None = None,
    ) -> dict[str, str]:
        """Build the signed headers required for a Tuya Cloud API request.

        The legacy scheme always carries a nonce (the timestamp when none is
        given); the canonical scheme only sends one when supplied.
        """
        t = t or timestamp_ms()
        if nonce is None:
            nonce = t if self.scheme == "legacy" else ""

        signature = self.sign(method, path, body, t, access_token, nonce=nonce)
        return {
            "client_id": self.client_id,
            "sign": signature,
            "t": t,
            "sign_method": SIGN_METHOD,
            "sign_version": self.sign_version,
            **({"nonce": nonce} if nonce else {}),
            **({"access_token": access_token} if access_token else {}),
        }
