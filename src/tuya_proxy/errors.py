"""Exception hierarchy for the Tuya signing proxy."""

from __future__ import annotations


class TuyaProxyError(Exception):
    """Base class for all proxy errors."""


class ConfigError(TuyaProxyError):
    """Raised when required process configuration is missing or invalid."""


class BadRequest(TuyaProxyError):
    """Raised when the caller's request is malformed or incomplete."""


class UpstreamError(TuyaProxyError):
    """Raised when a call to the Tuya API fails.

    ``status_code`` is the upstream HTTP status when one was received, and
    ``code``/``msg`` carry Tuya's own error fields when the payload had them.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: int | None = None,
        msg: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.msg = msg
        super().__init__(message)


class AuthError(UpstreamError):
    """Raised when an access token cannot be obtained from the token endpoint."""
