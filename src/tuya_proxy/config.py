"""Process configuration for the Tuya signing proxy."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings

from tuya_proxy.errors import ConfigError

_BASE_URLS: dict[str, str] = {
    "cn": "https://openapi.tuyacn.com",
    "us": "https://openapi.tuyaus.com",
    "us-e": "https://openapi-us-e.tuyaus.com",
    "eu": "https://openapi.tuyaeu.com",
    "eu-w": "https://openapi-weaz.tuyaeu.com",
    "in": "https://openapi.tuyain.com",
}

_ENV_PREFIX = "TUYA_"


class TuyaConfig(BaseSettings):
    """Credentials and proxy settings loaded from ``TUYA_*`` environment variables.

    Instances are frozen: the configuration is read once and shared by the
    token manager and the signer for the lifetime of the process.
    """

    model_config = {
        "env_prefix": _ENV_PREFIX,
        "env_file": ".env",
        "frozen": True,
        "extra": "ignore",
    }

    client_id: str
    secret: str
    api_host: str | None = None
    api_region: str = "us"

    # Optional password grant for the token endpoint.
    username: str | None = None
    password: str | None = None

    sign_scheme: Literal["canonical", "legacy"] = "canonical"
    sign_version: str = "2.0"
    # Guards refresh within one TokenManager. The serverless entry point builds a
    # manager per event, so it only has effect for the long-running server.
    token_single_flight: bool = False
    request_timeout: float = 30.0

    @model_validator(mode="after")
    def _check_consistency(self) -> TuyaConfig:
        if not self.client_id or not self.secret:
            raise ValueError("client_id and secret must not be empty")
        if bool(self.username) != bool(self.password):
            raise ValueError("username and password must be set together")
        if not self.api_host and self.api_region not in _BASE_URLS:
            raise ValueError(
                f"Unknown region '{self.api_region}'. Valid regions: {', '.join(_BASE_URLS)}"
            )
        return self

    @property
    def base_url(self) -> str:
        if self.api_host:
            host = self.api_host.rstrip("/")
            return host if "://" in host else f"https://{host}"
        return _BASE_URLS[self.api_region]

    @property
    def uses_password_grant(self) -> bool:
        return bool(self.username and self.password)


def load_config(**overrides: object) -> TuyaConfig:
    """Build a :class:`TuyaConfig`, raising :class:`ConfigError` when incomplete."""
    try:
        return TuyaConfig(**overrides)  # type: ignore[arg-type]
    except ValidationError as exc:
        problems = []
        for err in exc.errors():
            if err["type"] == "missing":
                field = ".".join(str(part) for part in err["loc"])
                problems.append(f"{_ENV_PREFIX}{field.upper()} is required")
            else:
                problems.append(err["msg"])
        raise ConfigError("Invalid proxy configuration: " + "; ".join(problems)) from exc


@lru_cache(maxsize=1)
def get_config() -> TuyaConfig:
    """Return the process-wide configuration, loading it on first use."""
    return load_config()
