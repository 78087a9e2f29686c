"""Tuya Proxy - request-signing proxy for the Tuya Cloud API."""

from tuya_proxy.auth import Signer
from tuya_proxy.config import TuyaConfig, load_config
from tuya_proxy.errors import AuthError, BadRequest, ConfigError, UpstreamError
from tuya_proxy.handler import ProxyHandler, ProxyResponse, lambda_handler
from tuya_proxy.server import create_app
from tuya_proxy.tokens import TokenCache, TokenManager

__all__ = [
    "AuthError",
    "BadRequest",
    "ConfigError",
    "ProxyHandler",
    "ProxyResponse",
    "Signer",
    "TokenCache",
    "TokenManager",
    "TuyaConfig",
    "UpstreamError",
    "create_app",
    "lambda_handler",
    "load_config",
]
