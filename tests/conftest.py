"""Shared fixtures."""

import pytest

_TUYA_ENV = (
    "TUYA_CLIENT_ID",
    "TUYA_SECRET",
    "TUYA_API_HOST",
    "TUYA_API_REGION",
    "TUYA_USERNAME",
    "TUYA_PASSWORD",
    "TUYA_SIGN_SCHEME",
    "TUYA_SIGN_VERSION",
    "TUYA_TOKEN_SINGLE_FLIGHT",
    "TUYA_REQUEST_TIMEOUT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch, tmp_path):
    # Keep a developer's .env or shell variables out of the tests.
    monkeypatch.chdir(tmp_path)
    for name in _TUYA_ENV:
        monkeypatch.delenv(name, raising=False)
