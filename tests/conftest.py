"""Pytest configuration shared across the suite."""

try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import pytest

from zoho_connector.core.config import ZohoSettings


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO-powered tests to run against asyncio backend only."""
    return "asyncio"


@pytest.fixture
def zoho_settings() -> ZohoSettings:
    return ZohoSettings(
        client_id="client",
        client_secret="secret",
        redirect_uri="https://example.com/callback",
        user="owner",
        app_name="inventory",
        account_domain="eu",
        environment="development",
    )
