from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import httpx
import pytest

from fakes import MemoryTokenStore
from zoho_connector.clients.zoho_auth import AuthError, OAuthTokenExchangeError
from zoho_connector.core.config import TokenSettings
from zoho_connector.models import TokenRecord
from zoho_connector.services.token_manager import TokenManager


def _record(*, expires_in: int, access_token: str = "initial-access") -> TokenRecord:
    now = datetime.now(timezone.utc)
    return TokenRecord(
        access_token=access_token,
        refresh_token="refresh-token",
        issued_at=now - timedelta(hours=1),
        expires_at=now + timedelta(seconds=expires_in),
        duration_seconds=3600,
    )


class DummyOAuthClient:
    def __init__(self, *, refresh_error: Exception | None = None, exchange_error: Exception | None = None) -> None:
        self.refresh_error = refresh_error
        self.exchange_error = exchange_error
        self.refresh_calls: list[str] = []
        self.exchange_calls: list[str] = []

    def build_authorization_url(self, state: str | None = None) -> str:
        return f"https://accounts.zoho.eu/oauth/v2/auth?state={state}"

    async def refresh_token(self, refresh_token: str) -> dict:
        self.refresh_calls.append(refresh_token)
        await asyncio.sleep(0.01)
        if self.refresh_error:
            raise self.refresh_error
        return {"access_token": f"refreshed-{len(self.refresh_calls)}", "expires_in": 3600}

    async def exchange_authorization_code(self, code: str) -> dict:
        self.exchange_calls.append(code)
        if self.exchange_error:
            raise self.exchange_error
        return {"access_token": "first-access", "refresh_token": "first-refresh", "expires_in": 3600}


def _manager(store: MemoryTokenStore, oauth: DummyOAuthClient, **settings) -> TokenManager:
    return TokenManager(store, oauth, environment="stage", settings=TokenSettings(**settings))


@pytest.mark.asyncio
async def test_valid_token_is_served_without_network_calls() -> None:
    store = MemoryTokenStore(_record(expires_in=3000))
    oauth = DummyOAuthClient()
    manager = _manager(store, oauth)

    first = await manager.get_auth_header()
    second = await manager.get_auth_header()

    assert first == second == {"Authorization": "Zoho-oauthtoken initial-access", "environment": "stage"}
    assert oauth.refresh_calls == []
    assert store.saves == []


@pytest.mark.asyncio
async def test_token_inside_refresh_buffer_is_refreshed() -> None:
    store = MemoryTokenStore(_record(expires_in=30))
    oauth = DummyOAuthClient()
    manager = _manager(store, oauth, refresh_buffer_seconds=60)

    header = await manager.get_auth_header()

    assert header["Authorization"] == "Zoho-oauthtoken refreshed-1"
    assert oauth.refresh_calls == ["refresh-token"]
    assert store.record is not None
    assert store.record.refresh_token == "refresh-token"


@pytest.mark.asyncio
async def test_concurrent_callers_trigger_a_single_refresh() -> None:
    store = MemoryTokenStore(_record(expires_in=-10))
    oauth = DummyOAuthClient()
    manager = _manager(store, oauth)

    headers = await asyncio.gather(*(manager.get_auth_header() for _ in range(10)))

    assert len(oauth.refresh_calls) == 1
    assert {header["Authorization"] for header in headers} == {"Zoho-oauthtoken refreshed-1"}
    assert len(store.saves) == 1


@pytest.mark.asyncio
async def test_concurrent_callers_share_a_failed_refresh() -> None:
    store = MemoryTokenStore(_record(expires_in=-10))
    oauth = DummyOAuthClient(refresh_error=httpx.ConnectError("offline"))
    manager = _manager(store, oauth, max_refresh_failures=3)

    results = await asyncio.gather(
        *(manager.get_auth_header() for _ in range(3)), return_exceptions=True
    )

    assert all(isinstance(result, AuthError) for result in results)
    assert len(oauth.refresh_calls) == 1
    assert store.record is not None
    assert store.clears == 0


@pytest.mark.asyncio
async def test_generate_first_token_stores_pair() -> None:
    store = MemoryTokenStore()
    oauth = DummyOAuthClient()
    manager = _manager(store, oauth)

    assert await manager.generate_first_token("consent-code") is True
    assert oauth.exchange_calls == ["consent-code"]
    assert store.record is not None
    assert store.record.access_token == "first-access"
    assert store.record.refresh_token == "first-refresh"
    assert await manager.is_ready() is True


@pytest.mark.asyncio
async def test_generate_first_token_failure_leaves_store_untouched() -> None:
    existing = _record(expires_in=3000)
    store = MemoryTokenStore(existing)
    oauth = DummyOAuthClient(
        exchange_error=OAuthTokenExchangeError("rejected", error_code="invalid_code")
    )
    manager = _manager(store, oauth)

    assert await manager.generate_first_token("bad-code") is False
    assert store.record is existing
    assert store.saves == []
    assert store.clears == 0


@pytest.mark.asyncio
async def test_invalid_code_on_empty_store_is_not_ready() -> None:
    store = MemoryTokenStore()
    oauth = DummyOAuthClient(
        exchange_error=OAuthTokenExchangeError("rejected", error_code="invalid_code")
    )
    manager = _manager(store, oauth)

    assert await manager.generate_first_token("invalid-code") is False
    assert store.record is None
    assert store.saves == []
    assert await manager.is_ready() is False


@pytest.mark.asyncio
async def test_missing_token_raises_auth_error() -> None:
    manager = _manager(MemoryTokenStore(), DummyOAuthClient())

    with pytest.raises(AuthError):
        await manager.get_auth_header()
    assert await manager.is_ready() is False


@pytest.mark.asyncio
async def test_invalid_grant_clears_stored_tokens() -> None:
    store = MemoryTokenStore(_record(expires_in=-10))
    oauth = DummyOAuthClient(
        refresh_error=OAuthTokenExchangeError("dead", error_code="invalid_grant")
    )
    manager = _manager(store, oauth)

    with pytest.raises(AuthError):
        await manager.get_auth_header()

    assert store.record is None
    assert store.clears == 1


@pytest.mark.asyncio
async def test_invalid_grant_kept_when_policy_disabled() -> None:
    store = MemoryTokenStore(_record(expires_in=-10))
    oauth = DummyOAuthClient(
        refresh_error=OAuthTokenExchangeError("dead", error_code="invalid_grant")
    )
    manager = _manager(store, oauth, clear_on_invalid_grant=False, max_refresh_failures=0)

    assert await manager.refresh() is None
    assert store.record is not None
    assert store.clears == 0


@pytest.mark.asyncio
async def test_transient_failures_clear_only_after_threshold() -> None:
    store = MemoryTokenStore(_record(expires_in=-10))
    oauth = DummyOAuthClient(refresh_error=httpx.ConnectError("offline"))
    manager = _manager(store, oauth, max_refresh_failures=3)

    assert await manager.refresh() is None
    assert await manager.refresh() is None
    assert store.record is not None

    assert await manager.refresh() is None
    assert store.record is None
    assert len(oauth.refresh_calls) == 3


@pytest.mark.asyncio
async def test_reset_drops_tokens() -> None:
    store = MemoryTokenStore(_record(expires_in=3000))
    manager = _manager(store, DummyOAuthClient())

    manager.reset()

    assert store.record is None
    assert await manager.is_ready() is False


@pytest.mark.asyncio
async def test_token_refreshed_by_another_manager_is_reused() -> None:
    store = MemoryTokenStore(_record(expires_in=-10))
    worker_oauth = DummyOAuthClient()
    api_oauth = DummyOAuthClient()
    worker_manager = _manager(store, worker_oauth)
    api_manager = _manager(store, api_oauth)

    await worker_manager.get_auth_header()
    header = await api_manager.get_auth_header()

    assert header["Authorization"] == "Zoho-oauthtoken refreshed-1"
    assert api_oauth.refresh_calls == []
