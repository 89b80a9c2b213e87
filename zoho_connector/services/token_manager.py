"""
Ownership of the Zoho OAuth token lifecycle.

The manager is the only writer of the token store. It hands out request
headers, refreshes expired tokens and decides when a dead refresh token forces
the application back through the consent flow.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Optional

import httpx

from zoho_connector.clients.sqlite_store import TokenStore
from zoho_connector.clients.zoho_auth import (
    AuthError,
    OAuthTokenExchangeError,
    ZohoOAuthClient,
)
from zoho_connector.core.config import TokenSettings
from zoho_connector.models import TokenRecord
from zoho_connector.services.token_cipher import TokenDecryptionError

logger = logging.getLogger(__name__)

AUTH_SCHEME = "Zoho-oauthtoken"

_EXCHANGE_FAILURES = (OAuthTokenExchangeError, httpx.HTTPError, KeyError, ValueError)


class TokenManager:
    """Hands out valid Zoho headers, refreshing the stored token when needed."""

    def __init__(
        self,
        store: TokenStore,
        oauth_client: ZohoOAuthClient,
        *,
        environment: str = "",
        settings: Optional[TokenSettings] = None,
    ) -> None:
        settings = settings or TokenSettings()
        self._store = store
        self._oauth = oauth_client
        self._environment = environment
        self._buffer_seconds = settings.refresh_buffer_seconds
        self._clear_on_invalid_grant = settings.clear_on_invalid_grant
        self._max_refresh_failures = settings.max_refresh_failures
        self._refresh_lock = asyncio.Lock()
        self._consecutive_failures = 0
        # Bumped when a refresh attempt completes; waiters compare it to skip a repeat.
        self._refresh_generation = 0

    def build_authorization_url(self, state: str | None = None) -> str:
        return self._oauth.build_authorization_url(state=state)

    async def get_auth_header(self) -> Dict[str, str]:
        """Return the headers every authenticated Zoho call must carry.

        Raises:
            AuthError: if no token is stored or the expired token cannot be
                refreshed.
        """
        token = await self._valid_access_token()
        return {
            "Authorization": f"{AUTH_SCHEME} {token}",
            "environment": self._environment,
        }

    async def generate_first_token(self, authorization_code: str) -> bool:
        """Exchange a consent code for the first token pair.

        The store is left untouched when the exchange fails.
        """
        try:
            payload = await self._oauth.exchange_authorization_code(authorization_code)
            record = TokenRecord.from_token_payload(payload, now=self._now())
        except _EXCHANGE_FAILURES as exc:
            logger.error("Zoho authorization code exchange failed: %s", exc)
            return False

        async with self._refresh_lock:
            self._store.save(record)
            self._consecutive_failures = 0
        logger.info("Stored first Zoho token pair", extra={"expires_at": record.expires_at.isoformat()})
        return await self.is_ready()

    async def refresh(self) -> Optional[str]:
        """Force a refresh of the stored token and return the new access token.

        Returns ``None`` on failure. The store is only cleared when the refresh
        failure policy says the refresh token is dead.
        """
        async with self._refresh_lock:
            record = self._load()
            if record is None:
                logger.warning("Cannot refresh Zoho token: no token stored")
                return None
            return await self._refresh_locked(record)

    async def is_ready(self) -> bool:
        """Whether a valid header can be produced; may refresh as a side effect."""
        try:
            await self._valid_access_token()
        except AuthError as exc:
            logger.info("Zoho connector is not ready: %s", exc)
            return False
        return True

    def reset(self) -> None:
        """Drop the stored token, forcing a new authorization-code flow."""
        self._store.clear()
        self._consecutive_failures = 0
        logger.warning("Zoho tokens reset; re-authorization required")

    async def _valid_access_token(self) -> str:
        generation = self._refresh_generation
        record = self._require_record()
        if not self._is_expired(record):
            return record.access_token

        async with self._refresh_lock:
            # Another caller may have refreshed while this one waited.
            record = self._require_record()
            if not self._is_expired(record):
                return record.access_token
            if self._refresh_generation != generation:
                # The refresh this caller waited on failed; share its outcome.
                raise AuthError("Zoho token expired and could not be refreshed.")
            token = await self._refresh_locked(record)

        if token is None:
            raise AuthError("Zoho token expired and could not be refreshed.")
        return token

    async def _refresh_locked(self, record: TokenRecord) -> Optional[str]:
        try:
            payload = await self._oauth.refresh_token(record.refresh_token)
            refreshed = TokenRecord.from_token_payload(
                payload,
                previous_refresh_token=record.refresh_token,
                now=self._now(),
            )
        except _EXCHANGE_FAILURES as exc:
            self._register_refresh_failure(exc)
            return None
        finally:
            self._refresh_generation += 1

        self._store.save(refreshed)
        self._consecutive_failures = 0
        logger.info(
            "Refreshed Zoho access token",
            extra={"expires_at": refreshed.expires_at.isoformat()},
        )
        return refreshed.access_token

    def _register_refresh_failure(self, exc: Exception) -> None:
        self._consecutive_failures += 1
        logger.error(
            "Zoho token refresh failed (%s consecutive): %s",
            self._consecutive_failures,
            exc,
        )

        invalid_grant = isinstance(exc, OAuthTokenExchangeError) and exc.is_invalid_grant
        if invalid_grant and self._clear_on_invalid_grant:
            logger.warning("Zoho rejected the refresh token; clearing stored tokens")
            self.reset()
        elif self._max_refresh_failures and self._consecutive_failures >= self._max_refresh_failures:
            logger.warning(
                "Giving up on Zoho refresh token after %s failures; clearing stored tokens",
                self._consecutive_failures,
            )
            self.reset()

    def _require_record(self) -> TokenRecord:
        record = self._load()
        if record is None:
            raise AuthError("No Zoho token stored; complete the authorization flow first.")
        return record

    def _load(self) -> Optional[TokenRecord]:
        try:
            return self._store.load()
        except TokenDecryptionError as exc:
            raise AuthError(str(exc)) from exc

    def _is_expired(self, record: TokenRecord) -> bool:
        return record.is_expired(now=self._now(), buffer_seconds=self._buffer_seconds)

    @staticmethod
    def _now() -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["AUTH_SCHEME", "TokenManager"]
