"""
Zoho OAuth utilities.

These helpers build the consent URL, sign the OAuth state and talk to the
Zoho accounts token endpoint for both grant types the connector uses.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import time
from hashlib import sha256
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx

from zoho_connector.core.config import ZohoSettings

# Error codes meaning the grant itself is dead; retrying cannot help.
INVALID_GRANT_ERRORS = frozenset({"invalid_grant", "invalid_code"})


class AuthError(Exception):
    """Raised when no usable token exists and none can be obtained."""


class InvalidOAuthStateError(ValueError):
    """Raised when an OAuth state value was tampered with or is stale."""


class OAuthTokenExchangeError(Exception):
    """Raised when the token endpoint returns an error."""

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code

    @property
    def is_invalid_grant(self) -> bool:
        return self.error_code in INVALID_GRANT_ERRORS


class OAuthStateEncoder:
    """Encode and decode OAuth state values to guard against tampering."""

    def __init__(self, secret_key: str, *, ttl_seconds: int = 900) -> None:
        self._secret_key = secret_key.encode("utf-8")
        self._ttl_seconds = ttl_seconds

    def encode(self, payload: Dict[str, Any]) -> str:
        stamped = {**payload, "issued_at": int(time.time())}
        serialized = json.dumps(stamped, separators=(",", ":"), sort_keys=True)
        signature = hmac.new(self._secret_key, serialized.encode("utf-8"), sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized.encode("utf-8")).decode("utf-8")

    def decode(self, token: str) -> Dict[str, Any]:
        try:
            decoded = base64.urlsafe_b64decode(token.encode("utf-8"))
        except (binascii.Error, ValueError) as exc:
            raise InvalidOAuthStateError("Malformed OAuth state.") from exc
        signature, serialized = decoded[:32], decoded[32:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not hmac.compare_digest(signature, expected_signature):
            raise InvalidOAuthStateError("Invalid OAuth state signature.")
        try:
            payload = json.loads(serialized)
        except ValueError as exc:
            raise InvalidOAuthStateError("Malformed OAuth state.") from exc
        if time.time() - payload.get("issued_at", 0) > self._ttl_seconds:
            raise InvalidOAuthStateError("OAuth state has expired.")
        return payload


class ZohoOAuthClient:
    """Build Zoho authorization URLs and call the token endpoint."""

    def __init__(
        self,
        settings: ZohoSettings,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._transport = transport

    @property
    def token_url(self) -> str:
        return self._settings.token_url

    def build_authorization_url(self, state: str | None = None) -> str:
        """Construct the Zoho consent URL."""
        params = {
            "response_type": "code",
            "client_id": self._settings.client_id,
            "scope": ",".join(self._settings.scope),
            "redirect_uri": str(self._settings.redirect_uri),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{self._settings.base_account_url}/oauth/v2/auth?{urlencode(params)}"

    async def exchange_authorization_code(self, code: str) -> Dict[str, Any]:
        """Exchange an authorization code for the first token pair.

        Returns the raw token payload (``access_token``, ``refresh_token``,
        ``expires_in``).
        """
        payload = await self._post_token(
            {
                "grant_type": "authorization_code",
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "redirect_uri": str(self._settings.redirect_uri),
                "code": code,
                "prompt": "consent",
            }
        )
        if not payload.get("refresh_token"):
            raise OAuthTokenExchangeError("Zoho returned no refresh token for the authorization code.")
        return payload

    async def refresh_token(self, refresh_token: str) -> Dict[str, Any]:
        """Exchange a refresh token for a new access token.

        Zoho does not rotate refresh tokens, so the payload usually lacks one.
        """
        return await self._post_token(
            {
                "grant_type": "refresh_token",
                "client_id": self._settings.client_id,
                "client_secret": self._settings.client_secret,
                "refresh_token": refresh_token,
            }
        )

    async def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            response = await client.post(self.token_url, data=form)

        try:
            token_payload = response.json()
        except ValueError:
            token_payload = {}
        if not isinstance(token_payload, dict):
            token_payload = {}

        # Zoho reports grant errors with HTTP 200 and an "error" member.
        error_code = token_payload.get("error")
        if not response.is_success or error_code:
            raise OAuthTokenExchangeError(
                f"Zoho token endpoint rejected {form['grant_type']} grant "
                f"(HTTP {response.status_code}, error={error_code or 'unknown'}).",
                error_code=error_code,
                status_code=response.status_code,
            )

        if not token_payload.get("access_token") or not token_payload.get("expires_in"):
            raise OAuthTokenExchangeError("Incomplete token payload returned from Zoho.")

        return token_payload


__all__ = [
    "AuthError",
    "INVALID_GRANT_ERRORS",
    "InvalidOAuthStateError",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "ZohoOAuthClient",
]
