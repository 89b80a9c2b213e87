"""
Domain model for the persisted OAuth token pair.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional

from pydantic import BaseModel, Field


class TokenRecord(BaseModel):
    """The single authoritative Zoho token pair and its validity window."""

    access_token: str
    refresh_token: str
    issued_at: datetime
    expires_at: datetime
    duration_seconds: int = Field(..., ge=0)

    @classmethod
    def from_token_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        previous_refresh_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "TokenRecord":
        """Build a record from a token endpoint response.

        Refresh responses omit ``refresh_token``; the previous one is reused.
        """
        issued_at = now or datetime.now(timezone.utc)
        duration = int(payload["expires_in"])
        refresh_token = payload.get("refresh_token") or previous_refresh_token
        if not refresh_token:
            raise ValueError("Token payload carries no refresh token.")
        return cls(
            access_token=payload["access_token"],
            refresh_token=refresh_token,
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=duration),
            duration_seconds=duration,
        )

    def is_expired(self, *, now: Optional[datetime] = None, buffer_seconds: int = 0) -> bool:
        current = now or datetime.now(timezone.utc)
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return current >= expires_at - timedelta(seconds=buffer_seconds)


__all__ = ["TokenRecord"]
