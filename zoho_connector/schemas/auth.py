"""Schemas related to the Zoho OAuth flow."""

from __future__ import annotations

from pydantic import BaseModel, Field


class OAuthCallbackPayload(BaseModel):
    """Query parameters Zoho sends back to the redirect URI."""

    code: str | None = Field(None, description="Authorization code returned by Zoho.")
    state: str | None = Field(None, description="Opaque state token issued when starting OAuth.")
    error: str | None = Field(None, description="Error reported by Zoho when consent fails.")


class ConnectorStatus(BaseModel):
    """Readiness of the connector."""

    ready: bool


__all__ = ["ConnectorStatus", "OAuthCallbackPayload"]
