"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    get_bulk_history_store,
    get_bulk_orchestrator,
    get_bulk_queue_service,
    get_oauth_state_encoder,
    get_queue_client,
    get_record_service,
    get_token_cipher,
    get_token_manager,
    get_token_store,
    get_zoho_api_client,
    get_zoho_oauth_client,
)
from .config import SettingsDependency, get_app_settings

__all__ = [
    "SettingsDependency",
    "get_app_settings",
    "get_bulk_history_store",
    "get_bulk_orchestrator",
    "get_bulk_queue_service",
    "get_oauth_state_encoder",
    "get_queue_client",
    "get_record_service",
    "get_token_cipher",
    "get_token_manager",
    "get_token_store",
    "get_zoho_api_client",
    "get_zoho_oauth_client",
]
