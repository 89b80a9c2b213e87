"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from zoho_connector.clients import (
    OAuthStateEncoder,
    SQLiteBulkHistoryStore,
    SQLiteQueueClient,
    SQLiteTokenStore,
    ZohoCreatorClient,
    ZohoOAuthClient,
)
from zoho_connector.core.config import get_settings
from zoho_connector.services import (
    BulkExportOrchestrator,
    BulkExportQueueService,
    TokenCipher,
    TokenManager,
    ZohoRecordService,
)
from zoho_connector.utils.http import RetryConfig


@lru_cache()
def _settings():
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_oauth_state_encoder() -> OAuthStateEncoder:
    """Sign OAuth state values with the encryption secret, or the client secret."""
    settings = _settings()
    secret = settings.security.token_encryption_secret or settings.zoho.client_secret
    return OAuthStateEncoder(secret, ttl_seconds=settings.security.oauth_state_ttl_seconds)


@lru_cache()
def get_token_cipher() -> TokenCipher | None:
    """Provide token encryption when TOKEN_ENCRYPTION_SECRET is configured."""
    secret = _settings().security.token_encryption_secret
    if not secret:
        return None
    return TokenCipher(secret=secret)


@lru_cache()
def get_token_store() -> SQLiteTokenStore:
    settings = _settings()
    return SQLiteTokenStore(
        settings.storage.database_path,
        table_name=settings.storage.tokens_table_name,
        cipher=get_token_cipher(),
    )


@lru_cache()
def get_bulk_history_store() -> SQLiteBulkHistoryStore:
    settings = _settings()
    return SQLiteBulkHistoryStore(
        settings.storage.database_path,
        table_name=settings.storage.bulks_table_name,
    )


@lru_cache()
def get_queue_client() -> SQLiteQueueClient:
    """Provide SQLite-backed queue client."""
    return SQLiteQueueClient(_settings().storage.database_path)


@lru_cache()
def get_zoho_oauth_client() -> ZohoOAuthClient:
    settings = _settings()
    return ZohoOAuthClient(settings.zoho, timeout=settings.token.http_timeout_seconds)


@lru_cache()
def get_token_manager() -> TokenManager:
    """Provide the process-wide token manager; its lock serializes refreshes."""
    settings = _settings()
    return TokenManager(
        get_token_store(),
        get_zoho_oauth_client(),
        environment=settings.zoho.environment,
        settings=settings.token,
    )


@lru_cache()
def get_zoho_api_client() -> ZohoCreatorClient:
    settings = _settings()
    return ZohoCreatorClient(
        settings.zoho,
        get_token_manager(),
        timeout=settings.bulk.http_timeout_seconds,
        retry_config=RetryConfig(
            attempts=settings.bulk.request_attempts,
            backoff_seconds=settings.bulk.request_backoff_seconds,
        ),
    )


def get_record_service() -> ZohoRecordService:
    return ZohoRecordService(get_zoho_api_client())


@lru_cache()
def get_bulk_orchestrator() -> BulkExportOrchestrator:
    settings = _settings()
    return BulkExportOrchestrator(
        get_zoho_api_client(),
        get_bulk_history_store(),
        settings.bulk,
    )


def get_bulk_queue_service() -> BulkExportQueueService:
    """Build a bulk export queue service."""
    return BulkExportQueueService(
        queue_client=get_queue_client(),
        orchestrator=get_bulk_orchestrator(),
    )


__all__ = [
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
