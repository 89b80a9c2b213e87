"""Expose constructed client wrappers."""

from .local_queue import SQLiteQueueClient
from .sqlite_store import BulkHistoryStore, SQLiteBulkHistoryStore, SQLiteTokenStore, TokenStore
from .zoho_api import RemoteApiError, ScopePermissionError, ZohoCreatorClient, ZohoResponse
from .zoho_auth import (
    AuthError,
    InvalidOAuthStateError,
    OAuthStateEncoder,
    OAuthTokenExchangeError,
    ZohoOAuthClient,
)

__all__ = [
    "AuthError",
    "BulkHistoryStore",
    "InvalidOAuthStateError",
    "OAuthStateEncoder",
    "OAuthTokenExchangeError",
    "RemoteApiError",
    "SQLiteBulkHistoryStore",
    "SQLiteQueueClient",
    "SQLiteTokenStore",
    "ScopePermissionError",
    "TokenStore",
    "ZohoCreatorClient",
    "ZohoOAuthClient",
    "ZohoResponse",
]
