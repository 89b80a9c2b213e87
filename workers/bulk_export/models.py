"""
Data models shared across the bulk export worker package.
"""

from __future__ import annotations

from typing import TypedDict


class BulkExportJobPayload(TypedDict):
    """Payload structure delivered through the SQLite queue."""

    record_id: str
    report: str
    requested_at: str


__all__ = ["BulkExportJobPayload"]
