"""
Service helpers for enqueuing bulk export jobs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

from zoho_connector.clients.local_queue import SQLiteQueueClient
from zoho_connector.models import BulkJobRecord
from zoho_connector.schemas import BulkExportRequest
from zoho_connector.services.bulk_export import BulkExportOrchestrator


class BulkExportQueueService:
    """Record bulk export requests and hand them to the background worker."""

    def __init__(
        self,
        queue_client: SQLiteQueueClient,
        orchestrator: BulkExportOrchestrator,
    ) -> None:
        self._queue = queue_client
        self._orchestrator = orchestrator

    def enqueue_export(self, *, request: BulkExportRequest) -> BulkJobRecord:
        """Create the history record in ``created`` and enqueue its identifier."""
        record = self._orchestrator.create_job(
            request.report,
            request.criteria,
            str(request.call_back_url),
        )
        self._queue.enqueue_bulk_export(self._build_message_payload(record))
        return record

    @staticmethod
    def _build_message_payload(record: BulkJobRecord) -> Dict[str, Any]:
        return {
            "record_id": record.id,
            "report": record.report,
            "requested_at": datetime.now(tz=timezone.utc).isoformat(),
        }


__all__ = ["BulkExportQueueService"]
