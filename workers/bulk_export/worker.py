"""Local worker that processes queued bulk export jobs from SQLite."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from workers.bulk_export.models import BulkExportJobPayload
from zoho_connector.clients.local_queue import SQLiteQueueClient
from zoho_connector.clients.sqlite_store import BulkHistoryStore
from zoho_connector.core.config import get_settings
from zoho_connector.core.logging import configure_logging
from zoho_connector.dependencies import (
    get_bulk_history_store,
    get_bulk_orchestrator,
    get_queue_client,
)
from zoho_connector.services.bulk_export import BulkExportOrchestrator, PipelineError

logger = logging.getLogger(__name__)


class BulkExportWorker:
    """Poll the SQLite queue and run bulk exports as concurrent tasks."""

    def __init__(
        self,
        queue_client: SQLiteQueueClient,
        history_store: BulkHistoryStore,
        orchestrator: BulkExportOrchestrator,
        poll_interval_seconds: float = 1.0,
        max_concurrent_jobs: int = 4,
    ) -> None:
        self._queue = queue_client
        self._history = history_store
        self._orchestrator = orchestrator
        self._poll_interval = poll_interval_seconds
        self._slots = asyncio.Semaphore(max_concurrent_jobs)
        self._tasks: set[asyncio.Task] = set()

    def requeue_unfinished(self) -> int:
        """Queue again the non-terminal records a stopped worker left behind.

        Runs once at startup; records whose payload is still queued are skipped.
        """
        queued = self._queue.pending_record_ids()
        requeued = 0
        for record in self._history.list_unfinished():
            if record.id in queued:
                continue
            payload: BulkExportJobPayload = {
                "record_id": record.id,
                "report": record.report,
                "requested_at": datetime.now(tz=timezone.utc).isoformat(),
            }
            self._queue.enqueue_bulk_export(dict(payload))
            logger.warning(
                "Re-queued interrupted bulk export at %s",
                record.step.value,
                extra={"record_id": record.id},
            )
            requeued += 1
        return requeued

    async def run_forever(self) -> None:
        self.requeue_unfinished()
        try:
            while True:
                if not await self._launch_next():
                    await asyncio.sleep(self._poll_interval)
        finally:
            for task in self._tasks:
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

    async def drain(self) -> int:
        """Run every job currently queued and wait for all of them."""
        launched = 0
        while await self._launch_next():
            launched += 1
        await asyncio.gather(*self._tasks, return_exceptions=True)
        return launched

    async def _launch_next(self) -> bool:
        await self._slots.acquire()
        payload = self._dequeue()
        if payload is None:
            self._slots.release()
            return False

        task = asyncio.create_task(self._process_and_release(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    def _dequeue(self) -> Optional[BulkExportJobPayload]:
        message = self._queue.dequeue_bulk_export()
        if message is None:
            return None
        return message  # type: ignore[return-value]

    async def _process_and_release(self, payload: BulkExportJobPayload) -> None:
        try:
            await self._process(payload)
        finally:
            self._slots.release()

    async def _process(self, payload: BulkExportJobPayload) -> None:
        record_id = payload["record_id"]
        logger.info("Dequeued bulk export", extra={"record_id": record_id})

        record = self._history.get(record_id)
        if record is None:
            logger.warning("Bulk export record not found", extra={"record_id": record_id})
            return
        if record.step.is_terminal:
            logger.info(
                "Skipping bulk export already %s", record.step.value, extra={"record_id": record_id}
            )
            return

        try:
            await self._orchestrator.run(record)
        except PipelineError as exc:
            # Failure details are persisted on the record by the orchestrator.
            logger.info(
                "Bulk export ended in failure: %s", exc, extra={"record_id": record_id}
            )
        except Exception:
            logger.exception("Failed processing bulk export", extra={"record_id": record_id})


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    worker = BulkExportWorker(
        queue_client=get_queue_client(),
        history_store=get_bulk_history_store(),
        orchestrator=get_bulk_orchestrator(),
        poll_interval_seconds=settings.bulk.worker_poll_interval_seconds,
        max_concurrent_jobs=settings.bulk.max_concurrent_jobs,
    )
    await worker.run_forever()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bulk export worker stopped")


if __name__ == "__main__":  # pragma: no cover - manual execution path
    run()
