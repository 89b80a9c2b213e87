"""
Bulk export pipeline.

A run drives one history record through
created -> reading -> ready -> downloaded -> extracted -> transformed -> finished,
persisting every transition. Any failure leaves the record in ``failed``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Dict, Optional

import httpx

from zoho_connector.clients.sqlite_store import BulkHistoryStore
from zoho_connector.clients.zoho_api import ZohoCreatorClient
from zoho_connector.core.config import BulkSettings
from zoho_connector.models import BulkJobRecord, BulkStep
from zoho_connector.services.bulk_transform import extract_csv, transform_csv
from zoho_connector.services.criteria import CriteriaInput, format_criteria

logger = logging.getLogger(__name__)

BULK_CREATE_SCOPE = "ZohoCreator.bulk.CREATE"
BULK_READ_SCOPE = "ZohoCreator.bulk.READ"

COMPLETED_STATUS = "completed"
FAILED_STATUSES = frozenset({"failed", "cancelled", "canceled", "aborted"})


class PipelineError(Exception):
    """Raised when a bulk run ends in ``failed``; carries the persisted record."""

    def __init__(self, message: str, record: BulkJobRecord) -> None:
        super().__init__(message)
        self.record = record


class BulkJobCancelled(Exception):
    """Raised when the caller asks a running export to stop."""


@dataclass
class _RunState:
    cancel_event: Optional[asyncio.Event] = None
    csv_path: Optional[Path] = None


class BulkExportOrchestrator:
    """Create, poll, download and transform Zoho bulk read jobs."""

    def __init__(
        self,
        api_client: ZohoCreatorClient,
        history_store: BulkHistoryStore,
        settings: Optional[BulkSettings] = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        callback_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api = api_client
        self._history = history_store
        self._settings = settings or BulkSettings()
        self._sleep = sleep
        self._clock = clock
        self._callback_transport = callback_transport

    @property
    def storage_root(self) -> Path:
        return Path(self._settings.storage_root)

    @property
    def extracted_dir(self) -> Path:
        return self.storage_root / "extracted"

    def create_job(
        self,
        report: str,
        criteria: CriteriaInput = None,
        call_back_url: str = "",
    ) -> BulkJobRecord:
        """Persist a new history record in ``created``; nothing is sent to Zoho yet."""
        record = BulkJobRecord(
            report=report,
            criteria=format_criteria(criteria),
            call_back_url=str(call_back_url),
        )
        self._history.save(record)
        logger.info("Bulk export queued", extra={"record_id": record.id, "report": report})
        return record

    async def export(
        self,
        report: str,
        criteria: CriteriaInput = None,
        call_back_url: str = "",
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkJobRecord:
        record = self.create_job(report, criteria, call_back_url)
        return await self.run(record, cancel_event=cancel_event)

    async def run(
        self,
        record: BulkJobRecord,
        *,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> BulkJobRecord:
        """Drive ``record`` from its current step to ``finished``.

        Raises:
            PipelineError: after persisting ``failed`` with the error text.
            asyncio.CancelledError: after persisting ``failed`` when the task
                running the export is cancelled.
        """
        if record.step.is_terminal:
            raise ValueError(f"Bulk job {record.id} is already {record.step.value}.")

        handlers: Dict[BulkStep, Callable[[BulkJobRecord, _RunState], Awaitable[None]]] = {
            BulkStep.CREATED: self._start_remote_job,
            BulkStep.READING: self._wait_until_ready,
            BulkStep.READY: self._download,
            BulkStep.DOWNLOADED: self._extract,
            BulkStep.EXTRACTED: self._transform,
            BulkStep.TRANSFORMED: self._notify,
        }
        state = _RunState(cancel_event=cancel_event)

        record.last_launch = datetime.now(timezone.utc)
        record.error = None
        self._history.save(record)

        try:
            while not record.step.is_terminal:
                self._check_cancelled(state)
                await handlers[record.step](record, state)
        except asyncio.CancelledError:
            self._fail(record, "Bulk export task was cancelled.")
            raise
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            self._fail(record, message)
            raise PipelineError(message, record) from exc

        logger.info(
            "Bulk export finished",
            extra={"record_id": record.id, "bulk_id": record.bulk_id, "json": record.json_location},
        )
        return record

    async def _start_remote_job(self, record: BulkJobRecord, state: _RunState) -> None:
        if not record.bulk_id:
            query: Dict[str, object] = {"max_records": self._settings.max_records}
            if record.criteria:
                query["criteria"] = record.criteria
            response = await self._api.request(
                "POST",
                self._api.bulk_read_url(record.report),
                required_scope=BULK_CREATE_SCOPE,
                json={"query": query},
            )
            job_id = (response.body.get("details") or {}).get("id")
            if not job_id:
                raise ValueError("Zoho accepted the bulk job but returned no job id.")
            record.bulk_id = str(job_id)
            self._history.save(record)
            logger.info(
                "Zoho bulk job created",
                extra={"record_id": record.id, "bulk_id": record.bulk_id},
            )
        self._advance(record, BulkStep.READING)

    async def _wait_until_ready(self, record: BulkJobRecord, state: _RunState) -> None:
        url = self._api.bulk_read_url(record.report, record.bulk_id)
        interval = self._settings.poll_interval_seconds
        deadline = self._clock() + self._settings.poll_max_wait_seconds

        while True:
            self._check_cancelled(state)
            response = await self._api.request("GET", url, required_scope=BULK_READ_SCOPE)
            status = str((response.body.get("details") or {}).get("status") or "").strip()
            normalized = status.lower()
            if normalized == COMPLETED_STATUS:
                break
            if normalized in FAILED_STATUSES:
                raise RuntimeError(f"Zoho bulk job {record.bulk_id} ended with status {status}.")

            remaining = deadline - self._clock()
            if remaining <= 0:
                raise TimeoutError(
                    f"Zoho bulk job {record.bulk_id} not completed after "
                    f"{self._settings.poll_max_wait_seconds:g}s (last status: {status or 'unknown'})."
                )
            logger.debug(
                "Bulk job still running",
                extra={"bulk_id": record.bulk_id, "status": status, "sleep": interval},
            )
            await self._sleep(min(interval, remaining))
            interval = min(
                interval * self._settings.poll_backoff_factor,
                self._settings.poll_max_interval_seconds,
            )

        self._advance(record, BulkStep.READY)

    async def _download(self, record: BulkJobRecord, state: _RunState) -> None:
        destination = self._archive_path(record)
        await self._api.download(
            self._api.bulk_read_url(record.report, record.bulk_id, result=True),
            destination,
            required_scope=BULK_READ_SCOPE,
        )
        self._advance(record, BulkStep.DOWNLOADED)

    async def _extract(self, record: BulkJobRecord, state: _RunState) -> None:
        state.csv_path = await self._locate_csv(record)
        self._advance(record, BulkStep.EXTRACTED)

    async def _transform(self, record: BulkJobRecord, state: _RunState) -> None:
        # A resumed run starts here without the path found during extraction.
        csv_path = state.csv_path or await self._locate_csv(record)
        json_path = self.extracted_dir / f"{record.report}_{record.bulk_id}.json"
        count = await asyncio.to_thread(transform_csv, csv_path, json_path)
        record.json_location = str(json_path)
        logger.info(
            "Bulk export transformed",
            extra={"record_id": record.id, "records": count, "json": record.json_location},
        )
        self._advance(record, BulkStep.TRANSFORMED)

    async def _notify(self, record: BulkJobRecord, state: _RunState) -> None:
        try:
            async with httpx.AsyncClient(
                timeout=self._settings.callback_timeout_seconds,
                transport=self._callback_transport,
            ) as client:
                response = await client.get(
                    record.call_back_url, params={"json_location": record.json_location}
                )
                response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning(
                "Bulk export callback failed: %s",
                exc,
                extra={"record_id": record.id, "call_back_url": record.call_back_url},
            )
        self._advance(record, BulkStep.FINISHED)

    async def _locate_csv(self, record: BulkJobRecord) -> Path:
        return await asyncio.to_thread(
            extract_csv,
            self._archive_path(record),
            self.extracted_dir,
            f"{record.report}_{record.bulk_id}.csv",
        )

    def _archive_path(self, record: BulkJobRecord) -> Path:
        return self.storage_root / f"{record.bulk_id}.zip"

    def _advance(self, record: BulkJobRecord, step: BulkStep) -> None:
        record.advance(step)
        self._history.save(record)

    def _fail(self, record: BulkJobRecord, error: str) -> None:
        logger.error(
            "Bulk export failed at %s: %s",
            record.step.value,
            error,
            extra={"record_id": record.id, "bulk_id": record.bulk_id},
        )
        record.mark_failed(error)
        self._history.save(record)

    @staticmethod
    def _check_cancelled(state: _RunState) -> None:
        if state.cancel_event is not None and state.cancel_event.is_set():
            raise BulkJobCancelled("Bulk export cancelled by caller.")


__all__ = [
    "BULK_CREATE_SCOPE",
    "BULK_READ_SCOPE",
    "BulkExportOrchestrator",
    "BulkJobCancelled",
    "PipelineError",
]
