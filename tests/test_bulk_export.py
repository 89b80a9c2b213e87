from __future__ import annotations

import asyncio
import io
import itertools
import json
import zipfile
from pathlib import Path

import httpx
import pytest

from fakes import StaticTokens, no_sleep
from zoho_connector.clients.sqlite_store import SQLiteBulkHistoryStore
from zoho_connector.clients.zoho_api import ZohoCreatorClient
from zoho_connector.core.config import BulkSettings
from zoho_connector.models import BulkJobRecord, BulkStep
from zoho_connector.services.bulk_export import BulkExportOrchestrator, PipelineError
from zoho_connector.utils.http import RetryConfig

FULL_SEQUENCE = [
    BulkStep.CREATED,
    BulkStep.READING,
    BulkStep.READY,
    BulkStep.DOWNLOADED,
    BulkStep.EXTRACTED,
    BulkStep.TRANSFORMED,
    BulkStep.FINISHED,
]


class RecordingHistoryStore(SQLiteBulkHistoryStore):
    """SQLite history that also remembers every persisted step."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.steps: dict[str, list[BulkStep]] = {}

    def save(self, record: BulkJobRecord) -> None:
        self.steps.setdefault(record.id, []).append(record.step)
        super().save(record)

    def distinct_steps(self, record_id: str) -> list[BulkStep]:
        return [step for step, _ in itertools.groupby(self.steps[record_id])]


def _archive(name: str, content: str) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as bundle:
        bundle.writestr(name, content)
    return buffer.getvalue()


class FakeZoho:
    """Minimal bulk API: create, status polling and result download."""

    def __init__(self, statuses: list[str] | None = None, *, csv: str = "Contact.Email,Name\na@b.com,Alice\n") -> None:
        self.statuses = statuses or ["In-progress", "Completed"]
        self.csv = csv
        self.created: list[dict] = []
        self.status_calls: dict[str, int] = {}
        self.create_status = 200

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        report = path.split("/report/")[1].split("/")[0]
        if request.method == "POST" and path.endswith("/read"):
            if self.create_status != 200:
                return httpx.Response(self.create_status, json={"code": 3330, "message": "Bad query"})
            self.created.append(json.loads(request.content))
            job_id = f"job-{len(self.created)}"
            return httpx.Response(200, json={"code": 3000, "details": {"id": job_id, "status": "In-progress"}})
        if path.endswith("/result"):
            job_id = path.split("/")[-2]
            return httpx.Response(200, content=_archive(f"{report}_{job_id}.csv", self.csv))
        job_id = path.split("/")[-1]
        calls = self.status_calls.get(job_id, 0)
        self.status_calls[job_id] = calls + 1
        status = self.statuses[min(calls, len(self.statuses) - 1)]
        return httpx.Response(200, json={"code": 3000, "details": {"id": job_id, "status": status}})


class CallbackRecorder:
    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code)


def _orchestrator(
    tmp_path: Path,
    zoho_settings,
    zoho: FakeZoho,
    callback: CallbackRecorder | None = None,
    *,
    sleep=no_sleep,
    clock=None,
    **bulk_overrides,
) -> tuple[BulkExportOrchestrator, RecordingHistoryStore]:
    history = RecordingHistoryStore(str(tmp_path / "connector.db"))
    api = ZohoCreatorClient(
        zoho_settings,
        StaticTokens(),
        transport=httpx.MockTransport(zoho),
        retry_config=RetryConfig(attempts=1),
    )
    settings = BulkSettings(
        storage_root=tmp_path / "bulk",
        poll_interval_seconds=bulk_overrides.pop("poll_interval_seconds", 0),
        **bulk_overrides,
    )
    extra = {"clock": clock} if clock else {}
    orchestrator = BulkExportOrchestrator(
        api,
        history,
        settings,
        sleep=sleep,
        callback_transport=httpx.MockTransport(callback or CallbackRecorder()),
        **extra,
    )
    return orchestrator, history


@pytest.mark.asyncio
async def test_export_walks_every_step_in_order(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    callback = CallbackRecorder()
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho, callback)

    record = await orchestrator.export("Sales", "", "https://hooks.example/done")

    assert record.step is BulkStep.FINISHED
    assert history.distinct_steps(record.id) == FULL_SEQUENCE
    assert record.bulk_id == "job-1"
    assert zoho.created == [{"query": {"max_records": 200000}}]

    json_path = tmp_path / "bulk" / "extracted" / "Sales_job-1.json"
    assert record.json_location == str(json_path)
    assert json.loads(json_path.read_text(encoding="utf-8")) == [
        {"Contact->Email": "a@b.com", "Name": "Alice"}
    ]
    assert (tmp_path / "bulk" / "job-1.zip").exists()

    stored = history.get(record.id)
    assert stored is not None
    assert stored.step is BulkStep.FINISHED
    assert stored.error is None

    assert len(callback.requests) == 1
    assert callback.requests[0].url.params["json_location"] == str(json_path)


@pytest.mark.asyncio
async def test_criteria_are_sent_with_create_request(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    orchestrator, _ = _orchestrator(tmp_path, zoho_settings, zoho, max_records=500)

    record = await orchestrator.export("Sales", 'Region == "EU"', "https://hooks.example/done")

    assert record.criteria == 'Region == "EU"'
    assert zoho.created == [{"query": {"max_records": 500, "criteria": 'Region == "EU"'}}]


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ["Failed", "Cancelled", "Aborted"])
async def test_terminal_remote_status_marks_job_failed(tmp_path: Path, zoho_settings, status: str) -> None:
    zoho = FakeZoho(["In-progress", status])
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho)

    with pytest.raises(PipelineError) as excinfo:
        await orchestrator.export("Sales", None, "https://hooks.example/done")

    record = excinfo.value.record
    stored = history.get(record.id)
    assert stored is not None
    assert stored.step is BulkStep.FAILED
    assert status in (stored.error or "")
    assert history.distinct_steps(record.id)[-1] is BulkStep.FAILED


@pytest.mark.asyncio
async def test_polling_gives_up_after_max_wait(tmp_path: Path, zoho_settings) -> None:
    now = [0.0]
    sleeps: list[float] = []

    async def fake_sleep(delay: float) -> None:
        sleeps.append(delay)
        now[0] += delay

    zoho = FakeZoho(["In-progress"])
    orchestrator, history = _orchestrator(
        tmp_path,
        zoho_settings,
        zoho,
        sleep=fake_sleep,
        clock=lambda: now[0],
        poll_interval_seconds=10,
        poll_backoff_factor=2,
        poll_max_interval_seconds=25,
        poll_max_wait_seconds=60,
    )

    with pytest.raises(PipelineError, match="not completed") as excinfo:
        await orchestrator.export("Sales", None, "https://hooks.example/done")

    assert sleeps == [10, 20, 25, 5]
    stored = history.get(excinfo.value.record.id)
    assert stored is not None
    assert stored.step is BulkStep.FAILED


@pytest.mark.asyncio
async def test_cancel_event_stops_the_run(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho)
    cancel = asyncio.Event()
    cancel.set()

    with pytest.raises(PipelineError, match="cancelled") as excinfo:
        await orchestrator.export("Sales", None, "https://hooks.example/done", cancel_event=cancel)

    assert zoho.created == []
    stored = history.get(excinfo.value.record.id)
    assert stored is not None
    assert stored.step is BulkStep.FAILED


@pytest.mark.asyncio
async def test_task_cancellation_persists_failure(tmp_path: Path, zoho_settings) -> None:
    polled = asyncio.Event()

    async def blocking_sleep(_: float) -> None:
        polled.set()
        await asyncio.Event().wait()

    zoho = FakeZoho(["In-progress"])
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho, sleep=blocking_sleep)
    record = orchestrator.create_job("Sales", None, "https://hooks.example/done")

    task = asyncio.create_task(orchestrator.run(record))
    await polled.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    stored = history.get(record.id)
    assert stored is not None
    assert stored.step is BulkStep.FAILED


@pytest.mark.asyncio
async def test_remote_create_failure_keeps_no_bulk_id(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    zoho.create_status = 400
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho)

    with pytest.raises(PipelineError, match="Bad query") as excinfo:
        await orchestrator.export("Sales", None, "https://hooks.example/done")

    stored = history.get(excinfo.value.record.id)
    assert stored is not None
    assert stored.step is BulkStep.FAILED
    assert stored.bulk_id is None


@pytest.mark.asyncio
async def test_callback_failure_still_finishes(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    callback = CallbackRecorder(status_code=500)
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho, callback)

    record = await orchestrator.export("Sales", None, "https://hooks.example/done")

    assert record.step is BulkStep.FINISHED
    assert len(callback.requests) == 1
    assert history.distinct_steps(record.id) == FULL_SEQUENCE


@pytest.mark.asyncio
async def test_each_export_gets_its_own_record_and_remote_job(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho)

    first, second = await asyncio.gather(
        orchestrator.export("Sales", None, "https://hooks.example/done"),
        orchestrator.export("Sales", None, "https://hooks.example/done"),
    )

    assert first.id != second.id
    assert {first.bulk_id, second.bulk_id} == {"job-1", "job-2"}
    assert len(zoho.created) == 2
    assert {r.id for r in history.list_recent(report="Sales")} == {first.id, second.id}


@pytest.mark.asyncio
async def test_run_rejects_terminal_records(tmp_path: Path, zoho_settings) -> None:
    orchestrator, _ = _orchestrator(tmp_path, zoho_settings, FakeZoho())
    record = BulkJobRecord(report="Sales", call_back_url="https://hooks.example/done", step=BulkStep.FINISHED)

    with pytest.raises(ValueError):
        await orchestrator.run(record)


@pytest.mark.asyncio
async def test_resume_at_extracted_finds_renamed_csv(tmp_path: Path, zoho_settings) -> None:
    zoho = FakeZoho()
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, zoho)
    archive = tmp_path / "bulk" / "job-9.zip"
    archive.parent.mkdir(parents=True)
    archive.write_bytes(_archive("export.csv", "Name\nAlice\n"))
    record = BulkJobRecord(
        report="Sales",
        bulk_id="job-9",
        call_back_url="https://hooks.example/done",
        step=BulkStep.EXTRACTED,
    )
    history.save(record)

    finished = await orchestrator.run(record)

    assert finished.step is BulkStep.FINISHED
    json_path = tmp_path / "bulk" / "extracted" / "Sales_job-9.json"
    assert json.loads(json_path.read_text(encoding="utf-8")) == [{"Name": "Alice"}]
    assert zoho.created == []
    assert zoho.status_calls == {}


@pytest.mark.parametrize("report", ["../outside", "Sales/../../etc", "Sales Report", ""])
def test_create_job_rejects_non_link_names(tmp_path: Path, zoho_settings, report: str) -> None:
    orchestrator, history = _orchestrator(tmp_path, zoho_settings, FakeZoho())

    with pytest.raises(ValueError):
        orchestrator.create_job(report, None, "https://hooks.example/done")

    assert history.list_recent() == []
