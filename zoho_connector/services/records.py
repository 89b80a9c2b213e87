"""
Record-level reads and writes against Creator reports and forms.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from zoho_connector.clients.zoho_api import NO_RECORDS_CODE, RemoteApiError, ZohoCreatorClient
from zoho_connector.services.criteria import CriteriaInput, format_criteria

logger = logging.getLogger(__name__)

PAGE_SIZE = 1000
CURSOR_HEADER = "record_cursor"

READ_SCOPE = "ZohoCreator.report.READ"
CREATE_SCOPE = "ZohoCreator.form.CREATE"
UPDATE_SCOPE = "ZohoCreator.report.UPDATE"


@dataclass
class RecordPage:
    """One page of report records and the cursor to fetch the next page."""

    records: List[Dict[str, Any]] = field(default_factory=list)
    cursor: Optional[str] = None


class ZohoRecordService:
    """CRUD primitives over the Creator data API."""

    def __init__(self, api_client: ZohoCreatorClient, *, page_size: int = PAGE_SIZE) -> None:
        self._api = api_client
        self._page_size = page_size

    async def read(
        self,
        report: str,
        criteria: CriteriaInput = None,
        cursor: str | None = None,
    ) -> RecordPage:
        params: Dict[str, Any] = {"max_records": self._page_size}
        expression = format_criteria(criteria)
        if expression:
            params["criteria"] = expression
        headers = {CURSOR_HEADER: cursor} if cursor else None

        try:
            response = await self._api.request(
                "GET",
                self._api.report_url(report),
                required_scope=READ_SCOPE,
                params=params,
                headers=headers,
            )
        except RemoteApiError as exc:
            if exc.code == NO_RECORDS_CODE:
                return RecordPage()
            raise

        records = response.body.get("data") or []
        return RecordPage(records=list(records), cursor=response.headers.get(CURSOR_HEADER) or None)

    async def read_all(self, report: str, criteria: CriteriaInput = None) -> List[Dict[str, Any]]:
        """Follow cursors until Zoho stops returning one."""
        records: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            page = await self.read(report, criteria, cursor)
            records.extend(page.records)
            if not page.cursor:
                break
            cursor = page.cursor
        logger.info("Read %s records from %s", len(records), report)
        return records

    async def get_by_id(self, report: str, record_id: str) -> Dict[str, Any]:
        response = await self._api.request(
            "GET", self._api.report_url(report, record_id), required_scope=READ_SCOPE
        )
        return response.body.get("data") or {}

    async def create(
        self,
        form: str,
        data: Dict[str, Any],
        skip_workflow: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"data": data}
        if skip_workflow:
            payload["skip_workflow"] = list(skip_workflow)
        response = await self._api.request(
            "POST", self._api.form_url(form), required_scope=CREATE_SCOPE, json=payload
        )
        return response.body

    async def update(self, report: str, record_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        response = await self._api.request(
            "PATCH",
            self._api.report_url(report, record_id),
            required_scope=UPDATE_SCOPE,
            json={"data": data},
        )
        return response.body


__all__ = ["PAGE_SIZE", "RecordPage", "ZohoRecordService"]
