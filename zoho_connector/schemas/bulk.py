"""
Pydantic models for bulk export requests and responses.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, HttpUrl

from zoho_connector.models import LINK_NAME_PATTERN, BulkJobRecord, BulkStep

from .criteria import Criteria


class BulkExportRequest(BaseModel):
    """Incoming payload asking for a report export."""

    report: str = Field(
        ..., pattern=LINK_NAME_PATTERN, description="Link name of the Zoho report."
    )
    call_back_url: HttpUrl = Field(
        ..., description="URL called with the JSON location once the export is done."
    )
    criteria: Optional[Criteria] = Field(
        None, description="Optional filter, raw or structured."
    )


class BulkExportStatus(BaseModel):
    """Public view of a bulk history record."""

    id: str
    bulk_id: Optional[str] = None
    report: str
    criteria: str
    step: BulkStep
    call_back_url: str
    last_launch: datetime
    error: Optional[str] = None
    json_location: Optional[str] = None

    @classmethod
    def from_record(cls, record: BulkJobRecord) -> "BulkExportStatus":
        return cls.model_validate(record.model_dump())


__all__ = ["BulkExportRequest", "BulkExportStatus"]
