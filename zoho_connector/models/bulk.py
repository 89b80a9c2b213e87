"""
Domain model for bulk export history records.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BulkStep(str, Enum):
    """Pipeline steps, in execution order, plus the absorbing failure marker."""

    CREATED = "created"
    READING = "reading"
    READY = "ready"
    DOWNLOADED = "downloaded"
    EXTRACTED = "extracted"
    TRANSFORMED = "transformed"
    FINISHED = "finished"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (BulkStep.FINISHED, BulkStep.FAILED)


PIPELINE_ORDER = (
    BulkStep.CREATED,
    BulkStep.READING,
    BulkStep.READY,
    BulkStep.DOWNLOADED,
    BulkStep.EXTRACTED,
    BulkStep.TRANSFORMED,
    BulkStep.FINISHED,
)

# Zoho link names; also used to build local file names.
LINK_NAME_PATTERN = r"^[A-Za-z0-9_]+$"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BulkJobRecord(BaseModel):
    """Tracks one bulk export run from request to callback."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    bulk_id: Optional[str] = Field(
        None, description="Remote job identifier, set once Zoho accepts the job."
    )
    report: str = Field(..., pattern=LINK_NAME_PATTERN)
    criteria: str = ""
    step: BulkStep = BulkStep.CREATED
    call_back_url: str
    last_launch: datetime = Field(default_factory=_utcnow)
    error: Optional[str] = None
    json_location: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def advance(self, step: BulkStep) -> None:
        """Move to the next pipeline step.

        Raises:
            ValueError: when ``step`` is not the immediate successor or the
                record already reached a terminal step.
        """
        if self.step.is_terminal:
            raise ValueError(f"Bulk job {self.id} is already {self.step.value}.")
        expected = PIPELINE_ORDER[PIPELINE_ORDER.index(self.step) + 1]
        if step is not expected:
            raise ValueError(
                f"Bulk job {self.id} cannot move from {self.step.value} to {step.value}."
            )
        self.step = step
        self.updated_at = _utcnow()

    def mark_failed(self, error: str) -> None:
        self.step = BulkStep.FAILED
        self.error = error
        self.updated_at = _utcnow()


__all__ = ["BulkJobRecord", "BulkStep", "LINK_NAME_PATTERN", "PIPELINE_ORDER"]
