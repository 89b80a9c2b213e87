"""Filter expressions accepted by record reads and bulk exports."""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field


class FieldFilter(BaseModel):
    """A single ``field comparator value`` condition."""

    field: str = Field(..., min_length=1, description="Zoho field link name.")
    comparator: str = Field("==", description="Comparison operator, e.g. ==, !=, <, >.")
    value: Union[bool, int, float, str, None] = None


class RawCriteria(BaseModel):
    """A Zoho criteria expression passed through untouched."""

    kind: Literal["raw"] = "raw"
    expression: str = ""


class StructuredCriteria(BaseModel):
    """Conditions joined with a logical AND."""

    kind: Literal["structured"] = "structured"
    filters: list[FieldFilter] = Field(default_factory=list)


Criteria = Annotated[Union[RawCriteria, StructuredCriteria], Field(discriminator="kind")]


__all__ = ["Criteria", "FieldFilter", "RawCriteria", "StructuredCriteria"]
