"""Domain models persisted by the connector."""

from .bulk import LINK_NAME_PATTERN, PIPELINE_ORDER, BulkJobRecord, BulkStep
from .token import TokenRecord

__all__ = ["BulkJobRecord", "BulkStep", "LINK_NAME_PATTERN", "PIPELINE_ORDER", "TokenRecord"]
