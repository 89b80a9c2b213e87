"""Public schema exports."""

from .auth import ConnectorStatus, OAuthCallbackPayload
from .bulk import BulkExportRequest, BulkExportStatus
from .criteria import Criteria, FieldFilter, RawCriteria, StructuredCriteria

__all__ = [
    "BulkExportRequest",
    "BulkExportStatus",
    "ConnectorStatus",
    "Criteria",
    "FieldFilter",
    "OAuthCallbackPayload",
    "RawCriteria",
    "StructuredCriteria",
]
