"""Service layer exports."""

from .bulk_export import BulkExportOrchestrator, BulkJobCancelled, PipelineError
from .bulk_queue import BulkExportQueueService
from .criteria import format_criteria
from .records import RecordPage, ZohoRecordService
from .token_cipher import TokenCipher, TokenDecryptionError
from .token_manager import TokenManager

__all__ = [
    "BulkExportOrchestrator",
    "BulkExportQueueService",
    "BulkJobCancelled",
    "PipelineError",
    "RecordPage",
    "TokenCipher",
    "TokenDecryptionError",
    "TokenManager",
    "ZohoRecordService",
    "format_criteria",
]
