from pagetrail.history.autofix import AutoFixResult, auto_fix
from pagetrail.history.detector import FormatDetection, HistoryFormat, detect_format
from pagetrail.history.document import CURRENT_VERSION, ReadingHistory
from pagetrail.history.errors import (
    EntryNotFoundError,
    HistoryError,
    HistoryValidationError,
    InvalidEntryError,
    StoreBusyError,
)
from pagetrail.history.migration import MigrationResult, migrate, migration_stats
from pagetrail.history.store import BulkResult, HistoryStore, Rejection
from pagetrail.history.validator import ValidationResult, validate, validation_stats

__all__ = [
    "CURRENT_VERSION",
    "AutoFixResult",
    "BulkResult",
    "EntryNotFoundError",
    "FormatDetection",
    "HistoryError",
    "HistoryFormat",
    "HistoryStore",
    "HistoryValidationError",
    "InvalidEntryError",
    "MigrationResult",
    "ReadingHistory",
    "Rejection",
    "StoreBusyError",
    "ValidationResult",
    "auto_fix",
    "detect_format",
    "migrate",
    "migration_stats",
    "validate",
    "validation_stats",
]
