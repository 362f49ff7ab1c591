class HistoryError(Exception):
    """Base class for failed history mutations. ``code`` names the failure kind."""

    code = "history_error"


class InvalidEntryError(HistoryError):
    code = "invalid_operation"


class EntryNotFoundError(HistoryError):
    code = "not_found"


class StoreBusyError(HistoryError):
    code = "busy"


class HistoryValidationError(HistoryError):
    code = "validation_failed"

    def __init__(self, validation):
        self.validation = validation
        details = "; ".join(str(issue) for issue in validation.blocking_issues)
        super().__init__(f"History failed validation: {details}")
