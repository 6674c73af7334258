"""
errors.py - Failure taxonomy for the ledger core.

Every public operation converts these into a result model carrying the
`kind` string, so callers branch on kind rather than on exception types.
"""


class LedgerError(Exception):
    kind = "LedgerError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class OperatorNotConfigured(LedgerError):
    kind = "OperatorNotConfigured"


class InvalidIdentityFormat(LedgerError):
    kind = "InvalidIdentityFormat"


class NetworkError(LedgerError):
    kind = "NetworkError"


class LedgerTimeout(LedgerError):
    kind = "Timeout"


class SubmissionFailed(LedgerError):
    kind = "SubmissionFailed"


class NotFound(LedgerError):
    kind = "NotFound"


class RecordValidationError(LedgerError):
    kind = "ValidationError"


class DuplicateSubmission(RecordValidationError):
    kind = "DuplicateSubmission"


class UnsupportedLookup(LedgerError):
    kind = "UnsupportedLookup"
