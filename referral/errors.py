# ==========================================================
#                  EXCEPTIONS
# ==========================================================


class LedgerError(Exception):
    """Base ledger exception. `code` and `http_status` drive the JSON error response."""
    code = "ledger_error"
    http_status = 500
    retryable = False

    def __init__(self, message: str = None, **details):
        self.message = message or self.__class__.__name__
        self.details = details
        super().__init__(self.message)

    def to_dict(self):
        payload = {"error": self.code, "message": self.message}
        if self.retryable:
            payload["retryable"] = True
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(LedgerError):
    code = "validation_error"
    http_status = 400


class NotFoundError(LedgerError):
    code = "not_found"
    http_status = 404


class InvalidStateTransition(LedgerError):
    code = "invalid_state_transition"
    http_status = 409


class InsufficientBalance(LedgerError):
    code = "insufficient_balance"
    http_status = 409


class StorageFailure(LedgerError):
    """A transactional write failed for infrastructure reasons. Safe to retry."""
    code = "storage_failure"
    http_status = 503
    retryable = True
