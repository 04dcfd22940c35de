from typing import Any, Dict, List, Optional


class PaySyncError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    error = "Internal server error"

    def __init__(self, message: str = "", error: Optional[str] = None):
        super().__init__(message or self.error)
        self.message = message or self.error
        if error:
            self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": self.error, "message": self.message}


class AuthenticationError(PaySyncError):
    """Missing or invalid webhook signature"""
    status_code = 401
    error = "Invalid webhook signature"


class ValidationError(PaySyncError):
    status_code = 400
    error = "Missing required fields"

    def __init__(self, message: str = "", missing_fields: Optional[List[str]] = None, error: Optional[str] = None):
        super().__init__(message, error)
        self.missing_fields = list(missing_fields or [])

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.missing_fields:
            body["missingFields"] = self.missing_fields
        return body


class NotFoundError(PaySyncError):
    status_code = 404
    error = "Not found"


class ExternalServiceError(PaySyncError):
    """UISP call failed (non-2xx response or transport error)"""
    status_code = 500
    error = "External service error"

    def __init__(self, message: str = "", status: Optional[int] = None, detail: Any = None):
        super().__init__(message)
        self.status = status
        self.detail = detail


class PersistenceError(PaySyncError):
    status_code = 500
    error = "Database error"


class DuplicatePaymentError(PersistenceError):
    """Insert hit the unique constraint on transaction_id"""
    status_code = 409
    error = "Duplicate transaction"

    def __init__(self, transaction_id: str):
        super().__init__(f"Payment {transaction_id} already exists")
        self.transaction_id = transaction_id
