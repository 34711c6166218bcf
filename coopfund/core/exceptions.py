"""Error taxonomy for the loan engine.

Every error carries a human-readable ``message``, a machine-checkable
``kind`` and the HTTP status the API layer answers with.
"""
from typing import Any, Dict, Optional


class LoanEngineError(Exception):
    """Base exception for all loan engine errors."""

    status_code = 400
    default_kind = "Error"

    def __init__(self, message: str, kind: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.kind = kind or self.default_kind
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "kind": self.kind,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LoanEngineError):
    """Malformed or out-of-range input."""
    status_code = 400
    default_kind = "ValidationError"


class NotFoundError(LoanEngineError):
    """Loan, loan type, repayment or member absent."""
    status_code = 404
    default_kind = "NotFound"

    def __init__(self, entity: str, entity_id: Any = None):
        details = {"entity": entity}
        if entity_id is not None:
            details["id"] = entity_id
        super().__init__(f"{entity} not found", details=details)


class ForbiddenError(LoanEngineError):
    """Actor lacks membership or the required permission."""
    status_code = 403
    default_kind = "Forbidden"


class ConflictError(LoanEngineError):
    """Duplicate decision, response, review or submission."""
    status_code = 409
    default_kind = "Conflict"


class InvalidTransitionError(LoanEngineError):
    """Operation attempted against a loan not in the required status."""
    status_code = 409
    default_kind = "InvalidTransition"

    def __init__(self, action: str, current_status: str, loan_id: Any = None):
        details = {"action": action, "status": current_status}
        if loan_id is not None:
            details["loan_id"] = loan_id
        super().__init__(f"Cannot {action} loan with status: {current_status}", details=details)
