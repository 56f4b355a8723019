"""
Domain errors raised by the approval workflow.

Each error carries a machine-readable code and the HTTP status the API boundary
reports it with; see the handler registered in main.py.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    NO_PENDING_STEP = "NO_PENDING_STEP"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


class WorkflowError(Exception):
    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            }
        }


class ValidationError(WorkflowError):
    """Client input is malformed or inconsistent; nothing was written."""
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class ConfigurationError(WorkflowError):
    """A flow template or group approver mapping cannot produce an approval chain."""
    code = ErrorCode.CONFIGURATION_ERROR
    status_code = 400


class NoPendingStepError(WorkflowError):
    code = ErrorCode.NO_PENDING_STEP
    status_code = 400

    def __init__(self, message: str = "No pending step found for this approver on this request",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)


class NotFoundError(WorkflowError):
    code = ErrorCode.NOT_FOUND
    status_code = 404


class ForbiddenError(WorkflowError):
    code = ErrorCode.FORBIDDEN
    status_code = 403


class PersistenceError(WorkflowError):
    """Storage failure; the surrounding transaction was rolled back."""
    code = ErrorCode.PERSISTENCE_ERROR
    status_code = 500
