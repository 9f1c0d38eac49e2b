"""
cadet_portal/errors.py
Centralized Error Handling

Every operation of the task engine either returns its result model or raises
one of the APIError subclasses below. The set is closed: routes never build
ad hoc error payloads.

ERROR RESPONSE STRUCTURE:
{
    "success": false,
    "error": "ErrorType",
    "message": "Human-readable description",
    "code": "UNIQUE_ERROR_CODE",
    "details": {} (optional)
}

HTTP STATUS CODE DISCIPLINE:
- 400: Invalid input / missing field (rejected before any store access)
- 401: Authentication missing or expired
- 403: Permission oracle denied the capability
- 404: Task / cadet / submission does not exist
- 409: Lifecycle conflict (inactive, already claimed, full, not claimed,
       illegal transition, concurrent modification)
- 503: Ledger store unavailable, retry the whole operation
"""

import logging
from typing import Optional, Dict, Any, List
from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

logger = logging.getLogger(__name__)


class ErrorCode:
    """Unique error codes for machine-readable error handling"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    MISSING_FIELD = "MISSING_FIELD"

    AUTH_REQUIRED = "AUTH_REQUIRED"
    AUTH_INVALID = "AUTH_INVALID"

    FORBIDDEN = "FORBIDDEN"

    NOT_FOUND = "NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    CADET_NOT_FOUND = "CADET_NOT_FOUND"
    SUBMISSION_NOT_FOUND = "SUBMISSION_NOT_FOUND"

    TASK_INACTIVE = "TASK_INACTIVE"
    ALREADY_CLAIMED = "ALREADY_CLAIMED"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    NOT_CLAIMED = "NOT_CLAIMED"
    STATE_TRANSITION_INVALID = "STATE_TRANSITION_INVALID"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"

    RATE_LIMITED = "RATE_LIMITED"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


class ErrorResponse(BaseModel):
    """Standard error response model"""
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Base API exception with consistent structure"""

    def __init__(
        self,
        status_code: int,
        error: str,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.status_code = status_code
        self.error = error
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def to_response(self) -> JSONResponse:
        """Convert to FastAPI JSONResponse"""
        return JSONResponse(status_code=self.status_code, content=self.to_dict())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary"""
        result = {
            "success": False,
            "error": self.error,
            "message": self.message,
            "code": self.code
        }
        if self.details:
            result["details"] = self.details
        return result


class BadRequestError(APIError):
    """400 Bad Request - Invalid input"""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error="Bad Request",
            message=message,
            code=code,
            details=details
        )


class UnauthorizedError(APIError):
    """401 Unauthorized - Authentication required"""
    def __init__(self, message: str = "Authentication required", code: str = ErrorCode.AUTH_REQUIRED):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error="Unauthorized",
            message=message,
            code=code
        )


class ForbiddenError(APIError):
    """403 Forbidden - Capability denied"""
    def __init__(self, message: str, code: str = ErrorCode.FORBIDDEN, details: Optional[Dict] = None):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error="Forbidden",
            message=message,
            code=code,
            details=details
        )


class NotFoundError(APIError):
    """404 Not Found - Resource does not exist"""
    def __init__(self, resource: str, identifier: Any = None, code: str = ErrorCode.NOT_FOUND):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} with id '{identifier}' not found"
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error="Not Found",
            message=message,
            code=code
        )


class ConflictError(APIError):
    """409 Conflict - Base for lifecycle conflicts"""
    def __init__(
        self,
        message: str,
        code: str = ErrorCode.CONCURRENT_MODIFICATION,
        error: str = "Conflict",
        details: Optional[Dict] = None
    ):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            error=error,
            message=message,
            code=code,
            details=details
        )


class TaskInactiveError(ConflictError):
    """Task is closed for new claims"""
    def __init__(self, task_id: int):
        super().__init__(
            f"Task {task_id} is not accepting claims",
            code=ErrorCode.TASK_INACTIVE,
            error="Inactive",
            details={"task_id": task_id}
        )


class AlreadyClaimedError(ConflictError):
    """Cadet already holds a submission row for this task"""
    def __init__(self, task_id: int, cadet_id: int):
        super().__init__(
            "This task has already been taken by the cadet",
            code=ErrorCode.ALREADY_CLAIMED,
            error="Already Claimed",
            details={"task_id": task_id, "cadet_id": cadet_id}
        )


class CapacityExceededError(ConflictError):
    """All participant slots are taken"""
    def __init__(self, task_id: int, max_participants: int):
        super().__init__(
            "Maximum number of participants reached",
            code=ErrorCode.CAPACITY_EXCEEDED,
            error="Capacity Exceeded",
            details={"task_id": task_id, "max_participants": max_participants}
        )


class NotClaimedError(ConflictError):
    """No open claim to act on"""
    def __init__(self, task_id: int, cadet_id: int):
        super().__init__(
            "No open claim for this task (never taken or already submitted)",
            code=ErrorCode.NOT_CLAIMED,
            error="Not Claimed",
            details={"task_id": task_id, "cadet_id": cadet_id}
        )


class InvalidStateError(ConflictError):
    """Illegal submission state transition"""
    def __init__(self, from_state: str, to_state: str, allowed_states: Optional[List[str]] = None):
        super().__init__(
            f"Cannot transition {from_state} -> {to_state}",
            code=ErrorCode.STATE_TRANSITION_INVALID,
            error="Invalid State",
            details={
                "from_state": from_state,
                "to_state": to_state,
                "allowed": allowed_states or []
            }
        )


class StoreUnavailableError(APIError):
    """503 - Transient store failure; the whole operation is safe to retry"""
    def __init__(self, message: str = "Data store temporarily unavailable. Please retry.", log_id: Optional[str] = None):
        details = {"log_id": log_id, "retryable": True} if log_id else {"retryable": True}
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            error="Service Unavailable",
            message=message,
            code=ErrorCode.SERVICE_UNAVAILABLE,
            details=details
        )


def validate_positive_int(value: int, field_name: str):
    """Validate that a value is a positive integer"""
    if value is None or value <= 0:
        raise BadRequestError(
            f"{field_name} must be a positive integer",
            details={"field": field_name, "value": value}
        )


def validate_non_negative_int(value: int, field_name: str):
    """Validate that a value is zero or a positive integer"""
    if value is None or value < 0:
        raise BadRequestError(
            f"{field_name} must not be negative",
            details={"field": field_name, "value": value}
        )


def validate_not_empty(value: Optional[str], field_name: str):
    """Validate that a string is not empty"""
    if value is None or value.strip() == "":
        raise BadRequestError(
            f"{field_name} cannot be empty",
            code=ErrorCode.MISSING_FIELD,
            details={"field": field_name}
        )


def validate_enum(value: str, allowed_values: List[str], field_name: str):
    """Validate that a value is in an allowed list"""
    if value not in allowed_values:
        raise BadRequestError(
            f"Invalid {field_name}. Must be one of: {', '.join(allowed_values)}",
            details={"field": field_name, "value": value, "allowed": allowed_values}
        )


def store_unavailable(error: Exception, context: str = "") -> StoreUnavailableError:
    """Log a store failure and build the retryable error to raise"""
    import uuid
    log_id = str(uuid.uuid4())[:8]
    logger.error(f"[{log_id}] Store failure in {context}: {type(error).__name__}: {str(error)}")
    return StoreUnavailableError(log_id=log_id)


def get_error_summary() -> Dict[str, Any]:
    """Return summary of error handling system for documentation"""
    return {
        "service": "cadet-portal-error-handler",
        "response_structure": {
            "success": "boolean (always false for errors)",
            "error": "string (error type)",
            "message": "string (human-readable)",
            "code": "string (machine-readable)",
            "details": "object (optional)"
        },
        "error_codes": [
            attr for attr in dir(ErrorCode)
            if not attr.startswith('_')
        ]
    }
