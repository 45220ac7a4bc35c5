"""
Error Handling Module for the Incentive Engine

This module provides centralized error handling with:
- Custom exception hierarchy for the domain error kinds
- A typed Result returned by every public engine operation
- Helpers to convert exceptions into Result failures
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar, Union
from uuid import UUID
import logging

# Configure logging
logger = logging.getLogger("incentive_engine.errors")

T = TypeVar("T")


class ErrorCode(str, Enum):
    """Standardized error codes for the application"""

    # Validation Errors
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    INVALID_DATE_RANGE = "INVALID_DATE_RANGE"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    CURRENCY_MISMATCH = "CURRENCY_MISMATCH"
    INVALID_PLAN_CONFIGURATION = "INVALID_PLAN_CONFIGURATION"

    # Authorization Errors
    UNAUTHORIZED = "UNAUTHORIZED"

    # Resource Errors
    NOT_FOUND = "NOT_FOUND"
    CALCULATION_NOT_FOUND = "CALCULATION_NOT_FOUND"
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    APPROVAL_NOT_FOUND = "APPROVAL_NOT_FOUND"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # Business Logic Errors
    INVALID_STATE = "INVALID_STATE"
    NO_APPLICABLE_SLAB = "NO_APPLICABLE_SLAB"


class AppException(Exception):
    """Base exception for all application exceptions"""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.field = field
        self.original_error = original_error
        self.timestamp = datetime.utcnow()
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a serializable dictionary"""
        result = {
            "code": self.code.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat() + "Z",
        }
        if self.field:
            result["field"] = self.field
        if self.details:
            result["details"] = self.details
        return result


# ============================================================================
# Validation Exceptions
# ============================================================================

class ValidationException(AppException):
    """Malformed input, rejected before any state change"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ):
        super().__init__(
            code=code,
            message=message,
            details=details,
            field=field,
        )


class InvalidDateRangeException(ValidationException):
    """Invalid date range"""

    def __init__(self, start_date: str, end_date: str, message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid date range: {start_date} to {end_date}. Start date must not be after end date.",
            code=ErrorCode.INVALID_DATE_RANGE,
            details={"start_date": start_date, "end_date": end_date},
        )


class InvalidAmountException(ValidationException):
    """Invalid monetary amount"""

    def __init__(self, amount: Any, field: str = "amount", message: Optional[str] = None):
        super().__init__(
            message=message or f"Invalid amount: {amount}.",
            field=field,
            code=ErrorCode.INVALID_AMOUNT,
            details={"provided_amount": str(amount)},
        )


class CurrencyMismatchException(ValidationException):
    """Arithmetic or comparison across two currencies"""

    def __init__(self, left: str, right: str):
        super().__init__(
            message=f"Cannot combine amounts in different currencies: {left} and {right}",
            code=ErrorCode.CURRENCY_MISMATCH,
            details={"left_currency": left, "right_currency": right},
        )


# ============================================================================
# Authorization Exceptions
# ============================================================================

class UnauthorizedException(AppException):
    """Actor is not the current holder of an approval"""

    def __init__(
        self,
        actor_id: Union[str, UUID],
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = {"actor_id": str(actor_id)}
        _details.update(details or {})
        super().__init__(
            code=ErrorCode.UNAUTHORIZED,
            message=message or f"User {actor_id} is not authorized to act on this approval",
            details=_details,
        )


# ============================================================================
# Resource Exceptions
# ============================================================================

class NotFoundException(AppException):
    """Resource not found exception"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[Union[str, UUID]] = None,
        message: Optional[str] = None,
        code: ErrorCode = ErrorCode.NOT_FOUND,
    ):
        if message is None:
            if resource_id:
                message = f"{resource_type} with ID '{resource_id}' not found"
            else:
                message = f"{resource_type} not found"
        super().__init__(
            code=code,
            message=message,
            details={"resource_type": resource_type, "resource_id": str(resource_id) if resource_id else None},
        )


class ConcurrencyConflictException(AppException):
    """Version mismatch on a conditional write; caller should reload and retry"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Union[str, UUID],
        expected_version: Optional[int] = None,
        message: Optional[str] = None,
    ):
        details: Dict[str, Any] = {"resource_type": resource_type, "resource_id": str(resource_id)}
        if expected_version is not None:
            details["expected_version"] = expected_version
        super().__init__(
            code=ErrorCode.CONCURRENCY_CONFLICT,
            message=message or f"{resource_type} '{resource_id}' was modified concurrently",
            details=details,
        )


# ============================================================================
# Business Logic Exceptions
# ============================================================================

class InvalidStateException(AppException):
    """Operation is not legal from the current status"""

    def __init__(
        self,
        message: str,
        current_status: Optional[str] = None,
        action: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        _details = details or {}
        if current_status:
            _details["current_status"] = current_status
        if action:
            _details["action"] = action
        super().__init__(
            code=ErrorCode.INVALID_STATE,
            message=message,
            details=_details,
        )


class NoApplicableSlabException(AppException):
    """Slab table does not cover the achievement value; the plan needs correcting"""

    def __init__(self, achievement_pct: Any, plan_id: Optional[Union[str, UUID]] = None):
        details = {"achievement_percentage": str(achievement_pct)}
        if plan_id:
            details["plan_id"] = str(plan_id)
        super().__init__(
            code=ErrorCode.NO_APPLICABLE_SLAB,
            message=f"No slab covers an achievement of {achievement_pct}%",
            details=details,
        )


# ============================================================================
# Result
# ============================================================================

@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of an engine operation: a value or a typed domain error."""

    value: Optional[T] = None
    error: Optional[AppException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def error_code(self) -> Optional[ErrorCode]:
        return self.error.code if self.error else None

    @classmethod
    def success(cls, value: T = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AppException) -> "Result[T]":
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.value

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"ok": False, "error": self.error.to_dict()}
        return {"ok": True}


def failure_from(exc: AppException, operation: str) -> Result:
    """Log a domain failure and wrap it in a Result."""
    if isinstance(exc, ConcurrencyConflictException):
        logger.warning(f"{operation} lost a concurrent update: {exc.message}")
    else:
        logger.info(f"{operation} rejected [{exc.code.value}]: {exc.message}")
    return Result.failure(exc)
