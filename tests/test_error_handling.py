"""
Incentive Engine - Error Handling Tests
"""

import pytest
from uuid import uuid4

from app.utils.error_handling import (
    ConcurrencyConflictException,
    ErrorCode,
    InvalidStateException,
    NoApplicableSlabException,
    NotFoundException,
    Result,
    UnauthorizedException,
    ValidationException,
    failure_from,
)


class TestExceptions:
    """Test exception codes and serialization."""

    def test_validation_to_dict(self):
        data = ValidationException("Bad value", field="actual_value").to_dict()

        assert data["code"] == "VALIDATION_ERROR"
        assert data["field"] == "actual_value"
        assert data["timestamp"].endswith("Z")

    def test_not_found_with_specific_code(self):
        resource_id = uuid4()
        exc = NotFoundException("Calculation", resource_id, code=ErrorCode.CALCULATION_NOT_FOUND)

        assert exc.code == ErrorCode.CALCULATION_NOT_FOUND
        assert str(resource_id) in exc.message

    def test_concurrency_conflict_details(self):
        exc = ConcurrencyConflictException("Calculation", "abc", expected_version=3)

        assert exc.code == ErrorCode.CONCURRENCY_CONFLICT
        assert exc.details == {"resource_type": "Calculation", "resource_id": "abc", "expected_version": 3}

    def test_invalid_state_details(self):
        exc = InvalidStateException("nope", current_status="paid", action="cancel")
        assert exc.details == {"current_status": "paid", "action": "cancel"}

    def test_unauthorized_and_slab_codes(self):
        assert UnauthorizedException(uuid4()).code == ErrorCode.UNAUTHORIZED
        assert NoApplicableSlabException("85").code == ErrorCode.NO_APPLICABLE_SLAB


class TestResult:
    """Test the Result wrapper."""

    def test_success(self):
        result = Result.success(5)

        assert result.ok
        assert result.error_code is None
        assert result.unwrap() == 5
        assert result.to_dict() == {"ok": True}

    def test_failure_unwrap_raises(self):
        result = failure_from(InvalidStateException("Cannot submit"), "submit_for_approval")

        assert not result.ok
        assert result.error_code == ErrorCode.INVALID_STATE
        with pytest.raises(InvalidStateException):
            result.unwrap()
        assert result.to_dict()["error"]["message"] == "Cannot submit"
