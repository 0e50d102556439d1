"""Tests for ServiceResult and BaseService."""

import logging

from core.exceptions import ConflictError, NotFoundError
from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"booking_id": "b-1"})

        assert result.success is True
        assert result.data == {"booking_id": "b-1"}
        assert result.error is None
        assert bool(result) is True

    def test_failure(self):
        result = ServiceResult.failure(
            "Completion code expired",
            error_code="OTP_EXPIRED_OR_EXHAUSTED",
            details={"remaining_attempts": 0},
        )

        assert result.success is False
        assert result.data is None
        assert result.error_code == "OTP_EXPIRED_OR_EXHAUSTED"
        assert result.details == {"remaining_attempts": 0}
        assert bool(result) is False

    def test_from_application_error_keeps_code_and_details(self):
        exc = ConflictError(
            "Lock is held",
            error_code="LOCK_ACQUISITION_FAILED",
            details={"key": "lock:payout:1"},
        )

        result = ServiceResult.from_exception(exc)

        assert result.error == "Lock is held"
        assert result.error_code == "LOCK_ACQUISITION_FAILED"
        assert result.details == {"key": "lock:payout:1"}

    def test_from_exception_code_override(self):
        result = ServiceResult.from_exception(NotFoundError("gone"), error_code="ORDER_GONE")

        assert result.error_code == "ORDER_GONE"

    def test_from_plain_exception_uses_class_name(self):
        result = ServiceResult.from_exception(ValueError("bad amount"))

        assert result.error == "bad amount"
        assert result.error_code == "VALUEERROR"
        assert result.details is None

    def test_success_response(self):
        assert ServiceResult.success([1, 2]).to_response() == {"success": True, "data": [1, 2]}

    def test_failure_response_omits_empty_fields(self):
        response = ServiceResult.failure("Nope").to_response()

        assert response == {"success": False, "error": "Nope"}

    def test_failure_response_includes_field_errors(self):
        result = ServiceResult.failure(
            "Invalid destination",
            error_code="VALIDATION_ERROR",
            errors={"ifsc": ["This field is required."]},
        )

        assert result.to_response() == {
            "success": False,
            "error": "Invalid destination",
            "error_code": "VALIDATION_ERROR",
            "errors": {"ifsc": ["This field is required."]},
        }


class TestBaseService:
    def test_logger_is_named_after_service(self):
        class PayoutService(BaseService):
            pass

        logger = PayoutService.get_logger()

        assert isinstance(logger, logging.Logger)
        assert logger.name == f"{__name__}.PayoutService"
