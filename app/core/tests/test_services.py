"""
Tests for ServiceResult and BaseService.
"""

from core.exceptions import ConflictError
from core.services import BaseService, ServiceResult


class TestServiceResult:
    def test_success(self):
        result = ServiceResult.success({"run_id": "r1"})

        assert bool(result) is True
        assert result.to_response() == {"success": True, "data": {"run_id": "r1"}}

    def test_failure(self):
        result = ServiceResult.failure("Run already in progress", "RUN_LOCKED")

        assert bool(result) is False
        assert result.to_response() == {
            "success": False,
            "error": "Run already in progress",
            "error_code": "RUN_LOCKED",
        }

    def test_failure_with_field_errors(self):
        result = ServiceResult.failure("Invalid", errors={"amount_minor": ["Must be positive"]})

        assert result.to_response()["errors"] == {"amount_minor": ["Must be positive"]}
        assert "error_code" not in result.to_response()

    def test_from_application_error_keeps_code_and_message(self):
        result = ServiceResult.from_exception(ConflictError("Payment in progress"))

        assert result.error == "Payment in progress"
        assert result.error_code == "CONFLICT"

    def test_from_plain_exception(self):
        result = ServiceResult.from_exception(RuntimeError("db gone"))

        assert result.error == "db gone"
        assert result.error_code == "RUNTIMEERROR"

    def test_explicit_error_code_wins(self):
        result = ServiceResult.from_exception(ConflictError("x"), error_code="RECONCILIATION_FAILED")

        assert result.error_code == "RECONCILIATION_FAILED"


class TestBaseService:
    def test_logger_named_after_service(self):
        class ReportService(BaseService):
            pass

        assert ReportService.get_logger().name == f"{__name__}.ReportService"
