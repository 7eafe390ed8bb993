"""
Tests for the application exception hierarchy.
"""

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError
from payment_plans.exceptions import (
    LockAcquisitionError,
    NotificationFailure,
    StaleRecordError,
    StorageFailure,
)


class TestBaseApplicationError:
    def test_defaults(self):
        error = BaseApplicationError("Something broke")

        assert error.error_code == "APPLICATION_ERROR"
        assert error.details == {}
        assert str(error) == "[APPLICATION_ERROR] Something broke"

    def test_to_dict_includes_details(self):
        error = ConflictError("Plan has been modified", details={"expected_version": 3})

        assert error.to_dict() == {
            "error": "Plan has been modified",
            "error_code": "CONFLICT",
            "details": {"expected_version": 3},
        }

    def test_repr(self):
        error = BaseApplicationError("x", error_code="X")

        assert repr(error) == "BaseApplicationError(message='x', error_code='X', details={})"


class TestPaymentPlanErrors:
    def test_conflicts_are_retryable(self):
        assert issubclass(StaleRecordError, ConflictError)
        assert issubclass(LockAcquisitionError, ConflictError)
        assert StaleRecordError("x").is_retryable
        assert LockAcquisitionError("x").is_retryable

    def test_storage_failure_is_retryable(self):
        assert StorageFailure("x").is_retryable

    def test_notification_failure_is_external(self):
        error = NotificationFailure("Slack down")

        assert isinstance(error, ExternalServiceError)
        assert error.error_code == "NOTIFICATION_FAILURE"
