"""
Payment plan exceptions.

Exception Hierarchy:
    PaymentPlanError (base for the payment plan domain)
    ├── InvalidPlanParameters - Plan cannot be built from the given total/count
    ├── StorageFailure - Durable store rejected a read or write (retryable)
    └── NotificationFailure - Outbound notification sink failed (also an ExternalServiceError)

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock timeout (inherits ConflictError)

Usage:
    from payment_plans.exceptions import InvalidPlanParameters, StorageFailure

    raise InvalidPlanParameters(
        "Installments must be between 2 and 12",
        details={"installments": 13},
    )

Note:
    A plan that cannot be found for a webhook is not an error. The state
    machine reports it as TransitionOutcome.PLAN_NOT_FOUND instead.
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError


# =============================================================================
# Payment Plan Domain Exceptions
# =============================================================================


class PaymentPlanError(BaseApplicationError):
    """
    Base exception for payment plan operations.

    Attributes:
        is_retryable: Whether the webhook sender should redeliver the event
    """

    default_error_code: str = "PAYMENT_PLAN_ERROR"
    is_retryable: bool = False


class InvalidPlanParameters(PaymentPlanError):
    """
    Raised when a plan cannot be created from the given parameters.

    Use for:
    - Non-positive or unparseable total amount
    - Installment count outside [2, 12]

    Only raised on plan creation, never while handling a webhook.
    """

    default_error_code: str = "INVALID_PLAN_PARAMETERS"


class StorageFailure(PaymentPlanError):
    """
    Raised when the plan store cannot complete a read or write.

    Wraps django.db.DatabaseError. The webhook endpoint answers 503 so the
    gateway redelivers the event.
    """

    default_error_code: str = "STORAGE_FAILURE"
    is_retryable: bool = True


class NotificationFailure(PaymentPlanError, ExternalServiceError):
    """
    Raised by a notification sink when its outbound call fails.

    Always caught at the dispatch boundary and logged.
    """

    default_error_code: str = "NOTIFICATION_FAILURE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when a compare-and-swap on Plan.version finds a newer version.

    The state machine re-reads the plan and retries the transition a
    bounded number of times before letting this surface.

    Attributes:
        details: Contains pk, expected_version, and current_version
    """

    default_error_code: str = "STALE_RECORD"
    is_retryable: bool = True


class LockAcquisitionError(ConflictError):
    """
    Raised when the per-subscription distributed lock cannot be acquired.

    Attributes:
        details: Contains key and timeout information
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
    is_retryable: bool = True


__all__ = [
    "PaymentPlanError",
    "InvalidPlanParameters",
    "StorageFailure",
    "NotificationFailure",
    "StaleRecordError",
    "LockAcquisitionError",
]
