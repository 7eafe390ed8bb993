"""
Installment amount calculator.

Splits an order total into ``n`` installments. Every installment after the
first is the total divided by ``n`` and floored to the cent. The first
installment absorbs the leftover cents, so the schedule always sums to the
total exactly.

Usage:
    from payment_plans.calculator import compute_schedule, validate_plan

    schedule = compute_schedule(Decimal("2980.00"), 3)
    schedule.first_payment          # Decimal("993.34")
    schedule.recurring_amount       # Decimal("993.33")
    schedule.remaining_occurrences  # 2

    validate_plan("1.50", 3)
    # PlanValidation(valid=False, error="Minimum payment would be $0.50. ...")
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING

from payment_plans.exceptions import InvalidPlanParameters

if TYPE_CHECKING:
    from typing import Any


CENT = Decimal("0.01")
MIN_PAYMENT = Decimal("1.00")
MIN_INSTALLMENTS = 2
MAX_INSTALLMENTS = 12


@dataclass(frozen=True)
class InstallmentSchedule:
    """
    Rounded installment schedule.

    Attributes:
        first_payment: Charged up front; includes the rounding remainder
        recurring_amount: Charged for each of the remaining installments
        remaining_occurrences: Installments billed by the gateway subscription
        installments: Total number of installments
        total_amount: The quantized total the schedule was built from
    """

    first_payment: Decimal
    recurring_amount: Decimal
    remaining_occurrences: int
    installments: int
    total_amount: Decimal

    def amounts(self) -> list[Decimal]:
        """Per-installment amounts in payment order."""
        return [self.first_payment] + [self.recurring_amount] * self.remaining_occurrences

    def to_dict(self) -> dict[str, Any]:
        return {
            "first_payment": str(self.first_payment),
            "recurring_amount": str(self.recurring_amount),
            "remaining_occurrences": self.remaining_occurrences,
            "installments": self.installments,
            "total_amount": str(self.total_amount),
        }


@dataclass(frozen=True)
class PlanValidation:
    valid: bool
    error: str | None = None
    schedule: InstallmentSchedule | None = None


def to_amount(value: Any) -> Decimal | None:
    """
    Coerce a user-supplied amount to a cent-quantized Decimal.

    Returns None for anything that is not a finite number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = Decimal(str(value).strip())
        if not amount.is_finite():
            return None
        # Raises InvalidOperation when the value has too many digits
        return amount.quantize(CENT, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError):
        return None


def _check_installments(installments: Any) -> bool:
    return (
        isinstance(installments, int)
        and not isinstance(installments, bool)
        and MIN_INSTALLMENTS <= installments <= MAX_INSTALLMENTS
    )


def compute_schedule(total_amount: Any, installments: int) -> InstallmentSchedule:
    """
    Split ``total_amount`` into ``installments`` rounded payments.

    Args:
        total_amount: Decimal, int, float or numeric string; quantized to cents
        installments: Integer in [2, 12]

    Returns:
        InstallmentSchedule whose first + recurring * (n - 1) == total

    Raises:
        InvalidPlanParameters: If the total is not positive or the count is
            out of range
    """
    total = to_amount(total_amount)
    if total is None or total <= 0:
        raise InvalidPlanParameters(
            "Total amount must be greater than 0",
            details={"total_amount": str(total_amount)},
        )
    if not _check_installments(installments):
        raise InvalidPlanParameters(
            f"Installments must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}",
            details={"installments": installments},
        )

    base = (total * 100 / installments).to_integral_value(rounding=ROUND_FLOOR) * CENT
    remainder = (total - base * installments).quantize(CENT, rounding=ROUND_HALF_UP)
    first = (base + remainder).quantize(CENT, rounding=ROUND_HALF_UP)

    return InstallmentSchedule(
        first_payment=first,
        recurring_amount=base,
        remaining_occurrences=installments - 1,
        installments=installments,
        total_amount=total,
    )


def validate_plan(total_amount: Any, installments: Any) -> PlanValidation:
    """
    Check a plan configuration before it is submitted.

    Applies the compute_schedule constraints plus a $1.00 floor on the total
    and on each installment. Never raises.
    """
    total = to_amount(total_amount)
    if total is None or total == 0:
        return PlanValidation(valid=False, error="Invalid total amount")
    if total < MIN_PAYMENT:
        return PlanValidation(valid=False, error="Total amount must be at least $1")
    if isinstance(installments, bool) or not isinstance(installments, int):
        return PlanValidation(valid=False, error="Invalid number of installments")
    if not _check_installments(installments):
        return PlanValidation(
            valid=False,
            error=f"Installments must be between {MIN_INSTALLMENTS} and {MAX_INSTALLMENTS}",
        )

    schedule = compute_schedule(total, installments)
    if schedule.recurring_amount < MIN_PAYMENT:
        return PlanValidation(
            valid=False,
            error=(
                f"Minimum payment would be ${schedule.recurring_amount}. "
                "Each payment must be at least $1.00"
            ),
            schedule=schedule,
        )

    return PlanValidation(valid=True, schedule=schedule)
