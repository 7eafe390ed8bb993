"""
Payment plan services.

- PlanService: Plan creation and the out-of-band first payment
- PlanStateMachine: Applies normalized gateway events to plans

Usage:
    from payment_plans.services import PlanService, get_plan_state_machine

    plan = PlanService.create_plan("Q-1001", "2980.00", 3)
    outcome = get_plan_state_machine().apply(event)
"""

from payment_plans.services.plan_service import PlanService, PlanStatusSnapshot
from payment_plans.services.state_machine import (
    PlanStateMachine,
    TransitionOutcome,
    TransitionResult,
    get_plan_state_machine,
)

__all__ = [
    "PlanService",
    "PlanStateMachine",
    "PlanStatusSnapshot",
    "TransitionOutcome",
    "TransitionResult",
    "get_plan_state_machine",
]
