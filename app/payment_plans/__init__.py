"""
Payment plans app.

This app handles:
- Splitting an order total into 2-12 installments
- Applying gateway webhooks (installment paid, suspended, cancelled) exactly once
- Marking the order paid when the last installment lands

Related apps:
    - core: Base models, exceptions and the service result type

Usage:
    from payment_plans.services import PlanService, get_plan_state_machine
    from payment_plans.webhooks.normalizer import get_event_normalizer

    plan = PlanService.create_plan("Q-1001", "2980.00", 3)
    event = get_event_normalizer().normalize(envelope)
    get_plan_state_machine().apply(event)
"""
