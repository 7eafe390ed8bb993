"""
Best-effort notifications for committed payment plan transitions.

- NotificationDispatcher: Enqueues delivery after commit
- deliver: Fans a transition out to every sink, isolating failures
- Sinks: Slack, GoHighLevel CRM, logging
"""

from payment_plans.notifications.dispatcher import NotificationDispatcher, deliver
from payment_plans.notifications.sinks import (
    CrmNotificationSink,
    LoggingNotificationSink,
    NotificationSink,
    SlackNotificationSink,
    get_notification_sinks,
)

__all__ = [
    "CrmNotificationSink",
    "LoggingNotificationSink",
    "NotificationDispatcher",
    "NotificationSink",
    "SlackNotificationSink",
    "deliver",
    "get_notification_sinks",
]
