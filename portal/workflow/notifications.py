"""
portal/workflow/notifications.py
--------------------------------
Fire-and-forget notification sinks.

After a transition commits the service calls
    sink.emit(requisition_id, event, target_id)
once per recipient. A sink failure is logged and never undoes the
transition.

Sinks:
  LoggingNotificationSink  — writes each event to the app log (default)
  MemoryNotificationSink   — keeps events in a list (tests, diagnostics)

Select with the NOTIFICATION_SINK config key.
"""
from dataclasses import dataclass
from datetime import datetime

from flask import current_app


# Events
APPROVAL_REQUESTED = 'approval_requested'   # → the approver now assigned
SUBMITTED          = 'submitted'            # → requester
LEVEL_APPROVED     = 'level_approved'       # → requester
APPROVED           = 'approved'             # → requester
REJECTED           = 'rejected'             # → requester
RETURNED           = 'returned'             # → requester
REMINDER           = 'reminder'             # → approver sitting on it
ROUTING_GAP        = 'routing_gap'          # → admins


@dataclass(frozen=True)
class Notification:
    requisition_id: int
    event:          str
    target_id:      int
    created_at:     datetime


class NotificationSink:
    """Interface: deliver one event to one recipient."""

    def emit(self, requisition_id, event, target_id):
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):

    def emit(self, requisition_id, event, target_id):
        current_app.logger.info(
            f"Notify user {target_id}: {event} (requisition #{requisition_id})"
        )


class MemoryNotificationSink(NotificationSink):

    def __init__(self):
        self.sent = []

    def emit(self, requisition_id, event, target_id):
        self.sent.append(Notification(requisition_id, event, target_id, datetime.utcnow()))

    def events_for(self, target_id):
        return [n.event for n in self.sent if n.target_id == target_id]

    def clear(self):
        self.sent.clear()


SINKS = {
    'logging': LoggingNotificationSink,
    'memory':  MemoryNotificationSink,
}


def init_notifications(app):
    name = app.config.get('NOTIFICATION_SINK', 'logging')
    if name not in SINKS:
        raise ValueError(f'Unknown NOTIFICATION_SINK {name!r}; expected one of {sorted(SINKS)}')
    app.extensions['notification_sink'] = SINKS[name]()


def get_sink() -> NotificationSink:
    return current_app.extensions['notification_sink']


def deliver(requisition_id, event, target_ids):
    """Emit `event` to each target; failures are logged, never raised."""
    sink = get_sink()
    for target_id in dict.fromkeys(t for t in target_ids if t is not None):
        try:
            sink.emit(requisition_id, event, target_id)
        except Exception:
            current_app.logger.exception(
                f"Notification {event} to user {target_id} failed (requisition #{requisition_id})"
            )
