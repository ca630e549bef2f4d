"""
PM Service Events

Domain events published after the owning transaction commits.
"""

import json
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Any
from uuid import UUID

from django.utils import timezone

from shared.common import metrics

logger = logging.getLogger(__name__)


class DecimalEncoder(json.JSONEncoder):
    """Custom JSON encoder for Decimal types."""

    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class PMEventTypes:
    """Event type constants for the PM service."""

    WORK_ORDER_GENERATED = 'pm.work_order.generated'
    WORK_ORDER_COMPLETED = 'pm.work_order.completed'
    WORK_ORDER_ESCALATED = 'pm.work_order.escalated'
    WORK_ORDER_OVERDUE = 'pm.work_order.overdue'
    TRIGGER_EVENT_FIRED = 'pm.trigger.event_fired'
    METER_DECREASE_DETECTED = 'pm.meter.decrease_detected'


class PMEventPublisher:
    """
    Publisher for PM service events.

    Events are serialized and written to the service log; a broker-backed
    transport can subclass and override ``_send``. Failures are logged and
    never raised.
    """

    def _serialize_event(self, event_type: str, data: Dict[str, Any]) -> str:
        event = {
            'event_type': event_type,
            'timestamp': timezone.now().isoformat(),
            'service': 'pm-service',
            'data': data,
        }
        return json.dumps(event, cls=DecimalEncoder)

    def _send(self, event_type: str, message: str) -> None:
        logger.info(f"Publishing event: {event_type}")
        logger.debug(f"Event data: {message}")

    def publish(self, event_type: str, data: Dict[str, Any]) -> bool:
        """Publish an event."""
        try:
            message = self._serialize_event(event_type, data)
            self._send(event_type, message)
            metrics.record_event_published(event_type)
            return True
        except Exception as e:
            logger.error(f"Failed to publish event {event_type}: {e}")
            return False

    # ==========================================================================
    # Work Order Events
    # ==========================================================================

    def work_order_generated(self, work_order, task_count: int) -> bool:
        return self.publish(PMEventTypes.WORK_ORDER_GENERATED, {
            'work_order_id': str(work_order.id),
            'human_id': work_order.human_id,
            'organization_id': str(work_order.organization_id),
            'asset_id': str(work_order.asset_id),
            'pm_schedule_id': str(work_order.pm_schedule_id),
            'priority': work_order.priority,
            'task_count': task_count,
        })

    def work_order_completed(self, work_order, history) -> bool:
        return self.publish(PMEventTypes.WORK_ORDER_COMPLETED, {
            'work_order_id': str(work_order.id),
            'human_id': work_order.human_id,
            'organization_id': str(work_order.organization_id),
            'asset_id': str(work_order.asset_id),
            'history_id': str(history.id),
            'duration_minutes': history.duration_minutes,
            'completed_at': work_order.completed_at,
        })

    def work_order_escalated(self, work_order, follow_up, notified_user_ids) -> bool:
        """Publish partial completion escalated into a follow-up work order."""
        return self.publish(PMEventTypes.WORK_ORDER_ESCALATED, {
            'work_order_id': str(work_order.id),
            'follow_up_work_order_id': str(follow_up.id),
            'follow_up_human_id': follow_up.human_id,
            'organization_id': str(work_order.organization_id),
            'asset_id': str(work_order.asset_id),
            'pm_schedule_id': str(work_order.pm_schedule_id) if work_order.pm_schedule_id else None,
            'due_date': follow_up.due_date,
            'notified_user_ids': [str(user_id) for user_id in notified_user_ids],
        })

    def work_order_overdue(self, work_order, days_overdue: int, notified_user_ids) -> bool:
        return self.publish(PMEventTypes.WORK_ORDER_OVERDUE, {
            'work_order_id': str(work_order.id),
            'human_id': work_order.human_id,
            'organization_id': str(work_order.organization_id),
            'asset_id': str(work_order.asset_id),
            'pm_schedule_id': str(work_order.pm_schedule_id),
            'due_date': work_order.due_date,
            'days_overdue': days_overdue,
            'priority': work_order.priority,
            'notified_user_ids': [str(user_id) for user_id in notified_user_ids],
        })

    # ==========================================================================
    # Trigger & Meter Events
    # ==========================================================================

    def trigger_event_fired(self, trigger) -> bool:
        return self.publish(PMEventTypes.TRIGGER_EVENT_FIRED, {
            'trigger_id': str(trigger.id),
            'pm_schedule_id': str(trigger.pm_schedule_id),
            'fired_at': trigger.event_fired_at,
        })

    def meter_decrease_detected(self, reading, previous) -> bool:
        return self.publish(PMEventTypes.METER_DECREASE_DETECTED, {
            'reading_id': str(reading.id),
            'asset_id': str(reading.asset_id),
            'meter_type': reading.meter_type,
            'value': reading.value,
            'previous_value': previous.value,
        })


# Singleton instance
event_publisher = PMEventPublisher()
