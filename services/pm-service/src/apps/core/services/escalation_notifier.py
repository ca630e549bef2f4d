"""
Escalation Notifier

Notification rows for the users holding the escalation roles in an asset's
organization. Used for failed-task follow-ups and the overdue sweep.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from apps.core.conf import pm_setting
from apps.core.models import Notification, RelatedEntityType, WorkOrder
from apps.core.registries import ServiceAssetRegistry, ServiceRoleDirectory
from apps.core.store import DjangoMaintenanceStore
from .history_service import MaintenanceHistoryService

logger = logging.getLogger(__name__)


class EscalationNotifier:
    """Resolves escalation recipients and writes one notification per user."""

    def __init__(self, store=None, assets=None, roles=None, history=None):
        self.store = store or DjangoMaintenanceStore()
        self.assets = assets or ServiceAssetRegistry()
        self.roles = roles or ServiceRoleDirectory()
        self.history = history or MaintenanceHistoryService(store=self.store)

    def recipients(self, organization_id: uuid.UUID) -> List[uuid.UUID]:
        """Users in any escalation role, each listed once."""
        recipients = []
        for role in pm_setting('ESCALATION_ROLES'):
            for user_id in self.roles.users_with_role(organization_id, role):
                if user_id not in recipients:
                    recipients.append(user_id)
        return recipients

    def priority_for(self, schedule_id: Optional[uuid.UUID], as_of: datetime) -> str:
        """
        HIGH, or URGENT once the schedule has failed repeatedly.

        Counts partial closures within FAILURE_WINDOW_DAYS of ``as_of``.
        """
        if schedule_id is None:
            return Notification.Priority.HIGH

        since = as_of - timedelta(days=pm_setting('FAILURE_WINDOW_DAYS'))
        failures = self.history.failure_count(schedule_id, since=since)
        if failures >= pm_setting('FAILURE_ESCALATION_THRESHOLD'):
            logger.info(f"Schedule {schedule_id} failed {failures} times since {since.isoformat()}")
            return Notification.Priority.URGENT
        return Notification.Priority.HIGH

    def notify(
        self,
        work_order: WorkOrder,
        notification_type: str,
        priority: str,
        title: str,
        message: str
    ) -> List[Notification]:
        """
        Notify every recipient about ``work_order``.

        Users already holding a notification of this type for the work order
        are skipped, so repeated calls add nothing.
        """
        asset = self.assets.get_asset(work_order.asset_id)
        already = {
            n.user_id for n in self.store.notifications_for(RelatedEntityType.WORK_ORDER, work_order.id)
            if n.type == notification_type
        }

        notifications = []
        for user_id in self.recipients(asset.organization_id):
            if user_id in already:
                continue
            notification = Notification(
                organization_id=asset.organization_id,
                user_id=user_id,
                type=notification_type,
                priority=priority,
                title=title,
                message=message,
                related_entity_type=RelatedEntityType.WORK_ORDER,
                related_entity_id=work_order.id,
                action_url=f"/work-orders/{work_order.id}",
                action_label='View Work Order',
            )
            notifications.append(self.store.insert_notification(notification))
        return notifications
