"""
Maintenance History Service

Records work order closures and answers history/compliance queries.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

from django.utils import timezone

from apps.core.exceptions import HistoryImmutableError
from apps.core.models import MaintenanceHistory, WorkOrder, WorkOrderTask
from apps.core.store import DjangoMaintenanceStore

logger = logging.getLogger(__name__)


class MaintenanceHistoryService:
    """
    Append-only recorder; exactly one row per work order closure.
    No update or delete operations exist.
    """

    def __init__(self, store=None):
        self.store = store or DjangoMaintenanceStore()

    def record(
        self,
        work_order: WorkOrder,
        tasks: List[WorkOrderTask],
        is_completed: bool,
        closed_at: datetime = None,
        performed_by_id: uuid.UUID = None
    ) -> MaintenanceHistory:
        """Mirror a work order closure into history."""
        if self.store.history_for_work_order(work_order.id) is not None:
            raise HistoryImmutableError(
                f"Work order {work_order.human_id} already has a history record"
            )

        failed = [t for t in tasks if t.status == WorkOrderTask.Status.FAILED]
        history = MaintenanceHistory(
            organization_id=work_order.organization_id,
            asset_id=work_order.asset_id,
            work_order_id=work_order.id,
            pm_schedule_id=work_order.pm_schedule_id,
            type=(
                MaintenanceHistory.MaintenanceType.PREVENTIVE
                if work_order.pm_schedule_id
                else MaintenanceHistory.MaintenanceType.CORRECTIVE
            ),
            title=work_order.title,
            description=work_order.description,
            duration_minutes=sum(t.actual_minutes or 0 for t in tasks),
            is_completed=is_completed,
            completed_at=closed_at or timezone.now(),
            performed_by_id=performed_by_id or work_order.assigned_to_id,
            failed_task_ids=[str(t.id) for t in failed],
            notes=self._summarize(tasks, failed),
        )
        self.store.insert_history(history)

        logger.info(
            f"Recorded {'completed' if is_completed else 'partial'} history "
            f"for work order {work_order.human_id}"
        )
        return history

    @staticmethod
    def _summarize(tasks: List[WorkOrderTask], failed: List[WorkOrderTask]) -> str:
        if failed:
            titles = ', '.join(f"#{t.order_index} {t.title}" for t in failed)
            return f"{len(failed)} of {len(tasks)} tasks failed: {titles}"
        skipped = sum(1 for t in tasks if t.status == WorkOrderTask.Status.SKIPPED)
        if skipped:
            return f"{len(tasks) - skipped} of {len(tasks)} tasks completed, {skipped} skipped"
        return f"All {len(tasks)} tasks completed"

    # ==========================================================================
    # Queries
    # ==========================================================================

    def for_work_order(self, work_order_id: uuid.UUID) -> Optional[MaintenanceHistory]:
        return self.store.history_for_work_order(work_order_id)

    def history_for_asset(self, asset_id: uuid.UUID, limit: int = 50) -> List[MaintenanceHistory]:
        return self.store.history_for_asset(asset_id, limit=limit)

    def failure_count(self, schedule_id: uuid.UUID, since: datetime = None) -> int:
        """Number of partial closures of a schedule's work orders."""
        return sum(
            1 for h in self.store.history_for_schedule(schedule_id, since=since)
            if not h.is_completed
        )

    def compliance_summary(
        self,
        organization_id: uuid.UUID,
        days: int = 30,
        as_of: datetime = None
    ) -> Dict[str, Any]:
        """PM completion figures for an organization over the last ``days``."""
        as_of = as_of or timezone.now()
        since = as_of - timedelta(days=days)
        rows = [
            h for h in self.store.history_for_organization(organization_id, since=since)
            if h.completed_at <= as_of
            and h.type == MaintenanceHistory.MaintenanceType.PREVENTIVE
        ]

        total = len(rows)
        completed = sum(1 for h in rows if h.is_completed)
        return {
            'organization_id': str(organization_id),
            'period_days': days,
            'total': total,
            'completed': completed,
            'partial': total - completed,
            'completion_rate': round(completed / total * 100, 1) if total else 0.0,
            'total_duration_minutes': sum(h.duration_minutes for h in rows),
        }
