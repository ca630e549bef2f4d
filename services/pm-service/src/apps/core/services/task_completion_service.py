"""
Task Completion Service

Applies work order task transitions and closes the work order once every
task is terminal: completed when nothing failed, otherwise canceled and
escalated into an expedited follow-up work order.
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Dict, Any, List

from django.utils import timezone

from shared.common import metrics
from apps.core.conf import pm_setting
from apps.core.events import event_publisher
from apps.core.exceptions import TaskStateError
from apps.core.models import (
    MaintenanceHistory,
    Notification,
    PMTask,
    WorkOrder,
    WorkOrderTask,
)
from apps.core.store import DjangoMaintenanceStore
from .escalation_notifier import EscalationNotifier
from .history_service import MaintenanceHistoryService
from .trigger_service import TriggerService

logger = logging.getLogger(__name__)


@dataclass
class CompletionOutcome:
    """What a task status change did to its work order."""

    PENDING = 'PENDING'
    COMPLETED = 'COMPLETED'
    ESCALATED = 'ESCALATED'
    ALREADY_CLOSED = 'ALREADY_CLOSED'

    task: WorkOrderTask
    work_order: WorkOrder
    result: str = PENDING
    history: Optional[MaintenanceHistory] = None
    follow_up: Optional[WorkOrder] = None
    follow_up_tasks: List[WorkOrderTask] = field(default_factory=list)
    notifications: List[Notification] = field(default_factory=list)


class TaskCompletionService:
    """
    Service for work order task progress.

    Handles:
    - Forward-only task transitions
    - Work order completion and history
    - Re-plan and escalation on failed tasks
    """

    def __init__(
        self,
        store=None,
        assets=None,
        roles=None,
        triggers=None,
        history=None,
        publisher=None,
        notifier=None
    ):
        self.store = store or DjangoMaintenanceStore()
        self.triggers = triggers or TriggerService(store=self.store)
        self.history = history or MaintenanceHistoryService(store=self.store)
        self.publisher = publisher or event_publisher
        self.notifier = notifier or EscalationNotifier(
            store=self.store, assets=assets, roles=roles, history=self.history
        )

    # ==========================================================================
    # Transitions
    # ==========================================================================

    def update_task_status(
        self,
        task_id: uuid.UUID,
        status: str,
        notes: str = None,
        actual_minutes: int = None,
        completed_by: uuid.UUID = None,
        at: datetime = None
    ) -> CompletionOutcome:
        """
        Move a task to ``status`` and close the work order if it is done.

        Re-applying a terminal task's current status is a no-op so retries
        are safe; any other change to a terminal task raises TaskStateError.
        """
        if status not in WorkOrderTask.Status.values:
            raise TaskStateError(f"Unknown task status: {status}")
        at = at or timezone.now()

        with self.store.atomic():
            task = self.store.get_task(task_id, for_update=True)
            work_order = self.store.get_work_order(task.work_order_id, for_update=True)

            if task.status == status:
                if not task.is_terminal:
                    self._apply_details(task, notes, actual_minutes)
                    self.store.save_task(task)
            else:
                if work_order.is_terminal:
                    raise TaskStateError(
                        f"Work order {work_order.human_id} is {work_order.status}; tasks are closed"
                    )
                if not task.can_transition_to(status):
                    raise TaskStateError(
                        f"Task {task.id} cannot move from {task.status} to {status}"
                    )
                self._transition(task, work_order, status, notes, actual_minutes, completed_by, at)

            outcome = self._close_if_finished(task, work_order, at)

        return outcome

    def on_task_status_changed(self, task: WorkOrderTask, new_status: str, at: datetime = None) -> CompletionOutcome:
        """Entry point for callers reporting a task transition."""
        return self.update_task_status(
            task.id,
            new_status,
            notes=task.notes,
            actual_minutes=task.actual_minutes,
            completed_by=task.completed_by_id,
            at=at,
        )

    def _apply_details(self, task, notes, actual_minutes):
        if notes is not None:
            task.notes = notes
        if actual_minutes is not None:
            if actual_minutes < 0:
                raise TaskStateError("actual_minutes cannot be negative")
            task.actual_minutes = actual_minutes

    def _transition(self, task, work_order, status, notes, actual_minutes, completed_by, at):
        previous = task.status
        task.status = status
        self._apply_details(task, notes, actual_minutes)
        if task.is_terminal:
            task.completed_at = at
            task.completed_by_id = completed_by
        self.store.save_task(task)

        if work_order.status == WorkOrder.Status.OPEN:
            work_order.status = WorkOrder.Status.IN_PROGRESS
            work_order.started_at = work_order.started_at or at
            self.store.save_work_order(work_order)

        logger.info(f"Task {task.id} on {work_order.human_id}: {previous} -> {status}")

    # ==========================================================================
    # Closure
    # ==========================================================================

    def _close_if_finished(self, task, work_order, at) -> CompletionOutcome:
        if work_order.is_terminal:
            return CompletionOutcome(task=task, work_order=work_order, result=CompletionOutcome.ALREADY_CLOSED)

        tasks = self.store.tasks_for(work_order.id)
        if not tasks or not all(t.is_terminal for t in tasks):
            return CompletionOutcome(task=task, work_order=work_order)

        failed = [t for t in tasks if t.status == WorkOrderTask.Status.FAILED]
        if failed:
            return self._escalate(task, work_order, tasks, failed, at)
        return self._complete(task, work_order, tasks, at)

    def _complete(self, task, work_order, tasks, at) -> CompletionOutcome:
        work_order.status = WorkOrder.Status.COMPLETED
        work_order.completed_at = at
        work_order.total_logged_hours = self._logged_hours(tasks)
        self.store.save_work_order(work_order)

        history = self.history.record(work_order, tasks, is_completed=True, closed_at=at)

        if work_order.pm_schedule_id:
            schedule = self.store.get_schedule(work_order.pm_schedule_id, for_update=True)
            self.triggers.refresh_next_due(schedule, as_of=at)

        def after_commit():
            metrics.record_closed('completed')
            self.publisher.work_order_completed(work_order, history)

        self.store.on_commit(after_commit)
        logger.info(f"Work order {work_order.human_id} completed")
        return CompletionOutcome(
            task=task,
            work_order=work_order,
            result=CompletionOutcome.COMPLETED,
            history=history,
        )

    def _escalate(self, task, work_order, tasks, failed, at) -> CompletionOutcome:
        """
        Partial completion: audit, cancel, expedite the schedule, create the
        follow-up and notify. The original is canceled before the follow-up
        is inserted so the one-open-per-schedule constraint holds throughout.
        """
        history = self.history.record(work_order, tasks, is_completed=False, closed_at=at)

        work_order.status = WorkOrder.Status.CANCELED
        work_order.canceled_at = at
        work_order.total_logged_hours = self._logged_hours(tasks)
        self.store.save_work_order(work_order)

        remediation_due = at + timedelta(days=pm_setting('REMEDIATION_WINDOW_DAYS'))
        schedule = None
        if work_order.pm_schedule_id:
            schedule = self.store.get_schedule(work_order.pm_schedule_id, for_update=True)
            if schedule.next_due is None or remediation_due < schedule.next_due:
                schedule.next_due = remediation_due
                self.store.save_schedule(schedule)

        follow_up, follow_up_tasks = self._create_follow_up(work_order, failed, remediation_due, at)
        notifications = self._notify(work_order, follow_up, schedule, at)

        def after_commit():
            metrics.record_closed('partial')
            metrics.record_escalation()
            self.publisher.work_order_escalated(
                work_order, follow_up, [n.user_id for n in notifications]
            )

        self.store.on_commit(after_commit)
        logger.info(
            f"Work order {work_order.human_id} canceled with {len(failed)} failed tasks; "
            f"follow-up {follow_up.human_id} due {remediation_due.isoformat()}"
        )
        return CompletionOutcome(
            task=task,
            work_order=work_order,
            result=CompletionOutcome.ESCALATED,
            history=history,
            follow_up=follow_up,
            follow_up_tasks=follow_up_tasks,
            notifications=notifications,
        )

    def _create_follow_up(self, work_order, failed, due_date, at):
        follow_up = WorkOrder(
            organization_id=work_order.organization_id,
            asset_id=work_order.asset_id,
            pm_schedule_id=work_order.pm_schedule_id,
            parent_work_order_id=work_order.id,
            human_id=self.store.next_human_id(work_order.organization_id, at.year),
            title=f"{work_order.title} (Rescheduled)",
            description=work_order.description,
            status=WorkOrder.Status.OPEN,
            priority=pm_setting('ESCALATION_PRIORITY'),
            assigned_to_id=work_order.assigned_to_id,
            due_date=due_date,
        )
        self.store.insert_work_order(follow_up)

        follow_up_tasks = []
        for index, original in enumerate(failed, start=1):
            snapshot = {name: getattr(original, name) for name in PMTask.SNAPSHOT_FIELDS}
            snapshot['title'] = f"{original.title} (Rescheduled)"
            follow_up_tasks.append(self.store.save_task(WorkOrderTask(
                work_order_id=follow_up.id,
                order_index=index,
                is_required=original.is_required,
                origin_pm_task_id=original.origin_pm_task_id,
                status=WorkOrderTask.Status.NOT_STARTED,
                **snapshot
            )))
        return follow_up, follow_up_tasks

    def _notify(self, work_order, follow_up, schedule, at) -> List[Notification]:
        subject = schedule.title if schedule is not None else work_order.title
        return self.notifier.notify(
            follow_up,
            Notification.Type.WORK_ORDER_ESCALATED,
            self.notifier.priority_for(work_order.pm_schedule_id, at),
            title=f"PM Rescheduled: {subject}",
            message=(
                f"Work order {work_order.human_id} had failed tasks and was canceled. "
                f"Follow-up {follow_up.human_id} is due {follow_up.due_date:%Y-%m-%d}."
            ),
        )

    @staticmethod
    def _logged_hours(tasks) -> Decimal:
        minutes = sum(t.actual_minutes or 0 for t in tasks)
        return (Decimal(minutes) / Decimal(60)).quantize(Decimal('0.01'))

    # ==========================================================================
    # Stats
    # ==========================================================================

    def get_completion_stats(self, work_order_id: uuid.UUID) -> Dict[str, Any]:
        """Task counts by status for a work order."""
        work_order = self.store.get_work_order(work_order_id)
        tasks = self.store.tasks_for(work_order.id)

        by_status = {status: 0 for status in WorkOrderTask.Status.values}
        for t in tasks:
            by_status[t.status] += 1

        total = len(tasks)
        done = sum(1 for t in tasks if t.is_terminal)
        return {
            'work_order_id': str(work_order.id),
            'total': total,
            'by_status': by_status,
            'terminal': done,
            'completion_rate': round(done / total * 100, 1) if total else 0.0,
            'total_actual_minutes': sum(t.actual_minutes or 0 for t in tasks),
            'total_estimated_minutes': sum(t.estimated_minutes or 0 for t in tasks),
        }

