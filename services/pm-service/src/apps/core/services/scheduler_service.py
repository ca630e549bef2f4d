"""
PM Scheduler Service

Schedule and template administration, the calendar feed and the periodic
evaluate-then-generate pass invoked by an external scheduler.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, List

import httpx
from django.utils import timezone

from shared.common import metrics
from shared.common.clients import CircuitBreakerError
from apps.core.conf import pm_setting
from apps.core.events import event_publisher
from apps.core.exceptions import PMServiceError, PMValidationError, ReferencedTemplateError
from apps.core.models import Notification, PMSchedule, PMScheduleTask, PMTask, WorkOrder
from apps.core.store import DjangoMaintenanceStore
from .escalation_notifier import EscalationNotifier
from .trigger_service import TriggerService
from .work_order_generator import WorkOrderGenerator

logger = logging.getLogger(__name__)


class PMSchedulerService:
    """
    Service for PM schedules.

    Handles:
    - PM task template CRUD with a referential guard
    - Schedule creation and checklist ordering
    - Upcoming schedule projection
    - Scheduled generation runs
    - Overdue work order escalation
    """

    def __init__(self, store=None, triggers=None, generator=None, notifier=None, publisher=None):
        self.store = store or DjangoMaintenanceStore()
        self.triggers = triggers or TriggerService(store=self.store)
        self.generator = generator or WorkOrderGenerator(store=self.store, triggers=self.triggers)
        self.notifier = notifier or EscalationNotifier(store=self.store)
        self.publisher = publisher or event_publisher

    # ==========================================================================
    # PM Task Templates
    # ==========================================================================

    def create_pm_task(self, organization_id: uuid.UUID, title: str, **kwargs) -> PMTask:
        if not title or not title.strip():
            raise PMValidationError("PM task title is required", field='title')
        self._check_estimate(kwargs.get('estimated_minutes'))

        pm_task = PMTask(organization_id=organization_id, title=title.strip(), **kwargs)
        with self.store.atomic():
            self.store.save_pm_task(pm_task)

        logger.info(f"Created PM task {pm_task.id}: {pm_task.title}")
        return pm_task

    def update_pm_task(self, pm_task_id: uuid.UUID, **kwargs) -> PMTask:
        """Edit a template; already generated checklists keep their snapshot."""
        allowed_fields = PMTask.SNAPSHOT_FIELDS

        with self.store.atomic():
            pm_task = self.store.get_pm_task(pm_task_id)
            for field, value in kwargs.items():
                if field not in allowed_fields:
                    raise PMValidationError(f"Field {field} cannot be updated", field=field)
                setattr(pm_task, field, value)
            if not pm_task.title:
                raise PMValidationError("PM task title is required", field='title')
            self._check_estimate(pm_task.estimated_minutes)
            self.store.save_pm_task(pm_task)

        return pm_task

    def delete_pm_task(self, pm_task_id: uuid.UUID) -> None:
        with self.store.atomic():
            pm_task = self.store.get_pm_task(pm_task_id)
            if self.store.is_pm_task_referenced(pm_task.id):
                raise ReferencedTemplateError(
                    f"PM task {pm_task.title} is linked to a schedule and cannot be deleted"
                )
            self.store.delete_pm_task(pm_task)

        logger.info(f"Deleted PM task {pm_task_id}")

    @staticmethod
    def _check_estimate(estimated_minutes):
        if estimated_minutes is not None and estimated_minutes < 0:
            raise PMValidationError("Estimated minutes cannot be negative", field='estimated_minutes')

    # ==========================================================================
    # Schedules
    # ==========================================================================

    def create_schedule(
        self,
        organization_id: uuid.UUID,
        asset_id: uuid.UUID,
        title: str,
        description: str = '',
        next_due: datetime = None
    ) -> PMSchedule:
        if not title or not title.strip():
            raise PMValidationError("Schedule title is required", field='title')

        schedule = PMSchedule(
            organization_id=organization_id,
            asset_id=asset_id,
            title=title.strip(),
            description=description,
            next_due=next_due,
        )
        with self.store.atomic():
            self.store.save_schedule(schedule)

        logger.info(f"Created PM schedule {schedule.id}: {schedule.title}")
        return schedule

    def get_schedule(self, schedule_id: uuid.UUID) -> PMSchedule:
        return self.store.get_schedule(schedule_id)

    def add_task(
        self,
        schedule_id: uuid.UUID,
        pm_task_id: uuid.UUID,
        order_index: int = None,
        is_required: bool = True
    ) -> PMScheduleTask:
        """Link a template into the schedule's checklist; appends by default."""
        with self.store.atomic():
            schedule = self.store.get_schedule(schedule_id, for_update=True)
            pm_task = self.store.get_pm_task(pm_task_id)
            if pm_task.organization_id != schedule.organization_id:
                raise PMValidationError(
                    "PM task belongs to another organization", field='pm_task_id'
                )

            links = self.store.schedule_tasks(schedule.id)
            if order_index is None:
                order_index = max((link.order_index for link in links), default=0) + 1
            elif order_index < 1:
                raise PMValidationError("Order index starts at 1", field='order_index')
            elif any(link.order_index == order_index for link in links):
                raise PMValidationError(
                    f"Schedule already has a task at position {order_index}",
                    field='order_index'
                )

            link = PMScheduleTask(
                pm_schedule_id=schedule.id,
                pm_task_id=pm_task.id,
                order_index=order_index,
                is_required=is_required,
            )
            self.store.save_schedule_task(link)

        return link

    def get_tasks(self, schedule_id: uuid.UUID) -> List[PMScheduleTask]:
        return self.store.schedule_tasks(schedule_id)

    def upcoming_schedules(
        self,
        start: datetime = None,
        end: datetime = None,
        organization_id: uuid.UUID = None
    ) -> List[PMSchedule]:
        """Active schedules whose next due date falls in [start, end]."""
        start = start or timezone.now()
        end = end or start + timedelta(days=pm_setting('UPCOMING_DAYS'))
        if end < start:
            raise PMValidationError("End must not precede start", field='end')
        return self.store.schedules_due_between(start, end, organization_id)

    # ==========================================================================
    # Scheduled Generation
    # ==========================================================================

    def run_scheduled_generation(
        self,
        as_of: datetime = None,
        organization_id: uuid.UUID = None
    ) -> Dict[str, Any]:
        """
        Evaluate all schedules and generate for the due ones.

        A failure on one schedule is logged and counted; the others still run.
        Safe to re-run: the generator skips schedules that already have an
        open work order.
        """
        as_of = as_of or timezone.now()
        summary = {
            'as_of': as_of.isoformat(),
            'due': 0,
            'generated': 0,
            'skipped': 0,
            'failed': 0,
            'work_order_ids': [],
        }

        with metrics.MetricsTimer():
            for schedule in self.store.active_schedules(organization_id):
                try:
                    if not self.triggers.is_schedule_due(schedule, as_of):
                        continue
                    summary['due'] += 1
                    result = self.generator.generate(schedule.id, as_of)
                except (PMServiceError, httpx.HTTPError, CircuitBreakerError) as e:
                    logger.error(f"Generation failed for schedule {schedule.id}: {e}")
                    summary['failed'] += 1
                    continue

                if result.skipped:
                    summary['skipped'] += 1
                else:
                    summary['generated'] += 1
                    summary['work_order_ids'].append(str(result.work_order.id))

        logger.info(
            f"PM run {summary['as_of']}: {summary['due']} due, {summary['generated']} generated, "
            f"{summary['skipped']} skipped, {summary['failed']} failed"
        )
        return summary

    # ==========================================================================
    # Overdue Sweep
    # ==========================================================================

    def process_overdue(
        self,
        as_of: datetime = None,
        organization_id: uuid.UUID = None
    ) -> Dict[str, Any]:
        """
        Escalate generated work orders left open past their due date.

        Work orders more than OVERDUE_GRACE_DAYS late are raised to
        OVERDUE_PRIORITY and the escalation roles are notified. Nothing is
        canceled. Re-running only notifies users not yet told about a work
        order.
        """
        as_of = as_of or timezone.now()
        due_before = as_of - timedelta(days=pm_setting('OVERDUE_GRACE_DAYS'))
        summary = {
            'as_of': as_of.isoformat(),
            'overdue': 0,
            'escalated': 0,
            'notified': 0,
            'failed': 0,
            'work_order_ids': [],
        }

        for overdue in self.store.overdue_work_orders(due_before, organization_id):
            summary['overdue'] += 1
            try:
                with self.store.atomic():
                    escalated, notifications = self._escalate_overdue(overdue.id, as_of)
            except (PMServiceError, httpx.HTTPError, CircuitBreakerError) as e:
                logger.error(f"Overdue escalation failed for work order {overdue.human_id}: {e}")
                summary['failed'] += 1
                continue

            if escalated:
                summary['escalated'] += 1
                summary['work_order_ids'].append(str(overdue.id))
            summary['notified'] += len(notifications)

        logger.info(
            f"Overdue sweep {summary['as_of']}: {summary['overdue']} overdue, "
            f"{summary['escalated']} escalated, {summary['notified']} notified, "
            f"{summary['failed']} failed"
        )
        return summary

    def _escalate_overdue(self, work_order_id, as_of):
        work_order = self.store.get_work_order(work_order_id, for_update=True)
        if not work_order.is_open:
            return False, []

        raised = False
        target = pm_setting('OVERDUE_PRIORITY')
        order = WorkOrder.Priority.values
        if order.index(work_order.priority) < order.index(target):
            work_order.priority = target
            self.store.save_work_order(work_order)
            raised = True

        days_overdue = (as_of - work_order.due_date).days
        notifications = self.notifier.notify(
            work_order,
            Notification.Type.WORK_ORDER_OVERDUE,
            self.notifier.priority_for(work_order.pm_schedule_id, as_of),
            title=f"PM Overdue: {work_order.title}",
            message=(
                f"Work order {work_order.human_id} was due {work_order.due_date:%Y-%m-%d} "
                f"and is still {work_order.get_status_display().lower()} after {days_overdue} days."
            ),
        )

        escalated = raised or bool(notifications)
        if escalated:
            def after_commit():
                metrics.record_overdue_escalation()
                self.publisher.work_order_overdue(
                    work_order, days_overdue, [n.user_id for n in notifications]
                )

            self.store.on_commit(after_commit)
            logger.info(
                f"Work order {work_order.human_id} is {days_overdue} days overdue; "
                f"priority {work_order.priority}, {len(notifications)} notified"
            )
        return escalated, notifications
