"""
ORM-backed Maintenance Store
"""

import logging
from contextlib import contextmanager

from django.db import DatabaseError, IntegrityError, transaction

from apps.core.exceptions import (
    OpenWorkOrderExistsError,
    PMTaskNotFoundError,
    ScheduleNotFoundError,
    TaskNotFoundError,
    TransactionFailure,
    TriggerNotFoundError,
    WorkOrderNotFoundError,
)
from apps.core.models import (
    PMTask,
    PMSchedule,
    PMScheduleTask,
    PMTrigger,
    WorkOrder,
    WorkOrderTask,
    MeterReading,
    MaintenanceHistory,
    Notification,
)
from .base import MaintenanceStore

logger = logging.getLogger(__name__)


class DjangoMaintenanceStore(MaintenanceStore):
    """
    Store on top of the default database connection.

    Database errors surfacing from an ``atomic()`` block are re-raised as
    TransactionFailure after Django has rolled the block back.
    """

    def __init__(self, using: str = 'default'):
        self.using = using

    # ==========================================================================
    # Transactions
    # ==========================================================================

    @contextmanager
    def atomic(self):
        try:
            with transaction.atomic(using=self.using):
                yield
        except DatabaseError as e:
            logger.error(f"Transaction aborted: {e}")
            raise TransactionFailure(str(e)) from e

    def on_commit(self, func):
        transaction.on_commit(func, using=self.using)

    def _get(self, model, exc_class, label, pk, for_update=False):
        queryset = model.objects.using(self.using)
        if for_update:
            queryset = queryset.select_for_update()
        try:
            return queryset.get(pk=pk)
        except model.DoesNotExist:
            raise exc_class(f"{label} {pk} not found")

    # ==========================================================================
    # PM Task Templates
    # ==========================================================================

    def get_pm_task(self, pm_task_id):
        return self._get(PMTask, PMTaskNotFoundError, 'PM task', pm_task_id)

    def save_pm_task(self, pm_task):
        pm_task.save(using=self.using)
        return pm_task

    def delete_pm_task(self, pm_task):
        pm_task.delete(using=self.using)

    def is_pm_task_referenced(self, pm_task_id):
        return PMScheduleTask.objects.using(self.using).filter(pm_task_id=pm_task_id).exists()

    # ==========================================================================
    # Schedules
    # ==========================================================================

    def get_schedule(self, schedule_id, for_update=False):
        return self._get(PMSchedule, ScheduleNotFoundError, 'PM schedule', schedule_id, for_update)

    def save_schedule(self, schedule):
        schedule.save(using=self.using)
        return schedule

    def active_schedules(self, organization_id=None):
        queryset = PMSchedule.objects.using(self.using).filter(is_active=True)
        if organization_id:
            queryset = queryset.filter(organization_id=organization_id)
        return list(queryset.order_by('created_at'))

    def schedules_due_between(self, start, end, organization_id=None):
        queryset = PMSchedule.objects.using(self.using).filter(
            is_active=True,
            next_due__gte=start,
            next_due__lte=end,
        )
        if organization_id:
            queryset = queryset.filter(organization_id=organization_id)
        return list(queryset.order_by('next_due'))

    def schedule_tasks(self, schedule_id):
        return list(
            PMScheduleTask.objects.using(self.using)
            .filter(pm_schedule_id=schedule_id)
            .order_by('order_index')
        )

    def save_schedule_task(self, link):
        link.save(using=self.using)
        return link

    # ==========================================================================
    # Triggers
    # ==========================================================================

    def get_trigger(self, trigger_id, for_update=False):
        return self._get(PMTrigger, TriggerNotFoundError, 'PM trigger', trigger_id, for_update)

    def triggers_for(self, schedule_id, active_only=True):
        queryset = PMTrigger.objects.using(self.using).filter(pm_schedule_id=schedule_id)
        if active_only:
            queryset = queryset.filter(is_active=True)
        return list(queryset.order_by('created_at'))

    def save_trigger(self, trigger):
        trigger.save(using=self.using)
        return trigger

    # ==========================================================================
    # Work Orders
    # ==========================================================================

    def get_work_order(self, work_order_id, for_update=False):
        return self._get(WorkOrder, WorkOrderNotFoundError, 'Work order', work_order_id, for_update)

    def open_work_order_for(self, schedule_id):
        return WorkOrder.objects.using(self.using).filter(
            pm_schedule_id=schedule_id,
            status__in=WorkOrder.OPEN_STATUSES,
        ).first()

    def work_orders_for_schedule(self, schedule_id):
        return list(
            WorkOrder.objects.using(self.using)
            .filter(pm_schedule_id=schedule_id)
            .order_by('created_at')
        )

    def overdue_work_orders(self, due_before, organization_id=None):
        queryset = WorkOrder.objects.using(self.using).filter(
            pm_schedule__isnull=False,
            status__in=WorkOrder.OPEN_STATUSES,
            due_date__lt=due_before,
        )
        if organization_id:
            queryset = queryset.filter(organization_id=organization_id)
        return list(queryset.order_by('due_date', 'created_at'))

    def insert_work_order(self, work_order):
        try:
            # Savepoint so a constraint violation leaves the outer transaction usable
            with transaction.atomic(using=self.using):
                work_order.save(using=self.using, force_insert=True)
        except IntegrityError:
            if self._holds_open_slot(work_order):
                raise OpenWorkOrderExistsError(work_order.pm_schedule_id)
            raise
        return work_order

    def save_work_order(self, work_order):
        try:
            with transaction.atomic(using=self.using):
                work_order.save(using=self.using)
        except IntegrityError:
            if self._holds_open_slot(work_order):
                raise OpenWorkOrderExistsError(work_order.pm_schedule_id)
            raise
        return work_order

    def _holds_open_slot(self, work_order):
        """True when another non-terminal work order already holds the schedule."""
        if not work_order.pm_schedule_id or not work_order.is_open:
            return False
        return WorkOrder.objects.using(self.using).filter(
            pm_schedule_id=work_order.pm_schedule_id,
            status__in=WorkOrder.OPEN_STATUSES,
        ).exclude(pk=work_order.pk).exists()

    def next_human_id(self, organization_id, year):
        count = WorkOrder.objects.using(self.using).filter(
            organization_id=organization_id,
            human_id__startswith=f"WO-{year}-",
        ).count() + 1
        return f"WO-{year}-{count:05d}"

    # ==========================================================================
    # Work Order Tasks
    # ==========================================================================

    def get_task(self, task_id, for_update=False):
        return self._get(WorkOrderTask, TaskNotFoundError, 'Work order task', task_id, for_update)

    def tasks_for(self, work_order_id):
        return list(
            WorkOrderTask.objects.using(self.using)
            .filter(work_order_id=work_order_id)
            .order_by('order_index')
        )

    def save_task(self, task):
        task.save(using=self.using)
        return task

    # ==========================================================================
    # Maintenance History
    # ==========================================================================

    def insert_history(self, history):
        history.save(using=self.using, force_insert=True)
        return history

    def history_for_work_order(self, work_order_id):
        return MaintenanceHistory.objects.using(self.using).filter(
            work_order_id=work_order_id
        ).first()

    def history_for_asset(self, asset_id, limit=None):
        queryset = MaintenanceHistory.objects.using(self.using).filter(
            asset_id=asset_id
        ).order_by('-completed_at')
        if limit:
            queryset = queryset[:limit]
        return list(queryset)

    def history_for_schedule(self, schedule_id, since=None):
        queryset = MaintenanceHistory.objects.using(self.using).filter(pm_schedule_id=schedule_id)
        if since:
            queryset = queryset.filter(completed_at__gte=since)
        return list(queryset.order_by('-completed_at'))

    def history_for_organization(self, organization_id, since=None):
        queryset = MaintenanceHistory.objects.using(self.using).filter(
            organization_id=organization_id
        )
        if since:
            queryset = queryset.filter(completed_at__gte=since)
        return list(queryset.order_by('-completed_at'))

    # ==========================================================================
    # Notifications
    # ==========================================================================

    def insert_notification(self, notification):
        notification.save(using=self.using, force_insert=True)
        return notification

    def notifications_for(self, related_entity_type, related_entity_id):
        return list(
            Notification.objects.using(self.using).filter(
                related_entity_type=related_entity_type,
                related_entity_id=related_entity_id,
            ).order_by('created_at')
        )

    # ==========================================================================
    # Meter Readings
    # ==========================================================================

    def insert_reading(self, reading):
        reading.save(using=self.using, force_insert=True)
        return reading

    def latest_reading(self, asset_id, meter_type):
        return MeterReading.objects.using(self.using).filter(
            asset_id=asset_id,
            meter_type=meter_type,
        ).order_by('-reading_date', '-created_at').first()

    def latest_decrease(self, asset_id, meter_type, after=None, recorded_after=None):
        queryset = MeterReading.objects.using(self.using).filter(
            asset_id=asset_id,
            meter_type=meter_type,
            is_decrease=True,
        )
        if after:
            queryset = queryset.filter(reading_date__gt=after)
        if recorded_after:
            queryset = queryset.filter(created_at__gt=recorded_after)
        return queryset.order_by('-reading_date', '-created_at').first()

    def readings(self, asset_id, meter_type=None, since=None, limit=None):
        queryset = MeterReading.objects.using(self.using).filter(asset_id=asset_id)
        if meter_type:
            queryset = queryset.filter(meter_type=meter_type)
        if since:
            queryset = queryset.filter(reading_date__gte=since)
        queryset = queryset.order_by('-reading_date', '-created_at')
        if limit:
            queryset = queryset[:limit]
        return list(queryset)

    def meter_types(self, asset_id):
        return list(
            MeterReading.objects.using(self.using)
            .filter(asset_id=asset_id)
            .order_by('meter_type')
            .values_list('meter_type', flat=True)
            .distinct()
        )
