"""
In-memory Maintenance Store

Dict-backed fake of the ORM store. Instances are copied on the way in and
out so callers see database semantics: nothing changes until it is saved,
and a failed ``atomic()`` block restores the previous state.
"""

import copy
import itertools
from collections import defaultdict
from contextlib import contextmanager

from django.utils import timezone

from apps.core.exceptions import (
    HistoryImmutableError,
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


class InMemoryMaintenanceStore(MaintenanceStore):

    def __init__(self):
        self._tables = defaultdict(dict)
        self._sequence = {}
        self._counter = itertools.count()
        self._callbacks = []
        self._depth = 0

    # ==========================================================================
    # Transactions
    # ==========================================================================

    @contextmanager
    def atomic(self):
        savepoint = copy.deepcopy(self._tables)
        callback_mark = len(self._callbacks)
        self._depth += 1
        try:
            yield
        except Exception:
            self._tables = savepoint
            del self._callbacks[callback_mark:]
            raise
        finally:
            self._depth -= 1

        if self._depth == 0:
            callbacks, self._callbacks = self._callbacks, []
            for func in callbacks:
                func()

    def on_commit(self, func):
        if self._depth == 0:
            func()
        else:
            self._callbacks.append(func)

    # ==========================================================================
    # Row helpers
    # ==========================================================================

    def _put(self, instance):
        now = timezone.now()
        if hasattr(instance, 'created_at') and instance.created_at is None:
            instance.created_at = now
        if hasattr(instance, 'updated_at'):
            instance.updated_at = now
        instance._state.adding = False
        self._sequence.setdefault(instance.pk, next(self._counter))
        self._tables[type(instance)][instance.pk] = copy.copy(instance)
        return instance

    def _get(self, model, exc_class, label, pk):
        row = self._tables[model].get(pk)
        if row is None:
            raise exc_class(f"{label} {pk} not found")
        return copy.copy(row)

    def _rows(self, model, **filters):
        rows = [
            row for row in self._tables[model].values()
            if all(getattr(row, name) == value for name, value in filters.items())
        ]
        rows.sort(key=lambda row: self._sequence[row.pk])
        return [copy.copy(row) for row in rows]

    def _insert_append_only(self, instance):
        if instance.pk in self._tables[type(instance)]:
            raise HistoryImmutableError(
                f"{instance.__class__.__name__} {instance.pk} is append-only"
            )
        return self._put(instance)

    # ==========================================================================
    # PM Task Templates
    # ==========================================================================

    def get_pm_task(self, pm_task_id):
        return self._get(PMTask, PMTaskNotFoundError, 'PM task', pm_task_id)

    def save_pm_task(self, pm_task):
        return self._put(pm_task)

    def delete_pm_task(self, pm_task):
        self._tables[PMTask].pop(pm_task.pk, None)

    def is_pm_task_referenced(self, pm_task_id):
        return bool(self._rows(PMScheduleTask, pm_task_id=pm_task_id))

    # ==========================================================================
    # Schedules
    # ==========================================================================

    def get_schedule(self, schedule_id, for_update=False):
        return self._get(PMSchedule, ScheduleNotFoundError, 'PM schedule', schedule_id)

    def save_schedule(self, schedule):
        return self._put(schedule)

    def active_schedules(self, organization_id=None):
        schedules = self._rows(PMSchedule, is_active=True)
        if organization_id:
            schedules = [s for s in schedules if s.organization_id == organization_id]
        return schedules

    def schedules_due_between(self, start, end, organization_id=None):
        schedules = [
            s for s in self.active_schedules(organization_id)
            if s.next_due is not None and start <= s.next_due <= end
        ]
        return sorted(schedules, key=lambda s: s.next_due)

    def schedule_tasks(self, schedule_id):
        links = self._rows(PMScheduleTask, pm_schedule_id=schedule_id)
        return sorted(links, key=lambda link: link.order_index)

    def save_schedule_task(self, link):
        for other in self._rows(PMScheduleTask, pm_schedule_id=link.pm_schedule_id):
            if other.pk != link.pk and other.order_index == link.order_index:
                raise TransactionFailure(
                    f"Schedule {link.pm_schedule_id} already has a task at {link.order_index}"
                )
        return self._put(link)

    # ==========================================================================
    # Triggers
    # ==========================================================================

    def get_trigger(self, trigger_id, for_update=False):
        return self._get(PMTrigger, TriggerNotFoundError, 'PM trigger', trigger_id)

    def triggers_for(self, schedule_id, active_only=True):
        triggers = self._rows(PMTrigger, pm_schedule_id=schedule_id)
        if active_only:
            triggers = [t for t in triggers if t.is_active]
        return triggers

    def save_trigger(self, trigger):
        return self._put(trigger)

    # ==========================================================================
    # Work Orders
    # ==========================================================================

    def get_work_order(self, work_order_id, for_update=False):
        return self._get(WorkOrder, WorkOrderNotFoundError, 'Work order', work_order_id)

    def open_work_order_for(self, schedule_id):
        for work_order in self._rows(WorkOrder, pm_schedule_id=schedule_id):
            if work_order.is_open:
                return work_order
        return None

    def work_orders_for_schedule(self, schedule_id):
        return self._rows(WorkOrder, pm_schedule_id=schedule_id)

    def overdue_work_orders(self, due_before, organization_id=None):
        rows = [
            wo for wo in self._rows(WorkOrder)
            if wo.is_generated and wo.is_open
            and wo.due_date is not None and wo.due_date < due_before
            and (organization_id is None or wo.organization_id == organization_id)
        ]
        rows.sort(key=lambda wo: wo.due_date)
        return rows

    def _check_open_constraint(self, work_order):
        if not work_order.pm_schedule_id or not work_order.is_open:
            return
        for existing in self._tables[WorkOrder].values():
            if (existing.pm_schedule_id == work_order.pm_schedule_id
                    and existing.is_open and existing.pk != work_order.pk):
                raise OpenWorkOrderExistsError(work_order.pm_schedule_id)

    def insert_work_order(self, work_order):
        self._check_open_constraint(work_order)
        for other in self._rows(WorkOrder, organization_id=work_order.organization_id):
            if other.human_id == work_order.human_id:
                raise TransactionFailure(f"Duplicate work order number {work_order.human_id}")
        return self._put(work_order)

    def save_work_order(self, work_order):
        self._check_open_constraint(work_order)
        return self._put(work_order)

    def next_human_id(self, organization_id, year):
        prefix = f"WO-{year}-"
        count = sum(
            1 for work_order in self._rows(WorkOrder, organization_id=organization_id)
            if work_order.human_id.startswith(prefix)
        ) + 1
        return f"{prefix}{count:05d}"

    # ==========================================================================
    # Work Order Tasks
    # ==========================================================================

    def get_task(self, task_id, for_update=False):
        return self._get(WorkOrderTask, TaskNotFoundError, 'Work order task', task_id)

    def tasks_for(self, work_order_id):
        tasks = self._rows(WorkOrderTask, work_order_id=work_order_id)
        return sorted(tasks, key=lambda task: task.order_index)

    def save_task(self, task):
        return self._put(task)

    # ==========================================================================
    # Maintenance History
    # ==========================================================================

    def insert_history(self, history):
        if self._rows(MaintenanceHistory, work_order_id=history.work_order_id):
            raise HistoryImmutableError(
                f"Work order {history.work_order_id} already has a history record"
            )
        return self._insert_append_only(history)

    def history_for_work_order(self, work_order_id):
        rows = self._rows(MaintenanceHistory, work_order_id=work_order_id)
        return rows[0] if rows else None

    def _newest_first(self, rows):
        return sorted(rows, key=lambda h: (h.completed_at, self._sequence[h.pk]), reverse=True)

    def history_for_asset(self, asset_id, limit=None):
        rows = self._newest_first(self._rows(MaintenanceHistory, asset_id=asset_id))
        return rows[:limit] if limit else rows

    def history_for_schedule(self, schedule_id, since=None):
        rows = self._rows(MaintenanceHistory, pm_schedule_id=schedule_id)
        if since:
            rows = [h for h in rows if h.completed_at >= since]
        return self._newest_first(rows)

    def history_for_organization(self, organization_id, since=None):
        rows = self._rows(MaintenanceHistory, organization_id=organization_id)
        if since:
            rows = [h for h in rows if h.completed_at >= since]
        return self._newest_first(rows)

    # ==========================================================================
    # Notifications
    # ==========================================================================

    def insert_notification(self, notification):
        return self._insert_append_only(notification)

    def notifications_for(self, related_entity_type, related_entity_id):
        return self._rows(
            Notification,
            related_entity_type=related_entity_type,
            related_entity_id=related_entity_id,
        )

    # ==========================================================================
    # Meter Readings
    # ==========================================================================

    def insert_reading(self, reading):
        return self._insert_append_only(reading)

    def readings(self, asset_id, meter_type=None, since=None, limit=None):
        rows = self._rows(MeterReading, asset_id=asset_id)
        if meter_type:
            rows = [r for r in rows if r.meter_type == meter_type]
        if since:
            rows = [r for r in rows if r.reading_date >= since]
        rows.sort(key=lambda r: (r.reading_date, self._sequence[r.pk]), reverse=True)
        return rows[:limit] if limit else rows

    def latest_reading(self, asset_id, meter_type):
        rows = self.readings(asset_id, meter_type, limit=1)
        return rows[0] if rows else None

    def latest_decrease(self, asset_id, meter_type, after=None, recorded_after=None):
        for reading in self.readings(asset_id, meter_type):
            if after and reading.reading_date <= after:
                break
            if recorded_after and reading.created_at <= recorded_after:
                continue
            if reading.is_decrease:
                return reading
        return None

    def meter_types(self, asset_id):
        return sorted({r.meter_type for r in self._rows(MeterReading, asset_id=asset_id)})
