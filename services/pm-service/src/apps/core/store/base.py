"""
Maintenance Store Port

Persistence boundary for the PM engine. Services receive a store instead
of touching model managers, so the same engine runs against the ORM or an
in-memory fake.
"""

import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, ContextManager, List, Optional

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


class MaintenanceStore(ABC):
    """
    Transactional store for schedules, work orders and their audit rows.

    ``get_*`` methods raise the matching NotFoundError subclass.
    ``for_update`` requests a row lock held until the surrounding
    ``atomic()`` block ends.
    """

    # ==========================================================================
    # Transactions
    # ==========================================================================

    @abstractmethod
    def atomic(self) -> ContextManager:
        """Nestable transaction; rolls back everything on exception."""

    @abstractmethod
    def on_commit(self, func: Callable[[], None]) -> None:
        """Run ``func`` once the outermost transaction commits."""

    # ==========================================================================
    # PM Task Templates
    # ==========================================================================

    @abstractmethod
    def get_pm_task(self, pm_task_id: uuid.UUID) -> PMTask: ...

    @abstractmethod
    def save_pm_task(self, pm_task: PMTask) -> PMTask: ...

    @abstractmethod
    def delete_pm_task(self, pm_task: PMTask) -> None: ...

    @abstractmethod
    def is_pm_task_referenced(self, pm_task_id: uuid.UUID) -> bool: ...

    # ==========================================================================
    # Schedules
    # ==========================================================================

    @abstractmethod
    def get_schedule(self, schedule_id: uuid.UUID, for_update: bool = False) -> PMSchedule: ...

    @abstractmethod
    def save_schedule(self, schedule: PMSchedule) -> PMSchedule: ...

    @abstractmethod
    def active_schedules(self, organization_id: uuid.UUID = None) -> List[PMSchedule]: ...

    @abstractmethod
    def schedules_due_between(
        self,
        start: datetime,
        end: datetime,
        organization_id: uuid.UUID = None
    ) -> List[PMSchedule]: ...

    @abstractmethod
    def schedule_tasks(self, schedule_id: uuid.UUID) -> List[PMScheduleTask]:
        """Links ordered by order_index."""

    @abstractmethod
    def save_schedule_task(self, link: PMScheduleTask) -> PMScheduleTask: ...

    # ==========================================================================
    # Triggers
    # ==========================================================================

    @abstractmethod
    def get_trigger(self, trigger_id: uuid.UUID, for_update: bool = False) -> PMTrigger: ...

    @abstractmethod
    def triggers_for(self, schedule_id: uuid.UUID, active_only: bool = True) -> List[PMTrigger]: ...

    @abstractmethod
    def save_trigger(self, trigger: PMTrigger) -> PMTrigger: ...

    # ==========================================================================
    # Work Orders
    # ==========================================================================

    @abstractmethod
    def get_work_order(self, work_order_id: uuid.UUID, for_update: bool = False) -> WorkOrder: ...

    @abstractmethod
    def open_work_order_for(self, schedule_id: uuid.UUID) -> Optional[WorkOrder]: ...

    @abstractmethod
    def work_orders_for_schedule(self, schedule_id: uuid.UUID) -> List[WorkOrder]: ...

    @abstractmethod
    def overdue_work_orders(
        self,
        due_before: datetime,
        organization_id: uuid.UUID = None
    ) -> List[WorkOrder]:
        """Non-terminal generated work orders due before ``due_before``, oldest due first."""

    @abstractmethod
    def insert_work_order(self, work_order: WorkOrder) -> WorkOrder:
        """Insert; raises OpenWorkOrderExistsError when the schedule already has one open."""

    @abstractmethod
    def save_work_order(self, work_order: WorkOrder) -> WorkOrder: ...

    @abstractmethod
    def next_human_id(self, organization_id: uuid.UUID, year: int) -> str: ...

    # ==========================================================================
    # Work Order Tasks
    # ==========================================================================

    @abstractmethod
    def get_task(self, task_id: uuid.UUID, for_update: bool = False) -> WorkOrderTask: ...

    @abstractmethod
    def tasks_for(self, work_order_id: uuid.UUID) -> List[WorkOrderTask]:
        """Tasks ordered by order_index."""

    @abstractmethod
    def save_task(self, task: WorkOrderTask) -> WorkOrderTask: ...

    # ==========================================================================
    # Maintenance History
    # ==========================================================================

    @abstractmethod
    def insert_history(self, history: MaintenanceHistory) -> MaintenanceHistory: ...

    @abstractmethod
    def history_for_work_order(self, work_order_id: uuid.UUID) -> Optional[MaintenanceHistory]: ...

    @abstractmethod
    def history_for_asset(self, asset_id: uuid.UUID, limit: int = None) -> List[MaintenanceHistory]: ...

    @abstractmethod
    def history_for_schedule(
        self,
        schedule_id: uuid.UUID,
        since: datetime = None
    ) -> List[MaintenanceHistory]: ...

    @abstractmethod
    def history_for_organization(
        self,
        organization_id: uuid.UUID,
        since: datetime = None
    ) -> List[MaintenanceHistory]: ...

    # ==========================================================================
    # Notifications
    # ==========================================================================

    @abstractmethod
    def insert_notification(self, notification: Notification) -> Notification: ...

    @abstractmethod
    def notifications_for(self, related_entity_type: str, related_entity_id: uuid.UUID) -> List[Notification]: ...

    # ==========================================================================
    # Meter Readings
    # ==========================================================================

    @abstractmethod
    def insert_reading(self, reading: MeterReading) -> MeterReading: ...

    @abstractmethod
    def latest_reading(self, asset_id: uuid.UUID, meter_type: str) -> Optional[MeterReading]: ...

    @abstractmethod
    def latest_decrease(
        self,
        asset_id: uuid.UUID,
        meter_type: str,
        after: datetime = None,
        recorded_after: datetime = None
    ) -> Optional[MeterReading]:
        """
        Most recent reading flagged is_decrease.

        ``after`` bounds the reading date, ``recorded_after`` the time the
        reading was stored.
        """

    @abstractmethod
    def readings(
        self,
        asset_id: uuid.UUID,
        meter_type: str = None,
        since: datetime = None,
        limit: int = None
    ) -> List[MeterReading]:
        """Readings newest first."""

    @abstractmethod
    def meter_types(self, asset_id: uuid.UUID) -> List[str]: ...
