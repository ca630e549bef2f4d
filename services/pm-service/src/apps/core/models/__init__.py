"""
PM Service Models

Schedules, triggers, work orders, meter readings and history.
"""

from .pm_task import PMTask
from .meter_reading import MeterReading
from .pm_schedule import (
    PMSchedule,
    PMScheduleTask,
    PMTrigger,
    TimeTriggerParams,
    UsageTriggerParams,
    ConditionTriggerParams,
    EventTriggerParams,
)
from .work_order import WorkOrder, WorkOrderTask
from .maintenance_history import MaintenanceHistory
from .notification import Notification, RelatedEntityType

__all__ = [
    'PMTask',
    'MeterReading',
    'PMSchedule',
    'PMScheduleTask',
    'PMTrigger',
    'TimeTriggerParams',
    'UsageTriggerParams',
    'ConditionTriggerParams',
    'EventTriggerParams',
    'WorkOrder',
    'WorkOrderTask',
    'MaintenanceHistory',
    'Notification',
    'RelatedEntityType',
]
