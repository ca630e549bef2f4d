"""
PM Service Business Logic

Trigger evaluation, work order generation, completion and escalation.
"""

from apps.core.exceptions import (
    PMServiceError,
    PMValidationError,
    NotFoundError,
    ScheduleNotFoundError,
    TriggerNotFoundError,
    PMTaskNotFoundError,
    WorkOrderNotFoundError,
    TaskNotFoundError,
    AssetNotFoundError,
    TaskStateError,
    OpenWorkOrderExistsError,
    HistoryImmutableError,
    ReferencedTemplateError,
    TransactionFailure,
    DataQualityWarning,
)
from .meter_reading_service import MeterReadingService
from .trigger_service import TriggerService
from .history_service import MaintenanceHistoryService
from .work_order_generator import WorkOrderGenerator, GenerationResult
from .escalation_notifier import EscalationNotifier
from .task_completion_service import TaskCompletionService, CompletionOutcome
from .scheduler_service import PMSchedulerService


__all__ = [
    # Services
    'MeterReadingService',
    'TriggerService',
    'MaintenanceHistoryService',
    'WorkOrderGenerator',
    'GenerationResult',
    'TaskCompletionService',
    'CompletionOutcome',
    'EscalationNotifier',
    'PMSchedulerService',

    # Exceptions
    'PMServiceError',
    'PMValidationError',
    'NotFoundError',
    'ScheduleNotFoundError',
    'TriggerNotFoundError',
    'PMTaskNotFoundError',
    'WorkOrderNotFoundError',
    'TaskNotFoundError',
    'AssetNotFoundError',
    'TaskStateError',
    'OpenWorkOrderExistsError',
    'HistoryImmutableError',
    'ReferencedTemplateError',
    'TransactionFailure',
    'DataQualityWarning',
]
