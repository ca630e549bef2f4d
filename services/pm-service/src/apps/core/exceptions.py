"""
PM Service Exceptions.
"""


class PMServiceError(Exception):
    """Base exception for PM service errors."""
    pass


class PMValidationError(PMServiceError):
    """Malformed trigger, schedule or template parameters."""

    def __init__(self, message: str, field: str = None):
        super().__init__(message)
        self.field = field


# =============================================================================
# NOT FOUND
# =============================================================================

class NotFoundError(PMServiceError):
    """Referenced record does not exist."""
    pass


class ScheduleNotFoundError(NotFoundError):
    """PM schedule not found."""
    pass


class TriggerNotFoundError(NotFoundError):
    """PM trigger not found."""
    pass


class PMTaskNotFoundError(NotFoundError):
    """PM task template not found."""
    pass


class WorkOrderNotFoundError(NotFoundError):
    """Work order not found."""
    pass


class TaskNotFoundError(NotFoundError):
    """Work order task not found."""
    pass


class AssetNotFoundError(NotFoundError):
    """Asset unknown to the asset registry."""
    pass


# =============================================================================
# STATE / STORE
# =============================================================================

class TaskStateError(PMServiceError):
    """Invalid work order task state transition."""
    pass


class OpenWorkOrderExistsError(PMServiceError):
    """A schedule already has an OPEN or IN_PROGRESS work order."""

    def __init__(self, pm_schedule_id):
        super().__init__(f"Schedule {pm_schedule_id} already has an open work order")
        self.pm_schedule_id = pm_schedule_id


class HistoryImmutableError(PMServiceError):
    """Append-only records cannot be updated or deleted."""
    pass


class ReferencedTemplateError(PMServiceError):
    """PM task template is still linked to a schedule."""
    pass


class TransactionFailure(PMServiceError):
    """Store unavailable or transaction aborted; nothing was persisted."""
    pass


# =============================================================================
# WARNINGS
# =============================================================================

class DataQualityWarning(UserWarning):
    """A cumulative meter reading went down."""
    pass
