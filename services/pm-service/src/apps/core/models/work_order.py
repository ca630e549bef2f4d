"""
Work Order Models

Generated and ad-hoc maintenance work orders and their checklist tasks.
"""

from decimal import Decimal

from django.db import models
from django.db.models import Q

from shared.common.mixins import UUIDPrimaryKeyMixin, TimestampMixin, OrganizationMixin
from .pm_schedule import PMSchedule


class WorkOrder(UUIDPrimaryKeyMixin, TimestampMixin, OrganizationMixin):
    """
    Actionable unit of maintenance work.

    At most one OPEN or IN_PROGRESS work order may reference a schedule;
    the partial unique constraint backs up the generator's own check.
    Rows are never deleted, only moved to a terminal status.
    """

    class Status(models.TextChoices):
        OPEN = 'OPEN', 'Open'
        IN_PROGRESS = 'IN_PROGRESS', 'In Progress'
        ON_HOLD = 'ON_HOLD', 'On Hold'
        COMPLETED = 'COMPLETED', 'Completed'
        CANCELED = 'CANCELED', 'Canceled'

    class Priority(models.TextChoices):
        LOW = 'LOW', 'Low'
        MEDIUM = 'MEDIUM', 'Medium'
        HIGH = 'HIGH', 'High'
        URGENT = 'URGENT', 'Urgent'

    # Any non-terminal status holds the schedule's single open slot
    OPEN_STATUSES = (Status.OPEN, Status.IN_PROGRESS, Status.ON_HOLD)
    TERMINAL_STATUSES = (Status.COMPLETED, Status.CANCELED)

    # ==========================================================================
    # Identification
    # ==========================================================================

    human_id = models.CharField(max_length=50)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    asset_id = models.UUIDField(db_index=True)

    pm_schedule = models.ForeignKey(
        PMSchedule,
        on_delete=models.PROTECT,
        related_name='work_orders',
        blank=True,
        null=True,
        help_text='Null for ad-hoc work orders'
    )
    parent_work_order = models.ForeignKey(
        'self',
        on_delete=models.PROTECT,
        related_name='follow_ups',
        blank=True,
        null=True,
        help_text='Work order whose failed tasks this one remediates'
    )

    # ==========================================================================
    # Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.OPEN
    )
    priority = models.CharField(
        max_length=20,
        choices=Priority.choices,
        default=Priority.MEDIUM
    )

    # ==========================================================================
    # Assignment & Effort
    # ==========================================================================

    assigned_to_id = models.UUIDField(blank=True, null=True)
    estimated_hours = models.DecimalField(
        max_digits=6, decimal_places=2, blank=True, null=True
    )
    total_logged_hours = models.DecimalField(
        max_digits=8, decimal_places=2, default=Decimal('0')
    )

    # ==========================================================================
    # Timestamps
    # ==========================================================================

    due_date = models.DateTimeField(blank=True, null=True)
    started_at = models.DateTimeField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    canceled_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'work_orders'
        ordering = ['-created_at']
        verbose_name = 'Work Order'
        verbose_name_plural = 'Work Orders'
        indexes = [
            models.Index(fields=['organization_id']),
            models.Index(fields=['asset_id']),
            models.Index(fields=['status']),
            models.Index(fields=['priority']),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=['pm_schedule'],
                condition=Q(status__in=['OPEN', 'IN_PROGRESS', 'ON_HOLD']),
                name='one_open_work_order_per_schedule'
            ),
            models.UniqueConstraint(
                fields=['organization_id', 'human_id'],
                name='unique_work_order_human_id'
            ),
        ]

    def __str__(self):
        return f"{self.human_id}: {self.title}"

    @property
    def is_open(self) -> bool:
        return self.status in self.OPEN_STATUSES

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def is_generated(self) -> bool:
        return self.pm_schedule_id is not None


class WorkOrderTask(UUIDPrimaryKeyMixin, TimestampMixin):
    """
    Checklist item on a work order.

    Carries a snapshot of the originating PM task. Status only moves
    forward; COMPLETED, SKIPPED and FAILED rows are never reopened.
    """

    class Status(models.TextChoices):
        NOT_STARTED = 'NOT_STARTED', 'Not Started'
        IN_PROGRESS = 'IN_PROGRESS', 'In Progress'
        COMPLETED = 'COMPLETED', 'Completed'
        SKIPPED = 'SKIPPED', 'Skipped'
        FAILED = 'FAILED', 'Failed'

    TERMINAL_STATUSES = (Status.COMPLETED, Status.SKIPPED, Status.FAILED)

    ALLOWED_TRANSITIONS = {
        Status.NOT_STARTED: (
            Status.IN_PROGRESS, Status.COMPLETED, Status.SKIPPED, Status.FAILED
        ),
        Status.IN_PROGRESS: (Status.COMPLETED, Status.SKIPPED, Status.FAILED),
        Status.COMPLETED: (),
        Status.SKIPPED: (),
        Status.FAILED: (),
    }

    work_order = models.ForeignKey(
        WorkOrder,
        on_delete=models.PROTECT,
        related_name='tasks'
    )
    order_index = models.PositiveIntegerField()

    # Snapshot of the template at generation time
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    procedure = models.TextField(blank=True, default='')
    safety_requirements = models.TextField(blank=True, default='')
    tools_required = models.TextField(blank=True, default='')
    parts_required = models.TextField(blank=True, default='')
    estimated_minutes = models.PositiveIntegerField(blank=True, null=True)
    is_required = models.BooleanField(default=True)
    origin_pm_task_id = models.UUIDField(blank=True, null=True)

    status = models.CharField(
        max_length=20,
        choices=Status.choices,
        default=Status.NOT_STARTED
    )
    notes = models.TextField(blank=True, default='')
    actual_minutes = models.PositiveIntegerField(blank=True, null=True)
    completed_at = models.DateTimeField(blank=True, null=True)
    completed_by_id = models.UUIDField(blank=True, null=True)

    class Meta:
        db_table = 'work_order_tasks'
        ordering = ['work_order', 'order_index']
        constraints = [
            models.UniqueConstraint(
                fields=['work_order', 'order_index'],
                name='unique_work_order_task_order'
            ),
        ]

    def __str__(self):
        return f"{self.order_index}. {self.title}"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    def can_transition_to(self, status: str) -> bool:
        return status in self.ALLOWED_TRANSITIONS[self.status]
