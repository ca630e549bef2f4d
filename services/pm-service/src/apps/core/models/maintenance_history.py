"""
Maintenance History Model

Append-only audit of work order closures.
"""

from decimal import Decimal

from django.db import models

from shared.common.mixins import UUIDPrimaryKeyMixin, OrganizationMixin, AppendOnlyMixin
from apps.core.exceptions import HistoryImmutableError
from .pm_schedule import PMSchedule
from .work_order import WorkOrder


class MaintenanceHistory(UUIDPrimaryKeyMixin, OrganizationMixin, AppendOnlyMixin):
    """
    One row per work order closure, successful or partial.
    """

    append_only_error = HistoryImmutableError

    class MaintenanceType(models.TextChoices):
        PREVENTIVE = 'PREVENTIVE', 'Preventive'
        CORRECTIVE = 'CORRECTIVE', 'Corrective'
        EMERGENCY = 'EMERGENCY', 'Emergency'
        INSPECTION = 'INSPECTION', 'Inspection'
        CALIBRATION = 'CALIBRATION', 'Calibration'

    asset_id = models.UUIDField(db_index=True)
    work_order = models.OneToOneField(
        WorkOrder,
        on_delete=models.PROTECT,
        related_name='history'
    )
    pm_schedule = models.ForeignKey(
        PMSchedule,
        on_delete=models.PROTECT,
        related_name='history',
        blank=True,
        null=True
    )
    type = models.CharField(max_length=20, choices=MaintenanceType.choices)
    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')

    duration_minutes = models.PositiveIntegerField(default=0)
    labor_cost = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0')
    )
    parts_cost = models.DecimalField(
        max_digits=10, decimal_places=2, default=Decimal('0')
    )

    is_completed = models.BooleanField()
    completed_at = models.DateTimeField()
    performed_by_id = models.UUIDField(blank=True, null=True)
    failed_task_ids = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'maintenance_history'
        ordering = ['-completed_at']
        verbose_name = 'Maintenance History'
        verbose_name_plural = 'Maintenance History'
        indexes = [
            models.Index(fields=['asset_id', 'completed_at']),
            models.Index(fields=['organization_id', 'completed_at']),
        ]

    def __str__(self):
        outcome = 'completed' if self.is_completed else 'partial'
        return f"{self.title} ({outcome})"

    @property
    def total_cost(self) -> Decimal:
        return (self.labor_cost or Decimal('0')) + (self.parts_cost or Decimal('0'))
