"""
PM Schedule Models

Recurring maintenance definitions, their ordered checklist and triggers.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Union

from django.db import models

from shared.common.mixins import (
    UUIDPrimaryKeyMixin,
    TimestampMixin,
    OrganizationMixin,
    ActiveMixin,
)
from .pm_task import PMTask
from .meter_reading import MeterReading


class PMSchedule(UUIDPrimaryKeyMixin, TimestampMixin, OrganizationMixin, ActiveMixin):
    """
    Recurring maintenance definition on one asset.

    next_due is the earliest projected due timestamp across the active
    triggers, or an expedited remediation date after a failed work order.
    It is null when no trigger can project a date.
    """

    title = models.CharField(max_length=255)
    description = models.TextField(blank=True, default='')
    asset_id = models.UUIDField(db_index=True)
    next_due = models.DateTimeField(blank=True, null=True, db_index=True)

    class Meta:
        db_table = 'pm_schedules'
        ordering = ['next_due']
        verbose_name = 'PM Schedule'
        verbose_name_plural = 'PM Schedules'
        indexes = [
            models.Index(fields=['organization_id', 'is_active']),
            models.Index(fields=['asset_id']),
        ]

    def __str__(self):
        return self.title


class PMScheduleTask(UUIDPrimaryKeyMixin):
    """Ordered link between a schedule and a task template."""

    pm_schedule = models.ForeignKey(
        PMSchedule,
        on_delete=models.CASCADE,
        related_name='task_links'
    )
    pm_task = models.ForeignKey(
        PMTask,
        on_delete=models.PROTECT,
        related_name='schedule_links'
    )
    order_index = models.PositiveIntegerField()
    is_required = models.BooleanField(default=True)

    class Meta:
        db_table = 'pm_schedule_tasks'
        ordering = ['pm_schedule', 'order_index']
        constraints = [
            models.UniqueConstraint(
                fields=['pm_schedule', 'order_index'],
                name='unique_pm_schedule_task_order'
            ),
        ]

    def __str__(self):
        return f"{self.pm_schedule_id} #{self.order_index}"


# =============================================================================
# TRIGGER PARAMETERS
# =============================================================================

@dataclass(frozen=True)
class TimeTriggerParams:
    interval_value: int
    interval_unit: str
    starts_at: Optional[datetime]
    last_fired_at: Optional[datetime]


@dataclass(frozen=True)
class UsageTriggerParams:
    meter_type: str
    threshold_delta: Decimal
    baseline_value: Optional[Decimal]
    last_fired_at: Optional[datetime]


@dataclass(frozen=True)
class ConditionTriggerParams:
    sensor_field: str
    operator: str
    threshold_value: Decimal


@dataclass(frozen=True)
class EventTriggerParams:
    event_pending: bool
    event_fired_at: Optional[datetime]


TriggerParams = Union[
    TimeTriggerParams,
    UsageTriggerParams,
    ConditionTriggerParams,
    EventTriggerParams,
]


class PMTrigger(UUIDPrimaryKeyMixin, TimestampMixin, ActiveMixin):
    """
    A condition that makes a PM schedule due.

    One row holds exactly one kind; only the columns of that kind are
    meaningful and ``params`` exposes them as a typed value.
    """

    class Kind(models.TextChoices):
        TIME_BASED = 'TIME_BASED', 'Time Based'
        USAGE_BASED = 'USAGE_BASED', 'Usage Based'
        CONDITION_BASED = 'CONDITION_BASED', 'Condition Based'
        EVENT_BASED = 'EVENT_BASED', 'Event Based'

    class IntervalUnit(models.TextChoices):
        DAYS = 'days', 'Days'
        WEEKS = 'weeks', 'Weeks'
        MONTHS = 'months', 'Months'

    class Operator(models.TextChoices):
        GT = '>', 'Greater Than'
        GTE = '>=', 'Greater Than or Equal'
        LT = '<', 'Less Than'
        LTE = '<=', 'Less Than or Equal'
        EQ = '==', 'Equal'

    pm_schedule = models.ForeignKey(
        PMSchedule,
        on_delete=models.CASCADE,
        related_name='triggers'
    )
    kind = models.CharField(max_length=20, choices=Kind.choices)

    # ==========================================================================
    # Time Based
    # ==========================================================================

    interval_value = models.PositiveIntegerField(blank=True, null=True)
    interval_unit = models.CharField(
        max_length=10,
        choices=IntervalUnit.choices,
        blank=True,
        null=True
    )
    starts_at = models.DateTimeField(
        blank=True,
        null=True,
        help_text='First due date while the trigger has never fired'
    )

    # ==========================================================================
    # Usage Based
    # ==========================================================================

    meter_type = models.CharField(
        max_length=20,
        choices=MeterReading.MeterType.choices,
        blank=True,
        null=True
    )
    threshold_delta = models.DecimalField(
        max_digits=14, decimal_places=3, blank=True, null=True
    )
    baseline_value = models.DecimalField(
        max_digits=14, decimal_places=3, blank=True, null=True,
        help_text='Meter value at last firing'
    )

    # ==========================================================================
    # Condition Based
    # ==========================================================================

    sensor_field = models.CharField(max_length=100, blank=True, null=True)
    operator = models.CharField(
        max_length=2,
        choices=Operator.choices,
        blank=True,
        null=True
    )
    threshold_value = models.DecimalField(
        max_digits=14, decimal_places=3, blank=True, null=True
    )

    # ==========================================================================
    # Event Based
    # ==========================================================================

    event_pending = models.BooleanField(default=False)
    event_fired_at = models.DateTimeField(blank=True, null=True)

    # Advanced by the generator only
    last_fired_at = models.DateTimeField(blank=True, null=True)

    class Meta:
        db_table = 'pm_triggers'
        ordering = ['created_at']
        indexes = [
            models.Index(fields=['pm_schedule', 'is_active']),
            models.Index(fields=['kind']),
        ]

    def __str__(self):
        return f"{self.get_kind_display()} trigger on {self.pm_schedule_id}"

    @property
    def params(self) -> TriggerParams:
        if self.kind == self.Kind.TIME_BASED:
            return TimeTriggerParams(
                interval_value=self.interval_value,
                interval_unit=self.interval_unit,
                starts_at=self.starts_at,
                last_fired_at=self.last_fired_at,
            )
        if self.kind == self.Kind.USAGE_BASED:
            return UsageTriggerParams(
                meter_type=self.meter_type,
                threshold_delta=self.threshold_delta,
                baseline_value=self.baseline_value,
                last_fired_at=self.last_fired_at,
            )
        if self.kind == self.Kind.CONDITION_BASED:
            return ConditionTriggerParams(
                sensor_field=self.sensor_field,
                operator=self.operator,
                threshold_value=self.threshold_value,
            )
        if self.kind == self.Kind.EVENT_BASED:
            return EventTriggerParams(
                event_pending=self.event_pending,
                event_fired_at=self.event_fired_at,
            )
        raise ValueError(f"Unknown trigger kind: {self.kind}")
