"""
Meter Reading Model

Append-only usage log per asset and meter type.
"""

from django.db import models

from shared.common.mixins import UUIDPrimaryKeyMixin, AppendOnlyMixin
from apps.core.exceptions import HistoryImmutableError


class MeterReading(UUIDPrimaryKeyMixin, AppendOnlyMixin):
    """
    A single meter value recorded against an asset.

    Rows are never updated; a decreasing value on a cumulative meter is kept
    and flagged with ``is_decrease``.
    """

    append_only_error = HistoryImmutableError

    class MeterType(models.TextChoices):
        HOURS = 'HOURS', 'Hours'
        MILES = 'MILES', 'Miles'
        KILOMETERS = 'KILOMETERS', 'Kilometers'
        CYCLES = 'CYCLES', 'Cycles'
        GALLONS = 'GALLONS', 'Gallons'
        TEMPERATURE = 'TEMPERATURE', 'Temperature'
        PRESSURE = 'PRESSURE', 'Pressure'
        VIBRATION = 'VIBRATION', 'Vibration'
        CUSTOM = 'CUSTOM', 'Custom'

    asset_id = models.UUIDField(db_index=True)
    meter_type = models.CharField(max_length=20, choices=MeterType.choices)
    value = models.DecimalField(max_digits=14, decimal_places=3)
    unit = models.CharField(max_length=20, blank=True, default='')
    recorded_by_id = models.UUIDField(blank=True, null=True)
    reading_date = models.DateTimeField()
    notes = models.TextField(blank=True, default='')
    is_decrease = models.BooleanField(
        default=False,
        help_text='Lower than the previous reading of a cumulative meter'
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'meter_readings'
        ordering = ['-reading_date']
        indexes = [
            models.Index(fields=['asset_id', 'meter_type', 'reading_date']),
        ]

    def __str__(self):
        return f"{self.meter_type} {self.value}{self.unit} @ {self.reading_date}"
