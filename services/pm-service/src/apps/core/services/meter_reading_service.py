"""
Meter Reading Service

Append-only meter log and advisory usage trends.
"""

import uuid
import logging
import warnings
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List

from django.utils import timezone

from apps.core.conf import pm_setting
from apps.core.events import event_publisher
from apps.core.exceptions import PMValidationError, DataQualityWarning
from apps.core.models import MeterReading
from apps.core.store import DjangoMaintenanceStore

logger = logging.getLogger(__name__)


class MeterReadingService:
    """
    Service for recording and querying meter readings.

    Handles:
    - Reading ingest with decrease detection
    - Latest value per meter
    - Daily usage rate over a window
    """

    def __init__(self, store=None, publisher=None):
        self.store = store or DjangoMaintenanceStore()
        self.publisher = publisher or event_publisher

    # ==========================================================================
    # Ingest
    # ==========================================================================

    def record(
        self,
        asset_id: uuid.UUID,
        meter_type: str,
        value,
        recorded_by_id: uuid.UUID = None,
        at: datetime = None,
        unit: str = '',
        notes: str = ''
    ) -> MeterReading:
        """
        Append a reading.

        A value lower than the previous reading of a cumulative meter is
        still stored, flagged ``is_decrease`` and reported with a
        DataQualityWarning.
        """
        if meter_type not in MeterReading.MeterType.values:
            raise PMValidationError(f"Unknown meter type: {meter_type}", field='meter_type')
        value = self._to_decimal(value)
        at = at or timezone.now()

        with self.store.atomic():
            previous = self.store.latest_reading(asset_id, meter_type)
            is_decrease = (
                previous is not None
                and meter_type in pm_setting('CUMULATIVE_METER_TYPES')
                and previous.reading_date <= at
                and value < previous.value
            )

            reading = MeterReading(
                asset_id=asset_id,
                meter_type=meter_type,
                value=value,
                unit=unit,
                recorded_by_id=recorded_by_id,
                reading_date=at,
                notes=notes,
                is_decrease=is_decrease,
            )
            self.store.insert_reading(reading)

            if is_decrease:
                message = (
                    f"{meter_type} reading for asset {asset_id} decreased "
                    f"from {previous.value} to {value}; treating as a meter reset"
                )
                logger.warning(message)
                warnings.warn(message, DataQualityWarning, stacklevel=2)
                self.store.on_commit(
                    lambda: self.publisher.meter_decrease_detected(reading, previous)
                )

        return reading

    def record_bulk(self, readings: List[Dict[str, Any]]) -> List[MeterReading]:
        """Record several readings in one transaction."""
        with self.store.atomic():
            created = [self.record(**data) for data in readings]
        logger.info(f"Recorded {len(created)} meter readings")
        return created

    @staticmethod
    def _to_decimal(value) -> Decimal:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise PMValidationError(f"Meter value must be numeric, got {value!r}", field='value')
        if not result.is_finite():
            raise PMValidationError(f"Meter value must be finite, got {value!r}", field='value')
        return result

    # ==========================================================================
    # Queries
    # ==========================================================================

    def latest(self, asset_id: uuid.UUID, meter_type: str) -> Optional[MeterReading]:
        return self.store.latest_reading(asset_id, meter_type)

    def readings(
        self,
        asset_id: uuid.UUID,
        meter_type: str = None,
        limit: int = 100
    ) -> List[MeterReading]:
        return self.store.readings(asset_id, meter_type, limit=limit)

    def latest_readings(self, asset_id: uuid.UUID) -> Dict[str, MeterReading]:
        """Most recent reading for every meter type the asset has."""
        result = {}
        for meter_type in self.store.meter_types(asset_id):
            reading = self.store.latest_reading(asset_id, meter_type)
            if reading is not None:
                result[meter_type] = reading
        return result

    def meter_types(self, asset_id: uuid.UUID) -> List[str]:
        return self.store.meter_types(asset_id)

    def trend(
        self,
        asset_id: uuid.UUID,
        meter_type: str,
        window_days: int = 30,
        as_of: datetime = None
    ) -> Optional[Decimal]:
        """
        Average daily usage over the window.

        (latest value - earliest value in window) / window_days, or None with
        fewer than two readings in the window. Advisory only; triggers fire
        on recorded readings, never on a projected rate.
        """
        if window_days <= 0:
            raise PMValidationError("window_days must be positive", field='window_days')
        as_of = as_of or timezone.now()
        since = as_of - timedelta(days=window_days)

        rows = [
            r for r in self.store.readings(asset_id, meter_type, since=since)
            if r.reading_date <= as_of
        ]
        if len(rows) < 2:
            return None

        latest, earliest = rows[0], rows[-1]
        return (latest.value - earliest.value) / Decimal(window_days)
