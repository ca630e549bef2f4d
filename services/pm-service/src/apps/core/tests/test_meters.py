"""
Tests for meter readings
"""

import warnings
from datetime import timedelta
from decimal import Decimal

import pytest

from apps.core.exceptions import DataQualityWarning, HistoryImmutableError
from apps.core.services import PMValidationError


class TestRecord:

    def test_record_reading(self, store, meter_service, asset_id, user_id, day0):
        reading = meter_service.record(
            asset_id, 'HOURS', '1250.5', recorded_by_id=user_id, at=day0, unit='h'
        )

        latest = meter_service.latest(asset_id, 'HOURS')
        assert latest.id == reading.id
        assert latest.value == Decimal('1250.5')
        assert latest.recorded_by_id == user_id
        assert latest.is_decrease is False

    @pytest.mark.parametrize('value', ['abc', 'NaN', 'Infinity', None])
    def test_non_numeric_value_rejected(self, meter_service, asset_id, value):
        with pytest.raises(PMValidationError) as exc_info:
            meter_service.record(asset_id, 'HOURS', value)

        assert exc_info.value.field == 'value'

    def test_unknown_meter_type_rejected(self, meter_service, asset_id):
        with pytest.raises(PMValidationError) as exc_info:
            meter_service.record(asset_id, 'FURLONGS', 10)

        assert exc_info.value.field == 'meter_type'

    def test_decrease_flagged_and_warned(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'CYCLES', 500, at=day0)

        with pytest.warns(DataQualityWarning, match='decreased from 500'):
            reading = meter_service.record(asset_id, 'CYCLES', 20, at=day0 + timedelta(days=1))

        assert reading.is_decrease is True
        assert meter_service.latest(asset_id, 'CYCLES').value == Decimal('20')

    def test_gauge_meter_can_go_down(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'TEMPERATURE', 80, at=day0)

        with warnings.catch_warnings():
            warnings.simplefilter('error', DataQualityWarning)
            reading = meter_service.record(asset_id, 'TEMPERATURE', 60, at=day0 + timedelta(hours=1))

        assert reading.is_decrease is False

    def test_backdated_reading_is_not_a_decrease(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'HOURS', 300, at=day0)

        with warnings.catch_warnings():
            warnings.simplefilter('error', DataQualityWarning)
            reading = meter_service.record(asset_id, 'HOURS', 250, at=day0 - timedelta(days=3))

        assert reading.is_decrease is False
        assert meter_service.latest(asset_id, 'HOURS').value == Decimal('300')

    def test_decrease_event_published(self, memory_store, publisher, asset_id, day0):
        from apps.core.services import MeterReadingService

        service = MeterReadingService(store=memory_store, publisher=publisher)
        service.record(asset_id, 'MILES', 1000, at=day0)

        with pytest.warns(DataQualityWarning):
            service.record(asset_id, 'MILES', 3, at=day0 + timedelta(days=1))

        assert publisher.events == ['pm.meter.decrease_detected']

    def test_readings_are_append_only(self, store, meter_service, asset_id, day0):
        reading = meter_service.record(asset_id, 'HOURS', 10, at=day0)

        with pytest.raises(HistoryImmutableError):
            store.insert_reading(reading)


class TestBulkRecord:

    def test_bulk_record(self, meter_service, asset_id, day0):
        created = meter_service.record_bulk([
            {'asset_id': asset_id, 'meter_type': 'HOURS', 'value': 10, 'at': day0},
            {'asset_id': asset_id, 'meter_type': 'CYCLES', 'value': 4, 'at': day0},
        ])

        assert len(created) == 2
        assert meter_service.meter_types(asset_id) == ['CYCLES', 'HOURS']

    def test_bulk_record_is_all_or_nothing(self, meter_service, asset_id, day0):
        with pytest.raises(PMValidationError):
            meter_service.record_bulk([
                {'asset_id': asset_id, 'meter_type': 'HOURS', 'value': 10, 'at': day0},
                {'asset_id': asset_id, 'meter_type': 'HOURS', 'value': 'broken', 'at': day0},
            ])

        assert meter_service.readings(asset_id) == []


class TestQueries:

    def test_latest_readings_per_type(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'HOURS', 10, at=day0)
        meter_service.record(asset_id, 'HOURS', 12, at=day0 + timedelta(hours=2))
        meter_service.record(asset_id, 'VIBRATION', '0.8', at=day0 + timedelta(hours=1))

        latest = meter_service.latest_readings(asset_id)

        assert set(latest) == {'HOURS', 'VIBRATION'}
        assert latest['HOURS'].value == Decimal('12')
        assert latest['VIBRATION'].value == Decimal('0.8')

    def test_readings_newest_first_with_limit(self, meter_service, asset_id, day0):
        for offset in range(5):
            meter_service.record(asset_id, 'HOURS', offset * 10, at=day0 + timedelta(days=offset))

        rows = meter_service.readings(asset_id, 'HOURS', limit=3)

        assert [r.value for r in rows] == [Decimal('40'), Decimal('30'), Decimal('20')]

    def test_latest_for_unknown_meter(self, meter_service, asset_id):
        assert meter_service.latest(asset_id, 'HOURS') is None


class TestTrend:

    def test_daily_rate(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'HOURS', 100, at=day0 - timedelta(days=20))
        meter_service.record(asset_id, 'HOURS', 160, at=day0)

        rate = meter_service.trend(asset_id, 'HOURS', window_days=30, as_of=day0)

        assert rate == Decimal('2')

    def test_readings_outside_window_ignored(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'HOURS', 0, at=day0 - timedelta(days=60))
        meter_service.record(asset_id, 'HOURS', 100, at=day0 - timedelta(days=10))
        meter_service.record(asset_id, 'HOURS', 130, at=day0)

        rate = meter_service.trend(asset_id, 'HOURS', window_days=30, as_of=day0)

        assert rate == Decimal('1')

    def test_single_reading_has_no_trend(self, meter_service, asset_id, day0):
        meter_service.record(asset_id, 'HOURS', 100, at=day0)

        assert meter_service.trend(asset_id, 'HOURS', as_of=day0) is None

    def test_window_must_be_positive(self, meter_service, asset_id):
        with pytest.raises(PMValidationError):
            meter_service.trend(asset_id, 'HOURS', window_days=0)
