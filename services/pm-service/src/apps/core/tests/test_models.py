"""
Tests for PM models
"""

import uuid
from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction

from apps.core.exceptions import HistoryImmutableError
from apps.core.models import (
    MaintenanceHistory,
    MeterReading,
    PMSchedule,
    PMTask,
    PMTrigger,
    TimeTriggerParams,
    UsageTriggerParams,
    EventTriggerParams,
    WorkOrder,
    WorkOrderTask,
)


@pytest.fixture
def schedule(db, org_id, asset_id):
    return PMSchedule.objects.create(
        organization_id=org_id, asset_id=asset_id, title='Monthly Pump Check'
    )


def make_work_order(schedule, human_id, status=WorkOrder.Status.OPEN):
    return WorkOrder.objects.create(
        organization_id=schedule.organization_id,
        asset_id=schedule.asset_id,
        pm_schedule=schedule,
        human_id=human_id,
        title=f'PM: {schedule.title}',
        status=status,
    )


@pytest.mark.django_db
class TestWorkOrderModel:

    def test_one_open_work_order_per_schedule(self, schedule):
        make_work_order(schedule, 'WO-2026-00001')

        with pytest.raises(IntegrityError):
            with transaction.atomic():
                make_work_order(schedule, 'WO-2026-00002', status=WorkOrder.Status.IN_PROGRESS)

    def test_closed_work_orders_do_not_count(self, schedule):
        make_work_order(schedule, 'WO-2026-00001', status=WorkOrder.Status.COMPLETED)
        make_work_order(schedule, 'WO-2026-00002', status=WorkOrder.Status.CANCELED)

        open_order = make_work_order(schedule, 'WO-2026-00003')

        assert open_order.is_open
        assert schedule.work_orders.count() == 3

    def test_on_hold_work_order_blocks(self, schedule):
        parked = make_work_order(schedule, 'WO-2026-00001', status=WorkOrder.Status.ON_HOLD)

        assert parked.is_open
        with pytest.raises(IntegrityError):
            with transaction.atomic():
                make_work_order(schedule, 'WO-2026-00002')

    def test_status_properties(self, schedule):
        work_order = make_work_order(schedule, 'WO-2026-00001', status=WorkOrder.Status.CANCELED)

        assert work_order.is_terminal
        assert not work_order.is_open
        assert work_order.is_generated
        assert str(work_order) == 'WO-2026-00001: PM: Monthly Pump Check'


@pytest.mark.django_db
class TestWorkOrderTaskModel:

    @pytest.mark.parametrize('current,target,allowed', [
        ('NOT_STARTED', 'IN_PROGRESS', True),
        ('NOT_STARTED', 'FAILED', True),
        ('IN_PROGRESS', 'COMPLETED', True),
        ('IN_PROGRESS', 'NOT_STARTED', False),
        ('COMPLETED', 'FAILED', False),
        ('SKIPPED', 'COMPLETED', False),
    ])
    def test_transitions(self, current, target, allowed):
        task = WorkOrderTask(status=current)

        assert task.can_transition_to(target) is allowed

    def test_terminal_statuses(self):
        assert WorkOrderTask(status='FAILED').is_terminal
        assert not WorkOrderTask(status='IN_PROGRESS').is_terminal


class TestPMTaskModel:

    def test_snapshot(self, org_id):
        pm_task = PMTask(
            organization_id=org_id,
            title='Grease Bearings',
            procedure='Two pumps of grease per fitting.',
            estimated_minutes=10,
        )

        snapshot = pm_task.snapshot()

        assert set(snapshot) == set(PMTask.SNAPSHOT_FIELDS)
        assert snapshot['title'] == 'Grease Bearings'
        assert snapshot['estimated_minutes'] == 10


class TestTriggerParams:

    def test_time_params(self, day0):
        trigger = PMTrigger(kind='TIME_BASED', interval_value=3, interval_unit='months', starts_at=day0)

        assert trigger.params == TimeTriggerParams(
            interval_value=3, interval_unit='months', starts_at=day0, last_fired_at=None
        )

    def test_usage_params(self):
        trigger = PMTrigger(kind='USAGE_BASED', meter_type='HOURS', threshold_delta=Decimal('250'))

        assert trigger.params == UsageTriggerParams(
            meter_type='HOURS', threshold_delta=Decimal('250'), baseline_value=None, last_fired_at=None
        )

    def test_event_params(self):
        assert PMTrigger(kind='EVENT_BASED').params == EventTriggerParams(
            event_pending=False, event_fired_at=None
        )


@pytest.mark.django_db
class TestAppendOnlyModels:

    def test_meter_reading_cannot_be_updated(self, asset_id, day0):
        reading = MeterReading.objects.create(
            asset_id=asset_id, meter_type='HOURS', value=Decimal('12.5'), reading_date=day0
        )

        reading.value = Decimal('13')
        with pytest.raises(HistoryImmutableError):
            reading.save()
        with pytest.raises(HistoryImmutableError):
            reading.delete()

        assert MeterReading.objects.get(pk=reading.pk).value == Decimal('12.5')

    def test_history_total_cost(self, schedule, day0):
        work_order = make_work_order(schedule, 'WO-2026-00001', status=WorkOrder.Status.COMPLETED)
        history = MaintenanceHistory.objects.create(
            organization_id=schedule.organization_id,
            asset_id=schedule.asset_id,
            work_order=work_order,
            type=MaintenanceHistory.MaintenanceType.PREVENTIVE,
            title=work_order.title,
            is_completed=True,
            labor_cost=Decimal('120.00'),
            parts_cost=Decimal('35.50'),
            completed_at=day0,
        )

        assert history.total_cost == Decimal('155.50')

        with pytest.raises(HistoryImmutableError):
            history.delete()
