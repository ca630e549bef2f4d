# services/pm-service/src/conftest.py
"""
Pytest configuration for PM Service
"""

import os

os.environ.setdefault('DJANGO_ENV', 'test')
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.test')

import uuid
from datetime import datetime, timezone as dt_timezone

import pytest


# =============================================================================
# Identifiers & Clock
# =============================================================================

@pytest.fixture
def org_id():
    """Generate a test organization ID."""
    return uuid.uuid4()


@pytest.fixture
def asset_id():
    """Generate a test asset ID."""
    return uuid.uuid4()


@pytest.fixture
def user_id():
    """Generate a test user ID."""
    return uuid.uuid4()


@pytest.fixture
def day0():
    """Fixed reference instant for schedule arithmetic."""
    return datetime(2026, 3, 2, 8, 0, tzinfo=dt_timezone.utc)


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def asset(org_id, asset_id):
    from apps.core.registries import AssetInfo, AssetCriticality
    return AssetInfo(
        id=asset_id,
        criticality=AssetCriticality.HIGH,
        organization_id=org_id,
        name='Air Handler 3',
    )


@pytest.fixture
def assets(asset):
    from apps.core.registries import StaticAssetRegistry
    return StaticAssetRegistry([asset])


@pytest.fixture
def telemetry():
    from apps.core.registries import StaticTelemetryFeed
    return StaticTelemetryFeed()


@pytest.fixture
def managers(org_id):
    return [uuid.uuid4(), uuid.uuid4()]


@pytest.fixture
def roles(org_id, managers):
    from apps.core.registries import StaticRoleDirectory, Role
    directory = StaticRoleDirectory()
    for manager_id in managers:
        directory.add_member(org_id, manager_id, Role.MANAGER)
    directory.add_member(org_id, uuid.uuid4(), Role.TECHNICIAN)
    return directory


@pytest.fixture
def publisher():
    """Event publisher that keeps what it published."""
    from apps.core.events import PMEventPublisher

    class RecordingPublisher(PMEventPublisher):
        def __init__(self):
            self.events = []

        def _send(self, event_type, message):
            self.events.append(event_type)

    return RecordingPublisher()


# =============================================================================
# Engine
# =============================================================================

@pytest.fixture(params=['memory', pytest.param('django', marks=pytest.mark.django_db)])
def store(request):
    """Every engine test runs against both store implementations."""
    from apps.core.store import InMemoryMaintenanceStore, DjangoMaintenanceStore

    if request.param == 'memory':
        return InMemoryMaintenanceStore()
    return DjangoMaintenanceStore()


@pytest.fixture
def memory_store():
    from apps.core.store import InMemoryMaintenanceStore
    return InMemoryMaintenanceStore()


@pytest.fixture
def meter_service(store, publisher):
    from apps.core.services import MeterReadingService
    return MeterReadingService(store=store, publisher=publisher)


@pytest.fixture
def trigger_service(store, telemetry, meter_service, publisher):
    from apps.core.services import TriggerService
    return TriggerService(store=store, telemetry=telemetry, meters=meter_service, publisher=publisher)


@pytest.fixture
def generator(store, assets, trigger_service, publisher):
    from apps.core.services import WorkOrderGenerator
    return WorkOrderGenerator(store=store, assets=assets, triggers=trigger_service, publisher=publisher)


@pytest.fixture
def history_service(store):
    from apps.core.services import MaintenanceHistoryService
    return MaintenanceHistoryService(store=store)


@pytest.fixture
def completion_service(store, assets, roles, trigger_service, history_service, publisher):
    from apps.core.services import TaskCompletionService
    return TaskCompletionService(
        store=store,
        assets=assets,
        roles=roles,
        triggers=trigger_service,
        history=history_service,
        publisher=publisher,
    )


@pytest.fixture
def notifier(store, assets, roles, history_service):
    from apps.core.services import EscalationNotifier
    return EscalationNotifier(store=store, assets=assets, roles=roles, history=history_service)


@pytest.fixture
def scheduler(store, trigger_service, generator, notifier, publisher):
    from apps.core.services import PMSchedulerService
    return PMSchedulerService(
        store=store,
        triggers=trigger_service,
        generator=generator,
        notifier=notifier,
        publisher=publisher,
    )


# =============================================================================
# Data
# =============================================================================

@pytest.fixture
def filter_task(scheduler, org_id):
    """PM task template."""
    return scheduler.create_pm_task(
        organization_id=org_id,
        title='Replace Filter',
        procedure='Remove the old filter and fit a new MERV-13 filter.',
        safety_requirements='Lock out the unit before opening.',
        tools_required='Screwdriver',
        parts_required='MERV-13 filter',
        estimated_minutes=30,
    )


@pytest.fixture
def weekly_schedule(scheduler, trigger_service, org_id, asset_id, filter_task, day0):
    """'Weekly Filter Change' with a 7 day time trigger due at day0."""
    schedule = scheduler.create_schedule(
        organization_id=org_id,
        asset_id=asset_id,
        title='Weekly Filter Change',
        next_due=day0,
    )
    scheduler.add_task(schedule.id, filter_task.id)
    trigger_service.create_trigger(
        schedule.id,
        'TIME_BASED',
        interval_value=7,
        interval_unit='days',
    )
    return scheduler.get_schedule(schedule.id)
