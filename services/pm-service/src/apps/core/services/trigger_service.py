"""
Trigger Service

Trigger administration, due evaluation and next-due projection.
"""

import uuid
import logging
import operator
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List

from dateutil.relativedelta import relativedelta
from django.utils import timezone

from apps.core.conf import pm_setting
from apps.core.events import event_publisher
from apps.core.exceptions import PMValidationError
from apps.core.models import (
    MeterReading,
    PMSchedule,
    PMTrigger,
    TimeTriggerParams,
    UsageTriggerParams,
    ConditionTriggerParams,
    EventTriggerParams,
)
from apps.core.registries import ServiceTelemetryFeed
from apps.core.store import DjangoMaintenanceStore
from .meter_reading_service import MeterReadingService

logger = logging.getLogger(__name__)


COMPARATORS = {
    '>': operator.gt,
    '>=': operator.ge,
    '<': operator.lt,
    '<=': operator.le,
    '==': operator.eq,
}

KIND_FIELDS = {
    PMTrigger.Kind.TIME_BASED: ('interval_value', 'interval_unit', 'starts_at'),
    PMTrigger.Kind.USAGE_BASED: ('meter_type', 'threshold_delta', 'baseline_value'),
    PMTrigger.Kind.CONDITION_BASED: ('sensor_field', 'operator', 'threshold_value'),
    PMTrigger.Kind.EVENT_BASED: (),
}


def interval_delta(value: int, unit: str) -> relativedelta:
    """Calendar-aware interval; months keep the day of month where possible."""
    unit = str(unit)
    if unit == PMTrigger.IntervalUnit.DAYS:
        return relativedelta(days=value)
    if unit == PMTrigger.IntervalUnit.WEEKS:
        return relativedelta(weeks=value)
    if unit == PMTrigger.IntervalUnit.MONTHS:
        return relativedelta(months=value)
    raise PMValidationError(f"Unknown interval unit: {unit}", field='interval_unit')


class TriggerService:
    """
    Service for PM triggers.

    Evaluation methods only read; trigger state (last_fired_at,
    baseline_value, event_pending) is advanced by the work order generator.
    """

    def __init__(self, store=None, telemetry=None, meters=None, publisher=None):
        self.store = store or DjangoMaintenanceStore()
        self.telemetry = telemetry or ServiceTelemetryFeed()
        self.meters = meters or MeterReadingService(store=self.store)
        self.publisher = publisher or event_publisher
        self._evaluators = {
            PMTrigger.Kind.TIME_BASED: self._time_due,
            PMTrigger.Kind.USAGE_BASED: self._usage_due,
            PMTrigger.Kind.CONDITION_BASED: self._condition_due,
            PMTrigger.Kind.EVENT_BASED: self._event_due,
        }

    # ==========================================================================
    # Administration
    # ==========================================================================

    def create_trigger(
        self,
        schedule_id: uuid.UUID,
        kind: str,
        is_active: bool = True,
        **params
    ) -> PMTrigger:
        """Create a trigger and refresh the schedule's next due date."""
        with self.store.atomic():
            schedule = self.store.get_schedule(schedule_id, for_update=True)
            kind = self._validate_kind(kind)
            self._check_fields(kind, params)

            trigger = PMTrigger(
                pm_schedule_id=schedule.id,
                kind=kind,
                is_active=is_active,
                **params
            )
            self._normalize(trigger)
            self.validate(trigger)

            if kind == PMTrigger.Kind.TIME_BASED and trigger.starts_at is None:
                trigger.starts_at = schedule.next_due or (
                    timezone.now() + interval_delta(trigger.interval_value, trigger.interval_unit)
                )

            self.store.save_trigger(trigger)
            self.refresh_next_due(schedule)

        logger.info(f"Created {kind} trigger {trigger.id} on schedule {schedule_id}")
        return trigger

    def update_trigger(self, trigger_id: uuid.UUID, **params) -> PMTrigger:
        """Update kind-specific parameters; the kind itself is fixed."""
        with self.store.atomic():
            trigger = self.store.get_trigger(trigger_id, for_update=True)
            self._check_fields(trigger.kind, params, allow_active=True)
            for field, value in params.items():
                setattr(trigger, field, value)
            self._normalize(trigger)
            self.validate(trigger)
            self.store.save_trigger(trigger)
            self.refresh_next_due(self.store.get_schedule(trigger.pm_schedule_id, for_update=True))

        logger.info(f"Updated trigger {trigger_id}")
        return trigger

    def deactivate_trigger(self, trigger_id: uuid.UUID) -> PMTrigger:
        with self.store.atomic():
            trigger = self.store.get_trigger(trigger_id, for_update=True)
            trigger.is_active = False
            trigger.event_pending = False
            self.store.save_trigger(trigger)
            self.refresh_next_due(self.store.get_schedule(trigger.pm_schedule_id, for_update=True))

        logger.info(f"Deactivated trigger {trigger_id}")
        return trigger

    def get_triggers(self, schedule_id: uuid.UUID, active_only: bool = False) -> List[PMTrigger]:
        self.store.get_schedule(schedule_id)
        return self.store.triggers_for(schedule_id, active_only=active_only)

    def fire_event(self, trigger_id: uuid.UUID, fired_at: datetime = None) -> PMTrigger:
        """Arm an EVENT_BASED trigger for the next generation pass."""
        with self.store.atomic():
            trigger = self.store.get_trigger(trigger_id, for_update=True)
            if trigger.kind != PMTrigger.Kind.EVENT_BASED:
                raise PMValidationError(
                    f"Trigger {trigger_id} is {trigger.kind}, only EVENT_BASED triggers can be fired",
                    field='kind'
                )
            if not trigger.is_active:
                raise PMValidationError(f"Trigger {trigger_id} is inactive", field='is_active')

            trigger.event_pending = True
            trigger.event_fired_at = fired_at or timezone.now()
            self.store.save_trigger(trigger)
            self.store.on_commit(lambda: self.publisher.trigger_event_fired(trigger))

        logger.info(f"Event trigger {trigger_id} fired")
        return trigger

    # ==========================================================================
    # Validation
    # ==========================================================================

    def _validate_kind(self, kind: str) -> str:
        if kind not in PMTrigger.Kind.values:
            raise PMValidationError(f"Unknown trigger kind: {kind}", field='kind')
        return PMTrigger.Kind(kind)

    def _check_fields(self, kind: str, params: Dict[str, Any], allow_active: bool = False):
        allowed = set(KIND_FIELDS[PMTrigger.Kind(kind)])
        if allow_active:
            allowed.add('is_active')
        unexpected = sorted(set(params) - allowed)
        if unexpected:
            raise PMValidationError(
                f"Parameters {', '.join(unexpected)} are not valid for {kind} triggers",
                field=unexpected[0]
            )

    def _normalize(self, trigger: PMTrigger) -> None:
        for field in ('threshold_delta', 'baseline_value', 'threshold_value'):
            value = getattr(trigger, field)
            if value is None or isinstance(value, Decimal):
                continue
            try:
                setattr(trigger, field, Decimal(str(value)))
            except InvalidOperation:
                raise PMValidationError(f"{field} must be numeric", field=field)

    def validate(self, trigger: PMTrigger) -> None:
        """Raise PMValidationError for malformed kind-specific parameters."""
        params = trigger.params

        if isinstance(params, TimeTriggerParams):
            if not isinstance(params.interval_value, int) or params.interval_value <= 0:
                raise PMValidationError("Interval must be a positive integer", field='interval_value')
            if params.interval_unit not in PMTrigger.IntervalUnit.values:
                raise PMValidationError(
                    f"Interval unit must be one of {PMTrigger.IntervalUnit.values}",
                    field='interval_unit'
                )

        elif isinstance(params, UsageTriggerParams):
            if not params.meter_type:
                raise PMValidationError("Usage triggers need a meter type", field='meter_type')
            if params.meter_type not in MeterReading.MeterType.values:
                raise PMValidationError(f"Unknown meter type: {params.meter_type}", field='meter_type')
            if params.threshold_delta is None or params.threshold_delta <= 0:
                raise PMValidationError("Threshold delta must be positive", field='threshold_delta')

        elif isinstance(params, ConditionTriggerParams):
            if not params.sensor_field:
                raise PMValidationError("Condition triggers need a sensor field", field='sensor_field')
            if params.operator not in COMPARATORS:
                raise PMValidationError(
                    f"Operator must be one of {', '.join(COMPARATORS)}",
                    field='operator'
                )
            if params.threshold_value is None:
                raise PMValidationError("Condition triggers need a threshold value", field='threshold_value')

    # ==========================================================================
    # Evaluation
    # ==========================================================================

    def is_trigger_due(self, trigger: PMTrigger, schedule: PMSchedule, as_of: datetime) -> bool:
        if not trigger.is_active:
            return False
        return self._evaluators[PMTrigger.Kind(trigger.kind)](trigger, schedule, as_of)

    def due_triggers(
        self,
        schedule: PMSchedule,
        as_of: datetime,
        triggers: List[PMTrigger] = None
    ) -> List[PMTrigger]:
        if triggers is None:
            triggers = self.store.triggers_for(schedule.id)
        return [t for t in triggers if self.is_trigger_due(t, schedule, as_of)]

    def is_schedule_due(self, schedule: PMSchedule, as_of: datetime) -> bool:
        """Any active trigger due; a schedule without active triggers is never due."""
        if not schedule.is_active:
            return False
        return any(
            self.is_trigger_due(t, schedule, as_of)
            for t in self.store.triggers_for(schedule.id)
        )

    def due_schedules(self, as_of: datetime = None, organization_id: uuid.UUID = None) -> List[PMSchedule]:
        as_of = as_of or timezone.now()
        due = [
            schedule for schedule in self.store.active_schedules(organization_id)
            if self.is_schedule_due(schedule, as_of)
        ]
        logger.debug(f"{len(due)} PM schedules due as of {as_of.isoformat()}")
        return due

    def _time_due(self, trigger, schedule, as_of):
        due_at = self._time_due_at(trigger)
        return due_at is not None and as_of >= due_at

    def _time_due_at(self, trigger) -> Optional[datetime]:
        params = trigger.params
        interval = interval_delta(params.interval_value, params.interval_unit)
        if params.last_fired_at is not None:
            return params.last_fired_at + interval
        if params.starts_at is not None:
            return params.starts_at
        if trigger.created_at is not None:
            return trigger.created_at + interval
        return None

    def usage_since_baseline(self, trigger, schedule) -> Optional[Decimal]:
        """
        Usage accrued since the trigger's baseline, or None without readings.

        A decreasing reading after the last firing is a meter reset: its value
        becomes the baseline. Before the first firing an explicit baseline only
        yields to resets stored after the trigger was created.
        """
        params = trigger.params
        latest = self.store.latest_reading(schedule.asset_id, params.meter_type)
        if latest is None:
            return None

        baseline = params.baseline_value if params.baseline_value is not None else Decimal('0')
        if params.last_fired_at is not None:
            reset = self.store.latest_decrease(
                schedule.asset_id, params.meter_type, after=params.last_fired_at
            )
        elif params.baseline_value is not None:
            reset = self.store.latest_decrease(
                schedule.asset_id, params.meter_type, recorded_after=trigger.created_at
            )
        else:
            reset = self.store.latest_decrease(schedule.asset_id, params.meter_type)
        if reset is not None:
            baseline = reset.value
        return latest.value - baseline

    def _usage_due(self, trigger, schedule, as_of):
        usage = self.usage_since_baseline(trigger, schedule)
        return usage is not None and usage >= trigger.params.threshold_delta

    def _condition_due(self, trigger, schedule, as_of):
        params = trigger.params
        value = self.telemetry.current_value(schedule.asset_id, params.sensor_field)
        if value is None:
            return False
        value = Decimal(str(value))
        if not value.is_finite():
            logger.warning(f"Ignoring non-finite {params.sensor_field} value on asset {schedule.asset_id}")
            return False
        return COMPARATORS[str(params.operator)](value, params.threshold_value)

    def _event_due(self, trigger, schedule, as_of):
        return trigger.params.event_pending

    # ==========================================================================
    # Projection
    # ==========================================================================

    def project_due(self, trigger: PMTrigger, schedule: PMSchedule, as_of: datetime = None) -> Optional[datetime]:
        """
        Projected due timestamp of one trigger.

        Condition and event triggers cannot be projected. Usage triggers are
        projected from the meter's recent daily rate.
        """
        if not trigger.is_active:
            return None
        kind = PMTrigger.Kind(trigger.kind)
        if kind == PMTrigger.Kind.TIME_BASED:
            return self._time_due_at(trigger)
        if kind == PMTrigger.Kind.USAGE_BASED:
            return self._project_usage(trigger, schedule, as_of or timezone.now())
        return None

    def _project_usage(self, trigger, schedule, as_of):
        params = trigger.params
        latest = self.store.latest_reading(schedule.asset_id, params.meter_type)
        if latest is None:
            return None

        usage = self.usage_since_baseline(trigger, schedule)
        remaining = params.threshold_delta - usage
        if remaining <= 0:
            return latest.reading_date

        rate = self.meters.trend(
            schedule.asset_id,
            params.meter_type,
            window_days=pm_setting('USAGE_PROJECTION_WINDOW_DAYS'),
            as_of=as_of,
        )
        if not rate or rate <= 0:
            return None
        return latest.reading_date + timedelta(days=float(remaining / rate))

    def next_due_for(
        self,
        schedule: PMSchedule,
        as_of: datetime = None,
        triggers: List[PMTrigger] = None
    ) -> Optional[datetime]:
        """Earliest projected due timestamp across active triggers."""
        if triggers is None:
            triggers = self.store.triggers_for(schedule.id)
        projections = [
            due for due in (self.project_due(t, schedule, as_of) for t in triggers)
            if due is not None
        ]
        return min(projections) if projections else None

    def refresh_next_due(self, schedule: PMSchedule, as_of: datetime = None) -> PMSchedule:
        schedule.next_due = self.next_due_for(schedule, as_of)
        self.store.save_schedule(schedule)
        return schedule
