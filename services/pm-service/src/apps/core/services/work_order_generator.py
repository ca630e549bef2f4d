"""
Work Order Generator

Turns a due PM schedule into a work order with a snapshot checklist.
"""

import uuid
import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

from django.utils import timezone

from shared.common import metrics
from apps.core.conf import priority_for_criticality
from apps.core.events import event_publisher
from apps.core.exceptions import OpenWorkOrderExistsError
from apps.core.models import PMSchedule, PMTrigger, WorkOrder, WorkOrderTask
from apps.core.registries import ServiceAssetRegistry
from apps.core.store import DjangoMaintenanceStore
from .trigger_service import TriggerService

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    """Outcome of one generate call; ``skipped`` is not an error."""

    schedule_id: uuid.UUID
    work_order: Optional[WorkOrder] = None
    tasks: List[WorkOrderTask] = field(default_factory=list)
    skipped: bool = False
    reason: str = ''

    @property
    def generated(self) -> bool:
        return self.work_order is not None


class WorkOrderGenerator:
    """
    Generates at most one open work order per schedule.

    The open-work-order check runs inside the transaction with the schedule
    row locked; the store's unique constraint is the backstop for races the
    lock cannot cover.
    """

    def __init__(self, store=None, assets=None, triggers=None, publisher=None):
        self.store = store or DjangoMaintenanceStore()
        self.assets = assets or ServiceAssetRegistry()
        self.triggers = triggers or TriggerService(store=self.store)
        self.publisher = publisher or event_publisher

    def generate(self, schedule, as_of: datetime = None) -> GenerationResult:
        """Generate a work order for ``schedule`` (instance or id)."""
        schedule_id = schedule.id if isinstance(schedule, PMSchedule) else schedule
        as_of = as_of or timezone.now()

        with self.store.atomic():
            schedule = self.store.get_schedule(schedule_id, for_update=True)
            triggers = self.store.triggers_for(schedule.id)
            due = self.triggers.due_triggers(schedule, as_of, triggers=triggers)

            existing = self.store.open_work_order_for(schedule.id)
            if existing is not None:
                self._disarm_events(due)
                return self._skipped(schedule, f"work order {existing.human_id} is still open")

            asset = self.assets.get_asset(schedule.asset_id)
            links = self.store.schedule_tasks(schedule.id)
            templates = [self.store.get_pm_task(link.pm_task_id) for link in links]

            work_order = WorkOrder(
                organization_id=asset.organization_id,
                asset_id=schedule.asset_id,
                pm_schedule_id=schedule.id,
                human_id=self.store.next_human_id(asset.organization_id, as_of.year),
                title=f"PM: {schedule.title}",
                description=schedule.description,
                status=WorkOrder.Status.OPEN,
                priority=priority_for_criticality(asset.criticality),
                due_date=schedule.next_due or as_of,
                estimated_hours=self._estimate_hours(templates),
            )
            try:
                self.store.insert_work_order(work_order)
            except OpenWorkOrderExistsError:
                self._disarm_events(due)
                return self._skipped(schedule, "concurrent generation won the race")

            tasks = []
            for link, template in zip(links, templates):
                task = WorkOrderTask(
                    work_order_id=work_order.id,
                    order_index=link.order_index,
                    is_required=link.is_required,
                    origin_pm_task_id=template.id,
                    status=WorkOrderTask.Status.NOT_STARTED,
                    **template.snapshot()
                )
                tasks.append(self.store.save_task(task))

            self._advance(schedule, due, as_of)
            schedule.next_due = self.triggers.next_due_for(schedule, as_of)
            self.store.save_schedule(schedule)

            self.store.on_commit(lambda: self._generated(work_order, len(tasks)))

        logger.info(
            f"Generated work order {work_order.human_id} ({work_order.priority}) "
            f"for schedule {schedule.id} with {len(tasks)} tasks"
        )
        return GenerationResult(schedule_id=schedule.id, work_order=work_order, tasks=tasks)

    # ==========================================================================
    # Helpers
    # ==========================================================================

    def _advance(self, schedule: PMSchedule, due: List[PMTrigger], as_of: datetime) -> None:
        """Move every fired trigger past this firing."""
        for trigger in due:
            kind = PMTrigger.Kind(trigger.kind)
            if kind == PMTrigger.Kind.USAGE_BASED:
                latest = self.store.latest_reading(schedule.asset_id, trigger.meter_type)
                if latest is not None:
                    trigger.baseline_value = latest.value
            elif kind == PMTrigger.Kind.EVENT_BASED:
                trigger.event_pending = False
            trigger.last_fired_at = as_of
            self.store.save_trigger(trigger)

    def _disarm_events(self, due: List[PMTrigger]) -> None:
        for trigger in due:
            if trigger.kind == PMTrigger.Kind.EVENT_BASED and trigger.event_pending:
                trigger.event_pending = False
                self.store.save_trigger(trigger)

    def _skipped(self, schedule: PMSchedule, reason: str) -> GenerationResult:
        logger.info(f"Skipped generation for schedule {schedule.id}: {reason}")
        self.store.on_commit(metrics.record_skipped)
        return GenerationResult(schedule_id=schedule.id, skipped=True, reason=reason)

    def _generated(self, work_order: WorkOrder, task_count: int) -> None:
        metrics.record_generated(work_order.priority)
        self.publisher.work_order_generated(work_order, task_count)

    @staticmethod
    def _estimate_hours(templates) -> Optional[Decimal]:
        minutes = [t.estimated_minutes for t in templates if t.estimated_minutes]
        if not minutes:
            return None
        return (Decimal(sum(minutes)) / Decimal(60)).quantize(Decimal('0.01'))
