"""
Tests for task completion, closure and escalation
"""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest

from apps.core.models import WorkOrder, WorkOrderTask, RelatedEntityType, Notification
from apps.core.services import CompletionOutcome, TaskStateError, TaskNotFoundError


@pytest.fixture
def generated(store, generator, weekly_schedule, day0):
    """Open work order for the weekly schedule and its single task."""
    result = generator.generate(weekly_schedule, day0)
    return result.work_order, result.tasks[0]


@pytest.fixture
def two_task_order(store, scheduler, generator, weekly_schedule, org_id, day0):
    belt = scheduler.create_pm_task(
        organization_id=org_id, title='Inspect Belt', estimated_minutes=15
    )
    scheduler.add_task(weekly_schedule.id, belt.id)
    result = generator.generate(weekly_schedule, day0)
    return result.work_order, result.tasks


class TestTaskTransitions:

    def test_first_transition_starts_work_order(self, store, completion_service, generated, day0):
        work_order, task = generated
        at = day0 + timedelta(minutes=5)

        outcome = completion_service.update_task_status(task.id, 'IN_PROGRESS', at=at)

        assert outcome.result == CompletionOutcome.PENDING
        stored = store.get_work_order(work_order.id)
        assert stored.status == WorkOrder.Status.IN_PROGRESS
        assert stored.started_at == at

    def test_details_recorded_on_terminal_transition(self, store, completion_service, generated, user_id, day0):
        work_order, task = generated
        at = day0 + timedelta(minutes=40)

        completion_service.update_task_status(
            task.id, 'COMPLETED', notes='Filter was clogged', actual_minutes=35,
            completed_by=user_id, at=at,
        )

        stored = store.get_task(task.id)
        assert stored.notes == 'Filter was clogged'
        assert stored.actual_minutes == 35
        assert stored.completed_by_id == user_id
        assert stored.completed_at == at

    def test_status_change_callback_keeps_reported_details(self, store, completion_service, generated, user_id, day0):
        work_order, task = generated
        reported = store.get_task(task.id)
        reported.notes = 'Filter swapped, housing cracked'
        reported.actual_minutes = 25
        reported.completed_by_id = user_id

        outcome = completion_service.on_task_status_changed(reported, 'COMPLETED', at=day0)

        saved = store.get_task(task.id)
        assert saved.notes == 'Filter swapped, housing cracked'
        assert saved.actual_minutes == 25
        assert saved.completed_by_id == user_id
        assert outcome.history.duration_minutes == 25
        assert store.get_work_order(work_order.id).total_logged_hours == Decimal('0.42')

    def test_unknown_status_rejected(self, completion_service, generated):
        _, task = generated

        with pytest.raises(TaskStateError):
            completion_service.update_task_status(task.id, 'DONE')

    def test_backward_transition_rejected(self, store, completion_service, two_task_order):
        _, tasks = two_task_order
        completion_service.update_task_status(tasks[0].id, 'IN_PROGRESS')

        with pytest.raises(TaskStateError):
            completion_service.update_task_status(tasks[0].id, 'NOT_STARTED')

        assert store.get_task(tasks[0].id).status == WorkOrderTask.Status.IN_PROGRESS

    def test_terminal_task_cannot_change(self, completion_service, two_task_order):
        _, tasks = two_task_order
        completion_service.update_task_status(tasks[0].id, 'COMPLETED')

        with pytest.raises(TaskStateError):
            completion_service.update_task_status(tasks[0].id, 'FAILED')

    def test_same_status_on_terminal_task_is_noop(self, store, completion_service, two_task_order):
        _, tasks = two_task_order
        completion_service.update_task_status(tasks[0].id, 'COMPLETED', actual_minutes=20)

        outcome = completion_service.update_task_status(tasks[0].id, 'COMPLETED', actual_minutes=99)

        assert outcome.result == CompletionOutcome.PENDING
        assert store.get_task(tasks[0].id).actual_minutes == 20

    def test_negative_minutes_rejected(self, completion_service, generated):
        _, task = generated

        with pytest.raises(TaskStateError):
            completion_service.update_task_status(task.id, 'IN_PROGRESS', actual_minutes=-1)

    def test_unknown_task(self, completion_service):
        with pytest.raises(TaskNotFoundError):
            completion_service.update_task_status(uuid.uuid4(), 'COMPLETED')

    def test_work_order_stays_open_until_all_tasks_terminal(self, store, completion_service, two_task_order):
        work_order, tasks = two_task_order

        outcome = completion_service.update_task_status(tasks[0].id, 'COMPLETED')

        assert outcome.result == CompletionOutcome.PENDING
        assert store.get_work_order(work_order.id).is_open
        assert store.history_for_work_order(work_order.id) is None


class TestSuccessfulClosure:

    def test_all_completed_closes_work_order(self, store, completion_service, generated, weekly_schedule, day0):
        work_order, task = generated
        at = day0 + timedelta(hours=1)

        outcome = completion_service.update_task_status(task.id, 'COMPLETED', actual_minutes=30, at=at)

        assert outcome.result == CompletionOutcome.COMPLETED
        stored = store.get_work_order(work_order.id)
        assert stored.status == WorkOrder.Status.COMPLETED
        assert stored.completed_at == at
        assert stored.total_logged_hours == Decimal('0.50')

        history = store.history_for_work_order(work_order.id)
        assert history.is_completed is True
        assert history.duration_minutes == 30
        assert history.failed_task_ids == []
        assert history.pm_schedule_id == weekly_schedule.id

    def test_skipped_tasks_count_as_success(self, store, completion_service, two_task_order):
        work_order, tasks = two_task_order
        completion_service.update_task_status(tasks[0].id, 'COMPLETED')

        outcome = completion_service.update_task_status(tasks[1].id, 'SKIPPED')

        assert outcome.result == CompletionOutcome.COMPLETED
        assert store.history_for_work_order(work_order.id).notes == '1 of 2 tasks completed, 1 skipped'

    def test_next_due_follows_trigger(self, store, completion_service, generated, weekly_schedule, day0):
        _, task = generated

        completion_service.update_task_status(task.id, 'COMPLETED', at=day0 + timedelta(hours=1))

        assert store.get_schedule(weekly_schedule.id).next_due == day0 + timedelta(days=7)

    def test_no_follow_up_or_notifications(self, store, completion_service, generated, weekly_schedule):
        work_order, task = generated

        outcome = completion_service.update_task_status(task.id, 'COMPLETED')

        assert outcome.follow_up is None
        assert outcome.notifications == []
        assert len(store.work_orders_for_schedule(weekly_schedule.id)) == 1

    def test_retry_after_closure_is_noop(self, store, completion_service, generated):
        work_order, task = generated
        completion_service.update_task_status(task.id, 'COMPLETED')

        outcome = completion_service.update_task_status(task.id, 'COMPLETED')

        assert outcome.result == CompletionOutcome.ALREADY_CLOSED
        assert store.get_work_order(work_order.id).status == WorkOrder.Status.COMPLETED


class TestEscalation:

    def test_failed_task_cancels_and_creates_follow_up(self, store, completion_service, generated, weekly_schedule, day0):
        work_order, task = generated
        at = day0 + timedelta(hours=2)

        outcome = completion_service.update_task_status(task.id, 'FAILED', notes='Wrong filter size', at=at)

        assert outcome.result == CompletionOutcome.ESCALATED
        original = store.get_work_order(work_order.id)
        assert original.status == WorkOrder.Status.CANCELED
        assert original.canceled_at == at

        follow_up = store.get_work_order(outcome.follow_up.id)
        assert follow_up.status == WorkOrder.Status.OPEN
        assert follow_up.priority == WorkOrder.Priority.HIGH
        assert follow_up.title == 'PM: Weekly Filter Change (Rescheduled)'
        assert follow_up.parent_work_order_id == work_order.id
        assert follow_up.pm_schedule_id == weekly_schedule.id
        assert follow_up.due_date == at + timedelta(days=3)

    def test_follow_up_copies_only_failed_tasks(self, store, completion_service, two_task_order):
        work_order, tasks = two_task_order
        completion_service.update_task_status(tasks[0].id, 'COMPLETED')

        outcome = completion_service.update_task_status(tasks[1].id, 'FAILED')

        follow_up_tasks = store.tasks_for(outcome.follow_up.id)
        assert len(follow_up_tasks) == 1
        assert follow_up_tasks[0].title == 'Inspect Belt (Rescheduled)'
        assert follow_up_tasks[0].status == WorkOrderTask.Status.NOT_STARTED
        assert follow_up_tasks[0].estimated_minutes == 15
        assert follow_up_tasks[0].order_index == 1

    def test_follow_up_keeps_procedure_snapshot(self, store, completion_service, generated):
        _, task = generated

        outcome = completion_service.update_task_status(task.id, 'FAILED')

        copied = outcome.follow_up_tasks[0]
        assert copied.procedure == task.procedure
        assert copied.safety_requirements == task.safety_requirements
        assert copied.origin_pm_task_id == task.origin_pm_task_id

    def test_partial_history_recorded(self, store, completion_service, generated):
        work_order, task = generated

        completion_service.update_task_status(task.id, 'FAILED', actual_minutes=10)

        history = store.history_for_work_order(work_order.id)
        assert history.is_completed is False
        assert history.failed_task_ids == [str(task.id)]
        assert history.notes == '1 of 1 tasks failed: #1 Replace Filter'

    def test_schedule_expedited(self, store, completion_service, generated, weekly_schedule, day0):
        _, task = generated
        at = day0 + timedelta(hours=2)

        completion_service.update_task_status(task.id, 'FAILED', at=at)

        assert store.get_schedule(weekly_schedule.id).next_due == at + timedelta(days=3)

    def test_earlier_next_due_is_kept(self, store, completion_service, generated, weekly_schedule, day0):
        _, task = generated
        schedule = store.get_schedule(weekly_schedule.id)
        schedule.next_due = day0 + timedelta(days=1)
        store.save_schedule(schedule)

        completion_service.update_task_status(task.id, 'FAILED', at=day0 + timedelta(hours=2))

        assert store.get_schedule(weekly_schedule.id).next_due == day0 + timedelta(days=1)

    def test_managers_notified_once(self, store, completion_service, generated, managers):
        _, task = generated

        outcome = completion_service.update_task_status(task.id, 'FAILED')

        notifications = store.notifications_for(RelatedEntityType.WORK_ORDER, outcome.follow_up.id)
        assert sorted(n.user_id for n in notifications) == sorted(managers)
        for notification in notifications:
            assert notification.type == Notification.Type.WORK_ORDER_ESCALATED
            assert notification.priority == Notification.Priority.HIGH
            assert notification.title == 'PM Rescheduled: Weekly Filter Change'
            assert notification.action_url == f'/work-orders/{outcome.follow_up.id}'
            assert notification.action_label == 'View Work Order'

    def test_user_in_several_roles_notified_once(self, settings, roles, store, completion_service, generated, managers, org_id):
        from apps.core.registries import Role

        settings.PM_ENGINE = dict(settings.PM_ENGINE, ESCALATION_ROLES=['MANAGER', 'ADMIN'])
        roles.add_member(org_id, managers[0], Role.ADMIN)
        _, task = generated

        outcome = completion_service.update_task_status(task.id, 'FAILED')

        assert len(outcome.notifications) == 2

    def test_failure_on_retry_does_not_escalate_twice(self, store, completion_service, generated, weekly_schedule):
        _, task = generated
        completion_service.update_task_status(task.id, 'FAILED')

        outcome = completion_service.update_task_status(task.id, 'FAILED')

        assert outcome.result == CompletionOutcome.ALREADY_CLOSED
        assert len(store.work_orders_for_schedule(weekly_schedule.id)) == 2

    def test_follow_up_blocks_regular_generation(self, store, completion_service, generator, generated, weekly_schedule, day0):
        _, task = generated
        completion_service.update_task_status(task.id, 'FAILED', at=day0 + timedelta(hours=2))

        result = generator.generate(weekly_schedule, day0 + timedelta(days=7))

        assert result.skipped

    def test_follow_up_can_itself_escalate(self, store, completion_service, generated, weekly_schedule, day0):
        _, task = generated
        first = completion_service.update_task_status(task.id, 'FAILED', at=day0 + timedelta(hours=2))

        second = completion_service.update_task_status(
            first.follow_up_tasks[0].id, 'FAILED', at=day0 + timedelta(days=2)
        )

        assert second.result == CompletionOutcome.ESCALATED
        assert second.follow_up.parent_work_order_id == first.follow_up.id
        assert second.follow_up_tasks[0].title == 'Replace Filter (Rescheduled) (Rescheduled)'

    def test_failure_on_parked_work_order_escalates(self, store, completion_service, generator, generated, weekly_schedule, day0):
        work_order, task = generated
        parked = store.get_work_order(work_order.id)
        parked.status = WorkOrder.Status.ON_HOLD
        store.save_work_order(parked)
        assert generator.generate(weekly_schedule, day0 + timedelta(days=7)).skipped

        outcome = completion_service.update_task_status(task.id, 'FAILED', at=day0 + timedelta(days=8))

        assert outcome.result == CompletionOutcome.ESCALATED
        assert store.get_work_order(work_order.id).status == WorkOrder.Status.CANCELED
        assert store.open_work_order_for(weekly_schedule.id).id == outcome.follow_up.id

    def test_follow_up_numbered_in_escalation_year(self, store, completion_service, generated, day0):
        _, task = generated
        year_end = day0.replace(month=12, day=30)

        outcome = completion_service.update_task_status(task.id, 'FAILED', at=year_end)

        assert outcome.follow_up.due_date.year == year_end.year + 1
        assert outcome.follow_up.human_id == f'WO-{year_end.year}-00002'

    def test_repeated_failures_notify_urgently(self, settings, store, completion_service, generated, weekly_schedule, day0):
        settings.PM_ENGINE = dict(settings.PM_ENGINE, FAILURE_ESCALATION_THRESHOLD=2)
        _, task = generated
        first = completion_service.update_task_status(task.id, 'FAILED', at=day0 + timedelta(hours=2))

        second = completion_service.update_task_status(
            first.follow_up_tasks[0].id, 'FAILED', at=day0 + timedelta(days=2)
        )

        assert {n.priority for n in first.notifications} == {Notification.Priority.HIGH}
        assert {n.priority for n in second.notifications} == {Notification.Priority.URGENT}


class TestCompletionEvents:

    def test_escalation_published_after_commit(self, memory_store, assets, roles, telemetry, publisher, org_id, asset_id, day0):
        from apps.core.services import (
            PMSchedulerService,
            TaskCompletionService,
            TriggerService,
            WorkOrderGenerator,
        )

        triggers = TriggerService(store=memory_store, telemetry=telemetry, publisher=publisher)
        generator = WorkOrderGenerator(store=memory_store, assets=assets, triggers=triggers, publisher=publisher)
        scheduler = PMSchedulerService(store=memory_store, triggers=triggers, generator=generator)
        service = TaskCompletionService(
            store=memory_store, assets=assets, roles=roles, triggers=triggers, publisher=publisher
        )
        pm_task = scheduler.create_pm_task(organization_id=org_id, title='Grease Bearings')
        schedule = scheduler.create_schedule(org_id, asset_id, 'Bearing Service', next_due=day0)
        scheduler.add_task(schedule.id, pm_task.id)
        triggers.create_trigger(schedule.id, 'TIME_BASED', interval_value=1, interval_unit='months')

        result = generator.generate(schedule, day0)
        service.update_task_status(result.tasks[0].id, 'FAILED', at=day0)

        assert publisher.events == ['pm.work_order.generated', 'pm.work_order.escalated']

    def test_notification_failure_rolls_back_closure(self, memory_store, assets, telemetry, publisher, org_id, asset_id, day0):
        from apps.core.registries import RoleDirectory
        from apps.core.services import (
            PMSchedulerService,
            TaskCompletionService,
            TriggerService,
            WorkOrderGenerator,
        )

        class BrokenDirectory(RoleDirectory):
            def users_with_role(self, organization_id, role):
                raise TaskStateError("directory unavailable")

        triggers = TriggerService(store=memory_store, telemetry=telemetry, publisher=publisher)
        generator = WorkOrderGenerator(store=memory_store, assets=assets, triggers=triggers, publisher=publisher)
        scheduler = PMSchedulerService(store=memory_store, triggers=triggers, generator=generator)
        service = TaskCompletionService(
            store=memory_store, assets=assets, roles=BrokenDirectory(), triggers=triggers, publisher=publisher
        )
        pm_task = scheduler.create_pm_task(organization_id=org_id, title='Grease Bearings')
        schedule = scheduler.create_schedule(org_id, asset_id, 'Bearing Service', next_due=day0)
        scheduler.add_task(schedule.id, pm_task.id)
        result = generator.generate(schedule, day0)

        with pytest.raises(TaskStateError):
            service.update_task_status(result.tasks[0].id, 'FAILED', at=day0)

        assert memory_store.get_task(result.tasks[0].id).status == WorkOrderTask.Status.NOT_STARTED
        assert memory_store.get_work_order(result.work_order.id).status == WorkOrder.Status.OPEN
        assert memory_store.history_for_work_order(result.work_order.id) is None
        assert len(memory_store.work_orders_for_schedule(schedule.id)) == 1
        assert publisher.events == ['pm.work_order.generated']


class TestCompletionStats:

    def test_stats(self, completion_service, two_task_order):
        work_order, tasks = two_task_order
        completion_service.update_task_status(tasks[0].id, 'COMPLETED', actual_minutes=25)

        stats = completion_service.get_completion_stats(work_order.id)

        assert stats['total'] == 2
        assert stats['terminal'] == 1
        assert stats['by_status']['COMPLETED'] == 1
        assert stats['by_status']['NOT_STARTED'] == 1
        assert stats['completion_rate'] == 50.0
        assert stats['total_actual_minutes'] == 25
        assert stats['total_estimated_minutes'] == 45
