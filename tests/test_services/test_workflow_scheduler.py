import asyncio
from datetime import datetime, timezone

import pytest

from volunteer_automation.models import Task, Volunteer, Workflow, WorkflowExecution
from volunteer_automation.schemas.execution import ActionOutcome
from volunteer_automation.services.workflow_actions import WorkflowActionExecutor
from volunteer_automation.services.workflow_scheduler import WorkflowScheduler
from tests.conftest import FakeClock, StubEmail, wait_for

CREATE_TASK = {'type': 'create_task', 'config': {'title': 'Prepare volunteer briefing', 'assignee': 'founder-1'}}
DAILY_NINE = {'type': 'time', 'config': {'frequency': 'daily', 'time': '09:00'}}


def make_scheduler(session_factory, clock, executor=None):
    executor = executor or WorkflowActionExecutor(
        session_factory=session_factory,
        email_service=StubEmail(),
        clock=clock,
        sleep=clock.sleep,
    )
    return WorkflowScheduler(
        session_factory=session_factory,
        executor=executor,
        clock=clock,
        sleep=clock.sleep,
        tz=timezone.utc,
        condition_poll_seconds=60,
    )


def add_workflow(db, triggers, actions=None, status='active', name='Automation'):
    row = Workflow(
        name=name,
        trigger_conditions=triggers,
        actions=actions or [CREATE_TASK],
        status=status,
        execution_count=0,
        created_by='founder-1',
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def executions(session_factory):
    session = session_factory()
    try:
        return session.query(WorkflowExecution).order_by(WorkflowExecution.executed_at).all()
    finally:
        session.close()


@pytest.mark.asyncio
async def test_daily_trigger_fires_at_nine_and_logs_once(session_factory, db, wednesday_8am):
    workflow = add_workflow(db, [DAILY_NINE])
    clock = FakeClock(wednesday_8am, wakeups=1)
    scheduler = make_scheduler(session_factory, clock)

    assert await scheduler.start() == 1
    await wait_for(lambda: len(clock.sleeps) >= 2)

    assert clock.sleeps[:2] == [3600, 86400]
    rows = executions(session_factory)
    assert len(rows) == 1
    assert rows[0].trigger_type == 'time'
    assert rows[0].success is True
    assert rows[0].executed_at.replace(tzinfo=None) == datetime(2025, 1, 15, 9, 0)
    assert db.query(Task).count() == 1

    db.expire_all()
    assert db.get(Workflow, workflow.id).execution_count == 1
    assert scheduler.next_runs(workflow.id) == [datetime(2025, 1, 16, 9, 0, tzinfo=timezone.utc)]
    await scheduler.stop()
    assert scheduler.status()['timers'] == 0


@pytest.mark.asyncio
async def test_paused_periods_are_not_replayed(session_factory, db, wednesday_8am):
    workflow = add_workflow(db, [DAILY_NINE])
    clock = FakeClock(wednesday_8am, wakeups=1)
    scheduler = make_scheduler(session_factory, clock)

    scheduler.schedule(workflow)
    await wait_for(lambda: len(clock.sleeps) >= 2)
    assert scheduler.unschedule(workflow.id) is True
    assert not scheduler.is_scheduled(workflow.id)

    clock.now = datetime(2025, 1, 18, 10, 0, tzinfo=timezone.utc)
    clock.wakeups_left = 1
    scheduler.schedule(workflow)
    await wait_for(lambda: len(clock.sleeps) >= 4)

    assert clock.sleeps[2] == 82800
    rows = executions(session_factory)
    assert len(rows) == 2
    assert rows[1].executed_at.replace(tzinfo=None) == datetime(2025, 1, 19, 9, 0)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_every_matching_listener_fires(session_factory, db, wednesday_8am):
    approved = {'type': 'event', 'config': {'event': 'volunteer_approved'}}
    first = add_workflow(db, [approved], name='Welcome')
    second = add_workflow(db, [approved], name='Notify founders')
    beta_only = add_workflow(
        db,
        [{'type': 'event', 'config': {'event': 'volunteer_approved', 'conditions': {'team_name': 'Beta'}}}],
        name='Beta team',
    )
    scheduler = make_scheduler(session_factory, FakeClock(wednesday_8am))
    for row in (first, second, beta_only):
        scheduler.schedule(row)

    dispatch = await scheduler.trigger_event('volunteer_approved', {'team_name': 'Alpha', 'email': 'v@x.org'})

    assert dispatch.started == 2
    assert [r.workflow_id for r in dispatch.records] == [str(first.id), str(second.id)]
    assert all(r.trigger_type == 'event' for r in dispatch.records)
    assert dispatch.running == []

    nothing = await scheduler.trigger_event('presentation_created', {})
    assert (nothing.started, nothing.records) == (0, [])
    await scheduler.stop()


@pytest.mark.asyncio
async def test_event_firing_with_failed_action_still_logged(session_factory, db, wednesday_8am):
    row = add_workflow(
        db,
        [{'type': 'event', 'config': {'event': 'form_response_received'}}],
        actions=[
            {'type': 'send_email', 'config': {'template': 'thank_you_response', 'recipients': ['event.respondent_email']}},
            CREATE_TASK,
        ],
    )
    scheduler = make_scheduler(session_factory, FakeClock(wednesday_8am))
    scheduler.schedule(row)

    [record] = (await scheduler.trigger_event('form_response_received', {'form_id': 'f1'})).records

    assert record.success is False
    assert [r.success for r in record.results] == [False, True]
    assert len(record.errors) == 1
    await scheduler.stop()


@pytest.mark.asyncio
async def test_condition_poll_fires_when_rows_match(session_factory, db, wednesday_8am):
    db.add(Volunteer(email='v@x.org', application_status='approved'))
    db.commit()
    row = add_workflow(
        db,
        [{'type': 'condition', 'config': {'query': {'table': 'volunteers', 'conditions': {'application_status': 'approved'}}}}],
    )
    clock = FakeClock(wednesday_8am, wakeups=1)
    scheduler = make_scheduler(session_factory, clock)
    scheduler.schedule(row)

    await wait_for(lambda: len(clock.sleeps) >= 2)

    assert clock.sleeps[:2] == [60, 60]
    rows = executions(session_factory)
    assert [r.trigger_type for r in rows] == ['condition']
    await scheduler.stop()


@pytest.mark.asyncio
async def test_condition_poll_survives_query_errors(session_factory, db, wednesday_8am):
    row = add_workflow(
        db,
        [{'type': 'condition', 'config': {'query': {'table': 'missing_table', 'conditions': {}}}}],
    )
    clock = FakeClock(wednesday_8am, wakeups=2)
    scheduler = make_scheduler(session_factory, clock)
    scheduler.schedule(row)

    await wait_for(lambda: len(clock.sleeps) >= 3)

    assert executions(session_factory) == []
    await scheduler.stop()


@pytest.mark.asyncio
async def test_invalid_trigger_is_skipped_not_fatal(session_factory, db, wednesday_8am):
    row = add_workflow(
        db,
        [
            {'type': 'time', 'config': {'frequency': 'weekly', 'time': '09:00'}},
            {'type': 'event', 'config': {'event': 'presentation_created'}},
        ],
    )
    scheduler = make_scheduler(session_factory, FakeClock(wednesday_8am))
    definition = scheduler.schedule(row)

    assert len(definition.rejected_triggers) == 1
    status = scheduler.status()
    assert status['timers'] == 0
    assert status['event_listeners'] == {'presentation_created': 1}
    await scheduler.stop()


@pytest.mark.asyncio
async def test_paused_workflows_are_not_loaded(session_factory, db, wednesday_8am):
    add_workflow(db, [DAILY_NINE], status='paused')
    active = add_workflow(db, [{'type': 'event', 'config': {'event': 'x'}}])
    scheduler = make_scheduler(session_factory, FakeClock(wednesday_8am))

    assert await scheduler.start() == 1
    assert scheduler.is_scheduled(active.id)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_start_propagates_storage_failure(wednesday_8am, session_factory):
    def broken_factory():
        raise RuntimeError('database unavailable')

    clock = FakeClock(wednesday_8am)
    scheduler = WorkflowScheduler(
        session_factory=broken_factory,
        executor=WorkflowActionExecutor(session_factory=session_factory, email_service=StubEmail()),
        clock=clock,
        sleep=clock.sleep,
        tz=timezone.utc,
    )
    with pytest.raises(RuntimeError):
        await scheduler.start()
    assert scheduler.started is False


class BlockingExecutor:
    def __init__(self):
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def run(self, actions, context):
        self.started.set()
        await self.release.wait()
        return [ActionOutcome(action='create_task', success=True, result={})]


@pytest.mark.asyncio
async def test_unschedule_lets_in_flight_firing_finish(session_factory, db, wednesday_8am):
    row = add_workflow(db, [DAILY_NINE])
    clock = FakeClock(wednesday_8am, wakeups=1)
    executor = BlockingExecutor()
    scheduler = make_scheduler(session_factory, clock, executor=executor)
    scheduler.schedule(row)

    await asyncio.wait_for(executor.started.wait(), timeout=1)
    scheduler.unschedule(row.id)
    await asyncio.sleep(0)
    executor.release.set()

    await wait_for(lambda: len(executions(session_factory)) == 1)
    await wait_for(lambda: scheduler.status()['in_flight'] == 0)
    await scheduler.stop()


@pytest.mark.asyncio
async def test_delayed_listener_does_not_hold_up_other_listeners(session_factory, db, wednesday_8am):
    approved = {'type': 'event', 'config': {'event': 'volunteer_approved'}}
    follow_up = add_workflow(
        db,
        [approved],
        actions=[dict(CREATE_TASK, delay=10080), {'type': 'create_task', 'config': {'title': 'One week check-in'}}],
        name='Week later follow-up',
    )
    welcome = add_workflow(db, [approved], name='Welcome')
    clock = FakeClock(wednesday_8am)
    scheduler = make_scheduler(session_factory, clock)
    scheduler.schedule(follow_up)
    scheduler.schedule(welcome)

    dispatch = await scheduler.trigger_event('volunteer_approved', {'email': 'v@x.org'})

    assert dispatch.started == 2
    assert dispatch.running == [str(follow_up.id)]
    assert [r.workflow_id for r in dispatch.records] == [str(welcome.id)]
    await wait_for(lambda: clock.sleeps == [604800])
    assert [r.workflow_id for r in executions(session_factory)] == [welcome.id]
    assert scheduler.status()['in_flight'] == 1

    await scheduler.stop()
    assert scheduler.status()['in_flight'] == 0
    assert len(executions(session_factory)) == 1


@pytest.mark.asyncio
async def test_failed_middle_action_is_recorded_in_order(session_factory, db, founder, wednesday_8am):
    row = add_workflow(
        db,
        [{'type': 'event', 'config': {'event': 'presentation_created'}}],
        actions=[
            CREATE_TASK,
            {'type': 'update_records', 'config': {'table': 'no_such_table', 'updates': {'status': 'done'}}},
            {'type': 'send_notification', 'config': {'message': 'Presentation added', 'recipients': ['founder-1']}},
        ],
    )
    scheduler = make_scheduler(session_factory, FakeClock(wednesday_8am))
    scheduler.schedule(row)

    await scheduler.trigger_event('presentation_created', {'topic': 'Recycling'})

    [stored] = executions(session_factory)
    assert stored.success is False
    assert [(r['action'], r['success']) for r in stored.results] == [
        ('create_task', True),
        ('update_records', False),
        ('send_notification', True),
    ]
    assert stored.errors == ['update_records: Unknown table: no_such_table']
    await scheduler.stop()


@pytest.mark.asyncio
async def test_disabled_scheduler_registers_nothing(session_factory, db, wednesday_8am):
    add_workflow(db, [DAILY_NINE])
    listener = add_workflow(db, [{'type': 'event', 'config': {'event': 'presentation_created'}}])
    clock = FakeClock(wednesday_8am)
    scheduler = WorkflowScheduler(
        session_factory=session_factory,
        executor=WorkflowActionExecutor(session_factory=session_factory, email_service=StubEmail()),
        clock=clock,
        sleep=clock.sleep,
        tz=timezone.utc,
        enabled=False,
    )

    assert await scheduler.start() == 0
    scheduler.schedule(listener)

    status = scheduler.status()
    assert status['enabled'] is False
    assert (status['scheduled_workflows'], status['timers'], status['event_listeners']) == (0, 0, {})
    assert (await scheduler.trigger_event('presentation_created', {})).started == 0
    assert clock.sleeps == []
    await scheduler.stop()
