import uuid
from datetime import datetime, timezone

import pytest

from volunteer_automation.models import Notification, Task, Volunteer
from volunteer_automation.schemas.workflow import UnparsedAction, parse_action
from volunteer_automation.services.workflow_actions import ExecutionContext, WorkflowActionExecutor
from tests.conftest import FakeClock, StubEmail


def make_executor(session_factory, email=None, completion=None, clock=None):
    clock = clock or FakeClock(datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc), wakeups=10)
    kwargs = {}
    if completion is not None:
        kwargs['completion'] = completion
    return WorkflowActionExecutor(
        session_factory=session_factory,
        email_service=email or StubEmail(),
        clock=clock,
        sleep=clock.sleep,
        **kwargs,
    )


def context(event_data=None):
    return ExecutionContext(workflow_id=uuid.uuid4(), owner_id='founder-1', trigger_type='event', event_data=event_data)


@pytest.mark.asyncio
async def test_failing_action_does_not_stop_the_rest(session_factory, db):
    actions = [
        parse_action({'type': 'create_task', 'config': {'title': 'Call school', 'assignee': 'intern-1'}}),
        parse_action({'type': 'update_records', 'config': {'table': 'no_such_table', 'updates': {'status': 'x'}}}),
        parse_action({'type': 'send_notification', 'config': {'message': 'Done', 'recipients': ['founder-1']}}),
    ]
    outcomes = await make_executor(session_factory).run(actions, context())

    assert [o.action for o in outcomes] == ['create_task', 'update_records', 'send_notification']
    assert [o.success for o in outcomes] == [True, False, True]
    assert 'Unknown table' in outcomes[1].error
    assert db.query(Task).count() == 1
    assert db.query(Notification).count() == 1


@pytest.mark.asyncio
async def test_delay_applies_after_failure_but_not_after_last_action(session_factory):
    clock = FakeClock(datetime(2025, 1, 15, 9, 0, tzinfo=timezone.utc), wakeups=10)
    actions = [
        UnparsedAction(type='send_sms', config={}, error='Invalid action', delay=5),
        parse_action({'type': 'create_task', 'config': {'title': 'Follow up'}, 'delay': 10}),
    ]
    outcomes = await make_executor(session_factory, clock=clock).run(actions, context())

    assert clock.sleeps == [300]
    assert outcomes[0].success is False
    assert outcomes[0].error == 'Invalid action'
    assert outcomes[1].success is True


@pytest.mark.asyncio
async def test_send_email_resolves_event_and_role_recipients(session_factory, founder):
    email = StubEmail()
    action = parse_action(
        {
            'type': 'send_email',
            'config': {'template': 'welcome_volunteer', 'recipients': ['event.email', 'founders', 'ada@gsv.org']},
        }
    )
    outcomes = await make_executor(session_factory, email=email).run(
        [action], context({'email': 'new@volunteer.org', 'name': 'Sam'})
    )

    assert outcomes[0].success is True
    assert outcomes[0].result['recipients'] == ['new@volunteer.org', 'ada@gsv.org']
    assert email.sent[0]['subject'] == 'Welcome to Green Silicon Valley!'
    assert email.sent[0]['body'].startswith('Hello Sam,')


@pytest.mark.asyncio
async def test_send_email_without_recipients_fails(session_factory):
    action = parse_action({'type': 'send_email', 'config': {'template': 'welcome_volunteer', 'recipients': ['event.email']}})
    outcomes = await make_executor(session_factory).run([action], context({}))
    assert outcomes[0].success is False
    assert 'No email recipients' in outcomes[0].error


@pytest.mark.asyncio
async def test_send_email_transport_failure_is_recorded(session_factory):
    action = parse_action({'type': 'send_email', 'config': {'template': 'hours_approved', 'recipients': ['a@b.org']}})
    outcomes = await make_executor(session_factory, email=StubEmail(fail=True)).run([action], context())
    assert outcomes[0].success is False
    assert 'SMTP is not configured' in outcomes[0].error


@pytest.mark.asyncio
async def test_generate_report_emails_founders(session_factory, db, founder):
    db.add(Volunteer(email='v1@x.org'))
    db.add(Volunteer(email='v2@x.org'))
    db.commit()
    email = StubEmail()
    action = parse_action({'type': 'generate_report', 'config': {'type': 'volunteer_activity', 'recipients': ['founders']}})
    outcomes = await make_executor(session_factory, email=email).run([action], context())

    result = outcomes[0].result
    assert result['reportType'] == 'volunteer_activity'
    assert result['data']['totalVolunteers'] == 2
    assert result['emailedTo'] == ['ada@gsv.org']
    assert '"totalVolunteers": 2' in email.sent[0]['body']


@pytest.mark.asyncio
async def test_unknown_report_type_returns_stub(session_factory):
    action = parse_action({'type': 'generate_report', 'config': {'type': 'custom'}})
    outcomes = await make_executor(session_factory).run([action], context())
    assert outcomes[0].result['data'] == {'message': 'Report generated', 'type': 'custom'}


@pytest.mark.asyncio
async def test_update_records_scoped_to_event_record(session_factory, db):
    first = Volunteer(email='a@x.org', status='pending')
    second = Volunteer(email='b@x.org', status='pending')
    db.add_all([first, second])
    db.commit()

    action = parse_action(
        {'type': 'update_records', 'config': {'table': 'volunteers', 'updates': {'status': 'onboarded'}, 'conditions': {'status': 'pending'}}}
    )
    outcomes = await make_executor(session_factory).run([action], context({'recordId': str(first.id)}))

    assert outcomes[0].result == {'table': 'volunteers', 'updatedRecords': 1, 'updates': {'status': 'onboarded'}}
    db.expire_all()
    assert db.get(Volunteer, first.id).status == 'onboarded'
    assert db.get(Volunteer, second.id).status == 'pending'


@pytest.mark.asyncio
async def test_update_records_refuses_workflow_tables(session_factory):
    action = parse_action({'type': 'update_records', 'config': {'table': 'ai_workflows', 'updates': {'status': 'paused'}}})
    outcomes = await make_executor(session_factory).run([action], context())
    assert outcomes[0].success is False
    assert 'cannot be updated' in outcomes[0].error


@pytest.mark.asyncio
async def test_ai_analysis_uses_completion(session_factory, stub_completion):
    action = parse_action({'type': 'ai_analysis', 'config': {'analysisType': 'engagement', 'parameters': {'window': '7d'}}})
    outcomes = await make_executor(session_factory, completion=stub_completion).run([action], context({'team': 'Alpha'}))

    assert outcomes[0].result['result'] == 'Volunteer engagement is up 12% this week.'
    system, user = stub_completion.calls[0]
    assert system['role'] == 'system'
    assert 'engagement analysis' in user['content']
    assert '"team": "Alpha"' in user['content']


@pytest.mark.asyncio
async def test_create_task_records_owner(session_factory, db):
    action = parse_action(
        {'type': 'create_task', 'config': {'title': 'Review', 'priority': 'high', 'dueDate': '2025-02-01'}}
    )
    outcomes = await make_executor(session_factory).run([action], context())
    task = db.query(Task).one()
    assert outcomes[0].result['taskId'] == str(task.id)
    assert task.created_by == 'founder-1'
    assert task.priority == 'high'
