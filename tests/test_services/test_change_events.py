import pytest

from volunteer_automation.models import Form, FormResponse, Presentation, Volunteer
from volunteer_automation.services.change_events import ChangeFeed


class RecordingScheduler:
    def __init__(self):
        self.events = []

    async def trigger_event(self, name, payload):
        self.events.append((name, payload))
        return []


@pytest.fixture
def feed(session_factory):
    scheduler = RecordingScheduler()
    feed = ChangeFeed(scheduler)
    feed.install(session_factory)
    yield feed
    feed.uninstall()


@pytest.mark.asyncio
async def test_form_response_insert_publishes_after_commit(feed, session_factory):
    session = session_factory()
    form = Form(title='Teacher interest')
    session.add(form)
    session.commit()

    response = FormResponse(form_id=form.id, respondent_email='t@school.org', answers={'grade': 5})
    session.add(response)
    session.flush()
    assert feed.scheduler.events == []
    session.commit()
    await feed.drain()
    session.close()

    [(name, data)] = feed.scheduler.events
    assert name == 'form_response_received'
    assert data['respondent_email'] == 't@school.org'
    assert data['form_id'] == str(form.id)
    assert data['answers'] == {'grade': 5}


@pytest.mark.asyncio
async def test_rolled_back_insert_publishes_nothing(feed, session_factory):
    session = session_factory()
    session.add(Presentation(topic='Solar power'))
    session.flush()
    session.rollback()
    session.close()
    await feed.drain()
    assert feed.scheduler.events == []


@pytest.mark.asyncio
async def test_presentation_insert(feed, session_factory):
    session = session_factory()
    session.add(Presentation(topic='Composting', status='pending'))
    session.commit()
    session.close()
    await feed.drain()
    assert [name for name, _ in feed.scheduler.events] == ['presentation_created']


@pytest.mark.asyncio
async def test_volunteer_approval_publishes(feed, session_factory):
    session = session_factory()
    volunteer = Volunteer(email='v@x.org', team_name='Alpha')
    session.add(volunteer)
    session.commit()
    volunteer_id = volunteer.id
    session.close()

    session = session_factory()
    row = session.get(Volunteer, volunteer_id)
    row.application_status = 'rejected'
    session.commit()
    row = session.get(Volunteer, volunteer_id)
    row.application_status = 'approved'
    session.commit()
    session.close()
    await feed.drain()

    [(name, data)] = feed.scheduler.events
    assert name == 'volunteer_approved'
    assert data['email'] == 'v@x.org'
    assert data['team_name'] == 'Alpha'
    assert data['id'] == str(volunteer_id)


def test_dispatch_without_loop_is_dropped(session_factory):
    scheduler = RecordingScheduler()
    feed = ChangeFeed(scheduler)
    feed.dispatch('presentation_created', {})
    assert scheduler.events == []
