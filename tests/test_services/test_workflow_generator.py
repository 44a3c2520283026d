import json

import pytest

from volunteer_automation.core.exceptions import TriggerConfigError, ValidationError
from volunteer_automation.services.workflow_generator import WorkflowGenerator
from tests.conftest import StubCompletion

GENERATED = {
    'name': 'Monthly hours digest',
    'description': 'Send founders a summary on the first of the month',
    'status': 'active',
    'triggers': [{'type': 'time', 'config': {'frequency': 'monthly', 'time': '07:30', 'dayOfMonth': 1}}],
    'actions': [{'type': 'generate_report', 'config': {'type': 'monthly_summary', 'recipients': ['founders']}}],
}


@pytest.mark.asyncio
async def test_generated_workflow_is_validated_and_paused():
    completion = StubCompletion('```json\n' + json.dumps(GENERATED) + '\n```')
    generated = await WorkflowGenerator(completion).generate('  monthly digest for founders  ')

    assert generated.name == 'Monthly hours digest'
    assert generated.status == 'paused'
    assert generated.triggers[0].config.day_of_month == 1
    prompt = completion.calls[0][1]['content']
    assert '"monthly digest for founders"' in prompt
    assert 'welcome_volunteer' in prompt


@pytest.mark.asyncio
async def test_prose_around_json_is_ignored():
    completion = StubCompletion('Here you go:\n' + json.dumps(GENERATED) + '\nLet me know!')
    generated = await WorkflowGenerator(completion).generate('digest')
    assert generated.actions[0].type == 'generate_report'


@pytest.mark.asyncio
@pytest.mark.parametrize('reply', ['no json here', '{"name": ', '[1, 2]'])
async def test_unparseable_reply(reply):
    with pytest.raises(ValidationError, match='Failed to generate valid workflow configuration'):
        await WorkflowGenerator(StubCompletion(reply)).generate('anything')


@pytest.mark.asyncio
async def test_generated_trigger_is_checked():
    bad = dict(GENERATED, triggers=[{'type': 'time', 'config': {'frequency': 'weekly', 'time': '07:30'}}])
    with pytest.raises(TriggerConfigError):
        await WorkflowGenerator(StubCompletion(json.dumps(bad))).generate('weekly digest')
