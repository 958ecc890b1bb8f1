import json

import httpx
import pytest

from engines import assistant
from engines.assistant import AssistantError, ask_assistant, build_context, identify_sources
from engines.settings import Settings

DASHBOARD = {
    'summary': {'overallCompliance': 87.4},
    'procedures': [{'name': 'Hot Work Permit', 'total_incidents': 9},
                   {'name': 'Transmitter Calibration', 'total_incidents': 1}],
    'facilities': [{'name': 'Port Arthur Complex'}],
    'workers': [{'name': 'Dana Ortiz'}],
}


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(assistant._chat_completion_request.retry, 'sleep', lambda seconds: None)


@pytest.fixture
def settings():
    return Settings(openai_api_key='test-key', llm_base_url='https://llm.test/v1', llm_model='gpt-test',
                    llm_max_tokens=512)


def _client(responses, seen=None):
    queue = list(responses)

    def handler(request):
        if seen is not None:
            seen.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        status, body = item
        return httpx.Response(status, json=body)

    return httpx.Client(transport=httpx.MockTransport(handler))


def _reply(text):
    return 200, {'choices': [{'message': {'role': 'assistant', 'content': text}}]}


def test_answer_and_sources(settings):
    seen = []
    client = _client([_reply('Hot Work Permit at Port Arthur Complex drives most incidents.')], seen)
    out = ask_assistant('Where is risk concentrated?', DASHBOARD, settings, client)
    assert out['answer'].startswith('Hot Work Permit')
    assert out['sources'] == ['Hot Work Permit', 'Port Arthur Complex']

    req = seen[0]
    assert str(req.url) == 'https://llm.test/v1/chat/completions'
    assert req.headers['Authorization'] == 'Bearer test-key'
    payload = json.loads(req.content)
    assert payload['model'] == 'gpt-test'
    assert payload['max_tokens'] == 512
    assert payload['temperature'] == 0.7
    assert payload['messages'][1] == {'role': 'user', 'content': 'Where is risk concentrated?'}
    assert 'Hot Work Permit' in payload['messages'][0]['content']


def test_missing_key_is_rejected():
    with pytest.raises(AssistantError):
        ask_assistant('hi', {}, Settings(openai_api_key=None))


def test_temporary_error_is_retried(settings):
    seen = []
    client = _client([(503, {'error': 'busy'}), _reply('All good.')], seen)
    assert ask_assistant('status?', {}, settings, client)['answer'] == 'All good.'
    assert len(seen) == 2


def test_retries_give_up_after_three_attempts(settings):
    seen = []
    client = _client([(429, {}), (429, {}), (429, {})], seen)
    with pytest.raises(AssistantError):
        ask_assistant('status?', {}, settings, client)
    assert len(seen) == 3


def test_client_error_is_not_retried(settings):
    seen = []
    client = _client([(400, {'error': 'bad request'})], seen)
    with pytest.raises(AssistantError):
        ask_assistant('status?', {}, settings, client)
    assert len(seen) == 1


def test_transport_error_becomes_assistant_error(settings):
    request = httpx.Request('POST', 'https://llm.test/v1/chat/completions')
    client = _client([httpx.ConnectError('refused', request=request)] * 3)
    with pytest.raises(AssistantError):
        ask_assistant('status?', {}, settings, client)


def test_empty_completion_is_an_error(settings):
    client = _client([(200, {'choices': []})])
    with pytest.raises(AssistantError):
        ask_assistant('status?', {}, settings, client)


def test_context_lists_riskiest_procedures_first():
    ctx = build_context(DASHBOARD)
    assert ctx.index('Hot Work Permit') < ctx.index('Transmitter Calibration')
    assert 'WORKERS' in ctx
    assert build_context(None) == 'No dashboard data was provided.'


def test_identify_sources_is_case_insensitive():
    assert identify_sources('dana ortiz closed the permit', DASHBOARD) == ['Dana Ortiz']
    assert identify_sources('', DASHBOARD) == []
