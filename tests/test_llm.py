import pytest
from pydantic import ValidationError
from db import LLMApiCall
from llm import openai_client
from llm.logging import log_llm_api_call
from llm.openai_client import OpenAISummarizer, _load_pydantic_schema, _render_prompts, openai_structured_output


class FakeUsage:
    prompt_tokens = 120
    completion_tokens = 30
    total_tokens = 150


class FakeCompletion:
    def __init__(self, parsed):
        self.usage = FakeUsage()
        self.choices = [type('Choice', (), {'message': type('Message', (), {'parsed': parsed})()})()]

    def model_dump(self, mode='json'):
        return {'id': 'cmpl-test'}


class FakeClient:
    def __init__(self, summary):
        self.summary = summary
        self.requests = []
        self.chat = type('Chat', (), {'completions': self})()

    def parse(self, model, messages, response_format):
        self.requests.append({'model': model, 'messages': messages})
        return FakeCompletion(response_format(summary=self.summary))


DATA = {
    'trace_id': 't-1',
    'hotspot_id': 'h-1',
    'anchor': 'Miles',
    'event': 'trial',
    'hotspot': 'X',
    'time_start': None,
    'time_end': None,
    'timeline_count': 3,
    'edge_count': 2,
    'evidence_count': 1,
}


def llm_calls(database):
    session = database.get_session()
    try:
        return session.query(LLMApiCall).all()
    finally:
        session.close()


class TestSchema:
    def test_accepts_known_numbers(self):
        schema = _load_pydantic_schema('trace_summary')
        output = schema.model_validate({'summary': ' 3 timeline items. '}, context={'allowed_numbers': {'3'}})
        assert output.summary == '3 timeline items.'

    def test_rejects_invented_numbers(self):
        schema = _load_pydantic_schema('trace_summary')
        with pytest.raises(ValidationError):
            schema.model_validate({'summary': '42 sources agree.'}, context={'allowed_numbers': {'3'}})

    def test_without_context_everything_passes(self):
        schema = _load_pydantic_schema('trace_summary')
        assert schema(summary='42').summary == '42'


class TestPrompts:
    def test_render(self):
        system_prompt, user_prompt = _render_prompts('trace_summary', dict(DATA, language='Chinese'))
        assert 'Chinese' in system_prompt
        assert 'Anchor: Miles' in user_prompt
        assert 'timeline_count: 3' in user_prompt
        assert 'Time window' not in user_prompt

    def test_missing_template(self):
        with pytest.raises(FileNotFoundError):
            _render_prompts('no_such_task', {})


class TestStructuredOutput:
    def test_call_is_logged(self, database, monkeypatch):
        client = FakeClient("Miles appears in 3 timeline items.")
        monkeypatch.setattr(openai_client, 'get_client', lambda: client)

        result = openai_structured_output('trace_summary', dict(DATA, language='English'), model='test-model',
                                          database=database, context_data={'trace_id': 't-1'})

        assert result.summary == "Miles appears in 3 timeline items."
        assert client.requests[0]['model'] == 'test-model'
        calls = llm_calls(database)
        assert len(calls) == 1
        assert calls[0].success == 1
        assert calls[0].total_tokens == 150
        assert calls[0].context_data['trace_id'] == 't-1'
        assert calls[0].parsed_output == {'summary': "Miles appears in 3 timeline items."}

    def test_summarizer_rejects_invented_counts(self, database, monkeypatch):
        monkeypatch.setattr(openai_client, 'get_client', lambda: FakeClient("Found 17 edges."))

        with pytest.raises(ValidationError):
            OpenAISummarizer(database=database, model='test-model').summarize(DATA)

        calls = llm_calls(database)
        assert len(calls) == 1
        assert calls[0].success == 0
        assert calls[0].error_message

    def test_summarizer_returns_text(self, monkeypatch):
        monkeypatch.setattr(openai_client, 'get_client', lambda: FakeClient("1 evidence item, 2 edges."))
        assert OpenAISummarizer(model='test-model').summarize(DATA) == "1 evidence item, 2 edges."


class TestLogging:
    def test_error_is_recorded_and_raised(self, database):
        with pytest.raises(RuntimeError):
            with log_llm_api_call('structured_output', 'm', 'trace_summary', {'trace_id': 't'}, database) as logger:
                logger.set_prompts('s', 'u')
                raise RuntimeError("rate limited")

        call = llm_calls(database)[0]
        assert call.success == 0
        assert call.error_message == "rate limited"
        assert call.system_prompt == 's'
        assert call.duration_ms is not None

    def test_no_database_no_row(self, database):
        with log_llm_api_call('structured_output', 'm') as logger:
            logger.set_parsed_output({'summary': 'x'})
        assert llm_calls(database) == []
