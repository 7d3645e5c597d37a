import re
import pytest
from click.testing import CliRunner
import settings
from commands.corpus import corpus
from commands.hotspot import hotspot
from commands.llm import llm
from commands.trace import trace


@pytest.fixture
def runner(tmp_path, monkeypatch):
    monkeypatch.setattr(settings, 'DATABASE_PATH', str(tmp_path / 'cli.db'))
    monkeypatch.setattr(settings, 'EMBEDDING_MODEL', '')
    monkeypatch.setattr(settings, 'OPENAI_API_KEY', None)
    return CliRunner()


def created_id(output):
    return re.search(r'([0-9a-f-]{36})', output).group(1)


def test_full_flow(runner, tmp_path):
    article = tmp_path / 'article.md'
    article.write_text("Miles spoke about the fraud trial in court.\n\nMore text follows here.", encoding='utf-8')

    result = runner.invoke(corpus, ['add', str(article), '--url', 'https://e.com/a', '--title', 'Trial',
                                    '--published-at', '2023-03-01'])
    assert result.exit_code == 0, result.output
    assert '✓ Stored 1 chunk(s)' in result.output

    result = runner.invoke(corpus, ['search', 'fraud'])
    assert 'https://e.com/a' in result.output

    result = runner.invoke(hotspot, ['upsert', '-t', 'Trial', '-d', 'Fraud trial', '-e', 'Court', '-k', 'fraud',
                                     '--time-start', '2023-01-01', '--time-end', '2023-12-31'])
    assert result.exit_code == 0, result.output
    hotspot_id = created_id(result.output)

    result = runner.invoke(hotspot, ['list'])
    assert hotspot_id in result.output

    result = runner.invoke(trace, ['enqueue', '-h', hotspot_id, '-a', 'Miles'])
    assert result.exit_code == 0, result.output
    trace_id = created_id(result.output)

    result = runner.invoke(trace, ['worker', '--idle-timeout', '0', '--no-llm'])
    assert result.exit_code == 0, result.output
    assert '1 acked' in result.output

    result = runner.invoke(trace, ['show', trace_id])
    assert 'DONE' in result.output
    assert 'https://e.com/a' in result.output

    result = runner.invoke(trace, ['list', '--status', 'done'])
    assert trace_id in result.output


def test_validation_errors_are_reported(runner):
    result = runner.invoke(hotspot, ['upsert', '-t', ' ', '-d', 'desc'])
    assert '✗' in result.output

    result = runner.invoke(trace, ['enqueue', '-h', 'h1', '-a', '  '])
    assert '✗' in result.output


def test_unknown_ids(runner):
    assert '✗' in runner.invoke(trace, ['show', 'missing']).output
    assert '✗' in runner.invoke(hotspot, ['show', 'missing']).output


def test_process_failure_is_reported(runner):
    result = runner.invoke(trace, ['process', 'missing', '--no-llm'])
    assert result.exit_code == 0
    assert '✗ Trace failed' in result.output


def test_llm_stats_empty(runner):
    result = runner.invoke(llm, ['stats'])
    assert result.exit_code == 0
    assert 'Total Calls' in result.output
