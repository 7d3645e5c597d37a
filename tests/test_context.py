import importlib.util
import settings
from processors import context as context_module
from processors.context import build_context


def hide_module(monkeypatch, hidden):
    find_spec = importlib.util.find_spec
    monkeypatch.setattr(
        context_module.importlib.util, 'find_spec',
        lambda name, *args: None if name == hidden else find_spec(name, *args)
    )


class TestBuildContext:
    def test_embedder_disabled_without_sentence_transformers(self, database, monkeypatch, capsys):
        monkeypatch.setattr(settings, 'EMBEDDING_MODEL', 'some-model')
        hide_module(monkeypatch, 'sentence_transformers')

        ctx = build_context(database=database, use_llm=False)

        assert ctx.embedder is None
        assert 'sentence-transformers is not installed' in capsys.readouterr().err

    def test_embedder_attached_when_installed(self, database, monkeypatch):
        monkeypatch.setattr(settings, 'EMBEDDING_MODEL', 'some-model')
        monkeypatch.setattr(context_module.importlib.util, 'find_spec', lambda name, *args: object())

        ctx = build_context(database=database, use_llm=False)

        assert ctx.embedder.model_name == 'some-model'

    def test_empty_model_name_disables_embedder(self, database, monkeypatch):
        monkeypatch.setattr(settings, 'EMBEDDING_MODEL', '')

        assert build_context(database=database, use_llm=False).embedder is None

    def test_queue_uses_settings(self, database, monkeypatch):
        monkeypatch.setattr(settings, 'TRACE_MAX_ATTEMPTS', 2)

        assert build_context(database=database, use_llm=False).queue.max_attempts == 2
