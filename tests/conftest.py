"""
Shared fixtures: a temporary archive database, fake capabilities and a
trace context wired to them.
"""

import pytest
from db import Database
from db.fts import LexicalIndex
from db.trace_queue import TraceQueue
from db.vectors import VectorIndex
from processors.chunking import split_markdown_into_chunks
from processors.context import TraceConfig, TraceContext


class FakeEmbedder:
    """Deterministic character-histogram embedding."""

    def __init__(self, dims=32, fail=False):
        self.dims = dims
        self.fail = fail
        self.calls = 0

    def embed(self, text):
        self.calls += 1
        if self.fail:
            raise RuntimeError("embedding backend down")
        vector = [0.0] * self.dims
        for ch in text:
            vector[ord(ch) % self.dims] += 1.0
        return vector


class FakeSummarizer:
    def __init__(self, text="Cautious summary.", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def summarize(self, data):
        self.calls.append(data)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def database(tmp_path):
    db = Database(str(tmp_path / 'trace.db'))
    yield db
    db.dispose()


@pytest.fixture
def queue(database):
    return TraceQueue(database, lease_seconds=60, max_attempts=3, retry_delay_seconds=0)


@pytest.fixture
def ctx(database, queue):
    """Context with lexical recall only."""
    return TraceContext(
        database=database,
        lexical_index=LexicalIndex(database),
        queue=queue,
        config=TraceConfig(workers=2),
    )


@pytest.fixture
def vector_ctx(ctx, database):
    """Context with vector index and fake embedder."""
    ctx.vector_index = VectorIndex(database)
    ctx.embedder = FakeEmbedder()
    return ctx


@pytest.fixture
def add_article(database):
    """Store an article and return its chunk ids."""

    def _add(url, content, published_at=None, title=None, max_chunk_size=2000):
        session = database.get_session()
        try:
            page = database.save_page(session, url, title=title, published_at=published_at)
            chunks = split_markdown_into_chunks(content, max_chunk_size)
            database.replace_chunks(session, page, chunks)
            session.commit()
            return [f"{page.url_hash}:{i}" for i in range(len(chunks))]
        finally:
            session.close()

    return _add


@pytest.fixture
def scenario(ctx, add_article):
    """Hotspot X with keyword Y and topic entity Court, plus one matching chunk."""
    from processors.trace import upsert_hotspot

    chunk_ids = add_article(
        'https://news.example.com/miles-y',
        "Miles spoke about Y at the summit in March.\n\nNo other details were given.",
        published_at='2023-03-01',
        title='Miles and Y',
    )
    add_article(
        'https://news.example.com/other',
        "An unrelated report about the weather in Y county.",
        published_at='2023-02-01',
    )
    hotspot = upsert_hotspot(ctx, {
        'hotspot_id': 'hs-x',
        'title': 'X',
        'description': 'Statements by Miles about Y',
        'time_start': '2023-01-01',
        'time_end': '2023-06-01',
        'entities': ['Court'],
        'keywords': ['Y'],
    })
    return {'hotspot_id': hotspot['hotspot_id'], 'chunk_ids': chunk_ids}
