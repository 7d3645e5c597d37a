import pytest
from db import Chunk, Entity, EntityAlias
from db.database import sha256_hex
from db.fts import LexicalIndex, LexicalIndexUnavailable, map_relevance
from db.knowledge import find_aliases, make_id, upsert_edge, upsert_entity, upsert_event, upsert_mention
from db.vectors import VectorIndex
from processors.chunking import split_markdown_into_chunks
from processors.recall import build_lexical_query, get_anchor_aliases, recall_by_lexical
from processors.tokenization import contains_all, contains_any, fts_phrase_group, tokenize


class TestChunking:
    def test_packs_paragraphs(self):
        assert split_markdown_into_chunks("uno\n\ndos", 100) == ["uno\n\ndos"]

    def test_splits_when_full(self):
        chunks = split_markdown_into_chunks("aaaa\n\nbbbb\n\ncccc", 10)
        assert chunks == ["aaaa\n\nbbbb", "cccc"]

    def test_slices_long_paragraphs(self):
        assert split_markdown_into_chunks("abcdef", 4) == ["abcd", "ef"]

    def test_empty(self):
        assert split_markdown_into_chunks("  \n\n ") == []


class TestTokenization:
    def test_tokenize_splits_on_cjk_punctuation(self):
        assert tokenize("郭文贵 案件，庭审/判决") == ['郭文贵', '案件', '庭审', '判决']

    def test_tokenize_drops_short_tokens_and_caps(self):
        assert tokenize("a bc d") == ['bc']
        assert len(tokenize(" ".join(f"t{i}" for i in range(20)))) == 12

    def test_phrase_group_strips_quotes(self):
        assert fts_phrase_group(['Miles', 'Guo "Wengui"', '""']) == '"Miles" OR "Guo Wengui"'

    def test_containment(self):
        assert contains_any("Miles Guo", ["Guo", "X"])
        assert not contains_any("Miles Guo", ["guo"])
        assert contains_all("Miles Guo", ["Miles", "Guo"])
        assert not contains_all("Miles Guo", ["Miles", "X"])

    def test_lexical_query(self):
        assert build_lexical_query(['Miles', 'Guo'], 'court ruling', ['fraud']) == \
            '("Miles" OR "Guo") AND ("court" OR "ruling" OR "fraud")'
        assert build_lexical_query(['Miles'], None, ['Y']) == '("Miles")'

    def test_lexical_query_caps_topic_terms(self):
        query = build_lexical_query(['Miles'], None, [f"kw{i}" for i in range(12)], max_terms=8)
        assert query.count(' OR ') == 7


class TestCorpus:
    def test_replace_chunks(self, database, add_article):
        first = add_article('https://e.com/a', "one\n\ntwo", max_chunk_size=4)
        second = add_article('https://e.com/a', "three")

        url_hash = sha256_hex('https://e.com/a')
        assert first == [f"{url_hash}:0", f"{url_hash}:1"]
        assert second == [f"{url_hash}:0"]

        session = database.get_session()
        try:
            chunks = session.query(Chunk).all()
            assert [c.content for c in chunks] == ["three"]
            assert database.get_page_by_url(session, 'https://e.com/a').content_sha256 == sha256_hex("three")
        finally:
            session.close()

        if database.fts_available:
            assert len(LexicalIndex(database).match('"three"', 10)) == 1
            assert LexicalIndex(database).match('"one"', 10) == []


class TestLexicalIndex:
    def test_match_returns_relevance(self, database, add_article):
        if not database.fts_available:
            pytest.skip("SQLite built without FTS5")
        add_article('https://e.com/a', "Miles spoke at the court hearing.", published_at='2023-03-01')
        add_article('https://e.com/b', "The weather was fine.")

        rows = LexicalIndex(database).match('"Miles" AND "court"', 10)

        assert len(rows) == 1
        assert rows[0]['url'] == 'https://e.com/a'
        assert rows[0]['published_at'] == '2023-03-01'
        assert rows[0]['relevance'] is not None

    def test_unavailable_index_raises(self, database):
        database.fts_available = False
        with pytest.raises(LexicalIndexUnavailable):
            LexicalIndex(database).match('"Miles"', 10)

    def test_search_falls_back_to_like(self, database, add_article):
        add_article('https://e.com/a', "Miles spoke at the court hearing.", title='Hearing')
        database.fts_available = False

        hits = LexicalIndex(database).search('court', 5)

        assert hits[0]['title'] == 'Hearing'
        assert 'court' in hits[0]['snippet']

    def test_search(self, database, add_article):
        add_article('https://e.com/a', "Miles spoke at the court hearing.", title='Hearing')
        hits = LexicalIndex(database).search('court', 5)
        assert [h['url'] for h in hits] == ['https://e.com/a']


class TestMapRelevance:
    def test_floor(self):
        assert map_relevance(None) == 0.1
        assert map_relevance(-3.0) == 0.1
        assert map_relevance(0.001) == 0.1

    def test_monotone_and_bounded(self):
        values = [map_relevance(r) for r in (0.5, 1.0, 2.0, 10.0, 1000.0)]
        assert values == sorted(values)
        assert values[1] == pytest.approx(2.5)
        assert all(0.1 <= v < 5.0 for v in values)


class TestLexicalRecall:
    def test_fallback_scan_uses_flat_score(self, ctx, database, add_article):
        add_article('https://e.com/a', "Miles spoke at the court hearing.")
        add_article('https://e.com/b', "The weather was fine.")
        database.fts_available = False

        candidates = recall_by_lexical(ctx, ['Miles'], None, ['court'])

        assert [c.url for c in candidates] == ['https://e.com/a']
        assert candidates[0].lexical_score == 1.0
        assert candidates[0].score == 1.0

    def test_fallback_never_raises(self, ctx, database, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def broken_scan(terms, limit):
            raise OperationalError("SELECT", {}, Exception("locked"))

        database.fts_available = False
        monkeypatch.setattr(ctx.lexical_index, 'scan', broken_scan)

        assert recall_by_lexical(ctx, ['Miles'], 'event', []) == []

    def test_fts_scores_are_floored(self, ctx, database, add_article):
        if not database.fts_available:
            pytest.skip("SQLite built without FTS5")
        add_article('https://e.com/a', "Miles spoke at the court hearing.")

        candidates = recall_by_lexical(ctx, ['Miles'], None, ['court'])

        assert len(candidates) == 1
        assert 0.1 <= candidates[0].lexical_score < 5.0
        assert candidates[0].chunk_id == f"{sha256_hex('https://e.com/a')}:0"


class TestVectorIndex:
    def test_query_orders_by_similarity(self, database):
        index = VectorIndex(database)
        index.upsert([
            {'id': 'a', 'values': [1.0, 0.0], 'metadata': {'url': 'https://e/a'}},
            {'id': 'b', 'values': [0.6, 0.8], 'metadata': {'url': 'https://e/b'}},
            {'id': 'c', 'values': [1.0, 0.0, 0.0], 'metadata': {}},
        ])

        matches = index.query([0.0, 1.0], top_k=5)

        assert [m['id'] for m in matches] == ['b', 'a']
        assert matches[0]['score'] == pytest.approx(0.8)
        assert matches[0]['metadata'] == {'url': 'https://e/b'}

    def test_upsert_replaces(self, database):
        index = VectorIndex(database)
        index.upsert([{'id': 'a', 'values': [1.0, 0.0], 'metadata': {'v': 1}}])
        index.upsert([{'id': 'a', 'values': [0.0, 1.0], 'metadata': {'v': 2}}])

        assert index.count() == 1
        assert index.query([0.0, 1.0], top_k=1)[0]['metadata'] == {'v': 2}


class TestKnowledge:
    def test_make_id_is_deterministic(self):
        assert make_id('entity', 'Miles', 'person') == sha256_hex('entity:Miles:person')
        assert make_id('entity', 'Miles', 'person') != make_id('entity', 'Miles', 'topic')

    def test_upserts_are_idempotent(self, database):
        session = database.get_session()
        try:
            for _ in range(2):
                miles = upsert_entity(session, 'Miles', 'person', ['Miles', 'Guo'], 'zh')
                court = upsert_entity(session, 'Court', 'topic', ['Court'], 'zh')
                upsert_mention(session, miles, 'h:0', {'start': 0, 'end': 10})
                upsert_edge(session, miles, 'related_to', court, 'h:0', 1.5)
                upsert_event(session, 'h:0', '2023-03-01', 'mention_event', 'Miles: hello', {'trace_id': 't'})
                session.commit()

            assert session.query(Entity).count() == 2
            assert session.query(EntityAlias).count() == 3
        finally:
            session.close()

    def test_edge_weight_is_overwritten(self, database):
        from db import Edge
        session = database.get_session()
        try:
            miles = upsert_entity(session, 'Miles', 'person', [], 'zh')
            court = upsert_entity(session, 'Court', 'topic', [], 'zh')
            edge_id = upsert_edge(session, miles, 'related_to', court, 'h:0', 1.5)
            upsert_edge(session, miles, 'related_to', court, 'h:0', 3.25)
            session.commit()

            edges = session.query(Edge).all()
            assert len(edges) == 1
            assert edges[0].edge_id == edge_id
            assert edges[0].weight == 3.25
        finally:
            session.close()

    def test_find_aliases(self, database):
        session = database.get_session()
        try:
            upsert_entity(session, 'Miles', 'person', ['Miles', 'Guo Wengui'], 'zh')
            session.commit()

            assert sorted(find_aliases(session, 'Miles')) == ['Guo Wengui', 'Miles']
            assert sorted(find_aliases(session, 'Guo Wengui')) == ['Guo Wengui', 'Miles']
            assert get_anchor_aliases(session, ' Miles ', ['Miles G', '']) == ['Miles', 'Miles G', 'Guo Wengui']
        finally:
            session.close()
