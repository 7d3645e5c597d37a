from domain.summary import build_fallback_summary, build_summary
from domain.timeline import build_evidence_pack, build_timeline
from domain.trace_graph import build_graph
from db.knowledge import upsert_edge, upsert_entity
from processors.graph_writer import build_event_summary
from processors.recall import ChunkCandidate
from conftest import FakeSummarizer


def candidate(chunk_id, content, published_at=None, lexical=1.0, vector=0.0, time=0.0):
    return ChunkCandidate(chunk_id=chunk_id, url=f"https://e/{chunk_id}", content=content,
                          published_at=published_at, lexical_score=lexical, vector_score=vector,
                          time_score=time, score=lexical + vector + time)


class TestEventSummary:
    def test_first_substantial_sentence(self):
        content = "Short one!\nMiles testified before the court today。Later text"
        assert build_event_summary(content, None, 'Miles') == 'Miles: Miles testified before the court today'

    def test_prefix_with_event(self):
        assert build_event_summary("A sentence that is long enough", "trial", "Miles") == \
            'Miles/trial: A sentence that is long enough'

    def test_falls_back_to_prefix(self):
        assert build_event_summary("tiny", None, "") == "tiny"
        assert build_event_summary("x" * 100 + "!", None, "").startswith("x" * 100)


class TestTimeline:
    def test_sorted_by_time_with_undated_first(self):
        top = [candidate('a', "Miles said this long sentence.", '2023-05-01'),
               candidate('b', "Miles said another long sentence.", None)]
        events = [{'time': '2023-01-01', 'summary': 'Miles: early', 'chunk_id': 'c', 'url': 'u'}]

        timeline = build_timeline(top, events)

        assert [t['time'] for t in timeline] == [None, '2023-01-01', '2023-05-01']
        assert timeline[2]['summary'] == "Miles said this long sentence."

    def test_caps(self):
        top = [candidate(str(i), f"Sentence number {i} is long", f"2023-01-{i + 1:02d}") for i in range(12)]
        events = [{'time': f"2023-02-{i + 1:02d}", 'summary': 's', 'chunk_id': str(i), 'url': ''} for i in range(28)]

        timeline = build_timeline(top, events, supplements=8, limit=30)

        assert len(timeline) == 30
        assert sum(1 for t in timeline if t['time'].startswith('2023-01')) == 8


class TestEvidencePack:
    def test_items(self):
        top = [candidate('a', "x" * 500, lexical=2.5, vector=0.31234, time=0.2),
               candidate('b', "short", lexical=0.1)]

        pack = build_evidence_pack(top, size=1)

        assert len(pack) == 1
        assert pack[0]['rank'] == 1
        assert len(pack[0]['snippet']) == 320
        assert pack[0]['why'] == "lexical=2.500, vector=0.312, time=0.200"
        assert pack[0]['score'] == round(2.5 + 0.31234 + 0.2, 4)


class TestGraph:
    def test_missing_anchor(self, database):
        session = database.get_session()
        try:
            assert build_graph(session, 'Nobody', []) == {'nodes': [], 'edges': [], 'paths': []}
        finally:
            session.close()

    def test_paths_follow_hotspot_entities(self, database):
        session = database.get_session()
        try:
            miles = upsert_entity(session, 'Miles', 'person', ['Miles'])
            court = upsert_entity(session, 'Court', 'topic', ['Court'])
            bank = upsert_entity(session, 'Bank', 'topic', ['Bank'])
            upsert_edge(session, miles, 'related_to', court, 'h:0', 2.0)
            upsert_edge(session, miles, 'related_to', bank, 'h:0', 3.0)
            upsert_edge(session, miles, 'related_to', court, 'h:1', 1.0)
            session.commit()

            graph = build_graph(session, 'Miles', ['Court'], max_hops=4)

            assert [e['weight'] for e in graph['edges']] == [3.0, 2.0, 1.0]
            assert {n['label'] for n in graph['nodes']} == {'Miles', 'Court', 'Bank'}
            assert [p['path_id'] for p in graph['paths']] == ['p1', 'p2']
            assert all(p['nodes'] == ['Miles', 'Court'] for p in graph['paths'])

            any_graph = build_graph(session, 'Miles', [], max_hops=2)
            assert [p['score'] for p in any_graph['paths']] == [3.0, 2.0]
        finally:
            session.close()


class TestSummary:
    hotspot = {'hotspot_id': 'h', 'title': 'X', 'time_start': None, 'time_end': None}
    graph = {'nodes': [], 'edges': [{}, {}], 'paths': []}

    def test_fallback_uses_counts(self):
        text = build_fallback_summary('Miles', 'X', 'trial', 3, 2, 1)
        assert '“Miles”' in text
        assert '时间线节点 3 条' in text
        assert '图边 2 条' in text
        assert '证据 1 条' in text
        assert '重点事件：trial' in text
        assert '不确定' in text

    def test_without_summarizer(self):
        text = build_summary(None, 'Miles', None, self.hotspot, [{}], self.graph, [])
        assert text == build_fallback_summary('Miles', 'X', None, 1, 2, 0)

    def test_empty_llm_output_falls_back(self):
        text = build_summary(FakeSummarizer("   "), 'Miles', None, self.hotspot, [], self.graph, [])
        assert text.startswith('围绕')

    def test_llm_output_is_stripped(self):
        summarizer = FakeSummarizer("  LLM text \n")
        text = build_summary(summarizer, 'Miles', 'trial', self.hotspot, [], self.graph, [], trace_id='t')
        assert text == "LLM text"
        assert summarizer.calls[0]['edge_count'] == 2
        assert summarizer.calls[0]['trace_id'] == 't'
