"""
Graph writer: persist mentions, topic edges and events for the top candidates,
and backfill the vector index with their embeddings.

All graph writes are upserts keyed by content-derived ids, so a redelivered
or concurrently duplicated run rewrites the same rows.
"""

import re
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from db.knowledge import upsert_edge, upsert_entity, upsert_event, upsert_mention
from db.models import EntityKind
from processors.context import TraceContext
from processors.recall import ChunkCandidate, create_embedding


SENTENCE_BOUNDARY = re.compile(r'[\n。！？!?]')
MIN_SENTENCE_LENGTH = 12
FALLBACK_SUMMARY_LENGTH = 80
MENTION_SPAN_LENGTH = 180
RELATED_TO = 'related_to'


def build_event_summary(content: str, event: Optional[str], anchor: str) -> str:
    """
    First substantial sentence of a chunk, prefixed with anchor/event.

    Examples:
        >>> build_event_summary("Short.\\nMiles testified before the court today.", None, "Miles")
        'Miles: Miles testified before the court today.'
        >>> build_event_summary("tiny", "trial", "")
        'trial: tiny'
    """
    sentence = next(
        (s.strip() for s in SENTENCE_BOUNDARY.split(content or '') if len(s.strip()) >= MIN_SENTENCE_LENGTH),
        (content or '')[:FALLBACK_SUMMARY_LENGTH]
    )
    head = "/".join(part for part in (anchor, event) if part)
    return f"{head}: {sentence}" if head else sentence


def extract_and_persist_knowledge(session: Session, trace_id: str, top: List[ChunkCandidate], anchor: str,
                                  hotspot_entities: List[str], event: Optional[str] = None,
                                  lang: Optional[str] = None,
                                  edge_weight_offset: float = 1.0) -> List[Dict[str, Any]]:
    """
    Upsert the anchor entity, then per candidate a mention, one edge per
    hotspot topic entity and one event.

    Writes go through the given session; the caller commits.

    Returns:
        Extracted events (event_id, time, summary, chunk_id, url) in
        candidate order
    """
    anchor_entity_id = upsert_entity(session, anchor, EntityKind.PERSON.value, [anchor], lang)
    topic_entity_ids = {
        name: upsert_entity(session, name, EntityKind.TOPIC.value, [name], lang)
        for name in hotspot_entities
    }
    event_type = 'hotspot_event' if event else 'mention_event'

    events = []
    for candidate in top:
        content = candidate.content or ''
        upsert_mention(
            session, anchor_entity_id, candidate.chunk_id,
            {'start': 0, 'end': min(MENTION_SPAN_LENGTH, len(content))}
        )

        weight = max(0.0, round(candidate.score + edge_weight_offset, 4))
        for topic_entity_id in topic_entity_ids.values():
            upsert_edge(session, anchor_entity_id, RELATED_TO, topic_entity_id, candidate.chunk_id, weight)

        summary = build_event_summary(content, event, anchor)
        event_id = upsert_event(
            session, candidate.chunk_id, candidate.published_at, event_type, summary, {'trace_id': trace_id}
        )
        events.append({
            'event_id': event_id,
            'time': candidate.published_at,
            'summary': summary,
            'chunk_id': candidate.chunk_id,
            'url': candidate.url,
        })

    return events


def upsert_vectors_for_candidates(ctx: TraceContext, candidates: List[ChunkCandidate]) -> int:
    """
    Best-effort embedding backfill for future vector recall.

    Embeddings are computed with a bounded pool; candidates whose embedding
    fails are skipped and an index failure is only reported.

    Returns:
        Number of vectors written
    """
    if ctx.vector_index is None or ctx.embedder is None:
        return 0

    batch = candidates[:ctx.config.vector_upsert_limit]
    if not batch:
        return 0

    with ThreadPoolExecutor(max_workers=max(1, ctx.config.workers)) as executor:
        embeddings = list(executor.map(lambda c: create_embedding(ctx, (c.content or '')[:1200]), batch))

    vectors = [
        {
            'id': candidate.chunk_id,
            'values': embedding,
            'metadata': {
                'chunk_id': candidate.chunk_id,
                'url': candidate.url,
                'url_hash': candidate.url_hash,
                'chunk_index': candidate.chunk_index,
                'published_at': candidate.published_at,
                'content': (candidate.content or '')[:240],
            },
        }
        for candidate, embedding in zip(batch, embeddings)
        if embedding is not None
    ]
    if not vectors:
        return 0

    try:
        return ctx.vector_index.upsert(vectors)
    except Exception as e:
        print(f"Warning: vector upsert failed: {e}", file=sys.stderr)
        return 0
