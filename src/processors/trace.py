"""
Trace job orchestration.

State machine of a trace row: queued -> running -> done | failed, and
failed -> running again on redelivery. Each run is Recall -> Fusion ->
Graph Writer -> Assembly; the graph writes are committed before Assembly
so a later failure never rolls back (or duplicates on retry) graph rows.
"""

import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session
from db import knowledge
from domain.summary import build_summary
from domain.timeline import build_evidence_pack, build_timeline
from domain.trace_graph import build_graph
from processors.context import TraceContext
from processors.errors import HotspotNotFound, JobNotFound, TraceValidationError
from processors.fusion import filter_candidates, merge_candidates, rerank_candidates
from processors.graph_writer import extract_and_persist_knowledge, upsert_vectors_for_candidates
from processors.recall import get_anchor_aliases, recall_by_lexical, recall_by_vector
from processors.tokenization import clean_terms


def _required_text(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise TraceValidationError(f"'{key}' is required")
    return value.strip()


def _optional_text(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def upsert_hotspot(ctx: TraceContext, data: Dict[str, Any]) -> Dict[str, str]:
    """
    Create or fully replace a hotspot.

    Args:
        ctx: Trace context
        data: title and description (required); hotspot_id, time_start,
            time_end, entities, keywords, must_include, exclude (optional)

    Returns:
        {'hotspot_id': ...}; a new UUID is assigned when none is given

    Raises:
        TraceValidationError: If title or description is missing
    """
    title = _required_text(data, 'title')
    description = _required_text(data, 'description')
    hotspot_id = _optional_text(data.get('hotspot_id')) or str(uuid.uuid4())

    session = ctx.database.get_session()
    try:
        knowledge.upsert_hotspot(
            session,
            hotspot_id=hotspot_id,
            title=title,
            description=description,
            time_start=_optional_text(data.get('time_start')),
            time_end=_optional_text(data.get('time_end')),
            entities=clean_terms(data.get('entities')),
            keywords=clean_terms(data.get('keywords')),
            must_include=clean_terms(data.get('must_include')),
            exclude=clean_terms(data.get('exclude')),
        )
        session.commit()
        return {'hotspot_id': hotspot_id}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def enqueue_trace(ctx: TraceContext, data: Dict[str, Any]) -> Dict[str, str]:
    """
    Create a queued trace and publish its id on the queue.

    Args:
        ctx: Trace context
        data: hotspot_id and anchor (required); event and aliases (optional)

    Returns:
        {'trace_id': ..., 'status': 'queued'}

    Raises:
        TraceValidationError: If hotspot_id or anchor is missing
    """
    hotspot_id = _required_text(data, 'hotspot_id')
    anchor = _required_text(data, 'anchor')
    trace_id = str(uuid.uuid4())

    session = ctx.database.get_session()
    try:
        knowledge.create_trace(
            session,
            trace_id=trace_id,
            hotspot_id=hotspot_id,
            anchor=anchor,
            event=_optional_text(data.get('event')),
            aliases=clean_terms(data.get('aliases')),
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if ctx.queue is not None:
        ctx.queue.send({'trace_id': trace_id})

    return {'trace_id': trace_id, 'status': 'queued'}


def get_trace(ctx: TraceContext, trace_id: str) -> Optional[Dict[str, Any]]:
    """Current status, result and error of a trace, or None if unknown."""
    session = ctx.database.get_session()
    try:
        trace = knowledge.get_trace(session, trace_id)
        return trace.to_dict() if trace else None
    finally:
        session.close()


def extract_trace_id(payload) -> Optional[str]:
    """trace_id of a queue payload, or None when the payload is malformed."""
    if not isinstance(payload, dict):
        return None
    trace_id = payload.get('trace_id')
    if not isinstance(trace_id, str) or not trace_id.strip():
        return None
    return trace_id


def process_trace_message(ctx: TraceContext, payload) -> Optional[Dict[str, Any]]:
    """
    Queue entry point. Malformed payloads are dropped without error.

    Returns:
        The trace result, or None when the payload was dropped
    """
    trace_id = extract_trace_id(payload)
    if trace_id is None:
        return None
    return process_trace(ctx, trace_id)


def process_trace(ctx: TraceContext, trace_id: str) -> Dict[str, Any]:
    """
    Run one delivery of a trace job.

    On failure the truncated error is stored, retries is incremented, the
    status becomes failed and the exception is re-raised so the delivery
    can be retried. A previous result is never replaced by a partial one.

    Raises:
        JobNotFound: If the trace row does not exist
        HotspotNotFound: If the referenced hotspot does not exist
    """
    session = ctx.database.get_session()
    try:
        knowledge.mark_trace_running(session, trace_id)
        session.commit()

        try:
            trace = knowledge.get_trace(session, trace_id)
            if trace is None:
                raise JobNotFound(f"trace not found: {trace_id}")

            hotspot = knowledge.get_hotspot(session, trace.hotspot_id)
            if hotspot is None:
                raise HotspotNotFound(f"hotspot not found: {trace.hotspot_id}")

            result = run_trace_pipeline(
                ctx,
                session,
                trace_id=trace_id,
                hotspot=hotspot.to_dict(),
                anchor=trace.anchor,
                event=trace.event,
                request_aliases=list(trace.aliases or []),
            )

            knowledge.mark_trace_done(session, trace_id, result)
            session.commit()

        except Exception as e:
            session.rollback()
            message = str(e) or e.__class__.__name__
            try:
                knowledge.mark_trace_failed(session, trace_id, message)
                session.commit()
            except Exception as mark_error:
                session.rollback()
                print(f"  ✗ Could not record failure of trace {trace_id}: {mark_error}")
            print(f"  ✗ Trace {trace_id} failed: {message}")
            raise

        stats = result['stats']
        print(f"  ✓ Trace {trace_id} done: {stats['top_count']} candidates, "
              f"{len(result['evidence_pack'])} evidence, {len(result['graph']['edges'])} edges")
        return result

    finally:
        session.close()


def run_trace_pipeline(ctx: TraceContext, session: Session, trace_id: str, hotspot: Dict[str, Any],
                       anchor: str, event: Optional[str], request_aliases: List[str]) -> Dict[str, Any]:
    """
    Recall, fuse, persist knowledge and assemble the trace result.

    Lexical and vector recall run concurrently; every later stage waits for
    the previous one.

    Returns:
        Result document (trace_id, hotspot_id, anchor, event, aliases,
        stats, summary, timeline, graph, evidence_pack)
    """
    config = ctx.config
    hotspot_entities = clean_terms(hotspot.get('entities'))
    keywords = clean_terms(hotspot.get('keywords'))

    # Recall
    aliases = get_anchor_aliases(session, anchor, request_aliases)
    query_text = " ".join([hotspot.get('description') or '', anchor, event or '']).strip()

    with ThreadPoolExecutor(max_workers=2) as executor:
        lexical_future = executor.submit(recall_by_lexical, ctx, aliases, event, keywords)
        vector_future = executor.submit(recall_by_vector, ctx, query_text)
        lexical_candidates = lexical_future.result()
        vector_candidates = vector_future.result()

    # Fusion
    merged = merge_candidates(lexical_candidates, vector_candidates)
    filtered = filter_candidates(
        merged,
        aliases=aliases,
        must_include=clean_terms(hotspot.get('must_include')),
        exclude=clean_terms(hotspot.get('exclude')),
        time_start=hotspot.get('time_start'),
        time_end=hotspot.get('time_end'),
        bonus=config.time_bonus,
        penalty=config.time_penalty,
    )
    reranked = rerank_candidates(filtered)
    top = reranked[:config.top_n]

    # Graph writer
    upsert_vectors_for_candidates(ctx, top)
    events = extract_and_persist_knowledge(
        session,
        trace_id=trace_id,
        top=top,
        anchor=anchor,
        hotspot_entities=hotspot_entities,
        event=event,
        lang=config.entity_lang,
        edge_weight_offset=config.edge_weight_offset,
    )
    session.commit()

    # Assembly
    graph = build_graph(session, anchor, hotspot_entities, config.max_hops, config.graph_edge_limit)
    timeline = build_timeline(top, events, config.timeline_supplements, config.timeline_limit)
    evidence_pack = build_evidence_pack(top, config.evidence_size)
    summary = build_summary(
        ctx.summarizer,
        anchor=anchor,
        event=event,
        hotspot=hotspot,
        timeline=timeline,
        graph=graph,
        evidence_pack=evidence_pack,
        trace_id=trace_id,
    )

    return {
        'trace_id': trace_id,
        'hotspot_id': hotspot.get('hotspot_id'),
        'anchor': anchor,
        'event': event,
        'aliases': aliases,
        'stats': {
            'fts_count': len(lexical_candidates),
            'vector_count': len(vector_candidates),
            'merged_count': len(merged),
            'filtered_count': len(filtered),
            'reranked_count': len(reranked),
            'top_count': len(top),
        },
        'summary': summary,
        'timeline': timeline,
        'graph': graph,
        'evidence_pack': evidence_pack,
    }
