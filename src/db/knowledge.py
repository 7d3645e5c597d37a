"""
Knowledge store operations: hotspots, trace jobs and the entity graph.

Graph rows (entities, aliases, mentions, events, edges) use content-derived
identities and are written with INSERT ... ON CONFLICT DO UPDATE, so re-running
a trace over the same candidates rewrites the same rows instead of adding
new ones. Only edge weight (and timestamps) may differ between runs.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy import or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, aliased
from .database import sha256_hex
from .models import Hotspot, Trace, TraceStatus, Entity, EntityAlias, Mention, Event, Edge


ERROR_MAX_LENGTH = 2000
ALIAS_CONFIDENCE = 0.8


def make_id(kind: str, *parts) -> str:
    """
    Deterministic identity over a canonical field ordering.

    Examples:
        >>> make_id('entity', 'Miles', 'person') == sha256_hex('entity:Miles:person')
        True
    """
    return sha256_hex(":".join([kind] + [str(p) for p in parts]))


# ========== Hotspots ==========

def upsert_hotspot(session: Session, hotspot_id: str, title: str, description: str,
                   time_start: Optional[str] = None, time_end: Optional[str] = None,
                   entities: List[str] = None, keywords: List[str] = None,
                   must_include: List[str] = None, exclude: List[str] = None) -> str:
    """Create or fully replace a hotspot definition (last write wins)."""
    values = {
        'hotspot_id': hotspot_id,
        'title': title,
        'description': description,
        'time_start': time_start,
        'time_end': time_end,
        'entities': list(entities or []),
        'keywords': list(keywords or []),
        'must_include': list(must_include or []),
        'exclude': list(exclude or []),
        'updated_at': datetime.utcnow(),
    }
    stmt = sqlite_insert(Hotspot).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=['hotspot_id'],
        set_={key: stmt.excluded[key] for key in values if key != 'hotspot_id'}
    )
    session.execute(stmt)
    return hotspot_id


def get_hotspot(session: Session, hotspot_id: str) -> Optional[Hotspot]:
    return session.query(Hotspot).filter_by(hotspot_id=hotspot_id).first()


# ========== Trace jobs ==========

def create_trace(session: Session, trace_id: str, hotspot_id: str, anchor: str,
                 event: Optional[str] = None, aliases: List[str] = None) -> Trace:
    """Insert a new trace row in state QUEUED."""
    trace = Trace(
        trace_id=trace_id,
        hotspot_id=hotspot_id,
        anchor=anchor,
        event=event,
        aliases=list(aliases or []),
        status=TraceStatus.QUEUED,
        result=None,
        error=None,
        retries=0
    )
    session.add(trace)
    session.flush()
    return trace


def get_trace(session: Session, trace_id: str) -> Optional[Trace]:
    return session.query(Trace).filter_by(trace_id=trace_id).first()


def mark_trace_running(session: Session, trace_id: str) -> int:
    """Move a trace to RUNNING; safe to repeat on redelivery."""
    result = session.execute(
        update(Trace)
        .where(Trace.trace_id == trace_id)
        .values(status=TraceStatus.RUNNING, updated_at=datetime.utcnow())
    )
    return result.rowcount


def mark_trace_done(session: Session, trace_id: str, result: Dict[str, Any]) -> int:
    """Persist the result, clear any previous error and set DONE."""
    outcome = session.execute(
        update(Trace)
        .where(Trace.trace_id == trace_id)
        .values(status=TraceStatus.DONE, result=result, error=None, updated_at=datetime.utcnow())
    )
    return outcome.rowcount


def mark_trace_failed(session: Session, trace_id: str, error: str) -> int:
    """
    Record a failed run: truncated error, retries + 1, status FAILED.

    The result column is left untouched so a failed run never exposes a
    partial result.
    """
    outcome = session.execute(
        update(Trace)
        .where(Trace.trace_id == trace_id)
        .values(
            status=TraceStatus.FAILED,
            retries=Trace.retries + 1,
            error=(error or '')[:ERROR_MAX_LENGTH],
            updated_at=datetime.utcnow()
        )
    )
    return outcome.rowcount


# ========== Entity graph ==========

def find_aliases(session: Session, name: str, limit: int = 50) -> List[str]:
    """Aliases of entities whose canonical name or any alias equals name."""
    matching = (
        select(Entity.entity_id)
        .join(EntityAlias, EntityAlias.entity_id == Entity.entity_id, isouter=True)
        .where(or_(Entity.canonical == name, EntityAlias.alias == name))
    )
    rows = (
        session.query(EntityAlias.alias)
        .filter(EntityAlias.entity_id.in_(matching))
        .order_by(EntityAlias.entity_id, EntityAlias.alias)
        .limit(limit)
        .all()
    )
    return [alias for alias, in rows]


def upsert_entity(session: Session, canonical: str, entity_type: str, aliases: List[str] = None,
                  lang: Optional[str] = None) -> str:
    """
    Upsert an entity and its aliases.

    Returns:
        entity_id = sha256("entity:{canonical}:{type}")
    """
    entity_id = make_id('entity', canonical, entity_type)

    stmt = sqlite_insert(Entity).values(
        entity_id=entity_id,
        canonical=canonical,
        type=entity_type,
        lang=lang,
        created_at=datetime.utcnow()
    )
    stmt = stmt.on_conflict_do_update(index_elements=['entity_id'], set_={'lang': stmt.excluded.lang})
    session.execute(stmt)

    for alias in aliases or []:
        if not alias:
            continue
        alias_stmt = sqlite_insert(EntityAlias).values(entity_id=entity_id, alias=alias, confidence=ALIAS_CONFIDENCE)
        alias_stmt = alias_stmt.on_conflict_do_update(
            index_elements=['entity_id', 'alias'],
            set_={'confidence': alias_stmt.excluded.confidence}
        )
        session.execute(alias_stmt)

    return entity_id


def upsert_mention(session: Session, entity_id: str, chunk_id: str, span: Dict[str, int]) -> str:
    """Upsert a mention keyed by (chunk_id, entity_id)."""
    mention_id = make_id('mention', chunk_id, entity_id)
    stmt = sqlite_insert(Mention).values(
        mention_id=mention_id,
        entity_id=entity_id,
        chunk_id=chunk_id,
        span=span,
        created_at=datetime.utcnow()
    )
    stmt = stmt.on_conflict_do_update(index_elements=['mention_id'], set_={'span': stmt.excluded.span})
    session.execute(stmt)
    return mention_id


def upsert_edge(session: Session, src_entity_id: str, relation: str, dst_entity_id: str,
                chunk_id: str, weight: float, event_id: Optional[str] = None) -> str:
    """
    Upsert an edge keyed by (src, relation, dst, chunk).

    An existing edge keeps its created_at; weight is overwritten by the
    latest run.
    """
    edge_id = make_id('edge', src_entity_id, relation, dst_entity_id, chunk_id)
    stmt = sqlite_insert(Edge).values(
        edge_id=edge_id,
        src_entity_id=src_entity_id,
        relation=relation,
        dst_entity_id=dst_entity_id,
        event_id=event_id,
        chunk_id=chunk_id,
        weight=weight,
        created_at=datetime.utcnow()
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=['edge_id'],
        set_={'weight': stmt.excluded.weight, 'event_id': stmt.excluded.event_id}
    )
    session.execute(stmt)
    return edge_id


def upsert_event(session: Session, chunk_id: str, time: Optional[str], event_type: str,
                 summary: str, args: Dict[str, Any] = None) -> str:
    """Upsert an event keyed by (chunk_id, summary)."""
    event_id = make_id('event', chunk_id, summary)
    stmt = sqlite_insert(Event).values(
        event_id=event_id,
        time=time,
        type=event_type,
        summary=summary,
        args=args,
        chunk_id=chunk_id,
        created_at=datetime.utcnow()
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=['event_id'],
        set_={'time': stmt.excluded.time, 'type': stmt.excluded.type, 'args': stmt.excluded.args}
    )
    session.execute(stmt)
    return event_id


def get_entity(session: Session, canonical: str, entity_type: Optional[str] = None) -> Optional[Entity]:
    query = session.query(Entity).filter(Entity.canonical == canonical)
    if entity_type:
        query = query.filter(Entity.type == entity_type)
    return query.first()


def get_outgoing_edges(session: Session, entity_id: str, limit: int = 200) -> List[Dict[str, Any]]:
    """Outgoing edges of an entity with endpoint names, heaviest first."""
    src = aliased(Entity)
    dst = aliased(Entity)
    rows = (
        session.query(Edge, src.canonical, dst.canonical)
        .join(src, src.entity_id == Edge.src_entity_id)
        .join(dst, dst.entity_id == Edge.dst_entity_id)
        .filter(Edge.src_entity_id == entity_id)
        .order_by(Edge.weight.desc(), Edge.edge_id)
        .limit(limit)
        .all()
    )
    return [
        {
            'edge_id': edge.edge_id,
            'src_entity_id': edge.src_entity_id,
            'relation': edge.relation,
            'dst_entity_id': edge.dst_entity_id,
            'chunk_id': edge.chunk_id,
            'weight': edge.weight,
            'src_name': src_name,
            'dst_name': dst_name,
        }
        for edge, src_name, dst_name in rows
    ]
