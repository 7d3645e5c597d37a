"""
Candidate recall: lexical (FTS5) and vector (embedding k-NN).

Both paths are optional in the sense that an unavailable or failing
capability yields an empty list (or the substring fallback for lexical)
instead of failing the trace run.
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from db.fts import LexicalIndexUnavailable, map_relevance
from db.knowledge import find_aliases
from processors.context import TraceContext
from processors.tokenization import clean_terms, fts_phrase_group, tokenize, unique_terms


@dataclass
class ChunkCandidate:
    """A chunk competing for a place in the trace's working set."""
    chunk_id: str
    url: str = ''
    url_hash: str = ''
    chunk_index: int = 0
    content: str = ''
    published_at: Optional[str] = None
    lexical_score: float = 0.0
    vector_score: float = 0.0
    time_score: float = 0.0
    score: float = 0.0

    def rescore(self) -> float:
        self.score = self.lexical_score + self.vector_score + self.time_score
        return self.score


def get_anchor_aliases(session: Session, anchor: str, request_aliases: List[str] = None) -> List[str]:
    """
    Anchor, caller hints, then stored aliases of any entity named anchor.

    Returns:
        Deduplicated aliases, anchor first
    """
    anchor = anchor.strip()
    stored = find_aliases(session, anchor, limit=50)
    return unique_terms(clean_terms([anchor] + list(request_aliases or []) + stored))


def build_lexical_query(aliases: List[str], event: Optional[str], keywords: List[str], max_terms: int = 8) -> str:
    """
    Build the FTS5 expression (alias OR ...) AND (topic OR ...).

    Topic terms come from the event text then the hotspot keywords. When
    none survive tokenization the topic clause is omitted.

    Examples:
        >>> build_lexical_query(['Miles', 'Guo'], 'court ruling', ['fraud'])
        '("Miles" OR "Guo") AND ("court" OR "ruling" OR "fraud")'
        >>> build_lexical_query(['Miles'], None, ['Y'])
        '("Miles")'
    """
    topic_terms = tokenize(event or '')
    for keyword in keywords or []:
        topic_terms.extend(tokenize(keyword))
    topic_terms = topic_terms[:max_terms]

    alias_expr = fts_phrase_group(aliases) or '""'
    topic_expr = fts_phrase_group(topic_terms)
    if not topic_expr:
        return f"({alias_expr})"
    return f"({alias_expr}) AND ({topic_expr})"


def recall_by_lexical(ctx: TraceContext, aliases: List[str], event: Optional[str],
                      keywords: List[str]) -> List[ChunkCandidate]:
    """
    Lexical recall over the full-text index.

    Falls back to a substring scan for the anchor and event with a flat
    score when the index is unavailable. Never raises.
    """
    config = ctx.config
    query = build_lexical_query(aliases, event, keywords, config.max_topic_terms)

    try:
        rows = ctx.lexical_index.match(query, config.lexical_limit)
        candidates = []
        for row in rows:
            lexical = map_relevance(row.get('relevance'))
            candidates.append(_candidate_from_row(row, lexical_score=lexical))
        return candidates
    except LexicalIndexUnavailable as e:
        print(f"Warning: lexical index unavailable ({e}), using substring scan", file=sys.stderr)

    terms = clean_terms([aliases[0] if aliases else None, event])
    try:
        rows = ctx.lexical_index.scan(terms, config.lexical_limit)
    except SQLAlchemyError as e:
        print(f"Warning: substring scan failed: {e}", file=sys.stderr)
        return []
    return [_candidate_from_row(row, lexical_score=config.lexical_fallback_score) for row in rows]


def create_embedding(ctx: TraceContext, text: str) -> Optional[List[float]]:
    """Embedding of text, or None when the embedder is missing or fails."""
    if ctx.embedder is None:
        return None
    try:
        vector = ctx.embedder.embed(text)
    except Exception as e:
        print(f"Warning: embedding failed: {e}", file=sys.stderr)
        return None
    if vector is None or len(vector) == 0:
        return None
    return [float(v) for v in vector]


def recall_by_vector(ctx: TraceContext, query_text: str) -> List[ChunkCandidate]:
    """
    Vector recall: embed the query text and take the top-K neighbours.

    Candidate fields are rebuilt from the stored vector metadata only.
    Returns an empty list when either capability is missing or fails.
    """
    if ctx.vector_index is None or ctx.embedder is None:
        return []

    embedding = create_embedding(ctx, query_text)
    if embedding is None:
        return []

    try:
        matches = ctx.vector_index.query(embedding, top_k=ctx.config.vector_top_k, return_metadata=True)
    except Exception as e:
        print(f"Warning: vector query failed: {e}", file=sys.stderr)
        return []

    candidates = []
    for match in matches:
        metadata = match.get('metadata') or {}
        score = float(match.get('score') or 0.0)
        candidates.append(ChunkCandidate(
            chunk_id=str(match['id']),
            url=str(metadata.get('url') or ''),
            url_hash=str(metadata.get('url_hash') or ''),
            chunk_index=int(metadata.get('chunk_index') or 0),
            content=str(metadata.get('content') or ''),
            published_at=metadata.get('published_at'),
            vector_score=score,
            score=score,
        ))
    return candidates


def _candidate_from_row(row: Dict[str, Any], lexical_score: float) -> ChunkCandidate:
    return ChunkCandidate(
        chunk_id=row.get('chunk_id') or f"{row['url_hash']}:{row['chunk_index']}",
        url=row.get('url') or '',
        url_hash=row.get('url_hash') or '',
        chunk_index=int(row.get('chunk_index') or 0),
        content=row.get('content') or '',
        published_at=row.get('published_at'),
        lexical_score=lexical_score,
        score=lexical_score,
    )
