"""
Timeline and evidence pack assembly.
"""

from typing import Any, Dict, List
from processors.graph_writer import build_event_summary
from processors.recall import ChunkCandidate


def build_timeline(top: List[ChunkCandidate], events: List[Dict[str, Any]], supplements: int = 8,
                   limit: int = 30) -> List[Dict[str, Any]]:
    """
    Merge extracted events with one plain summary line per leading candidate.

    Entries sort ascending by the raw timestamp string; undated entries
    sort first. The sort is stable, so events precede supplements on ties.
    """
    entries = [
        {'time': e.get('time'), 'summary': e.get('summary'), 'chunk_id': e.get('chunk_id'), 'url': e.get('url')}
        for e in events
    ]
    entries.extend(
        {
            'time': c.published_at,
            'summary': build_event_summary(c.content, None, ''),
            'chunk_id': c.chunk_id,
            'url': c.url,
        }
        for c in top[:supplements]
    )
    entries.sort(key=lambda entry: str(entry['time'] or ''))
    return entries[:limit]


def build_evidence_pack(top: List[ChunkCandidate], size: int = 20) -> List[Dict[str, Any]]:
    """Ranked excerpts of the top candidates with their score breakdown."""
    return [
        {
            'rank': rank,
            'chunk_id': c.chunk_id,
            'url': c.url,
            'snippet': (c.content or '')[:320],
            'why': f"lexical={c.lexical_score:.3f}, vector={c.vector_score:.3f}, time={c.time_score:.3f}",
            'score': round(c.score, 4),
        }
        for rank, c in enumerate(top[:size], start=1)
    ]
