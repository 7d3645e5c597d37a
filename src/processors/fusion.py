"""
Fusion of recall candidates: merge, filter, time-window scoring, rerank.
"""

from dataclasses import replace
from typing import Dict, Iterable, List, Optional
from processors.recall import ChunkCandidate
from processors.tokenization import contains_all, contains_any


TIME_BONUS = 0.2
TIME_PENALTY = -0.2


def merge_candidates(*groups: Iterable[ChunkCandidate]) -> List[ChunkCandidate]:
    """
    Union candidates by chunk_id.

    Each sub-score keeps the maximum seen for the id. Text fields are filled
    from whichever sighting has them, preferring the longer value, so the
    merged set does not depend on the order of the groups. Inputs are not
    modified.

    Returns:
        Merged candidates in first-seen order
    """
    merged: Dict[str, ChunkCandidate] = {}

    for group in groups:
        for candidate in group:
            prior = merged.get(candidate.chunk_id)
            if prior is None:
                merged[candidate.chunk_id] = replace(candidate)
                continue

            prior.lexical_score = max(prior.lexical_score, candidate.lexical_score)
            prior.vector_score = max(prior.vector_score, candidate.vector_score)
            prior.time_score = max(prior.time_score, candidate.time_score)
            prior.content = _prefer(prior.content, candidate.content)
            prior.url = _prefer(prior.url, candidate.url)
            prior.url_hash = _prefer(prior.url_hash, candidate.url_hash)
            prior.published_at = _prefer(prior.published_at, candidate.published_at) or None
            prior.chunk_index = max(prior.chunk_index, candidate.chunk_index)
            prior.rescore()

    return list(merged.values())


def score_by_time_window(published_at: Optional[str], time_start: Optional[str],
                         time_end: Optional[str], bonus: float = TIME_BONUS,
                         penalty: float = TIME_PENALTY) -> float:
    """
    Time alignment of a candidate with the hotspot window.

    Timestamps are compared as raw strings, so ISO-8601 values order
    chronologically. Either bound may be missing.

    Examples:
        >>> score_by_time_window("2023-03-01", "2023-01-01", "2023-06-01")
        0.2
        >>> score_by_time_window("2022-12-01", "2023-01-01", "2023-06-01")
        -0.2
        >>> score_by_time_window(None, "2023-01-01", "2023-06-01")
        0.0
    """
    if not published_at or (not time_start and not time_end):
        return 0.0
    if time_start and published_at < time_start:
        return penalty
    if time_end and published_at > time_end:
        return penalty
    return bonus


def filter_candidates(candidates: List[ChunkCandidate], aliases: List[str],
                      must_include: List[str] = None, exclude: List[str] = None,
                      time_start: Optional[str] = None, time_end: Optional[str] = None,
                      bonus: float = TIME_BONUS, penalty: float = TIME_PENALTY) -> List[ChunkCandidate]:
    """
    Apply the hard gates, then score survivors against the time window.

    A candidate survives only if its content contains an alias, every
    must-include term and no exclude term (case-sensitive substrings).
    Survivors get time_score set and score recomputed.
    """
    survivors = []
    for candidate in candidates:
        content = candidate.content or ''
        if not aliases or not contains_any(content, aliases):
            continue
        if must_include and not contains_all(content, must_include):
            continue
        if exclude and contains_any(content, exclude):
            continue

        candidate.time_score = score_by_time_window(candidate.published_at, time_start, time_end, bonus, penalty)
        candidate.rescore()
        survivors.append(candidate)
    return survivors


def rerank_candidates(candidates: List[ChunkCandidate]) -> List[ChunkCandidate]:
    """Stable sort by descending fused score."""
    return sorted(candidates, key=lambda c: c.score, reverse=True)


def _prefer(current, other):
    if not other:
        return current
    if not current:
        return other
    if len(other) != len(current):
        return other if len(other) > len(current) else current
    return max(current, other)
