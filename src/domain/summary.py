"""
Trace summary: optional LLM text with a deterministic fallback.
"""

import sys
from typing import Any, Dict, List, Optional


def build_fallback_summary(anchor: str, hotspot_title: str, event: Optional[str], timeline_count: int,
                           edge_count: int, evidence_count: int) -> str:
    """
    Conservative summary built only from computed counts.

    Examples:
        >>> build_fallback_summary("Miles", "X", None, 2, 1, 1)
        '围绕“Miles”与热点“X”构建线索链，提取时间线节点 2 条，图边 1 条，证据 1 条。结果可能包含不确定项，已保留证据引用供复核。'
    """
    focus = f"重点事件：{event}。" if event else ""
    return (
        f"围绕“{anchor}”与热点“{hotspot_title}”构建线索链，"
        f"提取时间线节点 {timeline_count} 条，图边 {edge_count} 条，证据 {evidence_count} 条。"
        f"{focus}结果可能包含不确定项，已保留证据引用供复核。"
    )


def build_summary(summarizer, anchor: str, event: Optional[str], hotspot: Dict[str, Any],
                  timeline: List[Dict], graph: Dict[str, List], evidence_pack: List[Dict],
                  trace_id: Optional[str] = None) -> str:
    """
    Summarize a trace.

    The summarizer only sees labels and counts. Its text is used when
    non-empty; a missing summarizer, an error or an empty answer yields the
    fallback sentence.
    """
    counts = {
        'timeline_count': len(timeline),
        'edge_count': len(graph.get('edges', [])),
        'evidence_count': len(evidence_pack),
    }
    fallback = build_fallback_summary(anchor, hotspot.get('title', ''), event, **counts)

    if summarizer is None:
        return fallback

    data = {
        'trace_id': trace_id,
        'hotspot_id': hotspot.get('hotspot_id'),
        'anchor': anchor,
        'event': event,
        'hotspot': hotspot.get('title', ''),
        'time_start': hotspot.get('time_start'),
        'time_end': hotspot.get('time_end'),
        **counts,
    }
    try:
        text = summarizer.summarize(data)
    except Exception as e:
        print(f"Warning: summarization failed, using fallback: {e}", file=sys.stderr)
        return fallback

    text = (text or '').strip()
    return text or fallback
