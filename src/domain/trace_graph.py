"""
Anchor-centric subgraph for a trace result.
"""

from typing import Any, Dict, List
from sqlalchemy.orm import Session
from db.knowledge import get_entity, get_outgoing_edges
from db.models import EntityKind


def build_graph(session: Session, anchor: str, hotspot_entities: List[str], max_hops: int = 4,
                edge_limit: int = 200) -> Dict[str, List[Dict[str, Any]]]:
    """
    Collect the anchor's outgoing edges, their endpoint nodes and the
    highlighted paths.

    Paths are the first max_hops edges (heaviest first) whose destination is
    one of the hotspot entities, or any edge when the hotspot declares none.

    Returns:
        {'nodes': [{id, label}], 'edges': [...], 'paths': [...]}; all empty
        when the anchor entity does not exist yet
    """
    anchor_entity = get_entity(session, anchor, EntityKind.PERSON.value) or get_entity(session, anchor)
    if anchor_entity is None:
        return {'nodes': [], 'edges': [], 'paths': []}

    nodes = {anchor_entity.entity_id: {'id': anchor_entity.entity_id, 'label': anchor_entity.canonical}}
    edges = []
    for row in get_outgoing_edges(session, anchor_entity.entity_id, limit=edge_limit):
        nodes[row['dst_entity_id']] = {'id': row['dst_entity_id'], 'label': row['dst_name']}
        edges.append({
            'edge_id': row['edge_id'],
            'src': row['src_entity_id'],
            'src_label': row['src_name'],
            'relation': row['relation'],
            'dst': row['dst_entity_id'],
            'dst_label': row['dst_name'],
            'weight': row['weight'],
            'evidence_chunk_id': row['chunk_id'],
        })

    targets = set(hotspot_entities or [])
    highlighted = [e for e in edges if not targets or e['dst_label'] in targets][:max_hops]
    paths = [
        {
            'path_id': f"p{i}",
            'nodes': [edge['src_label'], edge['dst_label']],
            'edges': [edge],
            'score': edge['weight'],
        }
        for i, edge in enumerate(highlighted, start=1)
    ]

    return {'nodes': list(nodes.values()), 'edges': edges, 'paths': paths}
