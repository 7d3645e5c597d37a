"""
Explicit dependencies of a trace run.

Every pipeline function receives a TraceContext instead of reaching for
module-level clients, so tests can swap any capability for a fake and a
missing capability is simply None.
"""

import importlib.util
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol
from db import Database
from db.fts import LexicalIndex
from db.trace_queue import TraceQueue
from db.vectors import VectorIndex
import settings


class Embedder(Protocol):
    def embed(self, text: str) -> List[float]: ...


class Summarizer(Protocol):
    def summarize(self, data: Dict[str, Any]) -> str: ...


@dataclass
class TraceConfig:
    """Pipeline limits (defaults come from settings)."""
    lexical_limit: int = settings.TRACE_LEXICAL_LIMIT
    vector_top_k: int = settings.TRACE_VECTOR_TOP_K
    top_n: int = settings.TRACE_TOP_N
    evidence_size: int = settings.TRACE_EVIDENCE_SIZE
    timeline_limit: int = settings.TRACE_TIMELINE_LIMIT
    timeline_supplements: int = settings.TRACE_TIMELINE_SUPPLEMENTS
    max_hops: int = settings.TRACE_MAX_HOPS
    graph_edge_limit: int = settings.TRACE_GRAPH_EDGE_LIMIT
    workers: int = settings.TRACE_WORKERS
    entity_lang: str = settings.ENTITY_LANG
    max_topic_terms: int = 8
    vector_upsert_limit: int = 120
    time_bonus: float = 0.2
    time_penalty: float = -0.2
    lexical_fallback_score: float = 1.0
    edge_weight_offset: float = 1.0


@dataclass
class TraceContext:
    """Handles to the store and the optional capabilities."""
    database: Database
    lexical_index: LexicalIndex
    queue: Optional[TraceQueue] = None
    vector_index: Optional[VectorIndex] = None
    embedder: Optional[Embedder] = None
    summarizer: Optional[Summarizer] = None
    config: TraceConfig = field(default_factory=TraceConfig)


def build_context(database: Optional[Database] = None, use_llm: bool = True) -> TraceContext:
    """
    Wire a context from settings.

    Args:
        database: Existing database (defaults to DATABASE_PATH)
        use_llm: Attach the OpenAI summarizer when an API key is configured

    Returns:
        TraceContext with every capability the environment provides
    """
    database = database or Database()

    vector_index = VectorIndex(database) if settings.VECTOR_INDEX_ENABLED else None

    embedder = None
    if settings.EMBEDDING_MODEL:
        if importlib.util.find_spec('sentence_transformers') is None:
            print("Warning: sentence-transformers is not installed, vector recall disabled "
                  "(install the 'embeddings' extra)", file=sys.stderr)
        else:
            from llm.embeddings import SentenceTransformerEmbedder
            embedder = SentenceTransformerEmbedder(settings.EMBEDDING_MODEL)

    summarizer = None
    if use_llm and settings.OPENAI_API_KEY:
        from llm.openai_client import OpenAISummarizer
        summarizer = OpenAISummarizer(database=database)

    queue = TraceQueue(
        database,
        lease_seconds=settings.TRACE_LEASE_SECONDS,
        max_attempts=settings.TRACE_MAX_ATTEMPTS
    )

    return TraceContext(
        database=database,
        lexical_index=LexicalIndex(database),
        queue=queue,
        vector_index=vector_index,
        embedder=embedder,
        summarizer=summarizer,
    )
