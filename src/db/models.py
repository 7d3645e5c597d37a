"""
SQLAlchemy models for the trace archive.
"""

from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index, Enum, JSON, Float
from sqlalchemy.orm import relationship, declarative_base
import enum

Base = declarative_base()


class TraceStatus(enum.Enum):
    """Lifecycle of a trace job."""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


class MessageStatus(enum.Enum):
    """Delivery state of a queued trace message."""
    PENDING = "pending"      # Waiting for (re)delivery
    LEASED = "leased"        # Delivered to a worker, lease not yet expired
    DONE = "done"            # Acknowledged
    DEAD = "dead"            # Gave up after max attempts


class EntityKind(enum.Enum):
    """Type tags used by the trace knowledge graph."""
    PERSON = "person"       # Trace anchors
    TOPIC = "topic"         # Hotspot-declared entities


class Page(Base):
    """Crawled article page."""
    __tablename__ = 'pages'

    id = Column(Integer, primary_key=True)
    url = Column(String(2048), nullable=False, unique=True)
    url_hash = Column(String(64), nullable=False, unique=True, index=True)
    status = Column(String(20), nullable=False, default='stored', index=True)
    title = Column(String(500), nullable=True)
    published_at = Column(String(64), nullable=True)  # Raw timestamp, compared as text
    content_sha256 = Column(String(64), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False, index=True)

    # Relationships
    chunks = relationship('Chunk', back_populates='page', cascade='all, delete-orphan',
                          order_by='Chunk.chunk_index')

    def __repr__(self):
        return f"<Page(url='{self.url}', status='{self.status}')>"


class Chunk(Base):
    """Bounded unit of article text, the smallest retrievable span."""
    __tablename__ = 'chunks'

    id = Column(Integer, primary_key=True)
    chunk_id = Column(String(100), nullable=False, unique=True, index=True)  # "{url_hash}:{chunk_index}"
    url_hash = Column(String(64), ForeignKey('pages.url_hash', ondelete='CASCADE'), nullable=False, index=True)
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    content_sha256 = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    page = relationship('Page', back_populates='chunks')

    def __repr__(self):
        return f"<Chunk(chunk_id='{self.chunk_id}', length={len(self.content or '')})>"


class Hotspot(Base):
    """Named topic/time-window definition used to scope traces."""
    __tablename__ = 'hotspots'

    hotspot_id = Column(String(64), primary_key=True)
    title = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    time_start = Column(String(64), nullable=True)
    time_end = Column(String(64), nullable=True)
    entities = Column(JSON, nullable=False, default=list)       # Topic entity names
    keywords = Column(JSON, nullable=False, default=list)
    must_include = Column(JSON, nullable=False, default=list)
    exclude = Column(JSON, nullable=False, default=list)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'hotspot_id': self.hotspot_id,
            'title': self.title,
            'description': self.description,
            'time_start': self.time_start,
            'time_end': self.time_end,
            'entities': list(self.entities or []),
            'keywords': list(self.keywords or []),
            'must_include': list(self.must_include or []),
            'exclude': list(self.exclude or []),
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Hotspot(hotspot_id='{self.hotspot_id}', title='{self.title[:50]}')>"


class Trace(Base):
    """Trace job: anchor + hotspot, append-only history."""
    __tablename__ = 'traces'

    trace_id = Column(String(64), primary_key=True)
    hotspot_id = Column(String(64), nullable=False, index=True)
    anchor = Column(String(255), nullable=False)
    event = Column(Text, nullable=True)
    aliases = Column(JSON, nullable=False, default=list)  # Caller-supplied alias hints
    status = Column(Enum(TraceStatus), nullable=False, default=TraceStatus.QUEUED, index=True)
    result = Column(JSON, nullable=True)
    error = Column(Text, nullable=True)
    retries = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def to_dict(self):
        return {
            'trace_id': self.trace_id,
            'hotspot_id': self.hotspot_id,
            'anchor': self.anchor,
            'event': self.event,
            'aliases': list(self.aliases or []),
            'status': self.status.value,
            'result': self.result,
            'error': self.error,
            'retries': self.retries,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Trace(trace_id='{self.trace_id}', anchor='{self.anchor}', status={self.status.value}, retries={self.retries})>"


class Entity(Base):
    """Knowledge-graph entity; entity_id = sha256("entity:{canonical}:{type}")."""
    __tablename__ = 'entities'

    entity_id = Column(String(64), primary_key=True)
    canonical = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)
    lang = Column(String(10), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    aliases = relationship('EntityAlias', back_populates='entity', cascade='all, delete-orphan')

    __table_args__ = (
        Index('idx_entities_canonical_type', 'canonical', 'type', unique=True),
    )

    def __repr__(self):
        return f"<Entity(canonical='{self.canonical}', type='{self.type}')>"


class EntityAlias(Base):
    """Alternate surface form of an entity."""
    __tablename__ = 'entity_aliases'

    entity_id = Column(String(64), ForeignKey('entities.entity_id', ondelete='CASCADE'), primary_key=True)
    alias = Column(String(255), primary_key=True, index=True)
    confidence = Column(Float, nullable=True)

    entity = relationship('Entity', back_populates='aliases')

    def __repr__(self):
        return f"<EntityAlias(alias='{self.alias}', confidence={self.confidence})>"


class Mention(Base):
    """Entity occurrence in a chunk; mention_id = sha256("mention:{chunk_id}:{entity_id}")."""
    __tablename__ = 'mentions'

    mention_id = Column(String(64), primary_key=True)
    entity_id = Column(String(64), nullable=False, index=True)
    chunk_id = Column(String(100), nullable=False, index=True)
    span = Column(JSON, nullable=True)  # {"start": int, "end": int}
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Mention(entity_id='{self.entity_id[:12]}', chunk_id='{self.chunk_id}')>"


class Event(Base):
    """Fact extracted from a chunk."""
    __tablename__ = 'events'

    event_id = Column(String(64), primary_key=True)
    time = Column(String(64), nullable=True, index=True)
    type = Column(String(50), nullable=False)
    summary = Column(Text, nullable=False)
    args = Column(JSON, nullable=True)
    chunk_id = Column(String(100), nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Event(type='{self.type}', time={self.time}, summary='{self.summary[:40]}')>"


class Edge(Base):
    """Directed weighted relation between entities, evidenced by a chunk."""
    __tablename__ = 'edges'

    edge_id = Column(String(64), primary_key=True)
    src_entity_id = Column(String(64), nullable=False, index=True)
    relation = Column(String(50), nullable=False)
    dst_entity_id = Column(String(64), nullable=False, index=True)
    event_id = Column(String(64), nullable=True)
    chunk_id = Column(String(100), nullable=False)
    weight = Column(Float, nullable=False, default=0.5)  # Ranking only, overwritten by the latest run
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Edge(relation='{self.relation}', weight={self.weight:.3f}, chunk_id='{self.chunk_id}')>"


class ChunkVector(Base):
    """Embedding stored in the local vector index."""
    __tablename__ = 'chunk_vectors'

    vector_id = Column(String(100), primary_key=True)
    dims = Column(Integer, nullable=False)
    values = Column(JSON, nullable=False)   # List of floats
    meta = Column(JSON, nullable=True)      # url, url_hash, chunk_index, published_at, content
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ChunkVector(vector_id='{self.vector_id}', dims={self.dims})>"


class TraceMessage(Base):
    """Queued trace delivery (at-least-once)."""
    __tablename__ = 'trace_messages'

    id = Column(Integer, primary_key=True)
    body = Column(JSON, nullable=False)
    status = Column(Enum(MessageStatus), nullable=False, default=MessageStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    available_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    leased_until = Column(DateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_trace_messages_status_available', 'status', 'available_at'),
    )

    def __repr__(self):
        return f"<TraceMessage(id={self.id}, status={self.status.value}, attempts={self.attempts})>"


class LLMApiCall(Base):
    """Log of LLM API calls for monitoring, debugging, and cost tracking."""
    __tablename__ = 'llm_api_calls'

    id = Column(Integer, primary_key=True)

    # Metadata of the call
    call_type = Column(String(50), nullable=False, index=True)  # 'structured_output', 'embedding'
    task_name = Column(String(100), nullable=True, index=True)  # 'trace_summary', ...
    model = Column(String(100), nullable=False, index=True)

    # Timing
    started_at = Column(DateTime, nullable=False, index=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # Tokens
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    total_tokens = Column(Integer, nullable=True)

    # Prompts and response
    system_prompt = Column(Text, nullable=True)
    user_prompt = Column(Text, nullable=True)
    response_raw = Column(JSON, nullable=True)
    parsed_output = Column(JSON, nullable=True)

    # Status and errors
    success = Column(Integer, nullable=False, default=1, index=True)  # 1=success, 0=error
    error_message = Column(Text, nullable=True)

    # Context metadata (trace_id, hotspot_id, ...)
    context_data = Column(JSON, nullable=True)

    __table_args__ = (
        Index('idx_llm_api_calls_task_model', 'task_name', 'model'),
    )

    def __repr__(self):
        status = 'success' if self.success else 'error'
        duration = f"{self.duration_ms}ms" if self.duration_ms else 'N/A'
        return f"<LLMApiCall(id={self.id}, type={self.call_type}, task={self.task_name}, model={self.model}, status={status}, duration={duration})>"
