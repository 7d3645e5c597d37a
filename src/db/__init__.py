"""
Database package for the trace archive.
"""

from .models import Base, Page, Chunk, Hotspot, Trace, TraceStatus, Entity, EntityAlias, EntityKind, Mention, Event, Edge, ChunkVector, TraceMessage, MessageStatus, LLMApiCall
from .database import Database

__all__ = ['Base', 'Page', 'Chunk', 'Hotspot', 'Trace', 'TraceStatus', 'Entity', 'EntityAlias', 'EntityKind', 'Mention', 'Event', 'Edge', 'ChunkVector', 'TraceMessage', 'MessageStatus', 'LLMApiCall', 'Database']
