"""
Database models package
"""

from acervo.db.database import Base
from .document import Document, DocumentType, ProcessType
from .document_chunk import DocumentChunk, ChunkEmbedding
from .query import Query, QuerySource, Feedback

__all__ = [
    "Base",
    "Document",
    "DocumentType",
    "ProcessType",
    "DocumentChunk",
    "ChunkEmbedding",
    "Query",
    "QuerySource",
    "Feedback",
]
