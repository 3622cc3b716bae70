"""
Chunk and embedding models.

Chunks are the unit of retrieval; each one owns exactly one embedding row that
records the model which produced the vector.
"""

import uuid

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from acervo.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class DocumentChunk(Base):
    __tablename__ = "chunks"

    id = Column(String(36), primary_key=True, default=_uuid)
    document_id = Column(
        String(36), ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    chunk_index = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    token_count = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    document = relationship("Document", back_populates="chunks")
    embedding = relationship(
        "ChunkEmbedding",
        back_populates="chunk",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("document_id", "chunk_index", name="uq_chunks_document_index"),
    )


class ChunkEmbedding(Base):
    __tablename__ = "embeddings"

    id = Column(String(36), primary_key=True, default=_uuid)
    chunk_id = Column(
        String(36), ForeignKey("chunks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    vector = Column(JSON, nullable=False)
    model = Column(String(100), nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    chunk = relationship("DocumentChunk", back_populates="embedding")

    __table_args__ = (
        UniqueConstraint("chunk_id", name="uq_embeddings_chunk_id"),
    )
