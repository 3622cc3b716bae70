"""
Query provenance models: the question/answer log, the ranked sources behind
each grounded answer, and user feedback.
"""

import uuid

from sqlalchemy import Column, Integer, String, Boolean, Float, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from acervo.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Query(Base):
    __tablename__ = "queries"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    question = Column(Text, nullable=False)
    answer = Column(Text)
    latency_ms = Column(Integer)
    top_k = Column(Integer)
    used_fallback = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    sources = relationship(
        "QuerySource",
        back_populates="query",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="QuerySource.rank",
    )
    feedback = relationship(
        "Feedback", back_populates="query", cascade="all, delete-orphan", passive_deletes=True
    )


class QuerySource(Base):
    __tablename__ = "query_sources"

    id = Column(String(36), primary_key=True, default=_uuid)
    query_id = Column(String(36), ForeignKey("queries.id", ondelete="CASCADE"), nullable=False, index=True)
    # Plain references: provenance must survive re-ingestion of the document
    document_id = Column(String(36), nullable=False, index=True)
    chunk_id = Column(String(36), nullable=False)
    rank = Column(Integer, nullable=False)
    score = Column(Float, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    query = relationship("Query", back_populates="sources")


class Feedback(Base):
    __tablename__ = "feedback"

    id = Column(String(36), primary_key=True, default=_uuid)
    query_id = Column(String(36), ForeignKey("queries.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(36), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    query = relationship("Query", back_populates="feedback")
