"""
Document model
"""

import enum
import uuid

from sqlalchemy import Column, Integer, String, Boolean, Date, DateTime, Float, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from acervo.db.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class DocumentType(enum.Enum):
    """Declared document type (stored values match the upload form)"""
    RESOLUTION = "resolucion"
    MEMO = "memorando"
    MANUAL = "manual"
    OFFICE_LETTER = "oficio"
    REPORT = "reporte"


class ProcessType(enum.Enum):
    """Institutional process a document belongs to"""
    ASSIGNMENT = "asignacion"
    EVALUATION = "evaluacion"
    TRAINING = "capacitacion"


class Document(Base):
    """Uploaded institutional document"""
    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_uuid)

    # Declared metadata
    title = Column(String(255), nullable=False)
    author = Column(String(255))
    doc_type = Column(String(20), nullable=False, index=True)
    process = Column(String(20), nullable=False, index=True)
    document_date = Column(Date, nullable=False, index=True)

    # File
    content_hash = Column(String(64), unique=True, nullable=False, index=True)
    storage_path = Column(String(500), nullable=False)
    original_filename = Column(String(255))
    file_size = Column(Integer, default=0)

    # AI-derived metadata (auto-tagging)
    topic = Column(String(255))
    subtopic = Column(String(255))
    related_process = Column(String(255))
    suggested_type = Column(String(100))
    keywords = Column(JSON)
    summary = Column(Text)
    confidence = Column(Float)
    auto_tagged = Column(Boolean, default=False, nullable=False)
    tagged_at = Column(DateTime(timezone=True))

    created_by = Column(String(36), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    chunks = relationship(
        "DocumentChunk",
        back_populates="document",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="DocumentChunk.chunk_index",
    )
