"""
Vector similarity search over stored chunk embeddings.

Vectors live in the relational store next to the chunks; candidate rows are
narrowed in SQL (embedding model and metadata filters) and ranked by cosine
similarity with numpy.
"""

from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Sequence

import numpy as np
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from acervo.core.config import settings
from acervo.core.exceptions import RetrievalError
from acervo.db.models import ChunkEmbedding, Document, DocumentChunk

logger = structlog.get_logger(__name__)


@dataclass
class SearchFilters:
    """Conjunctive metadata filters; ``None`` means unconstrained"""
    document_type: Optional[str] = None
    process: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


@dataclass
class MatchResult:
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    similarity: float
    document_title: str
    document_type: Optional[str]


def _enum_value(value):
    return getattr(value, "value", value)


class VectorSearchService:
    def __init__(self, db: Session, model_id: Optional[str] = None):
        self.db = db
        self.model_id = model_id or settings.EMBEDDING_MODEL_NAME

    def match(
        self,
        vector: Sequence[float],
        threshold: float = 0.5,
        limit: int = 5,
        filters: Optional[SearchFilters] = None,
    ) -> List[MatchResult]:
        """
        Return up to ``limit`` chunks with cosine similarity >= ``threshold``,
        most similar first; equal scores are ordered by (document id, chunk index).
        Only embeddings produced by ``model_id`` are considered.
        """
        if limit <= 0:
            return []

        try:
            rows = self._candidates(filters or SearchFilters())
        except SQLAlchemyError as e:
            logger.error("Vector search query failed", error=str(e))
            raise RetrievalError("Error searching documents") from e

        if not rows:
            return []

        query_vec = np.asarray(vector, dtype=float)
        query_norm = np.linalg.norm(query_vec)
        if query_norm == 0:
            return []

        usable = [r for r in rows if r.vector and len(r.vector) == len(query_vec)]
        if len(usable) < len(rows):
            logger.warning(
                "Skipped embeddings with unexpected dimension",
                skipped=len(rows) - len(usable),
                expected=len(query_vec),
            )
        if not usable:
            return []

        matrix = np.asarray([r.vector for r in usable], dtype=float)
        norms = np.linalg.norm(matrix, axis=1)
        with np.errstate(divide="ignore", invalid="ignore"):
            scores = (matrix @ query_vec) / (norms * query_norm)
        # zero vectors never match
        scores = np.where(norms > 0, scores, -np.inf)

        matches = [
            MatchResult(
                chunk_id=row.chunk_id,
                document_id=row.document_id,
                chunk_index=row.chunk_index,
                content=row.content,
                similarity=float(score),
                document_title=row.title,
                document_type=row.doc_type,
            )
            for row, score in zip(usable, scores)
            if score >= threshold
        ]
        matches.sort(key=lambda m: (-m.similarity, m.document_id, m.chunk_index))
        return matches[:limit]

    def _candidates(self, filters: SearchFilters):
        query = (
            self.db.query(
                DocumentChunk.id.label("chunk_id"),
                DocumentChunk.document_id,
                DocumentChunk.chunk_index,
                DocumentChunk.content,
                ChunkEmbedding.vector,
                Document.title,
                Document.doc_type,
            )
            .join(ChunkEmbedding, ChunkEmbedding.chunk_id == DocumentChunk.id)
            .join(Document, Document.id == DocumentChunk.document_id)
            .filter(ChunkEmbedding.model == self.model_id)
        )
        if filters.document_type:
            query = query.filter(Document.doc_type == _enum_value(filters.document_type))
        if filters.process:
            query = query.filter(Document.process == _enum_value(filters.process))
        if filters.date_from:
            query = query.filter(Document.document_date >= filters.date_from)
        if filters.date_to:
            query = query.filter(Document.document_date <= filters.date_to)
        return query.all()
