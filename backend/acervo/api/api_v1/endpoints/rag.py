"""
RAG query endpoints
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from acervo.core.dependencies import get_current_user_id, get_rag_service
from acervo.db.database import get_db
from acervo.schemas.rag import (
    FeedbackRequest,
    FeedbackResponse,
    RagQueryRequest,
    RagQueryResponse,
    SourceOut,
)
from acervo.services.query_logger import record_feedback
from acervo.services.rag_service import RagService
from acervo.services.vector_search_service import SearchFilters

router = APIRouter()


@router.post("/query", response_model=RagQueryResponse)
async def query(
    request: RagQueryRequest,
    user_id: str = Depends(get_current_user_id),
    service: RagService = Depends(get_rag_service),
):
    """Answer a question from institutional documents."""
    filters = SearchFilters(
        document_type=request.document_type.value if request.document_type else None,
        process=request.process.value if request.process else None,
        date_from=request.date_from,
        date_to=request.date_to,
    )
    result = await service.answer(request.question, user_id, top_k=request.top_k, filters=filters)
    return RagQueryResponse(
        answer=result.answer,
        sources=[
            SourceOut(
                document_id=s.document_id,
                document_title=s.document_title,
                document_type=s.document_type,
                similarity=s.similarity,
            )
            for s in result.sources
        ],
        chunks=result.chunk_count,
        latency_ms=result.latency_ms,
        query_id=result.query_id,
        used_web_search=result.used_fallback,
    )


@router.post(
    "/queries/{query_id}/feedback",
    response_model=FeedbackResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_feedback(
    query_id: str,
    request: FeedbackRequest,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    feedback = record_feedback(db, query_id, user_id, request.rating, request.comment)
    return FeedbackResponse(id=feedback.id, query_id=feedback.query_id, rating=feedback.rating)
