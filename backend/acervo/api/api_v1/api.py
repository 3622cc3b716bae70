"""
API v1 router
"""

from fastapi import APIRouter

from acervo.api.api_v1.endpoints import documents, rag

api_router = APIRouter()

api_router.include_router(documents.router, prefix="/documents", tags=["Documents"])
api_router.include_router(rag.router, prefix="/rag", tags=["RAG"])
