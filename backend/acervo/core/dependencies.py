"""
Dependency providers for the API layer.

Services are built per request from these providers; tests swap any of them
through ``app.dependency_overrides``.
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from acervo.core.config import settings
from acervo.core.exceptions import UnauthorizedError
from acervo.core.security import verify_token
from acervo.db.database import get_db
from acervo.services.answer_service import AnswerService
from acervo.services.document_service import DocumentLockRegistry, DocumentService
from acervo.services.embedding_service import EmbeddingService
from acervo.services.provider_client import ProviderClient
from acervo.services.query_logger import QueryLogger
from acervo.services.rag_service import RagService
from acervo.services.storage_service import StorageService
from acervo.services.tagging_service import TaggingService
from acervo.services.vector_search_service import VectorSearchService

# HTTP Bearer scheme; missing headers are handled below so the error body stays {error}
security = HTTPBearer(auto_error=False)


async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Resolve the caller's user id from the bearer token"""
    if settings.DISABLE_AUTH:
        return settings.DEV_USER_ID

    if not credentials or not credentials.credentials:
        raise UnauthorizedError("Unauthorized")
    user_id = verify_token(credentials.credentials)
    if user_id is None:
        raise UnauthorizedError("Unauthorized")
    return user_id


def get_provider_client() -> ProviderClient:
    return ProviderClient()


def get_embedding_service(client: ProviderClient = Depends(get_provider_client)) -> EmbeddingService:
    return EmbeddingService(client)


def get_answer_service(client: ProviderClient = Depends(get_provider_client)) -> AnswerService:
    return AnswerService(client)


@lru_cache()
def get_storage_service() -> StorageService:
    return StorageService()


def get_document_locks(request: Request) -> DocumentLockRegistry:
    return request.app.state.document_locks


def get_query_logger(request: Request) -> QueryLogger:
    return request.app.state.query_logger


def get_document_service(
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage_service),
    embedder: EmbeddingService = Depends(get_embedding_service),
    locks: DocumentLockRegistry = Depends(get_document_locks),
) -> DocumentService:
    return DocumentService(db, storage, embedder, locks)


def get_vector_search_service(
    db: Session = Depends(get_db),
    embedder: EmbeddingService = Depends(get_embedding_service),
) -> VectorSearchService:
    return VectorSearchService(db, model_id=embedder.model_id)


def get_rag_service(
    embedder: EmbeddingService = Depends(get_embedding_service),
    retriever: VectorSearchService = Depends(get_vector_search_service),
    generator: AnswerService = Depends(get_answer_service),
    query_logger: QueryLogger = Depends(get_query_logger),
) -> RagService:
    return RagService(embedder, retriever, generator, query_logger)


def get_tagging_service(
    db: Session = Depends(get_db),
    generator: AnswerService = Depends(get_answer_service),
) -> TaggingService:
    return TaggingService(db, generator)
