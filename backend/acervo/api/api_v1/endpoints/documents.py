"""
Document endpoints: upload, ingestion, deletion and auto-tagging.
"""

from datetime import date
from typing import Optional

import pydantic
import structlog
from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status

from acervo.core.config import settings
from acervo.core.dependencies import (
    get_current_user_id,
    get_document_service,
    get_tagging_service,
)
from acervo.core.exceptions import AcervoError, FileTooLargeError, ValidationError
from acervo.schemas.document import (
    AutoTagRequest,
    AutoTagResponse,
    DocumentCreate,
    DocumentUploadResponse,
    IngestRequest,
    IngestResponse,
)
from acervo.services.document_service import DocumentService
from acervo.services.tagging_service import TaggingService

logger = structlog.get_logger(__name__)

router = APIRouter()


def _first_error(exc: pydantic.ValidationError) -> str:
    err = exc.errors()[0]
    field = ".".join(str(p) for p in err.get("loc", ()))
    return f"{field}: {err.get('msg')}" if field else str(err.get("msg"))


@router.post("/", response_model=DocumentUploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    title: str = Form(...),
    author: str = Form(...),
    document_type: str = Form(..., alias="documentType"),
    proceso: str = Form(...),
    document_date: date = Form(..., alias="documentDate"),
    process: bool = Form(True),
    user_id: str = Depends(get_current_user_id),
    service: DocumentService = Depends(get_document_service),
):
    """Register an uploaded file and, unless ``process`` is false, ingest it right away."""
    # Read one byte past the limit so oversized uploads are detected without buffering them whole
    payload = await file.read(settings.MAX_FILE_SIZE + 1)
    if len(payload) > settings.MAX_FILE_SIZE:
        raise FileTooLargeError(
            f"File exceeds the maximum size of {settings.MAX_FILE_SIZE // (1024 * 1024)}MB"
        )

    try:
        metadata = DocumentCreate(
            title=title,
            author=author,
            doc_type=document_type,
            process=proceso,
            document_date=document_date,
        )
    except pydantic.ValidationError as e:
        raise ValidationError(_first_error(e)) from e

    document = service.register_upload(payload, file.filename or "", metadata, user_id)
    response = DocumentUploadResponse(
        id=document.id,
        storage_path=document.storage_path,
        content_hash=document.content_hash,
    )
    if not process:
        return response

    try:
        result = await service.ingest(document.id)
    except AcervoError as e:
        # The upload itself succeeded; ingestion can be retried via /ingest
        logger.warning("Ingestion after upload failed", document_id=document.id, error=e.message)
        response.processing_error = e.message
        return response

    response.processed = True
    response.chunks = result.chunk_count
    response.embeddings = result.embedding_count
    return response


@router.post("/ingest", response_model=IngestResponse)
async def ingest_document(
    request: IngestRequest,
    service: DocumentService = Depends(get_document_service),
):
    """Extract, chunk and embed a stored document."""
    result = await service.ingest(request.document_id, replace=request.replace)
    return IngestResponse(success=True, chunks=result.chunk_count, embeddings=result.embedding_count)


@router.delete("/{document_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_document(
    document_id: str,
    user_id: str = Depends(get_current_user_id),
    service: DocumentService = Depends(get_document_service),
):
    service.delete_document(document_id)
    logger.info("Document deleted by user", document_id=document_id, user_id=user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{document_id}/auto-tag", response_model=AutoTagResponse)
async def auto_tag_document(
    document_id: str,
    request: Optional[AutoTagRequest] = None,
    user_id: str = Depends(get_current_user_id),
    service: TaggingService = Depends(get_tagging_service),
):
    """Generate topic, keywords and summary for a document with the chat model."""
    tags = await service.auto_tag(document_id, request.content if request else None)
    return AutoTagResponse(success=True, metadata=tags)
