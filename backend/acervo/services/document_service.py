"""
This service handles the document lifecycle: registration on upload,
ingestion (extraction, chunking, embedding, persistence) and deletion.
"""

import asyncio
import hashlib
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import PurePath
from typing import Dict, List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from acervo.core.config import settings
from acervo.core.exceptions import (
    DuplicateDocumentError,
    FileTooLargeError,
    NotFoundError,
    ValidationError,
)
from acervo.db.models import ChunkEmbedding, Document, DocumentChunk
from acervo.schemas.document import DocumentCreate
from acervo.services import parser_service
from acervo.services.chunking_service import chunk_text, estimate_tokens
from acervo.services.embedding_service import EmbeddingService
from acervo.services.storage_service import StorageService
from acervo.utils.text_sanitizer import sanitize

logger = structlog.get_logger(__name__)


@dataclass
class IngestionResult:
    chunk_count: int
    embedding_count: int


class DocumentLockRegistry:
    """One asyncio.Lock per document id; serializes ingestion of the same document.

    An entry lives only while some task holds or waits for it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, document_id: str):
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        self._users[document_id] = self._users.get(document_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[document_id] -= 1
            if not self._users[document_id]:
                del self._users[document_id]
                del self._locks[document_id]


def compute_content_hash(payload: bytes) -> str:
    return hashlib.sha256(payload).hexdigest()


class DocumentService:
    """
    Orchestrates the document processing workflow.
    """

    def __init__(
        self,
        db: Session,
        storage: StorageService,
        embedder: EmbeddingService,
        locks: Optional[DocumentLockRegistry] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        max_chunk_tokens: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        self.db = db
        self.storage = storage
        self.embedder = embedder
        self.locks = locks if locks is not None else DocumentLockRegistry()
        self.chunk_size = chunk_size or settings.CHUNK_SIZE
        self.chunk_overlap = settings.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap
        self.max_chunk_tokens = max_chunk_tokens or settings.MAX_CHUNK_TOKENS
        self.concurrency = max(1, concurrency or settings.EMBEDDING_CONCURRENCY)

    def _get_document(self, document_id: str) -> Document:
        document = self.db.query(Document).filter(Document.id == document_id).first()
        if not document:
            raise NotFoundError("Document not found")
        return document

    # ------------------------------------------------------------------ upload

    def register_upload(
        self,
        payload: bytes,
        filename: str,
        metadata: DocumentCreate,
        user_id: str,
    ) -> Document:
        """Validate, de-duplicate, store the blob and create the document row."""
        filename = PurePath(filename or "").name
        file_ext = parser_service.get_extension(filename)
        if file_ext not in settings.get_supported_file_types():
            raise ValidationError(
                f"Unsupported file type. Allowed: {', '.join(settings.get_supported_file_types())}"
            )
        if not payload:
            raise ValidationError("File is empty")
        if len(payload) > settings.MAX_FILE_SIZE:
            raise FileTooLargeError(
                f"File exceeds the maximum size of {settings.MAX_FILE_SIZE // (1024 * 1024)}MB"
            )
        title = metadata.title.strip()
        author = metadata.author.strip()
        if not title or not author:
            raise ValidationError("Title and author are required")

        content_hash = compute_content_hash(payload)
        existing = self.db.query(Document.id).filter(Document.content_hash == content_hash).first()
        if existing:
            logger.info("Duplicate upload rejected", existing_id=existing.id, user_id=user_id)
            raise DuplicateDocumentError(existing_id=existing.id)

        storage_path = f"{user_id}/{int(time.time() * 1000)}_{filename}"
        self.storage.upload(storage_path, payload)

        document = Document(
            title=title,
            author=author,
            doc_type=metadata.doc_type.value,
            process=metadata.process.value,
            document_date=metadata.document_date,
            content_hash=content_hash,
            storage_path=storage_path,
            original_filename=filename,
            file_size=len(payload),
            created_by=user_id,
        )
        try:
            self.db.add(document)
            self.db.commit()
        except IntegrityError as e:
            # Lost a race against an identical concurrent upload
            self.db.rollback()
            self.storage.delete(storage_path)
            logger.info("Duplicate upload rejected at insert", content_hash=content_hash)
            raise DuplicateDocumentError() from e
        except SQLAlchemyError:
            self.db.rollback()
            self.storage.delete(storage_path)
            logger.error("Failed to save document record", storage_path=storage_path, exc_info=True)
            raise
        self.db.refresh(document)

        logger.info(
            "Document registered",
            document_id=document.id,
            storage_path=storage_path,
            size=len(payload),
        )
        return document

    # --------------------------------------------------------------- ingestion

    async def ingest(self, document_id: str, replace: bool = False) -> IngestionResult:
        """
        Extract, chunk, embed and store a document.

        All chunk and embedding rows of one run are written in a single
        transaction: a failure anywhere leaves the store as it was.
        With ``replace`` the previous chunks are removed in that same
        transaction; otherwise new chunks are appended after the existing ones.
        """
        async with self.locks.hold(document_id):
            document = self._get_document(document_id)
            logger.info("Ingestion started", document_id=document_id, replace=replace)

            payload = self.storage.download(document.storage_path)
            text = parser_service.extract_text(
                payload, document.original_filename or document.storage_path
            )

            pieces = chunk_text(text, self.chunk_size, self.chunk_overlap, self.max_chunk_tokens)
            contents = [c for c in (sanitize(p) for p in pieces) if c]
            if not contents:
                logger.warning("No extractable text", document_id=document_id)

            vectors = await self._embed_all(contents)
            result = self._persist(document, contents, vectors, replace)

            logger.info(
                "Ingestion completed",
                document_id=document_id,
                chunks=result.chunk_count,
                embeddings=result.embedding_count,
            )
            return result

    async def _embed_all(self, contents: List[str]) -> List[List[float]]:
        """Embed every chunk with at most ``concurrency`` calls in flight.

        Results are placed by chunk index, never by completion order.
        """
        if not contents:
            return []
        semaphore = asyncio.Semaphore(self.concurrency)

        async def embed_one(index: int, content: str):
            async with semaphore:
                return index, await self.embedder.embed(content)

        tasks = [asyncio.ensure_future(embed_one(i, c)) for i, c in enumerate(contents)]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        vectors: List[Optional[List[float]]] = [None] * len(contents)
        for index, vector in results:
            vectors[index] = vector
        return vectors

    def _persist(
        self,
        document: Document,
        contents: List[str],
        vectors: List[List[float]],
        replace: bool,
    ) -> IngestionResult:
        model_id = self.embedder.model_id
        try:
            if replace:
                self.db.query(DocumentChunk).filter(
                    DocumentChunk.document_id == document.id
                ).delete(synchronize_session=False)
                start_index = 0
            else:
                last_index = (
                    self.db.query(func.max(DocumentChunk.chunk_index))
                    .filter(DocumentChunk.document_id == document.id)
                    .scalar()
                )
                start_index = 0 if last_index is None else last_index + 1

            for offset, (content, vector) in enumerate(zip(contents, vectors)):
                chunk = DocumentChunk(
                    document_id=document.id,
                    chunk_index=start_index + offset,
                    content=content,
                    token_count=estimate_tokens(content),
                )
                chunk.embedding = ChunkEmbedding(vector=vector, model=model_id)
                self.db.add(chunk)

            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to store chunks", document_id=document.id, exc_info=True)
            raise
        self.db.expire(document, ["chunks"])
        return IngestionResult(chunk_count=len(contents), embedding_count=len(vectors))

    # ---------------------------------------------------------------- deletion

    def delete_document(self, document_id: str) -> None:
        """Delete the document row (chunks and embeddings cascade) and its blob."""
        document = self._get_document(document_id)
        storage_path = document.storage_path
        try:
            self.db.delete(document)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to delete document", document_id=document_id, exc_info=True)
            raise
        self.storage.delete(storage_path)
        logger.info("Document deleted", document_id=document_id, storage_path=storage_path)
