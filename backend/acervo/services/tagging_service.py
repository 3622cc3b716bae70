"""
Auto-tagging: asks the chat model for document-management metadata and stores
it on the document.
"""

import json
import re
from datetime import datetime, timezone
from typing import Optional

import pydantic
import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from acervo.core.config import settings
from acervo.core.exceptions import NotFoundError, ParseError, ValidationError
from acervo.db.models import Document, DocumentChunk
from acervo.schemas.document import DocumentTags
from acervo.services.answer_service import AnswerService

logger = structlog.get_logger(__name__)

TAGGING_SYSTEM_PROMPT = """Eres un sistema experto en análisis documental del sector público.
Recibirás el texto completo de un documento institucional (oficio, informe, resolución, memorando, etc.).

Analízalo y genera metadatos profesionales para gestión documental.

Devuelve exclusivamente un JSON con los siguientes campos:

- tema_principal: El tema general del documento
- subtema: Un subtema más específico
- proceso_asociado: El proceso institucional relacionado
- palabras_clave: Lista de 5 a 10 palabras clave relevantes
- tipo_documento: Tipo de documento (oficio, informe, resolución, normativa, memorando, manual, reporte, etc.)
- resumen_breve: Resumen del documento en máximo 3 líneas
- nivel_confianza: Número de 0 a 1 indicando qué tan seguro estás de tu análisis

No incluyas nada más fuera del JSON. Solo responde con el JSON válido."""

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def parse_tag_reply(text: str) -> DocumentTags:
    """Parse the model reply as a JSON object matching ``DocumentTags``.

    A surrounding markdown code fence is accepted; anything else that is not
    exactly one JSON object raises ``ParseError``.
    """
    body = (text or "").strip()
    fenced = _CODE_FENCE.match(body)
    if fenced:
        body = fenced.group(1)
    try:
        data = json.loads(body)
    except ValueError as e:
        logger.warning("Tagging reply is not JSON", reply=body[:500])
        raise ParseError("Could not parse the AI provider response") from e
    if not isinstance(data, dict):
        raise ParseError("Could not parse the AI provider response")
    try:
        return DocumentTags.model_validate(data)
    except pydantic.ValidationError as e:
        logger.warning("Tagging reply does not match schema", errors=e.errors())
        raise ParseError("AI provider response has an unexpected format") from e


class TaggingService:
    def __init__(self, db: Session, generator: AnswerService):
        self.db = db
        self.generator = generator

    def _load_content(self, document_id: str) -> str:
        chunks = (
            self.db.query(DocumentChunk.content)
            .filter(DocumentChunk.document_id == document_id)
            .order_by(DocumentChunk.chunk_index)
            .limit(settings.TAGGING_MAX_CHUNKS)
            .all()
        )
        return "\n\n".join(c.content for c in chunks)

    async def auto_tag(self, document_id: str, content: Optional[str] = None) -> DocumentTags:
        document = self.db.query(Document).filter(Document.id == document_id).first()
        if not document:
            raise NotFoundError("Document not found")

        if not content or not content.strip():
            content = self._load_content(document_id)
        if not content:
            raise ValidationError("No document content found to analyze")

        user_prompt = (
            "Analiza el siguiente documento institucional:\n\n"
            f"Título: {document.title}\n"
            f"Autor: {document.author or 'No especificado'}\n"
            f"Tipo registrado: {document.doc_type}\n"
            f"Proceso registrado: {document.process}\n\n"
            f"Contenido del documento:\n{content[:settings.TAGGING_MAX_CHARS]}"
        )
        reply = await self.generator.complete(
            [
                {"role": "system", "content": TAGGING_SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            temperature=settings.TAGGING_TEMPERATURE,
        )
        tags = parse_tag_reply(reply)

        document.topic = tags.tema_principal or None
        document.subtopic = tags.subtema or None
        document.related_process = tags.proceso_asociado or None
        document.suggested_type = tags.tipo_documento or None
        document.keywords = tags.palabras_clave or None
        document.summary = tags.resumen_breve or None
        document.confidence = tags.nivel_confianza
        document.auto_tagged = True
        document.tagged_at = datetime.now(timezone.utc)
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.error("Failed to save document tags", document_id=document_id, exc_info=True)
            raise

        logger.info("Document auto-tagged", document_id=document_id, confidence=tags.nivel_confianza)
        return tags
