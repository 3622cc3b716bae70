"""
Answer generation.

Two modes: grounded (answer only from retrieved institutional passages) and
fallback (no passages matched; general knowledge, explicitly flagged as
external).
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

import structlog

from acervo.core.config import settings
from acervo.core.exceptions import ParseError
from acervo.services.provider_client import ProviderClient

logger = structlog.get_logger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"

GROUNDED_SYSTEM_PROMPT = """Eres un asistente experto en análisis de documentos institucionales. Tu trabajo es responder preguntas basándote ÚNICAMENTE en el contexto proporcionado.

Instrucciones:
- Responde de forma clara, precisa y concisa
- Usa SOLO la información del contexto proporcionado
- Si la información no está en el contexto, indica que no puedes responder con la información disponible
- Cita el documento fuente cuando sea relevante
- Mantén un tono profesional y objetivo"""

FALLBACK_SYSTEM_PROMPT = """Eres un asistente experto. No hay documentos institucionales disponibles para esta consulta.

Instrucciones:
- Responde de forma clara, precisa y concisa usando conocimiento general
- Indica explícitamente que la información proviene de fuentes externas (no de documentos institucionales)
- Mantén un tono profesional y objetivo"""


@dataclass
class ContextPassage:
    """A retrieved passage as handed to the generator"""
    document_title: str
    content: str


def build_context(passages: Sequence[ContextPassage]) -> str:
    """Prefix each passage with its document title and join them in rank order"""
    return CONTEXT_SEPARATOR.join(
        f"[Documento: {p.document_title}]\n{p.content}" for p in passages
    )


class AnswerService:
    """Chat-completion wrapper for grounded and fallback answers"""

    def __init__(
        self,
        client: ProviderClient,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ):
        self.client = client
        self.model = model or settings.CHAT_MODEL_NAME
        self.max_tokens = max_tokens or settings.GENERATION_MAX_TOKENS

    async def generate_grounded(self, question: str, passages: Sequence[ContextPassage]) -> str:
        context = build_context(passages)
        messages = [
            {"role": "system", "content": GROUNDED_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"Contexto de documentos:\n\n{context}\n\nPregunta: {question}",
            },
        ]
        return await self.complete(messages, temperature=settings.GROUNDED_TEMPERATURE)

    async def generate_fallback(self, question: str) -> str:
        messages = [
            {"role": "system", "content": FALLBACK_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Pregunta: {question}\n\nNOTA: No hay documentos institucionales disponibles "
                    "para esta consulta. Proporciona información general basada en tu conocimiento."
                ),
            },
        ]
        return await self.complete(messages, temperature=settings.FALLBACK_TEMPERATURE)

    async def complete(self, messages: List[Dict[str, Any]], temperature: float) -> str:
        """Run one chat completion and return the assistant text"""
        data = await self.client.post_json(
            "chat/completions",
            {
                "model": self.model,
                "messages": messages,
                "temperature": temperature,
                "max_tokens": self.max_tokens,
            },
        )
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ParseError("AI provider returned a completion without content") from e
        if not isinstance(content, str):
            raise ParseError("AI provider returned a completion without content")
        return content
