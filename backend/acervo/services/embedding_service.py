"""
Embedding client
"""

from typing import List, Optional

import structlog

from acervo.core.config import settings
from acervo.core.exceptions import ParseError
from acervo.services.chunking_service import CHARS_PER_TOKEN
from acervo.services.provider_client import ProviderClient

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """Turns text into a fixed-dimension vector with the deployment's embedding model"""

    def __init__(
        self,
        client: ProviderClient,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        dimension: Optional[int] = None,
    ):
        self.client = client
        self.model = model or settings.EMBEDDING_MODEL_NAME
        self.max_tokens = max_tokens or settings.EMBEDDING_MAX_TOKENS
        self.dimension = dimension if dimension is not None else settings.EMBEDDING_DIMENSION

    @property
    def model_id(self) -> str:
        """Identifier stored next to every vector this client produces"""
        return self.model

    async def embed(self, text: str) -> List[float]:
        # Same 4-chars-per-token estimate as the chunker
        max_chars = self.max_tokens * CHARS_PER_TOKEN
        clamped = text[:max_chars]
        if len(clamped) < len(text):
            logger.debug("Embedding input clamped", original_chars=len(text), max_chars=max_chars)

        data = await self.client.post_json("embeddings", {"model": self.model, "input": clamped})
        try:
            vector = [float(x) for x in data["data"][0]["embedding"]]
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ParseError("AI provider returned an embedding response without a vector") from e

        if self.dimension and len(vector) != self.dimension:
            logger.error(
                "Embedding dimension mismatch",
                model=self.model,
                expected=self.dimension,
                actual=len(vector),
            )
            raise ParseError(
                f"Embedding has dimension {len(vector)}, expected {self.dimension}"
            )
        return vector
