"""
RAG query orchestration.

A query moves through a fixed set of states:

    RECEIVED -> EMBEDDING_QUESTION -> RETRIEVING -> GROUNDED | FALLBACK
             -> GENERATING -> LOGGING -> COMPLETED

Any error before LOGGING moves the query to FAILED and propagates to the
caller. Errors while logging are reported and the answer is still returned.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import structlog

from acervo.core.config import settings
from acervo.core.exceptions import AcervoError, QueryTimeoutError, ValidationError
from acervo.services.answer_service import AnswerService, ContextPassage
from acervo.services.embedding_service import EmbeddingService
from acervo.services.query_logger import QueryLogger
from acervo.services.vector_search_service import MatchResult, SearchFilters, VectorSearchService

logger = structlog.get_logger(__name__)


class QueryState(str, Enum):
    RECEIVED = "received"
    EMBEDDING_QUESTION = "embedding_question"
    RETRIEVING = "retrieving"
    GROUNDED = "grounded"
    FALLBACK = "fallback"
    GENERATING = "generating"
    LOGGING = "logging"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SourceRef:
    document_id: str
    document_title: str
    document_type: Optional[str]
    similarity: float


@dataclass
class RagAnswer:
    answer: str
    sources: List[SourceRef]
    chunk_count: int
    latency_ms: int
    query_id: Optional[str]
    used_fallback: bool
    states: List[QueryState] = field(default_factory=list)


@dataclass
class _QueryRun:
    """Mutable per-request progress record"""
    question: str
    user_id: str
    top_k: int
    started_at: float
    state: QueryState = QueryState.RECEIVED
    states: List[QueryState] = field(default_factory=lambda: [QueryState.RECEIVED])
    results: List[MatchResult] = field(default_factory=list)
    answer: Optional[str] = None
    latency_ms: int = 0

    def transition(self, state: QueryState) -> None:
        logger.debug("Query state", previous=self.state.value, state=state.value)
        self.state = state
        self.states.append(state)

    @property
    def used_fallback(self) -> bool:
        return QueryState.FALLBACK in self.states


class RagService:
    """Answers a question from institutional documents, or falls back to general knowledge"""

    def __init__(
        self,
        embedder: EmbeddingService,
        retriever: VectorSearchService,
        generator: AnswerService,
        query_logger: QueryLogger,
        threshold: Optional[float] = None,
        timeout: Optional[float] = None,
    ):
        self.embedder = embedder
        self.retriever = retriever
        self.generator = generator
        self.query_logger = query_logger
        self.threshold = settings.SIMILARITY_THRESHOLD if threshold is None else threshold
        self.timeout = timeout or settings.QUERY_TIMEOUT_SECONDS

    async def answer(
        self,
        question: str,
        user_id: str,
        top_k: int = 5,
        filters: Optional[SearchFilters] = None,
    ) -> RagAnswer:
        question = (question or "").strip()
        if not question:
            raise ValidationError("Question is required")
        top_k = max(1, min(int(top_k), settings.MAX_TOP_K))

        run = _QueryRun(question=question, user_id=user_id, top_k=top_k, started_at=time.monotonic())
        logger.info("Processing RAG query", user_id=user_id, top_k=top_k)

        try:
            await asyncio.wait_for(self._answer(run, filters), timeout=self.timeout)
        except asyncio.TimeoutError:
            self._fail(run, "timeout")
            raise QueryTimeoutError()
        except AcervoError as e:
            self._fail(run, e.message)
            raise
        except Exception as e:
            self._fail(run, str(e))
            raise

        run.transition(QueryState.LOGGING)
        query_id = self._log(run)
        run.transition(QueryState.COMPLETED)

        logger.info(
            "RAG query completed",
            query_id=query_id,
            chunks=len(run.results),
            used_fallback=run.used_fallback,
            latency_ms=run.latency_ms,
        )
        return RagAnswer(
            answer=run.answer or "",
            sources=[
                SourceRef(
                    document_id=r.document_id,
                    document_title=r.document_title,
                    document_type=r.document_type,
                    similarity=r.similarity,
                )
                for r in run.results
            ],
            chunk_count=len(run.results),
            latency_ms=run.latency_ms,
            query_id=query_id,
            used_fallback=run.used_fallback,
            states=list(run.states),
        )

    async def _answer(self, run: _QueryRun, filters: Optional[SearchFilters]) -> None:
        run.transition(QueryState.EMBEDDING_QUESTION)
        vector = await self.embedder.embed(run.question)

        run.transition(QueryState.RETRIEVING)
        # Off the event loop so the overall timeout also bounds the search
        run.results = await asyncio.to_thread(
            self.retriever.match, vector, threshold=self.threshold, limit=run.top_k, filters=filters
        )

        if run.results:
            run.transition(QueryState.GROUNDED)
            passages = [ContextPassage(r.document_title, r.content) for r in run.results]
            run.transition(QueryState.GENERATING)
            run.answer = await self.generator.generate_grounded(run.question, passages)
        else:
            logger.info("No relevant chunks found, answering without institutional context")
            run.transition(QueryState.FALLBACK)
            run.transition(QueryState.GENERATING)
            run.answer = await self.generator.generate_fallback(run.question)

        run.latency_ms = int((time.monotonic() - run.started_at) * 1000)

    def _log(self, run: _QueryRun) -> Optional[str]:
        try:
            query_id = self.query_logger.log(
                user_id=run.user_id,
                question=run.question,
                answer=run.answer,
                latency_ms=run.latency_ms,
                top_k=0 if run.used_fallback else run.top_k,
                used_fallback=run.used_fallback,
            )
            if not run.used_fallback:
                self.query_logger.log_sources(query_id, run.results)
            return query_id
        except Exception:
            logger.error("Query provenance logging failed", user_id=run.user_id, exc_info=True)
            return None

    def _fail(self, run: _QueryRun, reason: str) -> None:
        stage = run.state
        run.transition(QueryState.FAILED)
        logger.error("RAG query failed", stage=stage.value, reason=reason, user_id=run.user_id)
