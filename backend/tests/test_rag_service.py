"""
Tests for the RAG query state machine
"""

import asyncio
import time

import pytest
from sqlalchemy.exc import OperationalError

from acervo.core.exceptions import ProviderError, QueryTimeoutError, RetrievalError, ValidationError
from acervo.db.models import ChunkEmbedding, DocumentChunk, Query, QuerySource
from acervo.services.query_logger import QueryLogger
from acervo.services.rag_service import QueryState, RagService
from acervo.services.vector_search_service import SearchFilters, VectorSearchService

from conftest import TEST_MODEL, FakeEmbedder, FakeGenerator


@pytest.fixture
def query_logger(session_factory):
    return QueryLogger(session_factory, max_attempts=1, queue_size=10)


@pytest.fixture
def build_service(db_session, query_logger):
    def _build(embedder=None, generator=None, retriever=None, timeout=None, logger=None):
        embedder = embedder or FakeEmbedder(default=(1.0, 0.0))
        return RagService(
            embedder,
            retriever or VectorSearchService(db_session, model_id=TEST_MODEL),
            generator or FakeGenerator(reply="La respuesta"),
            logger or query_logger,
            threshold=0.5,
            timeout=timeout,
        )

    return _build


@pytest.fixture
def two_chunks(db_session, make_document):
    doc_a = make_document(title="Resolución A", doc_type="resolucion")
    doc_b = make_document(title="Manual B", doc_type="manual")
    for doc, vector, content in (
        (doc_a, [1.0, 0.0], "texto muy relevante"),
        (doc_b, [0.8, 0.6], "texto relevante"),
    ):
        chunk = DocumentChunk(document_id=doc.id, chunk_index=0, content=content, token_count=4)
        chunk.embedding = ChunkEmbedding(vector=vector, model=TEST_MODEL)
        db_session.add(chunk)
    db_session.commit()
    return doc_a, doc_b


class TestRagService:
    @pytest.mark.asyncio
    async def test_grounded_answer_with_two_sources(self, build_service, two_chunks, db_session):
        doc_a, doc_b = two_chunks
        generator = FakeGenerator(reply="Según la Resolución A...")
        service = build_service(generator=generator)

        result = await service.answer("¿Qué dice la norma?", "user-1", top_k=5)

        assert result.answer == "Según la Resolución A..."
        assert result.used_fallback is False
        assert result.chunk_count == 2
        assert [s.document_id for s in result.sources] == [doc_a.id, doc_b.id]
        assert [s.document_type for s in result.sources] == ["resolucion", "manual"]
        assert result.sources[0].similarity == pytest.approx(1.0)
        assert result.sources[1].similarity == pytest.approx(0.8)
        assert result.states == [
            QueryState.RECEIVED,
            QueryState.EMBEDDING_QUESTION,
            QueryState.RETRIEVING,
            QueryState.GROUNDED,
            QueryState.GENERATING,
            QueryState.LOGGING,
            QueryState.COMPLETED,
        ]

        question, passages = generator.grounded_calls[0]
        assert question == "¿Qué dice la norma?"
        assert [p.document_title for p in passages] == ["Resolución A", "Manual B"]
        assert generator.fallback_calls == []

        query = db_session.query(Query).filter(Query.id == result.query_id).one()
        assert query.used_fallback is False
        assert query.top_k == 5
        sources = db_session.query(QuerySource).order_by(QuerySource.rank).all()
        assert [s.rank for s in sources] == [1, 2]
        assert [s.document_id for s in sources] == [doc_a.id, doc_b.id]

    @pytest.mark.asyncio
    async def test_fallback_when_nothing_matches(self, build_service, db_session):
        generator = FakeGenerator(reply="Información general")
        service = build_service(generator=generator)

        result = await service.answer("¿Qué es la OCDE?", "user-1")

        assert result.used_fallback is True
        assert result.sources == []
        assert result.chunk_count == 0
        assert result.answer == "Información general"
        assert generator.fallback_calls == ["¿Qué es la OCDE?"]
        assert QueryState.FALLBACK in result.states
        assert QueryState.GROUNDED not in result.states
        assert result.query_id is not None
        assert db_session.query(QuerySource).count() == 0
        assert db_session.query(Query).one().top_k == 0

    @pytest.mark.asyncio
    async def test_top_k_limits_sources(self, build_service, two_chunks):
        result = await build_service().answer("pregunta", "user-1", top_k=1)
        assert result.chunk_count == 1

    @pytest.mark.asyncio
    async def test_filters_reach_retrieval(self, build_service, two_chunks):
        doc_a, doc_b = two_chunks
        result = await build_service().answer(
            "pregunta", "user-1", filters=SearchFilters(document_type="manual")
        )
        assert [s.document_id for s in result.sources] == [doc_b.id]

    @pytest.mark.asyncio
    async def test_blank_question(self, build_service):
        with pytest.raises(ValidationError):
            await build_service().answer("   ", "user-1")

    @pytest.mark.asyncio
    async def test_embedding_failure_fails_query(self, build_service, db_session):
        service = build_service(embedder=FakeEmbedder(fail_on=""))

        with pytest.raises(ProviderError):
            await service.answer("pregunta", "user-1")
        assert db_session.query(Query).count() == 0

    @pytest.mark.asyncio
    async def test_generation_failure_fails_query(self, build_service, two_chunks, db_session):
        generator = FakeGenerator(error=ProviderError("AI provider request failed with status 500"))

        with pytest.raises(ProviderError):
            await build_service(generator=generator).answer("pregunta", "user-1")
        assert db_session.query(Query).count() == 0

    @pytest.mark.asyncio
    async def test_retrieval_failure_fails_query(self, build_service):
        class BrokenRetriever:
            def match(self, *args, **kwargs):
                raise RetrievalError("Error searching documents")

        with pytest.raises(RetrievalError):
            await build_service(retriever=BrokenRetriever()).answer("pregunta", "user-1")

    @pytest.mark.asyncio
    async def test_logging_failure_does_not_fail_query(self, build_service, two_chunks):
        class BrokenLogger:
            def log(self, **kwargs):
                raise RuntimeError("database unavailable")

            def log_sources(self, *args):
                raise AssertionError("not reached")

        result = await build_service(logger=BrokenLogger()).answer("pregunta", "user-1")

        assert result.answer == "La respuesta"
        assert result.query_id is None
        assert result.states[-1] == QueryState.COMPLETED

    @pytest.mark.asyncio
    async def test_sources_follow_a_parked_query(self, build_service, two_chunks, session_factory, db_session):
        outage = {"down": True}

        def sessions():
            session = session_factory()
            if outage["down"]:
                def fail():
                    raise OperationalError("INSERT", {}, Exception("connection lost"))

                session.commit = fail
            return session

        query_logger = QueryLogger(sessions, max_attempts=1, queue_size=10)
        result = await build_service(logger=query_logger).answer("pregunta", "user-1")

        assert result.query_id is not None
        assert query_logger.pending_count == 2

        outage["down"] = False
        query_logger.flush_pending()

        assert db_session.query(Query).filter(Query.id == result.query_id).count() == 1
        ranks = [s.rank for s in db_session.query(QuerySource).filter(QuerySource.query_id == result.query_id)]
        assert sorted(ranks) == [1, 2]

    @pytest.mark.asyncio
    async def test_overall_timeout(self, build_service):
        class SlowGenerator(FakeGenerator):
            async def generate_fallback(self, question):
                await asyncio.sleep(1)
                return "tarde"

        service = build_service(generator=SlowGenerator(), timeout=0.05)

        with pytest.raises(QueryTimeoutError):
            await service.answer("pregunta", "user-1")

    @pytest.mark.asyncio
    async def test_timeout_covers_slow_retrieval(self, build_service):
        class SlowRetriever:
            def match(self, *args, **kwargs):
                time.sleep(0.5)
                return []

        service = build_service(retriever=SlowRetriever(), timeout=0.05)
        started = time.monotonic()

        with pytest.raises(QueryTimeoutError):
            await service.answer("pregunta", "user-1")
        assert time.monotonic() - started < 0.4
