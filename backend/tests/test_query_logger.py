"""
Tests for best-effort query provenance logging
"""

import pytest
from sqlalchemy.exc import OperationalError

from acervo.core.exceptions import NotFoundError
from acervo.db.models import Feedback, Query, QuerySource
from acervo.services.query_logger import QueryLogger, record_feedback
from acervo.services.vector_search_service import MatchResult


class FlakySessionFactory:
    """Session factory whose sessions fail to commit while ``down`` is set"""

    def __init__(self, factory):
        self.factory = factory
        self.down = False

    def __call__(self):
        session = self.factory()
        if self.down:
            def fail():
                raise OperationalError("INSERT", {}, Exception("connection lost"))

            session.commit = fail
        return session


def match(document_id: str, chunk_id: str, similarity: float) -> MatchResult:
    return MatchResult(
        chunk_id=chunk_id,
        document_id=document_id,
        chunk_index=0,
        content="...",
        similarity=similarity,
        document_title="Doc",
        document_type="manual",
    )


@pytest.fixture
def flaky(session_factory):
    return FlakySessionFactory(session_factory)


class TestQueryLogger:
    def test_log_and_sources(self, session_factory, db_session):
        query_logger = QueryLogger(session_factory, max_attempts=2, queue_size=10)

        query_id = query_logger.log("user-1", "¿Pregunta?", "Respuesta", 120, 5, False)
        assert query_id is not None
        assert query_logger.log_sources(query_id, [match("d1", "c1", 0.9), match("d2", "c2", 0.7)])

        query = db_session.query(Query).filter(Query.id == query_id).one()
        assert (query.question, query.answer, query.latency_ms, query.top_k) == ("¿Pregunta?", "Respuesta", 120, 5)
        sources = db_session.query(QuerySource).order_by(QuerySource.rank).all()
        assert [(s.rank, s.document_id, s.chunk_id, s.score) for s in sources] == [
            (1, "d1", "c1", 0.9),
            (2, "d2", "c2", 0.7),
        ]

    def test_failed_write_is_parked_under_its_id(self, flaky, db_session):
        query_logger = QueryLogger(flaky, max_attempts=2, queue_size=10)
        flaky.down = True

        query_id = query_logger.log("user-1", "q", "a", 10, 5, False)

        assert query_id is not None
        assert query_logger.is_parked(query_id)
        assert query_logger.pending_count == 1
        assert db_session.query(Query).count() == 0

        flaky.down = False
        query_logger.flush_pending()
        assert db_session.query(Query).filter(Query.id == query_id).count() == 1

    def test_sources_of_parked_query_are_written_after_outage(self, flaky, db_session):
        query_logger = QueryLogger(flaky, max_attempts=1, queue_size=10)
        flaky.down = True

        query_id = query_logger.log("user-1", "q", "a", 10, 5, False)
        assert query_logger.log_sources(query_id, [match("d1", "c1", 0.9), match("d2", "c2", 0.7)]) is False
        assert query_logger.pending_count == 2

        flaky.down = False
        assert query_logger.flush_pending() == 2

        sources = db_session.query(QuerySource).filter(QuerySource.query_id == query_id).order_by(QuerySource.rank).all()
        assert [(s.rank, s.document_id) for s in sources] == [(1, "d1"), (2, "d2")]

    def test_dropping_a_parked_query_drops_its_sources(self, flaky, db_session):
        query_logger = QueryLogger(flaky, max_attempts=1, queue_size=2)
        flaky.down = True
        first = query_logger.log("user-1", "uno", "a", 10, 5, False)
        query_logger.log_sources(first, [match("d1", "c1", 0.9)])

        second = query_logger.log("user-1", "dos", "a", 10, 5, False)

        assert not query_logger.is_parked(first)
        assert query_logger.is_parked(second)
        assert query_logger.pending_count == 1

        flaky.down = False
        assert query_logger.flush_pending() == 1
        assert [q.question for q in db_session.query(Query).all()] == ["dos"]
        assert db_session.query(QuerySource).count() == 0

    def test_parked_writes_are_flushed_on_next_call(self, flaky, db_session):
        query_logger = QueryLogger(flaky, max_attempts=1, queue_size=10)
        flaky.down = True
        query_logger.log("user-1", "primera", "a", 10, 5, False)

        flaky.down = False
        second_id = query_logger.log("user-1", "segunda", "b", 10, 5, False)

        assert second_id is not None
        assert query_logger.pending_count == 0
        assert sorted(q.question for q in db_session.query(Query).all()) == ["primera", "segunda"]

    def test_flush_stops_at_first_failure(self, flaky):
        query_logger = QueryLogger(flaky, max_attempts=1, queue_size=10)
        flaky.down = True
        query_logger.log("user-1", "uno", "a", 10, 5, False)
        query_logger.log("user-1", "dos", "a", 10, 5, False)

        assert query_logger.flush_pending() == 0
        assert query_logger.pending_count == 2

        flaky.down = False
        assert query_logger.flush_pending() == 2

    def test_queue_is_bounded(self, flaky):
        query_logger = QueryLogger(flaky, max_attempts=1, queue_size=2)
        flaky.down = True
        for i in range(5):
            query_logger.log("user-1", f"q{i}", "a", 10, 5, False)

        assert query_logger.pending_count == 2

    def test_failed_sources_write_is_parked(self, flaky, db_session):
        query_logger = QueryLogger(flaky, max_attempts=1, queue_size=10)
        query_id = query_logger.log("user-1", "q", "a", 10, 5, False)

        flaky.down = True
        assert query_logger.log_sources(query_id, [match("d1", "c1", 0.8)]) is False
        assert query_logger.pending_count == 1

        flaky.down = False
        query_logger.flush_pending()
        assert db_session.query(QuerySource).count() == 1


class TestRecordFeedback:
    def test_feedback_for_logged_query(self, session_factory, db_session):
        query_id = QueryLogger(session_factory).log("user-1", "q", "a", 10, 5, False)

        feedback = record_feedback(db_session, query_id, "user-1", 4, "útil")

        assert feedback.id
        assert db_session.query(Feedback).one().rating == 4

    def test_feedback_for_unknown_query(self, db_session):
        with pytest.raises(NotFoundError):
            record_feedback(db_session, "missing", "user-1", 5)
