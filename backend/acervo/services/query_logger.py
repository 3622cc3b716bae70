"""
Provenance logging for RAG queries.

Writes here are best-effort: a failed write is reported and parked in a
bounded in-memory queue that later calls drain. Nothing in this module's
logging path raises into the query that triggered it.
"""

import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from acervo.core.config import settings
from acervo.core.exceptions import NotFoundError
from acervo.db.models import Feedback, Query, QuerySource
from acervo.services.vector_search_service import MatchResult

logger = structlog.get_logger(__name__)

WriteFn = Callable[[Session], None]


@dataclass
class PendingWrite:
    kind: str
    query_id: str
    write: WriteFn


class QueryLogger:
    """Records queries and their ranked sources.

    One instance lives for the lifetime of the application so the retry queue
    survives across requests.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        max_attempts: Optional[int] = None,
        queue_size: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.max_attempts = max(1, max_attempts or settings.QUERY_LOG_MAX_ATTEMPTS)
        self.queue_size = max(1, queue_size or settings.QUERY_LOG_RETRY_QUEUE_SIZE)
        self._pending: Deque[PendingWrite] = deque()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def log(
        self,
        user_id: str,
        question: str,
        answer: Optional[str],
        latency_ms: int,
        top_k: int,
        used_fallback: bool,
    ) -> str:
        """Insert a query record and return its id.

        The id is generated here, so it is returned even when the write is
        parked; the row appears once the queue drains.
        """
        self.flush_pending()
        query_id = str(uuid.uuid4())

        def write(session: Session) -> None:
            session.add(
                Query(
                    id=query_id,
                    user_id=user_id,
                    question=question,
                    answer=answer,
                    latency_ms=latency_ms,
                    top_k=top_k,
                    used_fallback=used_fallback,
                )
            )

        if not self._write(write, "query", query_id, self.max_attempts):
            self._park(PendingWrite("query", query_id, write))
        return query_id

    def log_sources(self, query_id: str, ranked_results: Sequence[MatchResult]) -> bool:
        """Insert one source row per result; rank is the 1-based retrieval order."""
        if not ranked_results:
            return True
        rows = [
            dict(document_id=r.document_id, chunk_id=r.chunk_id, rank=rank, score=r.similarity)
            for rank, r in enumerate(ranked_results, start=1)
        ]

        def write(session: Session) -> None:
            session.add_all(QuerySource(query_id=query_id, **row) for row in rows)

        if self.is_parked(query_id):
            # The query row is still queued; its sources must follow it
            self._park(PendingWrite("sources", query_id, write))
            return False
        if self._write(write, "sources", query_id, self.max_attempts):
            return True
        self._park(PendingWrite("sources", query_id, write))
        return False

    def is_parked(self, query_id: str) -> bool:
        return any(item.query_id == query_id for item in self._pending)

    def flush_pending(self) -> int:
        """Retry parked writes in order, stopping at the first failure."""
        flushed = 0
        while self._pending:
            item = self._pending[0]
            if not self._write(item.write, item.kind, item.query_id, 1):
                break
            self._pending.popleft()
            flushed += 1
        if flushed:
            logger.info("Flushed parked query log writes", flushed=flushed, remaining=len(self._pending))
        return flushed

    def _write(self, write: WriteFn, kind: str, query_id: str, attempts: int) -> bool:
        for attempt in range(1, attempts + 1):
            session = self.session_factory()
            try:
                write(session)
                session.commit()
                return True
            except SQLAlchemyError as e:
                session.rollback()
                logger.warning(
                    "Query log write failed",
                    kind=kind,
                    query_id=query_id,
                    attempt=attempt,
                    error=str(e),
                )
            finally:
                session.close()
        return False

    def _park(self, item: PendingWrite) -> None:
        if len(self._pending) >= self.queue_size:
            dropped = self._pending.popleft()
            logger.error(
                "Query log retry queue full, dropping oldest write",
                kind=dropped.kind,
                query_id=dropped.query_id,
            )
            if dropped.kind == "query":
                # Sources of a dropped query can never be written
                self._pending = deque(p for p in self._pending if p.query_id != dropped.query_id)
                if item.query_id == dropped.query_id:
                    return
        self._pending.append(item)
        logger.warning("Query log write parked for retry", kind=item.kind, query_id=item.query_id)


def record_feedback(
    db: Session,
    query_id: str,
    user_id: str,
    rating: int,
    comment: Optional[str] = None,
) -> Feedback:
    """Attach a 1..5 rating to a logged query."""
    if not db.query(Query.id).filter(Query.id == query_id).first():
        raise NotFoundError("Query not found")
    feedback = Feedback(query_id=query_id, user_id=user_id, rating=rating, comment=comment)
    try:
        db.add(feedback)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("Failed to save feedback", query_id=query_id, exc_info=True)
        raise
    db.refresh(feedback)
    return feedback
