"""
Shared fixtures: in-memory database, local blob storage and fake provider clients.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import date
from typing import Dict, List, Optional, Sequence

import pytest
from sqlalchemy.orm import sessionmaker

from acervo.core.exceptions import ProviderError
from acervo.db.database import Base, build_engine
from acervo.db.init_db import init_db
from acervo.db.models import Document
from acervo.services.answer_service import ContextPassage
from acervo.services.storage_service import StorageService

TEST_MODEL = "test-embedding"


class FakeEmbedder:
    """Deterministic stand-in for EmbeddingService"""

    def __init__(
        self,
        vectors: Optional[Dict[str, List[float]]] = None,
        default: Sequence[float] = (1.0, 0.0, 0.0),
        fail_on: Optional[str] = None,
        model_id: str = TEST_MODEL,
    ):
        self.vectors = vectors or {}
        self.default = list(default)
        self.fail_on = fail_on
        self.model_id = model_id
        self.calls: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.calls.append(text)
        if self.fail_on is not None and self.fail_on in text:
            raise ProviderError("AI provider request failed with status 500", provider_status=500)
        return list(self.vectors.get(text, self.default))


class FakeGenerator:
    """Stand-in for AnswerService that records what it was asked"""

    def __init__(self, reply: str = "respuesta", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.grounded_calls: List[tuple] = []
        self.fallback_calls: List[str] = []
        self.complete_calls: List[tuple] = []

    async def generate_grounded(self, question: str, passages: Sequence[ContextPassage]) -> str:
        self.grounded_calls.append((question, list(passages)))
        if self.error:
            raise self.error
        return self.reply

    async def generate_fallback(self, question: str) -> str:
        self.fallback_calls.append(question)
        if self.error:
            raise self.error
        return self.reply

    async def complete(self, messages, temperature: float) -> str:
        self.complete_calls.append((messages, temperature))
        if self.error:
            raise self.error
        return self.reply


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def storage(tmp_path):
    return StorageService(backend="local", root_dir=str(tmp_path / "blobs"))


@pytest.fixture
def fake_embedder():
    return FakeEmbedder()


@pytest.fixture
def fake_generator():
    return FakeGenerator()


@pytest.fixture
def make_document(db_session, storage):
    """Create a stored document row (and its blob) for tests"""
    counter = {"n": 0}

    def _make(
        content: bytes = b"contenido",
        filename: str = "doc.txt",
        title: str = "Documento",
        doc_type: str = "resolucion",
        process: str = "asignacion",
        document_date: date = date(2024, 3, 1),
        store: bool = True,
    ) -> Document:
        counter["n"] += 1
        storage_path = f"user-1/{counter['n']}_{filename}"
        if store:
            storage.upload(storage_path, content)
        document = Document(
            title=title,
            author="Autor",
            doc_type=doc_type,
            process=process,
            document_date=document_date,
            content_hash=f"hash-{counter['n']}",
            storage_path=storage_path,
            original_filename=filename,
            file_size=len(content),
            created_by="user-1",
        )
        db_session.add(document)
        db_session.commit()
        db_session.refresh(document)
        return document

    return _make
