"""
Database engine and session management
"""

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from acervo.core.config import settings


def build_engine(database_url: str, echo: bool = False):
    """Create an engine with the pool settings the URL needs"""
    is_sqlite = database_url.startswith("sqlite")
    is_memory_sqlite = database_url in {"sqlite://", "sqlite:///:memory:"} or database_url.endswith(":memory:")

    engine_kwargs = {"echo": echo}
    if is_sqlite:
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if is_memory_sqlite:
            engine_kwargs["poolclass"] = StaticPool
    else:
        engine_kwargs["pool_pre_ping"] = True

    new_engine = create_engine(database_url, **engine_kwargs)

    if is_sqlite:
        # ON DELETE CASCADE is ignored by SQLite unless foreign keys are enabled per connection
        @event.listens_for(new_engine, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return new_engine


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Request-scoped database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
