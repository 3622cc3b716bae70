"""
Database initialization
"""

import structlog
from sqlalchemy.exc import SQLAlchemyError

from acervo.db.database import engine as default_engine
from acervo.db.models import Base

logger = structlog.get_logger(__name__)


def init_db(engine=None) -> None:
    """Create the tables the core manipulates (no migrations are managed here)"""
    bind = engine or default_engine
    try:
        Base.metadata.create_all(bind=bind)
        logger.info("Database tables ready", dialect=bind.dialect.name)
    except SQLAlchemyError as e:
        logger.error("Database initialization failed", error=str(e))
        raise
