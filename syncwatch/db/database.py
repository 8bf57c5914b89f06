"""
Database connection and initialization utilities.
"""

import logging
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from syncwatch.config import Settings

logger = logging.getLogger(__name__)


def create_db_engine(settings: Settings) -> Engine:
    """Create the SQLAlchemy engine for the configured DATABASE_URL."""
    url = settings.database_url
    return create_engine(
        url,
        connect_args={"check_same_thread": False} if "sqlite" in url else {},
        echo=settings.db_echo  # Set DB_ECHO=true for SQL logging
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    """
    Create the session factory used by every store.

    Objects stay usable after commit so stores can hand detached rows back
    to async callers.
    """
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine):
    """Initialize database - create all tables."""
    from syncwatch.db.models import Base
    Base.metadata.create_all(bind=engine)
    logger.info(f"Database initialized at: {engine.url.render_as_string(hide_password=True)}")
