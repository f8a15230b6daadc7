"""
Database configuration and session management for the Newsdesk pipeline
"""
import logging
import os
import time

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# Create declarative base for all models
Base = declarative_base()


def _sanitize_url(database_url: str) -> str:
    """Hide the password part of a database URL for logging."""
    if '@' in database_url:
        parts = database_url.split('@')
        return parts[0].split(':')[0] + ':***@' + parts[1]
    return database_url[:30] + "..."


def create_db_engine(database_url=None):
    """
    Create SQLAlchemy engine with connection pooling

    Args:
        database_url: Optional database URL override

    Returns:
        SQLAlchemy engine instance
    """
    if database_url is None:
        database_url = os.getenv("DATABASE_URL")

    if not database_url:
        raise ValueError("DATABASE_URL environment variable not set")

    logger.info(f"Connecting to: {_sanitize_url(database_url)}")

    engine_start = time.time()
    if database_url.startswith("sqlite"):
        # SQLite (local runs and tests) has no server-side pool or connect timeout
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            database_url,
            pool_size=5,               # Base connection pool size
            max_overflow=10,           # Max additional connections
            pool_pre_ping=True,        # Verify connections before use
            pool_recycle=3600,         # Recycle connections after 1 hour
            connect_args={"connect_timeout": 30},
            echo=os.getenv("SQL_DEBUG", "False") == "True"
        )
    logger.info(f"Engine created in {time.time() - engine_start:.1f}s")

    return engine


# Create default engine and session factory
engine = create_db_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind=None):
    """
    Create all tables that do not exist yet.

    Args:
        bind: Optional engine override (defaults to the module engine)
    """
    # Import models so they register on Base.metadata
    from newsdesk import models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)

