"""
Root pytest configuration for Newsdesk tests

Adds project root to Python path and binds every test to its own
SQLite database.
"""
import sys
import os

# Tests never touch a configured database
os.environ["DATABASE_URL"] = "sqlite://"

import pytest
from sqlalchemy import create_engine

# Add project root to Python path so tests can import newsdesk
project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, project_root)

from newsdesk import database  # noqa: E402
from newsdesk.database import Base, SessionLocal  # noqa: E402


@pytest.fixture(scope="function", autouse=True)
def db_engine(tmp_path):
    """
    Fresh SQLite file database per test, bound into SessionLocal.

    A file (not :memory:) so sessions opened by services and by daemon
    threads all see the same data.
    """
    from newsdesk import models  # noqa: F401

    engine = create_engine(
        f"sqlite:///{tmp_path / 'newsdesk_test.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal.configure(bind=engine)
    try:
        yield engine
    finally:
        SessionLocal.configure(bind=database.engine)
        engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """
    Provides a database session for tests.

    Session is automatically closed after each test.
    """
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture(autouse=True)
def no_delays(monkeypatch):
    """Politeness delays and retry backoff are zero under test."""
    from newsdesk.services import content_scraper, feed_fetcher, moderation

    monkeypatch.setattr(feed_fetcher, "RSS_FETCH_DELAY", 0)
    monkeypatch.setattr(content_scraper, "SCRAPE_DELAY", 0)
    monkeypatch.setattr(content_scraper, "RETRY_BASE_DELAY", 0)
    monkeypatch.setattr(moderation, "AI_REWRITE_DELAY", 0)
