"""
SQLAlchemy Models for the Newsdesk ingestion and curation pipeline

Feed sources produce ingested items; approved items flow through the
automation queue into platform articles and social distribution.
"""
import enum
import uuid
from datetime import datetime, timezone
from uuid import UUID
from typing import Optional

from sqlalchemy import (
    Column, String, Text, Float, DateTime, Integer, Boolean, JSON, Uuid,
    Enum as SAEnum, ForeignKey, Index
)
from sqlalchemy.orm import relationship, Mapped
from sqlalchemy.sql import func

from newsdesk.database import Base


# ============================================================================
# Enum Definitions
# ============================================================================

class SourceStatus(enum.Enum):
    """Operational status of a feed source"""
    ACTIVE = "active"
    ERROR = "error"


class ItemStatus(enum.Enum):
    """Ingested item moderation status"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


class AutomationStatus(enum.Enum):
    """Automation pipeline stage, strictly ordered"""
    PENDING = "pending"
    AI_PROCESSING = "ai_processing"
    AI_COMPLETED = "ai_completed"
    PUBLISHING = "publishing"
    PUBLISHED = "published"
    SOCIAL_PENDING = "social_pending"
    SOCIAL_POSTING = "social_posting"
    COMPLETED = "completed"
    FAILED = "failed"


class ArticleStatus(enum.Enum):
    """Platform article publication status"""
    DRAFT = "draft"
    PUBLISHED = "published"


# ============================================================================
# Entity Models
# ============================================================================

class Category(Base):
    """
    Editorial category shared by feed sources, ingested items and articles
    """
    __tablename__ = "categories"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = Column(String(100), nullable=False)
    slug: Mapped[str] = Column(String(100), nullable=False, unique=True)

    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )


class FeedSource(Base):
    """
    Subscribed RSS/Atom feed

    Mutated by the fetcher after every fetch attempt: success resets the
    error state, repeated failures flip the status to ERROR.
    """
    __tablename__ = "feed_sources"

    # Primary Key
    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Core Fields
    name: Mapped[str] = Column(String(200), nullable=False)
    feed_url: Mapped[str] = Column(String(500), nullable=False, unique=True)
    website_url: Mapped[Optional[str]] = Column(String(500), nullable=True)
    category_id: Mapped[Optional[UUID]] = Column(
        Uuid,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True
    )

    # Operational State
    status: Mapped[SourceStatus] = Column(
        SAEnum(SourceStatus, name="source_status"),
        nullable=False,
        default=SourceStatus.ACTIVE
    )
    is_active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    auto_approve: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    fetch_interval: Mapped[int] = Column(Integer, nullable=False, default=15)  # minutes
    tier: Mapped[Optional[int]] = Column(Integer, nullable=True)  # operator override (1-3)
    last_fetched_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    error_count: Mapped[int] = Column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = Column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now()
    )

    # Relationships
    category: Mapped[Optional["Category"]] = relationship("Category")
    items: Mapped[list["IngestedItem"]] = relationship("IngestedItem", back_populates="source")

    __table_args__ = (
        Index("ix_feed_sources_status_active", "status", "is_active"),
    )


class IngestedItem(Base):
    """
    Feed entry that passed the relevance filter

    Workflow: pending → approved → expired, or pending → rejected.
    MERGED near-duplicates are kept as rejected variants of the original.
    """
    __tablename__ = "ingested_items"

    # Primary Key (generated client side so the filter can reference it before insert)
    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Identity and dedup keys
    guid: Mapped[str] = Column(String(1000), nullable=False, unique=True)
    title: Mapped[str] = Column(String(500), nullable=False)
    title_hash: Mapped[str] = Column(String(64), nullable=False)

    # Feed content
    excerpt: Mapped[Optional[str]] = Column(Text, nullable=True)
    source_url: Mapped[str] = Column(String(1000), nullable=False, default="")
    image_url: Mapped[Optional[str]] = Column(String(1000), nullable=True)
    published_at: Mapped[datetime] = Column(DateTime(timezone=True), nullable=False)
    fetched_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: utcnow()
    )

    # Foreign Keys
    source_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("feed_sources.id", ondelete="CASCADE"),
        nullable=False
    )
    category_id: Mapped[Optional[UUID]] = Column(
        Uuid,
        ForeignKey("categories.id", ondelete="SET NULL"),
        nullable=True
    )
    merged_into_id: Mapped[Optional[UUID]] = Column(
        Uuid,
        ForeignKey("ingested_items.id", ondelete="SET NULL"),
        nullable=True
    )

    # Moderation
    status: Mapped[ItemStatus] = Column(
        SAEnum(ItemStatus, name="item_status"),
        nullable=False,
        default=ItemStatus.PENDING
    )
    approved_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    # Filter decision
    filter_status: Mapped[Optional[str]] = Column(String(20), nullable=True)
    filter_score: Mapped[Optional[float]] = Column(Float, nullable=True)
    filter_tier: Mapped[Optional[int]] = Column(Integer, nullable=True)
    filter_reasoning: Mapped[Optional[str]] = Column(Text, nullable=True)

    # Scraping
    full_content: Mapped[Optional[str]] = Column(Text, nullable=True)
    content_scraped: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    scrape_error: Mapped[Optional[str]] = Column(Text, nullable=True)
    scraped_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    # Manual AI rewrite
    rewritten_title: Mapped[Optional[str]] = Column(String(500), nullable=True)
    rewritten_excerpt: Mapped[Optional[str]] = Column(Text, nullable=True)

    # Relationships
    source: Mapped["FeedSource"] = relationship("FeedSource", back_populates="items")
    category: Mapped[Optional["Category"]] = relationship("Category")
    queue_item: Mapped[Optional["AutomationQueueItem"]] = relationship(
        "AutomationQueueItem", back_populates="ingested_item", uselist=False
    )

    __table_args__ = (
        Index("ix_ingested_items_title_hash_source", "title_hash", "source_id"),
        Index("ix_ingested_items_status_published", "status", "published_at"),
        Index("ix_ingested_items_scrape_queue", "content_scraped", "fetched_at"),
    )


class AutomationQueueItem(Base):
    """
    Tracker driving one approved item through rewrite → publish → social

    The unique constraint on ingested_item_id is the one-entry-per-item guard.
    """
    __tablename__ = "automation_queue"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    ingested_item_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("ingested_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True
    )

    status: Mapped[AutomationStatus] = Column(
        SAEnum(AutomationStatus, name="automation_status"),
        nullable=False,
        default=AutomationStatus.PENDING
    )

    # AI stage
    ai_rewritten_title: Mapped[Optional[str]] = Column(String(500), nullable=True)
    ai_rewritten_excerpt: Mapped[Optional[str]] = Column(Text, nullable=True)
    ai_rewritten_content: Mapped[Optional[str]] = Column(Text, nullable=True)
    ai_processed_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    # Publish stage
    created_article_id: Mapped[Optional[UUID]] = Column(
        Uuid,
        ForeignKey("articles.id", ondelete="SET NULL"),
        nullable=True
    )
    published_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    # Social stage
    social_scheduled_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    social_post_id: Mapped[Optional[str]] = Column(String(200), nullable=True)
    social_posted_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    # Failure tracking
    error_message: Mapped[Optional[str]] = Column(Text, nullable=True)
    retry_count: Mapped[int] = Column(Integer, nullable=False, default=0)

    # Timestamps
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: utcnow()
    )
    updated_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: utcnow(),
        onupdate=lambda: utcnow()
    )

    # Relationships
    ingested_item: Mapped["IngestedItem"] = relationship("IngestedItem", back_populates="queue_item")
    created_article: Mapped[Optional["Article"]] = relationship("Article")

    __table_args__ = (
        Index("ix_automation_queue_status", "status"),
        Index("ix_automation_queue_social", "status", "social_scheduled_at"),
    )


class Article(Base):
    """
    Platform article created by the automation pipeline
    """
    __tablename__ = "articles"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title: Mapped[str] = Column(String(500), nullable=False)
    slug: Mapped[str] = Column(String(600), nullable=False, unique=True)
    excerpt: Mapped[str] = Column(Text, nullable=False, default="")
    content: Mapped[str] = Column(Text, nullable=False)
    image_url: Mapped[Optional[str]] = Column(String(1000), nullable=True)
    category_id: Mapped[UUID] = Column(
        Uuid,
        ForeignKey("categories.id", ondelete="RESTRICT"),
        nullable=False
    )
    author_id: Mapped[str] = Column(String(100), nullable=False)
    status: Mapped[ArticleStatus] = Column(
        SAEnum(ArticleStatus, name="article_status"),
        nullable=False,
        default=ArticleStatus.DRAFT
    )
    read_time: Mapped[int] = Column(Integer, nullable=False, default=1)  # minutes
    is_breaking: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    published_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: utcnow()
    )

    category: Mapped["Category"] = relationship("Category")


class SystemNotification(Base):
    """
    Operator-facing notification (pipeline failures and similar events)
    """
    __tablename__ = "system_notifications"

    id: Mapped[UUID] = Column(Uuid, primary_key=True, default=uuid.uuid4)
    type: Mapped[str] = Column(String(50), nullable=False)
    title: Mapped[str] = Column(String(300), nullable=False)
    message: Mapped[str] = Column(Text, nullable=False)
    data: Mapped[Optional[dict]] = Column(JSON, nullable=True)
    is_read: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: utcnow()
    )

    __table_args__ = (
        Index("ix_system_notifications_is_read", "is_read"),
        Index("ix_system_notifications_created_at", "created_at"),
    )


# ============================================================================
# Helper Functions
# ============================================================================

def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the store to aware UTC

    SQLite drops tzinfo on round-trip; all values are written in UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_uuid(value) -> Optional[UUID]:
    """Coerce an id (UUID or string) to a UUID; None if malformed."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        return None


def get_by_id(session, model, value):
    """session.get() that tolerates string and malformed ids."""
    key = to_uuid(value)
    if key is None:
        return None
    return session.get(model, key)
