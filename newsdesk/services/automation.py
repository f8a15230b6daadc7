"""
Automation Pipeline Service

Drives an approved ingested item through the publishing pipeline:

    PENDING → AI_PROCESSING → AI_COMPLETED → PUBLISHING → PUBLISHED
            → SOCIAL_PENDING → SOCIAL_POSTING → COMPLETED

FAILED is reachable from every in-progress state and is left only through
retry_automation(). Each stage commits its status together with the
payload it produced, so an entry is never left claiming a stage whose
side effect did not land.
"""

import html
import logging
import math
import os
import re
import secrets
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from newsdesk.database import SessionLocal
from newsdesk.models import (
    Article, ArticleStatus, AutomationQueueItem, AutomationStatus, Category, IngestedItem, ItemStatus,
    as_utc, get_by_id, utcnow,
)
from newsdesk.services.ai_rewriter import format_paragraphs, rewrite_as_journalist
from newsdesk.services.category_classifier import is_mixed_category
from newsdesk.services.notifications import AUTOMATION_FAILED, SOCIAL_POST_FAILED, create_notification
from newsdesk.services.webhook import dispatch_new_article

logger = logging.getLogger(__name__)


def _log_automation(msg: str):
    """Log pipeline progress with immediate flush."""
    full_msg = f"AUTOMATION: {msg}"
    logger.info(full_msg)
    print(full_msg, file=sys.stdout, flush=True)

# Configuration
SOCIAL_DELAY_MINUTES = int(os.environ.get("SOCIAL_DELAY_MINUTES", "5"))
SOCIAL_MAX_RETRIES = int(os.environ.get("SOCIAL_MAX_RETRIES", "3"))
SOCIAL_RETRY_DELAY_MINUTES = int(os.environ.get("SOCIAL_RETRY_DELAY_MINUTES", "5"))
# A SOCIAL_POSTING claim with no outcome reported after this long can be retried
SOCIAL_CLAIM_TIMEOUT_MINUTES = int(os.environ.get("SOCIAL_CLAIM_TIMEOUT_MINUTES", "30"))
SITE_URL = os.environ.get("SITE_URL", "http://localhost:3000").rstrip('/')
AUTOMATION_AUTHOR_ID = os.environ.get("AUTOMATION_AUTHOR_ID", "system")
DEFAULT_CATEGORY_SLUG = "misc"
WORDS_PER_MINUTE = 200

CATEGORY_IMAGES = {
    'politics': 'politics.jpg',
    'economy': 'economy.jpg',
    'sports': 'sports.jpg',
    'technology': 'technology.jpg',
    'misc': 'misc.jpg',
}
DEFAULT_IMAGE = 'default.jpg'

ALLOWED_TRANSITIONS = {
    AutomationStatus.PENDING: {AutomationStatus.AI_PROCESSING, AutomationStatus.FAILED},
    AutomationStatus.AI_PROCESSING: {AutomationStatus.AI_COMPLETED, AutomationStatus.FAILED},
    AutomationStatus.AI_COMPLETED: {AutomationStatus.PUBLISHING, AutomationStatus.FAILED},
    AutomationStatus.PUBLISHING: {AutomationStatus.PUBLISHED, AutomationStatus.FAILED},
    AutomationStatus.PUBLISHED: {AutomationStatus.SOCIAL_PENDING, AutomationStatus.FAILED},
    AutomationStatus.SOCIAL_PENDING: {
        AutomationStatus.SOCIAL_POSTING, AutomationStatus.SOCIAL_PENDING,
        AutomationStatus.COMPLETED, AutomationStatus.FAILED,
    },
    AutomationStatus.SOCIAL_POSTING: {
        AutomationStatus.COMPLETED, AutomationStatus.SOCIAL_PENDING, AutomationStatus.FAILED,
    },
    AutomationStatus.COMPLETED: set(),
    # Left only through retry_automation()
    AutomationStatus.FAILED: {AutomationStatus.PENDING, AutomationStatus.SOCIAL_PENDING},
}

TERMINAL_STATUSES = {AutomationStatus.COMPLETED, AutomationStatus.FAILED}


class AutomationError(Exception):
    """Base class for automation pipeline errors."""


class AutomationPreconditionError(AutomationError):
    """The requested operation is not allowed for the item or entry."""


class AutomationNotFoundError(AutomationPreconditionError):
    """Referenced ingested item or queue entry does not exist."""


class InvalidTransitionError(AutomationError):
    """Status change not allowed by the pipeline order."""


def _transition(entry: AutomationQueueItem, target: AutomationStatus):
    current = entry.status
    if target not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(
            f"Queue entry {entry.id}: cannot move from {current.value} to {target.value}"
        )
    entry.status = target


def _get_entry(session, queue_id) -> AutomationQueueItem:
    entry = get_by_id(session, AutomationQueueItem, queue_id)
    if entry is None:
        raise AutomationNotFoundError(f"Queue entry {queue_id} not found")
    return entry


def _iso(value) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


# ============================================================================
# Entry point
# ============================================================================

def start_automation(item_id, process_now: bool = True) -> str:
    """
    Queue an approved ingested item for automation.

    Args:
        item_id: IngestedItem id
        process_now: Run the pipeline stages before returning

    Returns:
        The new queue entry id

    Raises:
        AutomationNotFoundError: item does not exist
        AutomationPreconditionError: item is not APPROVED or already queued
    """
    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_id)
        if item is None:
            raise AutomationNotFoundError(f"Ingested item {item_id} not found")
        if item.status != ItemStatus.APPROVED:
            raise AutomationPreconditionError(
                f"Ingested item {item_id} is {item.status.value}, only approved items can be automated"
            )

        existing = session.query(AutomationQueueItem).filter(
            AutomationQueueItem.ingested_item_id == item.id
        ).first()
        if existing is not None:
            raise AutomationPreconditionError(
                f"Ingested item {item_id} is already queued ({existing.status.value})"
            )

        entry = AutomationQueueItem(
            ingested_item_id=item.id,
            status=AutomationStatus.PENDING,
            retry_count=0,
        )
        session.add(entry)
        try:
            session.commit()
        except IntegrityError:
            # Lost a race with a concurrent start for the same item
            session.rollback()
            raise AutomationPreconditionError(f"Ingested item {item_id} is already queued")

        queue_id = str(entry.id)
        _log_automation(f"Queued '{item.title[:60]}' as {queue_id}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if process_now:
        process_queue(queue_id)

    return queue_id


def _current_status(queue_id) -> AutomationStatus:
    session = SessionLocal()
    try:
        return _get_entry(session, queue_id).status
    finally:
        session.close()


def process_queue(queue_id) -> AutomationStatus:
    """
    Run every remaining stage of a queue entry.

    A stage that raises moves the entry to FAILED and notifies the
    operator; the error does not propagate.

    Returns:
        Status the entry ended in
    """
    stages = {
        AutomationStatus.PENDING: process_ai_rewrite,
        AutomationStatus.AI_COMPLETED: publish_to_platform,
        AutomationStatus.PUBLISHED: queue_for_social,
    }

    while True:
        status = _current_status(queue_id)
        stage = stages.get(status)
        if stage is None:
            return status

        try:
            stage(queue_id)
        except Exception as e:
            logger.error(f"Automation stage {stage.__name__} failed for {queue_id}: {e}")
            _fail_entry(queue_id, str(e))
            return AutomationStatus.FAILED


def _fail_entry(queue_id, error_message: str):
    """Move an entry to FAILED and raise an operator notification in one commit."""
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        if entry.status in TERMINAL_STATUSES:
            return

        failed_stage = entry.status.value
        _transition(entry, AutomationStatus.FAILED)
        entry.error_message = error_message[:2000]

        title = entry.ingested_item.title if entry.ingested_item else ''
        create_notification(
            AUTOMATION_FAILED,
            'فشل خط الأتمتة',
            f'فشلت أتمتة الخبر "{title[:80]}" في مرحلة {failed_stage}: {error_message}',
            data={
                'queue_id': str(entry.id),
                'ingested_item_id': str(entry.ingested_item_id),
                'stage': failed_stage,
            },
            session=session,
        )
        session.commit()
        _log_automation(f"Entry {queue_id} FAILED at {failed_stage}: {error_message[:100]}")
    except Exception as e:
        session.rollback()
        logger.error(f"Could not record failure for queue entry {queue_id}: {e}")
    finally:
        session.close()


# ============================================================================
# Stages
# ============================================================================

def process_ai_rewrite(queue_id):
    """
    PENDING → AI_PROCESSING → AI_COMPLETED.

    An unreachable model keeps the original text and still completes the
    stage. Any other rewrite error propagates to the caller.
    """
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        _transition(entry, AutomationStatus.AI_PROCESSING)

        item = entry.ingested_item
        title = item.rewritten_title or item.title
        excerpt = item.rewritten_excerpt or item.excerpt or ''
        content = item.full_content or excerpt
        category = item.category or (item.source.category if item.source else None)
        category_name = category.name if category else None
        session.commit()

        _log_automation(f"Rewriting '{title[:60]}' ({queue_id})")
        result = rewrite_as_journalist(title, content, category_name, excerpt=excerpt)

        if result is None:
            logger.warning(f"AI unavailable for {queue_id}, publishing original text")
            new_title, new_excerpt, new_content = title, excerpt, content
        else:
            if result.degraded:
                logger.info(f"Partial AI rewrite for {queue_id}, missing fields kept as original")
            new_title, new_excerpt, new_content = result.title, result.excerpt, result.content

        entry.ai_rewritten_title = new_title[:500]
        entry.ai_rewritten_excerpt = new_excerpt[:500]
        entry.ai_rewritten_content = new_content
        entry.ai_processed_at = utcnow()
        _transition(entry, AutomationStatus.AI_COMPLETED)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def slugify(text: str, max_length: int = 80) -> str:
    """URL slug that keeps Arabic letters."""
    slug = re.sub(r'[^\w\s-]', '', (text or '').lower())
    slug = re.sub(r'[\s_-]+', '-', slug).strip('-')
    return slug[:max_length].strip('-') or 'article'


def default_image_url(category_slug: Optional[str]) -> str:
    image = CATEGORY_IMAGES.get(category_slug or '', DEFAULT_IMAGE)
    return f"{SITE_URL}/images/categories/{image}"


def estimate_read_time(content: str) -> int:
    """Minutes at WORDS_PER_MINUTE, at least 1."""
    words = len(re.sub(r'<[^>]+>', ' ', content or '').split())
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def build_attribution_footer(source_name: Optional[str], source_url: Optional[str]) -> str:
    name = html.escape(source_name or 'المصدر الأصلي')
    if source_url:
        link = f'<a href="{html.escape(source_url, quote=True)}" target="_blank" rel="noopener">{name}</a>'
    else:
        link = name
    return f'<p class="source-attribution">المصدر: {link}</p>'


def _resolve_article_category(session, item: IngestedItem) -> Category:
    """
    Item category, then a non-mixed source category, then the default
    category, then any category at all.
    """
    if item.category is not None:
        return item.category

    source_category = item.source.category if item.source else None
    if source_category is not None and not is_mixed_category(source_category.slug):
        return source_category

    category = session.query(Category).filter(Category.slug == DEFAULT_CATEGORY_SLUG).first()
    if category is None:
        category = session.query(Category).order_by(Category.created_at).first()
    if category is None:
        raise AutomationError("No category available for the platform article")
    return category


def publish_to_platform(queue_id):
    """
    AI_COMPLETED → PUBLISHING → PUBLISHED.

    The article insert and the PUBLISHED status share one commit. The
    publish webhook is dispatched afterwards and cannot fail the stage.
    """
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        _transition(entry, AutomationStatus.PUBLISHING)
        session.commit()

        item = entry.ingested_item
        category = _resolve_article_category(session, item)

        title = entry.ai_rewritten_title or item.rewritten_title or item.title
        excerpt = entry.ai_rewritten_excerpt or item.rewritten_excerpt or item.excerpt or ''
        body = entry.ai_rewritten_content or item.full_content or item.excerpt or ''
        source_name = item.source.name if item.source else None
        content = format_paragraphs(body) + '\n' + build_attribution_footer(source_name, item.source_url)

        now = utcnow()
        article = Article(
            title=title[:500],
            slug=f"{slugify(title)}-{secrets.token_hex(3)}",
            excerpt=excerpt,
            content=content,
            image_url=item.image_url or default_image_url(category.slug),
            category_id=category.id,
            author_id=AUTOMATION_AUTHOR_ID,
            status=ArticleStatus.PUBLISHED,
            read_time=estimate_read_time(body),
            is_breaking=False,
            published_at=now,
        )
        session.add(article)
        session.flush()

        entry.created_article_id = article.id
        entry.published_at = now
        _transition(entry, AutomationStatus.PUBLISHED)
        session.commit()

        article_id = article.id
        _log_automation(f"Published article {article.slug} for {queue_id}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    try:
        dispatch_new_article(article_id)
    except Exception as e:
        logger.error(f"Could not dispatch publish webhook for article {article_id}: {e}")


def queue_for_social(queue_id):
    """PUBLISHED → SOCIAL_PENDING, scheduled SOCIAL_DELAY_MINUTES ahead."""
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        _transition(entry, AutomationStatus.SOCIAL_PENDING)
        entry.social_scheduled_at = utcnow() + timedelta(minutes=SOCIAL_DELAY_MINUTES)
        session.commit()
        _log_automation(f"Scheduled {queue_id} for social at {_iso(entry.social_scheduled_at)}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ============================================================================
# Social-posting integration
# ============================================================================

def serialize_social_post(entry: AutomationQueueItem) -> dict:
    article = entry.created_article
    article_data = None
    if article is not None:
        article_data = {
            'id': str(article.id),
            'title': article.title,
            'slug': article.slug,
            'excerpt': article.excerpt,
            'imageUrl': article.image_url,
            'category': article.category.name if article.category else None,
            'url': f"{SITE_URL}/article/{article.slug}",
        }
    return {
        'queue_id': str(entry.id),
        'status': entry.status.value,
        'retry_count': entry.retry_count,
        'social_scheduled_at': _iso(entry.social_scheduled_at),
        'article': article_data,
    }


def get_pending_social_posts(limit: int = 10) -> list[dict]:
    """SOCIAL_PENDING entries whose scheduled time has arrived, oldest first."""
    session = SessionLocal()
    try:
        entries = session.query(AutomationQueueItem).filter(
            AutomationQueueItem.status == AutomationStatus.SOCIAL_PENDING,
            AutomationQueueItem.social_scheduled_at <= utcnow()
        ).order_by(
            AutomationQueueItem.social_scheduled_at.asc()
        ).limit(limit).all()
        return [serialize_social_post(e) for e in entries]
    finally:
        session.close()


def mark_social_posting(queue_id) -> dict:
    """Claim a SOCIAL_PENDING entry before posting it."""
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        _transition(entry, AutomationStatus.SOCIAL_POSTING)
        session.commit()
        return serialize_queue_item(entry)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def mark_social_posted(queue_id, post_id: str) -> dict:
    """
    Record a successful social post and complete the entry.

    Repeating the call for a COMPLETED entry is a no-op.
    """
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        if entry.status == AutomationStatus.COMPLETED:
            return serialize_queue_item(entry)

        _transition(entry, AutomationStatus.COMPLETED)
        entry.social_post_id = post_id
        entry.social_posted_at = utcnow()
        entry.error_message = None
        session.commit()
        _log_automation(f"Entry {queue_id} COMPLETED (post {post_id})")
        return serialize_queue_item(entry)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def mark_social_failed(queue_id, error_message: str) -> AutomationStatus:
    """
    Record a failed social post.

    The entry is re-queued SOCIAL_RETRY_DELAY_MINUTES ahead while the
    incremented retry count is below SOCIAL_MAX_RETRIES; after that it
    moves to FAILED with an operator notification.

    Returns:
        Resulting status
    """
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        if entry.status == AutomationStatus.FAILED:
            return entry.status
        if entry.status not in (AutomationStatus.SOCIAL_PENDING, AutomationStatus.SOCIAL_POSTING):
            raise InvalidTransitionError(
                f"Queue entry {queue_id} is {entry.status.value}, not awaiting a social post"
            )

        retry_count = (entry.retry_count or 0) + 1
        entry.retry_count = retry_count
        entry.error_message = (error_message or '')[:2000]

        if retry_count < SOCIAL_MAX_RETRIES:
            _transition(entry, AutomationStatus.SOCIAL_PENDING)
            entry.social_scheduled_at = utcnow() + timedelta(minutes=SOCIAL_RETRY_DELAY_MINUTES)
            logger.warning(f"Social post failed for {queue_id} (attempt {retry_count}), re-queued: {error_message}")
        else:
            _transition(entry, AutomationStatus.FAILED)
            article = entry.created_article
            create_notification(
                SOCIAL_POST_FAILED,
                'فشل النشر على وسائل التواصل',
                f'فشل نشر المقال بعد {retry_count} محاولات: {error_message}',
                data={
                    'queue_id': str(entry.id),
                    'article_id': str(article.id) if article else None,
                    'article_title': article.title if article else None,
                },
                session=session,
            )
            logger.error(f"Social post failed for {queue_id} after {retry_count} attempts: {error_message}")

        session.commit()
        return entry.status
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ============================================================================
# Operator surface
# ============================================================================

def _is_stale_claim(entry: AutomationQueueItem) -> bool:
    claimed_at = as_utc(entry.updated_at)
    return claimed_at is None or claimed_at <= utcnow() - timedelta(minutes=SOCIAL_CLAIM_TIMEOUT_MINUTES)


def retry_automation(queue_id, process_now: bool = True) -> AutomationStatus:
    """
    Put a FAILED entry, or a stale SOCIAL_POSTING claim, back into the pipeline.

    Entries that already produced an article resume at social queuing;
    the rest restart from the AI stage. The error and retry count are cleared.
    A SOCIAL_POSTING claim is stale once SOCIAL_CLAIM_TIMEOUT_MINUTES pass
    without the integration reporting an outcome.
    """
    session = SessionLocal()
    try:
        entry = _get_entry(session, queue_id)
        if entry.status == AutomationStatus.SOCIAL_POSTING:
            if not _is_stale_claim(entry):
                raise InvalidTransitionError(
                    f"Queue entry {queue_id} was claimed for posting less than "
                    f"{SOCIAL_CLAIM_TIMEOUT_MINUTES} minutes ago"
                )
        elif entry.status != AutomationStatus.FAILED:
            raise InvalidTransitionError(
                f"Queue entry {queue_id} is {entry.status.value}, only failed entries can be retried"
            )

        if entry.created_article_id is not None:
            _transition(entry, AutomationStatus.SOCIAL_PENDING)
            entry.social_scheduled_at = utcnow()
        else:
            _transition(entry, AutomationStatus.PENDING)
        entry.error_message = None
        entry.retry_count = 0
        session.commit()

        status = entry.status
        _log_automation(f"Retrying {queue_id} from {status.value}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    if status == AutomationStatus.PENDING and process_now:
        return process_queue(queue_id)
    return status


def parse_status(value) -> AutomationStatus:
    """Accept an AutomationStatus, its value ('social_pending') or its name ('SOCIAL_PENDING')."""
    if isinstance(value, AutomationStatus):
        return value
    try:
        return AutomationStatus(str(value).lower())
    except ValueError:
        raise ValueError(f"Unknown automation status: {value}")


def serialize_queue_item(entry: AutomationQueueItem) -> dict:
    item = entry.ingested_item
    article = entry.created_article
    return {
        'id': str(entry.id),
        'ingested_item_id': str(entry.ingested_item_id),
        'title': item.title if item else None,
        'status': entry.status.value,
        'ai_rewritten_title': entry.ai_rewritten_title,
        'ai_processed_at': _iso(entry.ai_processed_at),
        'created_article_id': str(entry.created_article_id) if entry.created_article_id else None,
        'article_slug': article.slug if article else None,
        'published_at': _iso(entry.published_at),
        'social_scheduled_at': _iso(entry.social_scheduled_at),
        'social_post_id': entry.social_post_id,
        'social_posted_at': _iso(entry.social_posted_at),
        'error_message': entry.error_message,
        'retry_count': entry.retry_count,
        'created_at': _iso(entry.created_at),
        'updated_at': _iso(entry.updated_at),
    }


def get_queue(status=None, page: int = 1, per_page: int = 20) -> dict:
    """
    Paginated queue entries, newest first.

    Returns:
        {'data': [...], 'meta': {'current_page', 'total_pages', 'total_items', 'per_page'}}

    Raises:
        ValueError: unknown status filter
    """
    page = max(page, 1)
    per_page = max(per_page, 1)
    status = parse_status(status) if status else None

    session = SessionLocal()
    try:
        query = session.query(AutomationQueueItem)
        if status is not None:
            query = query.filter(AutomationQueueItem.status == status)

        total = query.count()
        entries = query.order_by(
            AutomationQueueItem.created_at.desc()
        ).offset((page - 1) * per_page).limit(per_page).all()

        return {
            'data': [serialize_queue_item(e) for e in entries],
            'meta': {
                'current_page': page,
                'total_pages': math.ceil(total / per_page),
                'total_items': total,
                'per_page': per_page,
            }
        }
    finally:
        session.close()
