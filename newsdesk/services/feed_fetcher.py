"""
RSS Feed Fetcher Service

Fetches and parses RSS/Atom feeds using httpx + feedparser, with a
BeautifulSoup fallback for non-standard XML. Runs every entry through the
category classifier and relevance filter, stores the survivors as
IngestedItems and keeps per-source health state up to date.
"""

import logging
import os
import sys
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Optional

import feedparser
import httpx
from bs4 import BeautifulSoup
from sqlalchemy import exists, func

from newsdesk.database import SessionLocal
from newsdesk.models import (
    AutomationQueueItem, Category, FeedSource, IngestedItem, ItemStatus, SourceStatus,
    as_utc, get_by_id, utcnow,
)
from newsdesk.services.category_classifier import classify_article, is_mixed_category
from newsdesk.services.relevance_filter import (
    FilterAction, FilterItem, FilterStatus, RelevanceFilter, get_relevance_filter,
)
from newsdesk.services.text_normalizer import hash_title, resolve_url, strip_html, truncate_excerpt

logger = logging.getLogger(__name__)


def _log_rss(msg: str):
    """Log RSS progress with immediate flush."""
    full_msg = f"RSS: {msg}"
    logger.info(full_msg)
    print(full_msg, file=sys.stdout, flush=True)

# Configuration
RSS_FETCH_TIMEOUT = float(os.environ.get("RSS_FETCH_TIMEOUT", "30"))  # seconds
RSS_FETCH_DELAY = float(os.environ.get("RSS_FETCH_DELAY", "1.0"))     # seconds between sources
SOURCE_ERROR_THRESHOLD = int(os.environ.get("SOURCE_ERROR_THRESHOLD", "3"))
USER_AGENT = 'NewsdeskBot/1.0'


class FeedParseError(Exception):
    """Feed body could not be parsed by either parser."""


@dataclass
class FeedEntry:
    """One feed entry, normalized across feedparser and the fallback parser."""
    guid: Optional[str]
    link: Optional[str]
    title: str
    summary: str = ''
    body_html: str = ''
    published_at: Optional[datetime] = None
    enclosures: list = field(default_factory=list)       # [{'url', 'type'}]
    media_content: list = field(default_factory=list)    # [{'url', 'medium', 'type'}]
    media_thumbnail: list = field(default_factory=list)  # [{'url'}]


@dataclass
class FetchResult:
    success: bool
    new_articles_count: int = 0
    errors: list = field(default_factory=list)


@dataclass
class BatchFetchResult:
    sources_checked: int = 0
    total_new_articles: int = 0
    successful: int = 0
    failed: int = 0


# ============================================================================
# Download & parse
# ============================================================================

def download_feed(url: str, timeout: float = RSS_FETCH_TIMEOUT) -> bytes:
    """
    Download a feed body.

    Raises:
        httpx.HTTPError: network failure, timeout or non-2xx status
    """
    response = httpx.get(
        url,
        timeout=timeout,
        follow_redirects=True,
        headers={
            'User-Agent': USER_AGENT,
            'Accept': 'application/rss+xml, application/atom+xml, application/xml, text/xml, */*',
        }
    )
    response.raise_for_status()
    return response.content


def parse_feed(content: bytes) -> list[FeedEntry]:
    """
    Parse a feed body into entries.

    feedparser handles RSS/Atom; when it finds nothing the fallback parser
    tries <item>, <entry> and sitemap <url> elements.

    Raises:
        FeedParseError: neither parser produced entries from a malformed body
    """
    result = feedparser.parse(content)
    entries = [_entry_from_feedparser(e) for e in result.get('entries', [])]

    if result.get('bozo'):
        # feedparser often recovers partial data
        logger.warning(f"Feed parsing issue: {result.get('bozo_exception')}")

    if entries:
        return entries

    entries = parse_non_standard_feed(content)
    if entries:
        logger.info(f"Fallback parser recovered {len(entries)} entries")
        return entries

    if result.get('bozo'):
        raise FeedParseError(f"Could not parse feed: {result.get('bozo_exception')}")

    return []


def _entry_from_feedparser(entry) -> FeedEntry:
    body_html = ''
    entry_content = entry.get('content')
    if entry_content:
        body_html = entry_content[0].get('value', '')

    enclosures = []
    for enclosure in entry.get('enclosures', []):
        enclosures.append({
            'url': enclosure.get('href') or enclosure.get('url'),
            'type': enclosure.get('type', ''),
        })

    return FeedEntry(
        guid=(entry.get('id') or '').strip() or None,
        link=(entry.get('link') or '').strip() or None,
        title=(entry.get('title') or '').strip(),
        summary=entry.get('summary') or entry.get('description') or '',
        body_html=body_html,
        published_at=_struct_to_datetime(entry.get('published_parsed') or entry.get('updated_parsed')),
        enclosures=enclosures,
        media_content=list(entry.get('media_content', [])),
        media_thumbnail=list(entry.get('media_thumbnail', [])),
    )


def _struct_to_datetime(parsed) -> Optional[datetime]:
    if not parsed:
        return None
    try:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    except (TypeError, ValueError):
        return None


def _parse_date_string(value: Optional[str]) -> Optional[datetime]:
    """RFC 822 (RSS) or ISO 8601 (Atom, sitemaps) date string to aware UTC."""
    if not value:
        return None
    value = value.strip()

    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        parsed = None

    if parsed is None:
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_non_standard_feed(content: bytes) -> list[FeedEntry]:
    """
    Fallback parser for non-standard XML feeds.

    Handles <channel><item>, <feed><entry> and sitemap-style <urlset><url>.
    """
    soup = BeautifulSoup(content, 'xml')

    nodes = soup.find_all('item')
    is_atom = False
    if not nodes:
        nodes = soup.find_all('entry')
        is_atom = bool(nodes)
    if not nodes:
        nodes = soup.find_all('url')

    entries = []
    for node in nodes:
        entry = _entry_from_xml_node(node, is_atom)
        if entry:
            entries.append(entry)
    return entries


def _node_text(node, *names) -> str:
    for name in names:
        child = node.find(name)
        if child is not None and child.get_text(strip=True):
            return child.get_text(strip=True)
    return ''


def _entry_from_xml_node(node, is_atom: bool) -> Optional[FeedEntry]:
    if is_atom:
        link_tag = node.find('link', href=True)
        link = link_tag['href'].strip() if link_tag else ''
    else:
        link = _node_text(node, 'link', 'loc')

    title = _node_text(node, 'title', 'news:title')
    if not title and not link:
        return None

    guid = _node_text(node, 'guid', 'id') or None
    description = _node_text(node, 'description', 'summary', 'content', 'encoded')

    enclosures = [
        {'url': tag.get('url'), 'type': tag.get('type', '')}
        for tag in node.find_all('enclosure') if tag.get('url')
    ]
    media_content = [
        {'url': tag.get('url'), 'medium': tag.get('medium', ''), 'type': tag.get('type', '')}
        for tag in node.find_all('media:content') if tag.get('url')
    ]
    media_thumbnail = [
        {'url': tag.get('url')}
        for tag in node.find_all('media:thumbnail') if tag.get('url')
    ]
    image_loc = _node_text(node, 'image:loc')
    if image_loc:
        media_content.append({'url': image_loc, 'medium': 'image', 'type': ''})

    return FeedEntry(
        guid=guid,
        link=link or None,
        title=title,
        summary=description,
        published_at=_parse_date_string(
            _node_text(node, 'pubDate', 'published', 'updated', 'lastmod', 'news:publication_date')
        ),
        enclosures=enclosures,
        media_content=media_content,
        media_thumbnail=media_thumbnail,
    )


# ============================================================================
# Image extraction (enclosure -> media:content -> media:thumbnail -> <img>)
# ============================================================================

def _image_from_enclosure(entry: FeedEntry) -> Optional[str]:
    for enclosure in entry.enclosures:
        if enclosure.get('url') and (enclosure.get('type') or '').startswith('image/'):
            return enclosure['url']
    return None


def _image_from_media_content(entry: FeedEntry) -> Optional[str]:
    for media in entry.media_content:
        url = media.get('url')
        if not url:
            continue
        medium = media.get('medium') or ''
        mime = media.get('type') or ''
        # Untyped media:content is usually an image
        if medium in ('', 'image') and (not mime or mime.startswith('image/')):
            return url
    return None


def _image_from_media_thumbnail(entry: FeedEntry) -> Optional[str]:
    for thumbnail in entry.media_thumbnail:
        if thumbnail.get('url'):
            return thumbnail['url']
    return None


def _image_from_body(entry: FeedEntry) -> Optional[str]:
    for html in (entry.body_html, entry.summary):
        if not html or '<img' not in html:
            continue
        img = BeautifulSoup(html, 'html.parser').find('img', src=True)
        if img:
            return img['src']
    return None


IMAGE_EXTRACTORS = (
    _image_from_enclosure,
    _image_from_media_content,
    _image_from_media_thumbnail,
    _image_from_body,
)


def extract_image_url(entry: FeedEntry, base_url: Optional[str]) -> Optional[str]:
    """
    First image found by the ordered extractor chain, resolved to an absolute URL.
    """
    for extractor in IMAGE_EXTRACTORS:
        candidate = extractor(entry)
        if candidate:
            resolved = resolve_url(candidate, base_url)
            if resolved:
                return resolved
    return None


# ============================================================================
# Fetch a source
# ============================================================================

def _record_source_failure(session, source_id, message: str):
    """Increment the error counter; flip to ERROR at the threshold."""
    try:
        source = get_by_id(session, FeedSource, source_id)
        if source is None:
            return
        source.error_count = (source.error_count or 0) + 1
        source.last_error = message[:1000]
        if source.error_count >= SOURCE_ERROR_THRESHOLD:
            source.status = SourceStatus.ERROR
            logger.warning(
                f"Source '{source.name}' moved to ERROR after {source.error_count} consecutive failures"
            )
        session.commit()
    except Exception as e:
        session.rollback()
        logger.error(f"Failed to record error state for source {source_id}: {e}")


def _resolve_category(session, source: FeedSource, title: str, excerpt: str):
    """
    Category id and slug for an entry.

    Mixed sources classify per item; others inherit the declared category.
    """
    source_slug = source.category.slug if source.category else None

    if not is_mixed_category(source_slug):
        return source.category_id, source_slug

    classification = classify_article(title, excerpt)
    if not classification.category_slug:
        return None, source_slug

    category = session.query(Category).filter(
        Category.slug == classification.category_slug
    ).first()
    return (category.id if category else None), classification.category_slug


def fetch_feed(source_id, relevance_filter: Optional[RelevanceFilter] = None) -> FetchResult:
    """
    Fetch one feed source and store new items.

    Never raises for network or parse problems: they are returned in
    FetchResult.errors and recorded on the source.

    Args:
        source_id: FeedSource id
        relevance_filter: Filter instance (defaults to the process-wide one)

    Returns:
        FetchResult(success, new_articles_count, errors)
    """
    relevance_filter = relevance_filter or get_relevance_filter()
    session = SessionLocal()
    errors = []
    new_count = 0

    try:
        source = get_by_id(session, FeedSource, source_id)
        if source is None:
            return FetchResult(success=False, errors=[f"Source {source_id} not found"])
        if not source.is_active:
            return FetchResult(success=False, errors=[f"Source '{source.name}' is inactive"])
        if source.status != SourceStatus.ACTIVE:
            return FetchResult(
                success=False,
                errors=[f"Source '{source.name}' is in error state: {source.last_error or 'unknown error'}"]
            )

        _log_rss(f"Fetching feed: {source.name} ({source.feed_url})")
        fetch_start = time.time()
        try:
            entries = parse_feed(download_feed(source.feed_url))
        except (httpx.HTTPError, FeedParseError) as e:
            message = f"Feed fetch failed: {e}"
            logger.error(f"RSS fetch error for {source.feed_url}: {e}")
            _record_source_failure(session, source.id, message)
            return FetchResult(success=False, errors=[message])
        _log_rss(f"Parsed {len(entries)} entries from {source.name} in {time.time() - fetch_start:.1f}s")

        base_url = source.website_url or source.feed_url
        seen_guids = set()
        seen_hashes = set()
        stored_ids = set()

        for entry in entries:
            guid = entry.guid or entry.link
            if not guid:
                errors.append("Skipped entry without guid or link")
                logger.warning(f"Skipping entry without identifier from {source.name}: {entry.title[:60]}")
                continue

            title_hash = hash_title(entry.title)

            # Idempotent re-fetch: guid, then (title_hash, source)
            if guid in seen_guids or title_hash in seen_hashes:
                continue
            guid_exists = session.query(
                exists().where(IngestedItem.guid == guid)
            ).scalar()
            if guid_exists:
                continue
            title_exists = session.query(
                exists().where(
                    IngestedItem.title_hash == title_hash,
                    IngestedItem.source_id == source.id
                )
            ).scalar()
            if title_exists:
                continue

            plain_text = strip_html(entry.summary or entry.body_html)
            category_id, category_slug = _resolve_category(session, source, entry.title, plain_text)
            item_id = uuid.uuid4()
            now = utcnow()
            published_at = entry.published_at or now

            result = relevance_filter.evaluate(FilterItem(
                item_id=item_id,
                guid=guid,
                title=entry.title,
                excerpt=plain_text,
                link=entry.link,
                published_at=published_at,
                source_id=source.id,
                source_name=source.name,
                source_url=base_url,
                category_slug=category_slug,
                auto_approve=source.auto_approve,
                tier_override=source.tier,
            ))

            if result.status == FilterStatus.REJECTED:
                logger.info(f"Rejected: {entry.title[:40]}... ({result.reasoning})")
                continue

            item = IngestedItem(
                id=item_id,
                guid=guid,
                title=entry.title[:500],
                title_hash=title_hash,
                excerpt=truncate_excerpt(entry.summary or entry.body_html),
                source_url=entry.link or '',
                image_url=extract_image_url(entry, base_url),
                published_at=published_at,
                fetched_at=now,
                source_id=source.id,
                category_id=category_id,
                filter_status=result.status.value,
                filter_score=result.relevance_score,
                filter_tier=result.tier,
                filter_reasoning=result.reasoning,
            )

            if result.status == FilterStatus.MERGED:
                # Kept as a rejected variant so re-fetches stay idempotent
                merge_target = result.merge_with_id
                if merge_target not in stored_ids and get_by_id(session, IngestedItem, merge_target) is None:
                    merge_target = None
                item.status = ItemStatus.REJECTED
                item.merged_into_id = merge_target
                logger.info(f"Merged: {entry.title[:40]}... into {result.merge_with_id}")
            elif result.action == FilterAction.PUBLISH:
                item.status = ItemStatus.APPROVED
                item.approved_at = now
                new_count += 1
            else:
                item.status = ItemStatus.PENDING
                new_count += 1
                if result.status == FilterStatus.FLAGGED:
                    logger.info(f"Flagged for review: {entry.title[:40]}... ({result.reasoning})")

            session.add(item)
            seen_guids.add(guid)
            seen_hashes.add(title_hash)
            stored_ids.add(item_id)

        # Successful fetch resets the error state
        source.last_fetched_at = utcnow()
        source.error_count = 0
        source.last_error = None
        source.status = SourceStatus.ACTIVE
        session.commit()

        _log_rss(f"Completed {source.name}: {new_count} new articles")
        return FetchResult(success=True, new_articles_count=new_count, errors=errors)

    except Exception as e:
        session.rollback()
        logger.error(f"Error fetching source {source_id}: {e}")
        _record_source_failure(session, source_id, str(e))
        return FetchResult(success=False, errors=[str(e)])
    finally:
        session.close()


def _is_due(source: FeedSource, now: datetime) -> bool:
    last_fetched = as_utc(source.last_fetched_at)
    if last_fetched is None:
        return True
    return now - last_fetched >= timedelta(minutes=source.fetch_interval or 0)


def fetch_all_active_feeds(relevance_filter: Optional[RelevanceFilter] = None) -> BatchFetchResult:
    """
    Fetch every active source whose fetch interval has elapsed.

    Sources are fetched sequentially with RSS_FETCH_DELAY between them; one
    source failing never aborts the batch.
    """
    relevance_filter = relevance_filter or get_relevance_filter()
    relevance_filter.clear_burst_tracking()

    _log_rss("Querying active sources...")
    session = SessionLocal()
    try:
        now = utcnow()
        sources = session.query(FeedSource).filter(
            FeedSource.status == SourceStatus.ACTIVE,
            FeedSource.is_active == True  # noqa: E712
        ).all()
        due = [(s.id, s.name) for s in sources if _is_due(s, now)]
    finally:
        session.close()

    stats = BatchFetchResult(sources_checked=len(due))
    if not due:
        _log_rss("No sources due for fetching")
        return stats

    _log_rss(f"{len(due)} of {len(sources)} active sources due")

    for idx, (source_id, name) in enumerate(due):
        _log_rss(f"[{idx + 1}/{len(due)}] Processing source '{name}'...")
        try:
            result = fetch_feed(source_id, relevance_filter)
        except Exception as e:
            logger.error(f"Unexpected error fetching source '{name}': {e}")
            stats.failed += 1
        else:
            if result.success:
                stats.successful += 1
                stats.total_new_articles += result.new_articles_count
            else:
                stats.failed += 1

        if idx < len(due) - 1 and RSS_FETCH_DELAY > 0:
            time.sleep(RSS_FETCH_DELAY)

    _log_rss(
        f"Fetch complete: {stats.sources_checked} sources "
        f"({stats.successful} ok, {stats.failed} failed), {stats.total_new_articles} new articles"
    )
    return stats


# ============================================================================
# Retention & operations
# ============================================================================

def cleanup_old_articles(days_old: int = 30) -> int:
    """
    Hard-delete PENDING/REJECTED/EXPIRED items published before the cutoff.

    Items that entered the automation queue are kept.

    Returns:
        Number of deleted items
    """
    cutoff = utcnow() - timedelta(days=days_old)
    session = SessionLocal()
    try:
        # Merged variants point at items about to be deleted
        doomed = session.query(IngestedItem.id).filter(
            IngestedItem.published_at < cutoff,
            IngestedItem.status.in_([ItemStatus.PENDING, ItemStatus.REJECTED, ItemStatus.EXPIRED]),
            ~exists().where(AutomationQueueItem.ingested_item_id == IngestedItem.id)
        )
        doomed_ids = [row.id for row in doomed]
        if not doomed_ids:
            logger.info("Cleaned up 0 old articles")
            return 0

        session.query(IngestedItem).filter(
            IngestedItem.merged_into_id.in_(doomed_ids)
        ).update({IngestedItem.merged_into_id: None}, synchronize_session=False)

        deleted = session.query(IngestedItem).filter(
            IngestedItem.id.in_(doomed_ids)
        ).delete(synchronize_session=False)
        session.commit()

        logger.info(f"Cleaned up {deleted} old articles (older than {days_old} days)")
        return deleted
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def expire_old_articles(days_old: int = 60) -> int:
    """
    Move APPROVED items published before the cutoff to EXPIRED.

    Returns:
        Number of expired items
    """
    cutoff = utcnow() - timedelta(days=days_old)
    session = SessionLocal()
    try:
        expired = session.query(IngestedItem).filter(
            IngestedItem.published_at < cutoff,
            IngestedItem.status == ItemStatus.APPROVED
        ).update({IngestedItem.status: ItemStatus.EXPIRED}, synchronize_session=False)
        session.commit()

        logger.info(f"Expired {expired} old articles (older than {days_old} days)")
        return expired
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def reactivate_source(source_id) -> bool:
    """
    Operator reset of a source in ERROR state.

    Returns:
        True if the source exists
    """
    session = SessionLocal()
    try:
        source = get_by_id(session, FeedSource, source_id)
        if source is None:
            return False
        source.status = SourceStatus.ACTIVE
        source.error_count = 0
        source.last_error = None
        session.commit()
        logger.info(f"Reactivated source '{source.name}'")
        return True
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_rss_stats() -> dict:
    """Source and item counts for monitoring."""
    session = SessionLocal()
    try:
        source_counts = dict(
            session.query(FeedSource.status, func.count(FeedSource.id))
            .group_by(FeedSource.status).all()
        )
        item_counts = dict(
            session.query(IngestedItem.status, func.count(IngestedItem.id))
            .group_by(IngestedItem.status).all()
        )
        return {
            'total_sources': sum(source_counts.values()),
            'active_sources': source_counts.get(SourceStatus.ACTIVE, 0),
            'error_sources': source_counts.get(SourceStatus.ERROR, 0),
            'total_articles': sum(item_counts.values()),
            'pending_articles': item_counts.get(ItemStatus.PENDING, 0),
            'approved_articles': item_counts.get(ItemStatus.APPROVED, 0),
            'rejected_articles': item_counts.get(ItemStatus.REJECTED, 0),
            'expired_articles': item_counts.get(ItemStatus.EXPIRED, 0),
        }
    finally:
        session.close()
