"""
Content Scraper Service

Fetches full article bodies from source URLs for ingested items.

Extraction order:
1. Site-specific selectors for known outlets
2. Universal article selectors
3. readability-lxml generic extraction
"""

import logging
import os
import random
import re
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup
from lxml import html as lxml_html
from readability import Document

from newsdesk.database import SessionLocal
from newsdesk.models import IngestedItem, ItemStatus, get_by_id, utcnow
from newsdesk.services.text_normalizer import host_matches, resolve_url

logger = logging.getLogger(__name__)

# Configuration
SCRAPE_TIMEOUT = float(os.environ.get("SCRAPE_TIMEOUT", "15"))  # seconds
SCRAPE_DELAY = float(os.environ.get("SCRAPE_DELAY", "1.5"))     # seconds between articles
MAX_RETRIES = 3
RETRY_BASE_DELAY = 1.0  # seconds, doubled each attempt

# Shorter results are treated as extraction failures
MIN_CONTENT_LENGTH = 100

USER_AGENTS = [
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:122.0) Gecko/20100101 Firefox/122.0',
    'Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/121.0.0.0 Safari/537.36',
    'Mozilla/5.0 (iPhone; CPU iPhone OS 17_2_1 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1',
]

# Content containers and noise for major Arabic outlets (matched on hostname)
SITE_CONFIGS = {
    'aljazeera.net': {
        'content': '.wysiwyg--all-content, .article-p-wrapper',
        'remove': ['.article-aside', '.social-buttons', '.related-articles', 'script', 'style'],
    },
    'bbc.com': {
        'content': 'article [data-component="text-block"], main article',
        'remove': ['[data-component="links-block"]', 'script', 'style'],
    },
    'alarabiya.net': {
        'content': '.article-text, .article_text',
        'remove': ['.related-news', '.social-share', 'script', 'style'],
    },
    'skynewsarabia.com': {
        'content': '.article-body, .ArticleBody',
        'remove': ['.related-articles', 'script', 'style'],
    },
    'rt.com': {
        'content': '.article__text, .article-body',
        'remove': ['.article__share', 'script', 'style'],
    },
    'france24.com': {
        'content': '.t-content__body, .article__text',
        'remove': ['.m-interstitial', 'script', 'style'],
    },
    'koraplus.com': {
        'content': '.article-body, .article-content, .news-content, .post-content',
        'remove': ['.related-articles', '.social-share', '.ads', 'script', 'style'],
    },
}

# Common article content selectors for unknown sites (tried in order)
UNIVERSAL_CONTENT_SELECTORS = [
    'article',
    '.article-body',
    '.article-content',
    '.post-content',
    '.entry-content',
    '.news-content',
    '.story-body',
    '.content-body',
    '[itemprop="articleBody"]',
    'main article',
    '.main-content article',
]

NOISE_SELECTORS = (
    'script, style, nav, header, footer, aside, form, iframe, '
    '.sidebar, .ads, .comments, .social-share, .related-articles'
)


@dataclass
class ScrapeResult:
    success: bool
    content: Optional[str] = None
    error: Optional[str] = None


# ============================================================================
# Fetching
# ============================================================================

def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def fetch_page_html(url: str, retries: int = MAX_RETRIES) -> Optional[str]:
    """
    Fetch a page with a rotating user agent and exponential backoff.

    Returns:
        Page HTML, or None once all attempts failed
    """
    for attempt in range(retries):
        try:
            response = httpx.get(
                url,
                timeout=SCRAPE_TIMEOUT,
                follow_redirects=True,
                headers={
                    'User-Agent': get_random_user_agent(),
                    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
                    'Accept-Language': 'ar,en-US;q=0.9,en;q=0.8',
                    'Referer': 'https://www.google.com/',
                }
            )
            response.raise_for_status()
            if response.text:
                return response.text
            logger.warning(f"Empty response body from {url}")
        except httpx.HTTPStatusError as e:
            logger.warning(f"Attempt {attempt + 1}/{retries} failed for {url}: HTTP {e.response.status_code}")
        except httpx.RequestError as e:
            logger.warning(f"Attempt {attempt + 1}/{retries} failed for {url}: {e}")

        if attempt < retries - 1:
            time.sleep(RETRY_BASE_DELAY * (2 ** (attempt + 1)))

    return None


# ============================================================================
# Extraction
# ============================================================================

def get_site_config(url: str) -> Optional[dict]:
    """Selector config for a known outlet, matched on hostname."""
    try:
        hostname = urlparse(url).hostname or ''
    except ValueError:
        return None

    if hostname.startswith('www.'):
        hostname = hostname[4:]

    for domain, config in SITE_CONFIGS.items():
        if host_matches(hostname, domain):
            return config
    return None


def _paragraphs(element, min_length: int) -> list[str]:
    paragraphs = []
    for p in element.find_all('p'):
        text = _clean_text(p.get_text(separator=' ', strip=True))
        if len(text) > min_length:
            paragraphs.append(text)
    return paragraphs


def _clean_text(text: str) -> str:
    """Collapse whitespace within a block of text."""
    return re.sub(r'\s+', ' ', text).strip()


def extract_with_selectors(html: str, config: dict) -> Optional[str]:
    """
    Paragraph text from a site-specific content container.

    Falls back to the container's full text when it has no usable <p>.
    """
    soup = BeautifulSoup(html, 'html.parser')
    for selector in config.get('remove', []):
        for tag in soup.select(selector):
            tag.decompose()

    containers = soup.select(config['content'])
    if not containers:
        return None

    paragraphs = []
    for container in containers:
        paragraphs.extend(_paragraphs(container, 20))
    if paragraphs:
        return '\n\n'.join(paragraphs)

    text = _clean_text(' '.join(c.get_text(separator=' ', strip=True) for c in containers))
    return text or None


def extract_with_universal_selectors(html: str) -> Optional[str]:
    """First common article container holding at least two real paragraphs."""
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup.select(NOISE_SELECTORS):
        tag.decompose()

    for selector in UNIVERSAL_CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is None:
            continue
        paragraphs = _paragraphs(element, 30)
        if len(paragraphs) >= 2:
            logger.debug(f"Found content with selector: {selector}")
            return '\n\n'.join(paragraphs)

    return None


def extract_with_readability(html: str) -> Optional[str]:
    """Generic main-content extraction for unknown layouts."""
    try:
        summary_html = Document(html).summary()
        tree = lxml_html.fromstring(summary_html)
    except Exception as e:
        logger.warning(f"Readability extraction failed: {e}")
        return None

    lines = [_clean_text(line) for line in tree.text_content().splitlines()]
    lines = [line for line in lines if line]
    return '\n\n'.join(lines) if lines else None


def extract_og_image(html: str, url: str) -> Optional[str]:
    """
    Larger lead image from Open Graph / Twitter meta tags, or the first
    image inside the article body.
    """
    soup = BeautifulSoup(html, 'html.parser')
    candidates = [
        soup.find('meta', attrs={'property': 'og:image'}),
        soup.find('meta', attrs={'name': 'twitter:image'}),
        soup.find('meta', attrs={'property': 'article:image'}),
    ]
    for meta in candidates:
        if meta is not None and meta.get('content'):
            resolved = resolve_url(meta['content'], url)
            if resolved:
                return resolved

    img = soup.select_one('article img[src], .article-body img[src], .post-content img[src]')
    if img is not None:
        return resolve_url(img['src'], url)

    return None


def extract_content(html: str, url: str) -> tuple[Optional[str], Optional[str]]:
    """
    Run the extraction chain.

    Returns:
        (content, method) with method one of 'site', 'universal', 'readability';
        (None, None) when nothing reached MIN_CONTENT_LENGTH
    """
    config = get_site_config(url)
    if config:
        content = extract_with_selectors(html, config)
        if content and len(content) > MIN_CONTENT_LENGTH:
            return content, 'site'

    content = extract_with_universal_selectors(html)
    if content and len(content) > MIN_CONTENT_LENGTH:
        return content, 'universal'

    content = extract_with_readability(html)
    if content and len(content) > MIN_CONTENT_LENGTH:
        return content, 'readability'

    return None, None


# ============================================================================
# Persistence
# ============================================================================

def _save_scrape_result(item_id, content: Optional[str], error: Optional[str],
                        image_url: Optional[str] = None):
    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_id)
        if item is None:
            return
        item.full_content = content
        item.content_scraped = content is not None
        item.scrape_error = error
        item.scraped_at = utcnow()
        if image_url:
            item.image_url = image_url
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def scrape_article(item_id) -> ScrapeResult:
    """
    Scrape the full body of one ingested item and persist the outcome.

    Args:
        item_id: IngestedItem id

    Returns:
        ScrapeResult(success, content, error)
    """
    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_id)
        if item is None:
            return ScrapeResult(success=False, error="Item not found")
        source_url = item.source_url
        title = item.title
    finally:
        session.close()

    if not source_url:
        return ScrapeResult(success=False, error="Item has no source URL")

    logger.info(f"Scraping: {source_url}")
    try:
        html = fetch_page_html(source_url)
        if not html:
            error = "Failed to download page"
            _save_scrape_result(item_id, None, error)
            return ScrapeResult(success=False, error=error)

        content, method = extract_content(html, source_url)
        image_url = extract_og_image(html, source_url)

        if content is None:
            error = "Failed to extract content"
            _save_scrape_result(item_id, None, error, image_url)
            logger.warning(f"Extraction failed for {source_url}")
            return ScrapeResult(success=False, error=error)

        _save_scrape_result(item_id, content, None, image_url)
        logger.info(f"Scraped {len(content)} chars via {method} for '{title[:50]}'")
        return ScrapeResult(success=True, content=content)

    except Exception as e:
        logger.error(f"Error scraping item {item_id}: {e}")
        try:
            _save_scrape_result(item_id, None, str(e)[:1000])
        except Exception as save_error:
            logger.error(f"Could not record scrape error for {item_id}: {save_error}")
        return ScrapeResult(success=False, error=str(e))


def process_scrape_queue(batch_size: int = 10) -> dict:
    """
    Scrape a batch of not-yet-scraped, not-errored items, newest first.

    Only pending and approved items are scraped; rejected rows (including
    merged variants) and expired items are never published.

    Returns:
        {'processed': int, 'successful': int}
    """
    session = SessionLocal()
    try:
        rows = session.query(IngestedItem.id).filter(
            IngestedItem.content_scraped == False,  # noqa: E712
            IngestedItem.scrape_error.is_(None),
            IngestedItem.source_url != '',
            IngestedItem.status.in_([ItemStatus.PENDING, ItemStatus.APPROVED])
        ).order_by(IngestedItem.fetched_at.desc()).limit(batch_size).all()
        item_ids = [row.id for row in rows]
    finally:
        session.close()

    if not item_ids:
        logger.info("No articles to scrape")
        return {'processed': 0, 'successful': 0}

    successful = 0
    for idx, item_id in enumerate(item_ids):
        result = scrape_article(item_id)
        if result.success:
            successful += 1
        if idx < len(item_ids) - 1 and SCRAPE_DELAY > 0:
            time.sleep(SCRAPE_DELAY)

    logger.info(f"Scrape queue complete: {successful}/{len(item_ids)} successful")
    return {'processed': len(item_ids), 'successful': successful}


def retry_failed_scrapes(limit: int = 5) -> int:
    """
    Clear the error on the oldest failed scrapes so the queue picks them up again.

    Returns:
        Number of items re-queued
    """
    session = SessionLocal()
    try:
        rows = session.query(IngestedItem.id).filter(
            IngestedItem.content_scraped == False,  # noqa: E712
            IngestedItem.scrape_error.isnot(None)
        ).order_by(IngestedItem.scraped_at.asc()).limit(limit).all()
        item_ids = [row.id for row in rows]

        if item_ids:
            session.query(IngestedItem).filter(
                IngestedItem.id.in_(item_ids)
            ).update({IngestedItem.scrape_error: None}, synchronize_session=False)
            session.commit()

        logger.info(f"Re-queued {len(item_ids)} failed scrapes")
        return len(item_ids)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
