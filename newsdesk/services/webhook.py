"""
Publish Webhook Service

Fire-and-forget "new article published" notification to the external
social-posting workflow (n8n). Delivery failures are logged and never
reach the publishing code path.
"""

import logging
import os
import threading
from typing import Optional

import httpx

from newsdesk.database import SessionLocal
from newsdesk.models import Article, ArticleStatus, as_utc, get_by_id

logger = logging.getLogger(__name__)

# Configuration
N8N_WEBHOOK_URL = os.environ.get("N8N_WEBHOOK_URL", "")
WEBHOOK_TIMEOUT = float(os.environ.get("WEBHOOK_TIMEOUT", "5"))  # seconds
SITE_URL = os.environ.get("SITE_URL", "http://localhost:3000").rstrip('/')
WEBHOOK_SOURCE_HEADER = "newsdesk-backend"


def build_article_payload(article: Article) -> dict:
    """JSON body describing a published article."""
    published_at = as_utc(article.published_at)
    return {
        'id': str(article.id),
        'title': article.title,
        'slug': article.slug,
        'excerpt': article.excerpt,
        'content': article.content,
        'imageUrl': article.image_url,
        'category': article.category.name if article.category else 'news',
        'publishedAt': published_at.isoformat() if published_at else None,
        'sourceUrl': f"{SITE_URL}/article/{article.slug}",
        'isBreaking': article.is_breaking,
    }


def notify_new_article(article_id, webhook_url: Optional[str] = None) -> bool:
    """
    POST a published article to the webhook.

    Args:
        article_id: Article id
        webhook_url: Override for N8N_WEBHOOK_URL

    Returns:
        True if the webhook accepted the payload
    """
    webhook_url = webhook_url or N8N_WEBHOOK_URL
    if not webhook_url:
        logger.debug("N8N_WEBHOOK_URL not set, skipping publish webhook")
        return False

    session = SessionLocal()
    try:
        article = get_by_id(session, Article, article_id)
        if article is None:
            logger.error(f"Webhook: article not found for ID {article_id}")
            return False
        if article.status != ArticleStatus.PUBLISHED:
            return False
        payload = build_article_payload(article)
    finally:
        session.close()

    try:
        logger.info(f"Webhook: triggering n8n for '{payload['title'][:60]}'")
        response = httpx.post(
            webhook_url,
            json=payload,
            timeout=WEBHOOK_TIMEOUT,
            headers={'X-Source': WEBHOOK_SOURCE_HEADER},
        )
        response.raise_for_status()
        logger.info("Webhook: delivered to n8n")
        return True
    except httpx.HTTPError as e:
        logger.error(f"Webhook: failed delivery for article {article_id}: {e}")
        return False


def _notify_safely(article_id):
    try:
        notify_new_article(article_id)
    except Exception as e:
        logger.error(f"Webhook: unexpected error for article {article_id}: {e}")


def dispatch_new_article(article_id) -> threading.Thread:
    """
    Send the publish webhook on a daemon thread.

    Returns immediately; errors are logged by the worker.
    """
    worker = threading.Thread(
        target=_notify_safely,
        args=(article_id,),
        name=f"webhook-{article_id}",
        daemon=True,
    )
    worker.start()
    return worker
