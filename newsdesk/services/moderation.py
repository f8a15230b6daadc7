"""
Manual moderation of ingested items.

Approval is the entry point to the automation pipeline for items from
sources without auto-approve. Editors can also have the model rewrite an
item's title and excerpt ahead of approval; the automation stage prefers
those rewritten fields over the feed text.
"""

import logging
import os
import time
from typing import Optional

from newsdesk.database import SessionLocal
from newsdesk.models import IngestedItem, ItemStatus, get_by_id, utcnow
from newsdesk.services.ai_rewriter import rewrite_article
from newsdesk.services.automation import start_automation

logger = logging.getLogger(__name__)

# Configuration
AI_REWRITE_DELAY = float(os.environ.get("AI_REWRITE_DELAY", "0.5"))  # seconds between model calls
MAX_BULK_REWRITE = 10


def approve_item(item_id, automate: bool = False, process_now: bool = True) -> Optional[dict]:
    """
    Approve an ingested item, optionally queueing it for automation.

    Args:
        item_id: IngestedItem id
        automate: Start the automation pipeline after approval
        process_now: Passed to start_automation()

    Returns:
        {'item_id', 'status', 'queue_id'}, or None if the item does not exist

    Raises:
        AutomationPreconditionError: automate=True and the item is already queued
    """
    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_id)
        if item is None:
            return None

        if item.status != ItemStatus.APPROVED:
            item.status = ItemStatus.APPROVED
            item.approved_at = utcnow()
            session.commit()
            logger.info(f"Approved item: {item.title[:60]}")
        item_key = str(item.id)
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    queue_id = start_automation(item_key, process_now=process_now) if automate else None
    return {'item_id': item_key, 'status': ItemStatus.APPROVED.value, 'queue_id': queue_id}


def reject_item(item_id) -> bool:
    """Returns False if the item does not exist."""
    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_id)
        if item is None:
            return False

        item.status = ItemStatus.REJECTED
        item.approved_at = None
        session.commit()
        logger.info(f"Rejected item: {item.title[:60]}")
        return True
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def rewrite_item(item_id) -> Optional[dict]:
    """
    Rewrite an item's title and excerpt with the AI model and store them.

    The scraped body is sent when available, otherwise the feed excerpt.
    Nothing is written when the model server is unreachable.

    Returns:
        {'item_id', 'success', 'rewritten_title', 'rewritten_excerpt', 'degraded'}
        on success, {'item_id', 'success': False, 'error'} when the model is
        unavailable, or None if the item does not exist
    """
    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_id)
        if item is None:
            return None
        item_key = str(item.id)
        title = item.title
        source_text = item.full_content or item.excerpt or ''
    finally:
        session.close()

    result = rewrite_article(title, source_text)
    if result is None:
        logger.warning(f"Rewrite skipped for {item_key}: AI unavailable")
        return {'item_id': item_key, 'success': False, 'error': 'AI rewrite unavailable'}

    session = SessionLocal()
    try:
        item = get_by_id(session, IngestedItem, item_key)
        if item is None:
            return None
        item.rewritten_title = result.rewritten_title[:500]
        item.rewritten_excerpt = result.rewritten_excerpt
        session.commit()
        logger.info(f"Rewrote item: {title[:60]}")
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    return {
        'item_id': item_key,
        'success': True,
        'rewritten_title': result.rewritten_title[:500],
        'rewritten_excerpt': result.rewritten_excerpt,
        'degraded': result.degraded,
    }


def rewrite_items(item_ids: list) -> dict:
    """
    Rewrite up to MAX_BULK_REWRITE items, pausing AI_REWRITE_DELAY between calls.

    One item's failure does not stop the batch.

    Returns:
        {'success_count', 'total_count', 'results': [{'id', 'success', 'error'?}]}

    Raises:
        ValueError: empty list or more than MAX_BULK_REWRITE ids
    """
    if not item_ids:
        raise ValueError("ids must contain at least one item id")
    if len(item_ids) > MAX_BULK_REWRITE:
        raise ValueError(f"At most {MAX_BULK_REWRITE} items can be rewritten at once")

    results = []
    success_count = 0
    for idx, item_id in enumerate(item_ids):
        try:
            outcome = rewrite_item(item_id)
        except Exception as e:
            logger.error(f"Rewrite failed for {item_id}: {e}")
            results.append({'id': str(item_id), 'success': False, 'error': str(e)})
        else:
            if outcome is None:
                results.append({'id': str(item_id), 'success': False, 'error': 'Item not found'})
            elif outcome['success']:
                success_count += 1
                results.append({'id': outcome['item_id'], 'success': True})
            else:
                results.append({'id': outcome['item_id'], 'success': False, 'error': outcome['error']})

        if idx < len(item_ids) - 1 and AI_REWRITE_DELAY > 0:
            time.sleep(AI_REWRITE_DELAY)

    logger.info(f"Bulk rewrite complete: {success_count}/{len(item_ids)} successful")
    return {'success_count': success_count, 'total_count': len(item_ids), 'results': results}
