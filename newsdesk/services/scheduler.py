"""
Scheduled job entry points.

An external scheduler (cron) triggers these; nothing here keeps timers.

    run_feed_fetch_job   every 15 minutes
    run_scrape_job       every 5 minutes
    run_expiry_job       daily
    run_cleanup_job      daily

Each job is safe to repeat, logs its own failures and returns a summary
dict with a 'success' flag instead of raising.
"""

import logging
import time

from newsdesk.services.content_scraper import process_scrape_queue
from newsdesk.services.feed_fetcher import cleanup_old_articles, expire_old_articles, fetch_all_active_feeds
from newsdesk.services.notifications import cleanup_old_notifications

logger = logging.getLogger(__name__)

DEFAULT_SCRAPE_BATCH_SIZE = 5
DEFAULT_EXPIRY_DAYS = 60
DEFAULT_CLEANUP_DAYS = 30


def run_feed_fetch_job() -> dict:
    start_time = time.time()
    logger.info("Starting RSS feed fetch...")
    try:
        result = fetch_all_active_feeds()
    except Exception as e:
        logger.error(f"RSS fetch job failed: {e}", exc_info=True)
        return {'success': False, 'error': str(e), 'duration_seconds': time.time() - start_time}

    logger.info(
        f"RSS fetch complete: {result.sources_checked} feeds, {result.total_new_articles} new articles"
    )
    return {
        'success': True,
        'sources_checked': result.sources_checked,
        'total_new_articles': result.total_new_articles,
        'successful': result.successful,
        'failed': result.failed,
        'duration_seconds': time.time() - start_time,
    }


def run_scrape_job(batch_size: int = DEFAULT_SCRAPE_BATCH_SIZE) -> dict:
    start_time = time.time()
    logger.info(f"Processing scrape queue (batch of {batch_size})...")
    try:
        result = process_scrape_queue(batch_size)
    except Exception as e:
        logger.error(f"Scrape job failed: {e}", exc_info=True)
        return {'success': False, 'error': str(e), 'duration_seconds': time.time() - start_time}

    logger.info(f"Scrape complete: {result['successful']}/{result['processed']} articles")
    return {
        'success': True,
        'processed': result['processed'],
        'successful': result['successful'],
        'duration_seconds': time.time() - start_time,
    }


def run_expiry_job(days_old: int = DEFAULT_EXPIRY_DAYS) -> dict:
    logger.info(f"Expiring approved articles older than {days_old} days...")
    try:
        expired = expire_old_articles(days_old)
    except Exception as e:
        logger.error(f"Expiry job failed: {e}", exc_info=True)
        return {'success': False, 'error': str(e)}

    return {'success': True, 'expired': expired}


def run_cleanup_job(days_old: int = DEFAULT_CLEANUP_DAYS) -> dict:
    """
    Delete stale unpublished items, then read notifications of the same age.

    The notification sweep runs even if the item cleanup failed.
    """
    logger.info(f"Cleaning up items older than {days_old} days...")
    summary = {'success': True, 'deleted_articles': 0, 'deleted_notifications': 0, 'errors': []}

    try:
        summary['deleted_articles'] = cleanup_old_articles(days_old)
    except Exception as e:
        logger.error(f"Article cleanup failed: {e}", exc_info=True)
        summary['errors'].append(f"articles: {e}")

    try:
        summary['deleted_notifications'] = cleanup_old_notifications(days_old)
    except Exception as e:
        logger.error(f"Notification cleanup failed: {e}", exc_info=True)
        summary['errors'].append(f"notifications: {e}")

    summary['success'] = not summary['errors']
    return summary
