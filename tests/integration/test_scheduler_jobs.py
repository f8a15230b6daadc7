"""
Integration tests for the scheduled job entry points.
"""

from datetime import timedelta
from unittest.mock import patch

from newsdesk.models import IngestedItem, ItemStatus, SystemNotification, utcnow
from newsdesk.services.feed_fetcher import BatchFetchResult
from newsdesk.services.scheduler import (
    run_cleanup_job, run_expiry_job, run_feed_fetch_job, run_scrape_job,
)
from tests.fixtures.sample_data import create_feed_source, create_ingested_item, create_notification


@patch('newsdesk.services.scheduler.fetch_all_active_feeds')
def test_feed_fetch_job_summary(mock_fetch):
    mock_fetch.return_value = BatchFetchResult(sources_checked=4, total_new_articles=7, successful=3, failed=1)

    result = run_feed_fetch_job()

    assert result['success'] is True
    assert result['sources_checked'] == 4
    assert result['total_new_articles'] == 7
    assert result['failed'] == 1
    assert result['duration_seconds'] >= 0


@patch('newsdesk.services.scheduler.fetch_all_active_feeds')
def test_feed_fetch_job_never_raises(mock_fetch):
    mock_fetch.side_effect = RuntimeError("database unavailable")

    result = run_feed_fetch_job()

    assert result['success'] is False
    assert 'database unavailable' in result['error']


@patch('newsdesk.services.scheduler.process_scrape_queue')
def test_scrape_job(mock_scrape):
    mock_scrape.return_value = {'processed': 5, 'successful': 4}

    result = run_scrape_job(batch_size=5)

    assert result['success'] is True
    assert result['successful'] == 4
    mock_scrape.assert_called_once_with(5)


def test_expiry_and_cleanup_jobs(db_session):
    source = create_feed_source()
    db_session.add(source)
    db_session.flush()
    old = utcnow() - timedelta(days=61)
    db_session.add_all([
        create_ingested_item(source.id, title="موافق قديم", status=ItemStatus.APPROVED, published_at=old),
        create_ingested_item(source.id, title="مرفوض قديم", status=ItemStatus.REJECTED, published_at=old),
        create_notification(is_read=True, created_at=old),
    ])
    db_session.commit()

    assert run_expiry_job(60) == {'success': True, 'expired': 1}

    result = run_cleanup_job(30)

    assert result == {'success': True, 'deleted_articles': 2, 'deleted_notifications': 1, 'errors': []}
    assert db_session.query(IngestedItem).count() == 0
    assert db_session.query(SystemNotification).count() == 0


@patch('newsdesk.services.scheduler.cleanup_old_articles')
def test_cleanup_job_reports_partial_failure(mock_cleanup):
    mock_cleanup.side_effect = RuntimeError("locked")

    result = run_cleanup_job()

    assert result['success'] is False
    assert result['errors'] == ['articles: locked']
    assert result['deleted_notifications'] == 0
