"""
Integration tests for manual approve / reject and AI rewrite of ingested items.
"""

from unittest.mock import call, patch

import pytest

from newsdesk.models import AutomationQueueItem, IngestedItem, ItemStatus
from newsdesk.services.automation import AutomationPreconditionError
from newsdesk.services import moderation
from newsdesk.services.ai_rewriter import RewriteResult
from newsdesk.services.moderation import approve_item, reject_item, rewrite_item, rewrite_items
from tests.fixtures.sample_data import create_feed_source, create_ingested_item


@pytest.fixture
def pending_item_id(db_session):
    source = create_feed_source()
    db_session.add(source)
    db_session.flush()
    item = create_ingested_item(source.id)
    db_session.add(item)
    db_session.commit()
    return item.id


def _item(db_session, item_id):
    db_session.expire_all()
    return db_session.get(IngestedItem, item_id)


def test_approve_without_automation(db_session, pending_item_id):
    result = approve_item(pending_item_id)

    assert result == {'item_id': str(pending_item_id), 'status': 'approved', 'queue_id': None}
    item = _item(db_session, pending_item_id)
    assert item.status == ItemStatus.APPROVED
    assert item.approved_at is not None
    assert db_session.query(AutomationQueueItem).count() == 0


@patch('newsdesk.services.moderation.start_automation')
def test_approve_and_automate(mock_start, db_session, pending_item_id):
    mock_start.return_value = 'queue-1'

    result = approve_item(pending_item_id, automate=True, process_now=False)

    assert result['queue_id'] == 'queue-1'
    mock_start.assert_called_once_with(str(pending_item_id), process_now=False)


def test_approve_and_automate_twice_is_refused(db_session, pending_item_id):
    approve_item(pending_item_id, automate=True, process_now=False)

    with pytest.raises(AutomationPreconditionError):
        approve_item(pending_item_id, automate=True, process_now=False)

    assert db_session.query(AutomationQueueItem).count() == 1


def test_approve_unknown_item():
    assert approve_item("missing") is None


def test_reject(db_session, pending_item_id):
    approve_item(pending_item_id)

    assert reject_item(pending_item_id) is True

    item = _item(db_session, pending_item_id)
    assert item.status == ItemStatus.REJECTED
    assert item.approved_at is None


def test_reject_unknown_item():
    assert reject_item("00000000-0000-0000-0000-000000000000") is False


class TestRewriteItem:

    @patch('newsdesk.services.moderation.rewrite_article')
    def test_stores_rewritten_fields(self, mock_rewrite, db_session, pending_item_id):
        mock_rewrite.return_value = RewriteResult(
            rewritten_title='عنوان معاد صياغته', rewritten_excerpt='مقتطف معاد صياغته',
        )

        result = rewrite_item(pending_item_id)

        assert result['success'] is True
        assert result['rewritten_title'] == 'عنوان معاد صياغته'
        item = _item(db_session, pending_item_id)
        assert item.rewritten_title == 'عنوان معاد صياغته'
        assert item.rewritten_excerpt == 'مقتطف معاد صياغته'

    @patch('newsdesk.services.moderation.rewrite_article')
    def test_prefers_scraped_content(self, mock_rewrite, db_session, pending_item_id):
        item = _item(db_session, pending_item_id)
        item.full_content = 'النص الكامل للخبر من صفحة المصدر'
        db_session.commit()
        mock_rewrite.return_value = RewriteResult(rewritten_title='ع', rewritten_excerpt='م')

        rewrite_item(pending_item_id)

        mock_rewrite.assert_called_once_with(item.title, 'النص الكامل للخبر من صفحة المصدر')

    @patch('newsdesk.services.moderation.rewrite_article')
    def test_falls_back_to_excerpt(self, mock_rewrite, db_session, pending_item_id):
        item = _item(db_session, pending_item_id)
        mock_rewrite.return_value = RewriteResult(rewritten_title='ع', rewritten_excerpt='م')

        rewrite_item(pending_item_id)

        mock_rewrite.assert_called_once_with(item.title, item.excerpt)

    @patch('newsdesk.services.moderation.rewrite_article', return_value=None)
    def test_ai_unavailable_writes_nothing(self, mock_rewrite, db_session, pending_item_id):
        result = rewrite_item(pending_item_id)

        assert result == {
            'item_id': str(pending_item_id), 'success': False, 'error': 'AI rewrite unavailable',
        }
        item = _item(db_session, pending_item_id)
        assert item.rewritten_title is None
        assert item.rewritten_excerpt is None

    @patch('newsdesk.services.moderation.rewrite_article')
    def test_unknown_item(self, mock_rewrite):
        assert rewrite_item("00000000-0000-0000-0000-000000000000") is None
        mock_rewrite.assert_not_called()


class TestRewriteItems:

    @patch('newsdesk.services.moderation.time.sleep')
    @patch('newsdesk.services.moderation.rewrite_article')
    def test_mixed_batch(self, mock_rewrite, mock_sleep, db_session, pending_item_id, monkeypatch):
        monkeypatch.setattr(moderation, 'AI_REWRITE_DELAY', 0.5)
        mock_rewrite.side_effect = [
            RewriteResult(rewritten_title='عنوان جديد', rewritten_excerpt='مقتطف جديد'),
        ]

        result = rewrite_items([pending_item_id, "00000000-0000-0000-0000-000000000000"])

        assert result['success_count'] == 1
        assert result['total_count'] == 2
        assert result['results'][0] == {'id': str(pending_item_id), 'success': True}
        assert result['results'][1]['success'] is False
        assert result['results'][1]['error'] == 'Item not found'
        assert mock_sleep.call_args_list == [call(0.5)]
        assert _item(db_session, pending_item_id).rewritten_title == 'عنوان جديد'

    @patch('newsdesk.services.moderation.rewrite_article', side_effect=RuntimeError("model crashed"))
    def test_item_error_does_not_stop_batch(self, mock_rewrite, db_session, pending_item_id):
        result = rewrite_items([pending_item_id, pending_item_id])

        assert result['success_count'] == 0
        assert [r['error'] for r in result['results']] == ['model crashed', 'model crashed']
        assert mock_rewrite.call_count == 2

    def test_rejects_empty_and_oversized_batches(self):
        with pytest.raises(ValueError):
            rewrite_items([])
        with pytest.raises(ValueError):
            rewrite_items([f"id-{n}" for n in range(11)])
