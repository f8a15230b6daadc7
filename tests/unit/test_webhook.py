"""
Unit tests for the publish webhook.
"""

from unittest.mock import patch

import httpx

from newsdesk.models import Article, ArticleStatus, utcnow
from newsdesk.services import webhook
from newsdesk.services.webhook import build_article_payload, dispatch_new_article, notify_new_article
from tests.fixtures.sample_data import create_category

WEBHOOK_URL = "https://n8n.example.com/webhook/new-article"


def _add_article(db_session, status=ArticleStatus.PUBLISHED):
    category = create_category(slug='politics', name='سياسة')
    db_session.add(category)
    db_session.flush()
    article = Article(
        title='عنوان الخبر',
        slug='unwan-alkhabar-a1b2c3',
        excerpt='ملخص',
        content='<p>نص</p>',
        image_url='https://news.example.com/lead.jpg',
        category_id=category.id,
        author_id='system',
        status=status,
        published_at=utcnow() if status == ArticleStatus.PUBLISHED else None,
    )
    db_session.add(article)
    db_session.commit()
    return article


class TestBuildArticlePayload:

    def test_payload_fields(self, db_session):
        article = _add_article(db_session)

        payload = build_article_payload(article)

        assert payload['id'] == str(article.id)
        assert payload['title'] == 'عنوان الخبر'
        assert payload['category'] == 'سياسة'
        assert payload['imageUrl'] == 'https://news.example.com/lead.jpg'
        assert payload['sourceUrl'] == f"{webhook.SITE_URL}/article/unwan-alkhabar-a1b2c3"
        assert payload['publishedAt'].endswith('+00:00')
        assert payload['isBreaking'] is False


class TestNotifyNewArticle:

    @patch('newsdesk.services.webhook.httpx.post')
    def test_no_url_configured(self, mock_post, db_session, monkeypatch):
        monkeypatch.setattr(webhook, 'N8N_WEBHOOK_URL', '')
        article = _add_article(db_session)

        assert notify_new_article(article.id) is False
        mock_post.assert_not_called()

    @patch('newsdesk.services.webhook.httpx.post')
    def test_delivers_payload(self, mock_post, db_session):
        article = _add_article(db_session)
        mock_post.return_value = httpx.Response(200, request=httpx.Request("POST", WEBHOOK_URL))

        assert notify_new_article(article.id, webhook_url=WEBHOOK_URL) is True

        args, kwargs = mock_post.call_args
        assert args[0] == WEBHOOK_URL
        assert kwargs['json']['slug'] == 'unwan-alkhabar-a1b2c3'
        assert kwargs['headers']['X-Source'] == webhook.WEBHOOK_SOURCE_HEADER

    @patch('newsdesk.services.webhook.httpx.post')
    def test_http_error_returns_false(self, mock_post, db_session):
        article = _add_article(db_session)
        mock_post.return_value = httpx.Response(500, request=httpx.Request("POST", WEBHOOK_URL))

        assert notify_new_article(article.id, webhook_url=WEBHOOK_URL) is False

    @patch('newsdesk.services.webhook.httpx.post')
    def test_draft_articles_are_skipped(self, mock_post, db_session):
        article = _add_article(db_session, status=ArticleStatus.DRAFT)

        assert notify_new_article(article.id, webhook_url=WEBHOOK_URL) is False
        mock_post.assert_not_called()

    def test_unknown_article(self):
        assert notify_new_article("missing", webhook_url=WEBHOOK_URL) is False


class TestDispatch:

    @patch('newsdesk.services.webhook.notify_new_article')
    def test_runs_on_background_thread(self, mock_notify):
        mock_notify.side_effect = RuntimeError("boom")

        worker = dispatch_new_article("some-id")
        worker.join(timeout=5)

        assert worker.daemon is True
        mock_notify.assert_called_once_with("some-id")
