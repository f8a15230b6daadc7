"""
Unit tests for full-content scraping and extraction.

HTTP is mocked at httpx.get; extraction runs on inline HTML.
"""

from unittest.mock import patch

import httpx

from newsdesk.models import IngestedItem, ItemStatus
from newsdesk.services import content_scraper
from newsdesk.services.content_scraper import (
    extract_content, extract_og_image, fetch_page_html, get_site_config, process_scrape_queue,
    retry_failed_scrapes, scrape_article,
)
from tests.fixtures.sample_data import create_feed_source, create_ingested_item

PARAGRAPH = "قالت مصادر محلية إن الأمطار الغزيرة تسببت في انقطاع الطرق الرئيسية بين المدن"

ALJAZEERA_HTML = f"""
<html><body>
  <div class="social-buttons"><p>{PARAGRAPH} شارك</p></div>
  <div class="wysiwyg--all-content">
    <p>{PARAGRAPH}</p>
    <p>{PARAGRAPH} مرة أخرى</p>
  </div>
</body></html>
"""

GENERIC_HTML = f"""
<html><head>
  <meta property="og:image" content="/images/lead.jpg">
</head><body>
  <nav><p>{PARAGRAPH} القائمة</p></nav>
  <article>
    <p>{PARAGRAPH}</p>
    <p>{PARAGRAPH} وأضافت المصادر أن فرق الإنقاذ تعمل</p>
    <p>قصير</p>
  </article>
</body></html>
"""

# No article container or known content class; only the readability tier applies
DIV_ONLY_HTML = f"""
<html><head><title>سيول في الحديدة</title></head><body>
  <div id="menu"><a href="/">الرئيسية</a> <a href="/news">أخبار</a></div>
  <div id="story-text">
    <div><p>{PARAGRAPH}, وأكدت السلطات المحلية أن فرق الدفاع المدني تواصل عملها.</p></div>
    <div><p>{PARAGRAPH}, فيما دعت الأمم المتحدة إلى تقديم المساعدات العاجلة للمتضررين.</p></div>
    <div><p>{PARAGRAPH}, وأشار سكان إلى أن المياه غمرت عشرات المنازل في الأحياء المنخفضة.</p></div>
    <div><p>{PARAGRAPH}, بينما توقعت الأرصاد استمرار هطول الأمطار خلال الأيام المقبلة.</p></div>
  </div>
  <div id="copyright">جميع الحقوق محفوظة</div>
</body></html>
"""


def _response(status_code, text="", url="https://news.example.com/a"):
    return httpx.Response(status_code, text=text, request=httpx.Request("GET", url))


class TestSiteConfig:

    def test_known_outlet_matches_hostname(self):
        assert get_site_config("https://www.aljazeera.net/news/2026/1/1/x") is not None

    def test_unknown_outlet(self):
        assert get_site_config("https://news.example.com/a") is None

    def test_subdomain_of_outlet_matches(self):
        assert get_site_config("https://arabic.rt.com/world/1") == content_scraper.SITE_CONFIGS['rt.com']

    def test_lookalike_hosts_do_not_match(self):
        assert get_site_config("https://www.sport.com/a") is None
        assert get_site_config("https://abbc.com/a") is None


class TestExtractContent:

    def test_site_selectors_for_known_outlet(self):
        content, method = extract_content(ALJAZEERA_HTML, "https://www.aljazeera.net/news/1")

        assert method == 'site'
        assert content.count(PARAGRAPH) == 2
        assert 'شارك' not in content
        assert '\n\n' in content

    def test_universal_selectors_for_unknown_site(self):
        content, method = extract_content(GENERIC_HTML, "https://news.example.com/a")

        assert method == 'universal'
        assert 'القائمة' not in content
        assert 'قصير' not in content

    def test_readability_for_plain_div_layout(self):
        content, method = extract_content(DIV_ONLY_HTML, "https://unknown.example.org/n/1")

        assert method == 'readability'
        assert PARAGRAPH in content
        assert 'فرق الدفاع المدني' in content
        assert len(content) > content_scraper.MIN_CONTENT_LENGTH

    def test_too_short_content_is_a_failure(self):
        html = "<html><body><article><p>خبر قصير</p></article></body></html>"
        assert extract_content(html, "https://news.example.com/a") == (None, None)


class TestExtractOgImage:

    def test_og_image_resolved_against_page_url(self):
        assert extract_og_image(GENERIC_HTML, "https://news.example.com/a") == \
            "https://news.example.com/images/lead.jpg"

    def test_falls_back_to_article_image(self):
        html = '<html><body><article><img src="https://cdn.example.com/p.jpg"></article></body></html>'
        assert extract_og_image(html, "https://news.example.com/a") == "https://cdn.example.com/p.jpg"

    def test_no_image(self):
        assert extract_og_image("<html><body></body></html>", "https://news.example.com/a") is None


class TestFetchPageHtml:

    @patch('newsdesk.services.content_scraper.httpx.get')
    def test_retries_after_transport_error(self, mock_get):
        mock_get.side_effect = [httpx.ConnectError("refused"), _response(200, "<html>ok</html>")]

        assert fetch_page_html("https://news.example.com/a") == "<html>ok</html>"
        assert mock_get.call_count == 2

    @patch('newsdesk.services.content_scraper.httpx.get')
    def test_gives_up_after_max_retries(self, mock_get):
        mock_get.return_value = _response(503)

        assert fetch_page_html("https://news.example.com/a") is None
        assert mock_get.call_count == content_scraper.MAX_RETRIES

    @patch('newsdesk.services.content_scraper.httpx.get')
    def test_sends_browser_headers(self, mock_get):
        mock_get.return_value = _response(200, "<html></html>")

        fetch_page_html("https://news.example.com/a", retries=1)

        headers = mock_get.call_args.kwargs['headers']
        assert headers['User-Agent'] in content_scraper.USER_AGENTS
        assert headers['Accept-Language'].startswith('ar')


class TestScrapeArticle:

    def _add_item(self, db_session, **kwargs):
        source = create_feed_source()
        db_session.add(source)
        db_session.flush()
        item = create_ingested_item(source.id, source_url="https://news.example.com/a", **kwargs)
        db_session.add(item)
        db_session.commit()
        return item.id

    @patch('newsdesk.services.content_scraper.fetch_page_html')
    def test_success_stores_content_and_image(self, mock_fetch, db_session):
        item_id = self._add_item(db_session)
        mock_fetch.return_value = GENERIC_HTML

        result = scrape_article(item_id)

        assert result.success is True
        db_session.expire_all()
        item = db_session.get(IngestedItem, item_id)
        assert item.content_scraped is True
        assert PARAGRAPH in item.full_content
        assert item.scrape_error is None
        assert item.scraped_at is not None
        assert item.image_url == "https://news.example.com/images/lead.jpg"

    @patch('newsdesk.services.content_scraper.fetch_page_html')
    def test_readability_content_is_stored(self, mock_fetch, db_session):
        item_id = self._add_item(db_session)
        mock_fetch.return_value = DIV_ONLY_HTML

        result = scrape_article(item_id)

        assert result.success is True
        db_session.expire_all()
        item = db_session.get(IngestedItem, item_id)
        assert item.content_scraped is True
        assert 'فرق الدفاع المدني' in item.full_content
        assert 'بينما توقعت الأرصاد' in item.full_content

    @patch('newsdesk.services.content_scraper.fetch_page_html')
    def test_download_failure_recorded(self, mock_fetch, db_session):
        item_id = self._add_item(db_session)
        mock_fetch.return_value = None

        result = scrape_article(item_id)

        assert result.success is False
        db_session.expire_all()
        item = db_session.get(IngestedItem, item_id)
        assert item.content_scraped is False
        assert item.scrape_error == "Failed to download page"

    def test_unknown_item(self):
        assert scrape_article("not-a-uuid").success is False

    @patch('newsdesk.services.content_scraper.fetch_page_html')
    def test_queue_skips_errored_items_and_retry_requeues_them(self, mock_fetch, db_session):
        ok_id = self._add_item(db_session)
        errored_id = self._add_item(db_session, scrape_error="Failed to download page")
        mock_fetch.return_value = GENERIC_HTML

        assert process_scrape_queue(batch_size=10) == {'processed': 1, 'successful': 1}
        assert process_scrape_queue(batch_size=10) == {'processed': 0, 'successful': 0}

        assert retry_failed_scrapes(limit=5) == 1
        assert process_scrape_queue(batch_size=10) == {'processed': 1, 'successful': 1}

        db_session.expire_all()
        assert db_session.get(IngestedItem, ok_id).content_scraped is True
        assert db_session.get(IngestedItem, errored_id).content_scraped is True

    @patch('newsdesk.services.content_scraper.fetch_page_html')
    def test_queue_skips_rejected_and_expired_items(self, mock_fetch, db_session):
        approved_id = self._add_item(db_session, status=ItemStatus.APPROVED)
        rejected_id = self._add_item(db_session, status=ItemStatus.REJECTED)
        expired_id = self._add_item(db_session, status=ItemStatus.EXPIRED)
        mock_fetch.return_value = GENERIC_HTML

        assert process_scrape_queue(batch_size=10) == {'processed': 1, 'successful': 1}

        db_session.expire_all()
        assert db_session.get(IngestedItem, approved_id).content_scraped is True
        assert db_session.get(IngestedItem, rejected_id).content_scraped is False
        assert db_session.get(IngestedItem, expired_id).content_scraped is False
