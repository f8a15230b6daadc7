"""
Contract tests for feed parsing.

Covers RSS 2.0, Atom, the non-standard fallback parser and the ordered
image extraction chain.
"""

from datetime import datetime, timezone

import pytest

from newsdesk.services.feed_fetcher import (
    FeedEntry, FeedParseError, extract_image_url, parse_feed, parse_non_standard_feed,
)
from tests.fixtures.sample_data import rss_feed_xml, rss_item_xml

ATOM_FEED = """<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>Atom Test</title>
  <id>urn:test</id>
  <updated>2026-01-15T10:00:00Z</updated>
  <entry>
    <title>خبر من صنعاء</title>
    <id>urn:entry:1</id>
    <link href="https://news.example.com/atom/1"/>
    <updated>2026-01-15T10:00:00Z</updated>
    <summary>ملخص الخبر</summary>
  </entry>
</feed>
""".encode("utf-8")

SITEMAP = """<?xml version="1.0" encoding="UTF-8"?>
<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9"
        xmlns:news="http://www.google.com/schemas/sitemap-news/0.9"
        xmlns:image="http://www.google.com/schemas/sitemap-image/1.1">
  <url>
    <loc>https://news.example.com/story/7</loc>
    <news:news>
      <news:publication_date>2026-01-15T08:30:00+03:00</news:publication_date>
      <news:title>عنوان من خريطة الموقع</news:title>
    </news:news>
    <image:image><image:loc>https://news.example.com/img/7.jpg</image:loc></image:image>
  </url>
</urlset>
""".encode("utf-8")


class TestParseFeed:

    def test_rss(self):
        pub_date = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)
        content = rss_feed_xml(rss_item_xml(
            "فيضانات في الحديدة", guid="abc123", link="https://news.example.com/a/1",
            description="<p>ملخص</p>", pub_date=pub_date,
        ))

        entries = parse_feed(content)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.guid == "abc123"
        assert entry.link == "https://news.example.com/a/1"
        assert entry.title == "فيضانات في الحديدة"
        assert "ملخص" in entry.summary
        assert entry.published_at == pub_date

    def test_atom(self):
        entries = parse_feed(ATOM_FEED)

        assert len(entries) == 1
        assert entries[0].guid == "urn:entry:1"
        assert entries[0].link == "https://news.example.com/atom/1"
        assert entries[0].published_at == datetime(2026, 1, 15, 10, 0, tzinfo=timezone.utc)

    def test_missing_date_is_none(self):
        content = (
            b'<?xml version="1.0"?><rss version="2.0"><channel><title>t</title>'
            b'<item><title>No date</title><guid>g1</guid></item></channel></rss>'
        )

        assert parse_feed(content)[0].published_at is None

    def test_sitemap_uses_fallback_parser(self):
        entries = parse_feed(SITEMAP)

        assert len(entries) == 1
        entry = entries[0]
        assert entry.link == "https://news.example.com/story/7"
        assert entry.title == "عنوان من خريطة الموقع"
        assert entry.published_at == datetime(2026, 1, 15, 5, 30, tzinfo=timezone.utc)
        assert entry.media_content[0]['url'] == "https://news.example.com/img/7.jpg"

    def test_garbage_raises(self):
        with pytest.raises(FeedParseError):
            parse_feed(b"this is <<< not a feed")

    def test_empty_channel(self):
        content = b'<?xml version="1.0"?><rss version="2.0"><channel><title>t</title></channel></rss>'
        assert parse_feed(content) == []


class TestFallbackParser:

    def test_items_without_namespace_declarations(self):
        content = (
            b'<root><item><title>One</title><link>https://news.example.com/1</link>'
            b'<pubDate>Thu, 15 Jan 2026 09:00:00 GMT</pubDate>'
            b'<enclosure url="https://news.example.com/1.jpg" type="image/jpeg"/></item></root>'
        )

        entries = parse_non_standard_feed(content)

        assert entries[0].title == "One"
        assert entries[0].enclosures == [{'url': "https://news.example.com/1.jpg", 'type': "image/jpeg"}]
        assert entries[0].published_at == datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)

    def test_entries_without_title_or_link_are_dropped(self):
        assert parse_non_standard_feed(b'<root><item><description>x</description></item></root>') == []


class TestExtractImageUrl:

    BASE = "https://news.example.com"

    def _entry(self, **kwargs):
        return FeedEntry(guid="g", link=None, title="t", **kwargs)

    def test_enclosure_wins(self):
        entry = self._entry(
            enclosures=[{'url': '/enclosure.jpg', 'type': 'image/jpeg'}],
            media_content=[{'url': 'https://cdn.example.com/media.jpg'}],
            media_thumbnail=[{'url': 'https://cdn.example.com/thumb.jpg'}],
        )
        assert extract_image_url(entry, self.BASE) == "https://news.example.com/enclosure.jpg"

    def test_non_image_enclosure_is_skipped(self):
        entry = self._entry(
            enclosures=[{'url': 'https://cdn.example.com/a.mp3', 'type': 'audio/mpeg'}],
            media_content=[{'url': 'https://cdn.example.com/video.mp4', 'medium': 'video'},
                           {'url': 'https://cdn.example.com/media.jpg', 'medium': 'image'}],
        )
        assert extract_image_url(entry, self.BASE) == "https://cdn.example.com/media.jpg"

    def test_thumbnail_before_body(self):
        entry = self._entry(
            media_thumbnail=[{'url': '//cdn.example.com/thumb.jpg'}],
            summary='<img src="https://cdn.example.com/body.jpg">',
        )
        assert extract_image_url(entry, self.BASE) == "https://cdn.example.com/thumb.jpg"

    def test_first_body_image(self):
        entry = self._entry(body_html='<p>x</p><img src="/body.jpg"><img src="/second.jpg">')
        assert extract_image_url(entry, self.BASE) == "https://news.example.com/body.jpg"

    def test_media_namespace_in_rss(self):
        content = rss_feed_xml(rss_item_xml(
            "t", guid="g", extra='<media:thumbnail url="https://cdn.example.com/t.jpg"/>',
        ))
        entry = parse_feed(content)[0]
        assert extract_image_url(entry, self.BASE) == "https://cdn.example.com/t.jpg"

    def test_no_image(self):
        assert extract_image_url(self._entry(), self.BASE) is None
