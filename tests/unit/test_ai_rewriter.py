"""
Unit tests for the Ollama-backed rewrite service.

The Ollama client is mocked; responses mimic `generate(..., stream=False)`.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from newsdesk.services import ai_rewriter
from newsdesk.services.ai_rewriter import (
    extract_json_object, format_paragraphs, rewrite_article, rewrite_as_journalist,
)


def _client_returning(text):
    client = MagicMock()
    client.generate.return_value = {'response': text}
    return client


class TestExtractJsonObject:

    def test_plain_json(self):
        assert extract_json_object('{"title": "x"}') == {'title': 'x'}

    def test_surrounded_by_chatter(self):
        text = 'Sure, here it is:\n```json\n{"title": "x", "excerpt": "y"}\n```\nHope that helps'
        assert extract_json_object(text) == {'title': 'x', 'excerpt': 'y'}

    def test_skips_invalid_braces(self):
        assert extract_json_object('{not json} then {"a": 1}') == {'a': 1}

    def test_nested_object(self):
        assert extract_json_object('{"a": {"b": 1}}') == {'a': {'b': 1}}

    def test_no_json(self):
        assert extract_json_object('no json here') is None
        assert extract_json_object('') is None
        assert extract_json_object(None) is None


class TestFormatParagraphs:

    def test_wraps_double_newline_paragraphs(self):
        assert format_paragraphs("one\n\ntwo") == "<p>one</p>\n<p>two</p>"

    def test_single_newlines_when_no_blank_lines(self):
        assert format_paragraphs("one\ntwo") == "<p>one</p>\n<p>two</p>"

    def test_html_untouched(self):
        assert format_paragraphs("<p>already</p>") == "<p>already</p>"


class TestRewriteArticle:

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_successful_rewrite(self, mock_get_client):
        mock_get_client.return_value = _client_returning(
            json.dumps({'title': 'عنوان جديد', 'excerpt': 'مقتطف جديد'}, ensure_ascii=False)
        )

        result = rewrite_article('عنوان قديم', 'مقتطف قديم')

        assert result.rewritten_title == 'عنوان جديد'
        assert result.rewritten_excerpt == 'مقتطف جديد'
        assert result.degraded is False

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_requests_json_format(self, mock_get_client):
        client = _client_returning('{"title": "t", "excerpt": "e"}')
        mock_get_client.return_value = client

        rewrite_article('title', 'excerpt')

        kwargs = client.generate.call_args.kwargs
        assert kwargs['format'] == 'json'
        assert kwargs['stream'] is False
        assert kwargs['model'] == ai_rewriter.OLLAMA_MODEL
        assert 'title' in kwargs['prompt']

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_missing_field_falls_back_to_original(self, mock_get_client):
        mock_get_client.return_value = _client_returning('{"title": "عنوان جديد"}')

        result = rewrite_article('عنوان قديم', 'مقتطف قديم')

        assert result.rewritten_title == 'عنوان جديد'
        assert result.rewritten_excerpt == 'مقتطف قديم'
        assert result.degraded is True

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_unparseable_response_keeps_originals(self, mock_get_client):
        mock_get_client.return_value = _client_returning('I cannot do that')

        result = rewrite_article('عنوان قديم', None)

        assert result.rewritten_title == 'عنوان قديم'
        assert result.rewritten_excerpt == ''
        assert result.degraded is True

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_connection_failure_returns_none(self, mock_get_client):
        client = MagicMock()
        client.generate.side_effect = httpx.ConnectError("connection refused")
        mock_get_client.return_value = client

        assert rewrite_article('title', 'excerpt') is None

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_builtin_connection_error_returns_none(self, mock_get_client):
        client = MagicMock()
        client.generate.side_effect = ConnectionError("Failed to connect to Ollama")
        mock_get_client.return_value = client

        assert rewrite_article('title', 'excerpt') is None


class TestRewriteAsJournalist:

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_full_rewrite(self, mock_get_client):
        mock_get_client.return_value = _client_returning(json.dumps({
            'title': 'عنوان',
            'content': 'فقرة أولى\n\nفقرة ثانية',
            'excerpt': 'ملخص',
        }, ensure_ascii=False))

        result = rewrite_as_journalist('t', 'c', 'سياسة')

        assert result.title == 'عنوان'
        assert result.content == '<p>فقرة أولى</p>\n<p>فقرة ثانية</p>'
        assert result.excerpt == 'ملخص'
        assert result.degraded is False

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_field_by_field_fallback(self, mock_get_client):
        mock_get_client.return_value = _client_returning('noise {"title": "عنوان"} noise')

        result = rewrite_as_journalist('original title', 'original body', None, excerpt='original excerpt')

        assert result.title == 'عنوان'
        assert result.content == 'original body'
        assert result.excerpt == 'original excerpt'
        assert result.degraded is True

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_unavailable_returns_none(self, mock_get_client):
        client = MagicMock()
        client.generate.side_effect = httpx.ReadTimeout("timed out")
        mock_get_client.return_value = client

        assert rewrite_as_journalist('t', 'c', 'x') is None

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_other_errors_propagate(self, mock_get_client):
        client = MagicMock()
        client.generate.side_effect = RuntimeError("model crashed")
        mock_get_client.return_value = client

        with pytest.raises(RuntimeError):
            rewrite_as_journalist('t', 'c', 'x')


class TestConnection:

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_reachable(self, mock_get_client):
        mock_get_client.return_value = MagicMock()
        assert ai_rewriter.test_ai_connection() is True

    @patch('newsdesk.services.ai_rewriter.get_ollama_client')
    def test_unreachable(self, mock_get_client):
        client = MagicMock()
        client.list.side_effect = ConnectionError("down")
        mock_get_client.return_value = client

        assert ai_rewriter.test_ai_connection() is False
