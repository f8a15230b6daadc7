"""
Text Normalization Service

Arabic-aware normalization used for deduplication across feeds:
title hashing, fingerprint text, excerpt cleanup and URL resolution.
"""

import hashlib
import logging
import re
from typing import Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# Zero-width characters that feeds leak into titles
ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")

# Arabic harakat (fathatan .. sukun) and tatweel
ARABIC_DIACRITICS_RE = re.compile("[\u064b-\u0652\u0640]")

# Hamza-carrying alef forms collapse to bare alef
ALEF_VARIANTS_RE = re.compile("[\u0623\u0625\u0622]")

# Anything that is not Arabic, a word character or whitespace
PUNCTUATION_RE = re.compile(r"[^\u0600-\u06ff\w\s]")

# Arabic comma, semicolon, question mark and percent/decimal marks sit inside the Arabic block
ARABIC_PUNCTUATION_RE = re.compile("[\u060c\u061b\u061f\u066a-\u066d\u06d4]")

EXCERPT_MAX_LENGTH = 200
ELLIPSIS = '...'


def normalize_text(text: str) -> str:
    """
    Normalize text for comparison.

    Rules:
    1. Lowercase (Latin)
    2. Zero-width characters become spaces
    3. Arabic diacritics and tatweel removed, alef variants unified
    4. Punctuation removed (Arabic letters and alphanumerics kept)
    5. Whitespace collapsed

    Args:
        text: Raw text (title, excerpt)

    Returns:
        Normalized string, '' for empty input
    """
    if not text:
        return ''

    normalized = text.lower()
    normalized = ZERO_WIDTH_RE.sub(' ', normalized)
    normalized = ARABIC_DIACRITICS_RE.sub('', normalized)
    normalized = ALEF_VARIANTS_RE.sub('ا', normalized)
    normalized = ARABIC_PUNCTUATION_RE.sub('', normalized)
    normalized = PUNCTUATION_RE.sub('', normalized)
    normalized = re.sub(r'\s+', ' ', normalized)

    return normalized.strip()


def hash_title(title: str) -> str:
    """
    SHA-256 of the normalized title with all whitespace removed.

    Two titles differing only in spacing, punctuation or diacritics
    hash identically.
    """
    compact = re.sub(r'\s+', '', normalize_text(title))
    return hashlib.sha256(compact.encode('utf-8')).hexdigest()


def strip_html(text: Optional[str]) -> str:
    """Remove markup and collapse whitespace."""
    if not text:
        return ''

    if '<' in text:
        text = BeautifulSoup(text, 'html.parser').get_text(separator=' ')

    return re.sub(r'\s+', ' ', text).strip()


def truncate_excerpt(text: Optional[str], max_length: int = EXCERPT_MAX_LENGTH) -> str:
    """
    HTML-strip and truncate text at a word boundary.

    The result, ellipsis included, never exceeds max_length.
    """
    cleaned = strip_html(text)
    if len(cleaned) <= max_length:
        return cleaned

    limit = max_length - len(ELLIPSIS)
    truncated = cleaned[:limit]
    last_space = truncated.rfind(' ')

    # Only break at the space if we don't lose too much
    if last_space > limit - 50:
        truncated = truncated[:last_space]

    return truncated.rstrip() + ELLIPSIS


def resolve_url(url: Optional[str], base_url: Optional[str]) -> Optional[str]:
    """
    Resolve a possibly relative URL against the feed or website URL.

    Returns:
        Absolute http(s) URL, or None if it cannot be resolved
    """
    if not url:
        return None

    url = url.strip()
    if url.startswith('//'):
        url = 'https:' + url

    try:
        absolute = urljoin(base_url or '', url)
        parsed = urlparse(absolute)
    except ValueError as e:
        logger.debug(f"Could not resolve URL {url!r}: {e}")
        return None

    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        return None

    return absolute


def extract_domain(url: Optional[str]) -> str:
    """
    Host (without www.) followed by the path, used for source tier lookups.

    'https://www.bbc.com/arabic/rss.xml' -> 'bbc.com/arabic/rss.xml'
    """
    if not url:
        return ''

    try:
        parsed = urlparse(url.lower().strip())
    except ValueError:
        return ''

    netloc = parsed.netloc
    if netloc.startswith('www.'):
        netloc = netloc[4:]

    return netloc + parsed.path.rstrip('/')


def host_matches(hostname: str, domain: str) -> bool:
    """True when hostname is the domain itself or one of its subdomains."""
    return hostname == domain or hostname.endswith('.' + domain)


def matches_source_key(domain_path: str, key: str) -> bool:
    """
    Match an extract_domain() value against a 'host[/path]' table key.

    'arabic.rt.com/rss' matches 'rt.com'; 'bbc.com/arabic/rss.xml' matches
    'bbc.com/arabic'; 'sport.com' does not match 'rt.com'.
    """
    host, _, path = domain_path.partition('/')
    key_host, _, key_path = key.partition('/')
    if not host_matches(host, key_host):
        return False
    if not key_path:
        return True
    return path == key_path or path.startswith(key_path + '/')
