"""
AI Rewrite Service

Journalistic rewriting of ingested items with a locally hosted Ollama model.
Responses are requested as JSON but parsed leniently; any field the model
fails to return falls back to the original text. An unreachable model
server yields None so callers carry on with the originals.
"""

import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from typing import Optional

import httpx
from ollama import Client

logger = logging.getLogger(__name__)


def _log_ai(msg: str):
    """Log AI progress with immediate flush."""
    full_msg = f"AI: {msg}"
    logger.info(full_msg)
    print(full_msg, file=sys.stdout, flush=True)

# Configuration
OLLAMA_HOST = os.environ.get("OLLAMA_HOST", "http://127.0.0.1:11434")
OLLAMA_MODEL = os.environ.get("OLLAMA_MODEL", "gemma2")
OLLAMA_TIMEOUT = float(os.environ.get("OLLAMA_TIMEOUT", "120"))  # seconds
TEMPERATURE = 0.7
TOP_P = 0.9
SHORT_MAX_TOKENS = 500
FULL_MAX_TOKENS = 2000

# Transport-level failures; the caller proceeds with the original text
UNAVAILABLE_ERRORS = (ConnectionError, httpx.TransportError)

JOURNALIST_SYSTEM_PROMPT = """أنت محرر صحفي محترف في منصة إخبارية يمنية.
مهمتك إعادة صياغة الأخبار بأسلوب صحفي احترافي مع الالتزام بالمعايير التالية:

معايير الكتابة:
• استخدم اللغة العربية الفصحى السليمة والواضحة
• اتبع أسلوب الهرم المقلوب (الأهم أولاً)
• اجعل العناوين جذابة ومختصرة (لا تتجاوز 80 حرفاً)
• اكتب مقدمة موجزة تجيب على: من؟ ماذا؟ متى؟ أين؟ لماذا؟

قواعد صارمة:
• حافظ على جميع الحقائق والأرقام والتواريخ والأسماء كما هي
• لا تضف معلومات غير موجودة في النص الأصلي
• التزم بالحيادية والموضوعية التامة
• تجنب النسخ الحرفي - أعد الصياغة بأسلوبك الخاص
• احذف أي ذكر لاسم المصدر الأصلي أو الوكالة الإخبارية من النص"""

TITLE_EXCERPT_PROMPT = """أعد صياغة العنوان والمقتطف التاليين بأسلوب صحفي جذاب:

العنوان الأصلي:
{title}

المقتطف الأصلي:
{excerpt}

---
المطلوب:
1. عنوان جديد: جذاب ومختصر (50-80 حرف)
2. مقتطف جديد: ملخص شيق (100-150 حرف)

أرجع النتيجة بصيغة JSON فقط:
{{"title": "العنوان الجديد", "excerpt": "المقتطف الجديد"}}"""

FULL_ARTICLE_PROMPT = """أعد صياغة الخبر التالي بالكامل بأسلوب صحفي احترافي:

العنوان الأصلي:
{title}

التصنيف:
{category}

المحتوى الأصلي:
{content}

---
المطلوب:
1. عنوان جديد: جذاب ويعكس جوهر الخبر (50-80 حرف)
2. محتوى جديد: مقدمة قوية، ثم جسم الخبر (2-4 فقرات)، ثم خاتمة
3. مقتطف: ملخص جذاب (100-150 حرف)

أرجع النتيجة بصيغة JSON فقط:
{{"title": "العنوان الجديد", "content": "المحتوى الجديد بتنسيق HTML مع <p> للفقرات", "excerpt": "المقتطف الجديد"}}"""


@dataclass
class RewriteResult:
    rewritten_title: str
    rewritten_excerpt: str
    degraded: bool = False  # True when at least one field fell back to the original


@dataclass
class FullRewriteResult:
    title: str
    content: str
    excerpt: str
    degraded: bool = False


def get_ollama_client() -> Client:
    """Get Ollama client for the configured host."""
    return Client(host=OLLAMA_HOST, timeout=OLLAMA_TIMEOUT)


def extract_json_object(text: Optional[str]) -> Optional[dict]:
    """
    Return the first JSON object embedded in free text.

    Tolerates leading chatter, markdown fences and trailing text.
    """
    if not text:
        return None

    decoder = json.JSONDecoder()
    start = text.find('{')
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find('{', start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find('{', start + 1)

    return None


def _string_field(data: Optional[dict], key: str) -> Optional[str]:
    if not data:
        return None
    value = data.get(key)
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def format_paragraphs(content: str) -> str:
    """Wrap plain-text paragraphs in <p> tags; HTML content is returned as is."""
    if '<p' in content:
        return content
    paragraphs = [p.strip() for p in content.split('\n\n') if p.strip()]
    if len(paragraphs) <= 1:
        paragraphs = [p.strip() for p in content.split('\n') if p.strip()]
    return '\n'.join(f'<p>{p}</p>' for p in paragraphs)


def _generate(prompt: str, max_tokens: int) -> str:
    client = get_ollama_client()
    api_start = time.time()
    response = client.generate(
        model=OLLAMA_MODEL,
        system=JOURNALIST_SYSTEM_PROMPT,
        prompt=prompt,
        format='json',
        stream=False,
        options={
            'temperature': TEMPERATURE,
            'top_p': TOP_P,
            'num_predict': max_tokens,
        }
    )
    text = response['response'] or ''
    _log_ai(f"Ollama ({OLLAMA_MODEL}) responded with {len(text)} chars in {time.time() - api_start:.1f}s")
    return text


def rewrite_article(title: str, excerpt: Optional[str]) -> Optional[RewriteResult]:
    """
    Rewrite a title and excerpt.

    Args:
        title: Original title
        excerpt: Original excerpt (may be empty)

    Returns:
        RewriteResult, with originals substituted for any missing field;
        None if the model server is unreachable
    """
    excerpt = excerpt or ''
    try:
        text = _generate(
            TITLE_EXCERPT_PROMPT.format(title=title, excerpt=excerpt or 'لا يوجد مقتطف متاح'),
            SHORT_MAX_TOKENS
        )
    except UNAVAILABLE_ERRORS as e:
        logger.error(f"Ollama unavailable at {OLLAMA_HOST}: {e}")
        return None

    data = extract_json_object(text)
    if data is None:
        logger.warning("Could not parse JSON from Ollama response, keeping original text")

    new_title = _string_field(data, 'title')
    new_excerpt = _string_field(data, 'excerpt')

    return RewriteResult(
        rewritten_title=new_title or title,
        rewritten_excerpt=new_excerpt or excerpt,
        degraded=new_title is None or new_excerpt is None,
    )


def rewrite_as_journalist(title: str, content: Optional[str], category: Optional[str],
                          excerpt: Optional[str] = None) -> Optional[FullRewriteResult]:
    """
    Full-article journalistic rewrite used by the automation pipeline.

    Args:
        title: Original title
        content: Original body (scraped content or excerpt)
        category: Category name for context
        excerpt: Original excerpt, used if the model returns none

    Returns:
        FullRewriteResult with field-by-field fallback to the originals;
        None if the model server is unreachable
    """
    content = content or ''
    try:
        text = _generate(
            FULL_ARTICLE_PROMPT.format(title=title, content=content, category=category or 'عام'),
            FULL_MAX_TOKENS
        )
    except UNAVAILABLE_ERRORS as e:
        logger.error(f"Ollama unavailable at {OLLAMA_HOST}: {e}")
        return None

    data = extract_json_object(text)
    if data is None:
        logger.warning("Could not parse full rewrite JSON, keeping original text")

    new_title = _string_field(data, 'title')
    new_content = _string_field(data, 'content')
    new_excerpt = _string_field(data, 'excerpt')

    return FullRewriteResult(
        title=new_title or title,
        content=format_paragraphs(new_content) if new_content else content,
        excerpt=new_excerpt or (excerpt or ''),
        degraded=new_title is None or new_content is None or new_excerpt is None,
    )


def test_ai_connection() -> bool:
    """True if the Ollama server answers a model listing."""
    try:
        get_ollama_client().list()
        return True
    except Exception as e:
        logger.warning(f"Ollama connection test failed: {e}")
        return False

