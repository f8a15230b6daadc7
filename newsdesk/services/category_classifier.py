"""
Category Classifier Service

Keyword-weighted categorization for sources whose declared category is
"mixed". Ambiguous content is left unclassified rather than mis-filed.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

from newsdesk.services.text_normalizer import normalize_text

logger = logging.getLogger(__name__)

# Minimum share of the total score the winning category must hold
MIN_CONFIDENCE = 0.4

TITLE_WEIGHT = 2
EXCERPT_WEIGHT = 1

# Source category slugs that require per-item classification
MIXED_CATEGORY_SLUGS = frozenset({'mixed', 'منوع'})

CATEGORY_KEYWORDS = {
    'politics': (
        # Institutions
        'حكومة', 'برلمان', 'رئاسة', 'مجلس الوزراء', 'محكمة', 'أمم متحدة', 'مجلس الأمن',
        'جامعة الدول', 'سفارة', 'قنصلية', 'وزارة', 'معارضة', 'مجلس النواب', 'الكونغرس',
        # Roles
        'رئيس', 'وزير', 'نائب', 'سفير', 'مبعوث', 'مسؤول', 'قائد', 'زعيم', 'حاكم',
        'ملك', 'أمير', 'مستشار', 'ناطق رسمي', 'سياسي', 'دبلوماسي', 'محافظ',
        # Events
        'انتخابات', 'تصويت', 'مرسوم', 'قرار', 'هدنة', 'مفاوضات', 'اتفاقية', 'قمة',
        'مؤتمر', 'احتجاجات', 'مظاهرة', 'انقلاب', 'صراع', 'حرب', 'اشتباك', 'قصف',
        'غارة', 'سلام', 'حوار', 'عقوبات', 'حصار', 'تطبيع', 'دستور', 'تعديل دستوري',
        # Parties and forces
        'حزب', 'حوثي', 'انتقالي', 'شرعية', 'تحالف', 'جيش', 'شرطة', 'قوات', 'أمن',
        'مقاومة', 'مليشيا', 'جماعة', 'أنصار الله', 'المجلس الرئاسي', 'الإصلاح',
        'المؤتمر الشعبي', 'الاشتراكي', 'الناصري',
        'government', 'parliament', 'minister', 'president', 'election', 'ceasefire',
    ),
    'economy': (
        # Finance
        'بنك', 'مصرف', 'عملة', 'دولار', 'ريال', 'سعر الصرف', 'تضخم', 'فائدة',
        'قرض', 'وديعة', 'بورصة', 'أسهم', 'تداول', 'موازنة', 'ميزانية', 'عجز مالي',
        'احتياطي', 'ائتمان', 'سيولة', 'إفلاس', 'ديون', 'سندات',
        # Trade
        'تجارة', 'استيراد', 'تصدير', 'جمارك', 'بضائع', 'سوق', 'ميناء', 'شحنة',
        'نفط', 'غاز', 'وقود', 'ديزل', 'بترول', 'ذهب', 'معادن', 'سلع',
        # Development
        'إعمار', 'مشروع', 'بنية تحتية', 'استثمار', 'تمويل', 'منحة', 'مساعدة',
        'رواتب', 'أجور', 'غلاء', 'أسعار', 'تكلفة', 'اقتصاد', 'اقتصادي', 'تجاري',
        'صناعة', 'زراعة', 'صادرات', 'واردات', 'ناتج محلي', 'نمو اقتصادي',
        'economy', 'inflation', 'currency', 'exchange rate', 'oil',
    ),
    'sports': (
        # Football
        'كرة قدم', 'مباراة', 'هدف', 'مرمى', 'ركلة', 'جزاء', 'ركلة جزاء', 'تسلل',
        'شوط', 'صافرة', 'دوري', 'كأس', 'بطولة', 'نهائي', 'تأهل', 'إقصاء',
        'تصفيات', 'مونديال', 'يورو', 'أبطال أوروبا', 'كأس العالم', 'كأس آسيا',
        # Teams and roles
        'منتخب', 'نادي', 'فريق', 'مدرب', 'لاعب', 'حارس', 'مهاجم', 'مدافع',
        'جمهور', 'مشجعين', 'اتحاد الكرة', 'فيفا', 'كونميبول', 'يويفا',
        # Other sports
        'أولمبياد', 'سباق', 'رياضي', 'لياقة', 'تدريب', 'ملعب', 'مدرج', 'فوز',
        'خسارة', 'تعادل', 'تتويج', 'ميدالية', 'ذهبية', 'فضية', 'برونزية',
        'تنس', 'سباحة', 'ألعاب قوى', 'ملاكمة', 'كاراتيه', 'رياضة',
        # Clubs
        'الأهلي', 'الزمالك', 'الهلال', 'النصر', 'الأهلي السعودي',
        'football', 'match', 'league', 'tournament',
    ),
    'technology': (
        # Digital
        'تطبيق', 'برنامج', 'موقع', 'إنترنت', 'شبكة', 'واي فاي', 'اتصالات', 'بيانات',
        'سيبراني', 'اختراق', 'هكر', 'قرصنة', 'أمن سيبراني', 'تشفير', 'خصوصية',
        'سحابة', 'سحابية', 'خوادم', 'سيرفر', 'استضافة', 'دومين',
        # Devices
        'هاتف', 'جوال', 'موبايل', 'كمبيوتر', 'لابتوب', 'جهاز', 'شاشة', 'كاميرا',
        'روبوت', 'طائرة مسيرة', 'درون', 'آيفون', 'سامسونج', 'آندرويد', 'آبل',
        # Innovation
        'ذكاء اصطناعي', 'ابتكار', 'تقنية', 'تكنولوجي', 'تكنولوجيا', 'تحديث', 'نظام',
        'برمجيات', 'برمجة', 'مطور', 'مبرمج', 'كود', 'خوارزمية', 'تعلم آلي',
        # Platforms
        'فيسبوك', 'تويتر', 'واتساب', 'إنستغرام', 'تيك توك', 'يوتيوب', 'تيليجرام',
        'منصة', 'شبكة اجتماعية', 'تواصل اجتماعي', 'ميتا', 'غوغل', 'مايكروسوفت',
        'إيلون ماسك', 'سبيس إكس', 'تسلا', 'أوبن أي آي', 'شات جي بي تي',
        'artificial intelligence', 'smartphone', 'software', 'cyber',
    ),
    'culture': (
        # Arts
        'فيلم', 'مسلسل', 'سينما', 'مسرح', 'تمثيل', 'ممثل', 'ممثلة', 'فنان', 'فنانة',
        'أغنية', 'موسيقى', 'حفل', 'مهرجان', 'معرض', 'رسم', 'لوحة', 'نحت',
        'تصوير', 'مخرج', 'إخراج', 'سيناريو', 'كليب', 'ألبوم', 'أوبرا',
        # Heritage
        'تراث', 'تاريخ', 'آثار', 'مخطوطات', 'أدب', 'شعر', 'رواية', 'كتاب', 'كاتب',
        'شاعر', 'مثقف', 'ندوة', 'مؤلف', 'أديب', 'قصة', 'قصيدة', 'ديوان',
        # Awards and events
        'جوائز', 'أوسكار', 'جرامي', 'غولدن غلوب', 'تكريم', 'إصدار', 'توقيع كتاب',
        'معرض الكتاب', 'نجم', 'نجمة', 'سجادة حمراء', 'بريميير', 'عرض أول',
        'محمد عبده', 'عمرو دياب', 'نانسي عجرم', 'أصالة', 'كاظم الساهر',
        'film', 'festival', 'novel', 'museum',
    ),
}

# Pre-normalized once at import
_NORMALIZED_KEYWORDS = {
    category: tuple(kw for kw in (normalize_text(k) for k in keywords) if kw)
    for category, keywords in CATEGORY_KEYWORDS.items()
}


@dataclass
class ClassificationResult:
    category_slug: Optional[str]
    confidence: float
    scores: dict = field(default_factory=dict)


def _count_occurrences(normalized_text: str, keywords: tuple) -> int:
    """Total occurrences of all keywords; single short words must match a whole token."""
    if not normalized_text:
        return 0

    tokens = normalized_text.split()
    count = 0
    for kw in keywords:
        if len(kw) <= 3 and ' ' not in kw:
            count += tokens.count(kw)
        else:
            count += normalized_text.count(kw)
    return count


def classify_article(title: str, excerpt: Optional[str] = '') -> ClassificationResult:
    """
    Classify an article from its title and excerpt.

    Title matches weigh twice as much as excerpt matches. Confidence is the
    winning category's share of the total score.

    Args:
        title: Article title
        excerpt: Optional excerpt/description

    Returns:
        ClassificationResult; category_slug is None when nothing matches or
        the winner's share is below MIN_CONFIDENCE
    """
    title_text = normalize_text(title or '')
    excerpt_text = normalize_text(excerpt or '')

    scores = {}
    for category, keywords in _NORMALIZED_KEYWORDS.items():
        scores[category] = (
            TITLE_WEIGHT * _count_occurrences(title_text, keywords)
            + EXCERPT_WEIGHT * _count_occurrences(excerpt_text, keywords)
        )

    winner = None
    max_score = 0
    for category, score in scores.items():
        if score > max_score:
            max_score = score
            winner = category

    total = sum(scores.values())
    confidence = round(max_score / total, 2) if total else 0.0

    if winner is None or confidence < MIN_CONFIDENCE:
        return ClassificationResult(category_slug=None, confidence=0.0, scores=scores)

    logger.debug(f"Classified '{(title or '')[:50]}' as {winner} ({confidence:.0%}, scores: {scores})")
    return ClassificationResult(category_slug=winner, confidence=confidence, scores=scores)


def is_mixed_category(slug: Optional[str]) -> bool:
    """True if a source with this category slug needs per-item classification."""
    return slug in MIXED_CATEGORY_SLUGS
