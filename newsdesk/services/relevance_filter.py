"""
Deduplication & Relevance Filter

Scores incoming feed items for topical fit (Yemen news), source tier and
novelty, and decides accept / reject / flag / merge.

Stages run in order, any of which may short-circuit:
1. Ingestion gate (required fields, plausible timestamp)
2. Source tiering (operator priority table)
3. Semantic fingerprint (cross-source near-duplicate -> MERGED)
4. Heuristic relevance score (tier-adjusted threshold)
5. Burst control (per-source sliding window)

The fingerprint cache and burst tracker live on a RelevanceFilter
instance; they are in-process hints only; the persistent dedup gate is the
guid / title-hash check in the feed fetcher.
"""

import enum
import hashlib
import logging
import math
import os
import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from newsdesk.services.text_normalizer import extract_domain, matches_source_key, normalize_text

logger = logging.getLogger(__name__)


# ============================================================================
# Keyword dictionaries
# ============================================================================

# Primary topic identifiers (at least one, unless secondary presence is strong)
PRIMARY_KEYWORDS = (
    # Arabic
    'اليمن', 'يمني', 'يمنية', 'اليمنية', 'اليمنيين', 'اليمنيون',
    # English
    'yemen', 'yemeni',
    # National teams
    'المنتخب الوطني', 'منتخب الناشئين', 'منتخب الشباب', 'المنتخب اليمني',
)

SECONDARY_ENTITIES = {
    'geographic': (
        'صنعاء', 'عدن', 'تعز', 'مأرب', 'الحديدة', 'إب', 'ذمار', 'حضرموت', 'المكلا',
        'سيئون', 'عمران', 'صعدة', 'الجوف', 'البيضاء', 'لحج', 'أبين', 'شبوة', 'المهرة',
        'سقطرى', 'الضالع', 'ريمة', 'حجة', 'تهامة',
        "sana'a", 'sanaa', 'aden', 'taiz', 'marib', 'hodeidah', 'hodeida', 'ibb',
        'hadramout', 'mukalla', 'socotra', 'tihama',
    ),
    'sports': (
        'اتحاد الكرة', 'الدوري اليمني', 'كأس الجمهورية', 'أهلي صنعاء', 'وحدة صنعاء',
        'التلال', 'شعب إب', 'الصقر', 'اليرموك', 'الهلال الساحلي', 'شعب حضرموت',
        'استاد سيئون', 'ملعب المريسي',
    ),
    'political': (
        'الحوثي', 'الحوثيين', 'حوثي', 'أنصار الله',
        'houthi', 'houthis', 'ansar allah',
        'الحكومة الشرعية', 'الشرعية', 'هادي', 'العليمي', 'مجلس القيادة الرئاسي',
        'الانتقالي', 'المجلس الانتقالي', 'الزبيدي', 'stc', 'southern transitional',
        'التحالف', 'التحالف العربي', 'عاصفة الحزم', 'coalition',
        'غريفيث', 'المبعوث الأممي', 'هانس غروندبرغ', 'grundberg',
    ),
}

# Other conflicts; rejected when they dominate the title
NOISE_KEYWORDS = (
    'سوريا', 'سوري', 'دمشق', 'الأسد',
    'ليبيا', 'ليبي', 'طرابلس', 'حفتر',
    'أوكرانيا', 'أوكراني', 'كييف', 'زيلينسكي',
    'فلسطين', 'غزة', 'إسرائيل',
    'syria', 'syrian', 'damascus', 'assad',
    'libya', 'libyan', 'tripoli', 'haftar',
    'ukraine', 'ukrainian', 'kyiv', 'zelensky',
)

# Domain fragment -> tier (1 = local, 2 = regional, 3 = international wires)
SOURCE_TIERS = {
    'saba.ye': 1,
    'sabanew.net': 1,
    'almasdaronline.com': 1,
    'almashhadonline.com': 1,
    'yemenmonitor.com': 1,
    'newsyemen.net': 1,
    'adenpress.news': 1,
    'al-ayyam.info': 1,
    'akhbaralyom-ye.net': 1,
    'ypa.net.ye': 1,
    'aljazeera.net': 2,
    'alarabiya.net': 2,
    'skynewsarabia.com': 2,
    'bbc.com/arabic': 2,
    'arabic.rt.com': 2,
    'france24.com/ar': 2,
    'dw.com/ar': 2,
    'reuters.com': 3,
    'apnews.com': 3,
    'afp.com': 3,
}

TIER_MULTIPLIERS = {1: 1.5, 2: 1.0, 3: 0.8}

# Minimum relevance score per tier; tier 1 gets the lowest bar
TIER_THRESHOLDS = {1: 0.30, 2: 0.40, 3: 0.45}

SCORE_WEIGHTS = {
    'topic': 0.35,
    'entity': 0.25,
    'source': 0.20,
    'recency': 0.20,
}

# Categories that are not country-specific skip topical scoring
BYPASS_CATEGORIES = frozenset({'economy', 'sports', 'technology', 'culture'})

# Keywords this short only match whole tokens ('إب' would hit every 'إبراهيم')
SHORT_KEYWORD_LENGTH = 3


class FilterStatus(enum.Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"
    FLAGGED = "FLAGGED"
    MERGED = "MERGED"


class FilterAction(enum.Enum):
    PUBLISH = "PUBLISH"
    MERGE = "MERGE"
    HOLD = "HOLD"
    DROP = "DROP"


@dataclass
class FilterConfig:
    """Tunable thresholds for the relevance filter."""
    max_age_days: float = 7.0
    future_tolerance_minutes: float = 120.0
    source_tiers: dict = field(default_factory=lambda: dict(SOURCE_TIERS))
    default_tier: int = 2
    tier_multipliers: dict = field(default_factory=lambda: dict(TIER_MULTIPLIERS))
    tier_thresholds: dict = field(default_factory=lambda: dict(TIER_THRESHOLDS))
    flag_margin: float = 0.10
    burst_limit: int = 10
    burst_window_minutes: float = 5.0
    dedup_window_hours: float = 6.0
    fingerprint_capacity: int = 1000
    similarity_threshold: float = 0.8
    recency_half_life_hours: float = 12.0
    score_weights: dict = field(default_factory=lambda: dict(SCORE_WEIGHTS))
    primary_keywords: tuple = PRIMARY_KEYWORDS
    secondary_entities: dict = field(default_factory=lambda: dict(SECONDARY_ENTITIES))
    noise_keywords: tuple = NOISE_KEYWORDS
    bypass_categories: frozenset = BYPASS_CATEGORIES

    @classmethod
    def from_env(cls) -> "FilterConfig":
        """Build a config, overriding defaults from FILTER_* environment variables."""
        config = cls()

        float_overrides = {
            'FILTER_MAX_AGE_DAYS': 'max_age_days',
            'FILTER_FUTURE_TOLERANCE_MINUTES': 'future_tolerance_minutes',
            'FILTER_FLAG_MARGIN': 'flag_margin',
            'FILTER_BURST_WINDOW_MINUTES': 'burst_window_minutes',
            'FILTER_DEDUP_WINDOW_HOURS': 'dedup_window_hours',
            'FILTER_SIMILARITY_THRESHOLD': 'similarity_threshold',
            'FILTER_RECENCY_HALF_LIFE_HOURS': 'recency_half_life_hours',
        }
        for env_name, attr in float_overrides.items():
            value = os.environ.get(env_name)
            if value:
                setattr(config, attr, float(value))

        if os.environ.get('FILTER_BURST_LIMIT'):
            config.burst_limit = int(os.environ['FILTER_BURST_LIMIT'])
        if os.environ.get('FILTER_CACHE_SIZE'):
            config.fingerprint_capacity = int(os.environ['FILTER_CACHE_SIZE'])

        for tier in (1, 2, 3):
            value = os.environ.get(f'FILTER_TIER{tier}_THRESHOLD')
            if value:
                config.tier_thresholds[tier] = float(value)

        bypass = os.environ.get('FILTER_BYPASS_CATEGORIES')
        if bypass is not None:
            config.bypass_categories = frozenset(
                slug.strip() for slug in bypass.split(',') if slug.strip()
            )

        return config


@dataclass
class FilterItem:
    """A normalized feed entry presented to the filter."""
    title: str
    guid: Optional[str]
    source_id: Any
    item_id: Any = None  # id the item will be stored under; merge target for later variants
    excerpt: str = ''
    link: Optional[str] = None
    published_at: Optional[datetime] = None
    source_name: str = ''
    source_url: Optional[str] = None
    category_slug: Optional[str] = None
    auto_approve: bool = False
    tier_override: Optional[int] = None


@dataclass
class FilterResult:
    status: FilterStatus
    relevance_score: float
    tier: int
    reasoning: str
    action: FilterAction
    merge_with_id: Any = None
    semantic_fingerprint: Optional[str] = None
    entity_density: float = 0.0

    @property
    def kept(self) -> bool:
        """True when the item should be stored as a new pending/approved item."""
        return self.status in (FilterStatus.ACCEPTED, FilterStatus.FLAGGED)


@dataclass
class _CachedFingerprint:
    item_id: Any
    source_id: Any
    fingerprint: str
    words: frozenset
    seen_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_fingerprint(title: str) -> str:
    """MD5 of the normalized title (first 150 chars)."""
    normalized = normalize_text(title)[:150]
    return hashlib.md5(normalized.encode('utf-8')).hexdigest()


def _significant_words(title: str) -> frozenset:
    return frozenset(w for w in normalize_text(title).split() if len(w) > 2)


def jaccard_similarity(words1: frozenset, words2: frozenset) -> float:
    """Word-set overlap in [0, 1]; 0 when either side is empty."""
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


class _KeywordSet:
    """Normalized keyword list with Arabic-aware matching."""

    def __init__(self, keywords):
        self.keywords = tuple(
            kw for kw in (normalize_text(k) for k in keywords) if kw
        )

    def count(self, normalized_text: str, tokens: set) -> int:
        """Number of distinct keywords present in already-normalized text."""
        found = 0
        for kw in self.keywords:
            if len(kw) <= SHORT_KEYWORD_LENGTH and ' ' not in kw:
                if kw in tokens:
                    found += 1
            elif kw in normalized_text:
                found += 1
        return found


class RelevanceFilter:
    """
    Stateful relevance filter.

    One instance is shared per process; all cache access happens under a
    lock so concurrent fetches see a consistent view.

    Args:
        config: Thresholds and keyword sets (defaults to FilterConfig())
        clock: Callable returning the current aware datetime (injectable for tests)
    """

    def __init__(self, config: Optional[FilterConfig] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config or FilterConfig()
        self._clock = clock or _utcnow
        self._lock = threading.Lock()
        self._fingerprints: deque = deque(maxlen=self.config.fingerprint_capacity)
        self._bursts: dict = {}

        self._primary = _KeywordSet(self.config.primary_keywords)
        self._secondary = {
            group: _KeywordSet(keywords)
            for group, keywords in self.config.secondary_entities.items()
        }
        self._noise = _KeywordSet(self.config.noise_keywords)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def evaluate(self, item: FilterItem) -> FilterResult:
        """
        Evaluate an item and record it in the fingerprint cache and burst tracker.

        Raises:
            TypeError: item is None or not a FilterItem
        """
        self._check_item(item)
        with self._lock:
            return self._evaluate(item, record=True)

    def preview(self, item: FilterItem) -> FilterResult:
        """Evaluate an item without touching the caches."""
        self._check_item(item)
        with self._lock:
            return self._evaluate(item, record=False)

    def clear_burst_tracking(self):
        """Drop burst windows and fingerprints that have aged out."""
        now = self._clock()
        with self._lock:
            burst_cutoff = now - timedelta(minutes=self.config.burst_window_minutes)
            for source_id in list(self._bursts):
                window = self._bursts[source_id]
                self._prune_window(window, burst_cutoff)
                if not window:
                    del self._bursts[source_id]
            self._prune_fingerprints(now)

    def reset(self):
        """Forget everything."""
        with self._lock:
            self._fingerprints.clear()
            self._bursts.clear()

    def get_filter_stats(self) -> dict:
        with self._lock:
            return {
                'cache_size': len(self._fingerprints),
                'tracked_sources': len(self._bursts),
            }

    def get_source_tier(self, source_url: Optional[str], source_name: str = '',
                        tier_override: Optional[int] = None) -> int:
        """
        Resolve the tier of a source.

        An operator override wins; otherwise the first table key whose host
        (and path prefix, if any) matches the source URL or compacted name.
        Unknown sources get the default tier.
        """
        if tier_override in self.config.tier_multipliers:
            return tier_override

        if not isinstance(source_url, str):
            source_url = None
        if not isinstance(source_name, str):
            source_name = ''

        domain = extract_domain(source_url) or source_name.lower().replace(' ', '')
        if domain:
            for key, tier in self.config.source_tiers.items():
                if matches_source_key(domain, key):
                    return tier

        return self.config.default_tier

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @staticmethod
    def _check_item(item):
        if item is None:
            raise TypeError("evaluate() requires an item, got None")
        if not isinstance(item, FilterItem):
            raise TypeError(f"evaluate() requires a FilterItem, got {type(item).__name__}")

    def _evaluate(self, item: FilterItem, record: bool) -> FilterResult:
        now = self._clock()

        # Stage 1: ingestion gate (tier still reported on rejections)
        gate_error = self._ingestion_gate(item, now)

        # Stage 2: source tiering
        tier = self.get_source_tier(item.source_url, item.source_name, item.tier_override)
        if gate_error:
            return self._result(FilterStatus.REJECTED, 0.0, tier, gate_error)

        # Stage 3: semantic fingerprint
        fingerprint = generate_fingerprint(item.title)
        words = _significant_words(item.title)
        self._prune_fingerprints(now)
        match = self._find_similar(fingerprint, words, item.source_id)
        if match is not None:
            return self._result(
                FilterStatus.MERGED, 0.7, tier,
                f"Near-duplicate of item {match.item_id} from another source",
                merge_with_id=match.item_id,
                fingerprint=fingerprint,
            )

        # Stage 4: heuristic relevance score
        result = self._score(item, tier, now)
        result.semantic_fingerprint = fingerprint
        if not result.kept:
            return result

        # Stage 5: burst control
        burst_count = self._check_burst(item.source_id, now, record)
        if burst_count > self.config.burst_limit:
            result.status = FilterStatus.FLAGGED
            result.reasoning = (
                f"Burst detected: {burst_count} items within "
                f"{self.config.burst_window_minutes:g} minutes from this source"
            )

        result.action = self._action_for(result.status, item.auto_approve)

        if record:
            self._remember(item, fingerprint, words, now)

        return result

    def _ingestion_gate(self, item: FilterItem, now: datetime) -> Optional[str]:
        if not isinstance(item.title, str) or not item.title.strip():
            return "Missing title"

        identifier = item.guid or item.link
        if not isinstance(identifier, str) or not identifier.strip():
            return "Missing unique identifier (guid or link)"

        if item.source_id is None:
            return "Missing source"

        published_at = item.published_at
        if not isinstance(published_at, datetime):
            return "Missing or invalid published timestamp"
        if published_at.tzinfo is None:
            published_at = published_at.replace(tzinfo=timezone.utc)

        if published_at > now + timedelta(minutes=self.config.future_tolerance_minutes):
            return f"Published timestamp is in the future ({published_at.isoformat()})"
        if published_at < now - timedelta(days=self.config.max_age_days):
            return f"Stale item older than {self.config.max_age_days:g} days"

        return None

    def _score(self, item: FilterItem, tier: int, now: datetime) -> FilterResult:
        excerpt = item.excerpt if isinstance(item.excerpt, str) else ''
        full_text = normalize_text(f"{item.title} {excerpt}")
        tokens = set(full_text.split())

        group_counts = {
            group: keywords.count(full_text, tokens)
            for group, keywords in self._secondary.items()
        }
        secondary_count = sum(group_counts.values())
        entity_density = min(secondary_count / 5, 1.0)

        if item.category_slug and item.category_slug in self.config.bypass_categories:
            return self._result(
                FilterStatus.ACCEPTED, 1.0, tier,
                f"Global category ({item.category_slug}) bypasses topical scoring",
                entity_density=entity_density,
            )

        primary_count = self._primary.count(full_text, tokens)
        geo_count = group_counts.get('geographic', 0)
        political_count = group_counts.get('political', 0)
        strong_secondary = secondary_count >= 2 or (political_count >= 1 and geo_count >= 1)

        if primary_count == 0 and not strong_secondary:
            return self._result(
                FilterStatus.REJECTED, 0.0, tier,
                "No primary topic identifier found (اليمن/Yemen)",
                entity_density=entity_density,
            )

        secondary_required = 0 if tier == 1 else 1
        if secondary_count < secondary_required:
            return self._result(
                FilterStatus.REJECTED, 0.1, tier,
                f"Insufficient entity depth (found {secondary_count} secondary entities)",
                entity_density=entity_density,
            )

        title_text = normalize_text(item.title)
        title_tokens = set(title_text.split())
        noise_count = self._noise.count(title_text, title_tokens)
        title_primary = self._primary.count(title_text, title_tokens)
        if noise_count > title_primary:
            return self._result(
                FilterStatus.REJECTED, 0.15, tier,
                f"Noise keywords dominate title ({noise_count} noise vs {title_primary} topic)",
                entity_density=entity_density,
            )

        weights = self.config.score_weights
        topic_score = min(primary_count / 2, 1.0)
        max_multiplier = max(self.config.tier_multipliers.values())
        source_weight = self.config.tier_multipliers.get(tier, 1.0) / max_multiplier
        recency = self._recency_score(item.published_at, now)

        score = round(
            weights['topic'] * topic_score
            + weights['entity'] * entity_density
            + weights['source'] * source_weight
            + weights['recency'] * recency,
            2
        )

        threshold = self.config.tier_thresholds.get(tier, self.config.tier_thresholds[self.config.default_tier])
        details = (
            f"primary={primary_count}, entities={secondary_count}, "
            f"recency={recency:.2f}, tier={tier}, threshold={threshold:.2f}"
        )

        if score < threshold:
            status = FilterStatus.REJECTED
            reasoning = f"Score {score:.2f} below threshold ({details})"
        elif score < threshold + self.config.flag_margin:
            status = FilterStatus.FLAGGED
            reasoning = f"Borderline score {score:.2f}, needs review ({details})"
        else:
            status = FilterStatus.ACCEPTED
            reasoning = f"Passed all gates with score {score:.2f} ({details})"

        return self._result(status, score, tier, reasoning, entity_density=entity_density)

    def _recency_score(self, published_at: datetime, now: datetime) -> float:
        if published_at.tzinfo is None:
            published_at = published_at.replace(tzinfo=timezone.utc)
        age_hours = max((now - published_at).total_seconds() / 3600, 0.0)
        half_life = self.config.recency_half_life_hours
        if half_life <= 0:
            return 1.0
        return math.pow(0.5, age_hours / half_life)

    def _check_burst(self, source_id, now: datetime, record: bool) -> int:
        """Items from the source inside the window, this one included."""
        cutoff = now - timedelta(minutes=self.config.burst_window_minutes)
        window = self._bursts.get(source_id)
        if window is None:
            window = deque()
            if record:
                self._bursts[source_id] = window
        self._prune_window(window, cutoff)

        if record:
            window.append(now)
            return len(window)
        return len(window) + 1

    # ------------------------------------------------------------------
    # Cache helpers (caller holds the lock)
    # ------------------------------------------------------------------

    @staticmethod
    def _prune_window(window: deque, cutoff: datetime):
        while window and window[0] < cutoff:
            window.popleft()

    def _prune_fingerprints(self, now: datetime):
        cutoff = now - timedelta(hours=self.config.dedup_window_hours)
        while self._fingerprints and self._fingerprints[0].seen_at < cutoff:
            self._fingerprints.popleft()

    def _find_similar(self, fingerprint: str, words: frozenset, source_id) -> Optional[_CachedFingerprint]:
        for entry in self._fingerprints:
            if entry.source_id == source_id:
                continue  # cross-source only
            if entry.fingerprint == fingerprint:
                return entry
            if jaccard_similarity(words, entry.words) >= self.config.similarity_threshold:
                return entry
        return None

    def _remember(self, item: FilterItem, fingerprint: str, words: frozenset, now: datetime):
        item_id = item.item_id if item.item_id is not None else (item.guid or item.link)
        for entry in self._fingerprints:
            if entry.item_id == item_id:
                return
        self._fingerprints.append(_CachedFingerprint(
            item_id=item_id,
            source_id=item.source_id,
            fingerprint=fingerprint,
            words=words,
            seen_at=now,
        ))

    # ------------------------------------------------------------------

    def _action_for(self, status: FilterStatus, auto_approve: bool) -> FilterAction:
        if status == FilterStatus.ACCEPTED:
            return FilterAction.PUBLISH if auto_approve else FilterAction.HOLD
        if status == FilterStatus.MERGED:
            return FilterAction.MERGE
        if status == FilterStatus.FLAGGED:
            return FilterAction.HOLD
        return FilterAction.DROP

    def _result(self, status: FilterStatus, score: float, tier: int, reasoning: str,
                merge_with_id=None, fingerprint: Optional[str] = None,
                entity_density: float = 0.0) -> FilterResult:
        return FilterResult(
            status=status,
            relevance_score=score,
            tier=tier,
            reasoning=reasoning,
            action=self._action_for(status, False),
            merge_with_id=merge_with_id,
            semantic_fingerprint=fingerprint,
            entity_density=entity_density,
        )


_default_filter: Optional[RelevanceFilter] = None
_default_filter_lock = threading.Lock()


def get_relevance_filter() -> RelevanceFilter:
    """Process-wide filter built from the environment on first use."""
    global _default_filter
    with _default_filter_lock:
        if _default_filter is None:
            _default_filter = RelevanceFilter(FilterConfig.from_env())
            logger.info("Relevance filter initialized")
        return _default_filter
