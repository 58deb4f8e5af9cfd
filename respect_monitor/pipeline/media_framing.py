"""
Media framing aggregation over a window of headlines.

Per-item weight = recency weight x classification confidence, where the
recency weight for an item published d days ago is max(0.1, 1 - d/14). The
14-day decay horizon is a fixed constant and does not follow the window_days
argument.

Raw items are deduplicated before anything is counted: the key is the URL when
it looks like one, else title|outlet|day lowercased with whitespace collapsed.
The first item seen for a key wins, so curated items passed first are never
shadowed by a later fetch of the same story.
"""

import logging
import re
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from respect_monitor.pipeline.models import (
    ClassifiedItem,
    DateWindow,
    MediaExemplar,
    MediaFramingAggregate,
    MediaTypeBreakdown,
    RawMediaItem,
    RespectShare,
)
from respect_monitor.pipeline.taxonomy import DEFAULT_MEDIA_RESPECT, rank_by_value

logger = logging.getLogger(__name__)

RECENCY_HORIZON_DAYS = 14
RECENCY_FLOOR = 0.1
EXEMPLAR_COUNT = 6
TOP_PHRASE_COUNT = 10
MIN_PHRASE_LENGTH = 3

STOPWORDS = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of",
    "with", "by", "is", "are", "was", "were", "be", "been", "being", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
    "may", "might", "must", "can", "new", "says",
])

MEDIA_TYPES = ("broadcast", "broadsheet", "tabloid", "wire", "online")
DEFAULT_MEDIA_TYPE = "online"

# Keys are lowercased outlet names with any leading "the " removed.
OUTLET_MEDIA_TYPES: Dict[str, str] = {
    "bbc": "broadcast",
    "bbc news": "broadcast",
    "sky news": "broadcast",
    "sky": "broadcast",
    "itv news": "broadcast",
    "channel 4 news": "broadcast",
    "guardian": "broadsheet",
    "times": "broadsheet",
    "telegraph": "broadsheet",
    "financial times": "broadsheet",
    "ft": "broadsheet",
    "independent": "broadsheet",
    "daily mail": "tabloid",
    "mail": "tabloid",
    "sun": "tabloid",
    "mirror": "tabloid",
    "daily mirror": "tabloid",
    "express": "tabloid",
    "reuters": "wire",
    "pa media": "wire",
    "pa": "wire",
    "press association": "wire",
}

_WHITESPACE = re.compile(r"\s+")
_PUNCT = re.compile(r"[^\w\s]")
_LEADING_THE = re.compile(r"^the\s+")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp (trailing Z allowed); naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def recency_weight(published_at: Optional[str], now: datetime) -> float:
    """
    Linear decay over 14 days with a 0.1 floor.

    Unparseable or future timestamps count as published now.
    """
    published = parse_timestamp(published_at)
    if published is None:
        return 1.0
    days_ago = max(0.0, (now - published).total_seconds() / 86400)
    return max(RECENCY_FLOOR, 1 - days_ago / RECENCY_HORIZON_DAYS)


def media_type_for(item: RawMediaItem) -> str:
    """Explicit media_type wins; else look the outlet up, defaulting to online."""
    if item.media_type:
        return item.media_type
    key = _LEADING_THE.sub("", item.outlet.lower().strip())
    return OUTLET_MEDIA_TYPES.get(key, DEFAULT_MEDIA_TYPE)


def media_dedup_key(item: RawMediaItem) -> str:
    if item.url and item.url.startswith("http"):
        return item.url
    composite = f"{item.title}|{item.outlet}|{(item.published_at or '')[:10]}"
    return _WHITESPACE.sub(" ", composite.lower())


def dedupe_media(items: Iterable[RawMediaItem]) -> List[RawMediaItem]:
    """Keep the first item per dedup key, preserving order."""
    seen = set()
    kept = []
    for item in items:
        key = media_dedup_key(item)
        if key in seen:
            continue
        seen.add(key)
        kept.append(item)
    return kept


def merge_media(curated: Sequence[RawMediaItem], *fresh: Sequence[RawMediaItem]) -> List[RawMediaItem]:
    """
    Merge stored (curated) items with freshly collected batches.

    Curated items are checked first, so a manual entry is never shadowed by an
    automated fetch of the same story.
    """
    merged = list(curated)
    for batch in fresh:
        merged.extend(batch)
    kept = dedupe_media(merged)
    dropped = len(merged) - len(kept)
    if dropped:
        logger.info(f"Dropped {dropped} duplicate media items")
    return kept


def top_phrases(titles: Iterable[str], n: int = TOP_PHRASE_COUNT) -> List[str]:
    """Most frequent title tokens (len >= 3, no stopwords); ties keep first-seen order."""
    counts: Dict[str, int] = OrderedDict()
    for title in titles:
        for token in _PUNCT.sub(" ", title.lower()).split():
            if len(token) < MIN_PHRASE_LENGTH or token in STOPWORDS:
                continue
            counts[token] = counts.get(token, 0) + 1
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    return [token for token, _ in ranked[:n]]


def _weighted_shares(weighted: Iterable[Tuple[str, float]]) -> List[RespectShare]:
    by_respect: Dict[str, float] = {}
    for respect_id, weight in weighted:
        by_respect[respect_id] = by_respect.get(respect_id, 0.0) + weight
    total = sum(by_respect.values()) or 1
    return [RespectShare(rid, value / total) for rid, value in rank_by_value(by_respect)]


def aggregate_media(
    subject_id: str,
    classified: Sequence[ClassifiedItem],
    raw_items: Sequence[RawMediaItem],
    window_days: int = RECENCY_HORIZON_DAYS,
    media_source: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MediaFramingAggregate:
    """
    Aggregate classified headlines into framing shares.

    Args:
        subject_id: Subject being refreshed
        classified: Classified items (non-media kinds are ignored)
        raw_items: Raw media items already limited to the window by the collector
        window_days: Reported window length
        media_source: Connector that supplied the items ("news_api" or "rss")
        now: Reference time for recency weighting

    Returns:
        MediaFramingAggregate; shares is empty when nothing was classified
    """
    now = now or datetime.now(timezone.utc)

    raw = dedupe_media(raw_items)
    raw_by_id: Dict[str, RawMediaItem] = {}
    for item in raw:
        raw_by_id.setdefault(item.id, item)
    dropped_ids = {item.id for item in raw_items} - set(raw_by_id)

    media_classified: List[ClassifiedItem] = []
    seen_items = set()
    for c in classified:
        if c.item_type != "media" or c.item_id in seen_items or c.item_id in dropped_ids:
            continue
        seen_items.add(c.item_id)
        media_classified.append(c)

    def item_weight(c: ClassifiedItem) -> float:
        source = raw_by_id.get(c.item_id)
        return recency_weight(source.published_at if source else None, now) * c.confidence

    weights = [(c, item_weight(c)) for c in media_classified]
    shares = _weighted_shares((c.respect_id, w) for c, w in weights)
    dominant = shares[0] if shares else RespectShare(DEFAULT_MEDIA_RESPECT, 0.0)

    exemplars = []
    for c, _ in sorted(weights, key=lambda cw: -cw[1]):
        source = raw_by_id.get(c.item_id)
        if source is None:
            continue
        exemplars.append(MediaExemplar(
            source_id=source.id,
            outlet=source.outlet,
            title=source.title,
            published_at=source.published_at,
            url=source.url,
            respect_id=c.respect_id,
            confidence=c.confidence,
        ))
        if len(exemplars) == EXEMPLAR_COUNT:
            break

    partitions: Dict[str, List[RawMediaItem]] = OrderedDict()
    for item in raw:
        partitions.setdefault(media_type_for(item), []).append(item)
    classified_by_id = {c.item_id: c for c in media_classified}
    volume = len(raw)
    breakdown = []
    for media_type, items in partitions.items():
        type_weights = []
        for item in items:
            c = classified_by_id.get(item.id)
            if c is not None:
                type_weights.append((c.respect_id, recency_weight(item.published_at, now) * c.confidence))
        breakdown.append(MediaTypeBreakdown(
            media_type=media_type,
            n=len(items),
            weight=len(items) / volume if volume else 0.0,
            shares=_weighted_shares(type_weights),
        ))
    breakdown.sort(key=lambda b: -b.n)

    window = DateWindow(
        start=(now - timedelta(days=window_days)).strftime("%Y-%m-%d"),
        end=now.strftime("%Y-%m-%d"),
    )

    logger.info(
        f"Media framing for {subject_id}: {len(media_classified)} classified of {volume} items, "
        f"dominant {dominant.respect_id} ({dominant.share:.2f})"
    )

    return MediaFramingAggregate(
        window=window,
        dominant=dominant,
        shares=shares,
        top_phrases=top_phrases(item.title for item in raw),
        exemplars=exemplars,
        source_ids=list(OrderedDict.fromkeys(item.id for item in raw)),
        volume=volume,
        media_type_breakdown=breakdown,
        media_source=media_source,
    )
