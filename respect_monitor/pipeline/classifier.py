"""
Respect classifier: assign each raw item exactly one framing plus a confidence.

Keyword path: every catalog seed is tested against the item text. A seed earns
+1 when any token contains it or is contained in it, and a further +0.5 when it
appears verbatim in the lowercased text. The best-scoring framing wins (catalog
order on ties) and confidence is clamp(score / max(top, 3), 0.3, 0.95).

Items that match nothing are never left unclassified: they fall back to the
per-kind default framing at confidence 0.5.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence, Tuple

from respect_monitor.pipeline.models import (
    ClassifiedItem,
    RawMediaItem,
    RawMetricItem,
    RawPollItem,
)
from respect_monitor.pipeline.taxonomy import (
    DEFAULT_MEDIA_RESPECT,
    DEFAULT_METRIC_RESPECT,
    DEFAULT_POLL_RESPECT,
    RESPECTS,
    is_respect_id,
)

logger = logging.getLogger(__name__)

MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95
DEFAULT_CONFIDENCE = 0.5
CONFIDENCE_FLOOR_SCORE = 3

PRE_LABELLED_CONFIDENCE = 0.9
POLL_PATTERN_CONFIDENCE = 0.65
ORACLE_CONFIDENCE = 0.8

MAX_RATIONALE_SEEDS = 5

# Question-level poll patterns; first match wins.
POLL_QUESTION_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"tough|stop|deter|crackdown|reduce numbers|boats", re.IGNORECASE), "security_border"),
    (re.compile(r"humane|dignity|protect|refugee|safe route", re.IGNORECASE), "humanitarian"),
    (re.compile(r"ECHR|HRA|legal|court|due process|law", re.IGNORECASE), "rule_of_law"),
    (re.compile(r"sovereignty|control|take back", re.IGNORECASE), "sovereignty_control"),
)

_PUNCT = re.compile(r"[^\w\s]")


@dataclass
class RespectScore:
    respect_id: str
    score: float
    matched: List[str] = field(default_factory=list)


def tokenize(text: str) -> List[str]:
    """Lowercase, replace punctuation with spaces, split, drop single characters."""
    return [t for t in _PUNCT.sub(" ", text.lower()).split() if len(t) > 1]


def score_text(text: str) -> List[RespectScore]:
    """
    Score text against every framing's keyword seeds.

    Args:
        text: Free text (headline, poll question, passage...)

    Returns:
        Framings with a positive score, best first, catalog order on ties
    """
    tokens = tokenize(text)
    lower = text.lower()
    scores = []
    for respect in RESPECTS:
        score = 0.0
        matched: List[str] = []
        for seed in respect.keyword_seeds:
            seed_norm = seed.lower()
            if any(seed_norm in t or t in seed_norm for t in tokens):
                score += 1
                if seed not in matched:
                    matched.append(seed)
            if seed_norm in lower:
                score += 0.5
                if seed not in matched:
                    matched.append(seed)
        if score > 0:
            scores.append(RespectScore(respect.id, score, matched))
    # sorted() is stable, so equal scores keep catalog order
    return sorted(scores, key=lambda s: -s.score)


def normalize_confidence(score: float, top_score: float) -> float:
    """Map a raw keyword score into [0.3, 0.95] relative to the top score."""
    if top_score <= 0:
        return DEFAULT_CONFIDENCE
    raw = score / max(top_score, CONFIDENCE_FLOOR_SCORE)
    return min(MAX_CONFIDENCE, max(MIN_CONFIDENCE, raw))


def _timestamp(now: Optional[datetime]) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def _keyword_classify(
    item_type: str,
    subject_id: str,
    item_id: str,
    text: str,
    default_respect: str,
    now: Optional[datetime] = None,
) -> ClassifiedItem:
    scored = score_text(text)
    if not scored:
        return ClassifiedItem(
            item_type=item_type,
            subject_id=subject_id,
            item_id=item_id,
            respect_id=default_respect,
            confidence=DEFAULT_CONFIDENCE,
            rationale=[f"No keyword match; default {default_respect}"],
            extracted_phrases=[],
            timestamp=_timestamp(now),
        )
    top = scored[0]
    return ClassifiedItem(
        item_type=item_type,
        subject_id=subject_id,
        item_id=item_id,
        respect_id=top.respect_id,
        confidence=normalize_confidence(top.score, top.score),
        rationale=[f"Matched: {', '.join(top.matched[:MAX_RATIONALE_SEEDS])}"],
        extracted_phrases=list(top.matched),
        timestamp=_timestamp(now),
    )


def classify_media_item(subject_id: str, item: RawMediaItem, now: Optional[datetime] = None) -> ClassifiedItem:
    """Keyword-classify a headline (title plus lede)."""
    text = " ".join(part for part in (item.title, item.lede) if part)
    return _keyword_classify("media", subject_id, item.id, text, DEFAULT_MEDIA_RESPECT, now)


def classify_poll_item(subject_id: str, item: RawPollItem, now: Optional[datetime] = None) -> ClassifiedItem:
    """
    Classify a poll from its question and option text.

    The question-level pattern table is consulted first; a hit fixes the
    confidence at 0.65. Otherwise the keyword path applies.
    """
    text = item.question + " " + " ".join(item.options)
    for pattern, respect_id in POLL_QUESTION_PATTERNS:
        if pattern.search(text):
            return ClassifiedItem(
                item_type="poll",
                subject_id=subject_id,
                item_id=item.id,
                respect_id=respect_id,
                confidence=POLL_PATTERN_CONFIDENCE,
                rationale=[f"Pattern match: {respect_id}"],
                extracted_phrases=[],
                timestamp=_timestamp(now),
            )
    return _keyword_classify("poll", subject_id, item.id, text, DEFAULT_POLL_RESPECT, now)


def classify_metric_item(subject_id: str, item: RawMetricItem, now: Optional[datetime] = None) -> ClassifiedItem:
    """Keyword-classify a metric from its label and source reference."""
    text = item.label + " " + (item.source_ref or "")
    return _keyword_classify("metric", subject_id, item.metric_id, text, DEFAULT_METRIC_RESPECT, now)


def classify_media_batch(
    subject_id: str,
    items: Sequence[RawMediaItem],
    oracle=None,
    now: Optional[datetime] = None,
) -> List[ClassifiedItem]:
    """
    Classify a batch of media items.

    Pre-labelled items keep their framing at confidence 0.9. The rest go to the
    oracle in a single call when one is configured; any oracle failure sends
    the whole batch down the keyword path instead.

    Args:
        subject_id: Subject being refreshed
        items: Deduplicated raw media items
        oracle: Optional ClassificationOracle
        now: Timestamp for the classified records

    Returns:
        One ClassifiedItem per input item, pre-labelled items first
    """
    classified: List[ClassifiedItem] = []
    to_classify: List[RawMediaItem] = []

    for item in items:
        if item.respect_id and is_respect_id(item.respect_id):
            classified.append(ClassifiedItem(
                item_type="media",
                subject_id=subject_id,
                item_id=item.id,
                respect_id=item.respect_id,
                confidence=PRE_LABELLED_CONFIDENCE,
                rationale=["pre-labelled"],
                extracted_phrases=[],
                timestamp=_timestamp(now),
            ))
        else:
            if item.respect_id:
                logger.warning(f"Ignoring unknown pre-label {item.respect_id} on {item.id}")
            to_classify.append(item)

    if not to_classify:
        return classified

    if oracle is not None:
        try:
            labels = oracle.classify(subject_id, to_classify)
        except Exception as e:
            logger.warning(f"Oracle classification failed, falling back to keywords: {e}")
        else:
            for i, item in enumerate(to_classify):
                respect_id = labels.get(i)
                if respect_id and is_respect_id(respect_id):
                    classified.append(ClassifiedItem(
                        item_type="media",
                        subject_id=subject_id,
                        item_id=item.id,
                        respect_id=respect_id,
                        confidence=ORACLE_CONFIDENCE,
                        rationale=["LLM classification"],
                        extracted_phrases=[],
                        timestamp=_timestamp(now),
                    ))
                else:
                    classified.append(ClassifiedItem(
                        item_type="media",
                        subject_id=subject_id,
                        item_id=item.id,
                        respect_id=DEFAULT_MEDIA_RESPECT,
                        confidence=DEFAULT_CONFIDENCE,
                        rationale=[f"No oracle label; default {DEFAULT_MEDIA_RESPECT}"],
                        extracted_phrases=[],
                        timestamp=_timestamp(now),
                    ))
            return classified

    classified.extend(classify_media_item(subject_id, item, now) for item in to_classify)
    return classified
