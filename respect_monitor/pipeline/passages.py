"""
Passage extractor for long free text (party manifestos).

Finds the segments that mention a subject's trigger phrases, expands each hit
to a neighbourhood of surrounding segments, merges overlapping or adjacent
neighbourhoods, and scores every merged passage against the framing keyword
seeds. The concatenated passages are the only manifesto text the stance
oracle ever sees.

Offsets are character positions in the original text: start inclusive, end
exclusive.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from respect_monitor.config.subjects import get_trigger_phrases
from respect_monitor.pipeline.classifier import RespectScore, score_text

logger = logging.getLogger(__name__)

EXCERPT_DELIMITER = "\n\n---\n\n"
TRUNCATION_MARKER = "\n\n[... truncated]"


@dataclass
class PassageOptions:
    window: int = 2
    use_paragraphs: bool = False
    max_chars: int = 12000


@dataclass
class Segment:
    text: str
    start: int
    end: int


@dataclass
class Passage:
    start: int
    end: int
    text: str
    trigger_matched: str
    subject_id: str


@dataclass
class ScoredPassage(Passage):
    respect_scores: List[RespectScore] = field(default_factory=list)
    suggested_respect: Optional[str] = None


def split_sentences(text: str) -> List[Segment]:
    """Split on ". " and newlines; the boundary character stays with the left segment."""
    segments = []
    pos = 0
    length = len(text)
    while pos < length:
        end = length
        next_period = text.find(". ", pos)
        next_newline = text.find("\n", pos)
        if next_period != -1:
            end = min(end, next_period + 1)
        if next_newline != -1:
            end = min(end, next_newline + 1)
        sentence = text[pos:end].strip()
        if sentence:
            segments.append(Segment(sentence, pos, end))
        pos = end
    return segments


def split_paragraphs(text: str) -> List[Segment]:
    """Split on blank lines ("\\n\\n")."""
    segments = []
    pos = 0
    length = len(text)
    while pos < length:
        next_double = text.find("\n\n", pos)
        end = length if next_double == -1 else next_double
        paragraph = text[pos:end].strip()
        if paragraph:
            segments.append(Segment(paragraph, pos, end))
        pos = length if next_double == -1 else next_double + 2
    return segments


def merge_ranges(ranges: Sequence[tuple]) -> List[List[int]]:
    """Merge [start, end) ranges that overlap or sit within one character of each other."""
    if not ranges:
        return []
    ordered = sorted(ranges, key=lambda r: r[0])
    merged = [[ordered[0][0], ordered[0][1]]]
    for start, end in ordered[1:]:
        last = merged[-1]
        if start <= last[1] + 1:
            last[1] = max(last[1], end)
        else:
            merged.append([start, end])
    return merged


def extract_passages(
    full_text: str,
    subject_id: str,
    options: Optional[PassageOptions] = None,
    triggers: Optional[Sequence[str]] = None,
) -> List[Passage]:
    """
    Extract merged trigger neighbourhoods for one subject.

    Args:
        full_text: Document text
        subject_id: Subject whose trigger phrases to use
        options: Window size, segmentation mode, character budget
        triggers: Override trigger phrases (defaults to config/subjects.yaml)

    Returns:
        Non-overlapping passages in document order
    """
    opts = options or PassageOptions()
    phrases = [p.lower() for p in (triggers if triggers is not None else get_trigger_phrases(subject_id))]
    if not phrases or not full_text:
        return []

    segments = split_paragraphs(full_text) if opts.use_paragraphs else split_sentences(full_text)

    hits = []
    for i, seg in enumerate(segments):
        lower = seg.text.lower()
        for phrase in phrases:
            if phrase in lower:
                lo = max(0, i - opts.window)
                hi = min(len(segments) - 1, i + opts.window)
                hits.append((segments[lo].start, segments[hi].end, phrase))
                break

    passages = []
    for start, end in merge_ranges([(h[0], h[1]) for h in hits]):
        text = full_text[start:end].strip()
        if not text:
            continue
        trigger = next((h[2] for h in hits if start <= h[0] < end), phrases[0])
        passages.append(Passage(start=start, end=end, text=text, trigger_matched=trigger, subject_id=subject_id))

    logger.debug(f"{len(passages)} passages for {subject_id} from {len(hits)} trigger hits")
    return passages


def score_passage(text: str) -> List[RespectScore]:
    """Rank framings for a passage with the classifier's keyword rule."""
    return score_text(text)


def extract_passages_with_scores(
    full_text: str,
    subject_id: str,
    options: Optional[PassageOptions] = None,
    triggers: Optional[Sequence[str]] = None,
) -> List[ScoredPassage]:
    """Extract passages and attach ranked framing scores plus a suggested framing."""
    scored = []
    for p in extract_passages(full_text, subject_id, options, triggers):
        scores = score_passage(p.text)
        scored.append(ScoredPassage(
            start=p.start,
            end=p.end,
            text=p.text,
            trigger_matched=p.trigger_matched,
            subject_id=p.subject_id,
            respect_scores=scores,
            suggested_respect=scores[0].respect_id if scores else None,
        ))
    return scored


def build_relevant_excerpts(
    full_text: str,
    subject_id: str,
    options: Optional[PassageOptions] = None,
    triggers: Optional[Sequence[str]] = None,
) -> str:
    """
    Join a subject's passages with a visible delimiter, truncated to the budget.

    Returns:
        Excerpt text; ends with the truncation marker when the budget was hit
    """
    opts = options or PassageOptions()
    joined = EXCERPT_DELIMITER.join(p.text for p in extract_passages(full_text, subject_id, opts, triggers))
    if len(joined) <= opts.max_chars:
        return joined
    return joined[:opts.max_chars] + TRUNCATION_MARKER


def build_relevant_excerpts_by_subject(
    full_text: str,
    subject_ids: Sequence[str],
    options: Optional[PassageOptions] = None,
) -> Dict[str, str]:
    return {sid: build_relevant_excerpts(full_text, sid, options) for sid in subject_ids}
