"""
Public polling aggregation: option-level framing shares and the public prior.

Each poll option is mapped to a framing by an ordered pattern table (first
match wins); options that match nothing count towards the default framing.
One poll can therefore split its mass across several framings. Each poll's
contributions are scaled by the poll's own classification confidence before
they are summed across polls.

Polls must already have passed the validation gate in validate_poll.
"""

import calendar
import logging
import math
import re
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence, Tuple

from respect_monitor.pipeline.models import (
    ClassifiedItem,
    DateWindow,
    PollOptionResult,
    PollQuestion,
    PublicPollingAggregate,
    RawPollItem,
    RespectShare,
    SupportingPoll,
)
from respect_monitor.pipeline.taxonomy import DEFAULT_POLL_RESPECT, rank_by_value

logger = logging.getLogger(__name__)

MAX_SUPPORTING_POLLS = 10

# Option-level patterns; first match wins.
POLL_OPTION_PATTERNS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"tough|stop|reduce|control|border|crackdown", re.IGNORECASE), "security_border"),
    (re.compile(r"humane|protect|refugee|dignity|safe", re.IGNORECASE), "humanitarian"),
    (re.compile(r"legal|law|ECHR|process", re.IGNORECASE), "rule_of_law"),
    (re.compile(r"sovereignty|take back", re.IGNORECASE), "sovereignty_control"),
)

NO_POLLS_SUMMARY = "No polling data in window"
INSUFFICIENT_SUMMARY = "Insufficient poll data"
TREND_PRESENT = "Based on polls in window (recency-weighted)."
TREND_INSUFFICIENT = "Insufficient data for trend."


def to_pct(share: float) -> int:
    """Round a 0-1 share to a whole percentage, halves rounding up."""
    return int(math.floor(share * 100 + 0.5))


def map_option(option: str) -> str:
    for pattern, respect_id in POLL_OPTION_PATTERNS:
        if pattern.search(option):
            return respect_id
    return DEFAULT_POLL_RESPECT


def map_poll_options(poll: RawPollItem) -> Dict[str, float]:
    """
    Sum each option's result into its mapped framing.

    Returns:
        Dict of respect id -> share, in order of first appearance
    """
    mapped: Dict[str, float] = {}
    for option, result in zip(poll.options, poll.results):
        respect_id = map_option(option)
        mapped[respect_id] = mapped.get(respect_id, 0.0) + result
    return mapped


def months_before(now: datetime, months: int) -> datetime:
    month_index = now.year * 12 + (now.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    day = min(now.day, calendar.monthrange(year, month)[1])
    return now.replace(year=year, month=month, day=day)


def split_summary(ranked: Sequence[RespectShare], n_polls: int) -> str:
    """Render the top two shares, e.g. "58% security border vs 42% humanitarian"."""
    if len(ranked) >= 2:
        parts = [f"{to_pct(s.share)}% {s.respect_id.replace('_', ' ')}" for s in ranked[:2]]
        return f"{parts[0]} vs {parts[1]}"
    return NO_POLLS_SUMMARY if n_polls == 0 else INSUFFICIENT_SUMMARY


def trend_summary(n_polls: int) -> str:
    """Presence check only; no time-series fit is attempted."""
    return TREND_PRESENT if n_polls >= 2 else TREND_INSUFFICIENT


def question_breakdown(poll: RawPollItem) -> PollQuestion:
    mapped = map_poll_options(poll)
    ranked = rank_by_value(mapped)
    primary_id, primary_share = ranked[0] if ranked else (DEFAULT_POLL_RESPECT, 0.0)
    option_results = []
    if poll.options and len(poll.options) == len(poll.results):
        option_results = [
            PollOptionResult(option=opt, pct=to_pct(result))
            for opt, result in zip(poll.options, poll.results)
        ]
    return PollQuestion(
        source_id=poll.id,
        pollster=poll.pollster,
        fieldwork_dates=poll.fieldwork_dates,
        question=poll.question,
        mapped_respect=primary_id,
        result_pct=to_pct(primary_share),
        sample_size=poll.sample_size,
        url=poll.url,
        option_results=option_results,
    )


def aggregate_polling(
    subject_id: str,
    classified: Sequence[ClassifiedItem],
    raw_polls: Sequence[RawPollItem],
    window_months: int = 6,
    now: Optional[datetime] = None,
) -> PublicPollingAggregate:
    """
    Aggregate validated polls into a public prior.

    Args:
        subject_id: Subject being refreshed
        classified: Classified items (non-poll kinds are ignored)
        raw_polls: Polls that passed validation
        window_months: Reported window length
        now: Reference time for the window

    Returns:
        PublicPollingAggregate with every non-zero framing in shares
    """
    now = now or datetime.now(timezone.utc)
    polls_by_id: Dict[str, RawPollItem] = {}
    for poll in raw_polls:
        polls_by_id.setdefault(poll.id, poll)

    contributions: Dict[str, float] = {}
    seen = set()
    for c in classified:
        if c.item_type != "poll" or c.item_id in seen:
            continue
        seen.add(c.item_id)
        poll = polls_by_id.get(c.item_id)
        if poll is None:
            continue
        for respect_id, share in map_poll_options(poll).items():
            contributions[respect_id] = contributions.get(respect_id, 0.0) + share * c.confidence

    total = sum(contributions.values()) or 1
    ranked = [RespectShare(rid, value / total) for rid, value in rank_by_value(contributions) if value > 0]
    public_prior = ranked[0] if ranked else RespectShare(DEFAULT_POLL_RESPECT, 0.0)

    polls = list(polls_by_id.values())
    supporting = [
        SupportingPoll(
            source_id=p.id,
            pollster=p.pollster,
            question=p.question,
            published_at=p.published_at,
            fieldwork_dates=p.fieldwork_dates,
            url=p.url,
        )
        for p in polls[:MAX_SUPPORTING_POLLS]
    ]

    logger.info(f"Public polling for {subject_id}: {len(polls)} polls, prior {public_prior.respect_id} ({public_prior.share:.2f})")

    return PublicPollingAggregate(
        window=DateWindow(
            start=months_before(now, window_months).strftime("%Y-%m-%d"),
            end=now.strftime("%Y-%m-%d"),
        ),
        public_prior=public_prior,
        shares=ranked,
        split_summary=split_summary(ranked, len(polls)),
        trend_summary=trend_summary(len(polls)),
        supporting_polls=supporting,
        source_ids=[p.id for p in polls],
        question_level=[question_breakdown(p) for p in polls],
    )
