"""
Dominant respect: weighted vote over media, public and institutional sources.

score(framing) = sum over sources of share(framing) x source weight

Media and public contribute every framing they report a share for; the
institutional term is a curated constant per subject. The winner is the top
score with catalog order breaking ties, the next three are reported as
alternatives, and split_dominance flags a gap under 0.10 between the top two.

Snapshots are always created with status "proposed". Promotion to
"validated" happens outside the pipeline.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from respect_monitor.config.subjects import UnknownSubjectError, get_subject
from respect_monitor.pipeline.models import (
    DominanceContributor,
    DominanceSnapshot,
    MediaFramingAggregate,
    PublicPollingAggregate,
    RankedRespect,
)
from respect_monitor.pipeline.taxonomy import RESPECT_IDS, is_respect_id, rank_by_value

logger = logging.getLogger(__name__)

MEDIA_WEIGHT = 0.45
PUBLIC_WEIGHT = 0.35
INSTITUTIONAL_WEIGHT = 0.20

SPLIT_DOMINANCE_MARGIN = 0.10
MAX_ALTERNATIVES = 3
MAX_CONTRIBUTOR_SOURCES = 5


@dataclass(frozen=True)
class DominanceWeights:
    media: float = MEDIA_WEIGHT
    public: float = PUBLIC_WEIGHT
    institutional: float = INSTITUTIONAL_WEIGHT


DEFAULT_WEIGHTS = DominanceWeights()


@dataclass
class InstitutionalContribution:
    respect_id: str
    note: str = ""
    source_ids: List[str] = field(default_factory=list)


InstitutionalLookup = Callable[[str], Optional[InstitutionalContribution]]


def default_institutional_lookup(subject_id: str) -> Optional[InstitutionalContribution]:
    """Read the curated institutional constant from config/subjects.yaml."""
    try:
        subject = get_subject(subject_id)
    except UnknownSubjectError:
        return None
    block = subject.institutional
    if not block or not block.get("respect_id"):
        return None
    respect_id = str(block["respect_id"])
    if not is_respect_id(respect_id):
        logger.warning(f"Institutional framing for {subject_id} is not in the catalog: {respect_id}")
        return None
    return InstitutionalContribution(
        respect_id=respect_id,
        note=block.get("note", ""),
        source_ids=[str(s["id"]) for s in block.get("sources") or [] if s.get("id")],
    )


def no_institutional_lookup(subject_id: str) -> Optional[InstitutionalContribution]:
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def compute_dominance(
    subject_id: str,
    media_agg: MediaFramingAggregate,
    public_agg: PublicPollingAggregate,
    weights: DominanceWeights = DEFAULT_WEIGHTS,
    institutional_lookup: InstitutionalLookup = default_institutional_lookup,
    as_of: Optional[str] = None,
) -> DominanceSnapshot:
    """
    Compute the dominance snapshot for a subject.

    Args:
        subject_id: Subject being refreshed
        media_agg: Media framing aggregate
        public_agg: Public polling aggregate
        weights: Source weights
        institutional_lookup: subject id -> InstitutionalContribution or None
        as_of: Snapshot timestamp (defaults to now)

    Returns:
        DominanceSnapshot with status "proposed"
    """
    scores: Dict[str, float] = {}
    contributors: List[DominanceContributor] = []

    if media_agg.shares:
        for s in media_agg.shares:
            scores[s.respect_id] = scores.get(s.respect_id, 0.0) + s.share * weights.media
        contributors.append(DominanceContributor(
            type="media",
            respect_id=media_agg.dominant.respect_id,
            weight=weights.media,
            value_share=media_agg.dominant.share,
            source_ids=list(media_agg.source_ids[:MAX_CONTRIBUTOR_SOURCES]),
        ))

    if public_agg.shares:
        for s in public_agg.shares:
            scores[s.respect_id] = scores.get(s.respect_id, 0.0) + s.share * weights.public
        contributors.append(DominanceContributor(
            type="public",
            respect_id=public_agg.public_prior.respect_id,
            weight=weights.public,
            value_share=public_agg.public_prior.share,
            source_ids=list(public_agg.source_ids[:MAX_CONTRIBUTOR_SOURCES]),
        ))

    institutional = institutional_lookup(subject_id)
    if institutional is not None and weights.institutional > 0:
        scores[institutional.respect_id] = scores.get(institutional.respect_id, 0.0) + weights.institutional
        contributors.append(DominanceContributor(
            type="institutional",
            respect_id=institutional.respect_id,
            weight=weights.institutional,
            note=institutional.note or None,
            source_ids=list(institutional.source_ids[:MAX_CONTRIBUTOR_SOURCES]),
        ))

    ranked = [RankedRespect(rid, score) for rid, score in rank_by_value(scores) if score > 0]
    if not ranked:
        logger.warning(f"No contributions for {subject_id}; defaulting to {RESPECT_IDS[0]}")
        ranked = [RankedRespect(RESPECT_IDS[0], 0.0)]

    split = len(ranked) >= 2 and (ranked[0].score - ranked[1].score) < SPLIT_DOMINANCE_MARGIN

    snapshot = DominanceSnapshot(
        as_of=as_of or _now_iso(),
        dominant=ranked[0],
        contributors=contributors,
        status="proposed",
        split_dominance=split,
        alternative=ranked[1:1 + MAX_ALTERNATIVES],
    )
    logger.info(
        f"Dominance for {subject_id}: {snapshot.dominant.respect_id} ({snapshot.dominant.score:.3f}), "
        f"split={split}"
    )
    return snapshot
