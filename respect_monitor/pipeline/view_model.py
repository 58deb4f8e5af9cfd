"""
Subject view model: dominance + aggregates + one card per party stance.

Stances arrive in the stance-extraction vocabulary and are translated to
pipeline ids through config/respect_mapping.yaml. A stance whose primary
framing cannot be translated gets no card.

The builder does no I/O. Its only side effect is adding the citations that
party cards reference to the source registry.
"""

import logging
import re
from typing import Dict, List, Optional, Sequence

from respect_monitor.pipeline.models import (
    ActorStance,
    DominanceSnapshot,
    FitReasons,
    MediaFramingAggregate,
    PartyCard,
    PartyFit,
    PublicPollingAggregate,
    RealityMetricsAggregate,
    RespectConfidence,
    Staleness,
    SubjectRef,
    SubjectViewModel,
)
from respect_monitor.pipeline.sources import SourceRegistry, create_source_ref
from respect_monitor.pipeline.taxonomy import translate_actor_respect

logger = logging.getLogger(__name__)

MAX_EVIDENCE_SOURCES = 3
DEFAULT_SECONDARY_CONFIDENCE = 0.4
TOP_METRICS_FOR_REALITY = 2
EVIDENCE_TITLE_CHARS = 80

REASON_PUBLIC_OK = "Aligns with public prior."
REASON_PUBLIC_WARN = "Diverges from public prior."
REASON_MEDIA_OK = "Aligns with media dominant."
REASON_MEDIA_WARN = "Diverges from media frame."
REASON_REALITY_OK = "Party frame aligns with salient metric readings."
REASON_REALITY_WARN = "Party frame not among top metric readings."

_WHITESPACE = re.compile(r"\s")


def relation_to_dominant(primary: str, dominant: str) -> str:
    """Return "matches" or "challenges"; "reframes" is reserved and never returned."""
    return "matches" if primary == dominant else "challenges"


def fit_level(primary: str, reference: str) -> str:
    return "ok" if primary == reference else "warn"


def reality_fit(primary: str, reality_agg: RealityMetricsAggregate) -> str:
    """ok when the framing appears in the readings of the first two metrics."""
    referenced = set()
    for metric in reality_agg.metrics[:TOP_METRICS_FOR_REALITY]:
        referenced.update(r.respect_id for r in metric.readings)
    return "ok" if primary in referenced else "warn"


def evidence_source_ids(stance: ActorStance, registry: SourceRegistry) -> List[str]:
    """
    Cite up to three evidence items, registering any citation not already known.

    A stance without evidence cites the party manifesto.
    """
    label = stance.actor_label or stance.actor_id
    ids = []
    for e in stance.evidence[:MAX_EVIDENCE_SOURCES]:
        ref_id = _WHITESPACE.sub("_", f"party_{stance.actor_id}_{e.doc_id}_{e.section or 'ref'}")
        if ref_id not in ids:
            ids.append(ref_id)
        registry.add(create_source_ref(
            ref_id,
            (e.quote or e.doc_id)[:EVIDENCE_TITLE_CHARS],
            "manifesto",
            "party_stance_authoritative",
            publisher=label,
            url=e.url,
            location=e.section,
        ))
    if not ids:
        ref_id = _WHITESPACE.sub("_", f"party_{stance.actor_id}_manifesto")
        ids.append(ref_id)
        registry.add(create_source_ref(
            ref_id,
            f"{label} manifesto",
            "manifesto",
            "party_stance_authoritative",
            publisher=label,
        ))
    return ids


def build_party_card(
    stance: ActorStance,
    dominant_id: str,
    media_agg: MediaFramingAggregate,
    public_agg: PublicPollingAggregate,
    reality_agg: RealityMetricsAggregate,
    registry: SourceRegistry,
    summary: Optional[str] = None,
    mapping: Optional[Dict[str, str]] = None,
) -> Optional[PartyCard]:
    """
    Build one party card, or None when the primary framing cannot be translated.
    """
    primary = translate_actor_respect(stance.primary_respect, mapping)
    if primary is None:
        logger.warning(f"Skipping {stance.actor_id}: unknown framing {stance.primary_respect}")
        return None

    secondary = None
    if stance.secondary_respect:
        secondary_id = translate_actor_respect(stance.secondary_respect, mapping)
        if secondary_id is None:
            logger.warning(f"Dropping secondary framing for {stance.actor_id}: {stance.secondary_respect}")
        else:
            confidence = stance.secondary_confidence
            secondary = RespectConfidence(
                secondary_id,
                DEFAULT_SECONDARY_CONFIDENCE if confidence is None else confidence,
            )

    public_fit = fit_level(primary, public_agg.public_prior.respect_id)
    media_fit = fit_level(primary, media_agg.dominant.respect_id)
    real_fit = reality_fit(primary, reality_agg)

    return PartyCard(
        party_id=stance.actor_id,
        party_label=stance.actor_label or stance.actor_id,
        primary_respect=RespectConfidence(primary, stance.primary_confidence),
        secondary_respect=secondary,
        relation_to_dominant=relation_to_dominant(primary, dominant_id),
        summary_of_findings=summary,
        evidence_source_ids=evidence_source_ids(stance, registry),
        fit=PartyFit(
            public=public_fit,
            media=media_fit,
            reality=real_fit,
            reasons=FitReasons(
                public=REASON_PUBLIC_OK if public_fit == "ok" else REASON_PUBLIC_WARN,
                media=REASON_MEDIA_OK if media_fit == "ok" else REASON_MEDIA_WARN,
                reality=REASON_REALITY_OK if real_fit == "ok" else REASON_REALITY_WARN,
            ),
        ),
        attack_line_against_dominant=stance.attack_line,
        commitments=list(stance.commitments),
        vulnerabilities=list(stance.vulnerabilities),
    )


def build_view_model(
    subject_id: str,
    actor_stances: Sequence[ActorStance],
    media_agg: MediaFramingAggregate,
    public_agg: PublicPollingAggregate,
    reality_agg: RealityMetricsAggregate,
    dominance: DominanceSnapshot,
    registry: SourceRegistry,
    subject_label: Optional[str] = None,
    parent_id: Optional[str] = None,
    staleness: Optional[Staleness] = None,
    summaries: Optional[Dict[str, str]] = None,
    mapping: Optional[Dict[str, str]] = None,
) -> SubjectViewModel:
    """
    Merge dominance, aggregates and party stances into the published view model.

    Args:
        subject_id: Subject being refreshed
        actor_stances: Stances in the extraction vocabulary; other subjects are ignored
        media_agg, public_agg, reality_agg: Aggregates from this refresh
        dominance: Dominance snapshot from this refresh
        registry: Source registry, augmented with party citations
        subject_label, parent_id: Subject identity for display
        staleness: Per-kind last-update stamps
        summaries: Party id -> summary of findings
        mapping: Override for the actor translation table

    Returns:
        SubjectViewModel
    """
    summaries = summaries or {}
    cards = []
    for stance in actor_stances:
        if stance.subject_id != subject_id:
            continue
        card = build_party_card(
            stance,
            dominance.dominant.respect_id,
            media_agg,
            public_agg,
            reality_agg,
            registry,
            summary=summaries.get(stance.actor_id),
            mapping=mapping,
        )
        if card is not None:
            cards.append(card)

    return SubjectViewModel(
        subject=SubjectRef(id=subject_id, label=subject_label or subject_id, parent_id=parent_id),
        as_of=dominance.as_of,
        dominant_respect=dominance,
        party_cards=cards,
        media_framing=media_agg,
        public_polling=public_agg,
        reality_metrics=reality_agg,
        sources_index=registry.to_dict(),
        staleness=staleness or Staleness(),
    )
