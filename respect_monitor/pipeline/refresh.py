"""
Refresh pipeline for one subject.

Order of work:
1. Load subject config (unknown subject is fatal)
2. Optional stance extraction from manifesto texts
3. Register institutional citations
4. Collect media + metrics in parallel; merge curated stored media first
5. Load stored polls through the validation gate
6. Classify media (oracle with keyword fallback), polls and metrics
7. Aggregate and persist the three aggregates
8. Compute and persist the dominance snapshot
9. Optional party summaries
10. Build, persist and return the view model

Only UnknownSubjectError and StorageError escape refresh_subject. Everything
else (connector failures, oracle failures, invalid stored polls) is logged
and the refresh continues with what it has.

Usage:
    python -m respect_monitor.pipeline.refresh --subject small_boats
    python -m respect_monitor.pipeline.refresh --subject small_boats --stances stances.json --no-llm
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from respect_monitor.config.secrets import OPENAI_API_KEY, get_optional_key
from respect_monitor.config.subjects import SubjectConfig, get_subject
from respect_monitor.ingest.coordinator import IngestionCoordinator
from respect_monitor.logging_config import configure_logging
from respect_monitor.pipeline.classifier import (
    classify_media_batch,
    classify_metric_item,
    classify_poll_item,
)
from respect_monitor.pipeline.dominance import compute_dominance
from respect_monitor.pipeline.media_framing import aggregate_media, merge_media
from respect_monitor.pipeline.models import (
    ActorStance,
    RawMediaItem,
    RawPollItem,
    Staleness,
    SubjectViewModel,
)
from respect_monitor.pipeline.oracle import (
    ClassificationOracle,
    OpenAIOracle,
    OracleError,
    StanceOracle,
    manifesto_doc_id,
    positions_to_stances,
)
from respect_monitor.pipeline.passages import build_relevant_excerpts_by_subject
from respect_monitor.pipeline.public_polling import aggregate_polling
from respect_monitor.pipeline.reality_metrics import aggregate_metrics
from respect_monitor.pipeline.sources import SourceRegistry, create_source_ref
from respect_monitor.pipeline.storage import JsonArrayStore
from respect_monitor.pipeline.taxonomy import translate_actor_respect
from respect_monitor.pipeline.validate_poll import validate_raw_poll
from respect_monitor.pipeline.view_model import build_view_model

logger = logging.getLogger(__name__)

MIN_MANIFESTO_CHARS = 300
MAX_SUMMARY_QUOTES = 2
SOURCE_TITLE_CHARS = 80
POLL_TITLE_CHARS = 60

AGGREGATE_MEDIA = "media_14d"
AGGREGATE_PUBLIC = "public_6m"
AGGREGATE_METRICS = "metrics_latest"


def load_actor_stances(path) -> List[ActorStance]:
    """
    Load party stances from JSON.

    Accepts either a list of stance objects or {"party_positions": [...]}.
    """
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("party_positions") or []
    return [ActorStance.from_dict(d) for d in data if isinstance(d, dict)]


def merge_stances(existing: Sequence[ActorStance], extracted: Sequence[ActorStance]) -> List[ActorStance]:
    """Extracted stances replace existing ones for the same (subject, party)."""
    merged: Dict[tuple, ActorStance] = {(s.subject_id, s.actor_id): s for s in existing}
    for stance in extracted:
        merged[(stance.subject_id, stance.actor_id)] = stance
    return list(merged.values())


def register_institutional_sources(subject: SubjectConfig, registry: SourceRegistry) -> None:
    block = subject.institutional or {}
    for s in block.get("sources") or []:
        if not s.get("id"):
            continue
        try:
            registry.add(create_source_ref(
                str(s["id"]),
                s.get("title", s["id"]),
                s.get("type", "policy_doc"),
                "institutional_constraint",
                publisher=s.get("publisher"),
                url=s.get("url"),
                location=s.get("location"),
            ))
        except ValueError as e:
            logger.warning(f"Skipping institutional source {s.get('id')}: {e}")


def media_source_ref(item: RawMediaItem):
    return create_source_ref(
        item.id,
        item.title[:SOURCE_TITLE_CHARS],
        "news_headline",
        "media_framing",
        publisher=item.outlet,
        published_at=(item.published_at or "")[:10] or None,
        retrieved_at=item.retrieved_at,
        url=item.url,
    )


def poll_source_ref(poll: RawPollItem):
    return create_source_ref(
        poll.id,
        f"{poll.pollster}: {poll.question[:POLL_TITLE_CHARS]}",
        "poll",
        "polling_evidence",
        publisher=poll.pollster,
        published_at=(poll.published_at or "")[:10] or None,
        url=poll.url,
    )


def load_stored_media(store: JsonArrayStore, subject_id: str) -> List[RawMediaItem]:
    items = []
    for payload in store.get_all("raw_media", subject_id):
        try:
            items.append(RawMediaItem.from_dict(payload))
        except (TypeError, AttributeError) as e:
            logger.warning(f"Skipping malformed stored media for {subject_id}: {e}")
    return items


def load_valid_polls(store: JsonArrayStore, subject_id: str) -> List[RawPollItem]:
    """Stored polls that pass validation; the rest are dropped with a warning."""
    polls = []
    for payload in store.get_all("raw_polls", subject_id):
        result = validate_raw_poll(payload)
        if not result.valid:
            poll_id = payload.get("id", "?") if isinstance(payload, dict) else "?"
            logger.warning(f"Dropping invalid stored poll {poll_id}: {'; '.join(result.errors)}")
            continue
        try:
            polls.append(RawPollItem.from_dict(payload))
        except (TypeError, AttributeError) as e:
            logger.warning(f"Dropping malformed stored poll {payload.get('id', '?')}: {e}")
    return polls


def extract_stances(
    subject: SubjectConfig,
    manifesto_texts: Dict[str, str],
    stance_oracle: StanceOracle,
    actor_stances: Sequence[ActorStance],
    now: datetime,
) -> List[ActorStance]:
    """Run stance extraction per party; failures are logged and skipped."""
    labels = {s.actor_id: s.actor_label for s in actor_stances if s.actor_label}
    subjects = [{"id": subject.id, "label": subject.label}]
    extracted: List[ActorStance] = []
    for party_id, text in manifesto_texts.items():
        if not text or len(text) < MIN_MANIFESTO_CHARS:
            logger.info(f"Skipping extraction for {party_id}: manifesto text too short")
            continue
        party_label = labels.get(party_id, party_id)
        excerpts = build_relevant_excerpts_by_subject(text, [subject.id])
        try:
            positions = stance_oracle.extract(party_id, party_label, excerpts, subjects)
        except OracleError as e:
            logger.warning(f"Stance extraction failed for {party_id}: {e}")
            continue
        stances = positions_to_stances(positions, party_id, manifesto_doc_id(party_id, now), party_label)
        stances = [s for s in stances if s.subject_id == subject.id]
        if stances:
            logger.info(f"Extracted {len(stances)} position(s) for {party_id}")
        extracted.extend(stances)
    return extracted


def summarize_parties(
    subject_id: str,
    actor_stances: Sequence[ActorStance],
    stance_oracle: StanceOracle,
) -> Dict[str, str]:
    summaries: Dict[str, str] = {}
    for stance in actor_stances:
        if stance.subject_id != subject_id:
            continue
        primary = translate_actor_respect(stance.primary_respect)
        if primary is None:
            continue
        secondary = translate_actor_respect(stance.secondary_respect) if stance.secondary_respect else None
        quotes = [e.quote for e in stance.evidence[:MAX_SUMMARY_QUOTES] if e.quote]
        try:
            summary = stance_oracle.summarize(stance.actor_label or stance.actor_id, primary, secondary, quotes)
        except OracleError as e:
            logger.warning(f"Summary of findings failed for {stance.actor_id}: {e}")
            continue
        if summary:
            summaries[stance.actor_id] = summary
    return summaries


def refresh_subject(
    subject_id: str,
    store: JsonArrayStore,
    actor_stances: Sequence[ActorStance] = (),
    coordinator: Optional[IngestionCoordinator] = None,
    classification_oracle: Optional[ClassificationOracle] = None,
    stance_oracle: Optional[StanceOracle] = None,
    manifesto_texts: Optional[Dict[str, str]] = None,
    now: Optional[datetime] = None,
) -> SubjectViewModel:
    """
    Run the full refresh for one subject and persist its outputs.

    Args:
        subject_id: Configured subject id
        store: Storage for raw inputs and refresh outputs
        actor_stances: Party stances in the extraction vocabulary
        coordinator: Media/metrics collector (defaults to the configured sources)
        classification_oracle: Optional media classifier
        stance_oracle: Optional stance extractor / summarizer
        manifesto_texts: Party id -> manifesto text, used with stance_oracle
        now: Reference time

    Returns:
        The persisted SubjectViewModel

    Raises:
        UnknownSubjectError: If the subject is not configured
        StorageError: If the store cannot be read or written
    """
    now = now or datetime.now(timezone.utc)
    subject = get_subject(subject_id)
    logger.info(f"Refresh {subject_id}: starting")

    registry = SourceRegistry()
    stances = list(actor_stances)

    if stance_oracle is not None and manifesto_texts:
        stances = merge_stances(stances, extract_stances(subject, manifesto_texts, stance_oracle, stances, now))

    register_institutional_sources(subject, registry)

    coordinator = coordinator or IngestionCoordinator()
    collection = coordinator.collect(subject, now=now)
    if collection.fetch_summary.get("errors"):
        logger.warning(f"Fetch errors for {subject_id}: {collection.fetch_summary['errors']}")
    for ref in collection.media.sources:
        registry.add(ref)

    stored_media = load_stored_media(store, subject_id)
    for item in stored_media:
        registry.add(media_source_ref(item))
    raw_media = merge_media(stored_media, collection.media.items)

    raw_metrics = collection.metrics
    for ref in collection.metric_sources:
        registry.add(ref)

    raw_polls = load_valid_polls(store, subject_id)
    for poll in raw_polls:
        registry.add(poll_source_ref(poll))

    stamp = now.isoformat()
    staleness = Staleness(
        media_updated_at=stamp if raw_media else "",
        polling_updated_at=stamp if raw_polls else "",
        metrics_updated_at=stamp if raw_metrics else "",
    )

    classified = classify_media_batch(subject_id, raw_media, oracle=classification_oracle, now=now)
    classified.extend(classify_poll_item(subject_id, p, now) for p in raw_polls)
    classified.extend(classify_metric_item(subject_id, m, now) for m in raw_metrics)

    media_agg = aggregate_media(
        subject_id,
        classified,
        raw_media,
        window_days=subject.media_window_days,
        media_source=collection.media.source_kind,
        now=now,
    )
    public_agg = aggregate_polling(subject_id, classified, raw_polls, window_months=subject.poll_window_months, now=now)
    reality_agg = aggregate_metrics(raw_metrics, now=now)

    store.append_record("aggregates", subject_id, media_agg, source="refresh", extra={"kind": AGGREGATE_MEDIA})
    store.append_record("aggregates", subject_id, public_agg, source="refresh", extra={"kind": AGGREGATE_PUBLIC})
    store.append_record("aggregates", subject_id, reality_agg, source="refresh", extra={"kind": AGGREGATE_METRICS})

    dominance = compute_dominance(subject_id, media_agg, public_agg, as_of=now.isoformat())
    store.append_record("dominance_snapshots", subject_id, dominance, source="refresh")

    summaries: Dict[str, str] = {}
    if stance_oracle is not None:
        summaries = summarize_parties(subject_id, stances, stance_oracle)

    view_model = build_view_model(
        subject_id,
        stances,
        media_agg,
        public_agg,
        reality_agg,
        dominance,
        registry,
        subject_label=subject.label,
        parent_id=subject.parent_id,
        staleness=staleness,
        summaries=summaries,
    )
    store.append_record("view_models", subject_id, view_model, source="refresh")

    logger.info(
        f"Refresh {subject_id}: done. {len(raw_media)} media ({collection.media.source_kind}), "
        f"{len(raw_polls)} polls, {len(raw_metrics)} metrics, dominant {dominance.dominant.respect_id}"
    )
    return view_model


def build_oracle(no_llm: bool = False) -> Optional[OpenAIOracle]:
    """OpenAI-backed oracle when a key is configured and LLM use is not disabled."""
    if no_llm or not get_optional_key(OPENAI_API_KEY):
        return None
    return OpenAIOracle()


def _parse_manifesto_args(values: Sequence[str]) -> Dict[str, str]:
    texts = {}
    for value in values:
        party_id, sep, path = value.partition("=")
        if not sep or not party_id or not path:
            raise ValueError(f"Expected PARTY=PATH, got {value!r}")
        texts[party_id] = Path(path).read_text()
    return texts


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Refresh the view model for one subject")
    parser.add_argument('--subject', default='small_boats', help="Subject id (default: small_boats)")
    parser.add_argument('--stances', help="JSON file of party stances")
    parser.add_argument('--manifesto', action='append', default=[], metavar='PARTY=PATH',
                        help="Manifesto text for stance extraction (repeatable; needs the LLM)")
    parser.add_argument('--data-dir', help="Storage base directory (default: $RESPECT_MONITOR_DATA_DIR or data/pipeline)")
    parser.add_argument('--no-llm', action='store_true', help="Keyword classification only")
    args = parser.parse_args(argv)

    configure_logging()

    stances = load_actor_stances(args.stances) if args.stances else []
    manifesto_texts = _parse_manifesto_args(args.manifesto)
    oracle = build_oracle(args.no_llm)
    if oracle is None:
        logger.info("LLM disabled or OPENAI_API_KEY not set: keyword classification only")

    view_model = refresh_subject(
        args.subject,
        JsonArrayStore(args.data_dir),
        stances,
        classification_oracle=oracle,
        stance_oracle=oracle,
        manifesto_texts=manifesto_texts,
    )

    dominant = view_model.dominant_respect
    print(f"Subject: {view_model.subject.label} ({view_model.subject.id})")
    print(f"As of: {view_model.as_of}")
    print(f"Dominant: {dominant.dominant.respect_id} ({dominant.dominant.score:.3f})"
          f"{' [split]' if dominant.split_dominance else ''}")
    print(f"Media: {view_model.media_framing.volume} items ({view_model.media_framing.media_source})")
    print(f"Public prior: {view_model.public_polling.public_prior.respect_id}")
    print(f"Party cards: {len(view_model.party_cards)}")
    return 0


if __name__ == '__main__':
    try:
        sys.exit(main())
    except SystemExit:
        raise
    except Exception:
        logger.exception("Refresh failed with unhandled exception")
        sys.exit(1)
