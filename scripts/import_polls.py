#!/usr/bin/env python3
"""
Import curated polls (or curated media headlines) into the pipeline store.

Polls are the only polling input the pipeline uses, so every poll passes the
validation gate before it is stored. Invalid entries are skipped with a
warning; the rest are appended.

Poll JSON: array of objects with
    id?              generated when missing
    pollster, question
    options          string[] (2 or more)
    results          number[] (shares 0-1, same order as options, sum ~1)
    fieldwork_dates  e.g. "2025-01-03 to 2025-01-05"
    published_at     ISO date
    url?, sample_size?

Media JSON (--media): array of objects with
    id?, outlet, title, published_at, media_type?, lede?, url?, respect_id?

Usage:
    python scripts/import_polls.py polls.json
    python scripts/import_polls.py --subject small_boats --media headlines.json
"""

import argparse
import json
import logging
import re
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from respect_monitor.logging_config import configure_logging
from respect_monitor.pipeline.models import RawMediaItem
from respect_monitor.pipeline.storage import InvalidRecordError, JsonArrayStore
from respect_monitor.pipeline.taxonomy import is_respect_id

logger = logging.getLogger(__name__)

_SLUG = re.compile(r"\s+")


def normalize_poll(p: Dict[str, Any], index: int) -> Dict[str, Any]:
    """Trim strings and fill in a generated id; leaves values for the validator to judge."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    pollster = str(p.get("pollster") or "").strip()
    payload = dict(p)
    payload["id"] = str(p.get("id") or "").strip() or f"poll_{_SLUG.sub('_', pollster or 'unknown')}_{stamp}_{index}"
    for key in ("pollster", "question", "fieldwork_dates", "published_at"):
        if isinstance(payload.get(key), str):
            payload[key] = payload[key].strip()
    if isinstance(payload.get("options"), list):
        payload["options"] = [str(o) for o in payload["options"]]
    return payload


def import_polls(store: JsonArrayStore, subject_id: str, polls: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Validate and append polls.

    Returns:
        (added, skipped)
    """
    added = skipped = 0
    for i, p in enumerate(polls):
        if not isinstance(p, dict):
            logger.warning(f"Poll {i + 1} skipped: not an object")
            skipped += 1
            continue
        try:
            store.append_raw_poll(subject_id, normalize_poll(p, i), source="import")
            added += 1
        except InvalidRecordError as e:
            logger.warning(f"Poll {i + 1} skipped: {'; '.join(e.errors)}")
            skipped += 1
    return added, skipped


def import_media(store: JsonArrayStore, subject_id: str, items: List[Dict[str, Any]]) -> Tuple[int, int]:
    """
    Append curated media headlines. A respect_id outside the catalog is dropped
    so the item is classified like any other.

    Returns:
        (added, skipped)
    """
    added = skipped = 0
    stamp = datetime.now(timezone.utc)
    for i, m in enumerate(items):
        if not isinstance(m, dict) or not all(str(m.get(k) or "").strip() for k in ("outlet", "title", "published_at")):
            logger.warning(f"Media item {i + 1} skipped: outlet, title and published_at are required")
            skipped += 1
            continue
        respect_id = m.get("respect_id")
        if respect_id and not is_respect_id(respect_id):
            logger.warning(f"Media item {i + 1}: unknown respect_id {respect_id}, ignoring label")
            respect_id = None
        item = RawMediaItem(
            id=str(m.get("id") or "").strip() or f"media_{stamp.strftime('%Y%m%d%H%M%S')}_{i}",
            outlet=str(m["outlet"]).strip(),
            title=str(m["title"]).strip(),
            published_at=str(m["published_at"]).strip(),
            media_type=m.get("media_type"),
            lede=m.get("lede"),
            url=m.get("url"),
            retrieved_at=stamp.isoformat(),
            respect_id=respect_id,
        )
        store.append_record("raw_media", subject_id, item, source="import")
        added += 1
    return added, skipped


def main():
    parser = argparse.ArgumentParser(description="Import curated polls or media into the pipeline store")
    parser.add_argument('path', help="JSON file containing an array of records")
    parser.add_argument('--subject', default='small_boats', help="Subject id (default: small_boats)")
    parser.add_argument('--media', action='store_true', help="Import media headlines instead of polls")
    parser.add_argument('--data-dir', help="Storage base directory (default: $RESPECT_MONITOR_DATA_DIR or data/pipeline)")
    args = parser.parse_args()

    configure_logging()

    path = Path(args.path)
    if not path.exists():
        logger.error(f"File not found: {path}")
        sys.exit(1)
    try:
        with open(path, 'r') as f:
            records = json.load(f)
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON: {e}")
        sys.exit(1)
    if not isinstance(records, list):
        logger.error("JSON file must be an array of objects")
        sys.exit(1)

    store = JsonArrayStore(args.data_dir)
    if args.media:
        added, skipped = import_media(store, args.subject, records)
        kind = "media item(s)"
    else:
        added, skipped = import_polls(store, args.subject, records)
        kind = "poll(s)"

    print(f"Imported {added} {kind} for {args.subject} ({skipped} skipped). Run refresh to update the view.")
    sys.exit(0)


if __name__ == '__main__':
    main()
