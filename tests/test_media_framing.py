"""Tests for media framing aggregation."""

from datetime import datetime, timedelta, timezone

import pytest

from respect_monitor.pipeline.classifier import classify_media_batch
from respect_monitor.pipeline.media_framing import (
    EXEMPLAR_COUNT,
    RECENCY_FLOOR,
    aggregate_media,
    dedupe_media,
    media_dedup_key,
    media_type_for,
    merge_media,
    recency_weight,
    top_phrases,
)
from respect_monitor.pipeline.models import ClassifiedItem, RawMediaItem

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
TODAY = NOW.isoformat()


def item(item_id, title, outlet="BBC", url=None, published_at=TODAY, respect_id=None, media_type=None):
    return RawMediaItem(
        id=item_id,
        outlet=outlet,
        title=title,
        published_at=published_at,
        url=url if url is not None else f"https://example.com/{item_id}",
        respect_id=respect_id,
        media_type=media_type,
    )


def classified(item_id, respect_id, confidence=0.8):
    return ClassifiedItem(
        item_type="media",
        subject_id="small_boats",
        item_id=item_id,
        respect_id=respect_id,
        confidence=confidence,
    )


class TestRecencyWeight:
    """Linear 14-day decay with a floor."""

    def test_today_is_full_weight(self):
        assert recency_weight(TODAY, NOW) == pytest.approx(1.0)

    def test_half_way(self):
        assert recency_weight((NOW - timedelta(days=7)).isoformat(), NOW) == pytest.approx(0.5)

    def test_floor(self):
        assert recency_weight((NOW - timedelta(days=30)).isoformat(), NOW) == RECENCY_FLOOR

    def test_future_and_unparseable_count_as_now(self):
        assert recency_weight((NOW + timedelta(days=3)).isoformat(), NOW) == pytest.approx(1.0)
        assert recency_weight("not a date", NOW) == 1.0
        assert recency_weight(None, NOW) == 1.0

    def test_z_suffix(self):
        assert recency_weight("2025-03-08T12:00:00Z", NOW) == pytest.approx(0.5)


class TestDedup:
    """URL-or-composite dedup keys; curated items win."""

    def test_url_key(self):
        assert media_dedup_key(item("a", "T", url="https://x.com/1")) == "https://x.com/1"

    def test_composite_key_without_url(self):
        a = item("a", "Boats  Arrive", url="", published_at="2025-03-01T08:00:00Z")
        b = item("b", "boats arrive", url="", published_at="2025-03-01T20:00:00Z")
        assert media_dedup_key(a) == media_dedup_key(b)

    def test_dedupe_idempotent(self):
        items = [item("a", "T", url="https://x.com/1"), item("b", "T2", url="https://x.com/1"), item("c", "T3")]
        once = dedupe_media(items)
        assert [i.id for i in once] == ["a", "c"]
        assert dedupe_media(once) == once

    def test_curated_first(self):
        curated = [item("cur", "Curated", url="https://x.com/1", respect_id="humanitarian")]
        fresh = [item("fresh", "Fetched", url="https://x.com/1"), item("other", "Other")]
        merged = merge_media(curated, fresh)
        assert [i.id for i in merged] == ["cur", "other"]
        assert merged[0].respect_id == "humanitarian"


class TestMediaType:

    def test_outlet_lookup(self):
        assert media_type_for(item("a", "T", outlet="BBC")) == "broadcast"
        assert media_type_for(item("a", "T", outlet="The Guardian")) == "broadsheet"
        assert media_type_for(item("a", "T", outlet="Daily Mail")) == "tabloid"
        assert media_type_for(item("a", "T", outlet="Reuters")) == "wire"

    def test_unknown_outlet_is_online(self):
        assert media_type_for(item("a", "T", outlet="Some Blog")) == "online"

    def test_explicit_type_wins(self):
        assert media_type_for(item("a", "T", outlet="BBC", media_type="online")) == "online"


class TestTopPhrases:

    def test_stopwords_and_short_tokens_dropped(self):
        phrases = top_phrases(["The boats and the gangs", "Boats in UK", "More boats"])
        assert phrases[0] == "boats"
        assert "the" not in phrases
        assert "uk" not in phrases

    def test_limit(self):
        titles = [" ".join(f"word{i}{j}" for j in range(5)) for i in range(5)]
        assert len(top_phrases(titles, n=10)) == 10


class TestAggregateMedia:
    """Share computation, exemplars and breakdown."""

    def test_empty(self):
        agg = aggregate_media("small_boats", [], [], now=NOW)
        assert agg.shares == []
        assert agg.dominant.respect_id == "security_border"
        assert agg.dominant.share == 0.0
        assert agg.volume == 0
        assert agg.exemplars == []

    def test_shares_sum_to_one(self):
        raw = [item("a", "A"), item("b", "B"), item("c", "C", published_at=(NOW - timedelta(days=10)).isoformat())]
        cls = [classified("a", "security_border"), classified("b", "humanitarian", 0.4), classified("c", "rule_of_law")]
        agg = aggregate_media("small_boats", cls, raw, now=NOW)
        assert sum(s.share for s in agg.shares) == pytest.approx(1.0)
        assert agg.dominant.respect_id == "security_border"

    def test_tie_broken_by_catalog_order(self):
        raw = [item("a", "A"), item("b", "B")]
        cls = [classified("a", "rule_of_law"), classified("b", "humanitarian")]
        agg = aggregate_media("small_boats", cls, raw, now=NOW)
        assert agg.dominant.respect_id == "humanitarian"

    def test_non_media_items_ignored(self):
        raw = [item("a", "A")]
        poll = ClassifiedItem(item_type="poll", subject_id="small_boats", item_id="a",
                              respect_id="humanitarian", confidence=0.9)
        agg = aggregate_media("small_boats", [poll, classified("a", "rule_of_law")], raw, now=NOW)
        assert [s.respect_id for s in agg.shares] == ["rule_of_law"]

    def test_duplicates_counted_once(self):
        raw = [item("a", "A", url="https://x.com/1"), item("b", "B", url="https://x.com/1")]
        cls = [classified("a", "security_border"), classified("b", "humanitarian")]
        agg = aggregate_media("small_boats", cls, raw, now=NOW)
        assert agg.volume == 1
        assert [s.respect_id for s in agg.shares] == ["security_border"]
        assert agg.source_ids == ["a"]

    def test_exemplars_capped_and_ordered(self):
        raw = [item(f"m{i}", f"Title {i}", published_at=(NOW - timedelta(days=i)).isoformat()) for i in range(10)]
        cls = [classified(f"m{i}", "security_border") for i in range(10)]
        agg = aggregate_media("small_boats", cls, raw, now=NOW)
        assert len(agg.exemplars) == EXEMPLAR_COUNT
        assert [e.source_id for e in agg.exemplars[:3]] == ["m0", "m1", "m2"]

    def test_breakdown_by_media_type(self):
        raw = [
            item("a", "A", outlet="BBC"),
            item("b", "B", outlet="Sky News"),
            item("c", "C", outlet="Daily Mail"),
        ]
        cls = [classified("a", "security_border"), classified("b", "security_border"), classified("c", "humanitarian")]
        agg = aggregate_media("small_boats", cls, raw, now=NOW)
        by_type = {b.media_type: b for b in agg.media_type_breakdown}
        assert agg.media_type_breakdown[0].media_type == "broadcast"
        assert by_type["broadcast"].n == 2
        assert by_type["broadcast"].weight == pytest.approx(2 / 3)
        assert by_type["tabloid"].shares[0].respect_id == "humanitarian"

    def test_window_and_source(self):
        agg = aggregate_media("small_boats", [], [], window_days=14, media_source="rss", now=NOW)
        assert agg.window.start == "2025-03-01"
        assert agg.window.end == "2025-03-15"
        assert agg.media_source == "rss"
        assert agg.to_dict()["window"] == {"from": "2025-03-01", "to": "2025-03-15"}

    def test_three_headlines_end_to_end(self):
        raw = [
            item("s1", "Home Office crackdown deter gangs"),
            item("s2", "Ministers crackdown deter gangs"),
            item("h1", "Refugee dignity charity rescue"),
        ]
        cls = classify_media_batch("small_boats", raw, now=NOW)
        agg = aggregate_media("small_boats", cls, raw, now=NOW)
        shares = {s.respect_id: s.share for s in agg.shares}
        assert agg.dominant.respect_id == "security_border"
        assert shares["security_border"] == pytest.approx(2 / 3)
        assert shares["humanitarian"] == pytest.approx(1 / 3)
        assert "crackdown" in agg.top_phrases

    def test_byte_identical_duplicate_does_not_change_output(self):
        raw = [
            item("s1", "Home Office crackdown deter gangs"),
            item("h1", "Refugee dignity charity rescue"),
        ]
        with_dup = raw + [item("s1", "Home Office crackdown deter gangs")]
        once = aggregate_media("small_boats", classify_media_batch("small_boats", raw, now=NOW), raw, now=NOW)
        twice = aggregate_media("small_boats", classify_media_batch("small_boats", with_dup, now=NOW), with_dup, now=NOW)
        assert once.to_dict() == twice.to_dict()
